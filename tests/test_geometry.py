"""
Tests for earth geometry, coordinate conversion and local frames.
"""

import numpy as np
import pytest

import pywaveq as pw


class TestEarthModel:

    def test_radius_from_latitude(self):
        """Gaussian radius grows from the equator to the pole."""
        r_eq = pw.earth_radius(0.0)
        r_45 = pw.earth_radius(45.0)
        r_pole = pw.earth_radius(90.0)
        assert r_eq == pytest.approx(pw.geometry.WGS84_B)
        assert r_eq < r_45 < r_pole
        np.testing.assert_allclose(r_45, 6378101.0, rtol=1e-4)

    def test_invalid_radius(self):
        with pytest.raises(ValueError):
            pw.EarthModel(radius=-1.0)
        with pytest.raises(ValueError):
            pw.EarthModel(radius=np.nan)

    def test_round_trip(self):
        earth = pw.EarthModel.from_latitude(45.0)
        lat = np.array([45.0, -30.0, 10.5])
        lng = np.array([-45.0, 170.0, 0.0])
        alt = np.array([-1000.0, 0.0, -4500.0])
        xyz = earth.to_cartesian(lat, lng, alt)
        assert xyz.shape == (3, 3)
        lat2, lng2, alt2 = earth.to_geodetic(xyz)
        np.testing.assert_allclose(lat2, lat, atol=1e-10)
        np.testing.assert_allclose(lng2, lng, atol=1e-10)
        np.testing.assert_allclose(alt2, alt, atol=1e-6)
        np.testing.assert_allclose(earth.altitude(xyz), alt, atol=1e-6)

    def test_frozen(self):
        earth = pw.EarthModel()
        with pytest.raises(AttributeError):
            earth.radius = 1.0


class TestLocalFrame:

    def test_orthonormal(self):
        earth = pw.EarthModel()
        xyz = earth.to_cartesian([45.0, -10.0], [-45.0, 120.0], [-100.0, -3000.0])
        up, north, east = pw.local_frame(xyz)
        for v in (up, north, east):
            np.testing.assert_allclose(np.linalg.norm(v, axis=-1), 1.0)
        np.testing.assert_allclose(np.sum(up*north, axis=-1), 0.0, atol=1e-12)
        np.testing.assert_allclose(np.sum(up*east, axis=-1), 0.0, atol=1e-12)
        np.testing.assert_allclose(np.sum(north*east, axis=-1), 0.0, atol=1e-12)

    def test_north_points_to_pole(self):
        earth = pw.EarthModel()
        xyz = earth.to_cartesian(0.0, 0.0, 0.0)
        _, north, east = pw.local_frame(xyz)
        np.testing.assert_allclose(north, [0.0, 0.0, 1.0], atol=1e-12)
        np.testing.assert_allclose(east, [0.0, 1.0, 0.0], atol=1e-12)

    def test_direction_angles(self):
        earth = pw.EarthModel()
        xyz = earth.to_cartesian(45.0, -45.0, -1000.0)
        de = np.array([-60.0, 0.0, 30.0, 89.0])
        az = np.array([0.0, 90.0, -45.0, 170.0])
        direction = pw.direction_vector(np.broadcast_to(xyz, (4, 3)), de, az)
        np.testing.assert_allclose(np.linalg.norm(direction, axis=-1), 1.0)
        de2, az2 = pw.direction_angles(np.broadcast_to(xyz, (4, 3)), direction)
        np.testing.assert_allclose(de2, de, atol=1e-9)
        np.testing.assert_allclose(az2, az, atol=1e-7)

    def test_straight_up(self):
        earth = pw.EarthModel()
        xyz = earth.to_cartesian(20.0, 30.0, 0.0)
        up, _, _ = pw.local_frame(xyz)
        np.testing.assert_allclose(pw.direction_vector(xyz, 90.0, 0.0), up, atol=1e-12)


class TestPositions:

    def test_broadcast_to_grid(self):
        pos = pw.Positions([45.0, 45.1], -45.0, -100.0)
        assert pos.shape == (1, 2)
        assert len(pos) == 2
        assert pos[0, 1] == (45.1, -45.0, -100.0)

    def test_scalar(self):
        pos = pw.Positions(45.0, -45.0, -100.0)
        assert pos.shape == (1, 1)
        assert pos.cartesian(pw.EarthModel()).shape == (1, 1, 3)

    def test_read_only(self):
        pos = pw.Positions(np.zeros((2, 3)), 0.0, 0.0)
        with pytest.raises(ValueError):
            pos.latitude[0, 0] = 1.0

    def test_invalid(self):
        with pytest.raises(ValueError):
            pw.Positions(np.zeros((2, 2, 2)), 0.0, 0.0)
        with pytest.raises(ValueError):
            pw.Positions([], 0.0, 0.0)
        with pytest.raises(ValueError):
            pw.Positions(np.nan, 0.0, 0.0)
