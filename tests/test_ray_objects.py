"""
Tests for launch fans, wavefront layers, eigenray records and their exports.
"""

import csv

import numpy as np
import pytest
import xarray as xr
from scipy import io

import pywaveq as pw


def make_ray(time=1.0, intensity=60.0, phase=0.0, surface=0, bottom=0):
    return pw.Eigenray(time=time, intensity=[intensity], phase=[phase], source_de=-1.0, source_az=0.0,
                       target_de=1.0, target_az=0.0, surface=surface, bottom=bottom)


class TestLaunchFan:

    def test_valid(self):
        fan = pw.LaunchFan(de=np.arange(-60, 61, 5), az=[-1, 0, 1], frequencies=[1000, 2000])
        assert fan.shape == (25, 3)
        assert fan.num_frequencies == 2

    def test_read_only(self):
        fan = pw.LaunchFan(de=[-1, 0, 1], az=[-1, 0, 1])
        with pytest.raises(ValueError):
            fan.de[0] = 5.0

    @pytest.mark.parametrize('de, az, frequencies', [
        ([-1, 1], [-1, 0, 1], [1000]),          # too few DE
        ([-1, 0, 1], [0, 1], [1000]),           # too few AZ
        ([1, 0, -1], [-1, 0, 1], [1000]),       # decreasing
        ([-1, 0, 1], [-1, -1, 1], [1000]),      # repeated
        ([-90, 0, 10], [-1, 0, 1], [1000]),     # straight down
        ([-1, 0, 1], [-1, 0, 1], [-5.0]),       # negative frequency
        ([-1, np.nan, 1], [-1, 0, 1], [1000]),  # not finite
    ])
    def test_invalid(self, de, az, frequencies):
        with pytest.raises(ValueError):
            pw.LaunchFan(de=de, az=az, frequencies=frequencies)


class TestWavefrontLayer:

    def test_freeze(self):
        shape = (3, 4)
        layer = pw.WavefrontLayer.initial(np.zeros(shape + (3,)), np.zeros(shape + (3,)),
                                          np.full(shape, 1500.0), 2)
        assert layer.loss.shape == (3, 4, 2)
        assert np.all(layer.alive)
        frozen = layer.copy().freeze()
        with pytest.raises(ValueError):
            frozen.position[0, 0, 0] = 1.0
        # copies of frozen layers are writable
        frozen.copy().position[0, 0, 0] = 1.0

    def test_ray_tube_uniform_grid(self):
        i, j = np.meshgrid(np.arange(4.0), np.arange(5.0), indexing='ij')
        position = np.stack((2*i, 3*j, i*j), axis=-1)
        dx_dde, dx_daz = pw.ray_tube(position)
        np.testing.assert_allclose(dx_dde[..., 0], 2.0)
        np.testing.assert_allclose(dx_daz[..., 1], 3.0)
        np.testing.assert_allclose(dx_dde[..., 2], j)
        np.testing.assert_allclose(dx_daz[..., 2], i)


class TestEigenray:

    def test_immutable(self):
        ray = make_ray()
        with pytest.raises(AttributeError):
            ray.time = 2.0
        with pytest.raises(ValueError):
            ray.intensity[0] = 1.0

    def test_list_append(self):
        rays = pw.EigenrayList([1000.0])
        rays.append(make_ray(1.0))
        rays.append(make_ray(2.0, surface=1))
        assert len(rays) == 2
        np.testing.assert_allclose(rays.times, [1.0, 2.0])
        assert rays[1].surface == 1
        with pytest.raises(TypeError):
            rays.append((1.0, 60.0))


class TestExport:

    @pytest.fixture
    def rays(self):
        rays = pw.EigenrayList([1000.0])
        rays.append(make_ray(1.484, 66.95))
        rays.append(make_ray(1.995, 69.52, -np.pi, surface=1))
        return rays

    def test_csv(self, rays, tmp_path):
        filename = tmp_path / 'eigenrays.csv'
        rays.to_csv(filename)
        with open(filename, newline='') as f:
            table = list(csv.reader(f))
        assert table[0] == ['time', 'intensity', 'phase', 's_de', 's_az', 't_de', 't_az', 'srf', 'btm', 'cst']
        assert len(table) == 3
        assert float(table[2][0]) == 1.995
        assert float(table[2][2]) == pytest.approx(-np.pi)
        assert table[2][7:] == ['1', '0', '0']

    def test_dataset(self, rays, tmp_path):
        ds = rays.to_dataset()
        assert ds.sizes['eigenray'] == 2
        assert ds.intensity.shape == (2, 1)
        filename = tmp_path / 'eigenrays.nc'
        ds.to_netcdf(filename, engine='scipy')
        back = xr.open_dataset(filename, engine='scipy')
        np.testing.assert_allclose(back.travel_time.values, [1.484, 1.995])
        back.close()

    def test_save_mat(self, rays, tmp_path):
        filename = tmp_path / 'eigenrays.mat'
        rays.save_mat(filename)
        data = io.loadmat(filename, squeeze_me=True)
        np.testing.assert_allclose(data['eigenrays']['travel_time'].item(), [1.484, 1.995])

    def test_empty_dataset(self):
        ds = pw.EigenrayList([1000.0, 2000.0]).to_dataset()
        assert ds.sizes['eigenray'] == 0
        assert ds.intensity.shape == (0, 2)
