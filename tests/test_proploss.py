"""
Tests for the coherent propagation loss accumulator.
"""

import numpy as np
import pytest
import xarray as xr

import pywaveq as pw


def make_ray(time, intensity, phase=0.0, nf=1):
    return pw.Eigenray(time=time, intensity=np.full(nf, intensity), phase=np.full(nf, phase),
                       source_de=0.0, source_az=0.0, target_de=0.0, target_az=0.0)


@pytest.fixture
def loss():
    targets = pw.Positions([45.01, 45.02], -45.0, -1000.0)
    return pw.PropagationLoss(targets, [1000.0])


class TestCoherentSum:

    def test_single_path(self):
        intensity, phase = pw.coherent_sum([make_ray(0.0, 60.0, 0.5)], [1000.0])
        np.testing.assert_allclose(intensity, 60.0)
        np.testing.assert_allclose(phase, 0.5)

    def test_travel_time_phase(self):
        """Delay adds -2 pi f t of phase."""
        _, phase = pw.coherent_sum([make_ray(0.00025, 60.0)], [1000.0])
        np.testing.assert_allclose(phase, -np.pi/2)

    def test_constructive(self):
        rays = [make_ray(1.0, 60.0), make_ray(2.0, 60.0)]
        intensity, _ = pw.coherent_sum(rays, [1000.0])
        np.testing.assert_allclose(intensity, 60.0 - 20*np.log10(2))

    def test_destructive(self):
        """A pressure release reflection arriving in step cancels the direct path."""
        rays = [make_ray(1.0, 60.0), make_ray(1.0, 60.0, -np.pi)]
        intensity, phase = pw.coherent_sum(rays, [1000.0])
        assert intensity[0] > 250.0 or np.isinf(intensity[0])

    def test_frequency_dependent(self):
        rays = [make_ray(1.0, 60.0, nf=2), make_ray(1.00025, 60.0, nf=2)]
        intensity, _ = pw.coherent_sum(rays, [1000.0, 2000.0])
        # quarter cycle apart at 1 kHz, half a cycle at 2 kHz
        np.testing.assert_allclose(intensity[0], 60.0 - 10*np.log10(2), atol=1e-9)
        assert intensity[1] > 200.0

    def test_empty(self):
        intensity, phase = pw.coherent_sum([], [1000.0, 2000.0])
        assert np.all(np.isinf(intensity)) and np.all(intensity > 0)
        np.testing.assert_array_equal(phase, 0.0)


class TestPropagationLoss:

    def test_lists_per_target(self, loss):
        assert loss.shape == (1, 2)
        loss.eigenrays(0, 1).append(make_ray(1.5, 66.0))
        assert len(loss.eigenrays(0, 0)) == 0
        assert len(loss.eigenrays(0, 1)) == 1
        assert [len(rays) for rays in loss.eigenray_lists()] == [0, 1]

    def test_idempotent(self, loss):
        loss.eigenrays(0, 0).append(make_ray(1.484, 66.95))
        loss.eigenrays(0, 0).append(make_ray(1.995, 69.52, -np.pi))
        first = [a.copy() for a in loss.sum_eigenrays()]
        second = loss.sum_eigenrays()
        np.testing.assert_array_equal(first[0], second[0])
        np.testing.assert_array_equal(first[1], second[1])
        assert len(loss.eigenrays(0, 0)) == 2

    def test_empty_target(self, loss):
        intensity, phase = loss.sum_eigenrays()
        assert intensity.shape == (1, 2, 1)
        assert np.all(np.isinf(intensity))
        np.testing.assert_array_equal(phase, 0.0)

    def test_total(self, loss):
        loss.eigenrays(0, 1).append(make_ray(0.0, 70.0))
        intensity, phase = loss.total(0, 1)
        np.testing.assert_allclose(intensity, 70.0)

    def test_netcdf(self, loss, tmp_path):
        loss.eigenrays(0, 0).append(make_ray(1.0, 60.0))
        filename = tmp_path / 'proploss.nc'
        loss.to_netcdf(filename)
        ds = xr.open_dataset(filename, engine='scipy')
        np.testing.assert_array_equal(ds.num_eigenrays.values, [[1, 0]])
        np.testing.assert_allclose(ds.intensity.values[0, 0], 60.0)
        assert np.isinf(ds.intensity.values[0, 1, 0])
        ds.close()

    def test_shadowed_target(self):
        """A target below the bottom is never reached and gives no arrivals."""
        ocean = pw.OceanModel(bottom=pw.BoundaryFlat(3000.0))
        fan = pw.LaunchFan(de=np.arange(-30.0, 31.0, 5.0), az=[-1.0, 0.0, 1.0])
        wave = pw.WaveQueue(ocean, fan, (45.0, -45.0, -1000.0), targets=pw.Positions(45.02, -45.0, -4000.0))
        loss = wave.run(2.0)
        assert len(loss.eigenrays(0, 0)) == 0
        intensity, phase = loss.sum_eigenrays()
        assert np.isinf(intensity[0, 0, 0])

    def test_export_follows_run(self):
        """Exporting part way through a run does not freeze the totals."""
        ocean = pw.OceanModel(bottom=pw.BoundaryFlat(3000.0))
        fan = pw.LaunchFan(de=np.arange(-60.0, 61.0, 5.0), az=[-1.0, 0.0, 1.0], frequencies=[2000.0])
        wave = pw.WaveQueue(ocean, fan, (45.0, -45.0, -1000.0), targets=pw.Positions(45.02, -45.0, -1000.0))
        loss = wave.run(1.0)
        first = loss.to_dataset()
        assert first.num_eigenrays.values[0, 0] == 0
        assert np.isinf(first.intensity.values[0, 0, 0])

        wave.run(2.5)
        second = loss.to_dataset()
        assert second.num_eigenrays.values[0, 0] > 0
        intensity, phase = loss.total(0, 0)
        np.testing.assert_allclose(second.intensity.values[0, 0], intensity)
        np.testing.assert_allclose(second.phase.values[0, 0], phase)
