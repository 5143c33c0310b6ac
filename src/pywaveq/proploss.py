"""
Propagation loss accumulator.
Collects the eigenray list for every target and coherently sums their
complex pressure contributions into a total intensity and phase.
"""
import logging

import numpy as np
import xarray as xr

from .geometry import Positions
from .ray_objects import EigenrayList

logger = logging.getLogger(__name__)


def coherent_sum(eigenrays, frequencies):
    '''
    Coherent sum of the complex pressure of a list of eigenrays.

    Each path contributes an amplitude 10^(-intensity/20) with phase
    phase - 2 pi f t.

    Parameters
    ----------
    eigenrays : iterable of Eigenray
    frequencies : np.array (F,)

    Returns
    -------
    intensity : np.array (F,)
        -20 log10 |p| in dB; inf when there are no arrivals
    phase : np.array (F,)
        phase of the summed pressure [rad]; 0 when there are no arrivals
    '''
    frequencies = np.atleast_1d(np.asarray(frequencies, dtype=float))
    pressure = np.zeros(len(frequencies), dtype=complex)
    for ray in eigenrays:
        amplitude = 10**(-ray.intensity/20)
        pressure += amplitude*np.exp(1j*(ray.phase - 2*np.pi*frequencies*ray.time))

    magnitude = np.abs(pressure)
    with np.errstate(divide='ignore'):
        intensity = np.where(magnitude > 0, -20*np.log10(magnitude), np.inf)
    phase = np.where(magnitude > 0, np.angle(pressure), 0.0)
    return intensity, phase


class PropagationLoss:
    """
    Eigenray lists and summed propagation loss for a grid of targets.

    Parameters
    ----------
    targets : Positions
        target locations, (rows, cols)
    frequencies : array like
        frequencies of the run [Hz]

    Attributes
    ----------
    intensity : np.array (rows, cols, F) or None
        summed propagation loss [dB], set by :meth:`sum_eigenrays`
    phase : np.array (rows, cols, F) or None
        phase of the summed pressure [rad], set by :meth:`sum_eigenrays`
    """

    def __init__(self, targets, frequencies):
        if not isinstance(targets, Positions):
            targets = Positions(*targets)
        self.targets = targets
        self.frequencies = np.atleast_1d(np.asarray(frequencies, dtype=float))
        rows, cols = targets.shape
        self._lists = [[EigenrayList(self.frequencies) for _ in range(cols)] for _ in range(rows)]
        self.intensity = None
        self.phase = None

    @property
    def shape(self):
        return self.targets.shape

    def eigenrays(self, row, col):
        '''eigenray list of the target at (row, col)'''
        return self._lists[row][col]

    def eigenray_lists(self):
        '''every eigenray list, in row major target order'''
        return [rays for row in self._lists for rays in row]

    def sum_eigenrays(self):
        '''
        Coherently sum the eigenrays of every target. The eigenray lists are
        not modified, so calling this again gives the same result.

        Returns
        -------
        intensity, phase : np.array (rows, cols, F)
        '''
        rows, cols = self.shape
        nf = len(self.frequencies)
        intensity = np.empty((rows, cols, nf))
        phase = np.empty((rows, cols, nf))
        for r in range(rows):
            for c in range(cols):
                intensity[r, c], phase[r, c] = coherent_sum(self._lists[r][c], self.frequencies)
        self.intensity = intensity
        self.phase = phase
        logger.debug('summed eigenrays for %d targets', rows*cols)
        return intensity, phase

    def total(self, row, col):
        '''
        summed intensity and phase of one target for every frequency
        '''
        return coherent_sum(self._lists[row][col], self.frequencies)

    def to_dataset(self):
        '''
        xarray Dataset of the summed loss with dimensions (row, col, frequency),
        plus the number of eigenrays per target
        '''
        self.sum_eigenrays()
        dims = ('row', 'col')
        counts = np.array([[len(rays) for rays in row] for row in self._lists], dtype=np.int32)
        return xr.Dataset(
            {
                'intensity': (dims + ('frequency',), self.intensity),
                'phase': (dims + ('frequency',), self.phase),
                'num_eigenrays': (dims, counts),
                'latitude': (dims, np.asarray(self.targets.latitude)),
                'longitude': (dims, np.asarray(self.targets.longitude)),
                'altitude': (dims, np.asarray(self.targets.altitude)),
            },
            coords={'frequency': self.frequencies},
        )

    def to_netcdf(self, filename):
        self.to_dataset().to_netcdf(filename, engine='scipy')


__all__ = ['PropagationLoss', 'coherent_sum']
