import csv
from dataclasses import dataclass, field
from enum import IntEnum

import numpy as np
import xarray as xr
from matplotlib import pyplot as plt
from scipy import io


class RayStatus(IntEnum):
    """State tag for each cell of the wavefront grid."""
    ALIVE = 0
    DIVERGED = 1


def _check_increasing(name, values, min_length):
    values = np.atleast_1d(np.asarray(values, dtype=float))
    if values.ndim != 1:
        raise ValueError(f'{name} must be one dimensional')
    if len(values) < min_length:
        raise ValueError(f'{name} must contain at least {min_length} values, got {len(values)}')
    if not np.all(np.isfinite(values)):
        raise ValueError(f'{name} must be finite')
    if not np.all(np.diff(values) > 0):
        raise ValueError(f'{name} must be strictly increasing')
    return values


@dataclass
class LaunchFan:
    """
    Ray fan configuration, fixed for a run.

    Parameters
    ----------
    de : array like
        launch depression/elevation angles in degrees, positive up. Must be
        strictly increasing, inside (-90, 90), with at least 3 angles.
    az : array like
        launch azimuth angles in degrees, clockwise from north. Must be
        strictly increasing with at least 3 angles.
    frequencies : array like
        carrier frequencies in Hz. Must be strictly increasing and positive.
    """
    de: np.ndarray
    az: np.ndarray
    frequencies: np.ndarray = field(default_factory=lambda: np.array([1000.0]))

    def __post_init__(self):
        self.de = _check_increasing('de', self.de, 3)
        self.az = _check_increasing('az', self.az, 3)
        self.frequencies = _check_increasing('frequencies', self.frequencies, 1)
        if self.de[0] <= -90 or self.de[-1] >= 90:
            raise ValueError('de angles must be inside (-90, 90) degrees')
        if self.frequencies[0] <= 0:
            raise ValueError('frequencies must be positive')
        for array in (self.de, self.az, self.frequencies):
            array.setflags(write=False)

    @property
    def shape(self):
        return (len(self.de), len(self.az))

    @property
    def num_frequencies(self):
        return len(self.frequencies)


class WavefrontLayer:
    """
    Ray states of the whole fan at one instant of simulated time.

    Attributes
    ----------
    time : float
        simulated time of the layer [s]
    position : np.array (M,N,3)
        earth-centered cartesian ray positions [m]; M is the DE dimension and
        N is the AZ dimension
    slowness : np.array (M,N,3)
        slowness vectors, direction / sound speed [s/m]
    sound_speed : np.array (M,N)
        sound speed at each ray position [m/s]
    phase : np.array (M,N,F)
        phase accumulated from reflections and caustics for each frequency [rad]
    loss : np.array (M,N,F)
        absorption and reflection loss accumulated along each ray [dB]
    surface, bottom, caustic : np.array (M,N)
        surface reflection, bottom reflection and caustic counts
    orientation : np.array (M,N)
        sign of the ray tube orientation, corrected for reflections. 0 until known.
    status : np.array (M,N)
        :class:`RayStatus` of each ray
    """

    def __init__(self, time, position, slowness, sound_speed, phase, loss,
                 surface, bottom, caustic, orientation, status):
        self.time = float(time)
        self.position = position
        self.slowness = slowness
        self.sound_speed = sound_speed
        self.phase = phase
        self.loss = loss
        self.surface = surface
        self.bottom = bottom
        self.caustic = caustic
        self.orientation = orientation
        self.status = status

    _arrays = ('position', 'slowness', 'sound_speed', 'phase', 'loss',
               'surface', 'bottom', 'caustic', 'orientation', 'status')

    @classmethod
    def initial(cls, position, slowness, sound_speed, num_frequencies):
        '''
        layer at time zero, every ray starting at the source
        '''
        shape = sound_speed.shape
        return cls(
            0.0, position, slowness, sound_speed,
            np.zeros(shape + (num_frequencies,)), np.zeros(shape + (num_frequencies,)),
            np.zeros(shape, dtype=int), np.zeros(shape, dtype=int), np.zeros(shape, dtype=int),
            np.zeros(shape, dtype=np.int8), np.full(shape, RayStatus.ALIVE, dtype=np.int8),
        )

    @property
    def shape(self):
        return self.sound_speed.shape

    @property
    def alive(self):
        return self.status == RayStatus.ALIVE

    def copy(self):
        return WavefrontLayer(self.time, *[getattr(self, name).copy() for name in self._arrays])

    def freeze(self):
        '''
        mark every array read-only, once a layer is finalized it is never changed
        '''
        for name in self._arrays:
            getattr(self, name).setflags(write=False)
        return self


def ray_tube(position):
    '''
    derivatives of wavefront position with respect to DE and AZ index

    Parameters
    ----------
    position : np.array (M,N,3)

    Returns
    -------
    dx_dde, dx_daz : np.array (M,N,3)
        second order differences, one-sided at the fan edges
    '''
    return (np.gradient(position, axis=0, edge_order=2),
            np.gradient(position, axis=1, edge_order=2))


class WavefrontSnapshot:
    """
    Export view of a single wavefront layer.

    Parameters
    ----------
    layer : WavefrontLayer
        finalized layer
    fan : LaunchFan
    earth : EarthModel
    """

    def __init__(self, layer, fan, earth):
        self.time = layer.time
        self.de = fan.de
        self.az = fan.az
        self.frequencies = fan.frequencies
        self.latitude, self.longitude, self.altitude = earth.to_geodetic(layer.position)
        self.phase = layer.phase.copy()
        self.surface = layer.surface.astype(np.int32)
        self.bottom = layer.bottom.astype(np.int32)
        self.caustic = layer.caustic.astype(np.int32)
        self.status = layer.status.copy()

    def to_dataset(self):
        '''
        xarray Dataset with dimensions (de, az), phase also has a frequency dimension
        '''
        dims = ['de', 'az']
        return xr.Dataset(
            {
                'latitude': (dims, self.latitude),
                'longitude': (dims, self.longitude),
                'altitude': (dims, self.altitude),
                'phase': (dims + ['frequency'], self.phase),
                'surface': (dims, self.surface),
                'bottom': (dims, self.bottom),
                'caustic': (dims, self.caustic),
                'status': (dims, self.status),
            },
            coords={'de': self.de, 'az': self.az, 'frequency': self.frequencies, 'time': self.time},
        )


class WavefrontRecorder:
    """
    Append-only record of wavefront snapshots, one per time step.

    Parameters
    ----------
    every : int
        keep one snapshot every `every` steps, default 1
    """

    def __init__(self, every=1):
        if every < 1:
            raise ValueError('every must be at least 1')
        self.every = int(every)
        self.snapshots = []
        self._count = 0

    def record(self, snapshot):
        if self._count % self.every == 0:
            self.snapshots.append(snapshot)
        self._count += 1

    def __len__(self):
        return len(self.snapshots)

    def to_dataset(self):
        '''
        xarray Dataset with dimensions (time, de, az)
        '''
        if len(self.snapshots) == 0:
            raise ValueError('no wavefronts have been recorded')
        return xr.concat([snap.to_dataset() for snap in self.snapshots], dim='time')

    def to_netcdf(self, filename):
        self.to_dataset().to_netcdf(filename, engine='scipy')

    def plot_ray_fan(self, az_index=None, **kwargs):
        '''
        plot latitude against depth for every DE ray at one azimuth

        Parameters
        ----------
        az_index : int
            azimuth index to plot, default is the middle of the fan
        '''
        ds = self.to_dataset()
        if az_index is None:
            az_index = ds.sizes['az'] // 2

        n_de = ds.sizes['de']
        alpha_val = min(1.0, 10/n_de)
        plot_kwargs = {'c': 'k', 'lw': 1, 'alpha': alpha_val}
        plot_kwargs.update(kwargs)
        _ = plt.plot(ds.latitude[:, :, az_index].values, -ds.altitude[:, :, az_index].values, **plot_kwargs)
        plt.xlabel('latitude [deg]')
        plt.ylabel('depth [m]')
        plt.gca().invert_yaxis()
        plt.title('Ray Fan')


@dataclass(frozen=True, eq=False)
class Eigenray:
    """
    A single acoustic path connecting the source to a target.

    Attributes
    ----------
    time : float
        travel time [s]
    intensity : np.array (F,)
        propagation loss for each frequency [dB], positive is a loss
    phase : np.array (F,)
        phase change from reflections and caustics for each frequency [rad]
    source_de, source_az : float
        launch angles at the source [deg]
    target_de, target_az : float
        arrival angles at the target [deg], direction of travel
    surface, bottom, caustic : int
        number of surface reflections, bottom reflections and caustics
    """
    time: float
    intensity: np.ndarray
    phase: np.ndarray
    source_de: float
    source_az: float
    target_de: float
    target_az: float
    surface: int = 0
    bottom: int = 0
    caustic: int = 0

    def __post_init__(self):
        for name in ('intensity', 'phase'):
            array = np.array(getattr(self, name), dtype=float, ndmin=1)
            array.setflags(write=False)
            object.__setattr__(self, name, array)


class EigenrayList:
    """
    Eigenrays found for a single target, in the order they were detected.

    Parameters
    ----------
    frequencies : np.array
        frequencies for the intensity and phase of each eigenray
    """

    columns = ('time', 'intensity', 'phase', 's_de', 's_az', 't_de', 't_az', 'srf', 'btm', 'cst')

    def __init__(self, frequencies):
        self.frequencies = np.atleast_1d(np.asarray(frequencies, dtype=float))
        self._rays = []

    def append(self, ray):
        if not isinstance(ray, Eigenray):
            raise TypeError('Can only append Eigenray objects')
        self._rays.append(ray)

    def __len__(self):
        return len(self._rays)

    def __iter__(self):
        return iter(self._rays)

    def __getitem__(self, key):
        return self._rays[key]

    def __repr__(self):
        return f'EigenrayList({len(self)} eigenrays)'

    @property
    def times(self):
        return np.array([ray.time for ray in self._rays])

    @property
    def source_des(self):
        return np.array([ray.source_de for ray in self._rays])

    @property
    def target_des(self):
        return np.array([ray.target_de for ray in self._rays])

    def to_dataset(self):
        '''
        xarray Dataset with dimensions (eigenray, frequency)
        '''
        n = len(self._rays)
        nf = len(self.frequencies)
        intensity = np.array([ray.intensity for ray in self._rays]).reshape(n, nf)
        phase = np.array([ray.phase for ray in self._rays]).reshape(n, nf)

        def attr(name, dtype=float):
            return ('eigenray', np.array([getattr(ray, name) for ray in self._rays], dtype=dtype))

        return xr.Dataset(
            {
                'travel_time': attr('time'),
                'intensity': (('eigenray', 'frequency'), intensity),
                'phase': (('eigenray', 'frequency'), phase),
                'source_de': attr('source_de'),
                'source_az': attr('source_az'),
                'target_de': attr('target_de'),
                'target_az': attr('target_az'),
                'surface': attr('surface', np.int32),
                'bottom': attr('bottom', np.int32),
                'caustic': attr('caustic', np.int32),
            },
            coords={'eigenray': np.arange(n), 'frequency': self.frequencies},
        )

    def to_csv(self, filename, frequency_index=0):
        """
        Write eigenrays as a table with columns
        time,intensity,phase,s_de,s_az,t_de,t_az,srf,btm,cst

        Parameters
        ----------
        filename : str
        frequency_index : int
            frequency used for the intensity and phase columns
        """
        with open(filename, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(self.columns)
            for ray in self._rays:
                writer.writerow([
                    *[repr(float(v)) for v in (ray.time, ray.intensity[frequency_index], ray.phase[frequency_index],
                                               ray.source_de, ray.source_az, ray.target_de, ray.target_az)],
                    int(ray.surface), int(ray.bottom), int(ray.caustic),
                ])

    def save_mat(self, filename):
        """
        Save eigenrays to a .mat file.

        Parameters
        ----------
        filename : str
            Name of the output .mat file
        """
        ds = self.to_dataset()
        data = {name: ds[name].values for name in ds.data_vars}
        data['frequencies'] = self.frequencies
        io.savemat(filename, {'eigenrays': data})

    def plot_angle_time(self, **kwargs):
        '''
        plot arrival angle against travel time
        '''
        plt.scatter(self.times, self.target_des, **kwargs)
        plt.xlabel('time [s]')
        plt.ylabel('arrival angle [deg]')
        plt.title('Arrival Angle vs Time')


__all__ = ['RayStatus', 'LaunchFan', 'WavefrontLayer', 'ray_tube', 'WavefrontSnapshot', 'WavefrontRecorder',
           'Eigenray', 'EigenrayList']
