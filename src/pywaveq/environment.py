"""
Ocean Environment Specification
Pluggable sound speed, attenuation, boundary and reflection loss providers for
three dimensional wavefront propagation. Every provider is a pure function of
position; all queries are vectorized over arrays of points.

Positions are given as (latitude [deg], longitude [deg], altitude [m]), with
altitude negative below mean sea level. Gradients and normals are returned as
components in the local (up, north, east) frame.
"""

import numpy as np
import xarray as xr
from matplotlib import pyplot as plt

from .interpolation import linear_interp, linear_interp_slope, bilinear_interp


class EnvironmentFault(RuntimeError):
    """
    Raised when the environment cannot supply a physical value at a queried
    position. Propagation can not continue past this error.
    """


def _check_sound_speed(c, latitude, longitude, altitude):
    bad = ~np.isfinite(c) | (c <= 0)
    if np.any(bad):
        k = np.flatnonzero(bad)[0]
        latitude, longitude, altitude = np.broadcast_arrays(
            np.atleast_1d(latitude), np.atleast_1d(longitude), np.atleast_1d(altitude))
        raise EnvironmentFault(
            f'non-physical sound speed {np.ravel(c)[k]} m/s at '
            f'({np.ravel(latitude)[k]:.6f}, {np.ravel(longitude)[k]:.6f}, {np.ravel(altitude)[k]:.2f})'
        )
    return c


## Attenuation

class AttenuationConstant:
    """
    Attenuation that is linear in frequency.

    Parameters
    ----------
    coefficient : float
        attenuation in dB / (m kHz)
    """

    def __init__(self, coefficient=0.0):
        if coefficient < 0:
            raise ValueError('attenuation coefficient must be non-negative')
        self.coefficient = float(coefficient)

    def attenuation(self, latitude, longitude, altitude, frequencies, time=0.0):
        '''
        attenuation in dB/m with shape (k, f) for k positions and f frequencies
        '''
        altitude = np.atleast_1d(altitude)
        frequencies = np.atleast_1d(np.asarray(frequencies, dtype=float))
        return np.broadcast_to(
            self.coefficient * frequencies / 1000.0,
            (altitude.size, frequencies.size)
        ).copy()


class AttenuationThorp:
    """
    Thorp's empirical sea water absorption model, valid from about 100 Hz to 1 MHz.
    """

    def attenuation(self, latitude, longitude, altitude, frequencies, time=0.0):
        '''
        attenuation in dB/m with shape (k, f) for k positions and f frequencies
        '''
        altitude = np.atleast_1d(altitude)
        f2 = (np.atleast_1d(np.asarray(frequencies, dtype=float)) / 1000.0)**2
        db_per_km = 0.11*f2/(1 + f2) + 44*f2/(4100 + f2) + 2.75e-4*f2 + 0.003
        return np.broadcast_to(db_per_km / 1000.0, (altitude.size, f2.size)).copy()


## Sound speed profiles

class _Profile:
    """
    Base class for sound speed profiles. Subclasses implement `_speed(depth)`
    returning (c, dc/d(depth)) for an array of depths.
    """

    def __init__(self, attenuation=None):
        self.attenuation_model = AttenuationConstant(0.0) if attenuation is None else attenuation

    def sound_speed(self, latitude, longitude, altitude, time=0.0):
        c, _ = self._speed(-np.atleast_1d(np.asarray(altitude, dtype=float)))
        return c

    def sound_speed_gradient(self, latitude, longitude, altitude, time=0.0):
        '''
        gradient of sound speed, shape (k,3) in (up, north, east) components [1/s]
        '''
        _, dcdz = self._speed(-np.atleast_1d(np.asarray(altitude, dtype=float)))
        gradient = np.zeros((dcdz.size, 3))
        gradient[:, 0] = -dcdz
        return gradient

    def attenuation(self, latitude, longitude, altitude, frequencies, time=0.0):
        return self.attenuation_model.attenuation(latitude, longitude, altitude, frequencies, time)

    def _speed(self, depth):
        raise NotImplementedError


class ProfileLinear(_Profile):
    """
    Sound speed that changes linearly with depth, c = c0 + gradient * depth.

    Parameters
    ----------
    c0 : float
        sound speed at the ocean surface [m/s]
    gradient : float
        dc/d(depth) [1/s], default 0 (isovelocity)
    attenuation : attenuation model, optional
        default is no absorption
    """

    def __init__(self, c0=1500.0, gradient=0.0, attenuation=None):
        super().__init__(attenuation)
        if c0 <= 0:
            raise ValueError('c0 must be positive')
        self.c0 = float(c0)
        self.gradient = float(gradient)

    def _speed(self, depth):
        return self.c0 + self.gradient*depth, np.full(depth.shape, self.gradient)


class ProfileMunk(_Profile):
    """
    Munk deep water profile, c = c0 (1 + eps (eta - 1 + exp(-eta))) with
    eta = 2 (z - sofar_depth) / scale.

    Parameters
    ----------
    sofar_depth : float
        depth of the SOFAR channel axis [m]
    scale : float
        depth scale of the profile [m]
    c0 : float
        sound speed on the channel axis [m/s]
    eps : float
        parameter to munk equation
    attenuation : attenuation model, optional
    """

    def __init__(self, sofar_depth=1300.0, scale=1300.0, c0=1500.0, eps=0.00737, attenuation=None):
        super().__init__(attenuation)
        self.sofar_depth = float(sofar_depth)
        self.scale = float(scale)
        self.c0 = float(c0)
        self.eps = float(eps)

    def _speed(self, depth):
        eta = 2*(depth - self.sofar_depth)/self.scale
        c = self.c0*(1 + self.eps*(eta - 1 + np.exp(-eta)))
        dcdz = self.c0*self.eps*(1 - np.exp(-eta))*2/self.scale
        return c, dcdz


class ProfileGrid(_Profile):
    """
    Range independent sound speed profile tabulated in depth.

    Parameters
    ----------
    sound_speed : xr.DataArray
        1D array with coordinate dimension (depth,). Units of sound speed
        should be in [m/s] and depth in [m] (positive down). Depths must be
        monotonically increasing. Values are linearly interpolated, and
        extrapolated from the end intervals.
    attenuation : attenuation model, optional
    """

    def __init__(self, sound_speed, attenuation=None):
        super().__init__(attenuation)
        if not isinstance(sound_speed, xr.DataArray):
            raise TypeError("sound_speed must be an xarray DataArray.")
        if sound_speed.ndim != 1 or 'depth' not in sound_speed.dims:
            raise ValueError("sound_speed must be 1D with a 'depth' dimension.")
        if sound_speed.size < 2:
            raise ValueError("sound_speed must have at least 2 depths.")
        self.depth = np.ascontiguousarray(sound_speed.depth.values, dtype=float)
        self.values = np.ascontiguousarray(sound_speed.values, dtype=float)
        if not np.all(np.diff(self.depth) > 0):
            raise ValueError('Sound speed depth coordinates must be monotonically increasing.')
        self.sound_speed_data = sound_speed

    def _speed(self, depth):
        depth = np.ascontiguousarray(depth, dtype=float)
        return (linear_interp(depth, self.depth, self.values),
                linear_interp_slope(depth, self.depth, self.values))


def munk_ssp(z, sofar_depth=1300, eps=0.00737):
    '''
    given vector of depth, return munk sound speed profile
    munk equations from (here)[https://web.archive.org/web/2/https://oalib-acoustics.org/website_resources/AcousticsToolbox/manual/node8.html]

    Parameters
    ----------
    z : np.array
        vector of depth
    sofar_depth : float
        depth of the SOFAR channel
    eps : float
        parameter to munk equation
    '''
    c, _ = ProfileMunk(sofar_depth=sofar_depth, scale=sofar_depth, eps=eps)._speed(np.asarray(z, dtype=float))
    return c


## Reflection loss

class ReflectionLossConstant:
    """
    Reflection loss that is independent of angle and frequency.

    Parameters
    ----------
    amplitude : float
        loss in dB per reflection (positive is a loss)
    phase : float
        phase change in radians per reflection
    """

    def __init__(self, amplitude=0.0, phase=0.0):
        self.amplitude = float(amplitude)
        self.phase = float(phase)

    def reflect_loss(self, grazing, frequencies):
        '''
        loss [dB] and phase [rad] with shape (k, f)
        '''
        shape = (np.atleast_1d(grazing).size, np.atleast_1d(frequencies).size)
        return np.full(shape, self.amplitude), np.full(shape, self.phase)


class ReflectionLossRayleigh:
    """
    Rayleigh reflection from a fluid half-space bottom.

    Parameters
    ----------
    speed_ratio : float
        bottom sound speed / water sound speed
    density_ratio : float
        bottom density / water density
    attenuation : float
        bottom attenuation in dB per wavelength
    """

    def __init__(self, speed_ratio=1.2, density_ratio=1.5, attenuation=0.5):
        if speed_ratio <= 0 or density_ratio <= 0:
            raise ValueError('speed and density ratios must be positive')
        self.speed_ratio = float(speed_ratio)
        self.density_ratio = float(density_ratio)
        self.attenuation = float(attenuation)

    def reflection_coefficient(self, grazing):
        '''
        complex reflection coefficient for grazing angles in radians
        '''
        grazing = np.atleast_1d(np.asarray(grazing, dtype=float))
        delta = self.attenuation / (40*np.pi*np.log10(np.e))
        n = (1.0 + 1j*delta) / self.speed_ratio
        m = self.density_ratio
        sin_g = np.sin(grazing)
        root = np.sqrt(n**2 - np.cos(grazing)**2 + 0j)
        # branch that decays into the bottom
        root = np.where(root.imag < 0, -root, root)
        return (m*sin_g - root) / (m*sin_g + root)

    def reflect_loss(self, grazing, frequencies):
        '''
        loss [dB] and phase [rad] with shape (k, f)
        '''
        r = self.reflection_coefficient(grazing)
        nf = np.atleast_1d(frequencies).size
        loss = -20*np.log10(np.maximum(np.abs(r), 1e-300))
        return np.repeat(loss[:, np.newaxis], nf, axis=1), np.repeat(np.angle(r)[:, np.newaxis], nf, axis=1)


## Boundaries

class _Boundary:
    """
    Base class for reflecting boundaries. Subclasses implement
    `height(latitude, longitude, earth)` returning the boundary altitude [m]
    and its upward unit normal in (up, north, east) components.
    """

    def __init__(self, reflection_loss=None):
        self.reflection_loss = reflection_loss

    def height(self, latitude, longitude, earth):
        raise NotImplementedError


class BoundaryFlat(_Boundary):
    """
    Boundary at a constant depth below mean sea level.

    Parameters
    ----------
    depth : float
        boundary depth [m], positive down. 0 is the ocean surface.
    reflection_loss : reflection loss model, optional
        default is chosen by :class:`OceanModel` based on whether this is used
        as the surface or bottom.
    """

    def __init__(self, depth=0.0, reflection_loss=None):
        super().__init__(reflection_loss)
        self.depth = float(depth)

    def height(self, latitude, longitude, earth):
        latitude = np.atleast_1d(latitude)
        normal = np.zeros((latitude.size, 3))
        normal[:, 0] = 1.0
        return np.full(latitude.size, -self.depth), normal


def _slope_normal(dhdn, dhde):
    normal = np.stack((np.ones_like(dhdn), -dhdn, -dhde), axis=-1)
    return normal / np.linalg.norm(normal, axis=-1, keepdims=True)


class BoundarySlope(_Boundary):
    """
    Planar boundary that is tilted about a reference point.

    Parameters
    ----------
    latitude, longitude : float
        reference point (degrees)
    depth : float
        boundary depth at the reference point [m], positive down
    slope_north, slope_east : float
        slope angle (degrees) in the north and east directions. Positive
        slopes make the boundary deeper in that direction.
    reflection_loss : reflection loss model, optional
    """

    def __init__(self, latitude, longitude, depth, slope_north=0.0, slope_east=0.0, reflection_loss=None):
        super().__init__(reflection_loss)
        self.latitude = float(latitude)
        self.longitude = float(longitude)
        self.depth = float(depth)
        self.slope_north = float(slope_north)
        self.slope_east = float(slope_east)

    def height(self, latitude, longitude, earth):
        latitude = np.atleast_1d(np.asarray(latitude, dtype=float))
        longitude = np.atleast_1d(np.asarray(longitude, dtype=float))
        north = earth.radius * np.radians(latitude - self.latitude)
        east = earth.radius * np.cos(np.radians(self.latitude)) * np.radians(longitude - self.longitude)
        dhdn = -np.tan(np.radians(self.slope_north))
        dhde = -np.tan(np.radians(self.slope_east))
        height = -self.depth + dhdn*north + dhde*east
        return height, _slope_normal(np.full(height.shape, dhdn), np.full(height.shape, dhde))


class BoundaryGrid(_Boundary):
    """
    Boundary tabulated on a latitude/longitude grid.

    Parameters
    ----------
    depth : xr.DataArray
        2D array of boundary depth [m] (positive down) with coordinate
        dimensions (latitude, longitude) in degrees. Coordinates must be
        monotonically increasing. Values are bilinearly interpolated.
    reflection_loss : reflection loss model, optional
    """

    def __init__(self, depth, reflection_loss=None):
        super().__init__(reflection_loss)
        if not isinstance(depth, xr.DataArray):
            raise TypeError("depth must be an xarray DataArray.")
        if depth.ndim != 2 or set(depth.dims) != {'latitude', 'longitude'}:
            raise ValueError("depth must be 2D with 'latitude' and 'longitude' dimensions.")
        depth = depth.transpose('latitude', 'longitude')
        self.latitudes = np.ascontiguousarray(depth.latitude.values, dtype=float)
        self.longitudes = np.ascontiguousarray(depth.longitude.values, dtype=float)
        if len(self.latitudes) < 2 or len(self.longitudes) < 2:
            raise ValueError('depth grid must have at least 2 points on each axis.')
        if not (np.all(np.diff(self.latitudes) > 0) and np.all(np.diff(self.longitudes) > 0)):
            raise ValueError('Depth coordinates must be monotonically increasing.')
        self.values = np.ascontiguousarray(depth.values, dtype=float)
        if not np.all(np.isfinite(self.values)):
            raise ValueError('depth grid must not contain missing values.')
        self.depth_data = depth

    def height(self, latitude, longitude, earth):
        latitude = np.ascontiguousarray(np.atleast_1d(latitude), dtype=float)
        longitude = np.ascontiguousarray(np.atleast_1d(longitude), dtype=float)
        depth, ddlat, ddlng = bilinear_interp(latitude, longitude, self.latitudes, self.longitudes, self.values)
        meters_per_degree = earth.radius * np.pi / 180.0
        dhdn = -ddlat / meters_per_degree
        dhde = -ddlng / (meters_per_degree * np.cos(np.radians(latitude)))
        return -depth, _slope_normal(dhdn, dhde)


## Ocean

class OceanModel:
    """
    Ocean Environment Specification (3D)
    Combines the ocean surface, ocean bottom and sound speed profile into the
    environment queries used by the propagation engine.

    Parameters
    ----------
    surface : boundary model, optional
        default is a flat surface at mean sea level. A surface without its own
        reflection loss model is treated as a pressure release boundary
        (no loss, phase of -pi).
    bottom : boundary model, optional
        default is a flat bottom at 5000 m depth. A bottom without its own
        reflection loss model is perfectly reflecting (no loss, no phase).
    profile : profile model, optional
        default is an isovelocity 1500 m/s ocean without absorption.
    """

    def __init__(self, surface=None, bottom=None, profile=None):
        self.surface = BoundaryFlat(0.0) if surface is None else surface
        self.bottom = BoundaryFlat(5000.0) if bottom is None else bottom
        self.profile = ProfileLinear(1500.0) if profile is None else profile

        self.surface_loss = (ReflectionLossConstant(0.0, -np.pi)
                             if self.surface.reflection_loss is None else self.surface.reflection_loss)
        self.bottom_loss = (ReflectionLossConstant(0.0, 0.0)
                            if self.bottom.reflection_loss is None else self.bottom.reflection_loss)

    def sound_speed(self, latitude, longitude, altitude, time=0.0):
        '''
        sound speed [m/s] at each position

        Raises
        ------
        EnvironmentFault
            if the sound speed is not finite and positive at every position
        '''
        c = np.asarray(self.profile.sound_speed(latitude, longitude, altitude, time), dtype=float)
        return _check_sound_speed(c, latitude, longitude, altitude)

    def sound_speed_gradient(self, latitude, longitude, altitude, time=0.0):
        '''
        sound speed gradient with shape (k,3) in (up, north, east) components
        '''
        return np.asarray(self.profile.sound_speed_gradient(latitude, longitude, altitude, time), dtype=float)

    def attenuation(self, latitude, longitude, altitude, frequencies, time=0.0):
        '''
        attenuation [dB/m] with shape (k, f)
        '''
        return self.profile.attenuation(latitude, longitude, altitude, frequencies, time)

    def surface_height(self, latitude, longitude, earth):
        return self.surface.height(latitude, longitude, earth)

    def bottom_height(self, latitude, longitude, earth):
        return self.bottom.height(latitude, longitude, earth)

    def plot_profile(self, max_depth=5000.0, latitude=0.0, longitude=0.0, **kwargs):
        '''
        plot the sound speed profile against depth
        '''
        depth = np.linspace(0, max_depth, 500)
        c = self.sound_speed(np.full(depth.shape, latitude), np.full(depth.shape, longitude), -depth)

        plot_kwargs = {'c': 'k', 'lw': 1}
        plot_kwargs.update(kwargs)
        fig = plt.figure(figsize=(3, 6))
        plt.plot(c, depth, **plot_kwargs)
        plt.xlabel('sound speed [m/s]')
        plt.ylabel('depth [m]')
        plt.ylim(max_depth, 0)
        return fig


__all__ = ['EnvironmentFault', 'OceanModel',
           'ProfileLinear', 'ProfileMunk', 'ProfileGrid', 'munk_ssp',
           'AttenuationConstant', 'AttenuationThorp',
           'BoundaryFlat', 'BoundarySlope', 'BoundaryGrid',
           'ReflectionLossConstant', 'ReflectionLossRayleigh']
