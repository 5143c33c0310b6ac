"""
Earth geometry for wavefront propagation.
Positions are (latitude, longitude, altitude) on a spherical earth whose radius
is derived once from an area of operations latitude. Rays are integrated in
earth-centered cartesian coordinates, so this module converts between the two
and builds local (up, north, east) frames.
"""

from dataclasses import dataclass

import numpy as np

# WGS-84 parameters
WGS84_A = 6378137.0
WGS84_B = 6356752.314


def earth_radius(latitude):
    """
    Gaussian mean radius of curvature of the WGS-84 ellipsoid.

    Parameters
    ----------
    latitude : float
        area of operations latitude (degrees)

    Returns
    -------
    radius : float
        earth radius (meters)
    """
    e2 = 1.0 - (WGS84_B / WGS84_A)**2
    s = np.sin(np.radians(latitude))
    return WGS84_A * np.sqrt(1.0 - e2) / (1.0 - e2 * s * s)


@dataclass(frozen=True)
class EarthModel:
    """
    Spherical earth used by every geometry computation of a run.

    Parameters
    ----------
    radius : float
        earth radius in meters. Use :meth:`from_latitude` to derive it from
        an area of operations latitude.
    """
    radius: float = WGS84_A

    def __post_init__(self):
        if not np.isfinite(self.radius) or self.radius <= 0:
            raise ValueError(f'earth radius must be positive, got {self.radius}')

    @classmethod
    def from_latitude(cls, latitude):
        return cls(radius=float(earth_radius(latitude)))

    def to_cartesian(self, latitude, longitude, altitude):
        """
        convert (latitude, longitude, altitude) to earth-centered cartesian

        Parameters
        ----------
        latitude, longitude : array like
            position in degrees
        altitude : array like
            height above mean sea level (meters, negative below)

        Returns
        -------
        xyz : np.array (...,3)
        """
        lat = np.radians(np.asarray(latitude, dtype=float))
        lng = np.radians(np.asarray(longitude, dtype=float))
        rho = self.radius + np.asarray(altitude, dtype=float)
        return np.stack((
            rho * np.cos(lat) * np.cos(lng),
            rho * np.cos(lat) * np.sin(lng),
            rho * np.sin(lat),
        ), axis=-1)

    def to_geodetic(self, xyz):
        """
        convert earth-centered cartesian to (latitude, longitude, altitude)

        Parameters
        ----------
        xyz : np.array (...,3)

        Returns
        -------
        latitude, longitude, altitude : np.array
            degrees, degrees, meters
        """
        xyz = np.asarray(xyz, dtype=float)
        rho = np.linalg.norm(xyz, axis=-1)
        latitude = np.degrees(np.arcsin(xyz[..., 2] / rho))
        longitude = np.degrees(np.arctan2(xyz[..., 1], xyz[..., 0]))
        return latitude, longitude, rho - self.radius

    def altitude(self, xyz):
        """height of cartesian points above the earth radius (meters)"""
        return np.linalg.norm(xyz, axis=-1) - self.radius


def local_frame(xyz):
    """
    Local unit vectors at cartesian points.

    Parameters
    ----------
    xyz : np.array (...,3)

    Returns
    -------
    up, north, east : np.array (...,3)
    """
    xyz = np.asarray(xyz, dtype=float)
    up = xyz / np.linalg.norm(xyz, axis=-1, keepdims=True)
    east = np.stack((-xyz[..., 1], xyz[..., 0], np.zeros_like(xyz[..., 0])), axis=-1)
    east_norm = np.linalg.norm(east, axis=-1, keepdims=True)
    # at the poles east is undefined, pick the y axis
    east = np.where(east_norm > 0, east / np.where(east_norm > 0, east_norm, 1.0),
                    np.array([0.0, 1.0, 0.0]))
    north = np.cross(up, east)
    return up, north, east


def direction_vector(xyz, de, az):
    """
    Unit direction for depression/elevation and azimuth angles at a point.

    DE is positive up, AZ is measured clockwise from north.

    Parameters
    ----------
    xyz : np.array (...,3)
        position(s) where the local frame is taken
    de, az : array like
        angles in degrees, broadcast against each other

    Returns
    -------
    direction : np.array (...,3)
    """
    up, north, east = local_frame(xyz)
    de = np.radians(np.asarray(de, dtype=float))[..., np.newaxis]
    az = np.radians(np.asarray(az, dtype=float))[..., np.newaxis]
    return (np.sin(de) * up
            + np.cos(de) * np.cos(az) * north
            + np.cos(de) * np.sin(az) * east)


def direction_angles(xyz, direction):
    """
    Depression/elevation and azimuth angles (degrees) of a direction at a point.

    Parameters
    ----------
    xyz : np.array (...,3)
    direction : np.array (...,3)
        need not be normalized

    Returns
    -------
    de, az : np.array
    """
    up, north, east = local_frame(xyz)
    direction = np.asarray(direction, dtype=float)
    direction = direction / np.linalg.norm(direction, axis=-1, keepdims=True)
    de = np.degrees(np.arcsin(np.clip(np.sum(direction * up, axis=-1), -1.0, 1.0)))
    az = np.degrees(np.arctan2(np.sum(direction * east, axis=-1),
                               np.sum(direction * north, axis=-1)))
    return de, az


class Positions:
    """
    Ordered 2D set of fixed positions, e.g. the receivers of a deployed array.

    Parameters
    ----------
    latitude, longitude, altitude : array like
        broadcast against each other to a 2D shape (rows, cols). Scalars give
        a single (1,1) position.

    Attributes
    ----------
    shape : tuple
        (rows, cols)
    latitude, longitude, altitude : np.array (rows, cols)
    """

    def __init__(self, latitude, longitude, altitude):
        latitude, longitude, altitude = np.broadcast_arrays(
            np.asarray(latitude, dtype=float),
            np.asarray(longitude, dtype=float),
            np.asarray(altitude, dtype=float),
        )
        if latitude.ndim > 2:
            raise ValueError('positions must be at most 2 dimensional')
        shape = latitude.shape
        if latitude.ndim == 0:
            shape = (1, 1)
        elif latitude.ndim == 1:
            shape = (1, latitude.shape[0])
        if latitude.size == 0:
            raise ValueError('positions must not be empty')
        self.latitude = latitude.reshape(shape).copy()
        self.longitude = longitude.reshape(shape).copy()
        self.altitude = altitude.reshape(shape).copy()
        if not (np.all(np.isfinite(self.latitude)) and np.all(np.isfinite(self.longitude))
                and np.all(np.isfinite(self.altitude))):
            raise ValueError('positions must be finite')
        for array in (self.latitude, self.longitude, self.altitude):
            array.setflags(write=False)

    @property
    def shape(self):
        return self.latitude.shape

    def __len__(self):
        return self.latitude.size

    def __getitem__(self, key):
        row, col = key
        return (float(self.latitude[row, col]), float(self.longitude[row, col]),
                float(self.altitude[row, col]))

    def cartesian(self, earth):
        """earth-centered cartesian coordinates, shape (rows, cols, 3)"""
        return earth.to_cartesian(self.latitude, self.longitude, self.altitude)


__all__ = ['EarthModel', 'Positions', 'earth_radius', 'local_frame', 'direction_vector',
           'direction_angles']
