"""
Wavefront propagation engine.
Integrates a 2D fan of rays (DE x AZ) through a 3D ocean on a spherical earth
with a fixed time step, reflecting rays from the surface and bottom, and hands
each finalized wavefront to the eigenray search.
"""
import logging

import numpy as np
from tqdm import tqdm

from .geometry import EarthModel, Positions, direction_vector, local_frame
from .ray_objects import LaunchFan, RayStatus, WavefrontLayer, WavefrontSnapshot, ray_tube
from .eigenrays import EigenraySearch
from .proploss import PropagationLoss

logger = logging.getLogger(__name__)

# reflections a single ray may undergo inside one time step
MAX_REFLECTIONS_PER_STEP = 4
# phase change for each caustic crossing
CAUSTIC_PHASE = -np.pi


def _to_cartesian(vectors, xyz):
    '''
    convert (up, north, east) components at points xyz into cartesian vectors
    '''
    up, north, east = local_frame(xyz)
    return vectors[..., 0:1]*up + vectors[..., 1:2]*north + vectors[..., 2:3]*east


def ray_derivatives(position, slowness, ocean, earth):
    '''
    ray equations in time for arrays of ray states

    dx/dt = c^2 s
    ds/dt = -grad(c) / c

    Parameters
    ----------
    position : np.array (k,3)
        earth-centered cartesian position [m]
    slowness : np.array (k,3)
        slowness vector [s/m]
    ocean : OceanModel
    earth : EarthModel

    Returns
    -------
    dxdt, dsdt : np.array (k,3)
    c : np.array (k,)
        sound speed at each position. Rays with non-finite states get NaN
        derivatives instead of an environment query.
    '''
    dxdt = np.full(position.shape, np.nan)
    dsdt = np.full(position.shape, np.nan)
    c = np.full(position.shape[0], np.nan)

    finite = np.all(np.isfinite(position), axis=1) & np.all(np.isfinite(slowness), axis=1)
    if not np.any(finite):
        return dxdt, dsdt, c

    x = position[finite]
    s = slowness[finite]
    lat, lng, alt = earth.to_geodetic(x)
    cf = ocean.sound_speed(lat, lng, alt)
    gradient = _to_cartesian(ocean.sound_speed_gradient(lat, lng, alt), x)

    dxdt[finite] = cf[:, np.newaxis]**2 * s
    dsdt[finite] = -gradient / cf[:, np.newaxis]
    c[finite] = cf
    return dxdt, dsdt, c


def rk4_step(position, slowness, dt, ocean, earth):
    '''
    advance ray states by dt with the classic 4th order Runge-Kutta scheme

    Parameters
    ----------
    position, slowness : np.array (k,3)
    dt : float or np.array (k,)
        time step for each ray [s]

    Returns
    -------
    position, slowness : np.array (k,3)
    '''
    dt = np.broadcast_to(np.asarray(dt, dtype=float), position.shape[:1])[:, np.newaxis]
    k1x, k1s, _ = ray_derivatives(position, slowness, ocean, earth)
    k2x, k2s, _ = ray_derivatives(position + 0.5*dt*k1x, slowness + 0.5*dt*k1s, ocean, earth)
    k3x, k3s, _ = ray_derivatives(position + 0.5*dt*k2x, slowness + 0.5*dt*k2s, ocean, earth)
    k4x, k4s, _ = ray_derivatives(position + dt*k3x, slowness + dt*k3s, ocean, earth)
    return (position + dt/6*(k1x + 2*k2x + 2*k3x + k4x),
            slowness + dt/6*(k1s + 2*k2s + 2*k3s + k4s))


def _clearance(position, boundary, ocean, earth):
    '''
    distance inside the water column from the surface ('surface') or bottom
    ('bottom'), negative once a ray has crossed that boundary
    '''
    lat, lng, alt = earth.to_geodetic(position)
    if boundary == 'surface':
        height, normal = ocean.surface_height(lat, lng, earth)
        return height - alt, normal
    height, normal = ocean.bottom_height(lat, lng, earth)
    return alt - height, normal


def _crossing_fraction(x0, x1, g0, g1, boundary, ocean, earth, iterations=3):
    '''
    fraction of the chord x0 -> x1 at which the boundary is crossed,
    found with regula falsi on the clearance along the chord
    '''
    lo = np.zeros(g0.shape)
    hi = np.ones(g0.shape)
    glo = np.maximum(g0, 0.0)
    ghi = g1
    frac = glo / (glo - ghi)
    for _ in range(iterations):
        g, _ = _clearance(x0 + frac[:, np.newaxis]*(x1 - x0), boundary, ocean, earth)
        inside = g >= 0
        lo = np.where(inside, frac, lo)
        glo = np.where(inside, g, glo)
        hi = np.where(inside, hi, frac)
        ghi = np.where(inside, ghi, g)
        denom = glo - ghi
        frac = np.where(denom > 0, lo + (hi - lo)*glo/np.where(denom > 0, denom, 1.0), frac)
    return np.clip(frac, 0.0, 1.0)


def _reflect(x0, s0, x1, s1, remaining, hit, boundary, state, ocean, earth, frequencies):
    '''
    reflect the rays in `hit` from a boundary and integrate the rest of their step
    '''
    idx = np.flatnonzero(hit)
    g0, _ = _clearance(x0[idx], boundary, ocean, earth)
    g1, _ = _clearance(x1[idx], boundary, ocean, earth)
    frac = _crossing_fraction(x0[idx], x1[idx], g0, g1, boundary, ocean, earth)

    xc = x0[idx] + frac[:, np.newaxis]*(x1[idx] - x0[idx])
    sc = s0[idx] + frac[:, np.newaxis]*(s1[idx] - s0[idx])
    _, normal = _clearance(xc, boundary, ocean, earth)
    normal = _to_cartesian(normal, xc)

    sn = np.sum(sc*normal, axis=1)
    reflected = sc - 2*sn[:, np.newaxis]*normal
    grazing = np.arcsin(np.clip(np.abs(sn)/np.linalg.norm(sc, axis=1), 0.0, 1.0))

    model = ocean.surface_loss if boundary == 'surface' else ocean.bottom_loss
    amplitude, phase = model.reflect_loss(grazing, frequencies)
    state['loss'][idx] += amplitude
    state['phase'][idx] += phase
    state[boundary][idx] += 1

    rem = remaining[idx]*(1 - frac)
    x_new, s_new = rk4_step(xc, reflected, rem, ocean, earth)
    x0[idx] = xc
    s0[idx] = reflected
    x1[idx] = x_new
    s1[idx] = s_new
    remaining[idx] = rem


def _orientation(layer):
    '''
    sign of the ray tube volume element, flipped once per reflection so
    that reflections alone do not change it
    '''
    dx_dde, dx_daz = ray_tube(layer.position)
    volume = np.sum(np.cross(dx_dde, dx_daz) * layer.slowness, axis=-1)
    parity = np.where((layer.surface + layer.bottom) % 2 == 0, 1, -1)
    return (np.sign(volume) * parity).astype(np.int8)


def _uniform_neighbors(layer):
    '''
    cells whose DE and AZ neighbors are alive and share their reflection count
    '''
    bounces = layer.surface + layer.bottom
    ok = layer.alive.copy()
    for axis in (0, 1):
        for shift in (1, -1):
            neighbor = np.roll(bounces, shift, axis=axis)
            neighbor_alive = np.roll(layer.alive, shift, axis=axis)
            same = (neighbor == bounces) & neighbor_alive
            # np.roll wraps at the fan edges, those cells only have one neighbor
            edge = [slice(None), slice(None)]
            edge[axis] = 0 if shift == 1 else -1
            same[tuple(edge)] = True
            ok &= same
    return ok


def advance(layer, ocean, dt, earth, frequencies):
    '''
    Propagation Stepper. Integrate every live ray of a wavefront layer forward
    by one time step, reflecting from the surface and bottom, and update the
    caustic bookkeeping.

    Parameters
    ----------
    layer : WavefrontLayer
        current layer, not modified
    ocean : OceanModel
    dt : float
        time step [s]
    earth : EarthModel
    frequencies : np.array (F,)

    Returns
    -------
    next_layer : WavefrontLayer
        newly allocated layer at time `layer.time + dt`

    Raises
    ------
    EnvironmentFault
        if the environment returns a non-physical sound speed
    '''
    new = layer.copy()
    new.time = layer.time + dt
    shape = layer.shape
    alive = layer.alive.reshape(-1)
    idx = np.flatnonzero(alive)

    x0 = layer.position.reshape(-1, 3)[idx].copy()
    s0 = layer.slowness.reshape(-1, 3)[idx].copy()
    x1, s1 = rk4_step(x0, s0, dt, ocean, earth)

    state = {
        'loss': new.loss.reshape(-1, len(frequencies))[idx],
        'phase': new.phase.reshape(-1, len(frequencies))[idx],
        'surface': new.surface.reshape(-1)[idx],
        'bottom': new.bottom.reshape(-1)[idx],
    }
    remaining = np.full(idx.shape, float(dt))

    for _ in range(MAX_REFLECTIONS_PER_STEP):
        finite = np.all(np.isfinite(x1), axis=1) & np.all(np.isfinite(s1), axis=1)
        g_surface, _ = _clearance(np.where(finite[:, np.newaxis], x1, x0), 'surface', ocean, earth)
        g_bottom, _ = _clearance(np.where(finite[:, np.newaxis], x1, x0), 'bottom', ocean, earth)
        hit_surface = finite & (g_surface < 0)
        hit_bottom = finite & (g_bottom < 0) & ~hit_surface
        if not (np.any(hit_surface) or np.any(hit_bottom)):
            break
        if np.any(hit_surface):
            _reflect(x0, s0, x1, s1, remaining, hit_surface, 'surface', state, ocean, earth, frequencies)
        if np.any(hit_bottom):
            _reflect(x0, s0, x1, s1, remaining, hit_bottom, 'bottom', state, ocean, earth, frequencies)

    # numerical divergence is local to a ray
    finite = np.all(np.isfinite(x1), axis=1) & np.all(np.isfinite(s1), axis=1)
    if not np.all(finite):
        logger.debug('%d rays diverged at t=%.3f s', np.sum(~finite), new.time)

    good = idx[finite]
    lat, lng, alt = earth.to_geodetic(x1[finite])
    c = ocean.sound_speed(lat, lng, alt)

    position = new.position.reshape(-1, 3)
    slowness = new.slowness.reshape(-1, 3)
    position[good] = x1[finite]
    slowness[good] = s1[finite]
    new.sound_speed.reshape(-1)[good] = c

    # absorption along the step, evaluated at the new position
    alpha = ocean.attenuation(lat, lng, alt, frequencies)
    new.loss.reshape(-1, len(frequencies))[good] = state['loss'][finite] + alpha*(c*dt)[:, np.newaxis]
    new.phase.reshape(-1, len(frequencies))[good] = state['phase'][finite]
    new.surface.reshape(-1)[good] = state['surface'][finite]
    new.bottom.reshape(-1)[good] = state['bottom'][finite]
    new.status.reshape(-1)[idx[~finite]] = RayStatus.DIVERGED

    _update_caustics(layer, new)
    return new


def _update_caustics(layer, new):
    '''
    count a caustic wherever the ray tube orientation changes sign
    '''
    orientation = _orientation(new)
    known = _uniform_neighbors(new) & (orientation != 0)
    flipped = known & (layer.orientation != 0) & (orientation != layer.orientation)
    new.caustic[flipped] += 1
    new.phase[flipped] += CAUSTIC_PHASE
    new.orientation = np.where(known, orientation, layer.orientation).astype(np.int8)


class WaveQueue:
    """
    Wavefront propagation driver. Keeps the previous, current and next
    wavefront layers, advances them one time step at a time, and runs the
    eigenray search on every finalized current layer.

    Parameters
    ----------
    ocean : OceanModel
        environment used for the run
    fan : LaunchFan
        launch angles and frequencies
    source : tuple
        source position (latitude [deg], longitude [deg], altitude [m])
    targets : Positions, optional
        receivers to compute eigenrays and propagation loss for
    time_step : float
        integration time step [s], default 0.1
    earth : EarthModel, optional
        default is derived from the source latitude
    recorder : WavefrontRecorder, optional
        receives a snapshot of every finalized layer
    debug : bool
        log a message for every eigenray found, default False

    Attributes
    ----------
    loss : PropagationLoss or None
        eigenray lists and propagation loss for each target
    """

    def __init__(self, ocean, fan, source, targets=None, time_step=0.1,
                 earth=None, recorder=None, debug=False):
        if not isinstance(fan, LaunchFan):
            raise TypeError('fan must be a LaunchFan')
        if not (np.isfinite(time_step) and time_step > 0):
            raise ValueError(f'time_step must be positive, got {time_step}')
        if targets is not None and not isinstance(targets, Positions):
            targets = Positions(*targets)

        self.ocean = ocean
        self.fan = fan
        self.source = tuple(float(v) for v in source)
        if len(self.source) != 3:
            raise ValueError('source must be (latitude, longitude, altitude)')
        self.time_step = float(time_step)
        self.earth = EarthModel.from_latitude(self.source[0]) if earth is None else earth
        self.recorder = recorder
        self.debug = debug
        self.num_steps = 0

        source_xyz = self.earth.to_cartesian(*self.source)

        self.loss = None
        self.search = None
        if targets is not None:
            target_xyz = targets.cartesian(self.earth)
            separation = np.linalg.norm(target_xyz - source_xyz, axis=-1)
            if np.any(separation < 1e-3):
                raise ValueError('targets must not be located at the source')
            self.loss = PropagationLoss(targets, fan.frequencies)
            self.search = EigenraySearch(self.loss, fan, self.earth, self.time_step, debug=debug)

        # initial wavefront, all rays at the source
        lat, lng, alt = self.source
        c0 = float(self.ocean.sound_speed(lat, lng, alt)[0])
        de, az = np.meshgrid(fan.de, fan.az, indexing='ij')
        position = np.broadcast_to(source_xyz, de.shape + (3,)).copy()
        slowness = direction_vector(position, de, az) / c0
        first = WavefrontLayer.initial(position, slowness, np.full(de.shape, c0), fan.num_frequencies)
        self.source_speed = c0

        logger.info('wavefront fan of %d x %d rays, %d frequencies, time step %.3f s',
                    fan.shape[0], fan.shape[1], fan.num_frequencies, self.time_step)

        self._prev = None
        self._curr = first.freeze()
        self._next = self._advance(self._curr)
        self._record(self._curr)

    def _advance(self, layer):
        return advance(layer, self.ocean, self.time_step, self.earth, self.fan.frequencies).freeze()

    def _record(self, layer):
        if self.recorder is not None:
            self.recorder.record(WavefrontSnapshot(layer, self.fan, self.earth))

    def time(self):
        '''simulated time of the current wavefront [s]'''
        return self._curr.time

    @property
    def previous(self):
        return self._prev

    @property
    def current(self):
        return self._curr

    @property
    def next(self):
        return self._next

    @property
    def num_dead(self):
        '''number of rays that have diverged'''
        return int(np.sum(~self._next.alive))

    def snapshot(self):
        '''export view of the current wavefront'''
        return WavefrontSnapshot(self._curr, self.fan, self.earth)

    def step(self):
        '''
        Advance the wavefront one time step. The next layer is built from the
        finalized layers, then the layers rotate and the eigenray search reads
        the frozen (previous, current, next) triple.
        '''
        new = self._advance(self._next)
        self._prev, self._curr, self._next = self._curr, self._next, new
        self.num_steps += 1
        if self.search is not None:
            self.search.detect(self._prev, self._curr, self._next, self.source_speed)
        self._record(self._curr)

    def run(self, time_max, max_steps=None, progress=False):
        '''
        Step until the current wavefront reaches `time_max` or `max_steps`
        steps have been taken. Eigenrays found so far stay valid if the run
        stops early.

        Parameters
        ----------
        time_max : float
            maximum simulated time [s]
        max_steps : int, optional
        progress : bool
            show a tqdm progress bar, default False

        Returns
        -------
        loss : PropagationLoss or None
        '''
        num = int(np.ceil((time_max - self.time()) / self.time_step - 1e-9))
        if max_steps is not None:
            num = min(num, int(max_steps))
        for _ in tqdm(range(max(num, 0)), disable=not progress, desc='Propagating wavefronts'):
            self.step()
        if self.loss is not None:
            logger.info('propagated to t=%.3f s, %d eigenrays found',
                        self.time(), sum(len(rays) for rays in self.loss.eigenray_lists()))
        return self.loss


__all__ = ['WaveQueue', 'advance', 'rk4_step', 'ray_derivatives', 'CAUSTIC_PHASE']
