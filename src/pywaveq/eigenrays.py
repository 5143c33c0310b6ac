"""
Tools and methods for finding eigenrays as the wavefront sweeps past each target.

After every time step the search looks for discrete closest points of approach:
cells of the (time, DE, AZ) grid whose distance to the target is no larger than
any neighbor in a 3x3x3 stencil. For each one a local quadratic model of the
wavefront is fit from finite differences on the stencil, and Newton iterations
solve for the fractional (time, DE, AZ) offsets where the path passes exactly
through the target.

Only one eigenray can be found for each bracket of adjacent launch angles in a
time step. Closely spaced roots need a finer launch fan to be resolved.
"""
import itertools
import logging

import numpy as np

from .geometry import direction_angles
from .ray_objects import Eigenray, ray_tube

logger = logging.getLogger(__name__)

# finite difference weights for a sample at position p of 3 evenly spaced samples
FIRST_DERIVATIVE = {
    0: np.array([-1.5, 2.0, -0.5]),
    1: np.array([-0.5, 0.0, 0.5]),
    2: np.array([0.5, -2.0, 1.5]),
}
SECOND_DERIVATIVE = np.array([1.0, -2.0, 1.0])

MAX_ITERATIONS = 20
CONVERGENCE = 1e-10
# largest offset (in grid steps) accepted from the stencil center
MAX_OFFSET = 1.0

# stencil offsets that are compared strictly, so ties are only detected once
_LATER = [offset for offset in itertools.product((-1, 0, 1), repeat=3) if offset > (0, 0, 0)]
_EARLIER = [offset for offset in itertools.product((-1, 0, 1), repeat=3) if offset < (0, 0, 0)]


def taylor_coefficients(values, center):
    '''
    Quadratic Taylor coefficients of samples on a 3x3x3 stencil.

    Parameters
    ----------
    values : np.array (3,3,3,...)
        samples on the stencil, trailing dimensions are components
    center : tuple of int
        position (0, 1 or 2) of the expansion point along each axis

    Returns
    -------
    f0 : np.array (...)
        value at the expansion point
    gradient : np.array (...,3)
        first derivatives along each axis
    hessian : np.array (...,3,3)
        second derivatives
    '''
    values = np.asarray(values, dtype=float)
    p = tuple(center)
    f0 = values[p]
    w1 = [FIRST_DERIVATIVE[k] for k in p]

    lines = [values[:, p[1], p[2]], values[p[0], :, p[2]], values[p[0], p[1], :]]
    gradient = np.stack([np.einsum('a,a...->...', w1[k], lines[k]) for k in range(3)], axis=-1)
    diagonal = [np.einsum('a,a...->...', SECOND_DERIVATIVE, lines[k]) for k in range(3)]

    planes = {
        (0, 1): values[:, :, p[2]],
        (0, 2): values[:, p[1], :],
        (1, 2): values[p[0], :, :],
    }
    hessian = np.zeros(f0.shape + (3, 3))
    for k in range(3):
        hessian[..., k, k] = diagonal[k]
    for (k, l), plane in planes.items():
        mixed = np.einsum('a,b,ab...->...', w1[k], w1[l], plane)
        hessian[..., k, l] = mixed
        hessian[..., l, k] = mixed
    return f0, gradient, hessian


def taylor_evaluate(f0, gradient, hessian, offset):
    '''
    evaluate a quadratic Taylor model at an offset (3,) from its expansion point
    '''
    offset = np.asarray(offset, dtype=float)
    return (f0 + gradient @ offset + 0.5 * np.einsum('...kl,k,l->...', hessian, offset, offset))


def solve_offset(f0, gradient, hessian):
    '''
    Newton iterations for the offset where a quadratic vector model vanishes.

    Parameters
    ----------
    f0 : np.array (3,)
    gradient : np.array (3,3)
        d(component)/d(axis)
    hessian : np.array (3,3,3)

    Returns
    -------
    offset : np.array (3,) or None
        None if the iteration does not converge
    '''
    offset = np.zeros(3)
    for _ in range(MAX_ITERATIONS):
        residual = taylor_evaluate(f0, gradient, hessian, offset)
        jacobian = gradient + np.einsum('ckl,l->ck', hessian, offset)
        try:
            step = np.linalg.solve(jacobian, -residual)
        except np.linalg.LinAlgError:
            return None
        offset = offset + step
        if not np.all(np.isfinite(offset)) or np.any(np.abs(offset) > 10):
            return None
        if np.max(np.abs(step)) < CONVERGENCE:
            return offset
    return None


def _stencil_axis(i, n, same):
    '''
    Indices of the 3 samples used along an axis of length n, and the position
    of i among them. The samples are centered on i where possible and one-sided
    at the edges of the fan, or of the ray family, so that every sample passes
    `same(k)`. Returns (None, None) when no such stencil exists.
    '''
    for start in (i - 1, i, i - 2):
        if start >= 0 and start + 3 <= n and all(same(k) for k in range(start, start + 3)):
            return np.arange(start, start + 3), i - start
    return None, None


def fractional_angle(angles, i, delta):
    '''
    angle at fractional index i + delta, extrapolating linearly past the fan edges
    '''
    n = len(angles)
    if delta >= 0:
        lo = min(i, n - 2)
    else:
        lo = max(i - 1, 0)
    step = angles[lo + 1] - angles[lo]
    return float(angles[i] + delta * step)


def local_minima(distance, valid):
    '''
    Cells of the middle time layer that are discrete local minima of `distance`
    over the 3x3x3 (time, DE, AZ) stencil.

    Parameters
    ----------
    distance : np.array (3,M,N)
        squared distance to a target for the previous, current and next layer
    valid : np.array (M,N)
        rays that are alive in all three layers

    Returns
    -------
    cells : np.array (k,2)
        (DE index, AZ index) of each candidate
    '''
    d = np.where(valid[np.newaxis], distance, np.inf)
    padded = np.pad(d, ((0, 0), (1, 1), (1, 1)), constant_values=np.inf)
    m, n = valid.shape
    center = padded[1, 1:m+1, 1:n+1]
    is_min = valid & np.isfinite(center)
    for dt, di, dj in _EARLIER:
        is_min &= center <= padded[1+dt, 1+di:m+1+di, 1+dj:n+1+dj]
    for dt, di, dj in _LATER:
        is_min &= center < padded[1+dt, 1+di:m+1+di, 1+dj:n+1+dj]
    return np.argwhere(is_min)


def spreading_loss(layer, fan, source_speed):
    '''
    Geometric spreading loss of every ray in a wavefront layer, from the ray
    tube area  TL = 10 log10(|dX/dDE x dX/dAZ| c_source / (c cos(DE) dDE dAZ)).

    Parameters
    ----------
    layer : WavefrontLayer
    fan : LaunchFan
    source_speed : float
        sound speed at the source [m/s]

    Returns
    -------
    loss : np.array (M,N)
        spreading loss in dB
    '''
    dx_dde, dx_daz = ray_tube(layer.position)
    area = np.linalg.norm(np.cross(dx_dde, dx_daz), axis=-1)
    de = np.radians(fan.de)
    solid_angle = (np.cos(de) * np.gradient(de))[:, np.newaxis] * np.gradient(np.radians(fan.az))[np.newaxis, :]
    ratio = area * source_speed / (layer.sound_speed * solid_angle)
    with np.errstate(divide='ignore', invalid='ignore'):
        return 10*np.log10(np.maximum(ratio, 1e-300))


class EigenraySearch:
    """
    Eigenray Search and Interpolator. Reads frozen wavefront layers and appends
    each eigenray found to the target's list.

    Parameters
    ----------
    loss : PropagationLoss
        owner of the targets and their eigenray lists
    fan : LaunchFan
    earth : EarthModel
    time_step : float
        wavefront time step [s]
    debug : bool
        log every eigenray found

    Attributes
    ----------
    num_rejected : int
        candidates dropped because the fit failed
    num_duplicates : int
        candidates dropped because the same path was already emitted
    """

    def __init__(self, loss, fan, earth, time_step, debug=False):
        self.loss = loss
        self.fan = fan
        self.earth = earth
        self.time_step = float(time_step)
        self.debug = debug
        self.targets = loss.targets.cartesian(earth)
        self.num_rejected = 0
        self.num_duplicates = 0

    def detect(self, prev, curr, nxt, source_speed):
        '''
        search the (previous, current, next) layers for paths through every target

        Parameters
        ----------
        prev, curr, nxt : WavefrontLayer
            three consecutive finalized layers
        source_speed : float
            sound speed at the source [m/s]
        '''
        layers = (prev, curr, nxt)
        valid = prev.alive & curr.alive & nxt.alive
        positions = np.stack([layer.position for layer in layers])
        # boundary history of every ray in each layer, (3,2,M,N)
        history = np.stack([np.stack((layer.surface, layer.bottom)) for layer in layers])
        spreading = None

        rows, cols = self.targets.shape[:2]
        for row in range(rows):
            for col in range(cols):
                target = self.targets[row, col]
                distance = np.sum((positions - target)**2, axis=-1)
                cells = local_minima(distance, valid)
                if len(cells) == 0:
                    continue
                if spreading is None:
                    spreading = np.stack([spreading_loss(layer, self.fan, source_speed) for layer in layers])
                for i, j in cells:
                    ray = self.interpolate(layers, spreading, valid, history, target, i, j)
                    if ray is None:
                        self.num_rejected += 1
                        continue
                    rays = self.loss.eigenrays(row, col)
                    if self._is_duplicate(ray, rays, i, j):
                        self.num_duplicates += 1
                        logger.debug('duplicate eigenray suppressed at t=%.6f s', ray.time)
                        continue
                    rays.append(ray)
                    if self.debug:
                        logger.info('eigenray for target (%d,%d): t=%.6f s de=%.4f deg srf=%d btm=%d',
                                    row, col, ray.time, ray.source_de, ray.surface, ray.bottom)

    def interpolate(self, layers, spreading, valid, history, target, i, j):
        '''
        Eigenray Interpolator. Fit the wavefront around cell (i, j) of the
        current layer and solve for the path through the target.

        Parameters
        ----------
        layers : tuple of WavefrontLayer
            previous, current and next layers
        spreading : np.array (3,M,N)
            spreading loss of each layer
        valid : np.array (M,N)
            rays alive in all layers
        history : np.array (3,2,M,N)
            surface and bottom reflection counts of each layer
        target : np.array (3,)
            target position, earth-centered cartesian
        i, j : int
            DE and AZ index of the closest ray

        Returns
        -------
        ray : Eigenray or None
            None when the fit fails to converge, the solution falls outside of
            the stencil, or the travel time is not inside the time step
        '''
        m, n = valid.shape
        family = history[..., i, j]

        def same(a, b):
            return valid[a, b] and np.array_equal(history[..., a, b], family)

        de_idx, de_p = _stencil_axis(i, m, lambda k: same(k, j))
        az_idx, az_p = _stencil_axis(j, n, lambda k: same(i, k))
        if de_idx is None or az_idx is None:
            logger.debug('no single family stencil around (%d,%d)', i, j)
            return None
        block = np.ix_(de_idx, az_idx)
        uniform = np.all(history[:, :, de_idx[:, None], az_idx[None, :]] == family[..., None, None])
        if not (np.all(valid[block]) and uniform):
            logger.debug('eigenray stencil at (%d,%d) mixes ray families', i, j)
            return None
        center = (1, de_p, az_p)

        def stencil(field):
            return np.stack([f[block] for f in field])

        relative = stencil([layer.position - target for layer in layers])
        x0, gradient, hessian = taylor_coefficients(relative, center)

        # target must lie within about one cell of the closest ray
        cell = np.sum(np.linalg.norm(gradient, axis=0))
        if np.linalg.norm(x0) > 1.5 * cell:
            logger.debug('closest ray at (%d,%d) is %.1f m from target', i, j, np.linalg.norm(x0))
            return None

        offset = solve_offset(x0, gradient, hessian)
        if offset is None or np.any(np.abs(offset) > MAX_OFFSET):
            logger.debug('eigenray fit at (%d,%d) failed, offset %s', i, j, offset)
            return None

        curr = layers[1]
        time = curr.time + offset[0] * self.time_step
        if not (layers[0].time < time <= layers[2].time) or time <= 0:
            logger.debug('eigenray fit at (%d,%d) has non-monotonic time %.6f', i, j, time)
            return None

        # arrival direction
        directions = stencil([layer.slowness * layer.sound_speed[..., np.newaxis] for layer in layers])
        direction = taylor_evaluate(*taylor_coefficients(directions, center), offset)
        target_de, target_az = direction_angles(target, direction)

        # spreading loss is smooth, reflection and absorption loss belong to the closest ray
        if layers[0].time <= 0.0:
            tl = self._launch_spreading(stencil(spreading), center, offset)
        else:
            tl = taylor_evaluate(*taylor_coefficients(stencil(spreading), center), offset)
        intensity = tl + curr.loss[i, j]
        phase = curr.phase[i, j].copy()

        return Eigenray(
            time=float(time),
            intensity=intensity,
            phase=phase,
            source_de=fractional_angle(self.fan.de, i, offset[1]),
            source_az=fractional_angle(self.fan.az, j, offset[2]),
            target_de=float(target_de),
            target_az=float(target_az),
            surface=int(curr.surface[i, j]),
            bottom=int(curr.bottom[i, j]),
            caustic=int(curr.caustic[i, j]),
        )

    @staticmethod
    def _launch_spreading(tl, center, offset):
        '''
        spreading loss next to the source, where the previous layer is the
        launch layer and its ray tube has no area. Ray tube amplitude grows
        linearly with time there, so the launch layer is replaced by a linear
        extrapolation of the current and next layers.
        '''
        amplitude = 10**(tl/20)
        amplitude[0] = 2*amplitude[1] - amplitude[2]
        value = taylor_evaluate(*taylor_coefficients(amplitude, center), offset)
        return 20*np.log10(max(float(value), 1e-300))

    def _is_duplicate(self, ray, rays, i, j):
        '''
        an eigenray with the same boundary history, within one time step and
        one launch angle bracket, has already been emitted
        '''
        de_step = np.max(np.abs(np.diff(self.fan.de[max(i-1, 0):i+2])))
        az_step = np.max(np.abs(np.diff(self.fan.az[max(j-1, 0):j+2])))
        for other in rays:
            if (other.surface == ray.surface and other.bottom == ray.bottom
                    and abs(other.time - ray.time) < self.time_step
                    and abs(other.source_de - ray.source_de) < de_step
                    and abs(other.source_az - ray.source_az) < az_step):
                return True
        return False


__all__ = ['EigenraySearch', 'local_minima', 'spreading_loss', 'taylor_coefficients',
           'taylor_evaluate', 'solve_offset', 'fractional_angle']
