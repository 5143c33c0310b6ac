import numba
import numpy as np


@numba.njit(fastmath=True, cache=True)
def linear_interp(x, xin, yin):
    """
    Perform linear interpolation on a 1D grid for an array of query points.

    Parameters
    ----------
    x : np.array (k,)
        coordinates at which to interpolate
    xin : np.array (m,)
        1-D array of grid coordinates, must be sorted in ascending order.
    yin : np.array (m,)
        values at each grid point

    Returns
    -------
    y : np.array (k,)
        interpolated values. Query points outside of the grid are
        extrapolated from the nearest edge interval.
    """
    n = len(xin)
    y = np.empty(x.shape[0])
    for k in range(x.shape[0]):
        i = np.searchsorted(xin, x[k]) - 1
        i = max(0, min(i, n - 2))
        w = (x[k] - xin[i]) / (xin[i+1] - xin[i])
        y[k] = (1-w)*yin[i] + w*yin[i+1]
    return y


@numba.njit(fastmath=True, cache=True)
def linear_interp_slope(x, xin, yin):
    """
    Slope dy/dx of the piecewise linear interpolant at an array of query points.
    """
    n = len(xin)
    dydx = np.empty(x.shape[0])
    for k in range(x.shape[0]):
        i = np.searchsorted(xin, x[k]) - 1
        i = max(0, min(i, n - 2))
        dydx[k] = (yin[i+1] - yin[i]) / (xin[i+1] - xin[i])
    return dydx


@numba.njit(fastmath=True, cache=True)
def bilinear_interp(x, y, x_grid, y_grid, values):
    """
    Perform bilinear interpolation on a 2D grid for arrays of query points.

    Parameters
    ----------
    x, y : np.array (k,)
        coordinates at which to interpolate
    x_grid : np.array (m,)
        grid coordinates of the first axis, ascending
    y_grid : np.array (n,)
        grid coordinates of the second axis, ascending
    values : np.array (m,n)
        values at each grid point

    Returns
    -------
    v : np.array (k,)
        interpolated values
    dvdx, dvdy : np.array (k,)
        partial derivatives of the interpolant

    Notes
    -----
    Query points outside of the grid use the nearest edge cell, so the
    interpolant is extrapolated linearly.
    """
    m = len(x_grid)
    n = len(y_grid)
    v = np.empty(x.shape[0])
    dvdx = np.empty(x.shape[0])
    dvdy = np.empty(x.shape[0])
    for k in range(x.shape[0]):
        i = np.searchsorted(x_grid, x[k]) - 1
        j = np.searchsorted(y_grid, y[k]) - 1
        i = max(0, min(i, m - 2))
        j = max(0, min(j, n - 2))

        hx = x_grid[i+1] - x_grid[i]
        hy = y_grid[j+1] - y_grid[j]
        wx = (x[k] - x_grid[i]) / hx
        wy = (y[k] - y_grid[j]) / hy

        v00 = values[i, j]
        v10 = values[i+1, j]
        v01 = values[i, j+1]
        v11 = values[i+1, j+1]

        v[k] = (1-wx)*(1-wy)*v00 + wx*(1-wy)*v10 + (1-wx)*wy*v01 + wx*wy*v11
        dvdx[k] = ((1-wy)*(v10 - v00) + wy*(v11 - v01)) / hx
        dvdy[k] = ((1-wx)*(v01 - v00) + wx*(v11 - v10)) / hy
    return v, dvdx, dvdy


__all__ = ['linear_interp', 'linear_interp_slope', 'bilinear_interp']
