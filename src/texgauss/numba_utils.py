"""
Numba-compiled kernels for the per-pixel lookup-table passes.

The kernels release the GIL so that the worker pool can run them on disjoint
pixel ranges concurrently.
"""

import numpy as np
from numba import njit


@njit(nogil=True, cache=True)
def interp_uniform(values, start, step, table, out):
    """
    Piecewise-linear lookup into a table sampled on a uniform grid.

    Entry ``k`` of ``table`` is the function value at ``start + k * step``.
    Inputs outside the grid are clamped to the first/last entry.
    """
    n = table.shape[0]
    last = n - 1
    for i in range(values.shape[0]):
        if step <= 0.0 or n == 1:
            out[i] = table[0]
            continue
        t = (values[i] - start) / step
        if t <= 0.0:
            out[i] = table[0]
        elif t >= last:
            out[i] = table[last]
        else:
            k = int(t)
            frac = t - k
            lo = table[k]
            out[i] = lo + frac * (table[k + 1] - lo)
    return out


def lookup(values: np.ndarray, start: float, step: float, table: np.ndarray) -> np.ndarray:
    """Allocate the output and run :func:`interp_uniform` on float64 data."""
    values = np.ascontiguousarray(values, dtype=np.float64)
    table = np.ascontiguousarray(table, dtype=np.float64)
    out = np.empty_like(values)
    return interp_uniform(values, float(start), float(step), table, out)
