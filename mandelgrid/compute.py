"""
Mandelbrot stability kernels using Numba JIT compilation.

This module contains the performance-critical functions. They are compiled
in nopython mode with nogil=True, so a pool of Python threads can run them
side by side without contending for the GIL.

- is_stable: fixed-cost test, always runs the full iteration budget
- is_stable_early_exit: same answer, stops as soon as |z| > 2
- evaluate_flat: parallel-for (prange) over the flattened index range,
  filling a result buffer in place

Fixed cost is deliberate: every point does exactly `iterations` steps, which
keeps the work per unit uniform and the outcome independent of any escape
heuristic. fastmath is never enabled here because the comparison against 2.0
relies on inf/nan propagating normally for divergent points.
"""

import numpy as np
from numba import jit, prange


ESCAPE_RADIUS = 2.0
DEFAULT_ITERATIONS = 2000


@jit(nopython=True, nogil=True, cache=True)
def is_stable(c, iterations):
    """
    Check whether c stays bounded under z = z*z + c.

    Starts from z = 0 and applies the recurrence exactly `iterations` times,
    without early exit.

    Args:
        c: Complex coordinate
        iterations: Number of steps (0 leaves z at 0, so every point is stable)

    Returns:
        True if |z| <= 2.0 after the last step. A magnitude that overflowed to
        inf, or became nan (inf - inf), compares False.
    """
    z = 0j
    for _ in range(iterations):
        z = z * z + c
    return abs(z) <= ESCAPE_RADIUS


@jit(nopython=True, nogil=True, cache=True)
def is_stable_early_exit(c, iterations):
    """
    Same result as is_stable, but returns as soon as the orbit leaves the
    radius-2 disc. Once |z| > 2 the orbit is known to diverge, so only the
    running time changes.
    """
    z = 0j
    for _ in range(iterations):
        z = z * z + c
        if not abs(z) <= ESCAPE_RADIUS:
            return False
    return abs(z) <= ESCAPE_RADIUS


@jit(nopython=True, parallel=True, cache=True)
def evaluate_flat(real_min, real_step, imag_min, imag_step, rows, columns,
                  iterations, early_exit, values, writes):
    """
    Evaluate every cell of a grid with a parallel-for over flattened indices.

    Each prange iteration owns slot i of `values` and `writes` and no other,
    so no synchronisation is needed between iterations.

    Args:
        real_min, real_step: Real axis origin and per-column step
        imag_min, imag_step: Imaginary axis origin and per-row step
        rows, columns: Grid dimensions
        iterations: Iteration budget per point
        early_exit: Use is_stable_early_exit instead of is_stable
        values: Flat bool array of size rows*columns (modified in place)
        writes: Flat uint8 array counting writes per slot (modified in place)
    """
    for i in prange(rows * columns):
        row = i // columns
        column = i - row * columns
        real = real_min + column * real_step
        imag = imag_min + row * imag_step
        c = complex(real, imag)
        if early_exit:
            values[i] = is_stable_early_exit(c, iterations)
        else:
            values[i] = is_stable(c, iterations)
        writes[i] += 1


def warmup_jit():
    """
    Warm up JIT compilation with a tiny grid.

    Call this once at startup to pre-compile the Numba functions,
    avoiding a delay on first actual use.
    """
    is_stable(0j, 1)
    is_stable_early_exit(0j, 1)
    values = np.zeros(4, dtype=np.bool_)
    writes = np.zeros(4, dtype=np.uint8)
    evaluate_flat(-2.0, 1.0, -1.0, 1.0, 2, 2, 1, False, values, writes)
