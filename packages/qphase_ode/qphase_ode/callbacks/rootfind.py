"""qphase_ode: Event Root Finding
-----------------------------

Illinois (modified regula falsi) search on a bracketing interval, with a
bisection step every few iterations to guarantee progress.

The returned time is always on the post-crossing side of the root: ``g`` there
has the sign of ``g(t_b)`` (or is exactly zero), so restarting from it does not
see the same crossing again.
"""

import math
from collections.abc import Callable

__all__ = ["find_root", "is_crossing"]


def is_crossing(ga: float, gb: float) -> bool:
    """Sign change from ``ga`` to ``gb``; a zero at the left end does not count."""
    if ga == 0.0:
        return False
    return gb == 0.0 or (ga < 0.0) != (gb < 0.0)


def find_root(
    g: Callable[[float], float],
    ta: float,
    tb: float,
    ga: float,
    gb: float,
    tol: float,
    max_iter: int = 100,
) -> tuple[float, bool]:
    """Locate a root of ``g`` bracketed by ``[ta, tb]`` (either orientation).

    Parameters
    ----------
    g : Callable[[float], float]
        Event function restricted to the step interpolant.
    ta, tb : float
        Pre-crossing and post-crossing ends.
    ga, gb : float
        ``g(ta)`` and ``g(tb)`` with a sign change between them.
    tol : float
        Absolute tolerance on the bracket width.
    max_iter : int
        Iteration budget.

    Returns
    -------
    tuple[float, bool]
        ``(t_event, converged)``. On failure ``t_event`` is ``tb``.

    """
    if gb == 0.0:
        return tb, True
    a, b = ta, tb
    fa, fb = ga, gb
    side = 0
    tol = max(tol, 4.0 * 2.220446049250313e-16 * max(abs(ta), abs(tb), 1.0))
    for it in range(max_iter):
        if abs(b - a) <= tol:
            return b, True
        if it % 4 == 3 or fb == fa:
            t = 0.5 * (a + b)
        else:
            t = b - fb * (b - a) / (fb - fa)
            lo, hi = min(a, b), max(a, b)
            if not lo < t < hi:
                t = 0.5 * (a + b)
        gt = float(g(t))
        if not math.isfinite(gt):
            return tb, False
        if gt == 0.0:
            return t, True
        if (gt < 0.0) == (fb < 0.0):
            b, fb = t, gt
            if side == 1:
                fa *= 0.5
            side = 1
        else:
            a, fa = t, gt
            if side == -1:
                fb *= 0.5
            side = -1
    if abs(b - a) <= tol:
        return b, True
    return tb, False
