"""qphase_ode: Adams-Bashforth-Moulton Stepper
------------------------------------------

Variable-step ``k``-step Adams PECE. The Adams-Bashforth predictor integrates
the polynomial through the last ``k`` derivatives, the Adams-Moulton corrector
the polynomial through ``f(t + h, y_pred)`` and the last ``k - 1``
derivatives. Both have order ``k``. Milne's device estimates the local error
as ``C * (y_corr - y_pred)``.

Weights are recomputed every step by Gauss-Legendre quadrature of the
Lagrange basis on the normalised nodes ``(t_j - t_n) / h``, so unequal
spacing needs no special handling.

While fewer than ``k`` points are known (at start-up, after an algorithm
switch or after a callback modified the state) the descriptor's self-starting
``starter`` method takes the step instead.
"""

from collections import deque

import numpy as np
from numpy.polynomial.legendre import leggauss

from ..core.registry import registry
from ..core.state import IntegratorState
from .base import StepContext, StepResult, stepper
from .descriptor import AlgorithmDescriptor, Family, Interpolant
from .explicit_rk import explicit_rk_step

__all__ = ["adams_step", "adams_weights"]


def adams_weights(nodes: np.ndarray, a: float = 0.0, b: float = 1.0) -> np.ndarray:
    """Integrals over ``[a, b]`` of the Lagrange basis polynomials on ``nodes``."""
    nodes = np.asarray(nodes, dtype=float)
    k = nodes.shape[0]
    x, w = leggauss(max(k, 1))
    s = 0.5 * (b - a) * x + 0.5 * (a + b)
    w = 0.5 * (b - a) * w
    L = np.ones((k, s.shape[0]))
    for j in range(k):
        for m in range(k):
            if m != j:
                L[j] *= (s - nodes[m]) / (nodes[j] - nodes[m])
    return L @ w


def _sync_history(state: IntegratorState, k: int) -> deque:
    hist = state.history
    if hist.maxlen != k or not hist or hist[-1][0] != state.t:
        hist = deque([(state.t, state.f)], maxlen=k)
        state.history = hist
    return hist


@stepper(Family.MULTISTEP)
def adams_step(
    ctx: StepContext, state: IntegratorState, desc: AlgorithmDescriptor, h: float
) -> StepResult:
    k = desc.steps
    hist = _sync_history(state, k)
    if len(hist) < k:
        starter = registry.get(f"algorithm:{desc.starter}")
        result = explicit_rk_step(ctx, state, starter, h)
        result.info["starter"] = starter.name
        return result

    t, y = state.t, state.y
    ts = np.array([p[0] for p in hist])
    F = np.array([p[1] for p in hist])

    # predictor: AB-k through t_{n-k+1} .. t_n
    beta = adams_weights((ts - t) / h)
    y_pred = y + h * (beta @ F)
    f_pred = ctx.rhs(t + h, y_pred)

    # corrector: AM-k through t_{n-k+2} .. t_n, t_{n+1}
    nodes = np.append((ts[1:] - t) / h, 1.0)
    gamma = adams_weights(nodes)
    y_corr = y + h * (gamma @ np.vstack([F[1:], f_pred]))
    f_new = ctx.rhs(t + h, y_corr)

    e = desc.coefficients["milne"] * (y_corr - y_pred)
    err = ctx.error_norm(e, y, y_corr)
    return StepResult(
        y_new=y_corr,
        err=err,
        order=desc.adaptive_order,
        f_new=f_new,
        kind=Interpolant.HERMITE,
    )
