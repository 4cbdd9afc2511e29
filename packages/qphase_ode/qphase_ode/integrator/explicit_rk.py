"""qphase_ode: Explicit Runge-Kutta Stepper
---------------------------------------

Tableau-driven stepping for every ``Family.EXPLICIT`` descriptor.

Stage ``i`` uses only stages ``< i``. The embedded estimate is
``e = h * (b - b*) @ K``. The end derivative ``f(t + h, y_new)`` is the last
stage for FSAL tableaus and one extra evaluation otherwise; it seeds the next
step and the Hermite interpolant, so nothing is wasted on acceptance.
"""

import numpy as np

from ..core.state import IntegratorState
from .base import StepContext, StepResult, stepper
from .descriptor import AlgorithmDescriptor, Family

__all__ = ["explicit_rk_step"]


@stepper(Family.EXPLICIT)
def explicit_rk_step(
    ctx: StepContext, state: IntegratorState, desc: AlgorithmDescriptor, h: float
) -> StepResult:
    t, y, f0 = state.t, state.y, state.f
    assert f0 is not None
    A, b, c = desc.A, desc.b, desc.c
    s = desc.stages

    K = np.empty((s, y.shape[0]))
    K[0] = f0
    yi = y
    for i in range(1, s):
        yi = y + h * (A[i, :i] @ K[:i])
        K[i] = ctx.rhs(t + c[i] * h, yi)

    if desc.fsal:
        # last stage state is y_new itself
        y_new = yi
        f_new = K[-1]
    else:
        y_new = y + h * (b @ K)
        f_new = ctx.rhs(t + h, y_new)

    if desc.b_err is not None:
        e = h * ((b - desc.b_err) @ K)
        err = ctx.error_norm(e, y, y_new)
    else:
        err = 0.0

    return StepResult(
        y_new=y_new,
        err=err,
        order=desc.adaptive_order,
        f_new=np.array(f_new),
        kind=desc.interpolant,
        stages=K,
        coefficients=desc.coefficients,
    )
