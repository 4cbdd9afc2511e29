"""qphase_ode: Rosenbrock-W Stepper
-------------------------------

Shampine-Reichelt Rosenbrock 2(3) pair (MATLAB ``ode23s``), with a constant
mass matrix ``M`` and the iteration matrix ``W = M - d h J``.

Stages
------
``k1 = W \\ (f0 + h d T)``
``f1 = f(t + h/2, y + h/2 k1)``
``k2 = W \\ (f1 - M k1) + k1``
``y_new = y + h k2``
``f2 = f(t + h, y_new)``
``k3 = W \\ (f2 - c32 (M k2 - f1) - 2 (M k1 - f0) + h d T)``
``err = h/6 (k1 - 2 k2 + k3)``

``T`` is ``df/dt``. One factorization of ``W`` serves all three solves, and
``f2`` doubles as the next step's ``f0``. The dense output
``y0 + h (c1(theta) k1 + c2(theta) k2)`` uses only ``k1, k2`` and stays
accurate on quasi-steady stiff components.
"""

from ..core.state import IntegratorState
from .base import StepContext, StepResult, stepper
from .descriptor import AlgorithmDescriptor, Family

__all__ = ["rosenbrock23_step"]


@stepper(Family.ROSENBROCK)
def rosenbrock23_step(
    ctx: StepContext, state: IntegratorState, desc: AlgorithmDescriptor, h: float
) -> StepResult:
    t, y, f0 = state.t, state.y, state.f
    assert f0 is not None
    d = desc.coefficients["d"]
    c32 = desc.coefficients["c32"]
    M = ctx.mass_matrix()

    J = ctx.jacobian(t, y, f0)
    T = ctx.tgrad(t, y, f0)
    W = ctx.iteration_matrix(d * h, J)
    hdT = h * d * T

    k1 = ctx.solve(W, f0 + hdT)
    f1 = ctx.rhs(t + 0.5 * h, y + 0.5 * h * k1)
    k2 = ctx.solve(W, f1 - M @ k1) + k1
    y_new = y + h * k2

    f2 = ctx.rhs(t + h, y_new)
    k3 = ctx.solve(W, f2 - c32 * (M @ k2 - f1) - 2.0 * (M @ k1 - f0) + hdT)
    e = (h / 6.0) * (k1 - 2.0 * k2 + k3)
    err = ctx.error_norm(e, y, y_new)

    return StepResult(
        y_new=y_new,
        err=err,
        order=desc.adaptive_order,
        f_new=f2,
        kind=desc.interpolant,
        stages=(k1, k2),
        coefficients=desc.coefficients,
    )
