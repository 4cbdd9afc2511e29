"""qphase_ode: Fully Implicit Stepper
---------------------------------

Backward Euler through the nonlinear-solver interface:
``G(z) = M (z - y) - h f(t + h, z) = 0`` with the simplified-Newton matrix
``W = M - h J(t, y)``.

The local error is estimated from the derivative jump,
``e = W^{-1} (h/2) (f_new - f0)``. Filtering through ``W^{-1}`` reuses the
factorization and keeps the estimate bounded on stiff components.
"""

import numpy as np

from ..core.errors import QPSConfigError, SolverFailure
from ..core.state import IntegratorState
from .base import StepContext, StepResult, stepper
from .descriptor import AlgorithmDescriptor, Family, Interpolant

__all__ = ["implicit_euler_step"]


@stepper(Family.IMPLICIT)
def implicit_euler_step(
    ctx: StepContext, state: IntegratorState, desc: AlgorithmDescriptor, h: float
) -> StepResult:
    if ctx.nonlinear_solver is None:
        raise QPSConfigError(f"[534] '{desc.name}' needs a nonlinear solver")
    t, y, f0 = state.t, state.y, state.f
    assert f0 is not None
    M = ctx.mass_matrix()
    t1 = t + h

    J = ctx.jacobian(t, y, f0)
    W = ctx.iteration_matrix(h, J)

    def residual(z: np.ndarray) -> np.ndarray:
        return M @ (z - y) - h * ctx.rhs(t1, z)

    guess = y + h * np.linalg.solve(M, f0) if ctx.mass is not None else y + h * f0
    solver = ctx.nonlinear_solver
    iters_before = getattr(solver, "n_iterations", 0)
    try:
        y_new = solver.solve_nonlinear(residual, guess, W, ctx.weighted_norm(y))
    except SolverFailure:
        ctx.stats.nnonlinconvfail += 1
        raise
    finally:
        ctx.stats.nnonliniter += getattr(solver, "n_iterations", 0) - iters_before

    f_new = ctx.rhs(t1, y_new)
    e = ctx.solve(W, 0.5 * h * (f_new - f0))
    err = ctx.error_norm(e, y, y_new)

    kind = Interpolant.LINEAR if ctx.problem.has_mass_matrix else desc.interpolant
    return StepResult(
        y_new=y_new,
        err=err,
        order=desc.adaptive_order,
        f_new=f_new,
        kind=kind,
    )
