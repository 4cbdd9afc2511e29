"""qphase_ode: Stepper Contract
--------------------------

One capability, ``attempt_step``, dispatched on ``AlgorithmDescriptor.family``.
Family modules register their step functions with the ``stepper`` decorator
on import; no stepper subclasses exist.

Public API
----------
``StepContext`` : per-engine access to the RHS, norms, Jacobians and solvers
``StepResult`` : transient outcome of one attempt
``attempt_step`` : produce a candidate step for the active descriptor
``stepper`` : decorator registering a family's step function
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from ..core.errors import DomainError, QPSConfigError, QPSModelError
from ..core.solvers import finite_difference_jacobian, finite_difference_tgrad
from ..core.state import IntegratorState, SolverStats
from ..interpolation import Segment, build_segment
from .descriptor import AlgorithmDescriptor

if TYPE_CHECKING:
    from ..core.solvers import LinearSolver, NonlinearSolver
    from ..problem import ODEProblem

__all__ = ["StepContext", "StepResult", "attempt_step", "stepper"]

StepFn = Callable[["StepContext", IntegratorState, AlgorithmDescriptor, float], "StepResult"]

_STEPPERS: dict[str, StepFn] = {}


def stepper(family: str) -> Callable[[StepFn], StepFn]:
    """Register ``fn`` as the step function of ``family``."""

    def _wrap(fn: StepFn) -> StepFn:
        _STEPPERS[family] = fn
        return fn

    return _wrap


@dataclass
class StepResult:
    """Candidate step produced by one attempt.

    Attributes
    ----------
    y_new : ndarray
        Candidate state at ``t + h``.
    err : float
        Weighted error norm (``<= 1`` accepts); 0.0 for methods without an
        estimator.
    order : int or None
        Order used in the controller exponent for this attempt.
    f_new : ndarray or None
        ``f(t + h, y_new)`` when it was computed as part of the step.
    kind : str
        Interpolant tag for the dense segment.
    stages : Any
        Stage derivatives needed by the interpolant.
    coefficients : Any
        Descriptor coefficients needed by the interpolant.

    """

    y_new: np.ndarray
    err: float
    order: int | None
    f_new: np.ndarray | None = None
    kind: str = "hermite"
    stages: Any = None
    coefficients: Any = None
    success: bool = True
    info: dict[str, Any] = field(default_factory=dict)

    def segment(
        self, t0: float, h: float, y0: np.ndarray, f0: np.ndarray | None, t_end: float
    ) -> Segment:
        return build_segment(
            self.kind,
            t0,
            h,
            y0,
            self.y_new,
            f0=f0,
            f1=self.f_new,
            stages=self.stages,
            coefficients=self.coefficients,
            t_end=t_end,
        )


class StepContext:
    """Per-engine services shared by all steppers of one trajectory.

    Parameters
    ----------
    problem : ODEProblem
        Read-only problem.
    abstol, reltol : float or array-like
        Tolerances folded into the error norm.
    norm : {"rms", "max"}
        Reduction over components.
    jacobian : str or JacobianProvider
        ``"auto"``, ``"finite_difference"``, ``"supplied"`` or a callable
        ``provider(f, t, y) -> J``.
    linear_solver, nonlinear_solver : optional
        Per-engine solver instances.

    Raises
    ------
    QPSConfigError
        - [530] ``jacobian="supplied"`` without ``problem.jac``.
        - [535] A per-component tolerance does not match the state length.

    """

    def __init__(
        self,
        problem: "ODEProblem",
        abstol: Any = 1e-6,
        reltol: Any = 1e-3,
        norm: str = "rms",
        jacobian: Any = "auto",
        linear_solver: "LinearSolver | None" = None,
        nonlinear_solver: "NonlinearSolver | None" = None,
        stats: SolverStats | None = None,
    ) -> None:
        self.problem = problem
        self.abstol = np.asarray(abstol, dtype=float)
        self.reltol = np.asarray(reltol, dtype=float)
        self.norm = norm
        self.linear_solver = linear_solver
        self.nonlinear_solver = nonlinear_solver
        self.stats = stats if stats is not None else SolverStats()
        for label, tol in (("abstol", self.abstol), ("reltol", self.reltol)):
            if tol.ndim != 0 and tol.shape != (problem.n,):
                raise QPSConfigError(
                    f"[535] {label} has {tol.size} components; the problem has {problem.n}"
                )
        if jacobian == "supplied" and problem.jac is None:
            raise QPSConfigError("[530] jacobian='supplied' but the problem has no jac")
        if jacobian == "auto":
            jacobian = "supplied" if problem.jac is not None else "finite_difference"
        self.jacobian_mode = jacobian
        M = problem.mass_matrix
        self.mass = None if M is None else np.asarray(M)
        self._eye = np.eye(problem.n)

    # ------------------------------------------------------------------ rhs
    def rhs(self, t: float, y: np.ndarray) -> np.ndarray:
        """Evaluate ``f(t, y)`` with shape and finiteness checks.

        Raises
        ------
        DomainError
            - [310] Non-finite derivative.
        QPSModelError
            - [604] Derivative has the wrong shape.

        """
        self.stats.nf += 1
        dy = np.asarray(self.problem.f(t, y), dtype=float)
        if dy.shape != y.shape:
            dy = dy.reshape(-1)
            if dy.shape != y.shape:
                raise QPSModelError(
                    f"[604] f returned shape {dy.shape}, expected {y.shape}"
                )
        if not np.all(np.isfinite(dy)):
            raise DomainError(f"[310] Non-finite derivative at t={t}", t=t)
        return dy

    # ----------------------------------------------------------------- norms
    def scale(self, y0: np.ndarray, y1: np.ndarray | None = None) -> np.ndarray:
        ymag = np.abs(y0) if y1 is None else np.maximum(np.abs(y0), np.abs(y1))
        return self.abstol + self.reltol * ymag

    def reduce(self, v: np.ndarray) -> float:
        if self.norm == "max":
            return float(np.max(np.abs(v)))
        return float(np.sqrt(np.mean(np.square(v))))

    def error_norm(self, e: np.ndarray, y0: np.ndarray, y1: np.ndarray) -> float:
        """Weighted norm ``||e / (abstol + reltol * max(|y0|, |y1|))||``."""
        return self.reduce(e / self.scale(y0, y1))

    def weighted_norm(self, y: np.ndarray) -> Callable[[np.ndarray], float]:
        sc = self.scale(y)
        return lambda dv: self.reduce(dv / sc)

    # -------------------------------------------------------------- jacobians
    def jacobian(self, t: float, y: np.ndarray, f0: np.ndarray) -> np.ndarray:
        self.stats.njacs += 1
        mode = self.jacobian_mode
        if mode == "supplied":
            J = np.asarray(self.problem.jac(t, y), dtype=float)
        elif mode == "finite_difference":
            J = finite_difference_jacobian(self.rhs, t, y, f0)
        elif callable(mode):
            J = np.asarray(mode(self.problem.f, t, y), dtype=float)
        else:
            raise QPSConfigError(f"[531] Unknown jacobian option {mode!r}")
        n = y.shape[0]
        if J.shape != (n, n):
            raise QPSModelError(f"[605] Jacobian has shape {J.shape}, expected {(n, n)}")
        return J

    def tgrad(self, t: float, y: np.ndarray, f0: np.ndarray) -> np.ndarray:
        if self.problem.tgrad is not None:
            return np.asarray(self.problem.tgrad(t, y), dtype=float)
        return finite_difference_tgrad(self.rhs, t, y, f0)

    def mass_matrix(self) -> np.ndarray:
        return self._eye if self.mass is None else self.mass

    def iteration_matrix(self, gamma_h: float, J: np.ndarray) -> np.ndarray:
        """``W = M - gamma_h * J``; a fresh object so solver caches refresh."""
        self.stats.nw += 1
        return self.mass_matrix() - gamma_h * J

    def solve(self, A: np.ndarray, b: np.ndarray) -> np.ndarray:
        if self.linear_solver is None:
            raise QPSConfigError("[532] Method needs a linear solver but none is configured")
        self.stats.nsolve += 1
        return self.linear_solver.solve(A, b)


def attempt_step(
    ctx: StepContext, state: IntegratorState, descriptor: AlgorithmDescriptor, h: float
) -> StepResult:
    """Attempt one step of signed size ``h`` from ``(state.t, state.y)``.

    ``state.f`` is evaluated lazily so that a failing right-hand side at the
    start point surfaces as a rejectable ``DomainError``. The state is not
    otherwise modified.

    Raises
    ------
    DomainError
        Non-finite derivative or candidate state.
    SolverFailure
        Linear/nonlinear solve failed.

    """
    fn = _STEPPERS.get(descriptor.family)
    if fn is None:
        raise QPSConfigError(f"[533] No stepper for family '{descriptor.family}'")
    if state.f is None:
        state.f = ctx.rhs(state.t, state.y)
    result = fn(ctx, state, descriptor, h)
    if not np.all(np.isfinite(result.y_new)):
        raise DomainError(f"[311] Non-finite candidate state at t={state.t + h}", t=state.t + h)
    if not np.isfinite(result.err):
        raise DomainError(f"[312] Non-finite error estimate at t={state.t + h}", t=state.t + h)
    return result
