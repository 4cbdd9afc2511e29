"""qphase_ode: Linear/Nonlinear Solvers and Jacobians
-------------------------------------------------

Narrow solver interfaces consumed by the implicit and Rosenbrock steppers,
with dense default implementations.

Public API
----------
``LinearSolver`` / ``NonlinearSolver`` / ``JacobianProvider`` : protocols
``DenseLUSolver`` : ``scipy.linalg`` LU with factorization reuse
``NumpyDenseSolver`` : one-shot ``numpy.linalg.solve``
``NewtonSolver`` : simplified Newton iteration with rate monitoring
``finite_difference_jacobian`` / ``finite_difference_tgrad`` : FD helpers

Notes
-----
- Every failure raises ``SolverFailure``; the engine turns it into a step
  rejection, never into a fatal error by itself.
- Solver instances hold per-trajectory caches and are created per engine
  from factories, so they are never shared across threads.
"""

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import numpy as np
from scipy import linalg as sla

from .errors import SolverFailure
from .registry import register

__all__ = [
    "LinearSolver",
    "NonlinearSolver",
    "JacobianProvider",
    "DenseLUSolver",
    "NumpyDenseSolver",
    "NewtonSolver",
    "finite_difference_jacobian",
    "finite_difference_tgrad",
]

_EPS = np.finfo(float).eps


@runtime_checkable
class LinearSolver(Protocol):
    """Solve ``A x = b``. Raises ``SolverFailure`` on singular systems."""

    def solve(self, A: np.ndarray, b: np.ndarray) -> np.ndarray: ...


@runtime_checkable
class NonlinearSolver(Protocol):
    """Find ``x`` with ``residual(x) = 0`` starting from ``guess``."""

    def solve_nonlinear(
        self,
        residual: Callable[[np.ndarray], np.ndarray],
        guess: np.ndarray,
        jacobian: np.ndarray | None = None,
        norm: Callable[[np.ndarray], float] | None = None,
    ) -> np.ndarray: ...


@runtime_checkable
class JacobianProvider(Protocol):
    """Return ``df/dy`` at ``(t, y)``; e.g. an automatic-differentiation hook."""

    def __call__(self, f: Callable, t: float, y: np.ndarray) -> np.ndarray: ...


@register("linear_solver", "lu")
class DenseLUSolver:
    """Dense LU solver reusing the factorization while ``A`` is the same object.

    Steppers build a fresh iteration matrix whenever ``h`` or ``J`` changes,
    so identity of ``A`` is a sufficient cache key.
    """

    def __init__(self) -> None:
        self._A: np.ndarray | None = None
        self._lu: tuple[np.ndarray, np.ndarray] | None = None
        self.n_factorizations = 0
        self.n_solves = 0

    def factorize(self, A: np.ndarray) -> None:
        A = np.asarray(A, dtype=float)
        try:
            lu, piv = sla.lu_factor(A, check_finite=True)
        except (ValueError, sla.LinAlgError) as e:
            raise SolverFailure(f"[331] LU factorization failed: {e}") from e
        if np.any(np.diag(lu) == 0.0):
            raise SolverFailure("[332] Singular iteration matrix")
        self._A = A
        self._lu = (lu, piv)
        self.n_factorizations += 1

    def solve(self, A: np.ndarray, b: np.ndarray) -> np.ndarray:
        if self._lu is None or A is not self._A:
            self.factorize(A)
            self._A = A
        assert self._lu is not None
        x = sla.lu_solve(self._lu, np.asarray(b, dtype=float), check_finite=False)
        self.n_solves += 1
        if not np.all(np.isfinite(x)):
            raise SolverFailure("[333] Linear solve produced non-finite values")
        return x


@register("linear_solver", "dense")
class NumpyDenseSolver:
    """Unfactored dense solve; useful for tiny systems and testing."""

    def __init__(self) -> None:
        self.n_factorizations = 0
        self.n_solves = 0

    def solve(self, A: np.ndarray, b: np.ndarray) -> np.ndarray:
        try:
            x = np.linalg.solve(np.asarray(A, dtype=float), np.asarray(b, dtype=float))
        except np.linalg.LinAlgError as e:
            raise SolverFailure(f"[332] Singular iteration matrix: {e}") from e
        self.n_factorizations += 1
        self.n_solves += 1
        if not np.all(np.isfinite(x)):
            raise SolverFailure("[333] Linear solve produced non-finite values")
        return x


@register("nonlinear_solver", "newton")
class NewtonSolver:
    """Simplified Newton iteration with a frozen Jacobian.

    Parameters
    ----------
    linear_solver : LinearSolver, optional
        Solver for the Newton corrections; a ``DenseLUSolver`` by default.
    tol : float
        Convergence tolerance on the (weighted) norm of the update, corrected
        by the observed contraction rate ``theta / (1 - theta)``.
    max_iter : int
        Iteration budget per call.

    """

    def __init__(
        self,
        linear_solver: LinearSolver | None = None,
        tol: float = 1e-3,
        max_iter: int = 10,
    ) -> None:
        self.linear_solver = linear_solver if linear_solver is not None else DenseLUSolver()
        self.tol = float(tol)
        self.max_iter = int(max_iter)
        self.n_iterations = 0
        self.n_failures = 0

    def solve_nonlinear(
        self,
        residual: Callable[[np.ndarray], np.ndarray],
        guess: np.ndarray,
        jacobian: np.ndarray | None = None,
        norm: Callable[[np.ndarray], float] | None = None,
    ) -> np.ndarray:
        norm = norm or (lambda v: float(np.sqrt(np.mean(np.square(v)))))
        x = np.array(guess, dtype=float)
        if jacobian is None:
            r0 = np.asarray(residual(x), dtype=float)
            jacobian = finite_difference_jacobian(lambda _t, z: residual(z), 0.0, x, r0)
        dx_prev = None
        for _ in range(self.max_iter):
            self.n_iterations += 1
            r = np.asarray(residual(x), dtype=float)
            if not np.all(np.isfinite(r)):
                self.n_failures += 1
                raise SolverFailure("[334] Residual is not finite")
            dx = self.linear_solver.solve(jacobian, -r)
            x = x + dx
            ndx = norm(dx)
            if ndx == 0.0:
                return x
            if dx_prev is not None:
                theta = ndx / dx_prev
                if theta >= 1.0:
                    self.n_failures += 1
                    raise SolverFailure(f"[335] Newton diverging (rate {theta:.3g})")
                if theta / (1.0 - theta) * ndx <= self.tol:
                    return x
            elif ndx <= 1e-2 * self.tol:
                return x
            dx_prev = ndx
        self.n_failures += 1
        raise SolverFailure(f"[336] Newton did not converge in {self.max_iter} iterations")


def finite_difference_jacobian(
    f: Callable[[float, np.ndarray], Any],
    t: float,
    y: np.ndarray,
    f0: np.ndarray | None = None,
) -> np.ndarray:
    """Forward-difference approximation of ``df/dy`` column by column."""
    y = np.asarray(y, dtype=float)
    f0 = np.asarray(f(t, y) if f0 is None else f0, dtype=float)
    n = y.shape[0]
    J = np.empty((f0.shape[0], n))
    for j in range(n):
        delta = np.sqrt(_EPS * max(1e-5, abs(y[j])))
        yj = y.copy()
        yj[j] += delta
        J[:, j] = (np.asarray(f(t, yj), dtype=float) - f0) / delta
    return J


def finite_difference_tgrad(
    f: Callable[[float, np.ndarray], Any],
    t: float,
    y: np.ndarray,
    f0: np.ndarray | None = None,
) -> np.ndarray:
    """Forward-difference approximation of ``df/dt``."""
    f0 = np.asarray(f(t, y) if f0 is None else f0, dtype=float)
    delta = np.sqrt(_EPS) * max(1.0, abs(t))
    return (np.asarray(f(t + delta, y), dtype=float) - f0) / delta
