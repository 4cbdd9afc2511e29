"""qphase_ode: Problem Definition
-----------------------------

Immutable description of an initial value problem ``M y' = f(t, y)``,
``y(t0) = u0`` on ``tspan = (t0, tf)``.

The engine only holds a read-only reference; many trajectories may share one
``ODEProblem`` concurrently.
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np

from .core.errors import QPSModelError

__all__ = ["ODEProblem", "RHSFn", "JacobianFn", "TGradFn"]

RHSFn = Callable[[float, np.ndarray], Any]
"""Right-hand side ``f(t, y) -> dy``; must not mutate ``y``."""

JacobianFn = Callable[[float, np.ndarray], Any]
"""Jacobian ``df/dy`` at ``(t, y)`` with shape ``(n, n)``."""

TGradFn = Callable[[float, np.ndarray], Any]
"""Time derivative ``df/dt`` at ``(t, y)`` with shape ``(n,)``."""


def _readonly(a: np.ndarray) -> np.ndarray:
    a.setflags(write=False)
    return a


@dataclass(frozen=True, eq=False)
class ODEProblem:
    """Initial value problem.

    Parameters
    ----------
    f : Callable[[float, ndarray], array-like]
        Right-hand side.
    u0 : array-like
        Initial state; scalars are promoted to shape ``(1,)``.
    tspan : tuple[float, float]
        ``(t0, tf)``; ``tf < t0`` integrates backwards.
    jac : Callable, optional
        Analytic Jacobian.
    tgrad : Callable, optional
        Analytic ``df/dt`` for Rosenbrock stages.
    mass_matrix : array-like, optional
        Constant, non-singular mass matrix ``M``.
    name : str
        Label carried into solution metadata.

    Raises
    ------
    QPSModelError
        - [601] Empty or non-finite ``u0``.
        - [602] Degenerate ``tspan``.
        - [603] Mass matrix shape mismatch.

    Examples
    --------
    >>> prob = ODEProblem(lambda t, y: -y, [1.0], (0.0, 1.0))
    >>> prob.n
    1

    """

    f: RHSFn
    u0: Any
    tspan: tuple[float, float]
    jac: JacobianFn | None = None
    tgrad: TGradFn | None = None
    mass_matrix: Any | None = None
    name: str = "ode"
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        u0 = np.array(self.u0, dtype=float, ndmin=1)
        if u0.ndim != 1 or u0.size == 0:
            raise QPSModelError(f"[601] u0 must be a non-empty vector, got shape {u0.shape}")
        if not np.all(np.isfinite(u0)):
            raise QPSModelError("[601] u0 contains non-finite values")
        object.__setattr__(self, "u0", _readonly(u0))

        if len(self.tspan) != 2:
            raise QPSModelError("[602] tspan must be a pair (t0, tf)")
        t0, tf = float(self.tspan[0]), float(self.tspan[1])
        if not (np.isfinite(t0) and np.isfinite(tf)) or t0 == tf:
            raise QPSModelError(f"[602] Degenerate tspan {self.tspan!r}")
        object.__setattr__(self, "tspan", (t0, tf))

        if self.mass_matrix is not None:
            M = np.array(self.mass_matrix, dtype=float)
            if M.shape != (u0.size, u0.size):
                raise QPSModelError(
                    f"[603] Mass matrix shape {M.shape} does not match state size {u0.size}"
                )
            object.__setattr__(self, "mass_matrix", _readonly(M))

    @property
    def n(self) -> int:
        return int(self.u0.shape[0])

    @property
    def t0(self) -> float:
        return self.tspan[0]

    @property
    def tf(self) -> float:
        return self.tspan[1]

    @property
    def has_mass_matrix(self) -> bool:
        """True for a non-identity mass matrix."""
        M = self.mass_matrix
        return M is not None and not np.array_equal(M, np.eye(self.n))

    def remake(self, **changes: Any) -> "ODEProblem":
        """Return a copy with fields replaced (used by ensemble ``prob_func``)."""
        return replace(self, **changes)
