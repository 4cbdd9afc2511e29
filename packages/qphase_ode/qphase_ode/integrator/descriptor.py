"""qphase_ode: Algorithm Descriptor
-------------------------------

Static, immutable data describing a stepping method. Steppers are selected by
the descriptor's ``family`` value; there is no per-method subclass.

Public API
----------
``AlgorithmDescriptor`` : Butcher data, orders, interpolant tag and flags
``Family`` / ``Stiffness`` : string constants for the value-based dispatch
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import numpy as np

from ..core.errors import QPSConfigError

__all__ = ["AlgorithmDescriptor", "Family", "Stiffness", "Interpolant"]


class Family:
    """Stepper families understood by ``integrator.base.attempt_step``."""

    EXPLICIT = "explicit_rk"
    ROSENBROCK = "rosenbrock"
    IMPLICIT = "implicit"
    MULTISTEP = "multistep"


class Stiffness:
    EXPLICIT = "explicit"
    ROSENBROCK_W = "rosenbrock_w"
    IMPLICIT = "implicit"


class Interpolant:
    """Tags for dense-output segments, dispatched at evaluation time."""

    LINEAR = "linear"
    HERMITE = "hermite"
    DOPRI5 = "dopri5"
    ROSENBROCK23 = "rosenbrock23"


def _frozen(values: Any, ndim: int) -> np.ndarray | None:
    if values is None:
        return None
    arr = np.array(values, dtype=float, ndmin=ndim)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class AlgorithmDescriptor:
    """Immutable description of one stepping algorithm.

    Attributes
    ----------
    name : str
        Registry key (``"dp5"``, ``"rosenbrock23"``, ...).
    family : str
        One of the ``Family`` constants; selects the stepper.
    order : int
        Order of the propagated solution.
    adaptive_order : int or None
        Order used in the controller exponent ``1/(q+1)``; the order of the
        error estimate's lower member. None when no estimator exists.
    A, b, c : array-like, optional
        Butcher tableau. ``A`` is strictly lower triangular for explicit RK.
    b_err : array-like, optional
        Embedded weights ``b*``; the estimate is ``h * (b - b*) @ K``.
    fsal : bool
        Last stage equals ``f(t+h, y_new)``.
    interpolant : str
        Dense-output tag (``Interpolant`` constants).
    stiffness : str
        Stability class (``Stiffness`` constants).
    requires_linear_solver, requires_nonlinear_solver : bool
        Whether each attempt consumes the respective solver.
    steps : int
        History length for multistep methods (1 for one-step methods).
    starter : str or None
        Self-starting method used while multistep history is short.
    coefficients : Mapping[str, Any]
        Family-specific constants (Rosenbrock ``d``, Milne factor, ...).

    """

    name: str
    family: str
    order: int
    adaptive_order: int | None = None
    A: Sequence[Sequence[float]] | None = None
    b: Sequence[float] | None = None
    c: Sequence[float] | None = None
    b_err: Sequence[float] | None = None
    fsal: bool = False
    interpolant: str = Interpolant.HERMITE
    stiffness: str = Stiffness.EXPLICIT
    requires_linear_solver: bool = False
    requires_nonlinear_solver: bool = False
    steps: int = 1
    starter: str | None = None
    coefficients: Mapping[str, Any] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "A", _frozen(self.A, 2))
        object.__setattr__(self, "b", _frozen(self.b, 1))
        object.__setattr__(self, "c", _frozen(self.c, 1))
        object.__setattr__(self, "b_err", _frozen(self.b_err, 1))
        object.__setattr__(self, "coefficients", MappingProxyType(dict(self.coefficients)))
        if self.family == Family.EXPLICIT:
            self._check_tableau()

    def _check_tableau(self) -> None:
        if self.A is None or self.b is None or self.c is None:
            raise QPSConfigError(f"[520] Tableau '{self.name}' needs A, b and c")
        s = self.b.shape[0]
        if self.A.shape != (s, s) or self.c.shape != (s,):
            raise QPSConfigError(f"[521] Tableau '{self.name}' has inconsistent shapes")
        if np.any(np.triu(self.A) != 0.0):
            raise QPSConfigError(
                f"[522] Tableau '{self.name}' is not strictly lower triangular"
            )
        if self.b_err is not None and self.b_err.shape != (s,):
            raise QPSConfigError(f"[521] Embedded weights of '{self.name}' mismatch")
        if not np.allclose(self.A.sum(axis=1), self.c):
            raise QPSConfigError(f"[523] Tableau '{self.name}' violates row-sum = c")

    @property
    def stages(self) -> int:
        return 0 if self.b is None else int(self.b.shape[0])

    @property
    def is_adaptive(self) -> bool:
        """True when the method provides a local error estimate."""
        return self.adaptive_order is not None

    @property
    def is_multistep(self) -> bool:
        return self.family == Family.MULTISTEP

    def __repr__(self) -> str:
        return (
            f"AlgorithmDescriptor(name={self.name!r}, family={self.family!r}, "
            f"order={self.order}, adaptive_order={self.adaptive_order})"
        )
