"""qphase_ode: Integrator State
--------------------------

Mutable, engine-owned state of one trajectory plus the read-only view handed
to composite selectors.

Public API
----------
``IntegratorState`` : current point, step size, counters and controller memory
``IntegratorView`` : frozen snapshot for pure algorithm selection
``SolverStats`` : work counters reported on the solution
"""

from collections import deque
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from ..integrator.descriptor import AlgorithmDescriptor
    from ..interpolation import DenseOutput

__all__ = ["IntegratorState", "IntegratorView", "SolverStats"]


@dataclass
class SolverStats:
    """Work counters for one integration."""

    nf: int = 0
    njacs: int = 0
    nw: int = 0
    nsolve: int = 0
    nnonliniter: int = 0
    nnonlinconvfail: int = 0
    naccept: int = 0
    nreject: int = 0
    nswitch: int = 0
    nevents: int = 0
    nstarter: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class IntegratorState:
    """Current integration state.

    Attributes
    ----------
    t, y : float, ndarray
        Latest accepted point.
    dt : float
        Proposed magnitude of the next step (always positive).
    tdir : float
        ``+1`` forward, ``-1`` backward.
    f : ndarray or None
        ``f(t, y)``; None until first evaluated or after ``y`` was modified.
    tprev, yprev : float, ndarray
        Previous accepted point.
    n_steps : int
        Accepted steps so far.
    n_consecutive_reject : int
        Rejections since the last acceptance.
    err_prev : float
        Error norm of the last accepted step, used by the PI integral term.
    last_err : float
        Error norm of the most recent accepted step as seen by callbacks.
    last_rejected : bool
        The previous attempt was rejected; the next acceptance may not grow ``dt``.
    active : int
        Index of the active descriptor within the algorithm tuple.
    history : deque
        ``(t, f)`` pairs of recent accepted points for multistep methods.
    stiffness : float
        Estimate of the dominant eigenvalue magnitude from the last step.

    """

    t: float
    y: np.ndarray
    dt: float
    tdir: float
    descriptor: "AlgorithmDescriptor"
    f: np.ndarray | None = None
    tprev: float | None = None
    yprev: np.ndarray | None = None
    n_steps: int = 0
    n_consecutive_reject: int = 0
    err_prev: float = 1e-4
    last_err: float = 0.0
    last_rejected: bool = False
    active: int = 0
    history: deque = field(default_factory=deque)
    stiffness: float = 0.0
    stats: SolverStats = field(default_factory=SolverStats)
    dense: "DenseOutput | None" = None

    @property
    def h(self) -> float:
        """Signed proposed step."""
        return self.tdir * self.dt

    def view(self) -> "IntegratorView":
        y = self.y.copy()
        y.setflags(write=False)
        return IntegratorView(
            t=self.t,
            y=y,
            dt=self.dt,
            tdir=self.tdir,
            n_steps=self.n_steps,
            n_reject=self.stats.nreject,
            active=self.active,
            err_prev=self.err_prev,
            stiffness=self.stiffness,
            descriptor=self.descriptor,
        )


@dataclass(frozen=True)
class IntegratorView:
    """Read-only snapshot passed to composite selectors."""

    t: float
    y: np.ndarray
    dt: float
    tdir: float
    n_steps: int
    n_reject: int
    active: int
    err_prev: float
    stiffness: float
    descriptor: Any

    @property
    def stiffness_ratio(self) -> float:
        """``dt * |lambda|``, compared against explicit stability bounds."""
        return self.dt * self.stiffness
