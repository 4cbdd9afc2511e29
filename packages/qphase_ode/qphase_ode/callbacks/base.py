"""qphase_ode: Callback Specifications
---------------------------------

Immutable callback specs. Anything that varies per trajectory (RNG streams,
next periodic time) lives in ``integrator.callback_state(cb)``, so one spec can
be shared by many concurrent integrations.

Public API
----------
``ContinuousCallback`` : root-found zero crossing of ``condition(t, y, integrator)``
``DiscreteCallback`` : checked after every accepted step
``CallbackSet`` : ordered collection (continuous and discrete kept in order)
``CallbackPhase`` : per-callback state machine labels
"""

from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

import numpy as np

from ..core.errors import QPSConfigError

__all__ = [
    "CallbackPhase",
    "ContinuousCallback",
    "DiscreteCallback",
    "CallbackSet",
    "Condition",
    "Affect",
]

Condition = Callable[[float, np.ndarray, Any], Any]
Affect = Callable[[Any], None]


class CallbackPhase(str, Enum):
    IDLE = "idle"
    CONDITION_TRIGGERED = "condition_triggered"
    ROOT_FINDING = "root_finding"
    AFFECTING = "affecting"


class _Same:
    def __repr__(self) -> str:
        return "SAME_AS_AFFECT"


SAME_AS_AFFECT: Any = _Same()


class ContinuousCallback:
    """Event at a sign change of ``condition`` between step endpoints.

    Parameters
    ----------
    condition : Callable[[float, ndarray, integrator], float]
        Event function ``g(t, y, integrator)``.
    affect : Callable[[integrator], None] or None
        Applied on up-crossings (``g`` from negative to positive).
    affect_neg : Callable or None, optional
        Applied on down-crossings; defaults to ``affect``. ``None`` ignores
        that direction.
    rootfind_tol : float
        Absolute time tolerance of the root search.
    max_iter : int
        Root-search iteration budget.
    interp_points : int
        Number of equal sub-intervals scanned per step, so a double crossing
        inside one step is still caught.
    save_positions : tuple[bool, bool]
        Save the state just before and just after ``affect``.
    terminal : bool
        Terminate the integration after ``affect``.
    initialize : Callable[[callback, integrator], None], optional
        Called once before the first step.

    """

    def __init__(
        self,
        condition: Condition,
        affect: Affect | None,
        affect_neg: Any = SAME_AS_AFFECT,
        rootfind_tol: float = 1e-12,
        max_iter: int = 100,
        interp_points: int = 10,
        save_positions: tuple[bool, bool] = (True, True),
        terminal: bool = False,
        initialize: Callable[[Any, Any], None] | None = None,
        name: str = "",
    ) -> None:
        if not callable(condition):
            raise QPSConfigError("[550] ContinuousCallback condition must be callable")
        if interp_points < 1:
            raise QPSConfigError("[551] interp_points must be >= 1")
        self.condition = condition
        self.affect = affect
        self.affect_neg = affect if affect_neg is SAME_AS_AFFECT else affect_neg
        self.rootfind_tol = float(rootfind_tol)
        self.max_iter = int(max_iter)
        self.interp_points = int(interp_points)
        self.save_positions = tuple(save_positions)
        self.terminal = bool(terminal)
        self._initialize = initialize
        self.name = name or getattr(condition, "__name__", "continuous")

    def affect_for(self, upcrossing: bool) -> Affect | None:
        return self.affect if upcrossing else self.affect_neg

    def initialize(self, integrator: Any) -> None:
        if self._initialize is not None:
            self._initialize(self, integrator)

    def __repr__(self) -> str:
        return f"ContinuousCallback({self.name!r})"


class DiscreteCallback:
    """Callback checked once after every accepted step.

    Parameters
    ----------
    condition : Callable[[float, ndarray, integrator], bool] or None
        ``None`` means "every step".
    affect : Callable[[integrator], None]
        Applied when the condition holds.
    save_positions : tuple[bool, bool]
        Save the state just before and just after ``affect``.

    Subclasses customise behaviour by overriding ``check``, ``apply`` and
    ``initialize``.
    """

    def __init__(
        self,
        condition: Condition | None = None,
        affect: Affect | None = None,
        save_positions: tuple[bool, bool] = (True, True),
        initialize: Callable[[Any, Any], None] | None = None,
        name: str = "",
    ) -> None:
        self.condition = condition
        self.affect = affect
        self.save_positions = tuple(save_positions)
        self._initialize = initialize
        self.name = name or type(self).__name__

    def check(self, t: float, y: np.ndarray, integrator: Any) -> bool:
        if self.condition is None:
            return True
        return bool(self.condition(t, y, integrator))

    def apply(self, integrator: Any) -> None:
        if self.affect is not None:
            self.affect(integrator)

    def initialize(self, integrator: Any) -> None:
        if self._initialize is not None:
            self._initialize(self, integrator)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class CallbackSet:
    """Ordered set of callbacks; nested sets and ``None`` are flattened.

    Examples
    --------
    >>> cbs = CallbackSet(DiscreteCallback(affect=lambda i: None))
    >>> len(cbs.discrete)
    1

    """

    def __init__(self, *callbacks: Any) -> None:
        cont: list[ContinuousCallback] = []
        disc: list[DiscreteCallback] = []
        for cb in self._flatten(callbacks):
            if isinstance(cb, ContinuousCallback):
                cont.append(cb)
            elif isinstance(cb, DiscreteCallback):
                disc.append(cb)
            else:
                raise QPSConfigError(f"[552] Not a callback: {cb!r}")
        self.continuous: tuple[ContinuousCallback, ...] = tuple(cont)
        self.discrete: tuple[DiscreteCallback, ...] = tuple(disc)

    @classmethod
    def _flatten(cls, items: Iterable[Any]):
        for cb in items:
            if cb is None:
                continue
            if isinstance(cb, CallbackSet):
                yield from cb.continuous
                yield from cb.discrete
            elif isinstance(cb, (list, tuple)):
                yield from cls._flatten(cb)
            else:
                yield cb

    @classmethod
    def from_any(cls, value: Any) -> "CallbackSet":
        if isinstance(value, CallbackSet):
            return value
        return cls(value)

    def __len__(self) -> int:
        return len(self.continuous) + len(self.discrete)

    def __iter__(self):
        yield from self.continuous
        yield from self.discrete

    def __repr__(self) -> str:
        return f"CallbackSet(continuous={len(self.continuous)}, discrete={len(self.discrete)})"
