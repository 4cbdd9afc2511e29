"""qphase_ode: Callback Library
---------------------------

Ready-made callbacks built on ``DiscreteCallback``.

``PresetTimeCallback``
    Affect at given times; the times are registered as stops so the solver
    lands on them exactly.
``PeriodicCallback``
    Affect every ``period`` time units starting from ``t0 + period``.
``StepsizeLimiter``
    Cap the next ``dt`` by ``safety_factor * dt_limit(t, y)`` (e.g. a CFL bound).
``TerminateSteadyState``
    Stop once ``|f|`` is below tolerance in every component.
"""

from collections.abc import Callable
from typing import Any

import numpy as np

from ..core.errors import QPSConfigError
from .base import Affect, DiscreteCallback

__all__ = [
    "PresetTimeCallback",
    "PeriodicCallback",
    "StepsizeLimiter",
    "TerminateSteadyState",
]


class PresetTimeCallback(DiscreteCallback):
    """Apply ``affect`` exactly at each time in ``times``."""

    def __init__(
        self,
        times: Any,
        affect: Affect,
        save_positions: tuple[bool, bool] = (True, True),
        name: str = "",
    ) -> None:
        super().__init__(affect=affect, save_positions=save_positions, name=name)
        self.times = tuple(float(t) for t in np.atleast_1d(np.asarray(times, dtype=float)))

    def initialize(self, integrator: Any) -> None:
        pending = set()
        for t in self.times:
            if t == integrator.t:
                self.apply(integrator)
                integrator.finalize_modification()
            elif integrator.tdir * (t - integrator.t) > 0:
                integrator.add_tstop(t)
                pending.add(t)
        integrator.callback_state(self)["pending"] = pending

    def check(self, t: float, y: np.ndarray, integrator: Any) -> bool:
        pending = integrator.callback_state(self)["pending"]
        if t in pending:
            pending.discard(t)
            return True
        return False


class PeriodicCallback(DiscreteCallback):
    """Apply ``affect`` at ``t0 + k * period`` for ``k = 1, 2, ...``.

    Parameters
    ----------
    affect : Callable[[integrator], None]
        Action to perform.
    period : float
        Positive interval length.
    initial_affect : bool
        Also apply at ``t0``.

    """

    def __init__(
        self,
        affect: Affect,
        period: float,
        initial_affect: bool = False,
        save_positions: tuple[bool, bool] = (True, True),
        name: str = "",
    ) -> None:
        super().__init__(affect=affect, save_positions=save_positions, name=name)
        if period <= 0:
            raise QPSConfigError("[553] PeriodicCallback period must be positive")
        self.period = float(period)
        self.initial_affect = bool(initial_affect)

    def initialize(self, integrator: Any) -> None:
        st = integrator.callback_state(self)
        st["t0"] = integrator.t
        st["k"] = 1
        st["next"] = integrator.t + integrator.tdir * self.period
        integrator.add_tstop(st["next"])
        if self.initial_affect:
            self.apply(integrator)
            integrator.finalize_modification()

    def check(self, t: float, y: np.ndarray, integrator: Any) -> bool:
        return t == integrator.callback_state(self)["next"]

    def apply(self, integrator: Any) -> None:
        st = integrator.callback_state(self)
        if integrator.t == st.get("next"):
            st["k"] += 1
            # multiples of the period from t0 do not accumulate rounding
            st["next"] = st["t0"] + integrator.tdir * st["k"] * self.period
            integrator.add_tstop(st["next"])
        super().apply(integrator)


class StepsizeLimiter(DiscreteCallback):
    """Keep ``dt <= safety_factor * dt_limit(t, y)``.

    With ``max_step=True`` the limit is also imposed as the proposed step,
    i.e. the solver steps at exactly the limit.
    """

    def __init__(
        self,
        dt_limit: Callable[[float, np.ndarray], float],
        safety_factor: float = 1.0,
        max_step: bool = False,
    ) -> None:
        super().__init__(save_positions=(False, False), name="StepsizeLimiter")
        self.dt_limit = dt_limit
        self.safety_factor = float(safety_factor)
        self.max_step = bool(max_step)

    def _limit(self, integrator: Any) -> None:
        limit = self.safety_factor * float(self.dt_limit(integrator.t, integrator.y))
        if self.max_step or limit < integrator.proposed_dt:
            integrator.set_proposed_dt(limit)

    def initialize(self, integrator: Any) -> None:
        self._limit(integrator)

    def apply(self, integrator: Any) -> None:
        self._limit(integrator)


class TerminateSteadyState(DiscreteCallback):
    """Terminate when ``|f(t, y)| <= max(abstol, reltol * |y|)`` componentwise."""

    def __init__(
        self,
        abstol: float = 1e-8,
        reltol: float = 1e-6,
        min_t: float | None = None,
    ) -> None:
        super().__init__(save_positions=(False, False), name="TerminateSteadyState")
        self.abstol = float(abstol)
        self.reltol = float(reltol)
        self.min_t = min_t

    def check(self, t: float, y: np.ndarray, integrator: Any) -> bool:
        if self.min_t is not None and integrator.tdir * (t - self.min_t) < 0:
            return False
        du = np.abs(integrator.derivative())
        return bool(np.all(du <= np.maximum(self.abstol, self.reltol * np.abs(y))))

    def apply(self, integrator: Any) -> None:
        integrator.terminate()
