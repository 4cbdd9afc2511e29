"""qphase_ode: Callback Manager
---------------------------

Per-engine driver of the callback protocol.

Each continuous callback moves through
``IDLE -> CONDITION_TRIGGERED -> ROOT_FINDING -> AFFECTING -> IDLE``. After an
accepted step the manager scans every continuous condition on the step's
dense segment, root-finds inside the first bracketing sub-interval and
reports the earliest event across callbacks (ties go to the earlier callback
in the set). The engine rewinds to the event, asks the manager to apply it,
then runs the discrete callbacks.
"""

import warnings
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

from ..core.errors import EventRootFindingFailure, QPSStateError, get_logger
from ..interpolation import Segment
from .base import CallbackPhase, CallbackSet, ContinuousCallback
from .rootfind import find_root, is_crossing

__all__ = ["CallbackManager", "EventHit"]

SaveFn = Callable[[float, np.ndarray], None]


@dataclass(frozen=True)
class EventHit:
    """Located continuous event."""

    t: float
    index: int
    upcrossing: bool
    converged: bool


class CallbackManager:
    """Drives continuous and discrete callbacks for one integration."""

    def __init__(self, callbacks: CallbackSet | None = None) -> None:
        self.callbacks = callbacks if callbacks is not None else CallbackSet()
        self.continuous = self.callbacks.continuous
        self.discrete = self.callbacks.discrete
        self.phases = [CallbackPhase.IDLE] * len(self.continuous)
        self._gprev: list[float | None] = [None] * len(self.continuous)
        self.events: list[tuple[float, str]] = []
        self._busy = False

    def __bool__(self) -> bool:
        return len(self.callbacks) > 0

    def initialize(self, integrator: Any) -> None:
        for cb in self.callbacks:
            cb.initialize(integrator)
        self.refresh(integrator)

    def refresh(self, integrator: Any) -> None:
        """Re-evaluate conditions at the current point (after a step or an affect)."""
        for i, cb in enumerate(self.continuous):
            self._gprev[i] = float(cb.condition(integrator.t, integrator.y, integrator))

    # ------------------------------------------------------------ continuous
    def find_event(self, integrator: Any, segment: Segment) -> EventHit | None:
        tdir = integrator.tdir
        best: EventHit | None = None
        for i, cb in enumerate(self.continuous):
            hit = self._scan(i, cb, integrator, segment)
            if hit is not None and (best is None or tdir * hit.t < tdir * best.t):
                best = hit
        # only the earliest hit stays armed
        for j in range(len(self.continuous)):
            if best is None or j != best.index:
                self.phases[j] = CallbackPhase.IDLE
        return best

    def _scan(
        self, i: int, cb: ContinuousCallback, integrator: Any, seg: Segment
    ) -> EventHit | None:
        ga = self._gprev[i]
        if ga is None:
            ga = float(cb.condition(seg.t0, seg.y0, integrator))
        n = cb.interp_points
        ts = seg.t0 + (seg.t_end - seg.t0) * np.linspace(0.0, 1.0, n + 1)[1:]
        ts[-1] = seg.t_end
        ta = seg.t0
        for tb in ts:
            tb = float(tb)
            gb = float(cb.condition(tb, seg.evaluate(tb), integrator))
            if is_crossing(ga, gb):
                up = ga < 0.0
                self.phases[i] = CallbackPhase.CONDITION_TRIGGERED
                if cb.affect_for(up) is None:
                    self.phases[i] = CallbackPhase.IDLE
                else:
                    self.phases[i] = CallbackPhase.ROOT_FINDING

                    def g(s: float, _cb=cb) -> float:
                        return float(_cb.condition(s, seg.evaluate(s), integrator))

                    t_event, ok = find_root(g, ta, tb, ga, gb, cb.rootfind_tol, cb.max_iter)
                    if not ok:
                        msg = (
                            f"[910] Root finding for '{cb.name}' did not converge in "
                            f"[{ta}, {tb}]; using t={t_event}"
                        )
                        warnings.warn(msg, EventRootFindingFailure, stacklevel=2)
                        get_logger().warning(msg)
                    return EventHit(t=t_event, index=i, upcrossing=up, converged=ok)
            ta, ga = tb, gb
        return None

    def apply_event(self, integrator: Any, hit: EventHit, save: SaveFn) -> None:
        """Run the affect of ``hit`` at the (already rewound) integrator point."""
        if self._busy:
            raise QPSStateError("[730] Re-entrant callback application")
        cb = self.continuous[hit.index]
        affect = cb.affect_for(hit.upcrossing)
        self._busy = True
        try:
            if cb.save_positions[0]:
                save(integrator.t, integrator.y)
            self.phases[hit.index] = CallbackPhase.AFFECTING
            if affect is not None:
                affect(integrator)
            if cb.terminal:
                integrator.terminate()
            self.events.append((hit.t, cb.name))
            get_logger().debug("Event '%s' at t=%.16g", cb.name, hit.t)
        finally:
            self.phases[hit.index] = CallbackPhase.IDLE
            self._busy = False
        integrator.finalize_modification()
        if cb.save_positions[1]:
            save(integrator.t, integrator.y)

    # -------------------------------------------------------------- discrete
    def apply_discrete(self, integrator: Any, save: SaveFn) -> None:
        for cb in self.discrete:
            if integrator.terminated:
                break
            if not cb.check(integrator.t, integrator.y, integrator):
                continue
            if cb.save_positions[0]:
                save(integrator.t, integrator.y)
            cb.apply(integrator)
            integrator.finalize_modification()
            if cb.save_positions[1]:
                save(integrator.t, integrator.y)
