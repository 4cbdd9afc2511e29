"""qphase_ode: Step-Size Control
----------------------------

PI controller on the weighted error norm and the supporting step-size
utilities (stop landing, initial step selection).

Control law
-----------
``dt_next = dt * clamp(safety * err^(-1/(q+1)) * err_prev^(beta/(q+1)),
min_factor, max_factor)`` on acceptance (``err <= 1``), where ``q`` is the
order of the error estimate. On rejection the integral term is dropped and
the factor is capped at 1. After a rejection the next accepted step does not
grow ``dt``.
"""

from typing import TYPE_CHECKING

import numpy as np

from .config import ControllerConfig
from .state import IntegratorState

if TYPE_CHECKING:
    from ..integrator.base import StepContext

__all__ = ["PIController", "initial_step"]

_EPS = np.finfo(float).eps
_TINY = 1e-16


class PIController:
    """Proportional-integral step-size controller.

    Parameters
    ----------
    config : ControllerConfig
        Gains and factor limits.
    dt_min : float
        Lower bound on ``dt``; a time-relative floor of ``16 eps |t|`` also applies.
    dt_max : float
        Upper bound on ``dt``.

    """

    def __init__(self, config: ControllerConfig, dt_min: float, dt_max: float) -> None:
        self.config = config
        self.dt_min = float(dt_min)
        self.dt_max = float(dt_max)

    def clamp(self, dt: float, t: float = 0.0) -> float:
        floor = max(self.dt_min, 16.0 * _EPS * max(1.0, abs(t)))
        return min(self.dt_max, max(floor, dt))

    def decide(self, err: float, order: int | None, state: IntegratorState) -> tuple[bool, float]:
        """Accept/reject a step with error norm ``err`` and propose the next ``dt``.

        Pure with respect to ``state``; call ``record`` after an acceptance.
        """
        cfg = self.config
        q = float(order) if order else 1.0
        e = max(float(err), _TINY)
        if err <= 1.0:
            factor = (
                cfg.safety
                * e ** (-1.0 / (q + 1.0))
                * max(state.err_prev, _TINY) ** (cfg.beta / (q + 1.0))
            )
            factor = min(cfg.max_factor, max(cfg.min_factor, factor))
            if state.last_rejected:
                factor = min(factor, 1.0)
            return True, self.clamp(state.dt * factor, state.t)
        factor = max(cfg.min_factor, cfg.safety * e ** (-1.0 / (q + 1.0)))
        return False, self.clamp(state.dt * min(factor, 1.0), state.t)

    def record(self, state: IntegratorState, err: float) -> None:
        """Store the accepted error for the next integral term."""
        state.err_prev = max(float(err), self.config.err_prev_init)
        state.last_rejected = False

    def reset(self, state: IntegratorState) -> None:
        """Forget controller memory (after an algorithm switch)."""
        state.err_prev = self.config.err_prev_init

    def shrink(self, state: IntegratorState, factor: float) -> float:
        """Forced shrink after a domain or solver failure."""
        return self.clamp(state.dt * factor, state.t)

    @staticmethod
    def limit_to_stop(t: float, dt: float, tdir: float, stop: float) -> tuple[float, bool]:
        """Shorten ``dt`` to land exactly on ``stop``; returns ``(dt, landed)``."""
        dist = tdir * (stop - t)
        if dist <= dt * (1.0 + 4.0 * _EPS):
            return dist, True
        return dt, False


def initial_step(
    ctx: "StepContext",
    t0: float,
    y0: np.ndarray,
    f0: np.ndarray,
    tdir: float,
    order: int,
    dt_max: float,
) -> float:
    """Hairer-Wanner starting step estimate (``hinit``).

    Uses one extra right-hand-side evaluation at ``t0 + tdir * h0``.
    """
    sc = ctx.scale(y0)
    d0 = ctx.reduce(y0 / sc)
    d1 = ctx.reduce(f0 / sc)
    h0 = 1e-6 if d0 < 1e-5 or d1 < 1e-5 else 0.01 * d0 / d1
    h0 = min(h0, dt_max)
    y1 = y0 + tdir * h0 * f0
    f1 = ctx.rhs(t0 + tdir * h0, y1)
    d2 = ctx.reduce((f1 - f0) / sc) / h0
    dmax = max(d1, d2)
    if dmax <= 1e-15:
        h1 = max(1e-6, h0 * 1e-3)
    else:
        h1 = (0.01 / dmax) ** (1.0 / (order + 1.0))
    return min(100.0 * h0, h1, dt_max)
