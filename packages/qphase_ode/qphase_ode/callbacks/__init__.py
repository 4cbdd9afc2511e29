"""qphase_ode: Callbacks Subpackage
-------------------------------
Continuous (root-found) and discrete callbacks, the ready-made library and
ProbInts uncertainty quantification.
"""

from .base import CallbackPhase, CallbackSet, ContinuousCallback, DiscreteCallback
from .library import (
    PeriodicCallback,
    PresetTimeCallback,
    StepsizeLimiter,
    TerminateSteadyState,
)
from .manager import CallbackManager, EventHit
from .uncertainty import AdaptiveProbIntsUncertainty, ProbIntsUncertainty

__all__ = [
    "CallbackPhase",
    "CallbackSet",
    "ContinuousCallback",
    "DiscreteCallback",
    "PeriodicCallback",
    "PresetTimeCallback",
    "StepsizeLimiter",
    "TerminateSteadyState",
    "CallbackManager",
    "EventHit",
    "ProbIntsUncertainty",
    "AdaptiveProbIntsUncertainty",
]
