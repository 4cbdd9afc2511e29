"""qphase_ode: Core Subpackage
--------------------------
Errors, logging, registry, configuration, controller and the engine.

Only the dependency-free pieces are imported here; import ``core.engine`` or
``core.config`` (or the top-level ``qphase_ode`` package) for the rest.
"""

from .errors import (
    ConvergenceFailure,
    DomainError,
    EventRootFindingFailure,
    OutOfRangeError,
    QPSConfigError,
    QPSError,
    QPSWarning,
    SolverFailure,
    configure_logging,
    get_logger,
)
from .registry import registry

__all__ = [
    "QPSError",
    "QPSConfigError",
    "QPSWarning",
    "DomainError",
    "ConvergenceFailure",
    "OutOfRangeError",
    "SolverFailure",
    "EventRootFindingFailure",
    "get_logger",
    "configure_logging",
    "registry",
]
