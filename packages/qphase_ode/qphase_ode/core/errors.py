"""qphase_ode: Errors, Warnings and Logging
--------------------------------------

Every failure raised by the integration engine derives from ``QPSError``
and carries a bracketed numeric code at the start of its message
(``"[320] 100 consecutive rejections at t=0.41"``).

Code ranges
-----------
- 3xx ``QPSIntegratorError``: step attempts and the integration loop
    - 310 ``DomainError``: non-finite derivative or candidate state
    - 320 ``ConvergenceFailure``: rejection ceiling reached (fatal)
    - 330 ``SolverFailure``: one linear/nonlinear solve failed
- 4xx ``QPSRegistryError``: registration and lazy imports
- 5xx ``QPSConfigError``: options, YAML files, plugin wiring
- 6xx ``QPSModelError``: problem definition
- 7xx ``QPSStateError``: dense output and stored results
    - 710 ``OutOfRangeError``: interpolation outside the covered span
- 9xx ``QPSWarning``: recoverable anomalies
    - 910 ``EventRootFindingFailure``

Logging
-------
All modules log through ``get_logger()`` ("qphase_ode"). ``configure_logging``
swaps the handlers (console, optional file, optional JSON lines) and routes
Python warnings into logging.
"""

import logging
import os
from typing import Any

__all__ = [
    "QPSError",
    "QPSConfigError",
    "QPSRegistryError",
    "QPSIntegratorError",
    "QPSModelError",
    "QPSStateError",
    "DomainError",
    "ConvergenceFailure",
    "SolverFailure",
    "OutOfRangeError",
    "QPSWarning",
    "EventRootFindingFailure",
    "get_logger",
    "configure_logging",
]


# =============================================================================
# Exceptions
# =============================================================================


class QPSError(Exception):
    """Root of all qphase_ode exceptions.

    Examples
    --------
    >>> try:
    ...     solve(problem)
    ... except QPSError as e:
    ...     print(f"integration failed: {e}")

    """


class QPSConfigError(QPSError):
    """Invalid or inconsistent options (5xx).

    Examples: ``dt_min > dt_max``, fixed-step mode without ``dt_initial``,
    an unknown algorithm name, an unreadable YAML file.
    """


class QPSRegistryError(QPSError):
    """Duplicate registrations, alias cycles, failing lazy imports (4xx)."""


class QPSIntegratorError(QPSError):
    """Failures inside a step attempt or the integration loop (3xx)."""


class QPSModelError(QPSError):
    """Malformed problem: empty ``u0``, degenerate ``tspan``, bad RHS shape (6xx)."""


class QPSStateError(QPSError):
    """Misuse of dense output or stored results (7xx)."""


class DomainError(QPSIntegratorError):
    """The right-hand side left its domain (310).

    The engine rejects the attempt and shrinks ``dt`` by ``domain_shrink``;
    the error becomes fatal only through the rejection ceiling.

    Attributes
    ----------
    t : float or None
        Time of the offending evaluation.

    """

    def __init__(self, message: str, t: float | None = None) -> None:
        super().__init__(message)
        self.t = t


class ConvergenceFailure(QPSIntegratorError):
    """``max_rejections`` consecutive rejections (320).

    Attributes
    ----------
    n_rejections : int
        Consecutive rejections at the time of failure.
    solution : Solution or None
        Everything saved up to the last accepted step, with retcode ``Failure``.

    """

    def __init__(
        self, message: str, n_rejections: int = 0, solution: Any | None = None
    ) -> None:
        super().__init__(message)
        self.n_rejections = n_rejections
        self.solution = solution


class SolverFailure(QPSIntegratorError):
    """Singular iteration matrix or non-converging Newton iteration (330)."""


class OutOfRangeError(QPSStateError):
    """Dense output queried outside ``[t0, t_end]`` of the covered segments (710)."""


class QPSWarning(Warning):
    """Root of all qphase_ode warnings."""


class EventRootFindingFailure(QPSWarning):
    """An event time could not be refined to tolerance (910).

    The event is placed at the post-crossing end of the last bracket.
    """


# =============================================================================
# Logging
# =============================================================================

_LOGGER_NAME = "qphase_ode"
_PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_JSON_FORMAT = (
    '{"time":"%(asctime)s","level":"%(levelname)s",'
    '"logger":"%(name)s","msg":"%(message)s"}'
)
_logger: logging.Logger | None = None


def _formatter(as_json: bool) -> logging.Formatter:
    return logging.Formatter(_JSON_FORMAT if as_json else _PLAIN_FORMAT)


def get_logger() -> logging.Logger:
    """Return the package logger, creating its console handler on first use.

    Examples
    --------
    >>> get_logger().name
    'qphase_ode'

    """
    global _logger
    if _logger is None:
        logger = logging.getLogger(_LOGGER_NAME)
        logger.setLevel(logging.INFO)
        if not logger.handlers:
            console = logging.StreamHandler()
            console.setFormatter(_formatter(as_json=False))
            logger.addHandler(console)
        _logger = logger
    return _logger


def configure_logging(
    verbose: bool = False,
    log_file: str | os.PathLike | None = None,
    as_json: bool = False,
    suppress_warnings: bool = False,
) -> None:
    """Replace the package logger's handlers.

    Parameters
    ----------
    verbose : bool
        DEBUG level (rejections, switches, events) instead of INFO.
    log_file : path-like, optional
        Also append records to this file.
    as_json : bool
        One JSON object per line instead of plain text.
    suppress_warnings : bool
        Captured Python warnings are only shown at ERROR level.

    Raises
    ------
    QPSConfigError
        - [501] ``log_file`` cannot be opened.

    """
    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    fmt = _formatter(as_json)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        try:
            handlers.append(logging.FileHandler(os.fspath(log_file), encoding="utf-8"))
        except OSError as e:
            raise QPSConfigError(f"[501] Cannot open log file '{log_file}': {e}") from e
    for handler in handlers:
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    logging.captureWarnings(True)
    level = logging.ERROR if suppress_warnings else logging.WARNING
    logging.getLogger("py.warnings").setLevel(level)

