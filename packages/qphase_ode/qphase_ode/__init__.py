"""Adaptive ODE Integration
========================

Adaptive-step integration of ordinary differential equations for the qphase
framework: explicit Runge-Kutta, Rosenbrock, implicit and Adams methods
behind one engine, with PI step-size control, dense output, root-found
events, algorithm switching and ensemble execution.

Public API
----------
ODEProblem
    Initial value problem definition.
IntegratorConfig
    Validated integration options.
Engine, solve
    Integration driver and one-call wrapper.
Solution
    Saved trajectory with dense output.
solve_ensemble
    Many trajectories in a thread pool.
"""

# Trigger self-registration of built-in algorithms and solvers first.
from . import integrator as _qpo_integrators  # noqa: F401  # isort: skip

from .callbacks import (
    AdaptiveProbIntsUncertainty,
    CallbackSet,
    ContinuousCallback,
    DiscreteCallback,
    PeriodicCallback,
    PresetTimeCallback,
    ProbIntsUncertainty,
    StepsizeLimiter,
    TerminateSteadyState,
)
from .core.config import ControllerConfig, IntegratorConfig, NewtonConfig
from .core.engine import Engine, IntegratorHandle, solve
from .core.errors import (
    ConvergenceFailure,
    DomainError,
    EventRootFindingFailure,
    OutOfRangeError,
    QPSError,
    SolverFailure,
    configure_logging,
)
from .core.registry import registry
from .ensemble import EnsembleSolution, solve_ensemble
from .integrator import AlgorithmDescriptor, CompositeAlgorithm, StiffnessSwitch
from .problem import ODEProblem
from .result import ReturnCode, Solution

__version__ = "0.1.0 (Oct 2026)"

__all__ = [
    "ODEProblem",
    "IntegratorConfig",
    "ControllerConfig",
    "NewtonConfig",
    "Engine",
    "IntegratorHandle",
    "solve",
    "Solution",
    "ReturnCode",
    "EnsembleSolution",
    "solve_ensemble",
    "AlgorithmDescriptor",
    "CompositeAlgorithm",
    "StiffnessSwitch",
    "CallbackSet",
    "ContinuousCallback",
    "DiscreteCallback",
    "PeriodicCallback",
    "PresetTimeCallback",
    "StepsizeLimiter",
    "TerminateSteadyState",
    "ProbIntsUncertainty",
    "AdaptiveProbIntsUncertainty",
    "QPSError",
    "DomainError",
    "ConvergenceFailure",
    "OutOfRangeError",
    "SolverFailure",
    "EventRootFindingFailure",
    "configure_logging",
    "registry",
    "__version__",
]
