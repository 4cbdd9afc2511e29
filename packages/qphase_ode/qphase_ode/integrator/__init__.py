"""qphase_ode: Integrator Subpackage
--------------------------------
Algorithm descriptors, the per-family steppers and composite selection.

Importing this package registers every built-in descriptor in the
``algorithm`` registry namespace and the default solvers in
``linear_solver`` / ``nonlinear_solver``.
"""

from .descriptor import AlgorithmDescriptor, Family, Interpolant, Stiffness  # isort: skip
from .base import StepContext, StepResult, attempt_step  # isort: skip
from . import explicit_rk, implicit, multistep, rosenbrock  # noqa: F401
from .composite import CompositeAlgorithm, StiffnessSwitch, resolve_descriptor
from .tableaus import BUILTIN

__all__ = [
    "AlgorithmDescriptor",
    "Family",
    "Interpolant",
    "Stiffness",
    "StepContext",
    "StepResult",
    "attempt_step",
    "CompositeAlgorithm",
    "StiffnessSwitch",
    "resolve_descriptor",
    "BUILTIN",
]
