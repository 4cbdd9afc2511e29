"""qphase_ode: Built-in Algorithm Library
-------------------------------------

Descriptors for the built-in methods, self-registered under the ``algorithm``
namespace on import.

Explicit Runge-Kutta
    ``euler``, ``heun`` 2(1), ``rk4``, ``bs3`` 3(2) FSAL,
    ``dp5`` 5(4) FSAL with its free 4th-order continuous extension.
Strong stability preserving
    ``ssprk33`` (Shu-Osher, fixed step), ``ssprk43`` 3(2).
Rosenbrock-W
    ``rosenbrock23`` (Shampine-Reichelt, L-stable).
Fully implicit
    ``implicit_euler``.
Multistep
    ``abm3``, ``abm4`` (variable-step Adams-Bashforth-Moulton PECE).

References
----------
- Dormand, J. R., & Prince, P. J. (1980). A family of embedded Runge-Kutta
  formulae. J. Comput. Appl. Math., 6(1), 19-26.
- Bogacki, P., & Shampine, L. F. (1989). A 3(2) pair of Runge-Kutta formulas.
  Appl. Math. Lett., 2(4), 321-325.
- Shampine, L. F., & Reichelt, M. W. (1997). The MATLAB ODE Suite.
  SIAM J. Sci. Comput., 18(1), 1-22.
"""

from math import sqrt

from ..core.registry import registry
from .descriptor import AlgorithmDescriptor, Family, Interpolant, Stiffness

__all__ = [
    "EULER",
    "HEUN",
    "RK4",
    "BS3",
    "DP5",
    "SSPRK33",
    "SSPRK43",
    "ROSENBROCK23",
    "IMPLICIT_EULER",
    "ABM3",
    "ABM4",
    "BUILTIN",
]


EULER = AlgorithmDescriptor(
    name="euler",
    family=Family.EXPLICIT,
    order=1,
    A=[[0.0]],
    b=[1.0],
    c=[0.0],
    description="Forward Euler",
)

HEUN = AlgorithmDescriptor(
    name="heun",
    family=Family.EXPLICIT,
    order=2,
    adaptive_order=1,
    A=[[0.0, 0.0], [1.0, 0.0]],
    b=[0.5, 0.5],
    c=[0.0, 1.0],
    b_err=[1.0, 0.0],
    description="Heun 2(1) with embedded Euler",
)

RK4 = AlgorithmDescriptor(
    name="rk4",
    family=Family.EXPLICIT,
    order=4,
    A=[
        [0.0, 0.0, 0.0, 0.0],
        [0.5, 0.0, 0.0, 0.0],
        [0.0, 0.5, 0.0, 0.0],
        [0.0, 0.0, 1.0, 0.0],
    ],
    b=[1 / 6, 1 / 3, 1 / 3, 1 / 6],
    c=[0.0, 0.5, 0.5, 1.0],
    description="Classic 4-stage Runge-Kutta",
)

BS3 = AlgorithmDescriptor(
    name="bs3",
    family=Family.EXPLICIT,
    order=3,
    adaptive_order=2,
    A=[
        [0.0, 0.0, 0.0, 0.0],
        [1 / 2, 0.0, 0.0, 0.0],
        [0.0, 3 / 4, 0.0, 0.0],
        [2 / 9, 1 / 3, 4 / 9, 0.0],
    ],
    b=[2 / 9, 1 / 3, 4 / 9, 0.0],
    c=[0.0, 1 / 2, 3 / 4, 1.0],
    b_err=[7 / 24, 1 / 4, 1 / 3, 1 / 8],
    fsal=True,
    description="Bogacki-Shampine 3(2)",
)

DP5 = AlgorithmDescriptor(
    name="dp5",
    family=Family.EXPLICIT,
    order=5,
    adaptive_order=4,
    A=[
        [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        [1 / 5, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        [3 / 40, 9 / 40, 0.0, 0.0, 0.0, 0.0, 0.0],
        [44 / 45, -56 / 15, 32 / 9, 0.0, 0.0, 0.0, 0.0],
        [19372 / 6561, -25360 / 2187, 64448 / 6561, -212 / 729, 0.0, 0.0, 0.0],
        [9017 / 3168, -355 / 33, 46732 / 5247, 49 / 176, -5103 / 18656, 0.0, 0.0],
        [35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84, 0.0],
    ],
    b=[35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84, 0.0],
    c=[0.0, 1 / 5, 3 / 10, 4 / 5, 8 / 9, 1.0, 1.0],
    b_err=[
        5179 / 57600,
        0.0,
        7571 / 16695,
        393 / 640,
        -92097 / 339200,
        187 / 2100,
        1 / 40,
    ],
    fsal=True,
    interpolant=Interpolant.DOPRI5,
    coefficients={
        # continuous extension weights (Hairer, Norsett & Wanner, DOPRI5)
        "dense": (
            -12715105075 / 11282082432,
            0.0,
            87487479700 / 32700410799,
            -10690763975 / 1880347072,
            701980252875 / 199316789632,
            -1453857185 / 822651844,
            69997945 / 29380423,
        ),
    },
    description="Dormand-Prince 5(4)",
)

SSPRK33 = AlgorithmDescriptor(
    name="ssprk33",
    family=Family.EXPLICIT,
    order=3,
    A=[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1 / 4, 1 / 4, 0.0]],
    b=[1 / 6, 1 / 6, 2 / 3],
    c=[0.0, 1.0, 1 / 2],
    coefficients={"ssp_coefficient": 1.0},
    description="Shu-Osher SSP RK3",
)

SSPRK43 = AlgorithmDescriptor(
    name="ssprk43",
    family=Family.EXPLICIT,
    order=3,
    adaptive_order=2,
    A=[
        [0.0, 0.0, 0.0, 0.0],
        [1 / 2, 0.0, 0.0, 0.0],
        [1 / 2, 1 / 2, 0.0, 0.0],
        [1 / 6, 1 / 6, 1 / 6, 0.0],
    ],
    b=[1 / 6, 1 / 6, 1 / 6, 1 / 2],
    c=[0.0, 1 / 2, 1.0, 1 / 2],
    b_err=[1 / 4, 1 / 4, 1 / 4, 1 / 4],
    coefficients={"ssp_coefficient": 2.0},
    description="Four-stage SSP RK3 with embedded 2nd order",
)

_D = 1.0 / (2.0 + sqrt(2.0))

ROSENBROCK23 = AlgorithmDescriptor(
    name="rosenbrock23",
    family=Family.ROSENBROCK,
    order=2,
    adaptive_order=2,
    interpolant=Interpolant.ROSENBROCK23,
    stiffness=Stiffness.ROSENBROCK_W,
    requires_linear_solver=True,
    coefficients={"d": _D, "c32": 6.0 + sqrt(2.0)},
    description="Shampine-Reichelt Rosenbrock 2(3), L-stable",
)

IMPLICIT_EULER = AlgorithmDescriptor(
    name="implicit_euler",
    family=Family.IMPLICIT,
    order=1,
    adaptive_order=1,
    stiffness=Stiffness.IMPLICIT,
    requires_linear_solver=True,
    requires_nonlinear_solver=True,
    description="Backward Euler, error from the filtered derivative jump",
)

ABM3 = AlgorithmDescriptor(
    name="abm3",
    family=Family.MULTISTEP,
    order=3,
    adaptive_order=3,
    steps=3,
    starter="bs3",
    coefficients={"milne": 1 / 10},
    description="Adams-Bashforth-Moulton 3 PECE",
)

ABM4 = AlgorithmDescriptor(
    name="abm4",
    family=Family.MULTISTEP,
    order=4,
    adaptive_order=4,
    steps=4,
    starter="dp5",
    coefficients={"milne": 19 / 270},
    description="Adams-Bashforth-Moulton 4 PECE",
)

BUILTIN = (
    EULER,
    HEUN,
    RK4,
    BS3,
    DP5,
    SSPRK33,
    SSPRK43,
    ROSENBROCK23,
    IMPLICIT_EULER,
    ABM3,
    ABM4,
)

_ALIASES = {
    "dopri5": "dp5",
    "ode45": "dp5",
    "rk23": "bs3",
    "ode23": "bs3",
    "ode23s": "rosenbrock23",
    "backward_euler": "implicit_euler",
}


def _register_builtins() -> None:
    for desc in BUILTIN:
        registry.register(
            "algorithm",
            desc.name,
            desc,
            overwrite=True,
            family=desc.family,
            order=desc.order,
            adaptive=desc.is_adaptive,
        )
    for alias, name in _ALIASES.items():
        if not registry.contains(f"algorithm:{alias}"):
            registry.alias("algorithm", alias, name)


_register_builtins()
