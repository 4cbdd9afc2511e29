"""qphase_ode: Composite Algorithms
-------------------------------

A ``CompositeAlgorithm`` bundles several descriptors with a choice function
evaluated once per step boundary on a read-only ``IntegratorView``. The
returned index becomes active for the next attempt and stays fixed until the
next boundary.

``StiffnessSwitch`` is a ready-made choice function that moves between a
non-stiff and a stiff method based on ``dt * |lambda|``, with hysteresis
derived from the currently active index (no hidden selector state).
"""

import operator
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ..core.errors import QPSConfigError
from ..core.registry import registry
from ..core.state import IntegratorView
from .descriptor import AlgorithmDescriptor

__all__ = ["CompositeAlgorithm", "StiffnessSwitch", "resolve_descriptor"]

ChoiceFn = Callable[[IntegratorView], int]


def resolve_descriptor(alg: "str | AlgorithmDescriptor") -> AlgorithmDescriptor:
    """Look up ``alg`` in the ``algorithm`` namespace when given by name."""
    if isinstance(alg, AlgorithmDescriptor):
        return alg
    if isinstance(alg, str):
        obj = registry.get(alg if ":" in alg else f"algorithm:{alg}")
        if not isinstance(obj, AlgorithmDescriptor):
            raise QPSConfigError(f"[540] Registry entry '{alg}' is not an algorithm")
        return obj
    raise QPSConfigError(f"[540] Cannot interpret {alg!r} as an algorithm")


@dataclass(frozen=True, eq=False)
class CompositeAlgorithm:
    """Descriptors plus a pure choice function.

    Parameters
    ----------
    algorithms : sequence of descriptors or names
        Candidate methods, addressed by position.
    choice : Callable[[IntegratorView], int]
        Selector; must not mutate anything.

    Examples
    --------
    >>> comp = CompositeAlgorithm(("dp5", "rosenbrock23"), lambda v: 0)
    >>> comp.algorithms[0].name
    'dp5'

    """

    algorithms: Sequence[AlgorithmDescriptor]
    choice: ChoiceFn

    def __post_init__(self) -> None:
        algs = tuple(resolve_descriptor(a) for a in self.algorithms)
        if not algs:
            raise QPSConfigError("[541] CompositeAlgorithm needs at least one algorithm")
        if not callable(self.choice):
            raise QPSConfigError("[542] CompositeAlgorithm choice must be callable")
        object.__setattr__(self, "algorithms", algs)

    def __len__(self) -> int:
        return len(self.algorithms)

    @property
    def name(self) -> str:
        return "composite(" + ",".join(a.name for a in self.algorithms) + ")"

    def select(self, view: IntegratorView) -> int:
        """Return a validated index.

        Raises
        ------
        QPSConfigError
            - [543] Not an integer, or outside the algorithm tuple.

        """
        raw = self.choice(view)
        try:
            idx = None if isinstance(raw, bool) else operator.index(raw)
        except TypeError:
            idx = None
        if idx is None or not 0 <= idx < len(self):
            raise QPSConfigError(
                f"[543] Selector returned {raw!r}; expected an index in [0, {len(self)})"
            )
        return idx


class StiffnessSwitch:
    """Choice function switching on the stiffness ratio ``dt * |lambda|``.

    Parameters
    ----------
    nonstiff, stiff : int
        Indices of the two methods in the composite tuple.
    threshold : float
        Switch to ``stiff`` once the ratio exceeds this value (about the
        real-axis stability bound of the explicit method).
    hysteresis : float
        Switch back only when the ratio drops below ``threshold * hysteresis``.

    """

    def __init__(
        self,
        nonstiff: int = 0,
        stiff: int = 1,
        threshold: float = 3.3,
        hysteresis: float = 0.25,
    ) -> None:
        self.nonstiff = nonstiff
        self.stiff = stiff
        self.threshold = float(threshold)
        self.hysteresis = float(hysteresis)

    def __call__(self, view: IntegratorView) -> int:
        ratio = view.stiffness_ratio
        if view.active == self.stiff:
            return self.nonstiff if ratio < self.threshold * self.hysteresis else self.stiff
        return self.stiff if ratio > self.threshold else self.nonstiff
