"""qphase_ode: Uncertainty-Quantification Callbacks
-----------------------------------------------

ProbInts-style perturbation of the solution after each accepted step,

``y <- y + sigma * dt^((p + 1) / 2) * xi``,  ``xi ~ N(0, I)``,

so the added variance matches the order-``p`` local truncation error of the
active method. The adaptive variant replaces ``sigma`` by
``scale * err``, the weighted error norm of the accepted step. Methods
without an embedded estimator (``rk4``, ``euler``) report ``err = 0`` and are
never perturbed; embedded pairs such as ``bs3`` are perturbed in fixed-step
mode too.

Each integration draws from its own ``numpy.random.Generator``, seeded from
the callback seed or, when present, the engine seed (ensemble members get
distinct streams).

References
----------
- Conrad, P. R., et al. (2017). Statistical analysis of differential
  equations: introducing probability measures on numerical solutions.
  Statistics and Computing, 27(4), 1065-1082.
"""

from typing import Any

import numpy as np

from .base import DiscreteCallback

__all__ = ["ProbIntsUncertainty", "AdaptiveProbIntsUncertainty"]


class ProbIntsUncertainty(DiscreteCallback):
    """Fixed-magnitude ProbInts perturbation.

    Parameters
    ----------
    sigma : float
        Noise scale.
    order : int, optional
        Method order ``p``; defaults to the active descriptor's order.
    seed : int, optional
        RNG seed used when the engine has none.

    """

    def __init__(
        self,
        sigma: float,
        order: int | None = None,
        seed: int | None = None,
        save_positions: tuple[bool, bool] = (False, False),
    ) -> None:
        super().__init__(save_positions=save_positions, name=type(self).__name__)
        self.sigma = float(sigma)
        self.order = order
        self.seed = seed

    def initialize(self, integrator: Any) -> None:
        seed = integrator.seed if integrator.seed is not None else self.seed
        integrator.callback_state(self)["rng"] = np.random.default_rng(seed)

    def magnitude(self, integrator: Any) -> float:
        return self.sigma

    def apply(self, integrator: Any) -> None:
        dt = integrator.last_dt
        if dt <= 0.0:
            return
        scale = self.magnitude(integrator)
        if scale == 0.0:
            return
        p = self.order if self.order is not None else integrator.descriptor.order
        rng: np.random.Generator = integrator.callback_state(self)["rng"]
        noise = rng.standard_normal(integrator.y.shape)
        integrator.set_state(integrator.y + scale * dt ** ((p + 1) / 2.0) * noise)


class AdaptiveProbIntsUncertainty(ProbIntsUncertainty):
    """ProbInts perturbation scaled by the step's own error estimate.

    ``scale`` is a tunable constant; ``scale = 1`` adds noise of the size the
    controller believes the local error to be.
    """

    def __init__(
        self,
        order: int | None = None,
        scale: float = 1.0,
        seed: int | None = None,
        save_positions: tuple[bool, bool] = (False, False),
    ) -> None:
        super().__init__(sigma=0.0, order=order, seed=seed, save_positions=save_positions)
        self.scale = float(scale)

    def magnitude(self, integrator: Any) -> float:
        return self.scale * float(integrator.last_error)
