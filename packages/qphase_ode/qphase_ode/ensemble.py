"""qphase_ode: Ensemble Execution
----------------------------

Run many independent trajectories of one problem in a thread pool. Each
trajectory gets its own ``Engine`` (and so its own state, solvers and
callback scratch space); only the immutable problem, configuration and
algorithm descriptors are shared.

Per-trajectory RNG streams for stochastic callbacks are spawned from one
master ``numpy.random.SeedSequence`` so results do not depend on scheduling.
"""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .core.config import IntegratorConfig
from .core.engine import Engine
from .core.errors import QPSConfigError, QPSStateError, get_logger
from .problem import ODEProblem
from .result import ReturnCode, Solution

__all__ = ["EnsembleSolution", "solve_ensemble"]

ProbFn = Callable[[ODEProblem, int], ODEProblem]
OutputFn = Callable[[Solution, int], Any]


@dataclass
class EnsembleSolution:
    """Outputs of an ensemble run, ordered by trajectory index.

    Attributes
    ----------
    outputs : list
        ``output_func(sol, i)`` per trajectory (the ``Solution`` by default).
    retcodes : list[str]
        Return code of each trajectory.
    meta : dict
        Trajectory count, worker count and master seed.

    """

    outputs: list[Any]
    retcodes: list[str]
    meta: dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.outputs)

    def __getitem__(self, i: int) -> Any:
        return self.outputs[i]

    def __iter__(self):
        return iter(self.outputs)

    @property
    def success(self) -> bool:
        return all(rc in (ReturnCode.SUCCESS, ReturnCode.TERMINATED) for rc in self.retcodes)

    def stack(self) -> np.ndarray:
        """Stack ``y`` of every trajectory into shape ``(n_traj, m, n)``.

        Raises
        ------
        QPSStateError
            - [760] Outputs are not solutions or were saved on different grids.

        """
        ys = []
        for out in self.outputs:
            if not isinstance(out, Solution):
                raise QPSStateError("[760] stack() needs Solution outputs")
            ys.append(out.y)
        if len({y.shape for y in ys}) > 1:
            raise QPSStateError("[760] Trajectories have different saved shapes; use saveat")
        return np.stack(ys)


def solve_ensemble(
    problem: ODEProblem,
    config: IntegratorConfig | dict | None = None,
    trajectories: int = 1,
    prob_func: ProbFn | None = None,
    output_func: OutputFn | None = None,
    workers: int | None = None,
    seed: int | None = None,
) -> EnsembleSolution:
    """Integrate ``trajectories`` variants of ``problem``.

    Parameters
    ----------
    problem : ODEProblem
        Base problem.
    config : IntegratorConfig or dict, optional
        Shared configuration.
    trajectories : int
        Number of runs.
    prob_func : Callable[[ODEProblem, int], ODEProblem], optional
        Builds trajectory ``i``'s problem (e.g. ``problem.remake(u0=...)``).
    output_func : Callable[[Solution, int], Any], optional
        Reduces each solution before it is stored.
    workers : int, optional
        Thread pool size; 1 runs serially in the calling thread.
    seed : int, optional
        Master seed for per-trajectory RNG streams.

    Returns
    -------
    EnsembleSolution

    Examples
    --------
    >>> prob = ODEProblem(lambda t, y: -y, [1.0], (0.0, 1.0))
    >>> ens = solve_ensemble(prob, trajectories=3,
    ...                      prob_func=lambda p, i: p.remake(u0=[float(i)]))
    >>> [round(float(s.y[-1, 0]), 3) for s in ens]
    [0.0, 0.368, 0.736]

    """
    if trajectories < 1:
        raise QPSConfigError("[580] trajectories must be >= 1")
    if workers is not None and workers < 1:
        raise QPSConfigError("[581] workers must be >= 1")
    cfg = IntegratorConfig.from_raw(config)
    seeds = np.random.SeedSequence(seed).spawn(trajectories)

    def _one(i: int) -> tuple[Any, str]:
        prob = prob_func(problem, i) if prob_func is not None else problem
        sol = Engine(cfg, problem=prob, seed=seeds[i]).solve()
        out = output_func(sol, i) if output_func is not None else sol
        return out, sol.retcode

    outputs: list[Any] = [None] * trajectories
    retcodes: list[str] = [ReturnCode.FAILURE] * trajectories
    logger = get_logger()
    logger.info("Ensemble of %d trajectories (workers=%s)", trajectories, workers)
    if workers == 1 or trajectories == 1:
        for i in range(trajectories):
            outputs[i], retcodes[i] = _one(i)
    else:
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futs = {ex.submit(_one, i): i for i in range(trajectories)}
            for fut in as_completed(futs):
                i = futs[fut]
                outputs[i], retcodes[i] = fut.result()
    return EnsembleSolution(
        outputs=outputs,
        retcodes=retcodes,
        meta={"trajectories": trajectories, "workers": workers, "seed": seed},
    )
