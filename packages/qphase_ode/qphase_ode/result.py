"""qphase_ode: Solution
-------------------
Container for one trajectory: saved ``(t, y)`` pairs, the dense-output
segments, return code and work statistics, with ``.npz`` persistence.

Public API
----------
``Solution`` : trajectory result, callable as ``sol(t)`` when dense
``ReturnCode`` : string constants for ``Solution.retcode``
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from .core.errors import QPSError, QPSStateError
from .interpolation import DenseOutput

__all__ = ["Solution", "ReturnCode"]


class ReturnCode:
    SUCCESS = "Success"
    TERMINATED = "Terminated"
    MAX_ITERS = "MaxIters"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    FAILURE = "Failure"


@dataclass
class Solution:
    """Result of one integration.

    Attributes
    ----------
    t : ndarray
        Saved times, shape ``(m,)``, monotone in the integration direction.
    y : ndarray
        Saved states, shape ``(m, n)``.
    retcode : str
        One of the ``ReturnCode`` values.
    stats : dict[str, int]
        Work counters (``nf``, ``naccept``, ``nreject``, ...).
    dense : DenseOutput or None
        Segment sequence; None when not kept or after ``load``.
    events : list[tuple[float, str]]
        Continuous events as ``(time, callback name)``.
    meta : dict[str, Any]
        Algorithm names, tolerances and other run information.

    """

    t: np.ndarray
    y: np.ndarray
    retcode: str = ReturnCode.SUCCESS
    stats: dict[str, int] = field(default_factory=dict)
    dense: DenseOutput | None = None
    events: list[tuple[float, str]] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.retcode in (ReturnCode.SUCCESS, ReturnCode.TERMINATED)

    @property
    def data(self) -> np.ndarray:
        """Alias for ``y``."""
        return self.y

    @property
    def metadata(self) -> dict[str, Any]:
        """Alias for ``meta``."""
        return self.meta

    def __len__(self) -> int:
        return int(self.t.shape[0])

    def __call__(self, t: Any, deriv: bool = False) -> np.ndarray:
        """Interpolate at ``t`` (scalar or array).

        Raises
        ------
        QPSStateError
            - [740] Solution carries no dense output.
        OutOfRangeError
            - [710] ``t`` outside the integrated span.

        """
        if self.dense is None:
            raise QPSStateError("[740] Solution has no dense output (dense=False or loaded)")
        return self.dense.evaluate(t, deriv)

    def save(self, path: str | Path) -> None:
        """Write times, states, retcode, stats, events and meta to ``.npz``."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            np.savez_compressed(
                path,
                t=np.asarray(self.t),
                y=np.asarray(self.y),
                retcode=np.array(self.retcode),
                stats=np.array(self.stats, dtype=object),
                events=np.array(self.events, dtype=object),
                meta=np.array(self.meta, dtype=object),
            )
        except (OSError, ValueError, TypeError) as e:
            raise QPSError(f"[750] Failed to save Solution to {path}: {e}") from e

    @classmethod
    def load(cls, path: str | Path) -> "Solution":
        """Read a file written by ``save``. The result has no dense output."""
        path = Path(path)
        if not path.exists() and path.with_suffix(".npz").exists():
            path = path.with_suffix(".npz")
        if not path.exists():
            raise QPSError(f"[751] File not found: {path}")
        try:
            with np.load(path, allow_pickle=True) as npz:
                events = npz["events"].tolist() if "events" in npz else []
                return cls(
                    t=np.array(npz["t"]),
                    y=np.array(npz["y"]),
                    retcode=str(npz["retcode"]) if "retcode" in npz else ReturnCode.SUCCESS,
                    stats=npz["stats"].item() if "stats" in npz else {},
                    events=[(float(t), str(name)) for t, name in events],
                    meta=npz["meta"].item() if "meta" in npz else {},
                )
        except (OSError, KeyError, ValueError) as e:
            raise QPSError(f"[752] Failed to load Solution from {path}: {e}") from e
