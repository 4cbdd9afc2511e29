"""qphase_ode: Dense Output
-----------------------

Continuous extension of the accepted-step history.

Each accepted step yields one immutable ``Segment`` tagged with its
interpolant kind. ``DenseOutput`` keeps segments in an append-only,
contiguous sequence and answers ``y(t)`` / ``y'(t)`` queries by binary search
over segment start times followed by evaluation at ``theta = (t - t0) / h``.

Interpolant kinds
-----------------
``linear``
    Chord between the step endpoints.
``hermite``
    Cubic Hermite through ``(y0, f0)`` and ``(y1, f1)``; free for any method
    that knows the end derivative.
``dopri5``
    Dormand-Prince 4th-order continuous extension from the seven stages.
``rosenbrock23``
    Stiff-aware quadratic in ``k1, k2`` of the Shampine-Reichelt pair.

Notes
-----
- A query exactly at a boundary resolves to the segment starting there
  (left-closed intervals). Both neighbours agree there to the last bit since
  segment endpoints return the stored states verbatim.
"""

from bisect import bisect_right
from dataclasses import dataclass, replace
from typing import Any

import numpy as np

from .core.errors import OutOfRangeError, QPSStateError
from .integrator.descriptor import Interpolant

__all__ = ["Segment", "DenseOutput", "build_segment"]


@dataclass(frozen=True, eq=False)
class Segment:
    """Interpolation data for one accepted step.

    Attributes
    ----------
    t0 : float
        Step start.
    h : float
        Signed step size; the polynomial variable is ``(t - t0) / h``.
    t_end : float
        End of validity. Equals ``t0 + h`` unless an event truncated the step.
    kind : str
        ``Interpolant`` tag.
    y0, y_end : ndarray
        States at ``t0`` and ``t_end``.
    data : tuple[ndarray, ...]
        Kind-specific coefficients.

    """

    t0: float
    h: float
    t_end: float
    kind: str
    y0: np.ndarray
    y_end: np.ndarray
    data: tuple[np.ndarray, ...]

    def _theta(self, t: float) -> float:
        return (t - self.t0) / self.h

    def evaluate(self, t: float, deriv: bool = False) -> np.ndarray:
        """Evaluate ``y(t)`` (or ``y'(t)`` when ``deriv``) without range checks."""
        if not deriv:
            if t == self.t0:
                return self.y0.copy()
            if t == self.t_end:
                return self.y_end.copy()
        theta = self._theta(t)
        fn = _EVALUATORS.get(self.kind)
        if fn is None:
            raise QPSStateError(f"[720] Unknown interpolant kind '{self.kind}'")
        return fn(self, theta, deriv)

    def truncate(self, t_end: float) -> "Segment":
        """Shorten validity to ``[t0, t_end]`` keeping the same polynomial."""
        y_end = self.evaluate(t_end)
        return replace(self, t_end=float(t_end), y_end=y_end)

    def contains(self, t: float) -> bool:
        lo, hi = sorted((self.t0, self.t_end))
        return lo <= t <= hi


def _eval_linear(seg: Segment, theta: float, deriv: bool) -> np.ndarray:
    (y1,) = seg.data
    if deriv:
        return (y1 - seg.y0) / seg.h
    return seg.y0 + theta * (y1 - seg.y0)


def _eval_hermite(seg: Segment, theta: float, deriv: bool) -> np.ndarray:
    y1, f0, f1 = seg.data
    y0, h = seg.y0, seg.h
    th2 = theta * theta
    th3 = th2 * theta
    if deriv:
        d00 = 6.0 * th2 - 6.0 * theta
        d10 = 3.0 * th2 - 4.0 * theta + 1.0
        d01 = -d00
        d11 = 3.0 * th2 - 2.0 * theta
        return (d00 * y0 + d01 * y1) / h + d10 * f0 + d11 * f1
    h00 = 2.0 * th3 - 3.0 * th2 + 1.0
    h10 = th3 - 2.0 * th2 + theta
    h01 = -2.0 * th3 + 3.0 * th2
    h11 = th3 - th2
    return h00 * y0 + h10 * h * f0 + h01 * y1 + h11 * h * f1


def _eval_dopri5(seg: Segment, theta: float, deriv: bool) -> np.ndarray:
    r1, r2, r3, r4, r5 = seg.data
    th1 = 1.0 - theta
    if deriv:
        R = r4 + th1 * r5
        Q = r3 + theta * R
        dQ = r4 + (1.0 - 2.0 * theta) * r5
        P = r2 + th1 * Q
        dP = -Q + th1 * dQ
        return (P + theta * dP) / seg.h
    return r1 + theta * (r2 + th1 * (r3 + theta * (r4 + th1 * r5)))


def _eval_rosenbrock23(seg: Segment, theta: float, deriv: bool) -> np.ndarray:
    k1, k2, d = seg.data
    dd = float(d)
    denom = 1.0 - 2.0 * dd
    if deriv:
        c1p = (1.0 - 2.0 * theta) / denom
        c2p = (2.0 * theta - 2.0 * dd) / denom
        return c1p * k1 + c2p * k2
    c1 = theta * (1.0 - theta) / denom
    c2 = theta * (theta - 2.0 * dd) / denom
    return seg.y0 + seg.h * (c1 * k1 + c2 * k2)


_EVALUATORS = {
    Interpolant.LINEAR: _eval_linear,
    Interpolant.HERMITE: _eval_hermite,
    Interpolant.DOPRI5: _eval_dopri5,
    Interpolant.ROSENBROCK23: _eval_rosenbrock23,
}


def build_segment(
    kind: str,
    t0: float,
    h: float,
    y0: np.ndarray,
    y1: np.ndarray,
    f0: np.ndarray | None = None,
    f1: np.ndarray | None = None,
    stages: Any = None,
    coefficients: Any = None,
    t_end: float | None = None,
) -> Segment:
    """Construct a segment for an accepted step.

    ``stages`` holds the stage derivatives for ``dopri5`` (7 rows) and
    ``(k1, k2)`` for ``rosenbrock23``. Hermite degrades to linear when either
    end derivative is unknown.
    """
    y0 = np.array(y0, dtype=float)
    y1 = np.array(y1, dtype=float)
    if t_end is None:
        t_end = t0 + h
    if kind == Interpolant.HERMITE and (f0 is None or f1 is None):
        kind = Interpolant.LINEAR

    if kind == Interpolant.LINEAR:
        data: tuple[np.ndarray, ...] = (y1,)
    elif kind == Interpolant.HERMITE:
        data = (y1, np.array(f0, dtype=float), np.array(f1, dtype=float))
    elif kind == Interpolant.DOPRI5:
        K = np.asarray(stages, dtype=float)
        dcoef = np.asarray(coefficients["dense"], dtype=float)
        rcont2 = y1 - y0
        rcont3 = h * K[0] - rcont2
        rcont4 = rcont2 - h * K[6] - rcont3
        rcont5 = h * (dcoef @ K)
        data = (y0, rcont2, rcont3, rcont4, rcont5)
    elif kind == Interpolant.ROSENBROCK23:
        k1, k2 = stages
        data = (
            np.array(k1, dtype=float),
            np.array(k2, dtype=float),
            np.array(coefficients["d"], dtype=float),
        )
    else:
        raise QPSStateError(f"[720] Unknown interpolant kind '{kind}'")
    return Segment(
        t0=float(t0), h=float(h), t_end=float(t_end), kind=kind, y0=y0, y_end=y1, data=data
    )


class DenseOutput:
    """Ordered, append-only sequence of contiguous segments.

    Parameters
    ----------
    tdir : float
        ``+1.0`` for forward and ``-1.0`` for backward integration.

    """

    def __init__(self, tdir: float = 1.0) -> None:
        self.tdir = 1.0 if tdir >= 0 else -1.0
        self._segments: list[Segment] = []
        self._keys: list[float] = []

    def __len__(self) -> int:
        return len(self._segments)

    def __iter__(self):
        return iter(self._segments)

    @property
    def segments(self) -> tuple[Segment, ...]:
        return tuple(self._segments)

    @property
    def span(self) -> tuple[float, float] | None:
        if not self._segments:
            return None
        return self._segments[0].t0, self._segments[-1].t_end

    def append(self, seg: Segment) -> None:
        """Append a segment that starts where the previous one ends.

        Raises
        ------
        QPSStateError
            - [721] Gap, overlap or reversed direction.

        """
        if (seg.t_end - seg.t0) * self.tdir <= 0:
            raise QPSStateError(f"[721] Segment [{seg.t0}, {seg.t_end}] has wrong direction")
        if self._segments and seg.t0 != self._segments[-1].t_end:
            raise QPSStateError(
                f"[721] Segment starts at {seg.t0}, expected {self._segments[-1].t_end}"
            )
        self._segments.append(seg)
        self._keys.append(self.tdir * seg.t0)

    def replace_last(self, seg: Segment) -> None:
        """Swap the newest segment (used when an event truncates a step)."""
        if not self._segments or seg.t0 != self._segments[-1].t0:
            raise QPSStateError("[722] replace_last needs a segment with the same start")
        self._segments[-1] = seg

    def locate(self, t: float) -> Segment:
        """Return the left-closed segment containing ``t``.

        Raises
        ------
        OutOfRangeError
            - [710] ``t`` outside the covered span, or nothing recorded yet.

        """
        if not self._segments:
            raise OutOfRangeError("[710] Dense output is empty")
        key = self.tdir * t
        first, last = self._segments[0], self._segments[-1]
        if key < self.tdir * first.t0 or key > self.tdir * last.t_end:
            raise OutOfRangeError(
                f"[710] t={t} outside covered span [{first.t0}, {last.t_end}]"
            )
        i = bisect_right(self._keys, key) - 1
        return self._segments[max(i, 0)]

    def evaluate(self, t: Any, deriv: bool = False) -> np.ndarray:
        """Evaluate at a scalar time (shape ``(n,)``) or an array of times (``(m, n)``)."""
        ts = np.asarray(t, dtype=float)
        if ts.ndim == 0:
            tt = float(ts)
            return self.locate(tt).evaluate(tt, deriv)
        return np.stack([self.locate(float(ti)).evaluate(float(ti), deriv) for ti in ts])

    __call__ = evaluate
