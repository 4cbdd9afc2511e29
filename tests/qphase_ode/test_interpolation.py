"""Tests for dense-output segments and lookup."""

import numpy as np
import pytest
from qphase_ode import Engine, IntegratorConfig
from qphase_ode.core.errors import OutOfRangeError, QPSStateError
from qphase_ode.interpolation import DenseOutput, build_segment


def _linear(t0, t1, y0, y1):
    return build_segment("linear", t0, t1 - t0, np.array([y0]), np.array([y1]))


def test_hermite_reproduces_cubic():
    """Cubic Hermite is exact for y = t^3."""
    seg = build_segment(
        "hermite", 0.0, 1.0, np.array([0.0]), np.array([1.0]),
        f0=np.array([0.0]), f1=np.array([3.0]),
    )
    np.testing.assert_allclose(seg.evaluate(0.5), [0.125])
    np.testing.assert_allclose(seg.evaluate(0.5, deriv=True), [0.75])


def test_hermite_without_derivatives_degrades_to_linear():
    """Missing end derivatives select the linear interpolant."""
    seg = build_segment("hermite", 0.0, 2.0, np.array([0.0]), np.array([4.0]))
    assert seg.kind == "linear"
    np.testing.assert_allclose(seg.evaluate(0.5), [1.0])


def test_endpoints_exact():
    """Evaluation at the segment ends returns the stored states."""
    seg = build_segment(
        "hermite", 0.1, 0.2, np.array([1.0, 2.0]), np.array([3.0, 4.0]),
        f0=np.array([5.0, -5.0]), f1=np.array([0.0, 1.0]),
    )
    np.testing.assert_array_equal(seg.evaluate(0.1), [1.0, 2.0])
    np.testing.assert_array_equal(seg.evaluate(seg.t_end), [3.0, 4.0])


def test_truncate_keeps_polynomial():
    """A truncated segment agrees with the original inside its new range."""
    seg = _linear(0.0, 1.0, 0.0, 2.0)
    short = seg.truncate(0.25)
    assert short.t_end == 0.25
    np.testing.assert_allclose(short.y_end, [0.5])
    np.testing.assert_allclose(short.evaluate(0.1), seg.evaluate(0.1))


def test_lookup_is_left_closed():
    """A shared boundary belongs to the later segment."""
    dense = DenseOutput(1.0)
    dense.append(_linear(0.0, 1.0, 0.0, 1.0))
    dense.append(_linear(1.0, 2.0, 5.0, 6.0))
    assert dense.locate(1.0).t0 == 1.0
    assert dense.locate(0.0).t0 == 0.0
    assert dense.locate(2.0).t0 == 1.0
    np.testing.assert_allclose(dense(1.0), [5.0])
    assert dense.span == (0.0, 2.0)


def test_lookup_backward():
    """Backward integration locates segments by decreasing time."""
    dense = DenseOutput(-1.0)
    dense.append(_linear(1.0, 0.5, 0.0, 1.0))
    dense.append(_linear(0.5, 0.0, 1.0, 2.0))
    assert dense.locate(0.5).t0 == 0.5
    assert dense.locate(0.75).t0 == 1.0
    np.testing.assert_allclose(dense(0.25), [1.5])


def test_out_of_range():
    """Queries outside the covered span raise OutOfRangeError."""
    dense = DenseOutput(1.0)
    with pytest.raises(OutOfRangeError):
        dense.locate(0.0)
    dense.append(_linear(0.0, 1.0, 0.0, 1.0))
    with pytest.raises(OutOfRangeError):
        dense(1.5)
    with pytest.raises(OutOfRangeError):
        dense(-0.1)


def test_append_requires_contiguity():
    """Gaps between segments are refused."""
    dense = DenseOutput(1.0)
    dense.append(_linear(0.0, 1.0, 0.0, 1.0))
    with pytest.raises(QPSStateError):
        dense.append(_linear(1.5, 2.0, 0.0, 1.0))


def test_array_evaluation_shape():
    """Vector queries return one row per time."""
    dense = DenseOutput(1.0)
    dense.append(_linear(0.0, 1.0, 0.0, 1.0))
    out = dense([0.0, 0.5, 1.0])
    assert out.shape == (3, 1)


@pytest.mark.parametrize("algorithm", ["dp5", "bs3", "rosenbrock23", "abm4"])
def test_solution_interpolant_accuracy(decay, algorithm):
    """Dense output of a solve approximates exp(-t) between steps."""
    cfg = IntegratorConfig(algorithm=algorithm, reltol=1e-8, abstol=1e-10)
    sol = Engine(cfg).solve(decay)
    ts = np.linspace(0.0, 1.0, 37)
    np.testing.assert_allclose(sol(ts)[:, 0], np.exp(-ts), atol=1e-5)
    np.testing.assert_allclose(sol(0.5, deriv=True), [-np.exp(-0.5)], atol=1e-3)
