"""Tests for Solution persistence and ensemble runs."""

import numpy as np
import pytest
from qphase_ode import (
    ContinuousCallback,
    EnsembleSolution,
    IntegratorConfig,
    ODEProblem,
    ProbIntsUncertainty,
    Solution,
    solve,
    solve_ensemble,
)
from qphase_ode.core.errors import QPSConfigError, QPSError, QPSStateError


def test_save_load_roundtrip(tmp_path):
    """Saved solutions reload with data, retcode, stats, events and meta."""
    prob = ODEProblem(lambda t, y: np.array([y[1], -9.81]), [1.0, 0.0], (0.0, 1.0), name="drop")
    cb = ContinuousCallback(
        lambda t, y, i: y[0], None, affect_neg=lambda i: None, terminal=True, name="floor"
    )
    sol = solve(prob, callbacks=cb, reltol=1e-8, abstol=1e-10)
    path = tmp_path / "out" / "drop.npz"
    sol.save(path)

    loaded = Solution.load(path)
    np.testing.assert_array_equal(loaded.t, sol.t)
    np.testing.assert_array_equal(loaded.y, sol.y)
    assert loaded.retcode == "Terminated"
    assert loaded.stats == sol.stats
    assert loaded.events == sol.events
    assert loaded.events[0][1] == "floor"
    assert loaded.meta["problem"] == "drop"
    assert loaded.dense is None
    with pytest.raises(QPSStateError):
        loaded(0.5)


def test_load_adds_suffix(tmp_path, decay):
    """Loading accepts the path without the .npz suffix."""
    sol = solve(decay)
    sol.save(tmp_path / "decay.npz")
    assert len(Solution.load(tmp_path / "decay")) == len(sol)


def test_load_missing_file(tmp_path):
    """A missing file raises QPSError."""
    with pytest.raises(QPSError):
        Solution.load(tmp_path / "nothing.npz")


def test_solution_aliases(decay):
    """data and metadata alias y and meta."""
    sol = solve(decay)
    assert sol.data is sol.y
    assert sol.metadata is sol.meta
    assert sol.meta["tspan"] == (0.0, 1.0)


def test_ensemble_ordered_by_index(decay):
    """Outputs are stored by trajectory index regardless of completion order."""
    ens = solve_ensemble(
        decay,
        IntegratorConfig(reltol=1e-8, abstol=1e-10),
        trajectories=6,
        prob_func=lambda p, i: p.remake(u0=[float(i)]),
        workers=3,
    )
    assert isinstance(ens, EnsembleSolution)
    assert len(ens) == 6
    assert ens.success
    finals = [s.y[-1, 0] for s in ens]
    np.testing.assert_allclose(finals, np.arange(6) * np.exp(-1.0), atol=1e-7)


def test_ensemble_serial_and_threaded_agree(decay):
    """Seeded stochastic trajectories do not depend on the worker count."""
    cfg = IntegratorConfig(callbacks=ProbIntsUncertainty(0.05), saveat=[0.0, 0.5, 1.0])
    serial = solve_ensemble(decay, cfg, trajectories=4, workers=1, seed=2026)
    threaded = solve_ensemble(decay, cfg, trajectories=4, workers=4, seed=2026)
    a, b = serial.stack(), threaded.stack()
    assert a.shape == (4, 3, 1)
    np.testing.assert_array_equal(a, b)
    # each trajectory draws from its own stream
    assert not np.array_equal(a[0], a[1])


def test_ensemble_output_func(decay):
    """output_func reduces each solution before it is stored."""
    ens = solve_ensemble(decay, trajectories=3, output_func=lambda sol, i: (i, sol.retcode))
    assert ens.outputs == [(0, "Success"), (1, "Success"), (2, "Success")]
    with pytest.raises(QPSStateError):
        ens.stack()


def test_ensemble_stack_needs_common_grid():
    """Trajectories saved on different grids cannot be stacked."""
    prob = ODEProblem(lambda t, y: -y, [1.0], (0.0, 1.0))
    ens = solve_ensemble(
        prob,
        {"algorithm": "euler", "adaptive": False, "dt_initial": 0.25},
        trajectories=2,
        prob_func=lambda p, i: p.remake(tspan=(0.0, 1.0 + i)),
        workers=1,
    )
    with pytest.raises(QPSStateError):
        ens.stack()


def test_ensemble_argument_checks(decay):
    """Non-positive trajectory or worker counts are configuration errors."""
    with pytest.raises(QPSConfigError):
        solve_ensemble(decay, trajectories=0)
    with pytest.raises(QPSConfigError):
        solve_ensemble(decay, trajectories=2, workers=0)
