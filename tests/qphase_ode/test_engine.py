"""Tests for the integration engine loop."""

import threading
import time

import numpy as np
import pytest
from qphase_ode import (
    CompositeAlgorithm,
    ConvergenceFailure,
    Engine,
    IntegratorConfig,
    ODEProblem,
    PresetTimeCallback,
    StiffnessSwitch,
    solve,
)
from qphase_ode.core.errors import QPSConfigError, QPSStateError, QPSWarning
from qphase_ode.core.state import IntegratorView


def test_engine_initialization():
    """Engine holds a validated configuration and plugin metadata."""
    engine = Engine({"reltol": 1e-5})
    assert engine.config.reltol == 1e-5
    assert Engine.name == "ode"
    assert Engine.config_schema is IntegratorConfig


def test_solve_success(decay):
    """Default solve covers the span and reports statistics."""
    sol = solve(decay)
    assert sol.retcode == "Success"
    assert sol.success
    assert sol.t[0] == 0.0 and sol.t[-1] == 1.0
    assert sol.y.shape == (len(sol), 1)
    assert sol.stats["naccept"] > 0
    assert sol.stats["nf"] > 0
    assert sol.meta["algorithm"] == ["dp5"]


def test_run_with_problem_plugin(decay):
    """The plugin entry point integrates the configured problem."""
    sol = Engine(plugins={"problem": decay}).run()
    assert sol.retcode == "Success"
    assert Engine().run(decay).retcode == "Success"
    with pytest.raises(QPSConfigError):
        Engine().run()


def test_fixed_step_grid(decay):
    """Fixed-step mode advances by exactly dt_initial."""
    cfg = IntegratorConfig(algorithm="euler", adaptive=False, dt_initial=0.25)
    sol = Engine(cfg).solve(decay)
    np.testing.assert_array_equal(sol.t, [0.0, 0.25, 0.5, 0.75, 1.0])
    np.testing.assert_allclose(sol.y[:, 0], 0.75 ** np.arange(5))


def test_saveat_only(decay):
    """saveat stores exactly the requested times by interpolation."""
    pts = [0.0, 0.25, 0.5, 1.0]
    cfg = IntegratorConfig(saveat=pts, reltol=1e-8, abstol=1e-10)
    sol = Engine(cfg).solve(decay)
    np.testing.assert_array_equal(sol.t, pts)
    np.testing.assert_allclose(sol.y[:, 0], np.exp(-np.array(pts)), atol=1e-7)
    assert sol.dense is None
    with pytest.raises(QPSStateError):
        sol(0.5)


def test_saveat_with_everystep(decay):
    """saveat points are merged into the per-step output when both are on."""
    cfg = IntegratorConfig(saveat=[0.123], save_everystep=True, save_start=True)
    sol = Engine(cfg).solve(decay)
    assert 0.123 in sol.t
    assert np.all(np.diff(sol.t) > 0)


def test_save_flags(decay):
    """save_start/save_end control the first and last rows."""
    cfg = IntegratorConfig(save_everystep=False, save_start=False, save_end=True)
    sol = Engine(cfg).solve(decay)
    np.testing.assert_array_equal(sol.t, [1.0])


def test_tstops_are_hit(decay):
    """Every tstop appears exactly in the output."""
    cfg = IntegratorConfig(tstops=[0.123, 0.456])
    sol = Engine(cfg).solve(decay)
    assert 0.123 in sol.t
    assert 0.456 in sol.t


def test_backward_integration():
    """tf < t0 integrates backwards with decreasing saved times."""
    prob = ODEProblem(lambda t, y: -y, [np.exp(-1.0)], (1.0, 0.0))
    sol = solve(prob, reltol=1e-8, abstol=1e-10)
    assert sol.t[0] == 1.0 and sol.t[-1] == 0.0
    assert np.all(np.diff(sol.t) < 0)
    np.testing.assert_allclose(sol.y[-1], [1.0], atol=1e-7)
    np.testing.assert_allclose(sol(0.5), [np.exp(-0.5)], atol=1e-6)


def test_dense_output_on_solution(decay):
    """The solution is callable inside the span and refuses outside it."""
    sol = solve(decay, reltol=1e-8, abstol=1e-10)
    np.testing.assert_allclose(sol(0.37), [np.exp(-0.37)], atol=1e-7)
    with pytest.raises(Exception) as info:
        sol(1.5)
    assert "[710]" in str(info.value)


def test_max_steps_retcode(decay):
    """Exhausting max_steps stops with MaxIters and a warning."""
    with pytest.warns(QPSWarning):
        sol = Engine(IntegratorConfig(max_steps=3)).solve(decay.remake(tspan=(0.0, 100.0)))
    assert sol.retcode == "MaxIters"
    assert sol.stats["naccept"] == 3
    assert not sol.success


def test_cancel_event_before_start(decay):
    """A set cancel_event stops the loop before the first step."""
    ev = threading.Event()
    ev.set()
    sol = Engine(cancel_event=ev).solve(decay)
    assert sol.retcode == "Terminated"
    np.testing.assert_array_equal(sol.t, [0.0])


def test_max_wall_time():
    """A wall-clock deadline ends the run with DeadlineExceeded."""

    def slow(t, y):
        time.sleep(0.002)
        return -y

    prob = ODEProblem(slow, [1.0], (0.0, 1e6))
    with pytest.warns(QPSWarning):
        sol = Engine(IntegratorConfig(max_wall_time=0.01)).solve(prob)
    assert sol.retcode == "DeadlineExceeded"
    assert sol.t[-1] < 1e6


def test_rejection_ceiling_exact():
    """ConvergenceFailure is raised after exactly max_rejections rejections."""
    calls = []

    def f(t, y):
        calls.append(t)
        return np.full_like(y, np.nan) if t > 0.0 else -y

    prob = ODEProblem(f, [1.0], (0.0, 1.0))
    cfg = IntegratorConfig(dt_initial=0.1, max_rejections=5)
    with pytest.raises(ConvergenceFailure) as info:
        Engine(cfg).solve(prob)
    err = info.value
    assert err.n_rejections == 5
    assert err.solution.retcode == "Failure"
    assert err.solution.stats["nreject"] == 5
    # one evaluation at t0, then one failing stage per attempt
    assert len(calls) == 6
    np.testing.assert_array_equal(err.solution.t, [0.0])


def test_domain_error_recovers_by_shrinking():
    """A non-finite stage derivative rejects the step and shrinks dt."""

    def f(t, y):
        if y[0] < 0.0:
            return np.array([np.nan])
        return -10.0 * y

    # with dt = 1 the second stage state is 1 - 0.2 * 10 < 0
    prob = ODEProblem(f, [1.0], (0.0, 1.0))
    sol = solve(prob, dt_initial=1.0, reltol=1e-8, abstol=1e-12)
    assert sol.retcode == "Success"
    assert sol.stats["nreject"] >= 1
    np.testing.assert_allclose(sol.y[-1], [np.exp(-10.0)], rtol=1e-5)


def test_composite_constant_choice_matches_single(stiff_linear):
    """A composite that always picks index 0 reproduces the plain method."""
    opts = dict(reltol=1e-5, abstol=1e-7)
    plain = solve(stiff_linear, algorithm="dp5", **opts)
    comp = CompositeAlgorithm(("dp5", "rosenbrock23"), lambda view: 0)
    mixed = solve(stiff_linear, algorithm=comp, **opts)
    np.testing.assert_array_equal(plain.t, mixed.t)
    np.testing.assert_array_equal(plain.y, mixed.y)
    assert mixed.stats["nswitch"] == 0
    assert mixed.stats["nf"] == plain.stats["nf"]


def test_composite_switches_at_step_boundary(stiff_linear):
    """A time-based selector switches once and keeps accuracy."""
    seen = []

    def choice(view):
        seen.append((view.t, view.active))
        return 0 if view.t < 0.01 else 1

    comp = CompositeAlgorithm(("dp5", "rosenbrock23"), choice)
    sol = solve(stiff_linear, algorithm=comp, reltol=1e-5, abstol=1e-7)
    assert sol.retcode == "Success"
    assert sol.stats["nswitch"] == 1
    assert abs(sol.y[-1, 0] - np.cos(1.0)) < 1e-3
    # the view reflects the index that was active when the selector ran
    assert seen[0][1] == 0


def test_composite_tuple_config(decay):
    """(algorithms, choice) tuples are accepted as composite algorithms."""
    cfg = IntegratorConfig(algorithm=(("bs3", "dp5"), lambda view: 1))
    assert cfg.is_composite
    sol = Engine(cfg).solve(decay)
    assert sol.retcode == "Success"
    assert sol.meta["algorithm"] == ["bs3", "dp5"]
    assert sol.stats["nswitch"] == 1


def test_bad_selector_index(decay):
    """Selector results outside the algorithm tuple are refused."""
    comp = CompositeAlgorithm(("dp5",), lambda view: 3)
    with pytest.raises(QPSConfigError):
        solve(decay, algorithm=comp)


def test_progress_reported(decay):
    """get_progress reflects a completed run."""
    engine = Engine()
    engine.solve(decay)
    progress = engine.get_progress()
    assert progress["percent"] == pytest.approx(100.0)
    assert progress["t"] == 1.0


def test_progress_callback_rate_limited():
    """progress_cb receives percent and ETA while a slow run proceeds."""

    def slow(t, y):
        time.sleep(0.001)
        return -y

    prob = ODEProblem(slow, [1.0], (0.0, 1.0))
    updates = []
    cfg = IntegratorConfig(algorithm="euler", adaptive=False, dt_initial=1 / 256)
    Engine(cfg).solve(
        prob,
        progress_cb=lambda p, eta, msg: updates.append((p, eta, msg)),
        progress_interval_seconds=0.1,
    )
    assert updates
    assert all(0.0 <= p <= 100.0 for p, _, _ in updates)


def test_engine_reusable(decay):
    """One engine can solve several problems independently."""
    engine = Engine(IntegratorConfig(reltol=1e-6))
    a = engine.solve(decay)
    b = engine.solve(decay.remake(u0=[2.0]))
    np.testing.assert_allclose(b.y[-1], 2.0 * a.y[-1], rtol=1e-4)
    assert a.stats["naccept"] > 0


def _view(active, stiffness, dt=0.1):
    return IntegratorView(
        t=0.0, y=np.zeros(1), dt=dt, tdir=1.0, n_steps=0, n_reject=0,
        active=active, err_prev=1e-4, stiffness=stiffness, descriptor=None,
    )


def test_stiffness_switch_hysteresis():
    """The stiff method is entered above the threshold and left well below it."""
    choice = StiffnessSwitch(threshold=3.0, hysteresis=0.25)
    assert choice(_view(0, 10.0)) == 0
    assert choice(_view(0, 40.0)) == 1
    assert choice(_view(1, 20.0)) == 1
    assert choice(_view(1, 5.0)) == 0


def test_selector_numpy_integer_accepted(decay):
    """Selectors may return numpy integers; booleans are refused."""
    comp = CompositeAlgorithm(("dp5", "bs3"), lambda view: np.argmin([1.0, 2.0]))
    sol = solve(decay, algorithm=comp)
    assert sol.retcode == "Success"
    assert sol.stats["nswitch"] == 0
    with pytest.raises(QPSConfigError):
        solve(decay, algorithm=CompositeAlgorithm(("dp5", "bs3"), lambda view: True))


def test_tolerance_length_must_match_state(decay, oscillator):
    """Per-component tolerances need one entry per state component."""
    with pytest.raises(QPSConfigError):
        Engine(IntegratorConfig(abstol=(1e-6, 1e-6, 1e-6))).solve(decay)
    with pytest.raises(QPSConfigError):
        Engine(IntegratorConfig(reltol=(1e-3, 1e-3))).solve(decay)
    sol = Engine(IntegratorConfig(abstol=(1e-8, 1e-8))).solve(oscillator)
    assert sol.retcode == "Success"


@pytest.mark.parametrize("algorithm, starters", [("abm3", 2), ("abm4", 3)])
def test_multistep_starter_steps_counted(decay, algorithm, starters):
    """Adams methods take k - 1 starter steps before the history is full."""
    cfg = IntegratorConfig(algorithm=algorithm, adaptive=False, dt_initial=0.125)
    sol = Engine(cfg).solve(decay)
    assert sol.stats["naccept"] == 8
    assert sol.stats["nstarter"] == starters


def test_multistep_restarts_after_switch(decay):
    """Switching into an Adams method rebuilds its history with starter steps."""
    comp = CompositeAlgorithm(("dp5", "abm3"), lambda view: 0 if view.t < 0.5 else 1)
    cfg = IntegratorConfig(algorithm=comp, adaptive=False, dt_initial=0.125)
    sol = Engine(cfg).solve(decay)
    assert sol.stats["nswitch"] == 1
    assert sol.stats["nstarter"] == 2


def test_multistep_restarts_after_state_change(decay):
    """A callback that sets the state discards the Adams history."""
    cb = PresetTimeCallback([0.5], lambda i: i.set_state(i.y))
    cfg = IntegratorConfig(algorithm="abm3", adaptive=False, dt_initial=0.125, callbacks=cb)
    sol = Engine(cfg).solve(decay)
    assert sol.stats["nstarter"] == 4
