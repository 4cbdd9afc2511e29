"""Tests for configuration, solvers, problem validation and logging."""

import logging

import numpy as np
import pytest
from pydantic import ValidationError
from qphase_ode import IntegratorConfig, ODEProblem, solve
from qphase_ode.callbacks.base import CallbackSet, DiscreteCallback
from qphase_ode.core.errors import (
    QPSConfigError,
    QPSModelError,
    SolverFailure,
    configure_logging,
    get_logger,
)
from qphase_ode.core.solvers import (
    DenseLUSolver,
    NewtonSolver,
    NumpyDenseSolver,
    finite_difference_jacobian,
)
from qphase_ode.integrator import CompositeAlgorithm


def test_defaults():
    """Defaults match the documented values."""
    cfg = IntegratorConfig()
    assert cfg.abstol == 1e-6
    assert cfg.reltol == 1e-3
    assert cfg.algorithm.name == "dp5"
    assert cfg.max_rejections == 100
    assert isinstance(cfg.callbacks, CallbackSet)
    assert cfg.resolved_saving() == {
        "save_everystep": True,
        "save_start": True,
        "save_end": True,
        "dense": True,
    }


def test_saveat_changes_saving_defaults():
    """With saveat, per-step saving and dense output default to off."""
    cfg = IntegratorConfig(saveat=np.linspace(0, 1, 5))
    assert cfg.saveat == (0.0, 0.25, 0.5, 0.75, 1.0)
    saving = cfg.resolved_saving()
    assert not saving["save_everystep"]
    assert not saving["dense"]


def test_algorithm_alias_resolved():
    """Algorithm names are resolved to descriptors at validation."""
    assert IntegratorConfig(algorithm="ode23").algorithm.name == "bs3"


def test_unknown_algorithm():
    """An unregistered algorithm name is a configuration error."""
    with pytest.raises(QPSConfigError):
        IntegratorConfig(algorithm="no_such_method")


def test_per_component_tolerances():
    """Vector tolerances are stored as tuples."""
    cfg = IntegratorConfig(abstol=[1e-6, 1e-8])
    assert cfg.abstol == (1e-6, 1e-8)


@pytest.mark.parametrize(
    "options",
    [
        {"reltol": -1.0},
        {"abstol": float("nan")},
        {"max_rejections": 0},
        {"unknown_option": 1},
        {"norm": "l1"},
        {"domain_shrink": 1.5},
    ],
)
def test_invalid_values_rejected(options):
    """Out-of-range values fail pydantic validation."""
    with pytest.raises(ValidationError):
        IntegratorConfig(**options)


@pytest.mark.parametrize(
    "options",
    [
        {"dt_min": 1.0, "dt_max": 0.1},
        {"dt_initial": 1.0, "dt_max": 0.1},
        {"algorithm": "rk4"},
        {"adaptive": False},
        {"algorithm": "rk4", "adaptive": False, "dt_initial": 0.01, "dt_min": 0.1},
        {"jacobian": "symbolic"},
        {"linear_solver": 3},
    ],
)
def test_inconsistent_options_rejected(options):
    """Cross-field inconsistencies raise QPSConfigError."""
    with pytest.raises(QPSConfigError):
        IntegratorConfig(**options)


def test_fixed_step_with_nonadaptive_method():
    """Methods without an error estimate run in fixed-step mode."""
    cfg = IntegratorConfig(algorithm="rk4", adaptive=False, dt_initial=0.1)
    assert not cfg.adaptive


def test_config_frozen():
    """Configurations are immutable; with_options returns a validated copy."""
    cfg = IntegratorConfig()
    with pytest.raises(ValidationError):
        cfg.reltol = 1e-8
    cfg2 = cfg.with_options(reltol=1e-8)
    assert cfg2.reltol == 1e-8
    assert cfg.reltol == 1e-3


def test_from_raw_variants():
    """from_raw accepts None, mappings and instances."""
    cfg = IntegratorConfig(reltol=1e-4)
    assert IntegratorConfig.from_raw(cfg) is cfg
    assert IntegratorConfig.from_raw(None).reltol == 1e-3
    assert IntegratorConfig.from_raw({"controller": {"safety": 0.8}}).controller.safety == 0.8


def test_from_yaml_with_overrides(tmp_path):
    """YAML files load from an 'integrator' section with deep-merged overrides."""
    path = tmp_path / "run.yaml"
    path.write_text(
        "integrator:\n"
        "  algorithm: rosenbrock23\n"
        "  reltol: 1.0e-5\n"
        "  controller:\n"
        "    safety: 0.8\n"
    )
    cfg = IntegratorConfig.from_yaml(path, abstol=1e-9, controller={"beta": 0.0})
    assert cfg.algorithm.name == "rosenbrock23"
    assert cfg.reltol == 1e-5
    assert cfg.abstol == 1e-9
    assert cfg.controller.safety == 0.8
    assert cfg.controller.beta == 0.0


def test_from_yaml_errors(tmp_path):
    """Missing files and non-mapping YAML are configuration errors."""
    with pytest.raises(QPSConfigError):
        IntegratorConfig.from_yaml(tmp_path / "missing.yaml")
    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n")
    with pytest.raises(QPSConfigError):
        IntegratorConfig.from_yaml(bad)


def test_callbacks_normalised():
    """A single callback becomes a CallbackSet."""
    cfg = IntegratorConfig(callbacks=DiscreteCallback())
    assert len(cfg.callback_set.discrete) == 1


def test_composite_from_config():
    """Composite algorithms pass through unchanged."""
    comp = CompositeAlgorithm(("dp5", "rosenbrock23"), lambda view: 0)
    cfg = IntegratorConfig(algorithm=comp)
    assert cfg.is_composite
    assert [a.name for a in cfg.algorithms] == ["dp5", "rosenbrock23"]


def test_solver_factories_fresh_per_call():
    """Each engine gets its own solver instances."""
    cfg = IntegratorConfig()
    a, b = cfg.make_linear_solver(), cfg.make_linear_solver()
    assert isinstance(a, DenseLUSolver)
    assert a is not b
    newton = cfg.make_nonlinear_solver(a)
    assert isinstance(newton, NewtonSolver)
    assert newton.linear_solver is a
    custom = IntegratorConfig(linear_solver=NumpyDenseSolver).make_linear_solver()
    assert isinstance(custom, NumpyDenseSolver)


def test_lu_solver_caches_factorization():
    """Repeated solves with the same matrix object factorize once."""
    solver = DenseLUSolver()
    A = np.array([[4.0, 1.0], [2.0, 3.0]])
    x = solver.solve(A, np.array([1.0, 2.0]))
    np.testing.assert_allclose(A @ x, [1.0, 2.0])
    solver.solve(A, np.array([0.0, 1.0]))
    assert solver.n_factorizations == 1
    assert solver.n_solves == 2


def test_singular_matrix_fails():
    """Singular systems raise SolverFailure."""
    with pytest.raises(SolverFailure):
        DenseLUSolver().solve(np.ones((2, 2)), np.ones(2))
    with pytest.raises(SolverFailure):
        NumpyDenseSolver().solve(np.zeros((2, 2)), np.ones(2))


def test_newton_solves_scalar_equation():
    """Simplified Newton converges with a frozen Jacobian."""
    solver = NewtonSolver(tol=1e-12, max_iter=20)

    def residual(x):
        return x * x - 2.0

    x = solver.solve_nonlinear(residual, np.array([1.4]), np.array([[2.8]]))
    np.testing.assert_allclose(x, [np.sqrt(2.0)], atol=1e-9)
    assert solver.n_iterations > 1


def test_newton_divergence_is_failure():
    """A diverging iteration raises SolverFailure."""
    solver = NewtonSolver(tol=1e-12, max_iter=20)
    with pytest.raises(SolverFailure):
        solver.solve_nonlinear(lambda x: x**3 - 2 * x + 2, np.array([0.0]), np.array([[-2.0]]))
    assert solver.n_failures == 1


def test_finite_difference_jacobian():
    """Forward differences approximate an analytic Jacobian."""

    def f(t, y):
        return np.array([y[0] * y[1], np.sin(y[0])])

    y = np.array([0.5, 2.0])
    J = finite_difference_jacobian(f, 0.0, y)
    np.testing.assert_allclose(J, [[2.0, 0.5], [np.cos(0.5), 0.0]], atol=1e-6)


def test_problem_validation():
    """Bad initial states, spans and mass matrices are rejected."""
    with pytest.raises(QPSModelError):
        ODEProblem(lambda t, y: y, [], (0.0, 1.0))
    with pytest.raises(QPSModelError):
        ODEProblem(lambda t, y: y, [np.nan], (0.0, 1.0))
    with pytest.raises(QPSModelError):
        ODEProblem(lambda t, y: y, [1.0], (1.0, 1.0))
    with pytest.raises(QPSModelError):
        ODEProblem(lambda t, y: y, [1.0, 2.0], (0.0, 1.0), mass_matrix=np.eye(3))


def test_problem_is_read_only():
    """The initial state cannot be modified through the problem."""
    prob = ODEProblem(lambda t, y: y, 1.0, (0.0, 1.0))
    assert prob.n == 1
    with pytest.raises(ValueError):
        prob.u0[0] = 2.0
    assert not ODEProblem(lambda t, y: y, [1.0], (0.0, 1.0), mass_matrix=[[1.0]]).has_mass_matrix


def test_rhs_shape_mismatch():
    """A right-hand side with the wrong shape is a model error."""
    prob = ODEProblem(lambda t, y: np.zeros(3), [1.0, 2.0], (0.0, 1.0))
    with pytest.raises(QPSModelError):
        solve(prob)


def test_logger_singleton_and_configuration(tmp_path):
    """configure_logging sets level and writes to an optional file."""
    logger = get_logger()
    assert logger is get_logger()
    assert logger.name == "qphase_ode"
    log_file = tmp_path / "ode.log"
    try:
        configure_logging(verbose=True, log_file=str(log_file))
        assert logger.level == logging.DEBUG
        logger.debug("hello")
        for h in logger.handlers:
            h.flush()
        assert "hello" in log_file.read_text()
    finally:
        for h in list(logger.handlers):
            if isinstance(h, logging.FileHandler):
                h.close()
                logger.removeHandler(h)
        configure_logging(verbose=False)
        logging.captureWarnings(False)

