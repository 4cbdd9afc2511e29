"""qphase_ode: Integration Engine
-----------------------------

Orchestrates one trajectory: selector -> stepper -> controller -> dense
output -> callbacks -> saving, until the time span is covered, a callback
terminates, or a budget runs out.

Public API
----------
``Engine`` : integration driver (also usable as a qphase engine plugin)
``IntegratorHandle`` : the ``integrator`` object passed to callbacks
``solve`` : one-call convenience wrapper

Notes
-----
- Strictly sequential; one ``Engine.solve`` call owns its state exclusively.
- Cancellation is cooperative and checked at the top of each loop iteration
  (``terminate()``, ``cancel_event``, ``max_wall_time``).
- Fatal failures raise ``ConvergenceFailure`` carrying the partial solution;
  accepted history and segments up to the last good step stay intact.
"""

import heapq
import threading
import time as _time
import warnings
from collections.abc import Callable
from typing import Any, ClassVar

import numpy as np

from ..callbacks.manager import CallbackManager
from ..integrator.base import StepContext, StepResult, attempt_step
from ..integrator.composite import CompositeAlgorithm
from ..integrator.descriptor import AlgorithmDescriptor, Family
from ..interpolation import DenseOutput, Segment
from ..problem import ODEProblem
from ..result import ReturnCode, Solution
from .config import IntegratorConfig
from .controller import PIController, initial_step
from .errors import (
    ConvergenceFailure,
    DomainError,
    QPSConfigError,
    QPSWarning,
    SolverFailure,
    get_logger,
)
from .state import IntegratorState, SolverStats

__all__ = ["Engine", "IntegratorHandle", "solve"]

ProgressFn = Callable[[float, float, str], None]


class IntegratorHandle:
    """Mutable view of a running integration handed to callbacks.

    Affect functions may change ``y`` in place (then call ``u_modified()``) or
    through ``set_state``, stop the run with ``terminate()``, force the next
    step size with ``set_proposed_dt`` and register landing times with
    ``add_tstop``.
    """

    def __init__(self, engine: "Engine") -> None:
        self._engine = engine
        self._modified = False
        self._terminated = False
        self._cb_state: dict[int, dict[str, Any]] = {}

    @property
    def _state(self) -> IntegratorState:
        return self._engine._state

    # -------------------------------------------------------------- readout
    @property
    def t(self) -> float:
        return self._state.t

    @property
    def y(self) -> np.ndarray:
        return self._state.y

    @property
    def tprev(self) -> float | None:
        return self._state.tprev

    @property
    def tdir(self) -> float:
        return self._state.tdir

    @property
    def descriptor(self) -> AlgorithmDescriptor:
        return self._state.descriptor

    @property
    def proposed_dt(self) -> float:
        return self._state.dt

    @property
    def last_dt(self) -> float:
        """Magnitude of the last accepted (possibly event-truncated) step."""
        return self._engine._last_dt

    @property
    def last_error(self) -> float:
        return self._state.last_err

    @property
    def seed(self) -> Any:
        return self._engine.seed

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def stats(self) -> SolverStats:
        return self._state.stats

    def derivative(self) -> np.ndarray:
        """``f(t, y)`` at the current point (evaluated on demand)."""
        st = self._state
        if st.f is None:
            st.f = self._engine._ctx.rhs(st.t, st.y)
        return st.f

    def callback_state(self, cb: Any) -> dict[str, Any]:
        """Per-integration scratch space for callback ``cb``."""
        return self._cb_state.setdefault(id(cb), {})

    # ------------------------------------------------------------- mutation
    def terminate(self) -> None:
        self._terminated = True

    def set_state(self, y: Any) -> None:
        st = self._state
        st.y = np.array(y, dtype=float).reshape(st.y.shape)
        self._modified = True

    def u_modified(self) -> None:
        self._modified = True

    def set_proposed_dt(self, dt: float) -> None:
        st = self._state
        st.dt = self._engine._controller.clamp(abs(float(dt)), st.t)

    def add_tstop(self, t: float) -> None:
        self._engine._add_tstop(float(t))

    def finalize_modification(self) -> None:
        """Apply the consequences of a state change made by a callback."""
        if self._modified:
            self._modified = False
            self._engine._after_modification()


class Engine:
    """Adaptive ODE integration engine.

    Parameters
    ----------
    config : IntegratorConfig or dict, optional
        Validated configuration; defaults to ``IntegratorConfig()``.
    plugins : dict, optional
        Plugin dictionary; ``plugins["problem"]`` provides the problem when
        driven through ``run``.
    problem : ODEProblem, optional
        Problem used by ``solve()``/``run()`` when none is passed.
    cancel_event : threading.Event, optional
        External cancellation flag.
    seed : int or numpy.random.SeedSequence, optional
        Seed for stochastic callbacks.

    Examples
    --------
    >>> prob = ODEProblem(lambda t, y: -y, [1.0], (0.0, 1.0))
    >>> sol = Engine(IntegratorConfig(reltol=1e-8)).solve(prob)
    >>> round(float(sol.y[-1, 0]), 6)
    0.367879

    """

    name: ClassVar[str] = "ode"
    description: ClassVar[str] = "Adaptive Ordinary Differential Equation Integration Engine"
    config_schema: ClassVar[type[IntegratorConfig]] = IntegratorConfig

    def __init__(
        self,
        config: IntegratorConfig | dict | None = None,
        plugins: dict[str, Any] | None = None,
        problem: ODEProblem | None = None,
        cancel_event: threading.Event | None = None,
        seed: Any = None,
    ) -> None:
        self.config = IntegratorConfig.from_raw(config)
        self.plugins = plugins or {}
        self.problem = self.plugins.get("problem", problem)
        self.cancel_event = cancel_event
        self.seed = seed
        self._terminate_requested = False
        self._progress: dict[str, Any] = {"percent": 0.0, "t": None, "steps": 0}

    # ------------------------------------------------------------ plugin API
    def run(
        self,
        data: Any | None = None,
        *,
        progress_cb: ProgressFn | None = None,
        progress_interval_seconds: float = 1.0,
    ) -> Solution:
        """Execute the engine (plugin protocol); ``data`` may be an ``ODEProblem``."""
        problem = self.problem if self.problem is not None else data
        if not isinstance(problem, ODEProblem):
            raise QPSConfigError("[570] Engine requires a 'problem' plugin or ODEProblem data")
        return self.solve(
            problem,
            progress_cb=progress_cb,
            progress_interval_seconds=progress_interval_seconds,
        )

    def terminate(self) -> None:
        """Request cooperative termination (honoured at the next step boundary)."""
        self._terminate_requested = True

    def get_progress(self) -> dict[str, Any]:
        return dict(self._progress)

    # ---------------------------------------------------------------- setup
    def _setup(self, problem: ODEProblem) -> None:
        cfg = self.config
        self._problem = problem
        t0, tf = problem.tspan
        tdir = 1.0 if tf > t0 else -1.0
        self._t0, self._tf, self._tdir = t0, tf, tdir
        self._algorithms = cfg.algorithms
        self._composite: CompositeAlgorithm | None = (
            cfg.algorithm if isinstance(cfg.algorithm, CompositeAlgorithm) else None
        )
        if problem.has_mass_matrix:
            bad = [
                a.name
                for a in self._algorithms
                if a.family in (Family.EXPLICIT, Family.MULTISTEP)
            ]
            if bad:
                raise QPSConfigError(f"[571] {bad} cannot integrate a mass-matrix problem")

        lin = nl = None
        if any(a.requires_linear_solver or a.requires_nonlinear_solver for a in self._algorithms):
            lin = cfg.make_linear_solver()
        if any(a.requires_nonlinear_solver for a in self._algorithms):
            nl = cfg.make_nonlinear_solver(lin)
        self._linear_solver = lin

        stats = SolverStats()
        self._ctx = StepContext(
            problem,
            abstol=cfg.abstol,
            reltol=cfg.reltol,
            norm=cfg.norm,
            jacobian=cfg.jacobian,
            linear_solver=lin,
            nonlinear_solver=nl,
            stats=stats,
        )
        span = abs(tf - t0)
        self._dt_max = min(cfg.dt_max, span) if cfg.dt_max is not None else span
        self._controller = PIController(cfg.controller, cfg.dt_min, self._dt_max)

        self._state = IntegratorState(
            t=t0,
            y=np.array(problem.u0, dtype=float),
            dt=self._dt_max,
            tdir=tdir,
            descriptor=self._algorithms[0],
            err_prev=cfg.controller.err_prev_init,
            stats=stats,
        )
        self._dense = DenseOutput(tdir)
        self._state.dense = self._dense
        self._last_dt = 0.0

        self._tstops: list[float] = []
        for s in (*cfg.tstops, tf):
            self._add_tstop(s)
        self._saveat = sorted(
            (s for s in cfg.saveat if self._within(s)), key=lambda s: tdir * s
        )
        self._saveat_i = 0
        self._ts: list[float] = []
        self._ys: list[np.ndarray] = []
        self._saving = cfg.resolved_saving()

        self._handle = IntegratorHandle(self)
        self._callbacks = CallbackManager(cfg.callbacks)
        self._terminate_requested = False

    def _within(self, s: float) -> bool:
        tdir = self._tdir
        return tdir * (s - self._t0) >= 0 and tdir * (s - self._tf) <= 0

    def _add_tstop(self, s: float) -> None:
        st = getattr(self, "_state", None)
        t_now = st.t if st is not None else self._t0
        if self._tdir * (s - t_now) > 0 and self._within(s):
            heapq.heappush(self._tstops, self._tdir * s)

    def _next_stop(self) -> float:
        t = self._state.t
        while self._tstops and self._tstops[0] <= self._tdir * t:
            heapq.heappop(self._tstops)
        return self._tdir * self._tstops[0] if self._tstops else self._tf

    def _initial_dt(self) -> float:
        cfg, st = self.config, self._state
        if cfg.dt_initial is not None:
            return cfg.dt_initial
        desc = st.descriptor
        try:
            st.f = self._ctx.rhs(st.t, st.y)
            dt = initial_step(
                self._ctx,
                st.t,
                st.y,
                st.f,
                st.tdir,
                desc.adaptive_order or desc.order,
                self._dt_max,
            )
        except DomainError:
            st.f = None
            dt = 1e-6 * abs(self._tf - self._t0)
            get_logger().debug("Initial step estimate hit a domain error; using %g", dt)
        return dt

    # --------------------------------------------------------------- saving
    def _save(self, t: float, y: np.ndarray) -> None:
        if self._ts and self._ts[-1] == t and np.array_equal(self._ys[-1], y):
            return
        self._ts.append(float(t))
        self._ys.append(np.array(y, dtype=float))

    def _save_interpolated(self, t_old: float, seg: Segment) -> None:
        tdir, t_cur = self._tdir, seg.t_end
        pts = self._saveat
        while self._saveat_i < len(pts) and tdir * (pts[self._saveat_i] - t_cur) <= 0:
            s = pts[self._saveat_i]
            if tdir * (s - t_old) > 0:
                self._save(s, seg.evaluate(s))
            self._saveat_i += 1

    def _save_start(self) -> None:
        st, pts = self._state, self._saveat
        if self._saving["save_start"]:
            self._save(st.t, st.y)
        while self._saveat_i < len(pts) and pts[self._saveat_i] == st.t:
            self._save(st.t, st.y)
            self._saveat_i += 1

    def _build_solution(self, retcode: str) -> Solution:
        st = self._state
        if self._saving["save_end"]:
            self._save(st.t, st.y)
        n = self._problem.n
        ts = np.array(self._ts, dtype=float)
        ys = np.array(self._ys, dtype=float).reshape(len(self._ts), n)
        stats = st.stats.to_dict()
        if self._linear_solver is not None:
            stats["nfactor"] = int(getattr(self._linear_solver, "n_factorizations", 0))
        return Solution(
            t=ts,
            y=ys,
            retcode=retcode,
            stats=stats,
            dense=self._dense if self._saving["dense"] else None,
            events=list(self._callbacks.events),
            meta={
                "problem": self._problem.name,
                "algorithm": [a.name for a in self._algorithms],
                "tspan": (self._t0, self._tf),
                "t_final": st.t,
                "abstol": self.config.abstol,
                "reltol": self.config.reltol,
                "adaptive": self.config.adaptive,
            },
        )

    # ------------------------------------------------------- state changes
    def _after_modification(self) -> None:
        st = self._state
        st.f = None
        st.history.clear()
        self._callbacks.refresh(self._handle)

    def _select(self) -> None:
        comp, st = self._composite, self._state
        assert comp is not None
        idx = comp.select(st.view())
        if idx == st.active:
            return
        new = self._algorithms[idx]
        get_logger().debug(
            "Switching %s -> %s at t=%.16g", st.descriptor.name, new.name, st.t
        )
        st.stats.nswitch += 1
        st.active = idx
        st.descriptor = new
        self._controller.reset(st)
        if new.is_multistep:
            st.history.clear()

    def _reject(self, dt_next: float, reason: str) -> None:
        st = self._state
        st.stats.nreject += 1
        st.n_consecutive_reject += 1
        st.last_rejected = True
        st.dt = dt_next
        get_logger().debug("Rejected step at t=%.16g (%s); dt -> %g", st.t, reason, dt_next)
        if st.n_consecutive_reject >= self.config.max_rejections:
            msg = (
                f"[320] {st.n_consecutive_reject} consecutive rejections at t={st.t} "
                f"(last: {reason})"
            )
            get_logger().error(msg)
            raise ConvergenceFailure(
                msg,
                n_rejections=st.n_consecutive_reject,
                solution=self._build_solution(ReturnCode.FAILURE),
            )

    def _accept(self, res: StepResult, t_new: float, dt_next: float) -> None:
        st, cfg = self._state, self.config
        t_old, y_old, f_old = st.t, st.y, st.f
        h = t_new - t_old
        seg = res.segment(t_old, h, y_old, f_old, t_end=t_new)
        self._dense.append(seg)

        st.tprev, st.yprev = t_old, y_old
        st.t, st.y, st.f = t_new, np.array(res.y_new, dtype=float), res.f_new
        st.n_steps += 1
        st.stats.naccept += 1
        st.n_consecutive_reject = 0
        st.last_err = float(res.err)
        if cfg.adaptive:
            self._controller.record(st, res.err)
        else:
            st.last_rejected = False
        st.dt = dt_next
        self._last_dt = abs(h)

        if f_old is not None and res.f_new is not None:
            dy = float(np.linalg.norm(st.y - y_old))
            st.stiffness = float(np.linalg.norm(res.f_new - f_old)) / dy if dy > 0 else 0.0
        if st.descriptor.is_multistep and res.f_new is not None:
            st.history.append((t_new, res.f_new))
        if res.info.get("starter"):
            st.stats.nstarter += 1

        cbm, handle = self._callbacks, self._handle
        hit = cbm.find_event(handle, seg) if cbm.continuous else None
        if hit is not None:
            if hit.t != seg.t_end:
                seg = seg.truncate(hit.t)
                self._dense.replace_last(seg)
                st.t, st.y, st.f = hit.t, seg.y_end.copy(), None
                st.history.clear()
                self._last_dt = abs(hit.t - t_old)
            self._save_interpolated(t_old, seg)
            st.stats.nevents += 1
            cbm.apply_event(handle, hit, self._save)
        else:
            self._save_interpolated(t_old, seg)
        if cbm:
            cbm.refresh(handle)
            cbm.apply_discrete(handle, self._save)
        if self._saving["save_everystep"]:
            self._save(st.t, st.y)

    # ------------------------------------------------------------ main loop
    def solve(
        self,
        problem: ODEProblem | None = None,
        *,
        progress_cb: ProgressFn | None = None,
        progress_interval_seconds: float = 1.0,
    ) -> Solution:
        """Integrate ``problem`` over its ``tspan``.

        Parameters
        ----------
        problem : ODEProblem, optional
            Defaults to the engine's problem.
        progress_cb : Callable[[float, float, str], None], optional
            Receives ``(percent, eta_seconds, message)`` at most once per
            ``progress_interval_seconds``; ETA is NaN during warm-up.

        Returns
        -------
        Solution
            Saved points, dense output and statistics.

        Raises
        ------
        ConvergenceFailure
            ``max_rejections`` consecutive rejections.
        QPSConfigError
            Inconsistent algorithm/problem combination.

        """
        problem = problem if problem is not None else self.problem
        if problem is None:
            raise QPSConfigError("[570] No problem given to Engine.solve")
        self._setup(problem)
        cfg, st, ctrl, ctx = self.config, self._state, self._controller, self._ctx
        logger = get_logger()
        logger.info(
            "Integrating '%s' on [%g, %g] with %s",
            problem.name,
            self._t0,
            self._tf,
            self._composite.name if self._composite else st.descriptor.name,
        )

        if self._composite is not None:
            self._select()
        st.dt = ctrl.clamp(self._initial_dt(), st.t)
        self._save_start()
        self._callbacks.initialize(self._handle)

        wall_start = _time.monotonic()
        deadline = wall_start + cfg.max_wall_time if cfg.max_wall_time else None
        span = abs(self._tf - self._t0)
        next_report = wall_start + max(0.1, float(progress_interval_seconds))
        rate_ema: float | None = None
        last_report = (wall_start, 0.0)

        retcode = ReturnCode.SUCCESS
        while True:
            if self._tdir * (self._tf - st.t) <= 0:
                break
            if self._handle.terminated or self._terminate_requested:
                retcode = ReturnCode.TERMINATED
                break
            if self.cancel_event is not None and self.cancel_event.is_set():
                retcode = ReturnCode.TERMINATED
                break
            if deadline is not None and _time.monotonic() > deadline:
                retcode = ReturnCode.DEADLINE_EXCEEDED
                msg = f"[930] max_wall_time exceeded at t={st.t}"
                warnings.warn(msg, QPSWarning, stacklevel=2)
                logger.warning(msg)
                break
            if st.n_steps >= cfg.max_steps:
                retcode = ReturnCode.MAX_ITERS
                msg = f"[920] max_steps={cfg.max_steps} reached at t={st.t}"
                warnings.warn(msg, QPSWarning, stacklevel=2)
                logger.warning(msg)
                break

            if self._composite is not None and st.n_consecutive_reject == 0:
                self._select()
            desc = st.descriptor

            stop = self._next_stop()
            dt_try, landed = ctrl.limit_to_stop(st.t, min(st.dt, self._dt_max), st.tdir, stop)
            t_new = stop if landed else st.t + st.tdir * dt_try

            try:
                res = attempt_step(ctx, st, desc, t_new - st.t)
            except (DomainError, SolverFailure) as e:
                st.dt = dt_try
                self._reject(ctrl.shrink(st, cfg.domain_shrink), str(e))
                continue

            if cfg.adaptive:
                st.dt = dt_try
                accept, dt_next = ctrl.decide(res.err, res.order, st)
            else:
                accept, dt_next = True, float(cfg.dt_initial)
            if not accept:
                self._reject(dt_next, f"err={res.err:.3g}")
                continue
            self._accept(res, t_new, dt_next)

            # progress
            done = abs(st.t - self._t0)
            self._progress = {
                "percent": 100.0 * done / span,
                "t": st.t,
                "steps": st.n_steps,
                "rejects": st.stats.nreject,
            }
            if progress_cb is not None:
                now = _time.monotonic()
                if now >= next_report:
                    d_wall = now - last_report[0]
                    d_t = done - last_report[1]
                    if d_t > 0:
                        inst = d_wall / d_t
                        rate_ema = inst if rate_ema is None else 0.2 * inst + 0.8 * rate_ema
                    last_report = (now, done)
                    next_report = now + max(0.1, float(progress_interval_seconds))
                    eta = (span - done) * rate_ema if rate_ema is not None else float("nan")
                    try:
                        progress_cb(self._progress["percent"], eta, f"t={st.t:.6g}")
                    except Exception as e:  # progress reporting never aborts a run
                        logger.debug("progress_cb raised %r", e)

        sol = self._build_solution(retcode)
        logger.info(
            "Finished '%s' at t=%g: %s (%d accepted, %d rejected, %d f-evals)",
            problem.name,
            st.t,
            retcode,
            st.stats.naccept,
            st.stats.nreject,
            st.stats.nf,
        )
        return sol


def solve(
    problem: ODEProblem, config: IntegratorConfig | dict | None = None, **options: Any
) -> Solution:
    """Integrate ``problem``; keyword options override ``config`` fields.

    Examples
    --------
    >>> prob = ODEProblem(lambda t, y: -y, [1.0], (0.0, 1.0))
    >>> sol = solve(prob, algorithm="bs3", reltol=1e-6)
    >>> sol.retcode
    'Success'

    """
    cfg = IntegratorConfig.from_raw(config)
    if options:
        cfg = cfg.with_options(**options)
    return Engine(cfg).solve(problem)
