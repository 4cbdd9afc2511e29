"""qphase_ode: Integrator Configuration
-----------------------------------

Immutable, validated configuration passed to an engine at construction.

Public API
----------
``IntegratorConfig`` : tolerances, step bounds, algorithm, callbacks, saving
``ControllerConfig`` : PI controller gains and limits
``NewtonConfig`` : nonlinear iteration tolerance and budget

Notes
-----
- Algorithm names resolve through the ``algorithm`` registry namespace at
  validation time, so a config holds descriptors, never bare strings.
- Solver options are registry keys or zero-argument factories; every engine
  builds its own solver instances from them.
"""

import inspect
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

import numpy as np
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from ..callbacks.base import CallbackSet
from ..integrator.composite import CompositeAlgorithm, resolve_descriptor
from ..integrator.descriptor import AlgorithmDescriptor
from .errors import QPSConfigError
from .registry import registry
from .utils import deep_merge_dicts, load_yaml_file

__all__ = ["IntegratorConfig", "ControllerConfig", "NewtonConfig"]


class ControllerConfig(BaseModel):
    """PI step-size controller parameters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    safety: float = Field(0.9, gt=0.0, le=1.0, description="Safety factor")
    beta: float = Field(0.04, ge=0.0, description="Integral gain")
    min_factor: float = Field(0.2, gt=0.0, le=1.0, description="Smallest dt ratio")
    max_factor: float = Field(10.0, ge=1.0, description="Largest dt ratio")
    err_prev_init: float = Field(1e-4, gt=0.0, description="Initial/floor error memory")


class NewtonConfig(BaseModel):
    """Simplified Newton iteration parameters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tol: float = Field(1e-3, gt=0.0, description="Weighted update tolerance")
    max_iter: int = Field(10, ge=1, description="Iterations per attempt")


_JACOBIAN_MODES = ("auto", "finite_difference", "supplied")


class IntegratorConfig(BaseModel):
    """Configuration of one integration.

    Examples
    --------
    >>> cfg = IntegratorConfig(algorithm="dopri5", reltol=1e-6)
    >>> cfg.algorithm.name
    'dp5'

    """

    model_config = ConfigDict(
        frozen=True, extra="forbid", arbitrary_types_allowed=True, validate_default=True
    )

    abstol: float | tuple[float, ...] = Field(1e-6, description="Absolute tolerance")
    reltol: float | tuple[float, ...] = Field(1e-3, description="Relative tolerance")
    dt_initial: float | None = Field(None, gt=0.0, description="First step; hinit if unset")
    dt_min: float = Field(0.0, ge=0.0, description="Smallest step magnitude")
    dt_max: float | None = Field(None, gt=0.0, description="Largest step; span if unset")
    max_rejections: int = Field(100, ge=1, description="Consecutive rejection ceiling")
    max_steps: int = Field(100_000, ge=1, description="Accepted step budget")
    algorithm: Any = Field("dp5", description="Name, descriptor or CompositeAlgorithm")
    callbacks: Any = Field(None, description="Callback, list or CallbackSet")
    save_everystep: bool | None = Field(None, description="Default: True without saveat")
    saveat: tuple[float, ...] = Field((), description="Times to save by interpolation")
    save_start: bool | None = Field(None, description="Default: True without saveat")
    save_end: bool | None = Field(None, description="Default: True without saveat")
    dense: bool | None = Field(None, description="Keep segments on the solution")
    adaptive: bool = Field(True, description="False disables the controller")
    tstops: tuple[float, ...] = Field((), description="Times the solver must land on")
    norm: Literal["rms", "max"] = Field("rms", description="Error norm reduction")
    jacobian: Any = Field("auto", description="auto, finite_difference, supplied or provider")
    domain_shrink: float = Field(0.5, gt=0.0, lt=1.0, description="dt factor on DomainError")
    max_wall_time: float | None = Field(None, gt=0.0, description="Deadline in seconds")
    controller: ControllerConfig = Field(default_factory=ControllerConfig)
    newton: NewtonConfig = Field(default_factory=NewtonConfig)
    linear_solver: Any = Field("lu", description="Registry key or factory")
    nonlinear_solver: Any = Field("newton", description="Registry key or factory")

    # ------------------------------------------------------------ validators
    @field_validator("abstol", "reltol", mode="before")
    @classmethod
    def _tolerance(cls, v: Any) -> Any:
        arr = np.asarray(v, dtype=float)
        if arr.ndim > 1 or arr.size == 0:
            raise ValueError("tolerance must be a scalar or a 1-D sequence")
        if np.any(arr < 0) or not np.all(np.isfinite(arr)):
            raise ValueError("tolerances must be finite and non-negative")
        if arr.ndim == 0:
            return float(arr)
        return tuple(float(x) for x in arr)

    @field_validator("saveat", "tstops", mode="before")
    @classmethod
    def _times(cls, v: Any) -> tuple[float, ...]:
        if v is None:
            return ()
        return tuple(float(x) for x in np.atleast_1d(np.asarray(v, dtype=float)))

    @field_validator("algorithm", mode="before")
    @classmethod
    def _algorithm(cls, v: Any) -> Any:
        if isinstance(v, (AlgorithmDescriptor, CompositeAlgorithm)):
            return v
        if isinstance(v, str):
            return resolve_descriptor(v)
        if isinstance(v, (tuple, list)) and len(v) == 2 and callable(v[1]):
            return CompositeAlgorithm(tuple(v[0]), v[1])
        raise QPSConfigError(f"[560] Cannot interpret algorithm {v!r}")

    @field_validator("callbacks", mode="before")
    @classmethod
    def _callbacks(cls, v: Any) -> CallbackSet:
        return CallbackSet.from_any(v)

    @field_validator("jacobian", mode="before")
    @classmethod
    def _jacobian(cls, v: Any) -> Any:
        if callable(v) or v in _JACOBIAN_MODES:
            return v
        raise QPSConfigError(f"[561] jacobian must be one of {_JACOBIAN_MODES} or callable")

    @field_validator("linear_solver", "nonlinear_solver", mode="before")
    @classmethod
    def _solver(cls, v: Any) -> Any:
        if isinstance(v, str) or callable(v):
            return v
        raise QPSConfigError(f"[562] Solver must be a registry key or a factory, got {v!r}")

    @model_validator(mode="after")
    def _cross_checks(self) -> "IntegratorConfig":
        if self.dt_max is not None and self.dt_min > self.dt_max:
            raise QPSConfigError(f"[563] dt_min={self.dt_min} exceeds dt_max={self.dt_max}")
        if self.dt_initial is not None and self.dt_max is not None:
            if self.dt_initial > self.dt_max:
                raise QPSConfigError("[564] dt_initial exceeds dt_max")
        if self.dt_initial is not None and self.dt_initial < self.dt_min:
            raise QPSConfigError(
                f"[567] dt_initial={self.dt_initial} is below dt_min={self.dt_min}"
            )
        if self.adaptive:
            lacking = [a.name for a in self.algorithms if not a.is_adaptive]
            if lacking:
                raise QPSConfigError(
                    f"[565] Adaptive stepping needs an error estimate; {lacking} have none "
                    "(set adaptive=False and dt_initial)"
                )
        elif self.dt_initial is None:
            raise QPSConfigError("[566] Fixed-step mode (adaptive=False) requires dt_initial")
        return self

    # ------------------------------------------------------------ accessors
    @property
    def algorithms(self) -> tuple[AlgorithmDescriptor, ...]:
        alg = self.algorithm
        if isinstance(alg, CompositeAlgorithm):
            return tuple(alg.algorithms)
        return (alg,)

    @property
    def is_composite(self) -> bool:
        return isinstance(self.algorithm, CompositeAlgorithm)

    @property
    def callback_set(self) -> CallbackSet:
        return self.callbacks

    def resolved_saving(self) -> dict[str, bool]:
        """Saving flags with ``None`` defaults resolved against ``saveat``."""
        no_saveat = len(self.saveat) == 0
        everystep = no_saveat if self.save_everystep is None else self.save_everystep
        return {
            "save_everystep": everystep,
            "save_start": no_saveat if self.save_start is None else self.save_start,
            "save_end": no_saveat if self.save_end is None else self.save_end,
            "dense": (everystep and no_saveat) if self.dense is None else self.dense,
        }

    def make_linear_solver(self) -> Any:
        return self._build(self.linear_solver, "linear_solver")

    def make_nonlinear_solver(self, linear_solver: Any) -> Any:
        opts = {
            "linear_solver": linear_solver,
            "tol": self.newton.tol,
            "max_iter": self.newton.max_iter,
        }
        return self._build(self.nonlinear_solver, "nonlinear_solver", **opts)

    @staticmethod
    def _build(spec: Any, namespace: str, **kwargs: Any) -> Any:
        if isinstance(spec, str):
            key = spec if ":" in spec else f"{namespace}:{spec}"
            return registry.create(key, **kwargs)
        factory: Callable[..., Any] = spec
        try:
            params = inspect.signature(factory).parameters
        except (TypeError, ValueError):
            return factory()
        if any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values()):
            return factory(**kwargs)
        return factory(**{k: v for k, v in kwargs.items() if k in params})

    # ---------------------------------------------------------- construction
    @classmethod
    def from_raw(cls, raw: Any | None = None) -> "IntegratorConfig":
        """Normalize ``None``, a mapping or an instance into a config.

        Raises
        ------
        pydantic.ValidationError
            Invalid field values (preserved for the caller).
        QPSConfigError
            Cross-field inconsistencies.

        """
        if raw is None:
            return cls.model_validate({})
        if isinstance(raw, cls):
            return raw
        return cls.model_validate(raw)

    @classmethod
    def from_yaml(cls, path: str | Path, **overrides: Any) -> "IntegratorConfig":
        """Load a YAML mapping and deep-merge keyword overrides on top."""
        data = load_yaml_file(path)
        section = data.get("integrator", data)
        return cls.from_raw(deep_merge_dicts(section, overrides))

    def with_options(self, **changes: Any) -> "IntegratorConfig":
        """Validated copy with ``changes`` applied."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        return type(self).model_validate(data)
