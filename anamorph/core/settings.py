"""
Settings for mapping and optimization runs.

Defaults can be overridden via environment variables so the CLI and scripted
runs share one place for tuning. Explicit values passed in code are validated
strictly (`ConfigError`); malformed environment values fall back to defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
import os
from typing import Any, Optional

from .errors import ConfigError


ENV_MAX_RAYCAST_DISTANCE = "ANAMORPH_MAX_RAYCAST_DISTANCE"
ENV_MAX_REFLECTIONS = "ANAMORPH_MAX_REFLECTIONS"
ENV_SCALE = "ANAMORPH_SCALE"
ENV_MAX_ITERATIONS = "ANAMORPH_MAX_ITERATIONS"
ENV_SEED = "ANAMORPH_SEED"

MIN_SCALE = 1e-5
MIN_DISTANCE_FLOOR = 1e-5
MAX_REFLECTIONS_LIMIT = 7

OPTIMIZER_METHODS = ("planar", "propagation", "greedy", "annealing", "offset")
EXPERIMENT_METHODS = ("greedy", "annealing")
DEFORMATION_METHODS = ("single", "random")
VERTEX_SELECTIONS = ("random", "largest")
TEMPERATURE_CURVES = ("linear", "quadratic", "cubic", "cosine", "exponential")
_AXES = {"x": 0, "y": 1, "z": 2}


def _read_float_env(
    env_name: str,
    default: float,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if value != value:
        return default
    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def _read_int_env(
    env_name: str,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def axis_index(axis: str | int) -> int:
    if isinstance(axis, int) and not isinstance(axis, bool):
        if axis in (0, 1, 2):
            return axis
        raise ConfigError(f"Axis index out of range: {axis}")
    key = str(axis).strip().lower()
    if key not in _AXES:
        raise ConfigError(f"Unknown axis: {axis!r} (expected one of x, y, z)")
    return _AXES[key]


@dataclass(frozen=True)
class MappingSettings:
    max_raycast_distance: float = 20.0
    max_reflections: int = 3
    scale: float = 1.0
    min_distance: Optional[float] = None
    identity_eps: float = 0.0
    mirror_category: str = "mirror"

    def __post_init__(self):
        if not (float(self.max_raycast_distance) > 0.0):
            raise ConfigError(f"max_raycast_distance must be > 0, got {self.max_raycast_distance}")
        if not (1 <= int(self.max_reflections) <= MAX_REFLECTIONS_LIMIT):
            raise ConfigError(
                f"max_reflections must be in [1, {MAX_REFLECTIONS_LIMIT}], got {self.max_reflections}"
            )
        if not (float(self.scale) >= MIN_SCALE):
            raise ConfigError(f"scale must be >= {MIN_SCALE}, got {self.scale}")
        if self.min_distance is not None and not (float(self.min_distance) >= MIN_DISTANCE_FLOOR):
            raise ConfigError(f"min_distance must be >= {MIN_DISTANCE_FLOOR}, got {self.min_distance}")
        if not (float(self.identity_eps) >= 0.0):
            raise ConfigError(f"identity_eps must be >= 0, got {self.identity_eps}")


@dataclass(frozen=True)
class OptimizerSettings:
    method: str = "greedy"
    max_iterations: int = 10000
    seed: int = 0
    # Greedy search
    mutation: float = 0.01
    min_deviation: float = 0.2
    # Simulated annealing
    offset_range: float = 0.1
    offset_step: float = 0.01
    t_min: float = 0.01
    t_max: float = 10.0
    temperature_curve: str = "linear"
    vertex_selection: str = "random"
    sampling_rate: int = 1
    # Planar correction
    planar_axes: tuple[str, str] = ("x", "z")
    # Triangle-normal propagation
    max_queue_iterations: int = 20000
    placement_tolerance: float = 0.005
    # Ideal normal field of a mapped mesh
    mirror_axis: str = "z"

    def __post_init__(self):
        method = str(self.method).strip().lower()
        if method not in OPTIMIZER_METHODS:
            raise ConfigError(f"Unknown optimizer method: {self.method!r}")
        object.__setattr__(self, "method", method)
        if int(self.max_iterations) < 1:
            raise ConfigError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not (0.0 < float(self.mutation) < 1.0):
            raise ConfigError(f"mutation must be in (0, 1), got {self.mutation}")
        if float(self.min_deviation) < 0.0:
            raise ConfigError(f"min_deviation must be >= 0, got {self.min_deviation}")
        if not (float(self.offset_step) > 0.0):
            raise ConfigError(f"offset_step must be > 0, got {self.offset_step}")
        if float(self.offset_range) < float(self.offset_step):
            raise ConfigError(
                f"offset_range ({self.offset_range}) must be >= offset_step ({self.offset_step})"
            )
        if not (0.0 < float(self.t_min) <= float(self.t_max)):
            raise ConfigError(f"Temperature bounds must satisfy 0 < t_min <= t_max, got {self.t_min}, {self.t_max}")
        if self.temperature_curve not in TEMPERATURE_CURVES:
            raise ConfigError(f"Unknown temperature curve: {self.temperature_curve!r}")
        if self.vertex_selection not in VERTEX_SELECTIONS:
            raise ConfigError(f"Unknown vertex selection: {self.vertex_selection!r}")
        if int(self.sampling_rate) < 1:
            raise ConfigError(f"sampling_rate must be >= 1, got {self.sampling_rate}")
        if len(tuple(self.planar_axes)) != 2:
            raise ConfigError(f"planar_axes needs exactly two axes, got {self.planar_axes!r}")
        a, b = (axis_index(v) for v in self.planar_axes)
        if a == b:
            raise ConfigError(f"planar_axes must differ, got {self.planar_axes!r}")
        axis_index(self.mirror_axis)
        if int(self.max_queue_iterations) < 1:
            raise ConfigError(f"max_queue_iterations must be >= 1, got {self.max_queue_iterations}")
        if float(self.placement_tolerance) < 0.0:
            raise ConfigError(f"placement_tolerance must be >= 0, got {self.placement_tolerance}")

    def with_method(self, method: str) -> "OptimizerSettings":
        return replace(self, method=method)


@dataclass(frozen=True)
class ExperimentSettings:
    deformation: str = "single"
    deform_index: int = 3
    deform_factor: float = 1.1
    deform_amount: float = 0.1
    smoothing_passes: int = 1
    smoothing_weight: float = 0.5

    def __post_init__(self):
        if self.deformation not in DEFORMATION_METHODS:
            raise ConfigError(f"Unknown deformation method: {self.deformation!r}")
        if int(self.deform_index) < 0:
            raise ConfigError(f"deform_index must be >= 0, got {self.deform_index}")
        if not (float(self.deform_factor) > 0.0):
            raise ConfigError(f"deform_factor must be > 0, got {self.deform_factor}")
        if not (0.0 <= float(self.deform_amount) < 1.0):
            raise ConfigError(f"deform_amount must be in [0, 1), got {self.deform_amount}")
        if int(self.smoothing_passes) < 0:
            raise ConfigError(f"smoothing_passes must be >= 0, got {self.smoothing_passes}")
        if not (0.0 <= float(self.smoothing_weight) <= 1.0):
            raise ConfigError(f"smoothing_weight must be in [0, 1], got {self.smoothing_weight}")


def load_mapping_defaults() -> MappingSettings:
    return MappingSettings(
        max_raycast_distance=_read_float_env(ENV_MAX_RAYCAST_DISTANCE, 20.0, min_value=1e-9),
        max_reflections=_read_int_env(ENV_MAX_REFLECTIONS, 3, min_value=1, max_value=MAX_REFLECTIONS_LIMIT),
        scale=_read_float_env(ENV_SCALE, 1.0, min_value=MIN_SCALE),
    )


def load_optimizer_defaults() -> OptimizerSettings:
    return OptimizerSettings(
        max_iterations=_read_int_env(ENV_MAX_ITERATIONS, 10000, min_value=1, max_value=10_000_000),
        seed=_read_int_env(ENV_SEED, 0, min_value=0),
    )


def settings_from_dict(cls, data: dict[str, Any] | None):
    """
    Build a settings dataclass from a (JSON) dict, ignoring unknown keys.

    Lists are converted to tuples so frozen settings stay hashable.
    """
    known = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in dict(data or {}).items():
        if key not in known:
            continue
        kwargs[key] = tuple(value) if isinstance(value, list) else value
    return cls(**kwargs)
