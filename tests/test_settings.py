import logging

import pytest

from anamorph.core.errors import ConfigError
from anamorph.core.logging_utils import default_log_dir, log_once, reset_log_once, resolve_level, suppressed_count
from anamorph.core.settings import (
    ENV_MAX_ITERATIONS,
    ENV_MAX_RAYCAST_DISTANCE,
    ENV_MAX_REFLECTIONS,
    ENV_SCALE,
    ENV_SEED,
    ExperimentSettings,
    MappingSettings,
    OptimizerSettings,
    axis_index,
    load_mapping_defaults,
    load_optimizer_defaults,
    settings_from_dict,
)


def _clear_settings_env(monkeypatch):
    for key in (
        ENV_MAX_RAYCAST_DISTANCE,
        ENV_MAX_REFLECTIONS,
        ENV_SCALE,
        ENV_MAX_ITERATIONS,
        ENV_SEED,
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults_without_env(monkeypatch):
    _clear_settings_env(monkeypatch)
    mapping = load_mapping_defaults()
    optimizer = load_optimizer_defaults()

    assert mapping.max_raycast_distance == 20.0
    assert mapping.max_reflections == 3
    assert mapping.scale == 1.0
    assert mapping.min_distance is None
    assert optimizer.max_iterations == 10000
    assert optimizer.seed == 0
    assert optimizer.method == "greedy"


def test_defaults_with_valid_env(monkeypatch):
    _clear_settings_env(monkeypatch)
    monkeypatch.setenv(ENV_MAX_RAYCAST_DISTANCE, "50")
    monkeypatch.setenv(ENV_MAX_REFLECTIONS, "5")
    monkeypatch.setenv(ENV_SCALE, "2.5")
    monkeypatch.setenv(ENV_MAX_ITERATIONS, "250")
    monkeypatch.setenv(ENV_SEED, "42")

    mapping = load_mapping_defaults()
    optimizer = load_optimizer_defaults()

    assert mapping.max_raycast_distance == 50.0
    assert mapping.max_reflections == 5
    assert mapping.scale == 2.5
    assert optimizer.max_iterations == 250
    assert optimizer.seed == 42


def test_defaults_invalid_values_fallback(monkeypatch):
    _clear_settings_env(monkeypatch)
    monkeypatch.setenv(ENV_MAX_RAYCAST_DISTANCE, "abc")
    monkeypatch.setenv(ENV_MAX_REFLECTIONS, "8")
    monkeypatch.setenv(ENV_SCALE, "0")
    monkeypatch.setenv(ENV_MAX_ITERATIONS, "-1")
    monkeypatch.setenv(ENV_SEED, "nan")

    mapping = load_mapping_defaults()
    optimizer = load_optimizer_defaults()

    assert mapping.max_raycast_distance == 20.0
    assert mapping.max_reflections == 3
    assert mapping.scale == 1.0
    assert optimizer.max_iterations == 10000
    assert optimizer.seed == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_reflections": 0},
        {"max_reflections": 8},
        {"scale": 0.0},
        {"max_raycast_distance": -1.0},
        {"min_distance": 0.0},
        {"identity_eps": -1.0},
    ],
)
def test_mapping_settings_reject_invalid_values(kwargs):
    with pytest.raises(ConfigError):
        MappingSettings(**kwargs)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"method": "newton"},
        {"max_iterations": 0},
        {"mutation": 1.5},
        {"offset_range": 0.001, "offset_step": 0.01},
        {"t_min": 0.0},
        {"t_min": 5.0, "t_max": 1.0},
        {"temperature_curve": "sawtooth"},
        {"vertex_selection": "smallest"},
        {"sampling_rate": 0},
        {"planar_axes": ("x", "x")},
        {"planar_axes": ("x", "y", "z")},
        {"mirror_axis": "w"},
    ],
)
def test_optimizer_settings_reject_invalid_values(kwargs):
    with pytest.raises(ConfigError):
        OptimizerSettings(**kwargs)


def test_experiment_settings_reject_invalid_values():
    with pytest.raises(ConfigError):
        ExperimentSettings(deformation="twist")
    with pytest.raises(ConfigError):
        ExperimentSettings(deform_amount=1.0)
    with pytest.raises(ConfigError):
        ExperimentSettings(smoothing_weight=1.5)


def test_method_is_normalized():
    assert OptimizerSettings(method=" Annealing ").method == "annealing"
    assert OptimizerSettings().with_method("planar").method == "planar"


def test_settings_from_dict_ignores_unknown_keys():
    settings = settings_from_dict(
        OptimizerSettings,
        {"method": "planar", "planar_axes": ["y", "z"], "unknown": 1},
    )
    assert settings.method == "planar"
    assert settings.planar_axes == ("y", "z")


def test_axis_index():
    assert axis_index("x") == 0
    assert axis_index(" Z ") == 2
    assert axis_index(1) == 1
    with pytest.raises(ConfigError):
        axis_index(3)
    with pytest.raises(ConfigError):
        axis_index("up")


def test_log_once(caplog):
    reset_log_once()
    logger = logging.getLogger("anamorph.tests")
    with caplog.at_level(logging.WARNING, logger="anamorph.tests"):
        assert log_once(logger, "key", logging.WARNING, "first %d", 1) is True
        assert log_once(logger, "key", logging.WARNING, "second %d", 2) is False
    messages = [r.getMessage() for r in caplog.records if r.name == "anamorph.tests"]
    assert messages == ["first 1"]

    assert suppressed_count("key") == 1

    reset_log_once()
    assert log_once(logger, "key", logging.DEBUG, "again") is True
    assert suppressed_count("key") == 0
    assert suppressed_count("never-logged") == 0


def test_resolve_level():
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(" warning ") == logging.WARNING
    assert resolve_level(logging.ERROR) == logging.ERROR
    assert resolve_level("chatty") == logging.INFO
    assert resolve_level("") == logging.INFO


def test_default_log_dir_follows_xdg(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path))
    assert default_log_dir() == tmp_path / "anamorph" / "logs"
