"""
Configuration management for the processing workflow.

Configuration is a nested JSON-like document with one section per stage.
The effective configuration of a stage is built in three layers::

    defaults  <-  strategy configuration  <-  user configuration

Sections
--------
peak_detection, overlap_processing, fitting, optimization,
advanced_algorithm, post_processing, validation, workflow
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from peakresolve.errors import ConfigError
from peakresolve.fitting.data_processor import SMOOTHING_METHODS
from peakresolve.fitting.fitting_engine import FIT_METHODS
from peakresolve.fitting.peak_shapes import SHAPES

logger = logging.getLogger(__name__)

SECTIONS = (
    "peak_detection",
    "overlap_processing",
    "fitting",
    "optimization",
    "advanced_algorithm",
    "post_processing",
    "validation",
    "workflow",
)

ERROR_HANDLING_MODES = ("stop_on_error", "skip_on_error", "retry_on_error")

# Overlap processors and optimizer algorithms carry their own defaults;
# their sections only hold what a strategy or the user sets.
DEFAULT_CONFIGS = {
    "peak_detection": {
        "peak_threshold": 0.1,
        "min_peak_distance": 0.5,
        "smoothing_window": 7,
        "smoothing_method": "Savitzky-Golay",
        "resolve_shoulders": True,
        "shoulder_noise_ratio": 1.5,
        "shoulder_bic_margin": 10.0,
        "max_components": 3,
    },
    "overlap_processing": {},
    "fitting": {
        "shape_type": "Gaussian",
        "use_shape_analysis": True,
        "min_window_points": 10,
        "window_width_factor": 2.0,
    },
    "optimization": {},
    "advanced_algorithm": {
        "bic_margin": 10.0,
        "window_width_factor": 2.0,
    },
    "post_processing": {
        "min_amplitude": 0.0,
        "resolution_threshold": 1.5,
        "rejected_penalty": 0.5,
    },
    "validation": {
        "max_peaks": 50,
        "amplitude_noise_ratio": 3.0,
    },
    "workflow": {
        "error_handling": "stop_on_error",
        "max_retries": 3,
        "quality_threshold": 0.8,
    },
}


def deep_merge(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Recursive merge; nested dicts merge key by key, anything else is replaced."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _check_range(section, config, key, low=None, high=None, low_inclusive=True, high_inclusive=True):
    if key not in config:
        return
    value = config[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    if low is not None and (value < low or (value == low and not low_inclusive)):
        raise ConfigError(f"{section}.{key} = {value} is below the allowed range")
    if high is not None and (value > high or (value == high and not high_inclusive)):
        raise ConfigError(f"{section}.{key} = {value} is above the allowed range")


def validate_peak_detection(config):
    _check_range("peak_detection", config, "peak_threshold", 0.0, 1.0, False, False)
    _check_range("peak_detection", config, "min_peak_distance", 0.0, low_inclusive=False)
    _check_range("peak_detection", config, "smoothing_window", 0)
    method = config.get("smoothing_method")
    if method is not None and method not in SMOOTHING_METHODS:
        raise ConfigError(
            f"peak_detection.smoothing_method '{method}' is unknown. Available: {', '.join(SMOOTHING_METHODS)}"
        )
    _check_range("peak_detection", config, "max_components", 1)


def validate_fitting(config):
    shape = config.get("shape_type")
    if shape is not None and shape not in SHAPES:
        raise ConfigError(
            f"fitting.shape_type '{shape}' is unknown. Available: {', '.join(sorted(SHAPES))}"
        )
    _check_range("fitting", config, "min_window_points", 1)
    _check_range("fitting", config, "window_width_factor", 0.0, low_inclusive=False)


def validate_optimization(config):
    algorithm = config.get("algorithm")
    if algorithm is not None and algorithm not in FIT_METHODS:
        raise ConfigError(
            f"optimization.algorithm '{algorithm}' is unknown. Available: {', '.join(FIT_METHODS)}"
        )
    _check_range("optimization", config, "max_iterations", 1, 100000)
    _check_range("optimization", config, "convergence_threshold", 0.0, low_inclusive=False)


def validate_post_processing(config):
    _check_range("post_processing", config, "min_amplitude", 0.0)
    _check_range("post_processing", config, "resolution_threshold", 0.0)
    _check_range("post_processing", config, "rejected_penalty", 0.0, 1.0)


def validate_validation(config):
    _check_range("validation", config, "max_peaks", 1)
    _check_range("validation", config, "quality_threshold", 0.0, 1.0)
    _check_range("validation", config, "amplitude_noise_ratio", 0.0)


def validate_workflow(config):
    mode = config.get("error_handling")
    if mode is not None and mode not in ERROR_HANDLING_MODES:
        raise ConfigError(
            f"workflow.error_handling '{mode}' is unknown. Available: {', '.join(ERROR_HANDLING_MODES)}"
        )
    _check_range("workflow", config, "max_retries", 0)
    _check_range("workflow", config, "quality_threshold", 0.0, 1.0)


Validator = Callable[[Dict[str, Any]], None]


class ConfigManager:
    """
    Holds one configuration document per section with its source.

    Examples
    --------
    >>> manager = ConfigManager()
    >>> manager.set_config("fitting", {"shape_type": "EMG"})
    >>> manager.get_config("fitting")["shape_type"]
    'EMG'
    """

    def __init__(self):
        self._configs: Dict[str, Dict[str, Any]] = copy.deepcopy(DEFAULT_CONFIGS)
        self._sources: Dict[str, str] = {name: "default" for name in DEFAULT_CONFIGS}
        self._validators: Dict[str, Validator] = {}
        self.register_validator("peak_detection", validate_peak_detection)
        self.register_validator("fitting", validate_fitting)
        self.register_validator("optimization", validate_optimization)
        self.register_validator("post_processing", validate_post_processing)
        self.register_validator("validation", validate_validation)
        self.register_validator("workflow", validate_workflow)

    def register_validator(self, name: str, validator: Validator):
        self._validators[name] = validator

    def validate_config(self, name: str, config: Dict[str, Any]):
        if not isinstance(config, dict):
            raise ConfigError(f"configuration section '{name}' must be a mapping")
        validator = self._validators.get(name)
        if validator is not None:
            validator(config)

    def set_config(self, name: str, config: Dict[str, Any], source: str = "memory"):
        """Merge ``config`` over the current ``name`` section after validating the result."""
        merged = deep_merge(self._configs.get(name, {}), config)
        self.validate_config(name, merged)
        self._configs[name] = merged
        self._sources[name] = source
        logger.debug("configuration section '%s' updated from %s", name, source)

    def get_config(self, name: str) -> Dict[str, Any]:
        return copy.deepcopy(self._configs.get(name, {}))

    def get_config_source(self, name: str) -> Optional[str]:
        return self._sources.get(name)

    def list_configs(self) -> List[str]:
        return sorted(self._configs)

    def load_document(self, document: Dict[str, Any], name: Optional[str] = None, source: str = "memory"):
        """Apply ``document`` to one section, or to every top-level section when ``name`` is None."""
        if not isinstance(document, dict):
            raise ConfigError(f"configuration from {source} must be a JSON object")
        if name is not None:
            self.set_config(name, document, source)
            return
        for section, config in document.items():
            self.set_config(section, config, source)

    def load_config_file(self, path, name: Optional[str] = None):
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                document = json.load(handle)
        except OSError as exc:
            raise ConfigError(f"cannot read configuration file {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON in configuration file {path}: {exc}") from exc
        self.load_document(document, name, source=f"file:{path}")
        logger.info("loaded configuration from %s", path)

    def load_from_env(self, env_var: str, name: Optional[str] = None):
        raw = os.environ.get(env_var)
        if raw is None:
            raise ConfigError(f"environment variable {env_var} is not set")
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON in environment variable {env_var}: {exc}") from exc
        self.load_document(document, name, source=f"env:{env_var}")

    def get_merged_config(self, names: Iterable[str]) -> Dict[str, Any]:
        """Sections ``names`` deep-merged in order into one flat document."""
        merged: Dict[str, Any] = {}
        for name in names:
            merged = deep_merge(merged, self._configs.get(name, {}))
        return merged

    def stage_config(self, section: str, strategy_config: Optional[Dict[str, Any]] = None,
                     user_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Effective configuration of ``section``: defaults <- strategy <- user."""
        merged = deep_merge(self._configs.get(section, {}), (strategy_config or {}).get(section))
        merged = deep_merge(merged, (user_config or {}).get(section))
        self.validate_config(section, merged)
        return merged
