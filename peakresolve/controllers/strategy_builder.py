"""
Processing strategies and the context they are chosen from.

Classes
-------
ProcessingContext
    Read-only features of one curve and its candidate peaks
ProcessingStrategy
    Immutable bundle of component names plus per-section configuration
StrategyBuilder
    Fluent construction of custom strategies, checked against a registry

Functions
---------
predefined_strategies
    The four building-block strategies
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from peakresolve.data import Curve, Peak
from peakresolve.errors import ConfigError
from peakresolve.fitting.fitting_engine import FIT_METHODS
from peakresolve.overlap.metrics import estimate_snr, overlap_degree
from .component_registry import ComponentRegistry, ComponentType
from .config_manager import SECTIONS, deep_merge

logger = logging.getLogger(__name__)

SIMPLE_PEAKS = "simple_peaks"
OVERLAPPING_PEAKS = "overlapping_peaks"
COMPLEX_PEAKS = "complex_peaks"
HIGH_PRECISION = "high_precision"

# strategy slot -> component type it names
SLOT_TYPES = {
    "peak_detection": ComponentType.PEAK_DETECTION,
    "overlap_processing": ComponentType.OVERLAP_PROCESSING,
    "fitting_method": ComponentType.FITTING,
    "optimization_algorithm": None,
    "advanced_algorithm": ComponentType.OPTIMIZATION,
    "post_processing": ComponentType.POST_PROCESSING,
}


@dataclass(frozen=True)
class ProcessingContext:
    """
    Features the strategy rules score.

    Attributes:
        peak_count: Number of candidate peaks
        overlap_ratio: Mean pairwise overlap of the candidates, 0..1
        snr: Largest candidate amplitude over the robust noise
        complexity: Mean of width coefficient of variation and mean
            asymmetry deviation, 0..1
        data_quality: 1 - noise / dynamic range, 0..1
    """
    peak_count: int
    overlap_ratio: float
    snr: float
    complexity: float
    data_quality: float

    @classmethod
    def from_data(cls, peaks: Sequence[Peak], curve: Curve) -> "ProcessingContext":
        return cls(
            peak_count=len(peaks),
            overlap_ratio=overlap_degree(peaks),
            snr=estimate_snr(peaks, curve),
            complexity=cls.peak_complexity(peaks),
            data_quality=cls.data_quality_score(curve),
        )

    @staticmethod
    def peak_complexity(peaks: Sequence[Peak]) -> float:
        if not peaks:
            return 0.0
        widths = np.array([peak.fwhm for peak in peaks], dtype=float)
        mean_width = widths.mean()
        width_cv = float(widths.std() / mean_width) if len(widths) > 1 and mean_width > 0 else 0.0
        asymmetry = float(np.mean([abs(peak.asymmetry_factor - 1.0) for peak in peaks]))
        return float(np.clip(0.5 * (min(width_cv, 1.0) + min(asymmetry, 1.0)), 0.0, 1.0))

    @staticmethod
    def data_quality_score(curve: Curve) -> float:
        dynamic_range = curve.y_max - curve.y_min
        if dynamic_range <= 0:
            return 0.0
        return float(np.clip(1.0 - curve.noise_level / dynamic_range, 0.0, 1.0))

    def as_dict(self) -> Dict[str, float]:
        return {
            'peak_count': self.peak_count,
            'overlap_ratio': self.overlap_ratio,
            'snr': self.snr,
            'complexity': self.complexity,
            'data_quality': self.data_quality,
        }


@dataclass(frozen=True)
class ProcessingStrategy:
    """
    Named choice of components for every configurable stage.

    Attributes:
        name: Strategy name
        description: One-line summary
        peak_detection: Detector component name
        overlap_processing: Overlap method name ("none", "fbf", "sharpen_cwt",
            "emg_nlls", "extreme_overlap" or "auto")
        fitting_method: Fitting component name
        optimization_algorithm: Optimizer used by the fitting stage
        advanced_algorithm: Refinement run in the parameter optimization
            stage; None skips that stage
        post_processing: Post-processor name; None skips that stage
        configuration: Section name -> settings layered over the defaults
    """
    name: str
    description: str = ""
    peak_detection: str = "multi_peak"
    overlap_processing: str = "none"
    fitting_method: str = "multi_peak"
    optimization_algorithm: str = "levenberg_marquardt"
    advanced_algorithm: Optional[str] = None
    post_processing: Optional[str] = "standard"
    configuration: Dict[str, Dict[str, Any]] = field(default_factory=dict, compare=False)

    def section(self, name: str) -> Dict[str, Any]:
        return dict(self.configuration.get(name, {}))

    def with_overrides(self, overrides: Dict[str, Any]) -> "ProcessingStrategy":
        """
        New strategy with component slots replaced and configuration sections merged.

        Keys naming a slot (``overlap_processing``, ``advanced_algorithm`` ...)
        replace that component; keys naming a configuration section merge
        their mapping into it; ``configuration`` merges a whole document.
        """
        slots = {}
        configuration = self.configuration
        for key, value in overrides.items():
            # slot and section names overlap; a mapping always means configuration
            if key in SECTIONS and isinstance(value, dict):
                configuration = deep_merge(configuration, {key: value})
            elif key == "configuration" and isinstance(value, dict):
                configuration = deep_merge(configuration, value)
            elif key in SLOT_TYPES or key in ("name", "description"):
                slots[key] = value
            else:
                raise ConfigError(f"cannot override strategy field '{key}' with {value!r}")
        return replace(self, configuration=deep_merge(configuration, {}), **slots)

    def components(self) -> Dict[str, Optional[str]]:
        return {slot: getattr(self, slot) for slot in SLOT_TYPES}


class StrategyBuilder:
    """
    Build a ProcessingStrategy slot by slot.

    Examples
    --------
    >>> strategy = (StrategyBuilder("tailing", "EMG everywhere")
    ...             .with_overlap_processing("emg_nlls")
    ...             .with_fitting_method("multi_peak", {"shape_type": "EMG"})
    ...             .build())
    >>> strategy.fitting_method
    'multi_peak'
    """

    def __init__(self, name: str, description: str = "", registry: Optional[ComponentRegistry] = None):
        self._fields: Dict[str, Any] = {'name': name, 'description': description}
        self._configuration: Dict[str, Dict[str, Any]] = {}
        self._registry = registry

    @classmethod
    def from_strategy(cls, strategy: ProcessingStrategy, registry=None) -> "StrategyBuilder":
        builder = cls(strategy.name, strategy.description, registry)
        builder._fields.update(strategy.components())
        builder._configuration = deep_merge(strategy.configuration, {})
        return builder

    def _set(self, slot, name, section, config):
        self._fields[slot] = name
        if config:
            self.with_configuration(section, config)
        return self

    def with_peak_detection(self, name: str, config=None) -> "StrategyBuilder":
        return self._set("peak_detection", name, "peak_detection", config)

    def with_overlap_processing(self, name: str, config=None) -> "StrategyBuilder":
        return self._set("overlap_processing", name, "overlap_processing", config)

    def with_fitting_method(self, name: str, config=None) -> "StrategyBuilder":
        return self._set("fitting_method", name, "fitting", config)

    def with_parameter_optimizer(self, name: str, config=None) -> "StrategyBuilder":
        return self._set("optimization_algorithm", name, "optimization", config)

    def with_advanced_algorithm(self, name: Optional[str], config=None) -> "StrategyBuilder":
        return self._set("advanced_algorithm", name, "advanced_algorithm", config)

    def with_post_processing(self, name: Optional[str], config=None) -> "StrategyBuilder":
        return self._set("post_processing", name, "post_processing", config)

    def with_configuration(self, section: str, config: Dict[str, Any]) -> "StrategyBuilder":
        if section not in SECTIONS:
            raise ConfigError(f"unknown configuration section '{section}'")
        self._configuration = deep_merge(self._configuration, {section: config})
        return self

    def build(self) -> ProcessingStrategy:
        strategy = ProcessingStrategy(configuration=self._configuration, **self._fields)
        if self._registry is not None:
            validate_strategy(strategy, self._registry)
        return strategy


def validate_strategy(strategy: ProcessingStrategy, registry: ComponentRegistry):
    """Raise ConfigError when a slot names a component the registry does not have."""
    if strategy.optimization_algorithm not in FIT_METHODS:
        raise ConfigError(
            f"strategy '{strategy.name}': unknown optimization algorithm "
            f"'{strategy.optimization_algorithm}'"
        )
    for slot, component_type in SLOT_TYPES.items():
        name = getattr(strategy, slot)
        if component_type is None or name is None:
            continue
        if not registry.contains(component_type, name):
            raise ConfigError(
                f"strategy '{strategy.name}': no {component_type.value} component named '{name}'"
            )


def predefined_strategies() -> Dict[str, ProcessingStrategy]:
    """simple_peaks, overlapping_peaks, complex_peaks and high_precision."""
    strategies: List[ProcessingStrategy] = [
        StrategyBuilder(SIMPLE_PEAKS, "Well separated peaks, single-shape least squares")
        .with_overlap_processing("none")
        .with_parameter_optimizer("levenberg_marquardt", {
            "max_iterations": 100, "convergence_threshold": 1e-6, "damping_factor": 0.1,
        })
        .build(),

        StrategyBuilder(OVERLAPPING_PEAKS, "Moderate overlap, EM pre-separation before the joint fit")
        .with_overlap_processing("fbf", {"max_iterations": 100})
        .with_parameter_optimizer("levenberg_marquardt", {
            "max_iterations": 150, "convergence_threshold": 1e-7,
        })
        .build(),

        StrategyBuilder(COMPLEX_PEAKS, "Heavy overlap or low SNR, EMG shapes and annealing")
        .with_overlap_processing("extreme_overlap", {"scales": [1, 30], "max_iterations": 200})
        .with_fitting_method("multi_peak", {"shape_type": "EMG"})
        .with_parameter_optimizer("simulated_annealing", {
            "max_iterations": 500, "initial_temperature": 100.0, "cooling_rate": 0.95, "polish": True,
        })
        .with_advanced_algorithm("emg_algorithm", {"max_iterations": 200})
        .build(),

        StrategyBuilder(HIGH_PRECISION, "High SNR, wavelet relocation and Bi-Gaussian refinement")
        .with_overlap_processing("sharpen_cwt", {
            "sharpening_strength": 2.0, "scales": [1, 50], "noise_threshold": 0.05,
        })
        .with_parameter_optimizer("levenberg_marquardt", {
            "max_iterations": 500, "convergence_threshold": 1e-9, "damping_factor": 0.01,
        })
        .with_advanced_algorithm("bi_gaussian", {"max_iterations": 300})
        .with_configuration("validation", {"quality_threshold": 0.95})
        .build(),
    ]
    return {strategy.name: strategy for strategy in strategies}


PREDEFINED_STRATEGIES = predefined_strategies()
