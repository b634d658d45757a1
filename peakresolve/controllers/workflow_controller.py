"""
Eight-stage processing workflow.

Stages run in a fixed order::

    peak_detection -> overlap_analysis -> overlap_processing ->
    peak_shape_analysis -> fitting -> parameter_optimization ->
    post_processing -> validation

The strategy is chosen from the ProcessingContext once overlap analysis has
run; detection uses the strategy in effect before that. Every stage works on
a snapshot of the data bundle, so a failed or retried stage never leaves
partial changes behind.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from peakresolve.data import Curve, Peak, ProcessingData
from peakresolve.errors import ConfigError, PeakResolveError, ProcessError
from .component_registry import ComponentRegistry, ComponentType
from .config_manager import ConfigManager
from .strategy_builder import ProcessingContext, ProcessingStrategy
from .strategy_controller import StrategyController

logger = logging.getLogger(__name__)

STAGES = (
    ComponentType.PEAK_DETECTION,
    ComponentType.OVERLAP_ANALYSIS,
    ComponentType.OVERLAP_PROCESSING,
    ComponentType.SHAPE_ANALYSIS,
    ComponentType.FITTING,
    ComponentType.OPTIMIZATION,
    ComponentType.POST_PROCESSING,
    ComponentType.VALIDATION,
)

# stage -> configuration section it reads
STAGE_SECTIONS = {
    ComponentType.PEAK_DETECTION: "peak_detection",
    ComponentType.OVERLAP_ANALYSIS: "overlap_processing",
    ComponentType.OVERLAP_PROCESSING: "overlap_processing",
    ComponentType.SHAPE_ANALYSIS: "fitting",
    ComponentType.FITTING: "fitting",
    ComponentType.OPTIMIZATION: "advanced_algorithm",
    ComponentType.POST_PROCESSING: "post_processing",
    ComponentType.VALIDATION: "validation",
}


@dataclass(frozen=True)
class StopOnError:
    """Abort the run and re-raise the stage's error."""


@dataclass(frozen=True)
class SkipOnError:
    """Record the failure and continue with the stage's input."""


@dataclass(frozen=True)
class RetryOnError:
    """Re-run the stage from its snapshot up to ``max_retries`` more times, then abort."""
    max_retries: int = 3


ErrorHandling = Union[StopOnError, SkipOnError, RetryOnError]


def error_handling_from_config(config: Dict[str, Any]) -> ErrorHandling:
    mode = config.get("error_handling", "stop_on_error")
    if mode == "stop_on_error":
        return StopOnError()
    if mode == "skip_on_error":
        return SkipOnError()
    if mode == "retry_on_error":
        return RetryOnError(int(config.get("max_retries", 3)))
    raise ConfigError(f"unknown error handling mode '{mode}'")


@dataclass
class WorkflowConfig:
    """
    Attributes:
        error_handling: StopOnError, SkipOnError or RetryOnError
        quality_threshold: Minimum overall quality for a successful run,
            unless the strategy or user configuration sets one for validation
    """
    error_handling: ErrorHandling = field(default_factory=StopOnError)
    quality_threshold: float = 0.8

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "WorkflowConfig":
        return cls(error_handling=error_handling_from_config(config),
                   quality_threshold=float(config.get("quality_threshold", 0.8)))


class CancellationToken:
    """Cooperative cancellation flag, checked at stage boundaries."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class StageResult:
    """
    Attributes:
        stage: Stage name
        component: Component that ran (None when skipped without one)
        success: False when the stage raised
        duration: Wall time in seconds over all attempts
        quality_score: Stage-specific score, when the stage defines one
        quality_passed: Stage-specific check on the output
        attempts: Number of times the stage ran
        skipped: Stage did not contribute output
        error: Message of the last error
    """
    stage: str
    component: Optional[str]
    success: bool
    duration: float = 0.0
    quality_score: Optional[float] = None
    quality_passed: bool = True
    attempts: int = 0
    skipped: bool = False
    error: Optional[str] = None


@dataclass
class WorkflowResult:
    """Outcome of one workflow run."""
    peaks: List[Peak]
    stage_results: List[StageResult]
    strategy: Optional[ProcessingStrategy]
    context: Optional[ProcessingContext]
    quality: float = 0.0
    success: bool = False
    diagnostic: str = ""
    cancelled: bool = False
    curve_id: str = ""
    intermediate_results: Dict[str, Any] = field(default_factory=dict)

    def stage(self, name: str) -> Optional[StageResult]:
        for result in self.stage_results:
            if result.stage == name:
                return result
        return None

    def stage_table(self) -> pd.DataFrame:
        columns = ["stage", "component", "success", "skipped", "attempts", "duration",
                   "quality_score", "quality_passed", "error"]
        return pd.DataFrame([{c: getattr(r, c) for c in columns} for r in self.stage_results],
                            columns=columns)

    def peak_table(self) -> pd.DataFrame:
        columns = ["peak_id", "center", "amplitude", "fwhm", "area", "asymmetry_factor",
                   "rsquared", "peak_type", "quality_grade", "resolution", "is_resolved"]
        rows = []
        for peak in self.peaks:
            rows.append({
                'peak_id': peak.peak_id,
                'center': peak.center,
                'amplitude': peak.amplitude,
                'fwhm': peak.fwhm,
                'area': peak.area,
                'asymmetry_factor': peak.asymmetry_factor,
                'rsquared': peak.rsquared,
                'peak_type': peak.peak_type,
                'quality_grade': peak.metadata.get('quality_grade'),
                'resolution': peak.metadata.get('resolution'),
                'is_resolved': peak.metadata.get('is_resolved'),
            })
        return pd.DataFrame(rows, columns=columns)


class WorkflowController:
    """
    Run the eight stages for one curve.

    Parameters
    ----------
    registry : ComponentRegistry
        Frozen registry the stage components come from
    strategy_controller : StrategyController
    config_manager : ConfigManager, optional
        Default configuration sections
    config : WorkflowConfig, optional
        Error handling and quality threshold (default: from the
        ``workflow`` section of ``config_manager``)
    """

    def __init__(self, registry: ComponentRegistry, strategy_controller: StrategyController,
                 config_manager: Optional[ConfigManager] = None,
                 config: Optional[WorkflowConfig] = None):
        self.registry = registry
        self.strategy_controller = strategy_controller
        self.config_manager = config_manager or ConfigManager()
        self.config = config or WorkflowConfig.from_config(self.config_manager.get_config("workflow"))

    def execute(self, curve: Curve, candidates: Optional[Sequence[Peak]] = None,
                user_config: Optional[Dict[str, Any]] = None,
                overrides: Optional[Dict[str, Any]] = None,
                cancellation: Optional[CancellationToken] = None) -> WorkflowResult:
        """
        Process ``curve``.

        Parameters
        ----------
        curve : Curve
        candidates : sequence of Peak, optional
            Pre-populated candidates; detection completes them instead of searching
        user_config : dict, optional
            Section -> settings, layered over defaults and strategy configuration
        overrides : dict, optional
            Strategy overrides for this run (see ProcessingStrategy.with_overrides)
        cancellation : CancellationToken, optional

        Raises
        ------
        PeakResolveError
            A stage failed under StopOnError, or after its retries under RetryOnError
        """
        data = ProcessingData(peaks=[peak.copy() for peak in candidates or []], curve=curve)
        data.metadata['curve_id'] = curve.curve_id
        controller = self.strategy_controller
        strategy = controller.apply_overrides(controller.initial_strategy(), overrides)
        context = None
        stage_results: List[StageResult] = []

        for stage in STAGES:
            if cancellation is not None and cancellation.cancelled:
                logger.info("workflow for %s cancelled before %s", curve.curve_id, stage.value)
                return WorkflowResult(
                    peaks=data.peaks, stage_results=stage_results, strategy=strategy,
                    context=context, success=False, cancelled=True, curve_id=curve.curve_id,
                    diagnostic=f"cancelled before stage {stage.value}",
                    intermediate_results=data.intermediate_results,
                )

            if stage == ComponentType.OVERLAP_PROCESSING:
                context = ProcessingContext.from_data(data.peaks, data.curve)
                strategy = controller.apply_overrides(controller.select_strategy(context), overrides)
                data.metadata['strategy'] = strategy.name
                data.metadata['context'] = context.as_dict()

            name = self.component_name(stage, strategy)
            if name is None:
                stage_results.append(StageResult(stage=stage.value, component=None, success=True,
                                                 skipped=True))
                logger.info("stage %s skipped: no component configured", stage.value)
                continue

            config = self.stage_config(stage, strategy, user_config)
            data, result = self._run_stage(stage, name, data, config)
            stage_results.append(result)

        return self._finish(data, stage_results, strategy, context)

    @staticmethod
    def component_name(stage: ComponentType, strategy: ProcessingStrategy) -> Optional[str]:
        if stage == ComponentType.PEAK_DETECTION:
            return strategy.peak_detection
        if stage == ComponentType.OVERLAP_PROCESSING:
            return strategy.overlap_processing
        if stage == ComponentType.FITTING:
            return strategy.fitting_method
        if stage == ComponentType.OPTIMIZATION:
            return strategy.advanced_algorithm
        if stage == ComponentType.POST_PROCESSING:
            return strategy.post_processing
        return "standard"

    def stage_config(self, stage: ComponentType, strategy: ProcessingStrategy,
                     user_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        section = STAGE_SECTIONS[stage]
        config = self.config_manager.stage_config(section, strategy.configuration, user_config)
        if stage == ComponentType.FITTING:
            optimization = self.config_manager.stage_config("optimization", strategy.configuration,
                                                            user_config)
            config['algorithm'] = optimization.pop("algorithm", strategy.optimization_algorithm)
            config['optimization'] = optimization
        elif stage == ComponentType.VALIDATION:
            config.setdefault("quality_threshold", self.config.quality_threshold)
        return config

    def _invoke(self, stage: ComponentType, name: str, data: ProcessingData,
                config: Dict[str, Any]):
        component = self.registry.create(stage, name, config)
        try:
            return component, component.process(data, config)
        except PeakResolveError:
            raise
        except (ArithmeticError, LookupError, TypeError, ValueError, np.linalg.LinAlgError) as exc:
            raise ProcessError(f"{name}: {type(exc).__name__}: {exc}") from exc

    def _run_stage(self, stage: ComponentType, name: str, data: ProcessingData,
                   config: Dict[str, Any]) -> Tuple[ProcessingData, StageResult]:
        handling = self.config.error_handling
        attempts = 0
        start = time.perf_counter()
        logger.info("stage %s (%s) started", stage.value, name)
        while True:
            attempts += 1
            snapshot = data.copy()
            try:
                component, output = self._invoke(stage, name, snapshot, config)
            except PeakResolveError as exc:
                duration = time.perf_counter() - start
                if isinstance(handling, RetryOnError) and attempts <= handling.max_retries:
                    logger.warning("stage %s failed (attempt %d of %d): %s", stage.value,
                                   attempts, handling.max_retries + 1, exc)
                    continue
                if isinstance(handling, SkipOnError):
                    logger.warning("stage %s failed and is skipped: %s", stage.value, exc)
                    return data, StageResult(stage=stage.value, component=name, success=False,
                                             duration=duration, quality_passed=False,
                                             attempts=attempts, skipped=True, error=str(exc))
                logger.error("stage %s failed after %d attempt(s): %s", stage.value, attempts, exc)
                raise

            score, passed = component.quality(output)
            duration = time.perf_counter() - start
            logger.info("stage %s (%s) finished in %.3fs with %d peaks", stage.value, name,
                        duration, len(output.peaks))
            return output, StageResult(stage=stage.value, component=name, success=True,
                                       duration=duration, quality_score=score,
                                       quality_passed=passed, attempts=attempts)

    def _finish(self, data, stage_results, strategy, context) -> WorkflowResult:
        report = data.intermediate_results.get('validation')
        failed = [r for r in stage_results if not r.success]

        if report is None:
            quality, success = 0.0, False
            diagnostic = "validation: stage did not produce a quality score"
        else:
            quality = report['quality_score']
            success = bool(report['passed'])
            if success:
                diagnostic = ""
            else:
                diagnostic = (
                    f"validation: overall quality {quality:.3f} below threshold "
                    f"{report['quality_threshold']:.3f} (count {report['count_score']:.2f}, "
                    f"amplitude {report['amplitude_score']:.2f}, "
                    f"r_squared {report['rsquared_score']:.3f})"
                )
        if failed:
            skipped = "; ".join(f"{r.stage}: {r.error}" for r in failed)
            diagnostic = f"{diagnostic}; skipped after error: {skipped}" if diagnostic else \
                f"skipped after error: {skipped}"

        if success:
            logger.info("workflow for %s succeeded with %d peaks (quality %.3f, strategy %s)",
                        data.curve.curve_id, len(data.peaks), quality, strategy.name)
        else:
            logger.warning("workflow for %s failed: %s", data.curve.curve_id, diagnostic)
        return WorkflowResult(
            peaks=data.peaks, stage_results=stage_results, strategy=strategy, context=context,
            quality=quality, success=success, diagnostic=diagnostic,
            curve_id=data.curve.curve_id, intermediate_results=data.intermediate_results,
        )
