import pytest

from peakresolve import Peak, ProcessingData
from peakresolve.controllers import (
    CancellationToken,
    Component,
    ComponentDescriptor,
    ComponentRegistry,
    ComponentType,
    ConfigManager,
    Manual,
    ProcessingStrategy,
    RetryOnError,
    SkipOnError,
    StopOnError,
    StrategyController,
    WorkflowConfig,
    WorkflowController,
    create_default_registry,
    register_default_components,
)
from peakresolve.controllers.workflow_controller import STAGES, error_handling_from_config
from peakresolve.errors import ConfigError, ProcessError

STAGE_NAMES = [stage.value for stage in STAGES]


class FlakyFitting(Component):
    """Fails ``failures`` times, adding a stray peak to its snapshot before raising."""

    name = "flaky"

    def __init__(self, state, token=None):
        self.state = state
        self.token = token

    def process(self, data, config):
        self.state['calls'] += 1
        if self.token is not None:
            self.token.cancel()
        if self.state['calls'] <= self.state['failures']:
            data.peaks.append(Peak(0.5, amplitude=1.0, fwhm=0.1))
            raise self.state['error'](f"flaky failure {self.state['calls']}")
        return data


def flaky_workflow(failures, handling, token=None, error=ProcessError):
    state = {'calls': 0, 'failures': failures, 'error': error}
    registry = register_default_components(ComponentRegistry())
    registry.register(ComponentDescriptor(ComponentType.FITTING, "flaky"),
                      lambda config: FlakyFitting(state, token))
    registry.freeze()
    strategy = ProcessingStrategy("flaky_strategy", fitting_method="flaky")
    controller = StrategyController(registry, Manual(strategy))
    workflow = WorkflowController(registry, controller, config=WorkflowConfig(handling))
    return workflow, state


def test_automatic_run_on_separated_peaks(separated_curve):
    registry = create_default_registry()
    workflow = WorkflowController(registry, StrategyController(registry))

    result = workflow.execute(separated_curve)

    assert result.success, result.diagnostic
    assert result.strategy.name == "simple_peaks"
    assert result.context.overlap_ratio == 0.0
    assert [stage.stage for stage in result.stage_results] == STAGE_NAMES
    assert len(result.peaks) == 2
    assert result.peaks[0].center == pytest.approx(3.0, abs=0.1)
    assert result.peaks[1].center == pytest.approx(7.0, abs=0.1)
    assert [p.peak_id for p in result.peaks] == [0, 1]
    assert all(p.curve_id == "separated" for p in result.peaks)
    assert all(p.metadata['is_resolved'] for p in result.peaks)
    assert result.quality >= 0.8
    assert result.diagnostic == ""


def test_stage_without_component_is_skipped(separated_curve):
    registry = create_default_registry()
    result = WorkflowController(registry, StrategyController(registry)).execute(separated_curve)

    optimization = result.stage("parameter_optimization")
    assert optimization.skipped
    assert optimization.success
    assert optimization.component is None
    assert result.stage("fitting").attempts == 1


def test_result_tables(separated_curve):
    registry = create_default_registry()
    result = WorkflowController(registry, StrategyController(registry)).execute(separated_curve)

    stages = result.stage_table()
    assert list(stages["stage"]) == STAGE_NAMES
    assert stages["success"].all()

    peaks = result.peak_table()
    assert list(peaks["peak_id"]) == [0, 1]
    assert set(peaks["quality_grade"]) <= {"A", "B", "C", "D"}
    assert list(peaks.columns) == ["peak_id", "center", "amplitude", "fwhm", "area",
                                   "asymmetry_factor", "rsquared", "peak_type",
                                   "quality_grade", "resolution", "is_resolved"]


def test_pre_populated_candidates(separated_curve):
    registry = create_default_registry()
    workflow = WorkflowController(registry, StrategyController(registry))
    candidates = [Peak(3.05, amplitude=90.0, fwhm=0.8)]

    result = workflow.execute(separated_curve, candidates=candidates)

    assert len(result.peaks) == 1
    assert result.peaks[0].center == pytest.approx(3.0, abs=0.05)
    assert candidates[0].center == 3.05


def test_stop_on_error_raises(separated_curve):
    workflow, state = flaky_workflow(failures=1, handling=StopOnError())

    with pytest.raises(ProcessError, match="flaky failure 1"):
        workflow.execute(separated_curve)
    assert state['calls'] == 1


def test_skip_on_error_continues_with_stage_input(separated_curve):
    workflow, _ = flaky_workflow(failures=1, handling=SkipOnError())

    result = workflow.execute(separated_curve)

    fitting = result.stage("fitting")
    assert fitting.skipped and not fitting.success
    assert fitting.error == "flaky failure 1"
    assert result.stage("post_processing").success
    assert len(result.peaks) == 2
    assert all(p.center != 0.5 for p in result.peaks)
    assert not result.success
    assert "skipped after error: fitting: flaky failure 1" in result.diagnostic


def test_retry_recovers_from_snapshot(separated_curve):
    workflow, state = flaky_workflow(failures=2, handling=RetryOnError(max_retries=3))

    result = workflow.execute(separated_curve)

    fitting = result.stage("fitting")
    assert fitting.success
    assert fitting.attempts == 3
    assert state['calls'] == 3
    assert all(p.center != 0.5 for p in result.peaks)


def test_retry_gives_up_after_max_retries(separated_curve):
    workflow, state = flaky_workflow(failures=10, handling=RetryOnError(max_retries=2))

    with pytest.raises(ProcessError):
        workflow.execute(separated_curve)
    assert state['calls'] == 3


def test_library_error_is_wrapped_in_process_error(separated_curve):
    workflow, _ = flaky_workflow(failures=1, handling=StopOnError(), error=ValueError)

    with pytest.raises(ProcessError, match="flaky: ValueError: flaky failure 1") as info:
        workflow.execute(separated_curve)
    assert isinstance(info.value.__cause__, ValueError)


def test_library_error_follows_skip_and_retry(separated_curve):
    skipping, _ = flaky_workflow(failures=1, handling=SkipOnError(), error=ValueError)
    skipped = skipping.execute(separated_curve).stage("fitting")
    assert skipped.skipped
    assert skipped.error == "flaky: ValueError: flaky failure 1"

    retrying, state = flaky_workflow(failures=1, handling=RetryOnError(max_retries=2),
                                     error=ZeroDivisionError)
    result = retrying.execute(separated_curve)
    assert result.stage("fitting").success
    assert state['calls'] == 2


def test_global_fitting_method_from_user_config(separated_curve):
    registry = create_default_registry()
    workflow = WorkflowController(registry, StrategyController(registry))

    result = workflow.execute(separated_curve, user_config={
        "optimization": {"algorithm": "global", "max_iterations": 300}})

    assert result.success, result.diagnostic
    fitting = result.intermediate_results['fitting']
    assert fitting['method'] == "global"
    assert [round(s['center']) for s in fitting['peak_statistics']] == [3, 7]
    assert sum(s['area_percent'] for s in fitting['peak_statistics']) == pytest.approx(100.0)
    assert all(p.metadata['fitting_method'] == "global" for p in result.peaks)
    assert result.peaks[0].center == pytest.approx(3.0, abs=0.05)
    assert result.peaks[0].metadata['area_percent'] > result.peaks[1].metadata['area_percent']


def test_cancelled_before_start(separated_curve):
    registry = create_default_registry()
    token = CancellationToken()
    token.cancel()

    result = WorkflowController(registry, StrategyController(registry)).execute(
        separated_curve, cancellation=token)

    assert result.cancelled
    assert not result.success
    assert result.stage_results == []
    assert result.diagnostic == "cancelled before stage peak_detection"


def test_cancelled_between_stages(separated_curve):
    token = CancellationToken()
    workflow, _ = flaky_workflow(failures=0, handling=StopOnError(), token=token)

    result = workflow.execute(separated_curve, cancellation=token)

    assert result.cancelled
    assert [stage.stage for stage in result.stage_results] == STAGE_NAMES[:5]
    assert result.diagnostic == "cancelled before stage parameter_optimization"


def test_quality_below_threshold_fails_with_diagnostic(separated_curve):
    registry = create_default_registry()
    workflow = WorkflowController(registry, StrategyController(registry))

    result = workflow.execute(separated_curve, user_config={"validation": {"quality_threshold": 1.0}})

    assert not result.success
    assert result.diagnostic.startswith("validation: overall quality")
    assert "below threshold 1.000" in result.diagnostic
    assert result.intermediate_results['validation']['passed'] is False


def test_manual_overrides_need_permission(separated_curve):
    registry = create_default_registry()
    strict = WorkflowController(registry, StrategyController(registry, Manual("simple_peaks")))
    with pytest.raises(ConfigError):
        strict.execute(separated_curve, overrides={"overlap_processing": "fbf"})

    relaxed = WorkflowController(
        registry, StrategyController(registry, Manual("simple_peaks", allow_override=True)))
    result = relaxed.execute(separated_curve, overrides={"overlap_processing": "fbf"})
    assert result.stage("overlap_processing").component == "fbf"


def test_stage_config_layers(separated_curve):
    registry = create_default_registry()
    manager = ConfigManager()
    manager.set_config("fitting", {"window_width_factor": 3.0})
    workflow = WorkflowController(registry, StrategyController(registry), config_manager=manager)
    strategy = StrategyController(registry).get_strategy("complex_peaks")

    config = workflow.stage_config(ComponentType.FITTING, strategy,
                                   {"optimization": {"max_iterations": 50}})

    assert config["shape_type"] == "EMG"
    assert config["window_width_factor"] == 3.0
    assert config["algorithm"] == "simulated_annealing"
    assert config["optimization"]["max_iterations"] == 50
    assert config["optimization"]["cooling_rate"] == 0.95


def test_workflow_config_from_sections():
    config = WorkflowConfig.from_config({"error_handling": "retry_on_error", "max_retries": 5,
                                         "quality_threshold": 0.6})
    assert config.error_handling == RetryOnError(5)
    assert config.quality_threshold == 0.6
    assert error_handling_from_config({}) == StopOnError()
    with pytest.raises(ConfigError):
        error_handling_from_config({"error_handling": "ignore"})


def test_rejected_extreme_overlap_fit_is_graded_down(separated_curve):
    registry = create_default_registry()
    component = registry.create(ComponentType.POST_PROCESSING, "standard", {})
    accepted = Peak(3.0, amplitude=100.0, fwhm=0.7, rsquared=0.95)
    accepted.metadata['extreme_overlap_rejected'] = False
    rejected = Peak(7.0, amplitude=60.0, fwhm=0.7, rsquared=0.99)
    rejected.metadata['extreme_overlap_rejected'] = True

    result = component.process(ProcessingData(peaks=[accepted, rejected], curve=separated_curve),
                               {"rejected_penalty": 0.5})

    first, second = result.peaks
    assert second.metadata['quality_score'] == pytest.approx(0.5 * second.quality_score())
    assert second.metadata['quality_score'] < first.metadata['quality_score']
    assert second.metadata['quality_grade'] in ("C", "D")
