import numpy as np
import pytest

from peakresolve import Curve
from peakresolve.controllers import (
    BatchProcessor,
    CancellationToken,
    Component,
    ComponentDescriptor,
    ComponentRegistry,
    ComponentType,
    Manual,
    PeakProcessingController,
    ProcessingStrategy,
    StrategyController,
    register_default_components,
)
from peakresolve.errors import ProcessError


def gaussian(x, amplitude, center, sigma):
    return amplitude * np.exp(-((x - center) ** 2) / (2.0 * sigma ** 2))


def shifted_curves(count):
    x = np.arange(0.0, 10.0, 0.02)
    rng = np.random.default_rng(21)
    return [Curve(x, gaussian(x, 80.0, 2.0 + i, 0.4) + rng.normal(0.0, 0.2, x.size),
                  curve_id=f"curve-{i}")
            for i in range(count)]


class RejectBad(Component):
    name = "reject_bad"

    def process(self, data, config):
        if data.curve.curve_id == "bad":
            raise ProcessError("cannot fit curve 'bad'")
        return data


def test_results_keep_input_order():
    curves = shifted_curves(5)

    result = BatchProcessor(max_workers=3).run(curves)

    assert [item.curve_id for item in result.items] == [c.curve_id for c in curves]
    assert [item.index for item in result.items] == list(range(5))
    for i, item in enumerate(result.items):
        assert item.success, item.result.diagnostic
        assert item.result.peaks[0].center == pytest.approx(2.0 + i, abs=0.05)
    assert result.failed == []


def test_summary_table():
    result = BatchProcessor(max_workers=2).run(shifted_curves(2))

    summary = result.summary()

    assert list(summary.columns) == ["index", "curve_id", "success", "cancelled", "strategy",
                                     "peak_count", "quality", "error"]
    assert list(summary["curve_id"]) == ["curve-0", "curve-1"]
    assert list(summary["peak_count"]) == [1, 1]
    assert list(summary["strategy"]) == ["simple_peaks", "simple_peaks"]
    assert summary["error"].isna().all()


def test_failing_curve_does_not_stop_the_batch():
    registry = register_default_components(ComponentRegistry())
    registry.register(ComponentDescriptor(ComponentType.FITTING, "reject_bad"),
                      lambda config: RejectBad())
    registry.freeze()
    controller = StrategyController(registry, Manual(
        ProcessingStrategy("picky", fitting_method="reject_bad")))
    curves = shifted_curves(3)
    curves[1] = Curve(curves[1].x_values, curves[1].y_values, curve_id="bad")

    result = BatchProcessor(max_workers=2).run(curves, registry=registry,
                                               strategy_controller=controller)

    assert [item.error is None for item in result.items] == [True, False, True]
    assert result.items[1].error == "ProcessError: cannot fit curve 'bad'"
    assert result.items[1].result is None
    assert [item.curve_id for item in result.failed] == ["bad"]
    assert result.results[0] is not None


def test_cancelled_batch():
    token = CancellationToken()
    token.cancel()

    result = BatchProcessor(max_workers=2).run(shifted_curves(3), cancellation=token)

    summary = result.summary()
    assert summary["cancelled"].all()
    assert not summary["success"].any()


def test_facade_batch_uses_registered_strategies():
    controller = PeakProcessingController()
    controller.register_strategy(ProcessingStrategy("custom_simple", post_processing=None))

    result = controller.process_batch(shifted_curves(2),
                                      mode=Manual("custom_simple"), max_workers=2)

    assert all(item.result.strategy.name == "custom_simple" for item in result.items)
    assert all(item.result.stage("post_processing").skipped for item in result.items)
