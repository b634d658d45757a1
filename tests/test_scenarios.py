"""End-to-end runs through PeakProcessingController."""

import pytest

from peakresolve import Peak, PeakProcessingController
from peakresolve.errors import ConfigError


@pytest.fixture(scope="module")
def controller():
    return PeakProcessingController()


def test_overlapping_pair_is_detected_and_resolved(controller, overlapped_curve):
    result = controller.process_automatic(overlapped_curve)

    assert result.context.overlap_ratio > 0.5
    assert result.strategy.name != "simple_peaks"
    assert len(result.peaks) == 2
    assert result.peaks[0].center == pytest.approx(5.0, abs=0.1)
    assert result.peaks[1].center == pytest.approx(5.3, abs=0.1)


def test_overlapping_pair_with_candidates(controller, overlapped_curve):
    candidates = [Peak(5.0, amplitude=100.0, fwhm=2.355), Peak(5.3, amplitude=80.0, fwhm=1.88)]

    result = controller.process_automatic(overlapped_curve, candidates=candidates)

    assert result.context.overlap_ratio > 0.5
    assert result.strategy.name != "simple_peaks"
    assert result.stage("overlap_processing").component != "none"
    assert len(result.peaks) == 2
    assert result.peaks[0].center == pytest.approx(5.0, abs=0.1)
    assert result.peaks[1].center == pytest.approx(5.3, abs=0.1)
    assert all(peak.rsquared > 0.9 for peak in result.peaks)


def test_low_snr_overlap_escalates_to_extreme_overlap(controller, noisy_overlap):
    curve, candidates = noisy_overlap

    result = controller.process_automatic(curve, candidates=candidates)

    assert result.context.snr < 10
    assert result.strategy.name == "complex_peaks"
    assert result.stage("overlap_processing").component == "extreme_overlap"
    assert result.intermediate_results['overlap_processing']['method'] == "extreme_overlap"
    centers = [peak.center for peak in result.peaks]
    assert len(centers) == 2
    assert centers[1] > centers[0]
    assert centers[0] == pytest.approx(14.8, rel=0.1)
    assert centers[1] == pytest.approx(15.2, rel=0.1)


def test_manual_strategy(controller, separated_curve):
    result = controller.process_manual(separated_curve, "overlapping_peaks")

    assert result.strategy.name == "overlapping_peaks"
    assert result.stage("overlap_processing").component == "fbf"
    assert [round(p.center) for p in result.peaks] == [3, 7]


def test_manual_overrides(controller, separated_curve):
    with pytest.raises(ConfigError):
        controller.process_manual(separated_curve, "simple_peaks",
                                  overrides={"post_processing": None})

    result = controller.process_manual(separated_curve, "simple_peaks", allow_override=True,
                                       overrides={"post_processing": None})
    assert result.stage("post_processing").skipped


def test_hybrid_overrides(controller, separated_curve):
    overrides = {"fitting": {"shape_type": "BiGaussian", "use_shape_analysis": False}}

    result = controller.process_hybrid(separated_curve, overrides)

    assert result.strategy.name == "simple_peaks"
    assert {p.peak_type for p in result.peaks} == {"BiGaussian"}
    assert [round(p.center) for p in result.peaks] == [3, 7]


def test_listing(controller):
    assert "high_precision" in controller.list_strategies()
    assert controller.list_components()
