import numpy as np
import pytest

from peakresolve import Curve, OverlapResolver, Peak
from peakresolve.errors import ConfigError
from peakresolve.fitting import exponentially_modified_gaussian, gaussian_peak
from peakresolve.overlap import (
    EMGNLLSProcessor,
    ExtremeOverlapProcessor,
    FBFProcessor,
    NoOpProcessor,
    SharpenCWTProcessor,
    chromatographic_resolution,
    create_overlap_processor,
    estimate_snr,
    group_overlapping_peaks,
    min_separation,
    morlet_kernel,
    overlap_degree,
    select_method,
    sharpen,
)


@pytest.fixture
def close_pair():
    rng = np.random.default_rng(5)
    x = np.arange(0.0, 10.0, 0.02)
    y = (gaussian_peak(x, 100.0, 4.5, 0.4) + gaussian_peak(x, 80.0, 5.5, 0.4)
         + rng.normal(0.0, 0.5, x.size))
    candidates = [Peak(4.4, amplitude=95.0, fwhm=1.6), Peak(5.6, amplitude=75.0, fwhm=1.6)]
    return Curve(x, y), candidates


def test_overlap_metrics():
    peaks = [Peak(1.0, amplitude=1.0, fwhm=1.0), Peak(1.5, amplitude=1.0, fwhm=1.0),
             Peak(5.0, amplitude=1.0, fwhm=1.0)]

    assert group_overlapping_peaks(peaks) == [[0, 1], [2]]
    assert overlap_degree(peaks[:2]) == pytest.approx(0.5)
    assert overlap_degree(peaks[:1]) == 0.0
    assert overlap_degree([peaks[0], peaks[2]]) == 0.0
    assert min_separation(peaks) == pytest.approx(0.5)
    assert min_separation(peaks[:1]) == float("inf")
    assert chromatographic_resolution(peaks[0], peaks[2]) == pytest.approx(1.18 * 4.0 / 2.0)


def test_groups_are_ordered_by_center():
    peaks = [Peak(5.0, amplitude=1.0, fwhm=1.0), Peak(1.0, amplitude=1.0, fwhm=1.0),
             Peak(5.4, amplitude=1.0, fwhm=1.0)]
    assert group_overlapping_peaks(peaks) == [[1], [0, 2]]


def test_estimate_snr(single_peak_curve):
    snr = estimate_snr([Peak(5.0, amplitude=100.0, fwhm=1.0)], single_peak_curve)
    assert 200 < snr < 1000
    assert estimate_snr([], single_peak_curve) == 0.0


@pytest.mark.parametrize("centers, noise, expected", [
    ((3.0, 7.0), 0.1, "none"),
    ((5.0, 5.9), 0.1, "fbf"),
    ((5.0, 5.3), 0.1, "sharpen_cwt"),
])
def test_select_method_escalates(centers, noise, expected):
    rng = np.random.default_rng(8)
    x = np.arange(0.0, 10.0, 0.02)
    y = sum(gaussian_peak(x, 100.0, c, 0.5) for c in centers) + rng.normal(0.0, noise, x.size)
    peaks = [Peak(c, amplitude=100.0, fwhm=1.2) for c in centers]

    assert select_method(peaks, Curve(x, y)) == expected


def test_select_method_picks_extreme_overlap_at_low_snr(noisy_overlap):
    curve, candidates = noisy_overlap

    assert overlap_degree(candidates) > 0.8
    assert estimate_snr(candidates, curve) < 10
    assert select_method(candidates, curve) == "extreme_overlap"


def test_noop_returns_sorted_copies(close_pair):
    curve, candidates = close_pair
    resolved = NoOpProcessor().resolve(list(reversed(candidates)), curve)

    assert [p.center for p in resolved] == [4.4, 5.6]
    assert resolved[0] is not candidates[0]


def test_fbf_moves_candidates_towards_truth(close_pair):
    curve, candidates = close_pair

    resolved = FBFProcessor().resolve(candidates, curve)

    assert resolved[0].center == pytest.approx(4.5, abs=0.1)
    assert resolved[1].center == pytest.approx(5.5, abs=0.1)
    assert all(p.metadata['fbf_processed'] for p in resolved)
    weights = [p.metadata['fbf_weight'] for p in resolved]
    assert sum(weights) == pytest.approx(1.0)
    assert weights[0] > weights[1]
    assert candidates[0].center == 4.4


def test_sharpen_keeps_length_and_sign():
    y = gaussian_peak(np.linspace(0.0, 10.0, 101), 10.0, 5.0, 1.0)
    sharpened = sharpen(y, strength=2.0, kernel_size=5)

    assert sharpened.shape == y.shape
    assert np.all(sharpened >= 0)
    assert sharpened[50] > y[50]


def test_morlet_kernel_is_normalised():
    kernel = morlet_kernel(4)
    assert len(kernel) == 25
    assert np.sum(np.abs(kernel)) == pytest.approx(1.0)


def test_sharpen_cwt_relocates_within_radius(close_pair):
    curve, candidates = close_pair

    peaks, sharpened = SharpenCWTProcessor(sharpening_strength=2.0).process(candidates, curve)

    assert sharpened.curve_id.endswith("_sharpened")
    np.testing.assert_array_equal(sharpened.x_values, curve.x_values)
    for before, after in zip(candidates, peaks):
        radius = min(0.5 * before.fwhm, 0.25 * 1.2)
        assert abs(after.center - before.center) <= radius + 1e-9
        assert 'cwt_enhanced' in after.metadata


def test_sharpen_cwt_scales_config():
    processor = create_overlap_processor("sharpen_cwt", {"scales": [2, 12]})
    assert (processor.scale_min, processor.scale_max) == (2, 12)


def test_emg_nlls_fits_tailing_pair():
    rng = np.random.default_rng(6)
    x = np.arange(0.0, 20.0, 0.02)
    y = (exponentially_modified_gaussian(x, 100.0, 8.0, 0.4, 0.6)
         + exponentially_modified_gaussian(x, 60.0, 9.5, 0.4, 0.6)
         + rng.normal(0.0, 0.3, x.size))
    curve = Curve(x, y)
    candidates = [Peak(8.2, amplitude=90.0, fwhm=2.0), Peak(9.7, amplitude=55.0, fwhm=2.0)]

    resolved = EMGNLLSProcessor(max_iterations=200).resolve(candidates, curve)

    assert [p.peak_type for p in resolved] == ["EMG", "EMG"]
    assert resolved[0].center == pytest.approx(8.0, abs=0.1)
    assert resolved[1].center == pytest.approx(9.5, abs=0.1)
    assert all(p.rsquared > 0.99 for p in resolved)
    assert all(p.tau > 0 for p in resolved)
    assert all(p.metadata['emg_nlls_fitted'] for p in resolved)


def test_extreme_overlap_keeps_two_peaks_near_truth(noisy_overlap):
    curve, candidates = noisy_overlap

    resolved = ExtremeOverlapProcessor().resolve(candidates, curve)

    assert len(resolved) == 2
    for peak, truth in zip(resolved, (14.8, 15.2)):
        assert abs(peak.center - truth) <= 0.1 * truth
        assert peak.metadata['extreme_overlap_processed']
        assert peak.metadata['processing_pipeline'] == "sharpen_cwt>emg_nlls>validation"
        assert peak.metadata['extreme_overlap_rejected'] in (True, False)


def test_extreme_overlap_rejection_reasons(single_peak_curve):
    processor = ExtremeOverlapProcessor()
    outside = Peak(50.0, amplitude=10.0, fwhm=1.0)
    poor_fit = Peak(5.0, amplitude=100.0, fwhm=1.2, rsquared=0.1)

    assert processor.rejection_reason(Peak(5.0, amplitude=0.0, fwhm=1.0), single_peak_curve) \
        == "non-positive amplitude"
    assert processor.rejection_reason(outside, single_peak_curve) == "center outside the data"
    assert "R²" in processor.rejection_reason(poor_fit, single_peak_curve)


def test_resolver_auto_mode_handles_each_group(close_pair):
    curve, candidates = close_pair
    resolver = OverlapResolver()

    assert resolver.processor is None
    assert resolver.select_method(candidates, curve) in ("fbf", "sharpen_cwt")
    resolved = resolver.resolve(candidates, curve)
    assert len(resolved) == 2
    assert resolved[0].center < resolved[1].center


def test_resolver_fixed_method(close_pair):
    curve, candidates = close_pair
    resolver = OverlapResolver("fbf", {"max_iterations": 50})

    assert isinstance(resolver.processor, FBFProcessor)
    assert resolver.processor.max_iterations == 50
    assert resolver.select_method(candidates, curve) == "fbf"


def test_unknown_method_raises():
    with pytest.raises(ConfigError):
        create_overlap_processor("magic")
    with pytest.raises(ConfigError):
        OverlapResolver("magic")
