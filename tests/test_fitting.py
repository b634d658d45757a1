import numpy as np
import pytest

from peakresolve import Curve, Peak
from peakresolve.errors import ConfigError
from peakresolve.fitting import (
    FittingEngine,
    MultiPeakDetector,
    MultiPeakFitter,
    PeakDetector,
    PeakShapeParams,
    ResultAnalyzer,
    SimulatedAnnealing,
    gaussian_peak,
)
from peakresolve.fitting.multi_peak_fitter import fit_window


def test_fit_shapes_recovers_two_gaussians(separated_curve):
    x, y = separated_curve.x_values, separated_curve.y_values
    shapes = [PeakShapeParams("Gaussian", [90.0, 3.1, 0.4]),
              PeakShapeParams("Gaussian", [50.0, 6.9, 0.4])]

    result = FittingEngine().fit_shapes(x, y, shapes)

    assert result['success']
    assert result['r_squared'] > 0.99
    first, second = result['shapes']
    np.testing.assert_allclose(first.parameters, [100.0, 3.0, 0.3], rtol=0.02)
    np.testing.assert_allclose(second.parameters, [60.0, 7.0, 0.3], rtol=0.02)
    assert len(result['parameter_errors']) == 6
    np.testing.assert_allclose(result['residuals'], y - result['fitted_curve'])


def test_set_fitting_options_rejects_unknown_method():
    with pytest.raises(ConfigError):
        FittingEngine().set_fitting_options(fit_method="simplex")


def test_global_fit(single_peak_curve):
    engine = FittingEngine()
    engine.set_fitting_options(fit_method="global", optimizer_config={"max_iterations": 300})
    result = engine.fit_shapes(single_peak_curve.x_values, single_peak_curve.y_values,
                               [PeakShapeParams("Gaussian", [70.0, 4.5, 0.8])])

    np.testing.assert_allclose(result['parameters'], [100.0, 5.0, 0.5], rtol=0.02)


def test_fit_with_explicit_algorithm_is_deterministic(single_peak_curve):
    engine = FittingEngine()
    shapes = [PeakShapeParams("Gaussian", [70.0, 4.8, 0.8])]
    args = (single_peak_curve.x_values, single_peak_curve.y_values, shapes)

    first = engine.fit_shapes(*args, algorithm=SimulatedAnnealing(max_iterations=300))
    second = engine.fit_shapes(*args, algorithm=SimulatedAnnealing(max_iterations=300))

    np.testing.assert_array_equal(first['parameters'], second['parameters'])


def test_shape_bounds_keep_center_near_data():
    lower, upper = FittingEngine.shape_bounds(PeakShapeParams("EMG", [10.0, 5.0, 1.0, 0.5]),
                                              (0.0, 10.0))
    assert lower[1] == pytest.approx(-1.0)
    assert upper[1] == pytest.approx(11.0)
    assert lower[2] > 0 and lower[3] > 0


def test_detector_finds_separated_peaks(separated_curve):
    peaks = MultiPeakDetector().detect(separated_curve)

    assert [round(p.center, 1) for p in peaks] == [3.0, 7.0]
    assert [p.peak_id for p in peaks] == [0, 1]
    assert all(p.curve_id == "separated" for p in peaks)
    assert all(p.fwhm > 0 for p in peaks)
    for peak in peaks:
        assert peak.left_boundary <= peak.center <= peak.right_boundary


def test_detector_splits_shoulder():
    rng = np.random.default_rng(2)
    x = np.arange(0.0, 10.0, 0.02)
    y = (gaussian_peak(x, 100.0, 4.7, 0.35) + gaussian_peak(x, 50.0, 5.3, 0.35)
         + rng.normal(0.0, 0.3, x.size))
    curve = Curve(x, y)

    with_split = MultiPeakDetector(resolve_shoulders=True).detect(curve)

    assert len(with_split) == 2
    assert with_split[0].center == pytest.approx(4.7, abs=0.1)
    assert with_split[1].center == pytest.approx(5.3, abs=0.1)


def test_detector_completes_candidates(single_peak_curve):
    candidates = [Peak(5.0, amplitude=0.0), Peak(8.0, amplitude=5.0, fwhm=0.4)]

    peaks = MultiPeakDetector().detect(single_peak_curve, candidates)

    assert len(peaks) == 2
    assert peaks[0].amplitude == pytest.approx(single_peak_curve.get_intensity_at(5.0))
    assert peaks[0].fwhm == pytest.approx(2.355 * 0.5, rel=0.1)
    assert peaks[1].fwhm == pytest.approx(0.4)
    assert peaks[1].amplitude == pytest.approx(5.0)
    assert candidates[0].amplitude == 0.0


def test_detector_on_flat_curve():
    curve = Curve(np.linspace(0.0, 1.0, 50), np.ones(50))
    assert MultiPeakDetector().detect(curve) == []


def test_multi_peak_fitter_fits_isolated_peaks(separated_curve):
    candidates = MultiPeakDetector().detect(separated_curve)

    fitted = MultiPeakFitter().fit(candidates, separated_curve)

    assert len(fitted) == 2
    assert fitted[0].center == pytest.approx(3.0, rel=0.02)
    assert fitted[1].center == pytest.approx(7.0, rel=0.02)
    assert fitted[0].amplitude == pytest.approx(100.0, rel=0.02)
    assert all(p.rsquared > 0.99 for p in fitted)
    assert all(p.peak_type == "Gaussian" for p in fitted)
    assert fitted[0].metadata['multi_peak_fitting'] is False


def test_multi_peak_fitter_fits_group_jointly():
    rng = np.random.default_rng(4)
    x = np.arange(0.0, 10.0, 0.02)
    y = (gaussian_peak(x, 100.0, 4.6, 0.4) + gaussian_peak(x, 70.0, 5.4, 0.4)
         + rng.normal(0.0, 0.2, x.size))
    curve = Curve(x, y)
    candidates = [Peak(4.5, amplitude=90.0, fwhm=1.0), Peak(5.5, amplitude=60.0, fwhm=1.0)]

    fitted = MultiPeakFitter().fit(candidates, curve)

    assert len(fitted) == 2
    assert fitted[0].center == pytest.approx(4.6, abs=0.05)
    assert fitted[1].center == pytest.approx(5.4, abs=0.05)
    assert all(p.metadata['multi_peak_fitting'] for p in fitted)
    assert fitted[0].metadata['fit_group'] == fitted[1].metadata['fit_group']


def test_multi_peak_fitter_honours_shape_override(separated_curve):
    candidates = MultiPeakDetector().detect(separated_curve)

    fitted = MultiPeakFitter().fit(candidates, separated_curve, {1: "EMG"})

    assert [p.peak_type for p in fitted] == ["Gaussian", "EMG"]


def test_small_window_is_left_unfitted(separated_curve):
    candidate = Peak(3.0, amplitude=100.0, fwhm=0.01)

    fitted = MultiPeakFitter(min_window_points=50).fit([candidate], separated_curve)

    assert fitted[0].fit_parameters == []
    assert fitted[0].center == 3.0


def test_underdetermined_group_falls_back_to_single_fits():
    rng = np.random.default_rng(5)
    x = np.arange(0.0, 10.0, 0.05)
    curve = Curve(x, gaussian_peak(x, 100.0, 5.125, 0.15) + rng.normal(0.0, 0.2, x.size))
    # six EMG peaks need 24 parameters; their shared window holds about 22 samples
    candidates = [Peak(5.0 + 0.05 * i, amplitude=80.0, fwhm=0.2) for i in range(6)]

    fitted = MultiPeakFitter(shape_type="EMG").fit(candidates, curve)

    assert len(fitted) == 6
    assert all(p.peak_type == "EMG" for p in fitted)
    assert not any(p.metadata['multi_peak_fitting'] for p in fitted)
    assert all(4.4 <= p.center <= 6.0 for p in fitted)


def test_global_search_fitter(single_peak_curve):
    fitter = MultiPeakFitter(global_search=True, optimizer_config={"max_iterations": 300})

    fitted = fitter.fit([Peak(4.8, amplitude=70.0, fwhm=1.5)], single_peak_curve)

    assert fitted[0].center == pytest.approx(5.0, abs=0.02)
    assert fitted[0].metadata['fitting_method'] == "global"


def test_fit_window_is_clipped_to_curve(single_peak_curve):
    start, end = fit_window([Peak(0.2, amplitude=1.0, fwhm=1.0)], single_peak_curve)
    assert start == pytest.approx(single_peak_curve.x_min)
    assert end > 0.2


def test_detector_info(separated_curve):
    x, y = separated_curve.x_values, separated_curve.y_values
    info = PeakDetector.find_peaks(x, y, threshold=0.2)

    assert [round(item['x']) for item in info] == [3, 7]
    assert info[0]['width_half'] == pytest.approx(0.3 * 2.3548, rel=0.1)
    assert info[0]['left_hwhm'] + info[0]['right_hwhm'] == pytest.approx(info[0]['width_half'])


def test_moving_average_detection(separated_curve):
    peaks = MultiPeakDetector(smoothing_method="Moving Average", smoothing_window=5,
                              resolve_shoulders=False).detect(separated_curve)

    assert [round(p.center, 1) for p in peaks] == [3.0, 7.0]


def test_peak_statistics_share_of_area():
    shapes = [PeakShapeParams("Gaussian", [100.0, 3.0, 0.3]),
              PeakShapeParams("Gaussian", [50.0, 7.0, 0.3])]

    stats = ResultAnalyzer.calculate_peak_statistics(np.array([0.0, 100.0]), shapes)

    assert [s['peak_number'] for s in stats] == [1, 2]
    assert stats[0]['area_percent'] == pytest.approx(200.0 / 3.0)
    assert stats[1]['height_percent'] == pytest.approx(50.0)
    assert stats[0]['fwhm'] == pytest.approx(0.3 * 2.3548, rel=1e-3)
