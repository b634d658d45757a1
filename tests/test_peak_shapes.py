import numpy as np
import pytest
from scipy.integrate import trapezoid

from peakresolve.errors import ConfigError
from peakresolve.fitting import (
    SHAPES,
    PeakShapeAnalyzer,
    PeakShapeParams,
    composite_model,
    exponentially_modified_gaussian,
    get_parameter_names,
)
from peakresolve.fitting.peak_shapes import WIDTH_FLOOR


TYPICAL_PARAMETERS = {
    "Gaussian": [10.0, 5.0, 1.0],
    "Lorentzian": [10.0, 5.0, 1.0],
    "PseudoVoigt": [10.0, 5.0, 1.0, 0.5],
    "EMG": [10.0, 5.0, 1.0, 0.5],
    "BiGaussian": [10.0, 5.0, 0.5, 1.0],
    "VoigtExpTail": [10.0, 5.0, 0.5, 0.3, 0.5],
    "PearsonIV": [10.0, 5.0, 1.0, 2.0, 0.0],
    "NLC": [10.0, 5.0, 1.0, 0.0, 0.0, 0.0],
    "GMGBayesian": [10.0, 5.0, 1.0, 0.5, 1.5, 0.3],
}


def test_every_shape_has_typical_parameters():
    assert set(TYPICAL_PARAMETERS) == set(SHAPES)


@pytest.mark.parametrize("shape_type", sorted(TYPICAL_PARAMETERS))
def test_shape_is_finite_and_peaks_near_center(shape_type):
    params = PeakShapeParams(shape_type, TYPICAL_PARAMETERS[shape_type])
    x = np.linspace(-5.0, 15.0, 2001)
    y = params.evaluate(x)

    assert np.all(np.isfinite(y))
    assert y.max() > 0
    assert abs(x[np.argmax(y)] - 5.0) < 2.0
    assert params.fwhm() > 0
    assert params.area() > 0
    assert params.derivatives(x[::50]).shape == (len(x[::50]), len(params.parameters))


def test_gaussian_area_and_fwhm_closed_form():
    params = PeakShapeParams("Gaussian", [100.0, 5.0, 0.5])
    x = np.linspace(0.0, 10.0, 20001)

    assert params.area() == pytest.approx(100.0 * 0.5 * np.sqrt(2 * np.pi))
    assert params.area() == pytest.approx(trapezoid(params.evaluate(x), x), rel=1e-6)
    assert params.fwhm() == pytest.approx(2.0 * np.sqrt(2.0 * np.log(2.0)) * 0.5)


@pytest.mark.parametrize("shape_type", ["EMG", "BiGaussian"])
def test_closed_form_area_matches_integral(shape_type):
    params = PeakShapeParams(shape_type, TYPICAL_PARAMETERS[shape_type])
    x = np.linspace(-20.0, 40.0, 60001)
    assert params.area() == pytest.approx(trapezoid(params.evaluate(x), x), rel=1e-4)


def test_bigaussian_half_widths_follow_sides():
    params = PeakShapeParams("BiGaussian", [10.0, 5.0, 0.5, 1.0])
    apex, left, right = params.half_widths(0.5)

    assert apex == pytest.approx(5.0)
    assert right == pytest.approx(2.0 * left)


def test_emg_tails_to_the_right():
    x = np.linspace(0.0, 20.0, 4001)
    y = exponentially_modified_gaussian(x, 10.0, 5.0, 0.5, 2.0)
    apex = int(np.argmax(y))

    assert x[apex] > 5.0
    assert y[apex + 400] > y[apex - 400]


def test_wrong_parameter_count_raises():
    with pytest.raises(ConfigError):
        PeakShapeParams("Gaussian", [1.0, 2.0])


def test_unknown_shape_raises():
    with pytest.raises(ConfigError):
        PeakShapeParams("Triangle", [1.0, 2.0, 3.0])


def test_parameters_are_clamped_into_bounds():
    gaussian = PeakShapeParams("Gaussian", [-5.0, 5.0, -1.0])
    assert gaussian.amplitude == 0.0
    assert gaussian.get_parameter("sigma") == WIDTH_FLOOR

    pearson = PeakShapeParams("PearsonIV", [1.0, 0.0, 1.0, 0.1, 80.0])
    assert pearson.get_parameter("shape_m") == pytest.approx(0.51)
    assert pearson.get_parameter("skew_nu") == pytest.approx(50.0)

    pearson.set_parameter("shape_m", 500.0)
    assert pearson.get_parameter("shape_m") == pytest.approx(100.0)


def test_custom_bounds_narrow_the_defaults():
    params = PeakShapeParams("Gaussian", [10.0, 9.0, 1.0],
                             bounds=[(0.0, 5.0), (4.0, 6.0), (-1.0, 2.0)])
    assert params.amplitude == 5.0
    assert params.center == 6.0
    assert params.bounds[2] == (WIDTH_FLOOR, 2.0)


def test_unknown_parameter_name_raises():
    params = PeakShapeParams("Gaussian", [1.0, 0.0, 1.0])
    with pytest.raises(ConfigError):
        params.get_parameter("tau")
    with pytest.raises(ConfigError):
        params.set_parameter("tau", 1.0)


def test_parameter_names_are_ordered():
    assert get_parameter_names("EMG") == ["amplitude", "center", "sigma", "tau"]
    assert get_parameter_names("PearsonIV") == ["amplitude", "center", "width", "shape_m", "skew_nu"]


def test_composite_model_sums_components():
    model, jacobian, slices = composite_model(["Gaussian", "EMG"])
    params = np.array([10.0, 3.0, 0.5, 5.0, 6.0, 0.5, 1.0])
    x = np.linspace(0.0, 10.0, 101)

    expected = (PeakShapeParams("Gaussian", params[slices[0]]).evaluate(x)
                + PeakShapeParams("EMG", params[slices[1]]).evaluate(x))
    np.testing.assert_allclose(model(x, params), expected)
    assert jacobian(x, params).shape == (101, 7)


def test_shape_analyzer_recommendations():
    x = np.linspace(0.0, 20.0, 2001)
    symmetric = PeakShapeParams("Gaussian", [10.0, 8.0, 1.0]).evaluate(x)
    tailing = exponentially_modified_gaussian(x, 10.0, 5.0, 0.5, 3.0)

    assert PeakShapeAnalyzer.analyze_peak_shape(x, symmetric) == "Gaussian"
    assert PeakShapeAnalyzer.analyze_peak_shape(x, tailing) == "EMG"
    assert PeakShapeAnalyzer.analyze_peak_shape(x[:3], symmetric[:3]) == "Gaussian"
