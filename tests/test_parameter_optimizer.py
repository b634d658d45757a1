import numpy as np
import pytest

from peakresolve.errors import ConfigError, DataError, MathError, ProcessError
from peakresolve.fitting import (
    GradientDescent,
    GridSearch,
    LevenbergMarquardt,
    ParameterOptimizer,
    SimulatedAnnealing,
    algorithm_from_config,
    gaussian_peak,
    solve_linear_system,
)
from peakresolve.fitting.result_analyzer import ResultAnalyzer

TRUE_PARAMS = np.array([100.0, 5.0, 0.8])


def gaussian_model(x, params):
    return gaussian_peak(x, *params)


@pytest.fixture
def gaussian_data():
    rng = np.random.default_rng(3)
    x = np.arange(0.0, 10.0, 0.02)
    y = gaussian_model(x, TRUE_PARAMS) + rng.normal(0.0, 0.3, x.size)
    return x, y


def _assert_recovered(result, x, y, tolerance=0.02):
    np.testing.assert_allclose(result.optimized_params, TRUE_PARAMS, rtol=tolerance)
    y_fit = gaussian_model(x, result.optimized_params)
    stats = ResultAnalyzer.calculate_fit_statistics(y, y_fit, 3)
    assert stats['r_squared'] > 0.99


def test_levenberg_marquardt_recovers_gaussian(gaussian_data):
    x, y = gaussian_data
    result = ParameterOptimizer(LevenbergMarquardt(max_iterations=200)).optimize(
        gaussian_model, [80.0, 4.7, 0.6], x, y)

    _assert_recovered(result, x, y)
    assert result.converged
    assert result.algorithm == "levenberg_marquardt"
    assert np.all(result.parameter_errors > 0)
    assert np.all(result.parameter_errors < 1.0)


def test_analytic_jacobian_gives_same_minimum(gaussian_data):
    from peakresolve.fitting.peak_functions import gaussian_gradients

    x, y = gaussian_data
    optimizer = ParameterOptimizer(LevenbergMarquardt(max_iterations=200))
    numeric = optimizer.optimize(gaussian_model, [80.0, 4.7, 0.6], x, y)
    analytic = optimizer.optimize(gaussian_model, [80.0, 4.7, 0.6], x, y,
                                  jacobian=lambda x, p: gaussian_gradients(x, *p))

    np.testing.assert_allclose(analytic.optimized_params, numeric.optimized_params, rtol=1e-4)


def test_simulated_annealing_recovers_and_is_deterministic(gaussian_data):
    x, y = gaussian_data
    bounds = ([0.0, 3.0, 0.1], [200.0, 7.0, 2.0])
    optimizer = ParameterOptimizer(SimulatedAnnealing(max_iterations=500, seed=5))

    first = optimizer.optimize(gaussian_model, [70.0, 4.6, 1.0], x, y, bounds=bounds)
    second = optimizer.optimize(gaussian_model, [70.0, 4.6, 1.0], x, y, bounds=bounds)

    _assert_recovered(first, x, y)
    np.testing.assert_array_equal(first.optimized_params, second.optimized_params)
    assert first.final_error == second.final_error
    assert first.iterations == second.iterations


def test_grid_search_with_polish(gaussian_data):
    x, y = gaussian_data
    bounds = ([50.0, 4.0, 0.2], [150.0, 6.0, 1.5])
    result = ParameterOptimizer(GridSearch(resolution=10, polish=True)).optimize(
        gaussian_model, [100.0, 5.0, 1.0], x, y, bounds=bounds)

    _assert_recovered(result, x, y)
    assert result.iterations >= 1000


def test_grid_search_respects_evaluation_budget(gaussian_data):
    x, y = gaussian_data
    result = ParameterOptimizer(GridSearch(resolution=10, max_iterations=50)).optimize(
        gaussian_model, [100.0, 5.0, 1.0], x, y, bounds=([50.0, 4.0, 0.2], [150.0, 6.0, 1.5]))

    assert result.iterations == 50
    assert not result.converged


def test_gradient_descent_fits_a_line():
    x = np.linspace(0.0, 1.0, 50)
    y = 3.0 * x + 1.0

    result = ParameterOptimizer(
        GradientDescent(learning_rate=0.005, max_iterations=20000, convergence_threshold=1e-14)
    ).optimize(lambda x, p: p[0] * x + p[1], [0.0, 0.0], x, y)

    np.testing.assert_allclose(result.optimized_params, [3.0, 1.0], rtol=1e-2)
    assert result.final_error < 1e-3


def test_result_stays_inside_bounds(gaussian_data):
    x, y = gaussian_data
    bounds = ([0.0, 0.0, 0.1], [200.0, 4.9, 2.0])
    result = ParameterOptimizer().optimize(gaussian_model, [80.0, 4.5, 0.6], x, y, bounds=bounds)

    assert result.optimized_params[1] <= 4.9
    assert np.all(result.optimized_params >= bounds[0])
    assert np.all(np.isfinite(result.optimized_params))


def test_mismatched_lengths_raise():
    with pytest.raises(DataError):
        ParameterOptimizer().optimize(gaussian_model, [1.0, 0.0, 1.0], np.arange(10.0), np.arange(9.0))


def test_too_few_samples_raise():
    with pytest.raises(DataError):
        ParameterOptimizer().optimize(gaussian_model, [1.0, 0.0, 1.0], [0.0, 1.0], [0.0, 1.0])


def test_non_finite_start_raises():
    x = np.linspace(0.0, 1.0, 20)
    with pytest.raises(ProcessError):
        ParameterOptimizer().optimize(lambda x, p: np.full(len(x), np.nan), [1.0], x, x)


def test_solve_linear_system():
    a = np.array([[0.0, 2.0], [3.0, 1.0]])
    b = np.array([4.0, 5.0])
    np.testing.assert_allclose(solve_linear_system(a, b), np.linalg.solve(a, b))


def test_solve_linear_system_singular():
    with pytest.raises(MathError):
        solve_linear_system([[1.0, 2.0], [2.0, 4.0]], [1.0, 2.0])


def test_algorithm_from_config():
    algorithm = algorithm_from_config("simulated_annealing",
                                      {"max_iterations": 300, "seed": 9, "unrelated": True})
    assert algorithm == SimulatedAnnealing(max_iterations=300, seed=9)
    assert algorithm_from_config("levenberg_marquardt") == LevenbergMarquardt()


@pytest.mark.parametrize("name, config", [
    ("newton", {}),
    ("levenberg_marquardt", {"max_iterations": 0}),
    ("simulated_annealing", {"cooling_rate": 1.5}),
    ("gradient_descent", {"learning_rate": -1.0}),
    ("grid_search", {"resolution": 1}),
])
def test_algorithm_from_config_rejects(name, config):
    with pytest.raises(ConfigError):
        algorithm_from_config(name, config)


def test_unsupported_algorithm_object():
    with pytest.raises(ConfigError):
        ParameterOptimizer("levenberg_marquardt")
