"""
Parameter Optimizer Module
==========================

Shape-independent least-squares optimizers. A model is any callable
``model(x, params) -> y``; the optimizer minimizes the sum of squared
residuals against sampled data, clamping every trial point into the
parameter bounds before it is evaluated.

Classes
-------
GridSearch, GradientDescent, LevenbergMarquardt, SimulatedAnnealing
    Frozen algorithm settings; the type selects the procedure
OptimizationResult
    Optimized parameters, final error, iteration count, convergence flag and
    per-parameter error estimates
ParameterOptimizer
    Runs one algorithm on a model

Functions
---------
algorithm_from_config(name, config)
    Build an algorithm from its configuration name and a settings dict
solve_linear_system(a, b)
    Gaussian elimination with partial pivoting

Examples
--------
>>> from peakresolve.fitting import ParameterOptimizer, LevenbergMarquardt
>>> optimizer = ParameterOptimizer(LevenbergMarquardt(max_iterations=200))
>>> result = optimizer.optimize(model, [100, 5.0, 1.0], x, y)
>>> result.optimized_params, result.parameter_errors
"""

import logging
from dataclasses import dataclass, fields
from typing import Callable, ClassVar, Optional, Tuple

import numpy as np

from peakresolve.errors import ConfigError, DataError, MathError, ProcessError

logger = logging.getLogger(__name__)

MIN_DAMPING = 1e-12
MAX_DAMPING = 1e10
MIN_TEMPERATURE = 1e-6


@dataclass(frozen=True)
class GridSearch:
    name: ClassVar[str] = "grid_search"
    resolution: int = 10
    max_iterations: int = 10000
    polish: bool = False


@dataclass(frozen=True)
class GradientDescent:
    name: ClassVar[str] = "gradient_descent"
    learning_rate: float = 0.01
    max_iterations: int = 1000
    convergence_threshold: float = 1e-6


@dataclass(frozen=True)
class LevenbergMarquardt:
    name: ClassVar[str] = "levenberg_marquardt"
    max_iterations: int = 100
    convergence_threshold: float = 1e-6
    damping_factor: float = 0.1


@dataclass(frozen=True)
class SimulatedAnnealing:
    name: ClassVar[str] = "simulated_annealing"
    initial_temperature: float = 100.0
    cooling_rate: float = 0.95
    max_iterations: int = 1000
    seed: int = 42
    polish: bool = True


ALGORITHMS = {
    cls.name: cls
    for cls in (GridSearch, GradientDescent, LevenbergMarquardt, SimulatedAnnealing)
}


def algorithm_from_config(name, config=None):
    """
    Build an optimizer algorithm from its configuration name.

    Unknown keys in ``config`` are ignored so a whole ``optimization``
    section can be passed through.

    Raises
    ------
    ConfigError
        Unknown algorithm name or out-of-range setting
    """
    try:
        cls = ALGORITHMS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown optimization algorithm '{name}'. Available: {', '.join(sorted(ALGORITHMS))}"
        ) from None

    config = config or {}
    kwargs = {f.name: config[f.name] for f in fields(cls) if f.name in config}
    algorithm = cls(**kwargs)

    if getattr(algorithm, "max_iterations", 1) < 1:
        raise ConfigError(f"{name}: max_iterations must be positive")
    if getattr(algorithm, "convergence_threshold", 1.0) <= 0:
        raise ConfigError(f"{name}: convergence_threshold must be positive")
    if isinstance(algorithm, GridSearch) and algorithm.resolution < 2:
        raise ConfigError("grid_search: resolution must be at least 2")
    if isinstance(algorithm, GradientDescent) and algorithm.learning_rate <= 0:
        raise ConfigError("gradient_descent: learning_rate must be positive")
    if isinstance(algorithm, LevenbergMarquardt) and algorithm.damping_factor <= 0:
        raise ConfigError("levenberg_marquardt: damping_factor must be positive")
    if isinstance(algorithm, SimulatedAnnealing):
        if algorithm.initial_temperature <= 0:
            raise ConfigError("simulated_annealing: initial_temperature must be positive")
        if not 0 < algorithm.cooling_rate < 1:
            raise ConfigError("simulated_annealing: cooling_rate must be in (0, 1)")
    return algorithm


@dataclass
class OptimizationResult:
    """
    Outcome of one optimizer run.

    Attributes:
        optimized_params: Best parameter vector found (finite, inside bounds)
        final_error: Sum of squared residuals at ``optimized_params``
        iterations: Iterations (or evaluations for grid search) performed
        converged: Whether a convergence criterion was met before the cap
        parameter_errors: One-sigma estimates from the objective curvature
        algorithm: Name of the algorithm that produced the result
    """
    optimized_params: np.ndarray
    final_error: float
    iterations: int
    converged: bool
    parameter_errors: np.ndarray
    algorithm: str = ""


def solve_linear_system(a, b):
    """
    Solve ``a @ x = b`` by Gaussian elimination with partial pivoting.

    Raises
    ------
    MathError
        When a pivot is numerically zero relative to the matrix scale
    """
    a = np.array(a, dtype=float)
    b = np.array(b, dtype=float)
    n = len(b)
    tolerance = 1e-12 * max(1.0, float(np.max(np.abs(a))) if a.size else 1.0)

    for col in range(n):
        pivot = col + int(np.argmax(np.abs(a[col:, col])))
        if abs(a[pivot, col]) < tolerance:
            raise MathError(f"singular matrix (pivot {a[pivot, col]:.3e} in column {col})")
        if pivot != col:
            a[[col, pivot]] = a[[pivot, col]]
            b[[col, pivot]] = b[[pivot, col]]
        factors = a[col + 1:, col] / a[col, col]
        a[col + 1:, col:] -= np.outer(factors, a[col, col:])
        b[col + 1:] -= factors * b[col]

    solution = np.zeros(n)
    for row in range(n - 1, -1, -1):
        solution[row] = (b[row] - a[row, row + 1:] @ solution[row + 1:]) / a[row, row]
    return solution


class ParameterOptimizer:
    """
    Minimize the sum of squared residuals of a model against data.

    Parameters
    ----------
    algorithm : GridSearch, GradientDescent, LevenbergMarquardt or SimulatedAnnealing
        Settings object; its type selects the procedure (default: LevenbergMarquardt())
    """

    def __init__(self, algorithm=None):
        self.algorithm = algorithm if algorithm is not None else LevenbergMarquardt()
        if type(self.algorithm) not in _DISPATCH:
            raise ConfigError(f"Unsupported optimizer algorithm {self.algorithm!r}")

    def optimize(self, model: Callable, initial_params, x, y,
                 bounds: Optional[Tuple] = None,
                 jacobian: Optional[Callable] = None) -> OptimizationResult:
        """
        Run the configured algorithm.

        Parameters
        ----------
        model : callable
            model(x, params) -> predicted y
        initial_params : array_like
            Starting point
        x, y : array_like
            Samples
        bounds : tuple of array_like, optional
            (lower, upper) inclusive bounds; unbounded when omitted
        jacobian : callable, optional
            jacobian(x, params) -> (n_samples, n_params) model derivatives;
            forward differences are used when omitted

        Returns
        -------
        OptimizationResult

        Raises
        ------
        DataError
            Mismatched x/y, or fewer samples than parameters
        ProcessError
            The objective is not finite at the starting point
        MathError
            Singular normal equations in Levenberg-Marquardt
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        p0 = np.asarray(initial_params, dtype=float).copy()
        if len(x) != len(y):
            raise DataError(f"x and y lengths differ ({len(x)} vs {len(y)})")
        if len(x) < len(p0):
            raise DataError(
                f"{len(x)} samples cannot determine {len(p0)} parameters"
            )

        problem = _Problem(model, x, y, bounds, jacobian, len(p0))
        p0 = problem.clamp(p0)
        if not np.isfinite(problem.sse(p0)):
            raise ProcessError("objective is not finite at the initial parameters")

        params, error, iterations, converged = _DISPATCH[type(self.algorithm)](
            self.algorithm, problem, p0
        )
        params = problem.clamp(params)
        errors = problem.parameter_errors(params)

        logger.debug("%s finished after %d iterations: error=%.6g converged=%s",
                     self.algorithm.name, iterations, error, converged)
        return OptimizationResult(
            optimized_params=params,
            final_error=float(error),
            iterations=int(iterations),
            converged=bool(converged),
            parameter_errors=errors,
            algorithm=self.algorithm.name,
        )


class _Problem:
    """Objective, bounds and Jacobian for one optimization run."""

    def __init__(self, model, x, y, bounds, jacobian, n_params):
        self.model = model
        self.x = x
        self.y = y
        self.analytic_jacobian = jacobian
        if bounds is None:
            self.lower = np.full(n_params, -np.inf)
            self.upper = np.full(n_params, np.inf)
        else:
            self.lower = np.asarray(bounds[0], dtype=float)
            self.upper = np.asarray(bounds[1], dtype=float)

    def clamp(self, params):
        return np.clip(params, self.lower, self.upper)

    def residuals(self, params):
        return self.y - self.model(self.x, params)

    def sse(self, params):
        with np.errstate(all="ignore"):
            r = self.residuals(params)
            value = float(r @ r)
        return value if np.isfinite(value) else np.inf

    def jacobian(self, params):
        if self.analytic_jacobian is not None:
            return np.asarray(self.analytic_jacobian(self.x, params), dtype=float)
        base = self.model(self.x, params)
        jac = np.empty((len(self.x), len(params)))
        for i in range(len(params)):
            h = 1e-6 * max(abs(params[i]), 1.0)
            # step inward when the upper bound is active
            if params[i] + h > self.upper[i]:
                h = -h
            shifted = params.copy()
            shifted[i] += h
            jac[:, i] = (self.model(self.x, shifted) - base) / h
        return jac

    def gradient(self, params):
        """Finite-difference gradient of the SSE."""
        grad = np.zeros(len(params))
        base = self.sse(params)
        for i in range(len(params)):
            h = 1e-6 * max(abs(params[i]), 1.0)
            shifted = params.copy()
            shifted[i] += h
            grad[i] = (self.sse(shifted) - base) / h
        return grad

    def search_scales(self, params):
        span = self.upper - self.lower
        return np.where(np.isfinite(span), 0.05 * span, 0.1 * np.maximum(np.abs(params), 1.0))

    def parameter_errors(self, params):
        """err_i = sqrt(2·s²/H_ii) from a central-difference curvature of the SSE."""
        n, p = len(self.y), len(params)
        sse = self.sse(params)
        s2 = sse / (n - p) if n > p else sse
        errors = np.zeros(p)
        for i in range(p):
            h = 1e-4 * abs(params[i]) if params[i] != 0 else 1e-4
            upper = params.copy()
            lower = params.copy()
            upper[i] += h
            lower[i] -= h
            curvature = (self.sse(upper) - 2.0 * sse + self.sse(lower)) / h ** 2
            if np.isfinite(curvature) and curvature > 0:
                value = np.sqrt(2.0 * s2 / curvature)
                errors[i] = value if np.isfinite(value) else 0.0
        return errors


def _grid_search(settings: GridSearch, problem: _Problem, p0):
    n_params = len(p0)
    axes = []
    for i in range(n_params):
        lo, hi = problem.lower[i], problem.upper[i]
        half = max(0.5 * abs(p0[i]), 1.0)
        lo = lo if np.isfinite(lo) else p0[i] - half
        hi = hi if np.isfinite(hi) else p0[i] + half
        axes.append(np.linspace(lo, hi, settings.resolution))

    best = p0.copy()
    best_error = problem.sse(p0)
    total = settings.resolution ** n_params
    budget = min(total, settings.max_iterations)
    counter = [0] * n_params
    point = np.array([axis[0] for axis in axes])

    evaluations = 0
    while evaluations < budget:
        error = problem.sse(point)
        evaluations += 1
        if error < best_error:
            best, best_error = point.copy(), error
        # odometer increment, last axis fastest
        for dim in range(n_params - 1, -1, -1):
            counter[dim] += 1
            if counter[dim] < settings.resolution:
                point[dim] = axes[dim][counter[dim]]
                break
            counter[dim] = 0
            point[dim] = axes[dim][0]

    converged = evaluations >= total
    if settings.polish:
        best, best_error, extra, converged = _polish(problem, best, best_error, converged)
        evaluations += extra
    return best, best_error, evaluations, converged


def _gradient_descent(settings: GradientDescent, problem: _Problem, p0):
    params = p0.copy()
    error = problem.sse(params)
    best, best_error = params.copy(), error
    converged = False
    iterations = 0

    for iterations in range(1, settings.max_iterations + 1):
        step = settings.learning_rate * problem.gradient(params)
        if not np.all(np.isfinite(step)):
            break
        params = problem.clamp(params - step)
        new_error = problem.sse(params)
        if not np.isfinite(new_error):
            break
        if new_error < best_error:
            best, best_error = params.copy(), new_error
        if abs(error - new_error) < settings.convergence_threshold:
            converged = True
            error = new_error
            break
        error = new_error

    return best, best_error, iterations, converged


def _levenberg_marquardt(settings: LevenbergMarquardt, problem: _Problem, p0):
    params = p0.copy()
    residuals = problem.residuals(params)
    error = float(residuals @ residuals)
    damping = settings.damping_factor
    identity = np.eye(len(params))
    converged = False
    iterations = 0

    for iterations in range(1, settings.max_iterations + 1):
        jac = problem.jacobian(params)
        normal = jac.T @ jac
        gradient = jac.T @ residuals

        accepted = False
        while damping <= MAX_DAMPING:
            delta = solve_linear_system(normal + damping * identity, gradient)
            trial = problem.clamp(params + delta)
            trial_error = problem.sse(trial)
            if trial_error < error:
                accepted = True
                damping = max(damping / 2.0, MIN_DAMPING)
                break
            damping *= 2.0

        if not accepted:
            # no damping level improves the fit: already at a minimum
            converged = True
            damping = settings.damping_factor
            break

        improvement = error - trial_error
        step_size = np.linalg.norm(trial - params)
        params = trial
        residuals = problem.residuals(params)
        error = trial_error

        if improvement <= settings.convergence_threshold * max(error, 1.0):
            converged = True
            break
        if step_size <= settings.convergence_threshold * (np.linalg.norm(params) + settings.convergence_threshold):
            converged = True
            break

    return params, error, iterations, converged


def _simulated_annealing(settings: SimulatedAnnealing, problem: _Problem, p0):
    rng = np.random.default_rng(settings.seed)
    scales = problem.search_scales(p0)
    current = p0.copy()
    current_error = problem.sse(current)
    best, best_error = current.copy(), current_error
    temperature = settings.initial_temperature
    iterations = 0

    while iterations < settings.max_iterations and temperature >= MIN_TEMPERATURE:
        iterations += 1
        step = rng.normal(size=len(current)) * scales * (temperature / settings.initial_temperature)
        candidate = problem.clamp(current + step)
        candidate_error = problem.sse(candidate)
        threshold = rng.random()
        if np.isfinite(candidate_error):
            delta = candidate_error - current_error
            if delta < 0 or threshold < np.exp(-delta / temperature):
                current, current_error = candidate, candidate_error
                if current_error < best_error:
                    best, best_error = current.copy(), current_error
        temperature *= settings.cooling_rate

    converged = temperature < MIN_TEMPERATURE
    if settings.polish:
        best, best_error, extra, converged = _polish(problem, best, best_error, converged)
        iterations += extra
    return best, best_error, iterations, converged


def _polish(problem: _Problem, params, error, converged):
    """Levenberg-Marquardt refinement from the best sampled point."""
    try:
        polished, polished_error, extra, polished_converged = _levenberg_marquardt(
            LevenbergMarquardt(), problem, params
        )
    except MathError as exc:
        logger.debug("polish skipped: %s", exc)
        return params, error, 0, converged
    if polished_error <= error:
        return polished, polished_error, extra, polished_converged or converged
    return params, error, extra, converged


_DISPATCH = {
    GridSearch: _grid_search,
    GradientDescent: _gradient_descent,
    LevenbergMarquardt: _levenberg_marquardt,
    SimulatedAnnealing: _simulated_annealing,
}


def estimate_parameter_errors(model, params, x, y):
    """Curvature-based one-sigma errors of ``params`` for ``model`` on (x, y)."""
    params = np.asarray(params, dtype=float)
    problem = _Problem(model, np.asarray(x, dtype=float), np.asarray(y, dtype=float),
                       None, None, len(params))
    return problem.parameter_errors(params)
