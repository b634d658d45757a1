"""
Fitting Engine Module
=====================

This module provides the core fitting engine: it turns a list of starting
shapes into one concatenated parameter vector, builds bounds for it, runs
one of the optimizers and reports the fitted shapes with comprehensive fit
statistics.

Classes
-------
FittingEngine
    Fits one or more peak shapes jointly to sampled data
"""

import logging

import numpy as np
from scipy.optimize import differential_evolution

from peakresolve.errors import ConfigError, DataError
from .parameter_optimizer import (
    ALGORITHMS, ParameterOptimizer, algorithm_from_config, estimate_parameter_errors,
)
from .peak_shapes import WIDTH_FLOOR, PeakShapeParams, composite_model, get_shape
from .result_analyzer import ResultAnalyzer

logger = logging.getLogger(__name__)

GLOBAL_METHOD = "global"
FIT_METHODS = tuple(sorted(ALGORITHMS)) + (GLOBAL_METHOD,)


class FittingEngine:
    """
    Main fitting engine for peak curve fitting.

    This class implements bounded least-squares peak fitting with support for:
    - Every registered peak shape, including mixed shapes in one fit
    - The four ParameterOptimizer algorithms, plus scipy's differential
      evolution as a global method
    - Comprehensive fit statistics (R², adjusted R², RMSE, AIC, BIC, χ²)

    Attributes
    ----------
    fit_method : str
        Optimizer name ("levenberg_marquardt", "gradient_descent",
        "simulated_annealing", "grid_search") or "global", used when
        ``fit_shapes`` is called without an algorithm
    optimizer_config : dict
        Settings handed to ``algorithm_from_config``

    Methods
    -------
    set_fitting_options(fit_method, optimizer_config)
        Configure the default fitting method
    fit_shapes(x, y, shapes)
        Fit a list of starting shapes jointly
    create_bounds(shapes, x_range)
        Default bounds for the concatenated parameter vector

    Examples
    --------
    >>> from peakresolve.fitting import FittingEngine
    >>> engine = FittingEngine()
    >>> engine.set_fitting_options(fit_method="global")
    >>> result = engine.fit_shapes(x_data, y_data, [PeakShapeParams("Gaussian", [100, 5.0, 0.5])])
    >>> if result['success']:
    ...     fitted_params = result['parameters']
    ...     r_squared = result['r_squared']
    """

    def __init__(self):
        """Initialize fitting engine with default settings."""
        self.fit_method = "levenberg_marquardt"
        self.optimizer_config = {}

    def set_fitting_options(self, fit_method="levenberg_marquardt", optimizer_config=None):
        """
        Set fitting options.

        Parameters
        ----------
        fit_method : str, optional
            Optimization algorithm name (default: "levenberg_marquardt")
        optimizer_config : dict, optional
            Algorithm settings (max_iterations, convergence_threshold, ...)

        Raises
        ------
        ConfigError
            Unknown method
        """
        if fit_method not in FIT_METHODS:
            raise ConfigError(f"Unknown fitting method '{fit_method}'")
        self.fit_method = fit_method
        self.optimizer_config = dict(optimizer_config or {})

    @staticmethod
    def shape_bounds(shape, x_range):
        """
        Bounds for one shape.

        Amplitude may grow to 100x its start, the center stays within the
        data range extended by 10 %, widths stay within a factor of 100 of
        their start. Other parameters keep the shape's default bounds, with
        infinite ones replaced by the data span.
        """
        definition = get_shape(shape.shape_type)
        x_span = abs(x_range[1] - x_range[0]) or 1.0
        width_indices = set(definition.width_indices())

        lower, upper = [], []
        for i, value in enumerate(shape.parameters):
            d_lo, d_hi = definition.default_bounds[i]
            if i == 0:
                lo, hi = 0.0, max(abs(value) * 100, 1.0)
            elif i == 1:
                lo, hi = x_range[0] - x_span * 0.1, x_range[1] + x_span * 0.1
            elif i in width_indices:
                width = max(abs(value), x_span * 0.001)
                lo, hi = max(width * 0.01, WIDTH_FLOOR), width * 100
            else:
                lo = d_lo if np.isfinite(d_lo) else -x_span
                hi = d_hi if np.isfinite(d_hi) else x_span
            if lo >= hi:
                hi = lo * 10 if lo > 0 else lo + 1.0
            lower.append(lo)
            upper.append(hi)
        return lower, upper

    def create_bounds(self, shapes, x_range):
        """
        Create parameter bounds for a concatenated parameter vector.

        Parameters
        ----------
        shapes : list of PeakShapeParams
            Starting shapes in vector order
        x_range : tuple of float
            (min_x, max_x) data range

        Returns
        -------
        bounds_lower, bounds_upper : ndarray
        """
        bounds_lower, bounds_upper = [], []
        for shape in shapes:
            lower, upper = self.shape_bounds(shape, x_range)
            bounds_lower.extend(lower)
            bounds_upper.extend(upper)
        return np.array(bounds_lower), np.array(bounds_upper)

    def fit_shapes(self, x, y, shapes, algorithm=None, bounds=None):
        """
        Fit a list of starting shapes jointly.

        Parameters
        ----------
        x, y : array_like
            Data
        shapes : list of PeakShapeParams
            Starting shapes; mixed shape types are allowed
        algorithm : optional
            Algorithm settings object overriding ``fit_method``
        bounds : tuple of array_like, optional
            Bounds for the concatenated vector (``create_bounds`` by default)

        Returns
        -------
        dict
            Fitting results containing:
            - success : bool - Always True; failures raise
            - shapes : list of PeakShapeParams - Fitted shapes
            - parameters : ndarray - Fitted concatenated parameter vector
            - parameter_errors : ndarray - Parameter uncertainties
            - fitted_curve : ndarray - Fitted y values
            - residuals : ndarray - Fit residuals (y - y_fit)
            - r_squared, adj_r_squared, rmse, reduced_chi_squared, aic, bic : float
            - iterations : int
            - converged : bool
            - free_parameters : int

        Raises
        ------
        DataError
            Fewer samples than parameters
        MathError
            Singular normal equations during Levenberg-Marquardt
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        model, jacobian, slices = composite_model([s.shape_type for s in shapes])
        initial = np.concatenate([s.parameters for s in shapes])
        if len(x) < len(initial):
            raise DataError(f"{len(x)} samples cannot determine {len(initial)} parameters")

        if bounds is None:
            bounds = self.create_bounds(shapes, (x.min(), x.max()))
        lower, upper = (np.asarray(b, dtype=float) for b in bounds)
        initial = np.clip(initial, lower, upper)

        if algorithm is None and self.fit_method == GLOBAL_METHOD:
            fitted, errors, iterations, converged = self._fit_global(
                model, x, y, initial, lower, upper
            )
        else:
            if algorithm is None:
                algorithm = algorithm_from_config(self.fit_method, self.optimizer_config)
            optimizer = ParameterOptimizer(algorithm)
            result = optimizer.optimize(model, initial, x, y, bounds=(lower, upper),
                                        jacobian=jacobian)
            fitted = result.optimized_params
            errors = result.parameter_errors
            iterations = result.iterations
            converged = result.converged

        fitted_shapes = [
            PeakShapeParams(shape.shape_type, fitted[part])
            for shape, part in zip(shapes, slices)
        ]
        y_fit = model(x, fitted)
        stats = ResultAnalyzer.calculate_fit_statistics(y, y_fit, len(fitted))

        logger.debug("fitted %d %s component(s): R²=%.4f, %d iterations",
                     len(shapes), "/".join(sorted({s.shape_type for s in shapes})),
                     stats['r_squared'], iterations)

        result = {
            'success': True,
            'shapes': fitted_shapes,
            'parameters': fitted,
            'parameter_errors': errors,
            'fitted_curve': y_fit,
            'iterations': iterations,
            'converged': converged,
            'free_parameters': len(fitted),
        }
        result.update(stats)
        return result

    def _fit_global(self, model, x, y, initial, lower, upper):
        """Differential evolution over the (finite) bounds."""
        max_iterations = int(self.optimizer_config.get('max_iterations', 1000))

        def objective(params):
            residuals = y - model(x, params)
            value = float(residuals @ residuals)
            return value if np.isfinite(value) else np.inf

        result = differential_evolution(
            objective, list(zip(lower, upper)),
            maxiter=max(max_iterations // 10, 1),
            tol=float(self.optimizer_config.get('convergence_threshold', 1e-8)),
            x0=initial,
            seed=42,
        )
        fitted = np.clip(result.x, lower, upper)
        errors = estimate_parameter_errors(model, fitted, x, y)
        return fitted, errors, int(result.nit), bool(result.success)
