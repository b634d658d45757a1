"""Peak fitting module for peakresolve.

This module provides the peak model and fitting functionality including:
- Peak functions (Gaussian, Lorentzian, Pseudo-Voigt, EMG, BiGaussian,
  Voigt with exponential tail, Pearson IV, NLC, Gaussian mixture)
- The shape registry and tagged parameter values
- Grid search, gradient descent, Levenberg-Marquardt and simulated annealing
- Peak detection and parameter estimation
- Multi-peak detection and joint fitting
- Advanced BIC-gated shape refinements
- Data preprocessing and result analysis tools
"""

from .peak_functions import (
    gaussian_peak,
    lorentzian_peak,
    pseudo_voigt_peak,
    exponentially_modified_gaussian,
    bigaussian_peak,
    voigt_exponential_tail_peak,
    pearson_iv_peak,
    nlc_peak,
    gaussian_mixture_peak,
)

from .peak_shapes import (
    SHAPES,
    ShapeDefinition,
    PeakShapeParams,
    PeakShapeAnalyzer,
    composite_model,
    get_shape,
    get_parameter_names,
    width_crossings,
)

from .data_processor import DataProcessor
from .parameter_optimizer import (
    GridSearch,
    GradientDescent,
    LevenbergMarquardt,
    SimulatedAnnealing,
    OptimizationResult,
    ParameterOptimizer,
    algorithm_from_config,
    solve_linear_system,
)
from .result_analyzer import ResultAnalyzer
from .parameter_estimation import ParameterEstimator
from .peak_detection import PeakDetector
from .fitting_engine import FittingEngine
from .multi_peak_fitter import MultiPeakDetector, MultiPeakFitter
from .advanced_algorithms import (
    EMGRefinement,
    BiGaussianRefinement,
    GaussianMixtureBayesianFitter,
    create_advanced_algorithm,
)

__all__ = [
    # Peak functions
    'gaussian_peak',
    'lorentzian_peak',
    'pseudo_voigt_peak',
    'exponentially_modified_gaussian',
    'bigaussian_peak',
    'voigt_exponential_tail_peak',
    'pearson_iv_peak',
    'nlc_peak',
    'gaussian_mixture_peak',
    # Shapes
    'SHAPES',
    'ShapeDefinition',
    'PeakShapeParams',
    'PeakShapeAnalyzer',
    'composite_model',
    'get_shape',
    'get_parameter_names',
    'width_crossings',
    # Optimizer
    'GridSearch',
    'GradientDescent',
    'LevenbergMarquardt',
    'SimulatedAnnealing',
    'OptimizationResult',
    'ParameterOptimizer',
    'algorithm_from_config',
    'solve_linear_system',
    # Classes
    'DataProcessor',
    'ResultAnalyzer',
    'ParameterEstimator',
    'PeakDetector',
    'FittingEngine',
    'MultiPeakDetector',
    'MultiPeakFitter',
    'EMGRefinement',
    'BiGaussianRefinement',
    'GaussianMixtureBayesianFitter',
    'create_advanced_algorithm',
]
