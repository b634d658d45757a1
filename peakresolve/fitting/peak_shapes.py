"""
Peak Shape Model
================

Registry of the supported parametric peak families and the tagged value
(:class:`PeakShapeParams`) the optimizers work on.

Each shape is described once by a :class:`ShapeDefinition`: parameter
names, default bounds, the vectorized evaluation function, an optional
analytic gradient and a closed-form area. Everything else (Jacobians of
composite models, FWHM, half widths) is derived from that table, so adding
a shape means adding one entry to ``SHAPES``.

Classes
-------
ShapeDefinition
    Static description of one peak family
PeakShapeParams
    Shape tag plus parameter vector, names and inclusive bounds
PeakShapeAnalyzer
    Recommends a shape from the measured asymmetry/tailing of a peak

Functions
---------
get_shape(name)
    Look up a ShapeDefinition, raising ConfigError for unknown names
composite_model(shape_types)
    Sum-of-components model and Jacobian over a concatenated parameter vector
width_crossings(x, y, apex_index, fraction)
    Left/right distances from the apex to a relative-height crossing
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.special import betaln, erfcx, loggamma, gammaln

from peakresolve.errors import ConfigError
from .peak_functions import (
    FWHM_FACTOR, SQRT_2PI, TAIL_FRACTION,
    gaussian_peak, lorentzian_peak, pseudo_voigt_peak,
    exponentially_modified_gaussian, bigaussian_peak,
    voigt_exponential_tail_peak, voigt_fwhm_and_eta, pearson_iv_peak,
    nlc_peak, gaussian_mixture_peak,
    gaussian_gradients, lorentzian_gradients, emg_gradients,
)

WIDTH_FLOOR = 1e-6
INF = np.inf

GAUSSIAN = "Gaussian"
LORENTZIAN = "Lorentzian"
PSEUDO_VOIGT = "PseudoVoigt"
EMG = "EMG"
BIGAUSSIAN = "BiGaussian"
VOIGT_EXP_TAIL = "VoigtExpTail"
PEARSON_IV = "PearsonIV"
NLC = "NLC"
GMG_BAYESIAN = "GMGBayesian"


@dataclass(frozen=True)
class ShapeDefinition:
    """
    Static description of a peak family.

    Attributes:
        name: Shape tag
        parameter_names: Ordered parameter names; the first two are always
            amplitude and center
        width_parameters: Names of the strictly positive width parameters
        default_bounds: Inclusive (lower, upper) per parameter
        function: f(x, *params) -> y
        gradient: Optional analytic Jacobian g(x, *params) -> (n, p)
        area: Closed-form area from the parameter vector
        scale: Characteristic width, used to size numerical grids
    """
    name: str
    parameter_names: Tuple[str, ...]
    width_parameters: Tuple[str, ...]
    default_bounds: Tuple[Tuple[float, float], ...]
    function: Callable
    area: Callable
    scale: Callable
    gradient: Optional[Callable] = None

    @property
    def parameter_count(self) -> int:
        return len(self.parameter_names)

    def width_indices(self) -> List[int]:
        return [self.parameter_names.index(name) for name in self.width_parameters]


def _pseudo_voigt_area(p):
    amplitude, _, sigma, eta = p
    gamma = sigma * FWHM_FACTOR / 2.0
    return amplitude * (eta * gamma * np.pi + (1 - eta) * sigma * SQRT_2PI)


def _voigt_tail_area(p):
    amplitude, _, sigma, gamma, tau = p
    fwhm, eta = voigt_fwhm_and_eta(sigma, gamma)
    voigt = amplitude * (eta * (fwhm / 2.0) * np.pi
                         + (1 - eta) * (fwhm / FWHM_FACTOR) * SQRT_2PI)
    # integral of exp(-u/tau) * (1 - exp(-u²/2σ²)) over u > 0
    overlap = sigma * np.sqrt(np.pi / 2.0) * erfcx(sigma / (tau * np.sqrt(2.0)))
    return voigt + TAIL_FRACTION * amplitude * max(tau - overlap, 0.0)


def _pearson_iv_area(p):
    amplitude, _, width, m, nu = p
    t0 = -nu / (2.0 * m)
    log_area = (m * np.log1p(t0 ** 2) + nu * np.arctan(t0) + np.log(width)
                + betaln(m - 0.5, 0.5)
                - 2.0 * np.real(loggamma(m + 0.5j * nu)) + 2.0 * gammaln(m))
    return amplitude * np.exp(log_area)


SHAPES: Dict[str, ShapeDefinition] = {
    GAUSSIAN: ShapeDefinition(
        name=GAUSSIAN,
        parameter_names=("amplitude", "center", "sigma"),
        width_parameters=("sigma",),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF)),
        function=gaussian_peak,
        gradient=gaussian_gradients,
        area=lambda p: p[0] * p[2] * SQRT_2PI,
        scale=lambda p: p[2],
    ),
    LORENTZIAN: ShapeDefinition(
        name=LORENTZIAN,
        parameter_names=("amplitude", "center", "gamma"),
        width_parameters=("gamma",),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF)),
        function=lorentzian_peak,
        gradient=lorentzian_gradients,
        area=lambda p: p[0] * p[2] * np.pi,
        scale=lambda p: 4.0 * p[2],
    ),
    PSEUDO_VOIGT: ShapeDefinition(
        name=PSEUDO_VOIGT,
        parameter_names=("amplitude", "center", "sigma", "eta"),
        width_parameters=("sigma",),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF), (0.0, 1.0)),
        function=pseudo_voigt_peak,
        area=_pseudo_voigt_area,
        scale=lambda p: 3.0 * p[2],
    ),
    EMG: ShapeDefinition(
        name=EMG,
        parameter_names=("amplitude", "center", "sigma", "tau"),
        width_parameters=("sigma", "tau"),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF), (WIDTH_FLOOR, INF)),
        function=exponentially_modified_gaussian,
        gradient=emg_gradients,
        area=lambda p: p[0] * p[2] * SQRT_2PI,
        scale=lambda p: p[2] + p[3],
    ),
    BIGAUSSIAN: ShapeDefinition(
        name=BIGAUSSIAN,
        parameter_names=("amplitude", "center", "sigma_left", "sigma_right"),
        width_parameters=("sigma_left", "sigma_right"),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF), (WIDTH_FLOOR, INF)),
        function=bigaussian_peak,
        area=lambda p: p[0] * np.sqrt(np.pi / 2.0) * (p[2] + p[3]),
        scale=lambda p: max(p[2], p[3]),
    ),
    VOIGT_EXP_TAIL: ShapeDefinition(
        name=VOIGT_EXP_TAIL,
        parameter_names=("amplitude", "center", "sigma", "gamma", "tau"),
        width_parameters=("sigma", "gamma", "tau"),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF),
                        (WIDTH_FLOOR, INF), (WIDTH_FLOOR, INF)),
        function=voigt_exponential_tail_peak,
        area=_voigt_tail_area,
        scale=lambda p: p[2] + 2.0 * p[3] + p[4],
    ),
    PEARSON_IV: ShapeDefinition(
        name=PEARSON_IV,
        parameter_names=("amplitude", "center", "width", "shape_m", "skew_nu"),
        width_parameters=("width",),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF),
                        (0.51, 100.0), (-50.0, 50.0)),
        function=pearson_iv_peak,
        area=_pearson_iv_area,
        scale=lambda p: p[2] * (1.0 + abs(p[4]) / p[3]),
    ),
    NLC: ShapeDefinition(
        name=NLC,
        parameter_names=("amplitude", "center", "sigma", "c1", "c2", "c3"),
        width_parameters=("sigma",),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF),
                        (-5.0, 5.0), (-5.0, 5.0), (-5.0, 5.0)),
        function=nlc_peak,
        area=lambda p: max(p[0] * p[2] * SQRT_2PI * (1.0 + p[4]), 0.0),
        scale=lambda p: p[2],
    ),
    GMG_BAYESIAN: ShapeDefinition(
        name=GMG_BAYESIAN,
        parameter_names=("amplitude", "center", "sigma", "offset", "sigma2", "weight"),
        width_parameters=("sigma", "sigma2"),
        default_bounds=((0.0, INF), (-INF, INF), (WIDTH_FLOOR, INF),
                        (-INF, INF), (WIDTH_FLOOR, INF), (0.0, 1.0)),
        function=gaussian_mixture_peak,
        area=lambda p: p[0] * SQRT_2PI * ((1 - p[5]) * p[2] + p[5] * p[4]),
        scale=lambda p: max(p[2], p[4]) + abs(p[3]),
    ),
}


def get_shape(name: str) -> ShapeDefinition:
    """Return the definition of a shape, raising ConfigError for unknown names."""
    try:
        return SHAPES[name]
    except KeyError:
        raise ConfigError(
            f"Unknown peak shape '{name}'. Available: {', '.join(sorted(SHAPES))}"
        ) from None


def get_parameter_names(shape_type: str) -> List[str]:
    """Ordered parameter names for a shape."""
    return list(get_shape(shape_type).parameter_names)


def numerical_jacobian(function, x, params, step=1e-6):
    """Central-difference Jacobian of ``function(x, *params)`` with relative steps."""
    params = np.asarray(params, dtype=float)
    jac = np.empty((len(x), len(params)))
    for i, value in enumerate(params):
        h = step * max(abs(value), 1e-3)
        upper = params.copy()
        lower = params.copy()
        upper[i] += h
        lower[i] -= h
        jac[:, i] = (function(x, *upper) - function(x, *lower)) / (2.0 * h)
    return jac


def width_crossings(x, y, apex_index, fraction=0.5):
    """
    Distances from the apex to where ``y`` first falls below ``fraction``·apex.

    Crossings are linearly interpolated between samples. When the trace
    never falls below the level on one side, the distance to that end of
    the data is returned.

    Returns
    -------
    left_width, right_width : float
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    apex_index = int(apex_index)
    level = y[apex_index] * fraction
    apex_x = x[apex_index]

    left = apex_x - x[0]
    for i in range(apex_index, 0, -1):
        if y[i - 1] <= level:
            y0, y1 = y[i - 1], y[i]
            t = (level - y0) / (y1 - y0) if y1 != y0 else 0.0
            left = apex_x - (x[i - 1] + t * (x[i] - x[i - 1]))
            break

    right = x[-1] - apex_x
    for i in range(apex_index, len(y) - 1):
        if y[i + 1] <= level:
            y0, y1 = y[i], y[i + 1]
            t = (y0 - level) / (y0 - y1) if y0 != y1 else 0.0
            right = (x[i] + t * (x[i + 1] - x[i])) - apex_x
            break

    return float(max(left, 0.0)), float(max(right, 0.0))


@dataclass
class PeakShapeParams:
    """
    Tagged parameter vector for one peak.

    Attributes:
        shape_type: Shape tag (key of ``SHAPES``)
        parameters: Parameter values in the shape's declared order
        parameter_names: Filled from the shape definition when omitted
        bounds: Inclusive (lower, upper) per parameter; shape defaults when omitted

    Values are clamped into bounds on construction and on every update.
    """
    shape_type: str
    parameters: np.ndarray
    parameter_names: List[str] = field(default=None)
    bounds: List[Tuple[float, float]] = field(default=None)

    def __post_init__(self):
        definition = get_shape(self.shape_type)
        self.parameters = np.asarray(self.parameters, dtype=float).copy()
        if len(self.parameters) != definition.parameter_count:
            raise ConfigError(
                f"{self.shape_type} takes {definition.parameter_count} parameters, "
                f"got {len(self.parameters)}"
            )
        if self.parameter_names is None:
            self.parameter_names = list(definition.parameter_names)
        if self.bounds is None:
            self.bounds = list(definition.default_bounds)
        else:
            self.bounds = [
                (max(lo, d_lo), min(hi, d_hi))
                for (lo, hi), (d_lo, d_hi) in zip(self.bounds, definition.default_bounds)
            ]
        self.clamp_parameters()

    @property
    def definition(self) -> ShapeDefinition:
        return get_shape(self.shape_type)

    @property
    def amplitude(self) -> float:
        return float(self.parameters[0])

    @property
    def center(self) -> float:
        return float(self.parameters[1])

    def lower_bounds(self) -> np.ndarray:
        return np.array([b[0] for b in self.bounds], dtype=float)

    def upper_bounds(self) -> np.ndarray:
        return np.array([b[1] for b in self.bounds], dtype=float)

    def clamp_parameters(self):
        self.parameters = np.clip(self.parameters, self.lower_bounds(), self.upper_bounds())

    def get_parameter(self, name: str) -> float:
        try:
            return float(self.parameters[self.parameter_names.index(name)])
        except ValueError:
            raise ConfigError(f"{self.shape_type} has no parameter '{name}'") from None

    def set_parameter(self, name: str, value: float):
        try:
            index = self.parameter_names.index(name)
        except ValueError:
            raise ConfigError(f"{self.shape_type} has no parameter '{name}'") from None
        lower, upper = self.bounds[index]
        self.parameters[index] = min(max(float(value), lower), upper)

    def with_values(self, values) -> "PeakShapeParams":
        """New params of the same shape and bounds carrying ``values`` (clamped)."""
        return PeakShapeParams(self.shape_type, values, list(self.parameter_names),
                               list(self.bounds))

    def copy(self) -> "PeakShapeParams":
        return self.with_values(self.parameters)

    def evaluate(self, x) -> np.ndarray:
        return self.definition.function(np.asarray(x, dtype=float), *self.parameters)

    def derivatives(self, x) -> np.ndarray:
        """Jacobian (n_samples, n_parameters) at ``x``."""
        x = np.asarray(x, dtype=float)
        definition = self.definition
        if definition.gradient is not None:
            return definition.gradient(x, *self.parameters)
        return numerical_jacobian(definition.function, x, self.parameters)

    def area(self) -> float:
        return float(self.definition.area(self.parameters))

    def half_widths(self, fraction=0.5) -> Tuple[float, float, float]:
        """
        Apex position and left/right widths at ``fraction`` of the apex height.

        Closed form for the symmetric Gaussian/Lorentzian families, a fine
        numerical grid otherwise.
        """
        p = self.parameters
        if self.shape_type == GAUSSIAN:
            w = p[2] * np.sqrt(-2.0 * np.log(fraction))
            return float(p[1]), float(w), float(w)
        if self.shape_type == LORENTZIAN:
            w = p[2] * np.sqrt(1.0 / fraction - 1.0)
            return float(p[1]), float(w), float(w)
        if self.shape_type == BIGAUSSIAN:
            k = np.sqrt(-2.0 * np.log(fraction))
            return float(p[1]), float(p[2] * k), float(p[3] * k)

        scale = max(float(self.definition.scale(p)), WIDTH_FLOOR)
        grid = np.linspace(p[1] - 12.0 * scale, p[1] + 12.0 * scale, 6001)
        values = self.evaluate(grid)
        apex = int(np.argmax(values))
        if values[apex] <= 0:
            return float(p[1]), 0.0, 0.0
        left, right = width_crossings(grid, values, apex, fraction)
        return float(grid[apex]), left, right

    def fwhm(self) -> float:
        if self.shape_type in (GAUSSIAN, PSEUDO_VOIGT):
            return float(FWHM_FACTOR * self.parameters[2])
        if self.shape_type == LORENTZIAN:
            return float(2.0 * self.parameters[2])
        _, left, right = self.half_widths(0.5)
        return left + right


def composite_model(shape_types: Sequence[str]):
    """
    Build a summed model over a concatenated parameter vector.

    Parameters
    ----------
    shape_types : sequence of str
        One shape tag per component, in parameter-vector order

    Returns
    -------
    model : callable
        model(x, params) -> sum of all components
    jacobian : callable
        jacobian(x, params) -> (n_samples, total_parameters)
    slices : list of slice
        Where each component's parameters sit in the combined vector
    """
    definitions = [get_shape(name) for name in shape_types]
    slices = []
    start = 0
    for definition in definitions:
        slices.append(slice(start, start + definition.parameter_count))
        start += definition.parameter_count

    def model(x, params):
        y = np.zeros(len(x))
        for definition, part in zip(definitions, slices):
            y = y + definition.function(x, *params[part])
        return y

    def jacobian(x, params):
        blocks = []
        for definition, part in zip(definitions, slices):
            if definition.gradient is not None:
                blocks.append(definition.gradient(x, *params[part]))
            else:
                blocks.append(numerical_jacobian(definition.function, x, params[part]))
        return np.hstack(blocks)

    return model, jacobian, slices


class PeakShapeAnalyzer:
    """
    Recommend a peak shape from measured asymmetry and tailing.

    Tailing is the signed imbalance of the back and front widths at 10 %
    height; asymmetry is the unsigned imbalance at half height. Strong
    tailing suggests an EMG, milder two-sided asymmetry a Bi-Gaussian,
    anything else a Gaussian.
    """

    TAILING_THRESHOLD = 0.3
    ASYMMETRY_THRESHOLD = 0.2

    @staticmethod
    def calculate_asymmetry(x, y):
        y = np.asarray(y, dtype=float)
        if len(y) < 5 or np.max(y) <= 0:
            return 0.0
        left, right = width_crossings(x, y, int(np.argmax(y)), 0.5)
        if left + right <= 0:
            return 0.0
        return abs(right - left) / (right + left)

    @staticmethod
    def calculate_tailing(x, y):
        y = np.asarray(y, dtype=float)
        if len(y) < 5 or np.max(y) <= 0:
            return 0.0
        front, back = width_crossings(x, y, int(np.argmax(y)), 0.1)
        if front + back <= 0:
            return 0.0
        return (back - front) / (back + front)

    @classmethod
    def analyze_peak_shape(cls, x, y) -> str:
        if len(y) < 5:
            return GAUSSIAN
        if cls.calculate_tailing(x, y) > cls.TAILING_THRESHOLD:
            return EMG
        if cls.calculate_asymmetry(x, y) > cls.ASYMMETRY_THRESHOLD:
            return BIGAUSSIAN
        return GAUSSIAN
