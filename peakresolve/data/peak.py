"""
Peak record.

A Peak is either a detection candidate (center, amplitude and a width
estimate) or a fitted feature carrying the full parameter vector of its
shape. ``apply_shape`` is the single place that turns a fitted
PeakShapeParams into record fields, so the invariants (ordered boundaries,
non-negative amplitude and widths, parameter count matching the shape)
hold for every fitted peak.
"""

import copy as _copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from peakresolve.errors import DataError
from peakresolve.fitting.parameter_estimation import ParameterEstimator
from peakresolve.fitting.peak_functions import FWHM_FACTOR
from peakresolve.fitting.peak_shapes import (
    GAUSSIAN, BIGAUSSIAN, WIDTH_FLOOR, PeakShapeParams, get_shape,
)

BOUNDARY_FRACTION = 0.05


@dataclass
class Peak:
    """
    One detected or fitted peak.

    Attributes:
        center: Peak position (the shape's center parameter once fitted)
        amplitude: Peak height
        area: Integrated area from the shape's closed form
        fwhm, hwhm: Full and half width at half maximum
        sigma, gamma, tau: Width parameters of the fitted shape, 0 when absent
        left_hwhm, right_hwhm: Apex-to-half-height distances on each side
        asymmetry_factor: right_hwhm / left_hwhm
        left_boundary, right_boundary: Extent of the peak on the curve
        rsquared, residual_sum_squares, standard_error: Fit quality
        peak_type: Shape tag of the fitted model
        detection_algorithm: Tag of the component that produced the peak
        confidence: Detector confidence in [0, 1]
        fit_parameters, fit_parameter_errors: Raw fitted vector and its errors
        metadata: Diagnostic key/value annotations
    """
    center: float
    amplitude: float
    fwhm: float = 0.0
    peak_id: int = 0
    curve_id: str = ""
    area: float = 0.0
    hwhm: float = 0.0
    sigma: float = 0.0
    gamma: float = 0.0
    tau: float = 0.0
    left_hwhm: float = 0.0
    right_hwhm: float = 0.0
    asymmetry_factor: float = 1.0
    left_boundary: Optional[float] = None
    right_boundary: Optional[float] = None
    peak_span: float = 0.0
    rsquared: float = 0.0
    residual_sum_squares: float = 0.0
    standard_error: float = 0.0
    parameter_count: int = 0
    peak_type: str = GAUSSIAN
    detection_algorithm: str = ""
    confidence: float = 1.0
    fit_parameters: List[float] = field(default_factory=list)
    fit_parameter_errors: List[float] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.center = float(self.center)
        self.amplitude = max(float(self.amplitude), 0.0)
        self.fwhm = max(float(self.fwhm), 0.0)
        if self.hwhm == 0.0:
            self.hwhm = self.fwhm / 2.0
        if self.sigma == 0.0 and self.fwhm > 0:
            self.sigma = self.fwhm / FWHM_FACTOR
        if self.left_hwhm == 0.0 and self.right_hwhm == 0.0:
            self.left_hwhm = self.right_hwhm = self.hwhm
        if self.left_boundary is None or self.right_boundary is None:
            half_span = self.fwhm if self.fwhm > 0 else 0.0
            self.set_boundaries(self.center - half_span, self.center + half_span)

    def set_boundaries(self, left: float, right: float):
        """Set the peak extent, keeping ``left <= center <= right``."""
        left, right = float(left), float(right)
        if left > right:
            left, right = right, left
        self.left_boundary = min(left, self.center)
        self.right_boundary = max(right, self.center)
        self.peak_span = self.right_boundary - self.left_boundary

    def apply_shape(self, params: PeakShapeParams, errors=None, rsquared=None,
                    rss=None, n_points=None):
        """Copy a fitted shape into this record and recompute derived fields."""
        definition = get_shape(params.shape_type)
        values = np.asarray(params.parameters, dtype=float)
        if len(values) != definition.parameter_count:
            raise DataError(
                f"{params.shape_type} needs {definition.parameter_count} parameters, "
                f"got {len(values)}"
            )

        self.peak_type = params.shape_type
        self.parameter_count = definition.parameter_count
        self.fit_parameters = [float(v) for v in values]
        if errors is None:
            self.fit_parameter_errors = [0.0] * len(values)
        else:
            self.fit_parameter_errors = [float(e) if np.isfinite(e) else 0.0 for e in errors]

        self.amplitude = max(params.amplitude, 0.0)
        self.center = params.center

        names = params.parameter_names
        self.sigma = self.gamma = self.tau = 0.0
        if "sigma" in names:
            self.sigma = params.get_parameter("sigma")
        elif self.peak_type == BIGAUSSIAN:
            self.sigma = 0.5 * (params.get_parameter("sigma_left")
                                + params.get_parameter("sigma_right"))
        elif "width" in names:
            self.sigma = params.get_parameter("width")
        if "gamma" in names:
            self.gamma = params.get_parameter("gamma")
        if "tau" in names:
            self.tau = params.get_parameter("tau")

        _, left, right = params.half_widths(0.5)
        self.left_hwhm = max(left, WIDTH_FLOOR)
        self.right_hwhm = max(right, WIDTH_FLOOR)
        self.fwhm = params.fwhm()
        self.hwhm = self.fwhm / 2.0
        self.asymmetry_factor = self.right_hwhm / self.left_hwhm
        self.area = max(params.area(), 0.0)

        apex, left_base, right_base = params.half_widths(BOUNDARY_FRACTION)
        self.set_boundaries(apex - left_base, apex + right_base)

        if rsquared is not None:
            self.rsquared = float(rsquared) if np.isfinite(rsquared) else 0.0
        if rss is not None:
            self.residual_sum_squares = float(rss)
            if n_points is not None and n_points > self.parameter_count:
                self.standard_error = float(np.sqrt(rss / (n_points - self.parameter_count)))
        return self

    def shape_params(self, shape_type: Optional[str] = None) -> PeakShapeParams:
        """
        The peak as a PeakShapeParams.

        Uses the fitted vector when it matches ``shape_type`` (default: the
        peak's own type), otherwise a Gaussian-derived starting point.
        """
        shape_type = shape_type or self.peak_type
        if self.fit_parameters and shape_type == self.peak_type:
            return PeakShapeParams(shape_type, self.fit_parameters)
        return ParameterEstimator.initial_parameters(
            shape_type, self.amplitude, self.center,
            self.sigma if self.sigma > 0 else self.fwhm / FWHM_FACTOR,
            self.left_hwhm, self.right_hwhm,
        )

    def width_at_height(self, fraction: float) -> float:
        """Full width at ``fraction`` of the apex height."""
        if not 0 < fraction < 1:
            raise DataError("height fraction must be in (0, 1)")
        _, left, right = self.shape_params().half_widths(fraction)
        return left + right

    def quality_score(self) -> float:
        symmetry = 1.0 if abs(self.asymmetry_factor - 1.0) <= 0.2 else 0.5
        resolution = 1.0 if self.fwhm <= 1.0 else 0.5
        score = (0.4 * self.rsquared + 0.2 * symmetry
                 + 0.2 * self.confidence + 0.2 * resolution)
        return min(score, 1.0)

    def copy(self) -> "Peak":
        return _copy.deepcopy(self)
