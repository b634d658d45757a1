"""
Curve data container.

A Curve is an ordered pair of coordinate/intensity arrays together with the
scalar statistics that detection, strategy selection and validation read.
Statistics are computed once at construction; stages that change the
intensities (sharpening, baseline correction) produce a new Curve through
``with_intensities`` instead of mutating an existing one.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
from scipy.integrate import trapezoid

from peakresolve.errors import DataError
from peakresolve.fitting.data_processor import DataProcessor


@dataclass
class Curve:
    """
    One-dimensional intensity trace.

    Attributes:
        x_values: Coordinates (drift time, retention time, m/z ...), ascending
        y_values: Intensities, same length as x_values
        curve_id: Identifier copied onto every peak found on this curve
        curve_type: Free-form trace type tag (e.g. 'DT', 'TIC', 'XIC')
        x_label, x_unit, y_label, y_unit: Axis annotations
    """
    x_values: np.ndarray
    y_values: np.ndarray
    curve_id: str = "curve"
    curve_type: str = "DT"
    x_label: str = "x"
    x_unit: str = ""
    y_label: str = "Intensity"
    y_unit: str = "counts"

    x_min: float = field(init=False)
    x_max: float = field(init=False)
    y_min: float = field(init=False)
    y_max: float = field(init=False)
    point_count: int = field(init=False)
    total_ion_current: float = field(init=False)
    mean_intensity: float = field(init=False)
    intensity_std: float = field(init=False)
    baseline_intensity: float = field(init=False)
    noise_level: float = field(init=False)
    snr: float = field(init=False)
    detection_threshold: float = field(init=False)

    def __post_init__(self):
        x = np.asarray(self.x_values, dtype=float).ravel()
        y = np.asarray(self.y_values, dtype=float).ravel()

        if len(x) != len(y):
            raise DataError(
                f"x and y must have the same length (got {len(x)} and {len(y)})"
            )
        if len(x) < 3:
            raise DataError(f"a curve needs at least 3 samples, got {len(x)}")
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
            raise DataError("curve contains NaN or infinite values")

        if np.any(np.diff(x) < 0):
            order = np.argsort(x, kind="stable")
            x, y = x[order], y[order]

        self.x_values = x
        self.y_values = y
        self._compute_statistics()

    def _compute_statistics(self):
        x, y = self.x_values, self.y_values
        self.x_min = float(x[0])
        self.x_max = float(x[-1])
        self.y_min = float(np.min(y))
        self.y_max = float(np.max(y))
        self.point_count = int(len(x))
        self.total_ion_current = float(np.sum(y))
        self.mean_intensity = float(np.mean(y))
        self.intensity_std = float(np.std(y))
        self.baseline_intensity = float(np.percentile(y, 5))
        self.noise_level = DataProcessor.estimate_noise(y)

        signal = self.y_max - self.baseline_intensity
        if self.noise_level > 0:
            self.snr = float(signal / self.noise_level)
        else:
            self.snr = float(signal) if signal > 0 else 0.0
        self.detection_threshold = self.baseline_intensity + 3.0 * self.noise_level

    @property
    def x_span(self) -> float:
        return self.x_max - self.x_min

    @property
    def sampling_interval(self) -> float:
        """Median coordinate spacing."""
        return float(np.median(np.diff(self.x_values)))

    def get_intensity_at(self, x: float) -> float:
        """Linearly interpolated intensity at ``x`` (edge values outside the range)."""
        return float(np.interp(x, self.x_values, self.y_values))

    def calculate_area(self, x_start: Optional[float] = None,
                       x_end: Optional[float] = None) -> float:
        """Trapezoidal area between two coordinates (whole curve by default)."""
        x, y = self.slice(
            self.x_min if x_start is None else x_start,
            self.x_max if x_end is None else x_end,
        )
        if len(x) < 2:
            return 0.0
        return float(trapezoid(y, x))

    def slice(self, x_start: float, x_end: float) -> Tuple[np.ndarray, np.ndarray]:
        """Samples with ``x_start <= x <= x_end``."""
        mask = (self.x_values >= x_start) & (self.x_values <= x_end)
        return self.x_values[mask], self.y_values[mask]

    def index_of(self, x: float) -> int:
        """Index of the sample closest to ``x``."""
        return int(np.argmin(np.abs(self.x_values - x)))

    def with_intensities(self, y_values, suffix: str = "derived") -> "Curve":
        """Return a copy of this curve carrying new intensities."""
        return Curve(
            x_values=self.x_values.copy(),
            y_values=np.asarray(y_values, dtype=float),
            curve_id=f"{self.curve_id}_{suffix}",
            curve_type=self.curve_type,
            x_label=self.x_label,
            x_unit=self.x_unit,
            y_label=self.y_label,
            y_unit=self.y_unit,
        )
