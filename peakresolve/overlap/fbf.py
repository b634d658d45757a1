"""
Weighted separation of overlapping peaks.

Each group is modelled as a Gaussian mixture over the coordinate axis,
with the baseline-corrected intensity acting as sample weight. EM
alternates responsibilities (E step) with responsibility-weighted moments
(M step) until means, widths and mixing weights settle.
"""

import logging

import numpy as np
from scipy.integrate import trapezoid

from peakresolve.errors import DataError
from peakresolve.fitting.data_processor import DataProcessor
from peakresolve.fitting.peak_functions import FWHM_FACTOR, SQRT_2PI
from .base import OverlapProcessor

logger = logging.getLogger(__name__)


class FBFProcessor(OverlapProcessor):
    """
    Intensity-weighted Gaussian-mixture EM.

    Parameters
    ----------
    convergence_threshold : float
        Largest allowed change of means and widths (relative to the region
        span) and of mixing weights for convergence
    max_iterations : int
        EM iteration cap
    regularization : float
        Variance floor in units of the squared sampling interval
    """

    name = "fbf"
    CONFIG_KEYS = ("convergence_threshold", "max_iterations", "regularization")

    def __init__(self, convergence_threshold=1e-4, max_iterations=100, regularization=0.1):
        self.convergence_threshold = convergence_threshold
        self.max_iterations = max_iterations
        self.regularization = regularization

    def resolve_group(self, peaks, curve):
        n = len(peaks)
        max_width = max(max(p.fwhm for p in peaks), 2.0 * curve.sampling_interval)
        start = min(p.center for p in peaks) - 2.0 * max_width
        end = max(p.center for p in peaks) + 2.0 * max_width
        x, y = curve.slice(start, end)
        if len(x) < 3 * n:
            raise DataError(f"FBF needs {3 * n} samples for {n} peaks, region has {len(x)}")

        corrected, _ = DataProcessor.subtract_baseline(x, y)
        weights = np.clip(corrected, 0.0, None)
        total = float(np.sum(weights))
        if total <= 0:
            raise DataError("no signal above the baseline in the overlap region")

        dx = curve.sampling_interval
        span = max(x[-1] - x[0], dx)
        floor = self.regularization * dx ** 2
        means = np.array([p.center for p in peaks], dtype=float)
        variances = np.array([max(p.sigma, dx) ** 2 for p in peaks])
        mixing = np.array([max(p.amplitude, 1e-12) * max(p.sigma, dx) for p in peaks])
        mixing = mixing / mixing.sum()

        iterations = 0
        for iterations in range(1, self.max_iterations + 1):
            # E step
            densities = np.array([
                mixing[k] * np.exp(-0.5 * (x - means[k]) ** 2 / variances[k])
                / np.sqrt(2 * np.pi * variances[k])
                for k in range(n)
            ])
            responsibilities = densities / np.maximum(densities.sum(axis=0), 1e-300)

            # M step
            weighted = responsibilities * weights
            mass = weighted.sum(axis=1)
            new_means = means.copy()
            new_variances = variances.copy()
            for k in range(n):
                if mass[k] <= 0:
                    continue
                new_means[k] = float(weighted[k] @ x / mass[k])
                new_variances[k] = float(weighted[k] @ (x - new_means[k]) ** 2 / mass[k]) + floor
            new_mixing = mass / mass.sum() if mass.sum() > 0 else mixing

            shift = max(np.max(np.abs(new_means - means)) / span,
                        np.max(np.abs(np.sqrt(new_variances) - np.sqrt(variances))) / span,
                        np.max(np.abs(new_mixing - mixing)))
            means, variances, mixing = new_means, new_variances, new_mixing
            if shift < self.convergence_threshold:
                break

        area = float(trapezoid(weights, x))
        for k, peak in enumerate(peaks):
            sigma = float(np.sqrt(variances[k]))
            peak.center = float(np.clip(means[k], curve.x_min, curve.x_max))
            peak.sigma = sigma
            peak.fwhm = FWHM_FACTOR * sigma
            peak.hwhm = peak.fwhm / 2.0
            peak.left_hwhm = peak.right_hwhm = peak.hwhm
            peak.amplitude = max(mixing[k] * area / (sigma * SQRT_2PI), 0.0)
            peak.fit_parameters = []
            peak.fit_parameter_errors = []
            peak.set_boundaries(max(peak.center - peak.fwhm, curve.x_min),
                                min(peak.center + peak.fwhm, curve.x_max))
            peak.metadata.update({
                'fbf_processed': True,
                'fbf_weight': float(mixing[k]),
                'fbf_iterations': iterations,
            })
        logger.debug("FBF separated %d peaks in %d iterations", n, iterations)
        return peaks
