"""
Extreme-overlap pipeline: Sharpen+CWT, then joint EMG fitting, then
per-peak validation. A peak that fails validation is replaced by its input
candidate, flagged as rejected.
"""

import logging
from typing import Optional

import numpy as np

from peakresolve.data import Curve, Peak
from .base import OverlapProcessor
from .emg_nlls import EMGNLLSProcessor
from .sharpen_cwt import SharpenCWTProcessor

logger = logging.getLogger(__name__)

PIPELINE = "sharpen_cwt>emg_nlls>validation"


class ExtremeOverlapProcessor(OverlapProcessor):
    """
    Parameters
    ----------
    sharpening_strength, kernel_size, scale_min, scale_max, noise_threshold
        Sharpen+CWT settings
    max_iterations, convergence_threshold, damping_factor
        EMG-NLLS settings
    min_rsquared : float
        Lowest acceptable fit R²
    min_intensity_ratio, max_intensity_ratio : float
        Accepted range of observed / predicted intensity at the peak center
    """

    name = "extreme_overlap"
    CONFIG_KEYS = ("sharpening_strength", "kernel_size", "scale_min", "scale_max",
                   "noise_threshold", "max_iterations", "convergence_threshold",
                   "damping_factor", "min_rsquared", "min_intensity_ratio",
                   "max_intensity_ratio")

    def __init__(self, sharpening_strength=2.0, kernel_size=7, scale_min=1, scale_max=30,
                 noise_threshold=0.05, max_iterations=200, convergence_threshold=1e-8,
                 damping_factor=0.001, min_rsquared=0.5, min_intensity_ratio=0.1,
                 max_intensity_ratio=10.0):
        self.cwt = SharpenCWTProcessor(sharpening_strength, kernel_size, scale_min, scale_max,
                                       noise_threshold)
        self.emg = EMGNLLSProcessor(max_iterations, convergence_threshold, damping_factor)
        self.min_rsquared = min_rsquared
        self.min_intensity_ratio = min_intensity_ratio
        self.max_intensity_ratio = max_intensity_ratio

    @classmethod
    def from_config(cls, config=None):
        config = dict(config or {})
        scales = config.pop("scales", None)
        if scales is not None:
            config.setdefault("scale_min", scales[0])
            config.setdefault("scale_max", scales[-1])
        return super().from_config(config)

    def resolve_group(self, peaks, curve):
        candidates = [peak.copy() for peak in peaks]
        enhanced, _ = self.cwt.process(peaks, curve)
        fitted = self.emg.resolve_group(enhanced, curve)

        # fitted keeps the candidates' order: both come from the same center-sorted group
        by_order = sorted(candidates, key=lambda p: p.center)
        results = []
        for candidate, peak in zip(by_order, fitted):
            reason = self.rejection_reason(peak, curve)
            if reason is None:
                chosen = peak
                chosen.metadata['extreme_overlap_rejected'] = False
            else:
                logger.warning("extreme-overlap peak at %.4g rejected (%s); keeping candidate",
                               peak.center, reason)
                chosen = candidate
                chosen.metadata.update({
                    'extreme_overlap_rejected': True,
                    'rejection_reason': reason,
                })
            chosen.metadata.update({
                'extreme_overlap_processed': True,
                'processing_pipeline': PIPELINE,
            })
            results.append(chosen)

        results.sort(key=lambda p: p.center)
        return results

    def rejection_reason(self, peak: Peak, curve: Curve) -> Optional[str]:
        """None for a valid peak, otherwise a short description of the failed check."""
        if peak.amplitude <= 0:
            return "non-positive amplitude"
        if peak.fwhm <= 0:
            return "non-positive width"
        if not curve.x_min <= peak.center <= curve.x_max:
            return "center outside the data"
        if peak.rsquared < self.min_rsquared:
            return f"R² {peak.rsquared:.3f} below {self.min_rsquared}"
        if peak.fwhm > 0.5 * curve.x_span:
            return "wider than half the data span"
        predicted = float(peak.shape_params().evaluate(np.array([peak.center]))[0])
        observed = curve.get_intensity_at(peak.center)
        if predicted <= 0:
            return "model vanishes at the center"
        ratio = observed / predicted
        if not self.min_intensity_ratio <= ratio <= self.max_intensity_ratio:
            return f"intensity ratio {ratio:.3g} outside [{self.min_intensity_ratio}, {self.max_intensity_ratio}]"
        return None
