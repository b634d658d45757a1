"""
Multi-Peak Detection and Joint Fitting
======================================

Classes
-------
MultiPeakDetector
    Finds peak candidates on a curve and splits unresolved shoulders
MultiPeakFitter
    Fits isolated peaks on their own and overlapping groups jointly

Overlapping peaks are fitted on one concatenated parameter vector so that
each component sees its neighbours; the fitted sub-vectors are then mapped
back onto independent Peak records.
"""

import logging
from itertools import combinations
from typing import Dict, List, Optional, Sequence

import numpy as np

from peakresolve.data import Curve, Peak
from peakresolve.errors import DataError, MathError, ProcessError
from peakresolve.overlap.metrics import group_overlapping_peaks
from .fitting_engine import GLOBAL_METHOD, FittingEngine
from .parameter_optimizer import LevenbergMarquardt
from .peak_detection import PeakDetector
from .peak_functions import FWHM_FACTOR
from .peak_shapes import GAUSSIAN, PeakShapeParams, width_crossings

logger = logging.getLogger(__name__)

FIT_ERRORS = (MathError, DataError, ProcessError)


def fit_window(peaks: Sequence[Peak], curve: Curve, width_factor=2.0):
    """Coordinate range covering ``peaks`` ± width_factor·FWHM, clipped to the curve."""
    floor = 4.0 * curve.sampling_interval
    start = min(p.center - width_factor * max(p.fwhm, floor) for p in peaks)
    end = max(p.center + width_factor * max(p.fwhm, floor) for p in peaks)
    return max(start, curve.x_min), min(end, curve.x_max)


class MultiPeakDetector:
    """
    Local-maximum detector with shoulder resolution.

    Parameters
    ----------
    peak_threshold : float
        Minimum height above the trace minimum, as a fraction of the range
    min_peak_distance : float
        Minimum separation of maxima in x units
    smoothing_window : int
        Smoothing window in samples (0 disables smoothing)
    smoothing_method : str
        "Savitzky-Golay" or "Moving Average"
    resolve_shoulders : bool
        Try to split clusters whose Gaussian model leaves structured residuals
    shoulder_noise_ratio : float
        Residual RMS / noise ratio above which a split is attempted
    shoulder_bic_margin : float
        BIC decrease required to accept an extra component
    max_components : int
        Upper bound on components per cluster
    """

    SPLIT_OFFSETS = (0.25, 0.5, 1.0)
    SPLIT_WIDTHS = ((0.85, 0.85), (1.0, 0.7), (0.7, 1.0))

    def __init__(self, peak_threshold=0.1, min_peak_distance=0.5, smoothing_window=7,
                 smoothing_method="Savitzky-Golay", resolve_shoulders=True,
                 shoulder_noise_ratio=1.5, shoulder_bic_margin=10.0, max_components=3):
        self.peak_threshold = peak_threshold
        self.min_peak_distance = min_peak_distance
        self.smoothing_window = smoothing_window
        self.smoothing_method = smoothing_method
        self.resolve_shoulders = resolve_shoulders
        self.shoulder_noise_ratio = shoulder_noise_ratio
        self.shoulder_bic_margin = shoulder_bic_margin
        self.max_components = max_components
        self.engine = FittingEngine()
        self.algorithm = LevenbergMarquardt(max_iterations=200, convergence_threshold=1e-8,
                                            damping_factor=0.01)

    @classmethod
    def from_config(cls, config):
        keys = ("peak_threshold", "min_peak_distance", "smoothing_window", "smoothing_method",
                "resolve_shoulders", "shoulder_noise_ratio", "shoulder_bic_margin", "max_components")
        return cls(**{key: config[key] for key in keys if key in config})

    def detect(self, curve: Curve, candidates: Optional[List[Peak]] = None) -> List[Peak]:
        """
        Detect peaks on ``curve``.

        Pre-populated ``candidates`` are completed (width, boundaries)
        instead of being re-detected.
        """
        if candidates:
            peaks = [self._complete_candidate(peak.copy(), curve) for peak in candidates]
            logger.debug("completed %d pre-populated candidates", len(peaks))
        else:
            peaks = self._find_candidates(curve)
            if self.resolve_shoulders and peaks:
                peaks = self._resolve_shoulders(peaks, curve)

        peaks.sort(key=lambda p: p.center)
        for i, peak in enumerate(peaks):
            peak.peak_id = i
            peak.curve_id = curve.curve_id
        return peaks

    def _find_candidates(self, curve: Curve) -> List[Peak]:
        info = PeakDetector.find_peaks(curve.x_values, curve.y_values,
                                       threshold=self.peak_threshold,
                                       min_distance=self.min_peak_distance,
                                       smoothing_window=self.smoothing_window,
                                       smoothing_method=self.smoothing_method)
        peaks = []
        for item in info:
            fwhm = max(item['width_half'], 2.0 * curve.sampling_interval)
            peak = Peak(center=item['x'], amplitude=max(item['y'], 0.0), fwhm=fwhm,
                        left_hwhm=item['left_hwhm'], right_hwhm=item['right_hwhm'],
                        detection_algorithm="multi_peak",
                        confidence=min(1.0, item['prominence'] / max(curve.y_max - curve.y_min, 1e-12)))
            peak.metadata['prominence'] = item['prominence']
            self._clip_boundaries(peak, curve)
            peaks.append(peak)
        return peaks

    def _complete_candidate(self, peak: Peak, curve: Curve) -> Peak:
        if peak.fwhm <= 0:
            index = curve.index_of(peak.center)
            left, right = width_crossings(curve.x_values, curve.y_values, index, 0.5)
            peak.left_hwhm, peak.right_hwhm = left, right
            peak.fwhm = max(left + right, 2.0 * curve.sampling_interval)
            peak.hwhm = peak.fwhm / 2.0
            peak.sigma = peak.fwhm / FWHM_FACTOR
        if peak.amplitude <= 0:
            peak.amplitude = max(curve.get_intensity_at(peak.center), 0.0)
        if not peak.detection_algorithm:
            peak.detection_algorithm = "candidate"
        self._clip_boundaries(peak, curve)
        return peak

    @staticmethod
    def _clip_boundaries(peak: Peak, curve: Curve):
        peak.center = min(max(peak.center, curve.x_min), curve.x_max)
        peak.set_boundaries(max(peak.center - peak.fwhm, curve.x_min),
                            min(peak.center + peak.fwhm, curve.x_max))

    def _resolve_shoulders(self, peaks: List[Peak], curve: Curve) -> List[Peak]:
        noise = max(curve.noise_level, 1e-12)
        resolved = []
        for group in group_overlapping_peaks(peaks):
            cluster = [peaks[i] for i in group]
            start, end = fit_window(cluster, curve)
            x, y = curve.slice(start, end)
            shapes = [PeakShapeParams(GAUSSIAN, [p.amplitude, p.center, max(p.sigma, curve.sampling_interval)])
                      for p in cluster]
            try:
                current = self.engine.fit_shapes(x, y, shapes, algorithm=self.algorithm)
            except FIT_ERRORS as exc:
                logger.debug("cluster at %.4g left unresolved: %s", cluster[0].center, exc)
                resolved.extend(cluster)
                continue

            while (len(current['shapes']) < self.max_components
                   and current['rmse'] > self.shoulder_noise_ratio * noise):
                better = self._try_split(x, y, current, curve)
                if better is None:
                    break
                logger.debug("shoulder split: %d -> %d components (BIC %.1f -> %.1f)",
                             len(current['shapes']), len(better['shapes']),
                             current['bic'], better['bic'])
                current = better

            if len(current['shapes']) == len(cluster):
                resolved.extend(cluster)
                continue
            for shape in current['shapes']:
                peak = Peak(center=shape.center, amplitude=shape.amplitude,
                            fwhm=shape.fwhm(), detection_algorithm="multi_peak_shoulder",
                            confidence=0.8)
                peak.metadata['shoulder_resolved'] = True
                self._clip_boundaries(peak, curve)
                resolved.append(peak)
        return resolved

    def _split_starts(self, x, y, current):
        shapes = current['shapes']
        for j, shape in enumerate(shapes):
            amplitude, center, sigma = shape.parameters
            others = [s.parameters for k, s in enumerate(shapes) if k != j]
            for offset in self.SPLIT_OFFSETS:
                for left_width, right_width in self.SPLIT_WIDTHS:
                    yield others + [
                        np.array([0.6 * amplitude, center - offset * sigma, sigma * left_width]),
                        np.array([0.6 * amplitude, center + offset * sigma, sigma * right_width]),
                    ]
        residuals = current['residuals']
        index = int(np.argmax(residuals))
        sigma = float(np.median([s.parameters[2] for s in shapes])) / 2.0
        yield [s.parameters for s in shapes] + [
            np.array([max(residuals[index], 0.0), x[index], sigma])
        ]

    def _try_split(self, x, y, current, curve):
        spacing = 2.0 * curve.sampling_interval
        best = None
        for start in self._split_starts(x, y, current):
            shapes = [PeakShapeParams(GAUSSIAN, p) for p in start]
            try:
                result = self.engine.fit_shapes(x, y, shapes, algorithm=self.algorithm)
            except FIT_ERRORS:
                continue
            fitted = result['shapes']
            if any(s.amplitude <= 0 for s in fitted):
                continue
            if any(abs(a.center - b.center) < spacing for a, b in combinations(fitted, 2)):
                continue
            if best is None or result['bic'] < best['bic']:
                best = result
        if best is not None and current['bic'] - best['bic'] > self.shoulder_bic_margin:
            return best
        return None


class MultiPeakFitter:
    """
    Fit peaks on a curve, jointly where they overlap.

    Parameters
    ----------
    shape_type : str
        Shape used for overlapping groups and, unless overridden, single peaks
    algorithm : optional
        Optimizer settings (default: LevenbergMarquardt())
    min_window_points : int
        Windows with fewer samples are returned unchanged
    window_width_factor : float
        Fit window half-width in FWHMs around the outermost peaks
    global_search : bool
        Use differential evolution instead of ``algorithm``
    optimizer_config : dict, optional
        Global search settings (max_iterations, convergence_threshold)
    """

    def __init__(self, shape_type=GAUSSIAN, algorithm=None, min_window_points=10,
                 window_width_factor=2.0, global_search=False, optimizer_config=None):
        self.shape_type = shape_type
        self.min_window_points = min_window_points
        self.window_width_factor = window_width_factor
        self.engine = FittingEngine()
        if global_search:
            self.engine.set_fitting_options(GLOBAL_METHOD, optimizer_config)
            self.algorithm = None
            self.method_name = GLOBAL_METHOD
        else:
            self.algorithm = algorithm if algorithm is not None else LevenbergMarquardt()
            self.method_name = self.algorithm.name

    def fit(self, peaks: List[Peak], curve: Curve,
            shape_overrides: Optional[Dict[int, str]] = None) -> List[Peak]:
        """
        Fit ``peaks`` on ``curve``.

        Parameters
        ----------
        peaks : list of Peak
            Candidates (not modified)
        curve : Curve
        shape_overrides : dict, optional
            Index into ``peaks`` -> shape tag, honoured for isolated peaks

        Returns
        -------
        list of Peak
            Fitted peaks sorted by center; peaks whose fit failed are excluded
        """
        shape_overrides = shape_overrides or {}
        fitted = []
        for group_id, group in enumerate(group_overlapping_peaks(peaks)):
            members = [peaks[i] for i in group]
            if len(members) == 1:
                shape_type = shape_overrides.get(group[0], self.shape_type)
                result = self._fit_single(members[0], curve, shape_type)
                if result is not None:
                    fitted.append(result)
                continue
            fitted.extend(self._fit_group(members, curve, group_id))
        fitted.sort(key=lambda p: p.center)
        return fitted

    def _window(self, peaks, curve):
        start, end = fit_window(peaks, curve, self.window_width_factor)
        return curve.slice(start, end)

    def _fit_single(self, peak: Peak, curve: Curve, shape_type: str) -> Optional[Peak]:
        x, y = self._window([peak], curve)
        if len(x) < self.min_window_points:
            logger.debug("peak at %.4g: window has %d samples, left unfitted", peak.center, len(x))
            return peak.copy()
        try:
            result = self.engine.fit_shapes(x, y, [peak.shape_params(shape_type)],
                                            algorithm=self.algorithm)
        except FIT_ERRORS as exc:
            logger.warning("fit of peak at %.4g failed, peak excluded: %s", peak.center, exc)
            return None
        return self._to_peak(peak, result, 0, len(x), joint=False)

    def _fit_group(self, members: List[Peak], curve: Curve, group_id: int) -> List[Peak]:
        x, y = self._window(members, curve)
        if len(x) < self.min_window_points:
            return [peak.copy() for peak in members]
        shapes = [peak.shape_params(self.shape_type) for peak in members]
        try:
            result = self.engine.fit_shapes(x, y, shapes, algorithm=self.algorithm)
        except FIT_ERRORS as exc:
            logger.warning("joint fit of %d peaks at %.4g failed (%s); fitting individually",
                           len(members), members[0].center, exc)
            singles = [self._fit_single(peak, curve, self.shape_type) for peak in members]
            return [peak for peak in singles if peak is not None]

        logger.debug("joint fit of %d peaks: R²=%.4f", len(members), result['r_squared'])
        fitted = []
        for index, peak in enumerate(members):
            new_peak = self._to_peak(peak, result, index, len(x), joint=True)
            new_peak.metadata['fit_group'] = group_id
            fitted.append(new_peak)
        return fitted

    def _to_peak(self, peak: Peak, result, index: int, n_points: int, joint: bool) -> Peak:
        shapes = result['shapes']
        offset = sum(s.definition.parameter_count for s in shapes[:index])
        shape = shapes[index]
        errors = result['parameter_errors'][offset:offset + shape.definition.parameter_count]

        new_peak = peak.copy()
        new_peak.apply_shape(shape, errors=errors, rsquared=result['r_squared'],
                             rss=result['ss_res'], n_points=n_points)
        new_peak.metadata.update({
            'multi_peak_fitting': joint,
            'fitting_method': self.method_name,
            'shape_type': shape.shape_type,
            'iterations': result['iterations'],
            'converged': result['converged'],
            'fit_bic': result['bic'],
            'fit_window_points': n_points,
        })
        return new_peak
