"""
Stage components and the default registry.

Each component wraps one engine class behind the narrow
``process(data, config) -> ProcessingData`` interface:

=========================  ==========================  =========================
stage                      component name(s)           engine
=========================  ==========================  =========================
peak_detection             multi_peak, simple          MultiPeakDetector
overlap_analysis           standard                    overlap metrics
overlap_processing         none, fbf, sharpen_cwt,     OverlapResolver
                           emg_nlls, extreme_overlap,
                           auto
peak_shape_analysis        standard                    PeakShapeAnalyzer
fitting                    multi_peak                  MultiPeakFitter
parameter_optimization     emg_algorithm, bi_gaussian, advanced refinements
                           gmg_bayesian
post_processing            standard                    metadata and invariants
validation                 standard                    overall quality score
=========================  ==========================  =========================
"""

import logging
from typing import Any, Dict, List

import numpy as np

from peakresolve.data import Peak, ProcessingData
from peakresolve.errors import ConfigError
from peakresolve.fitting.advanced_algorithms import ADVANCED_ALGORITHMS, create_advanced_algorithm
from peakresolve.fitting.data_processor import SMOOTHING_METHODS, DataProcessor
from peakresolve.fitting.fitting_engine import GLOBAL_METHOD
from peakresolve.fitting.multi_peak_fitter import MultiPeakDetector, MultiPeakFitter, fit_window
from peakresolve.fitting.parameter_optimizer import algorithm_from_config
from peakresolve.fitting.peak_functions import SQRT_2PI
from peakresolve.fitting.peak_shapes import SHAPES, PeakShapeAnalyzer
from peakresolve.fitting.result_analyzer import ResultAnalyzer
from peakresolve.overlap.metrics import (
    chromatographic_resolution,
    estimate_snr,
    group_overlapping_peaks,
    overlap_degree,
)
from peakresolve.overlap.resolver import AUTO, PROCESSORS, OverlapResolver, select_method
from peakresolve.overlap.sharpen_cwt import SharpenCWTProcessor
from .component_registry import Component, ComponentDescriptor, ComponentRegistry, ComponentType

logger = logging.getLogger(__name__)

STANDARD = "standard"


class PeakDetectionComponent(Component):
    """Detect peaks, or complete pre-populated candidates."""

    def __init__(self, name, config):
        self.name = name
        config = dict(config)
        if name == "simple":
            config["resolve_shoulders"] = False
        self.detector = MultiPeakDetector.from_config(config)

    def validate_config(self, config):
        threshold = config.get("peak_threshold", self.detector.peak_threshold)
        if not 0 < threshold < 1:
            raise ConfigError("peak_threshold must be in (0, 1)")
        if config.get("min_peak_distance", self.detector.min_peak_distance) <= 0:
            raise ConfigError("min_peak_distance must be positive")
        if self.detector.smoothing_method not in SMOOTHING_METHODS:
            raise ConfigError(f"unknown smoothing method '{self.detector.smoothing_method}'")

    def process(self, data, config):
        peaks = self.detector.detect(data.curve, data.peaks or None)
        logger.info("peak detection (%s): %d peaks", self.name, len(peaks))
        result = data.with_peaks(peaks)
        result.intermediate_results['peak_detection'] = {'peak_count': len(peaks)}
        return result

    def quality(self, data):
        return float(len(data.peaks)), bool(data.peaks)


class OverlapAnalysisComponent(Component):
    """Group overlapping peaks and record overlap degree, SNR and the suggested method per group."""

    name = STANDARD

    def process(self, data, config):
        peaks = data.peaks
        groups = []
        for group_id, group in enumerate(group_overlapping_peaks(peaks)):
            members = [peaks[i] for i in group]
            for peak in members:
                peak.metadata['overlap_group'] = group_id
            groups.append({
                'group': group_id,
                'size': len(members),
                'center': float(np.mean([p.center for p in members])),
                'overlap_degree': overlap_degree(members),
                'snr': estimate_snr(members, data.curve),
                'recommended_method': select_method(members, data.curve),
            })
        analysis = {
            'overlap_ratio': overlap_degree(peaks),
            'snr': estimate_snr(peaks, data.curve),
            'overlapping_groups': sum(1 for g in groups if g['size'] > 1),
            'groups': groups,
        }
        logger.debug("overlap analysis: ratio %.3f, %d overlapping group(s)",
                     analysis['overlap_ratio'], analysis['overlapping_groups'])
        data.intermediate_results['overlap_analysis'] = analysis
        return data


class OverlapProcessingComponent(Component):
    """
    Run one overlap method over the candidates.

    The sharpened trace of ``sharpen_cwt`` is kept in the intermediate
    results; later stages still fit the original curve.
    """

    def __init__(self, name, config):
        self.name = name
        self.resolver = OverlapResolver(name, config)

    def process(self, data, config):
        processor = self.resolver.processor
        if isinstance(processor, SharpenCWTProcessor):
            peaks, sharpened = processor.process(data.peaks, data.curve)
            data.intermediate_results['sharpened_curve'] = sharpened
        else:
            peaks = self.resolver.resolve(data.peaks, data.curve)
        result = data.with_peaks(peaks)
        result.intermediate_results['overlap_processing'] = {'method': self.name,
                                                              'peak_count': len(peaks)}
        logger.info("overlap processing (%s): %d peaks", self.name, len(peaks))
        return result


class ShapeAnalysisComponent(Component):
    """Recommend a shape for each isolated peak from its smoothed profile."""

    name = STANDARD

    def process(self, data, config):
        recommendations: Dict[int, str] = {}
        if config.get("use_shape_analysis", True):
            curve = data.curve
            for group in group_overlapping_peaks(data.peaks):
                if len(group) != 1:
                    continue
                index = group[0]
                peak = data.peaks[index]
                start, end = fit_window([peak], curve, config.get("window_width_factor", 2.0))
                x, y = curve.slice(start, end)
                if len(x) < 5:
                    continue
                smoothed = DataProcessor.smooth_data(y, window_size=7)
                shape = PeakShapeAnalyzer.analyze_peak_shape(x, smoothed - np.min(smoothed))
                recommendations[index] = shape
                peak.metadata['recommended_shape'] = shape
        data.intermediate_results['shape_recommendations'] = recommendations
        logger.debug("shape analysis: %s", recommendations)
        return data


class FittingComponent(Component):
    """
    Joint fit of overlapping groups and single fits of isolated peaks.

    ``algorithm: "global"`` fits with differential evolution. Area and
    height shares of the fitted peaks are recorded under
    ``intermediate_results["fitting"]``.
    """

    def __init__(self, name, config):
        self.name = name
        method = config.get("algorithm", "levenberg_marquardt")
        global_search = method == GLOBAL_METHOD
        algorithm = None
        if not global_search:
            algorithm = algorithm_from_config(method, config.get("optimization"))
        self.fitter = MultiPeakFitter(
            shape_type=config.get("shape_type", "Gaussian"),
            algorithm=algorithm,
            min_window_points=config.get("min_window_points", 10),
            window_width_factor=config.get("window_width_factor", 2.0),
            global_search=global_search,
            optimizer_config=config.get("optimization"),
        )

    def validate_config(self, config):
        if self.fitter.shape_type not in SHAPES:
            raise ConfigError(f"unknown shape type '{self.fitter.shape_type}'")

    def process(self, data, config):
        overrides = {}
        if config.get("use_shape_analysis", True):
            overrides = data.intermediate_results.get('shape_recommendations', {})
        peaks = self.fitter.fit(data.peaks, data.curve, shape_overrides=overrides)
        logger.info("fitting (%s, %s): %d of %d peaks fitted", self.fitter.shape_type,
                    self.fitter.method_name, len(peaks), len(data.peaks))
        fitted = [p for p in peaks if p.fit_parameters]
        statistics = ResultAnalyzer.calculate_peak_statistics(
            data.curve.y_values, [p.shape_params() for p in fitted])
        for peak, stats in zip(fitted, statistics):
            peak.metadata['area_percent'] = stats['area_percent']
            peak.metadata['height_percent'] = stats['height_percent']
        result = data.with_peaks(peaks)
        result.intermediate_results['fitting'] = {
            'method': self.fitter.method_name,
            'peak_count': len(peaks),
            'peak_statistics': statistics,
        }
        return result

    def quality(self, data):
        if not data.peaks:
            return 0.0, False
        return float(np.mean([p.rsquared for p in data.peaks])), all(p.amplitude > 0 for p in data.peaks)


class AdvancedAlgorithmComponent(Component):
    """BIC-gated refinement with an advanced shape."""

    def __init__(self, name, config):
        self.name = name
        self.algorithm = create_advanced_algorithm(name, config)

    def process(self, data, config):
        return data.with_peaks(self.algorithm.refine(data.peaks, data.curve))


class PostProcessingComponent(Component):
    """
    Enforce peak invariants and attach separation and quality metadata.

    Peaks with a non-finite center, a center off the curve or an amplitude
    not above ``min_amplitude`` are dropped. Each remaining peak gets
    ``quality_score``, ``quality_grade``, ``min_separation``, ``resolution``
    and ``is_resolved`` (resolution against the nearest neighbour).
    Peaks whose extreme-overlap fit was rejected have their quality score
    multiplied by ``rejected_penalty``.
    """

    name = STANDARD

    @staticmethod
    def grade(score):
        if score >= 0.9:
            return "A"
        if score >= 0.75:
            return "B"
        if score >= 0.5:
            return "C"
        return "D"

    def process(self, data, config):
        curve = data.curve
        min_amplitude = config.get("min_amplitude", 0.0)
        threshold = config.get("resolution_threshold", 1.5)
        penalty = config.get("rejected_penalty", 0.5)

        kept: List[Peak] = []
        for peak in data.peaks:
            if not (np.isfinite(peak.center) and np.isfinite(peak.amplitude)):
                logger.warning("dropping peak with non-finite parameters")
                continue
            if not curve.x_min <= peak.center <= curve.x_max:
                logger.warning("dropping peak at %.4g outside the curve", peak.center)
                continue
            if peak.amplitude <= min_amplitude:
                logger.warning("dropping peak at %.4g with amplitude %.3g", peak.center, peak.amplitude)
                continue
            self._recompute(peak)
            kept.append(peak)

        kept.sort(key=lambda p: p.center)
        for index, peak in enumerate(kept):
            neighbours = [kept[j] for j in (index - 1, index + 1) if 0 <= j < len(kept)]
            if neighbours:
                nearest = min(neighbours, key=lambda other: abs(other.center - peak.center))
                separation = abs(nearest.center - peak.center)
                resolution = chromatographic_resolution(peak, nearest)
            else:
                separation = resolution = float("inf")
            score = peak.quality_score()
            if peak.metadata.get('extreme_overlap_rejected'):
                score *= penalty
            peak.peak_id = index
            peak.curve_id = curve.curve_id
            peak.metadata.update({
                'quality_score': score,
                'quality_grade': self.grade(score),
                'min_separation': separation,
                'resolution': resolution,
                'is_resolved': bool(resolution >= threshold),
            })
        return data.with_peaks(kept)

    @staticmethod
    def _recompute(peak: Peak):
        if peak.fit_parameters:
            peak.apply_shape(peak.shape_params(), errors=peak.fit_parameter_errors)
            return
        if peak.fwhm <= 0:
            return
        if peak.area <= 0:
            peak.area = peak.amplitude * peak.sigma * SQRT_2PI
        peak.set_boundaries(min(peak.left_boundary, peak.center - peak.left_hwhm),
                            max(peak.right_boundary, peak.center + peak.right_hwhm))


class ValidationComponent(Component):
    """
    Overall quality of the final peak list.

    quality = mean of
      - count term: 1 when 0 < n <= max_peaks, else 0
      - amplitude term: fraction of peaks at least ``amplitude_noise_ratio``
        times the curve noise
      - mean R² of the peaks
    """

    name = STANDARD

    def __init__(self, config):
        self.threshold = config.get("quality_threshold", 0.8)

    def validate_config(self, config):
        if not 0 <= self.threshold <= 1:
            raise ConfigError("quality_threshold must be in [0, 1]")

    def process(self, data, config):
        peaks = data.peaks
        noise = data.curve.noise_level
        count = 1.0 if 0 < len(peaks) <= config.get("max_peaks", 50) else 0.0
        if peaks:
            ratio = config.get("amplitude_noise_ratio", 3.0)
            amplitude = float(np.mean([p.amplitude >= ratio * noise for p in peaks]))
            rsquared = float(np.mean([max(p.rsquared, 0.0) for p in peaks]))
        else:
            amplitude = rsquared = 0.0
        quality = (count + amplitude + rsquared) / 3.0
        data.intermediate_results['validation'] = {
            'quality_score': quality,
            'count_score': count,
            'amplitude_score': amplitude,
            'rsquared_score': rsquared,
            'quality_threshold': self.threshold,
            'passed': quality >= self.threshold,
        }
        logger.info("validation: quality %.3f (count %.2f, amplitude %.2f, R² %.3f), threshold %.2f",
                    quality, count, amplitude, rsquared, self.threshold)
        return data

    def quality(self, data):
        report = data.intermediate_results.get('validation', {})
        score = report.get('quality_score', 0.0)
        return score, score >= self.threshold


def _descriptor(component_type, name, description, capabilities=(), schema=None):
    return ComponentDescriptor(component_type=component_type, name=name, description=description,
                               capabilities=tuple(capabilities), configuration_schema=schema or {})


def register_default_components(registry: ComponentRegistry) -> ComponentRegistry:
    detection_schema = {"peak_threshold": "float in (0, 1)", "min_peak_distance": "float > 0",
                        "smoothing_window": "int >= 0",
                        "smoothing_method": "Savitzky-Golay, Moving Average or None"}
    registry.register(
        _descriptor(ComponentType.PEAK_DETECTION, "multi_peak",
                    "Local maxima with BIC-gated shoulder splitting", ("detect", "shoulders"),
                    detection_schema),
        lambda config: PeakDetectionComponent("multi_peak", config))
    registry.register(
        _descriptor(ComponentType.PEAK_DETECTION, "simple", "Local maxima only", ("detect",),
                    detection_schema),
        lambda config: PeakDetectionComponent("simple", config))

    registry.register(
        _descriptor(ComponentType.OVERLAP_ANALYSIS, STANDARD, "Overlap groups, degree and SNR",
                    ("analyze",)),
        lambda config: OverlapAnalysisComponent())

    for method in sorted(list(PROCESSORS) + [AUTO]):
        registry.register(
            _descriptor(ComponentType.OVERLAP_PROCESSING, method, f"Overlap resolution: {method}",
                        ("resolve-overlap",)),
            lambda config, method=method: OverlapProcessingComponent(method, config))

    registry.register(
        _descriptor(ComponentType.SHAPE_ANALYSIS, STANDARD, "Shape recommendation for isolated peaks",
                    ("analyze",), {"use_shape_analysis": "bool"}),
        lambda config: ShapeAnalysisComponent())

    registry.register(
        _descriptor(ComponentType.FITTING, "multi_peak", "Joint least-squares fit of overlap groups",
                    ("fit",), {"shape_type": "shape tag", "algorithm": "optimizer name or global",
                               "optimization": "optimizer settings"}),
        lambda config: FittingComponent("multi_peak", config))

    for name in sorted(ADVANCED_ALGORITHMS):
        registry.register(
            _descriptor(ComponentType.OPTIMIZATION, name, f"Advanced refinement: {name}",
                        ("optimize",), {"bic_margin": "float", "max_iterations": "int"}),
            lambda config, name=name: AdvancedAlgorithmComponent(name, config))

    registry.register(
        _descriptor(ComponentType.POST_PROCESSING, STANDARD, "Invariants, grades and resolution",
                    ("post-process",), {"min_amplitude": "float", "resolution_threshold": "float",
                                      "rejected_penalty": "float in [0, 1]"}),
        lambda config: PostProcessingComponent())

    registry.register(
        _descriptor(ComponentType.VALIDATION, STANDARD, "Overall quality against a threshold",
                    ("validate",), {"quality_threshold": "float in [0, 1]", "max_peaks": "int"}),
        ValidationComponent)
    return registry


def create_default_registry() -> ComponentRegistry:
    """Registry with every built-in component, frozen."""
    return register_default_components(ComponentRegistry()).freeze()
