"""
Advanced Refinement Algorithms
==============================

Optional refinements run after the main fit. Each proposes a richer shape
for every fitted group and keeps it only when the Bayesian information
criterion on the same window drops by more than ``bic_margin``.

Classes
-------
AdvancedRefinement
    Shared propose / fit / compare loop
EMGRefinement
    Exponentially modified Gaussian, tau from the trailing-edge decay
BiGaussianRefinement
    Independent left/right widths from the measured half widths
GaussianMixtureBayesianFitter
    Two-component Gaussian mixture fitted by variational EM
"""

import logging
from typing import List, Optional

import numpy as np
from scipy.integrate import trapezoid
from scipy.special import digamma, gammaln

from peakresolve.data import Curve, Peak
from peakresolve.errors import ConfigError, DataError, MathError, ProcessError
from peakresolve.overlap.metrics import group_overlapping_peaks
from .data_processor import DataProcessor
from .fitting_engine import FittingEngine
from .multi_peak_fitter import fit_window
from .parameter_optimizer import LevenbergMarquardt
from .peak_functions import SQRT_2PI
from .peak_shapes import BIGAUSSIAN, EMG, GMG_BAYESIAN, PeakShapeParams, composite_model
from .result_analyzer import ResultAnalyzer

logger = logging.getLogger(__name__)


class AdvancedRefinement:
    """
    Base class for BIC-gated shape refinement.

    Parameters
    ----------
    bic_margin : float
        Required BIC decrease for the refined shapes to replace the current ones
    max_iterations : int
        Levenberg-Marquardt iteration cap for the refined fit
    window_width_factor : float
        Window half-width in FWHMs around the outermost peak of a group
    """

    name = "base"
    shape_type = None
    EXTRA_KEYS = ()

    def __init__(self, bic_margin=10.0, max_iterations=200, window_width_factor=2.0):
        self.bic_margin = bic_margin
        self.window_width_factor = window_width_factor
        self.algorithm = LevenbergMarquardt(max_iterations=max_iterations,
                                            convergence_threshold=1e-8)
        self.engine = FittingEngine()

    @classmethod
    def from_config(cls, config=None):
        config = config or {}
        keys = ("bic_margin", "max_iterations", "window_width_factor") + cls.EXTRA_KEYS
        return cls(**{key: config[key] for key in keys if key in config})

    def refine(self, peaks: List[Peak], curve: Curve) -> List[Peak]:
        """Refined copies of ``peaks``; groups that do not improve are kept as they are."""
        working = [peak.copy() for peak in peaks]
        refined = []
        for group in group_overlapping_peaks(working):
            members = [working[i] for i in group]
            refined.extend(self._refine_group(members, curve))
        refined.sort(key=lambda p: p.center)
        return refined

    def _refine_group(self, members: List[Peak], curve: Curve) -> List[Peak]:
        start, end = fit_window(members, curve, self.window_width_factor)
        x, y = curve.slice(start, end)
        current = [peak.shape_params() for peak in members]
        n_current = sum(len(s.parameters) for s in current)
        if len(x) <= n_current + len(members):
            return self._mark(members, False, 0.0)

        model, _, _ = composite_model([s.shape_type for s in current])
        flat = np.concatenate([s.parameters for s in current])
        baseline = ResultAnalyzer.calculate_fit_statistics(y, model(x, flat), n_current)

        try:
            proposal = self.propose(members, curve, x, y)
            if proposal is None:
                return self._mark(members, False, 0.0)
            result = self.fit(proposal, x, y)
        except (MathError, DataError, ProcessError) as exc:
            logger.debug("%s refinement near %.4g failed: %s", self.name, members[0].center, exc)
            return self._mark(members, False, 0.0)

        improvement = baseline['bic'] - result['bic']
        if improvement <= self.bic_margin:
            logger.debug("%s refinement near %.4g rejected (ΔBIC %.2f)",
                         self.name, members[0].center, improvement)
            return self._mark(members, False, improvement)

        offset = 0
        for peak, shape in zip(members, result['shapes']):
            count = len(shape.parameters)
            peak.apply_shape(shape, errors=result['parameter_errors'][offset:offset + count],
                             rsquared=result['r_squared'], rss=result['ss_res'],
                             n_points=len(x))
            peak.metadata['fit_bic'] = result['bic']
            peak.metadata.update(result.get('extra', {}))
            offset += count
        logger.info("%s refinement accepted for %d peak(s) near %.4g (ΔBIC %.1f)",
                    self.name, len(members), members[0].center, improvement)
        return self._mark(members, True, improvement)

    def _mark(self, members, accepted, improvement):
        for peak in members:
            peak.metadata.update({
                'advanced_algorithm': self.name,
                'advanced_refined': accepted,
                'bic_improvement': float(improvement),
            })
        return members

    def propose(self, members: List[Peak], curve: Curve, x, y) -> Optional[List[PeakShapeParams]]:
        raise NotImplementedError

    def fit(self, proposal: List[PeakShapeParams], x, y):
        return self.engine.fit_shapes(x, y, proposal, algorithm=self.algorithm)


class EMGRefinement(AdvancedRefinement):
    """EMG components, tau initialised from the decay of the trailing edge."""

    name = "emg_algorithm"
    shape_type = EMG

    @staticmethod
    def trailing_decay(peak: Peak, curve: Curve) -> float:
        """
        Exponential decay constant of the trailing edge between 50 % and 10 %
        of the apex, from a log-linear fit; falls back to sigma / 2.
        """
        fallback = max(peak.sigma, curve.sampling_interval) / 2.0
        index = curve.index_of(peak.center)
        apex = curve.y_values[index]
        if apex <= 0:
            return fallback
        tail = curve.y_values[index:]
        tail_x = curve.x_values[index:]
        mask = (tail <= 0.5 * apex) & (tail >= 0.1 * apex)
        if mask.sum() < 3:
            return fallback
        slope = np.polyfit(tail_x[mask], np.log(tail[mask]), 1)[0]
        if slope >= 0:
            return fallback
        return float(np.clip(-1.0 / slope, 0.05 * fallback, 10.0 * fallback))

    def propose(self, members, curve, x, y):
        proposal = []
        for peak in members:
            sigma = max(peak.sigma, curve.sampling_interval)
            tau = self.trailing_decay(peak, curve) if len(members) == 1 else sigma / 2.0
            proposal.append(PeakShapeParams(EMG, [peak.amplitude, peak.center, sigma, tau]))
        return proposal


class BiGaussianRefinement(AdvancedRefinement):
    """Bi-Gaussian components started from the measured half widths."""

    name = "bi_gaussian"
    shape_type = BIGAUSSIAN

    def propose(self, members, curve, x, y):
        return [peak.shape_params(BIGAUSSIAN) for peak in members]


class GaussianMixtureBayesianFitter(AdvancedRefinement):
    """
    Variational EM for a two-component Gaussian mixture per isolated peak.

    The baseline-corrected intensity acts as sample weight. A symmetric
    Dirichlet prior of concentration ``prior_strength`` regularizes the
    mixing weights; the variational lower bound is reported as
    ``bayesian_evidence``. Overlapping groups are left unchanged.
    """

    name = "gmg_bayesian"
    shape_type = GMG_BAYESIAN
    EXTRA_KEYS = ("prior_strength", "em_iterations", "convergence_threshold")

    def __init__(self, bic_margin=10.0, max_iterations=200, window_width_factor=2.0,
                 prior_strength=1.0, em_iterations=200, convergence_threshold=1e-6):
        super().__init__(bic_margin, max_iterations, window_width_factor)
        if prior_strength <= 0:
            raise ConfigError("prior_strength must be positive")
        self.prior_strength = prior_strength
        self.em_iterations = em_iterations
        self.convergence_threshold = convergence_threshold

    def propose(self, members, curve, x, y):
        if len(members) != 1:
            return None
        return [members[0].shape_params(GMG_BAYESIAN)]

    def fit(self, proposal, x, y):
        shape, evidence, iterations = self.variational_em(proposal[0], x, y)
        y_fit = shape.evaluate(x)
        stats = ResultAnalyzer.calculate_fit_statistics(y, y_fit, len(shape.parameters))
        result = {
            'shapes': [shape],
            'parameter_errors': np.zeros(len(shape.parameters)),
            'extra': {'bayesian_evidence': evidence, 'em_iterations': iterations},
        }
        result.update(stats)
        return result

    def variational_em(self, start: PeakShapeParams, x, y):
        """
        Returns
        -------
        shape : PeakShapeParams
            GMGBayesian shape built from the mixture
        evidence : float
            Variational lower bound on the log evidence
        iterations : int
        """
        corrected, _ = DataProcessor.subtract_baseline(x, y)
        weights = np.clip(corrected, 0.0, None)
        total = float(np.sum(weights))
        if total <= 0:
            raise DataError("no signal above the baseline for the mixture fit")

        dx = float(np.median(np.diff(x)))
        floor = 0.1 * dx ** 2
        amplitude, center, sigma = start.parameters[:3]
        means = np.array([center - 0.5 * sigma, center + 0.5 * sigma])
        variances = np.array([sigma ** 2, sigma ** 2])
        alpha0 = self.prior_strength
        alpha = np.full(2, alpha0 + total / 2.0)

        iterations = 0
        for iterations in range(1, self.em_iterations + 1):
            # expected log weights under the Dirichlet posterior
            log_pi = digamma(alpha) - digamma(alpha.sum())
            log_density = np.array([
                log_pi[k] - 0.5 * np.log(2 * np.pi * variances[k])
                - 0.5 * (x - means[k]) ** 2 / variances[k]
                for k in range(2)
            ])
            peak_log = np.max(log_density, axis=0)
            resp = np.exp(log_density - peak_log)
            resp /= resp.sum(axis=0)

            mass = (resp * weights).sum(axis=1)
            new_means = means.copy()
            new_variances = variances.copy()
            for k in range(2):
                if mass[k] > 0:
                    new_means[k] = float((resp[k] * weights) @ x / mass[k])
                    new_variances[k] = float((resp[k] * weights) @ (x - new_means[k]) ** 2 / mass[k]) + floor
            shift = np.max(np.abs(new_means - means)) + np.max(np.abs(np.sqrt(new_variances) - np.sqrt(variances)))
            means, variances = new_means, new_variances
            alpha = alpha0 + mass
            if shift < self.convergence_threshold * max(sigma, dx):
                break

        mixing = alpha / alpha.sum()
        log_likelihood = float(weights @ np.log(np.maximum(
            sum(mixing[k] * np.exp(-0.5 * (x - means[k]) ** 2 / variances[k])
                / np.sqrt(2 * np.pi * variances[k]) for k in range(2)), 1e-300)))
        dirichlet_term = (_log_beta(alpha) - _log_beta(np.full(2, alpha0)))
        evidence = log_likelihood / total + dirichlet_term / total

        area = float(trapezoid(weights, x))
        sigmas = np.sqrt(variances)
        heights = mixing * area / (sigmas * SQRT_2PI)
        main = int(np.argmax(mixing))
        other = 1 - main
        height = float(heights.sum())
        shape = PeakShapeParams(GMG_BAYESIAN, [
            height, means[main], sigmas[main], means[other] - means[main], sigmas[other],
            heights[other] / height if height > 0 else 0.0,
        ])
        return shape, float(evidence), iterations


def _log_beta(alpha):
    return float(np.sum(gammaln(alpha)) - gammaln(np.sum(alpha)))


ADVANCED_ALGORITHMS = {
    cls.name: cls
    for cls in (EMGRefinement, BiGaussianRefinement, GaussianMixtureBayesianFitter)
}


def create_advanced_algorithm(name, config=None):
    """Build an advanced refinement by name, raising ConfigError for unknown names."""
    try:
        cls = ADVANCED_ALGORITHMS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown advanced algorithm '{name}'. Available: {', '.join(sorted(ADVANCED_ALGORITHMS))}"
        ) from None
    return cls.from_config(config)
