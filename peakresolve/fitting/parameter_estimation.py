"""Parameter estimation module for curve fitting.

Provides initial parameter estimates for every supported peak shape from a
Gaussian-like (amplitude, center, sigma) estimate.
"""

from .peak_functions import FWHM_FACTOR
from .peak_shapes import WIDTH_FLOOR, PeakShapeParams, get_shape


class ParameterEstimator:
    """Estimates initial parameters for different peak types."""

    @staticmethod
    def initial_parameters(shape_type, amplitude, center, sigma,
                           left_hwhm=0.0, right_hwhm=0.0):
        """Starting parameters of any shape from a Gaussian-like estimate.

        Args:
            shape_type: Shape tag
            amplitude: Peak height estimate
            center: Peak position estimate
            sigma: Gaussian-equivalent width estimate
            left_hwhm: Measured left half width (used by BiGaussian)
            right_hwhm: Measured right half width (used by BiGaussian)

        Returns:
            PeakShapeParams with default bounds
        """
        get_shape(shape_type)
        sigma = max(float(sigma), WIDTH_FLOOR)
        amplitude = max(float(amplitude), 0.0)
        if left_hwhm > 0 and right_hwhm > 0:
            half_factor = FWHM_FACTOR / 2.0
            sigma_left, sigma_right = left_hwhm / half_factor, right_hwhm / half_factor
        else:
            sigma_left = sigma_right = sigma

        starts = {
            "Gaussian": [amplitude, center, sigma],
            "Lorentzian": [amplitude, center, sigma * FWHM_FACTOR / 2.0],
            "PseudoVoigt": [amplitude, center, sigma, 0.5],
            # tau starts at half the width
            "EMG": [amplitude, center, sigma, sigma / 2.0],
            "BiGaussian": [amplitude, center, sigma_left, sigma_right],
            "VoigtExpTail": [amplitude, center, sigma, sigma / 4.0, sigma],
            "PearsonIV": [amplitude, center, sigma * 1.5, 2.0, 0.0],
            "NLC": [amplitude, center, sigma, 0.0, 0.0, 0.0],
            "GMGBayesian": [amplitude, center, sigma, 0.0, sigma, 0.0],
        }
        return PeakShapeParams(shape_type, starts[shape_type])

