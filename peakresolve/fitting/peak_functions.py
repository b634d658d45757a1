"""Peak function definitions for curve fitting.

This module provides the vectorized peak shape functions used throughout
peakresolve, plus analytic gradients for the shapes that the optimizers
differentiate most often (Gaussian, Lorentzian, EMG).
"""

import numpy as np
from scipy.special import erfc, erfcx

FWHM_FACTOR = 2.0 * np.sqrt(2.0 * np.log(2.0))
SQRT_2PI = np.sqrt(2.0 * np.pi)
SQRT_HALF_PI = np.sqrt(np.pi / 2.0)
TAIL_FRACTION = 0.1


def gaussian_peak(x, amplitude, center, sigma):
    """Gaussian peak function.

    Args:
        x: Independent variable
        amplitude: Peak height
        center: Peak center position
        sigma: Standard deviation

    Returns:
        Array of y values
    """
    return amplitude * np.exp(-0.5 * ((x - center) / sigma) ** 2)


def lorentzian_peak(x, amplitude, center, gamma):
    """Lorentzian peak function.

    Args:
        x: Independent variable
        amplitude: Peak height
        center: Peak center position
        gamma: Half width at half maximum

    Returns:
        Array of y values
    """
    return amplitude / (1 + ((x - center) / gamma) ** 2)


def pseudo_voigt_peak(x, amplitude, center, sigma, eta):
    """Pseudo-Voigt: linear mix of a Gaussian and a Lorentzian of equal FWHM.

    Args:
        x: Independent variable
        amplitude: Peak height
        center: Peak center position
        sigma: Gaussian standard deviation; the Lorentzian HWHM is sigma·√(2 ln 2)
        eta: Lorentzian fraction, 0..1

    Returns:
        Array of y values
    """
    gamma = sigma * FWHM_FACTOR / 2.0
    eta = np.clip(eta, 0.0, 1.0)
    return amplitude * (eta * lorentzian_peak(x, 1.0, center, gamma)
                        + (1 - eta) * gaussian_peak(x, 1.0, center, sigma))


def exponentially_modified_gaussian(x, amplitude, center, sigma, tau):
    """Exponentially Modified Gaussian (EMG).

    Gaussian of height ``amplitude`` convolved with a unit-area exponential
    decay of time constant ``tau``. Evaluated through ``erfcx`` where the
    plain ``exp * erfc`` product would overflow.

    Args:
        x: Independent variable
        amplitude: Height of the unmodified Gaussian
        center: Gaussian center position
        sigma: Gaussian width
        tau: Exponential time constant

    Returns:
        Array of y values
    """
    x = np.asarray(x, dtype=float)
    u = x - center
    ratio = sigma / tau
    z = (ratio - u / sigma) / np.sqrt(2.0)
    gauss = np.exp(-0.5 * (u / sigma) ** 2)

    with np.errstate(over="ignore", invalid="ignore"):
        upper = erfcx(np.maximum(z, 0.0)) * gauss
        lower = np.exp(np.minimum(0.5 * ratio ** 2 - u / tau, 0.0)) * erfc(np.minimum(z, 0.0))
    shape = np.where(z >= 0, upper, lower)
    return amplitude * ratio * SQRT_HALF_PI * shape


def bigaussian_peak(x, amplitude, center, sigma_left, sigma_right):
    """Bi-Gaussian function with different widths on each side.

    Args:
        x: Independent variable
        amplitude: Peak height
        center: Peak center position
        sigma_left: Left-side width
        sigma_right: Right-side width

    Returns:
        Array of y values
    """
    x = np.asarray(x, dtype=float)
    sigma = np.where(x <= center, sigma_left, sigma_right)
    return amplitude * np.exp(-0.5 * ((x - center) / sigma) ** 2)


def voigt_exponential_tail_peak(x, amplitude, center, sigma, gamma, tau):
    """Voigt profile with an additive exponential tail on the high side.

    The Voigt part uses the Thompson-Cox-Hastings pseudo-Voigt. The tail
    is ``TAIL_FRACTION * amplitude * exp(-(x - center) / tau)`` for
    ``x > center``, faded in by ``1 - gaussian`` so the profile stays
    continuous at the center.

    Args:
        x: Independent variable
        amplitude: Peak height of the Voigt part
        center: Peak center position
        sigma: Gaussian width
        gamma: Lorentzian HWHM
        tau: Tail decay constant

    Returns:
        Array of y values
    """
    x = np.asarray(x, dtype=float)
    fwhm, eta = voigt_fwhm_and_eta(sigma, gamma)
    voigt = amplitude * (eta * lorentzian_peak(x, 1.0, center, fwhm / 2.0)
                         + (1 - eta) * gaussian_peak(x, 1.0, center, fwhm / FWHM_FACTOR))
    u = x - center
    with np.errstate(over="ignore"):
        tail = np.where(
            u > 0,
            TAIL_FRACTION * amplitude * np.exp(-np.maximum(u, 0.0) / tau)
            * (1.0 - gaussian_peak(x, 1.0, center, sigma)),
            0.0,
        )
    return voigt + tail


def voigt_fwhm_and_eta(sigma, gamma):
    """Thompson-Cox-Hastings total FWHM and Lorentzian fraction."""
    f_g = FWHM_FACTOR * sigma
    f_l = 2.0 * gamma
    fwhm = (f_g ** 5 + 2.69269 * f_g ** 4 * f_l + 2.42843 * f_g ** 3 * f_l ** 2
            + 4.47163 * f_g ** 2 * f_l ** 3 + 0.07842 * f_g * f_l ** 4 + f_l ** 5) ** 0.2
    ratio = f_l / fwhm
    eta = 1.36603 * ratio - 0.47719 * ratio ** 2 + 0.11116 * ratio ** 3
    return fwhm, np.clip(eta, 0.0, 1.0)


def pearson_iv_peak(x, amplitude, center, width, shape_m, skew_nu):
    """Pearson type IV peak, normalized so that ``center`` is the mode.

    Args:
        x: Independent variable
        amplitude: Height at the mode
        center: Mode position
        width: Scale parameter
        shape_m: Tail exponent (heavier tails for small m), > 0.5
        skew_nu: Skewness parameter (0 gives a symmetric Pearson VII)

    Returns:
        Array of y values
    """
    x = np.asarray(x, dtype=float)
    t0 = -skew_nu / (2.0 * shape_m)
    t = (x - center) / width + t0
    log_ratio = (-shape_m * (np.log1p(t ** 2) - np.log1p(t0 ** 2))
                 - skew_nu * (np.arctan(t) - np.arctan(t0)))
    return amplitude * np.exp(log_ratio)


def nlc_peak(x, amplitude, center, sigma, c1, c2, c3):
    """Gaussian with a cubic multiplicative correction (non-linear curve).

    The correction ``1 + c1·u + c2·u² + c3·u³`` (u = (x - center)/sigma) is
    clipped at zero so the profile never turns negative.
    """
    u = (np.asarray(x, dtype=float) - center) / sigma
    correction = np.maximum(1.0 + c1 * u + c2 * u ** 2 + c3 * u ** 3, 0.0)
    return gaussian_peak(x, amplitude, center, sigma) * correction


def gaussian_mixture_peak(x, amplitude, center, sigma, offset, sigma2, weight):
    """Two-component Gaussian mixture treated as a single peak.

    Args:
        x: Independent variable
        amplitude: Overall height scale
        center: Center of the main component
        sigma: Width of the main component
        offset: Position of the second component relative to ``center``
        sigma2: Width of the second component
        weight: Height fraction of the second component, 0..1

    Returns:
        Array of y values
    """
    weight = np.clip(weight, 0.0, 1.0)
    return amplitude * ((1 - weight) * gaussian_peak(x, 1.0, center, sigma)
                        + weight * gaussian_peak(x, 1.0, center + offset, sigma2))


def gaussian_gradients(x, amplitude, center, sigma):
    """Partial derivatives of the Gaussian, columns (amplitude, center, sigma)."""
    u = np.asarray(x, dtype=float) - center
    g = np.exp(-0.5 * (u / sigma) ** 2)
    return np.column_stack([
        g,
        amplitude * g * u / sigma ** 2,
        amplitude * g * u ** 2 / sigma ** 3,
    ])


def lorentzian_gradients(x, amplitude, center, gamma):
    """Partial derivatives of the Lorentzian, columns (amplitude, center, gamma)."""
    u = np.asarray(x, dtype=float) - center
    q = 1.0 / (1.0 + (u / gamma) ** 2)
    return np.column_stack([
        q,
        amplitude * q ** 2 * 2.0 * u / gamma ** 2,
        amplitude * q ** 2 * 2.0 * u ** 2 / gamma ** 3,
    ])


def emg_gradients(x, amplitude, center, sigma, tau):
    """Analytic partial derivatives of the EMG, columns (amplitude, center, sigma, tau).

    With u = x - center and G = exp(-u²/2σ²):
        ∂f/∂c = f/τ - A·G/τ
        ∂f/∂σ = f·(1/σ + σ/τ²) - A·(σ/τ)·(1/τ + u/σ²)·G
        ∂f/∂τ = f·(u/τ² - σ²/τ³ - 1/τ) + A·σ²·G/τ³
    """
    u = np.asarray(x, dtype=float) - center
    f = exponentially_modified_gaussian(x, amplitude, center, sigma, tau)
    g = np.exp(-0.5 * (u / sigma) ** 2)
    d_amp = f / amplitude if amplitude != 0 else exponentially_modified_gaussian(x, 1.0, center, sigma, tau)
    d_center = f / tau - amplitude * g / tau
    d_sigma = f * (1.0 / sigma + sigma / tau ** 2) - amplitude * (sigma / tau) * (1.0 / tau + u / sigma ** 2) * g
    d_tau = f * (u / tau ** 2 - sigma ** 2 / tau ** 3 - 1.0 / tau) + amplitude * sigma ** 2 * g / tau ** 3
    return np.column_stack([d_amp, d_center, d_sigma, d_tau])
