"""
Data Processor Module
=====================

This module provides the preprocessing tools shared by detection, overlap
resolution and fitting: smoothing, robust noise estimation and baseline
subtraction.

Classes
-------
DataProcessor
    Static methods for smoothing, noise estimation and baseline subtraction
"""

import numpy as np
from scipy.ndimage import uniform_filter1d
from scipy.signal import savgol_filter

SMOOTHING_METHODS = ("Savitzky-Golay", "Moving Average", "None")

# Consistency constant turning a median absolute deviation into a standard deviation
MAD_SCALE = 1.4826


class DataProcessor:
    """
    Data preprocessing tools for peak analysis.

    All methods are static and can be called directly on the class.

    Methods
    -------
    smooth_data(y, method, window_size, poly_order)
        Smooth intensities with Savitzky-Golay or a moving average
    estimate_noise(y)
        Robust noise standard deviation from second differences
    subtract_baseline(x, y, edge_fraction)
        Subtract a straight line through the trace edges

    Examples
    --------
    >>> from peakresolve.fitting import DataProcessor
    >>> y_smooth = DataProcessor.smooth_data(y, method="Savitzky-Golay", window_size=11)
    >>> noise = DataProcessor.estimate_noise(y)
    >>> y_corrected, baseline = DataProcessor.subtract_baseline(x, y)
    """

    @staticmethod
    def smooth_data(y, method="Savitzky-Golay", window_size=5, poly_order=2):
        """
        Smooth intensity data.

        Parameters
        ----------
        y : array_like
            Intensities to smooth
        method : str, optional
            "Savitzky-Golay", "Moving Average" or "None" (default: "Savitzky-Golay")
        window_size : int, optional
            Window size in samples (default: 5)
        poly_order : int, optional
            Polynomial order for Savitzky-Golay (default: 2)

        Returns
        -------
        ndarray
            Smoothed intensities, same length as the input

        Notes
        -----
        The Savitzky-Golay window is forced odd and shorter than the data, and
        the polynomial order is kept below the window size.
        """
        y = np.asarray(y, dtype=float)
        if method == "None" or window_size <= 1 or len(y) < 3:
            return y.copy()

        if method == "Savitzky-Golay":
            if window_size >= len(y):
                window_size = len(y) - 1 if len(y) % 2 == 0 else len(y) - 2
            if window_size % 2 == 0:
                window_size += 1
            window_size = max(window_size, 3)
            if poly_order >= window_size:
                poly_order = window_size - 1
            return savgol_filter(y, window_size, poly_order)

        elif method == "Moving Average":
            return uniform_filter1d(y, size=window_size)

        return y.copy()

    @staticmethod
    def estimate_noise(y):
        """
        Estimate the noise standard deviation of a trace.

        Uses the median absolute deviation of the second differences, which
        barely responds to smooth peak signal. For white noise the second
        difference has variance 6·σ².

        Parameters
        ----------
        y : array_like
            Intensities

        Returns
        -------
        float
            Noise standard deviation (0.0 for fewer than 3 samples)
        """
        y = np.asarray(y, dtype=float)
        if len(y) < 3:
            return 0.0
        second = np.diff(y, n=2)
        mad = np.median(np.abs(second - np.median(second)))
        return float(MAD_SCALE * mad / np.sqrt(6.0))

    @staticmethod
    def subtract_baseline(x, y, edge_fraction=0.1):
        """
        Linear baseline subtraction.

        Parameters
        ----------
        x : array_like
            Coordinates
        y : array_like
            Intensities
        edge_fraction : float, optional
            Share of the samples at each end used for the line fit (default: 0.1)

        Returns
        -------
        y_corrected : ndarray
            Baseline-corrected intensities
        baseline : ndarray
            The fitted baseline
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if len(x) < 2:
            return y.copy(), np.zeros_like(y)

        n_points = max(2, int(len(x) * edge_fraction))
        x_baseline = np.concatenate([x[:n_points], x[-n_points:]])
        y_baseline = np.concatenate([y[:n_points], y[-n_points:]])
        coeffs = np.polyfit(x_baseline, y_baseline, 1)
        baseline = np.polyval(coeffs, x)
        return y - baseline, baseline
