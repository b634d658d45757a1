"""Peak detection module for curve fitting.

Provides local-maximum peak detection with width estimates at half height.
"""

import numpy as np
from scipy.signal import find_peaks, peak_widths

from .data_processor import DataProcessor


class PeakDetector:
    """Local-maximum peak detection on an optionally smoothed trace."""

    @staticmethod
    def find_peaks(x, y, threshold=0.1, min_distance=0.5, smoothing_window=7,
                   smoothing_method="Savitzky-Golay"):
        """Detect peaks above a relative height and at least a distance apart.

        Args:
            x: X-axis data (ascending)
            y: Y-axis data
            threshold: Minimum peak height above the minimum, as a fraction of the data range
            min_distance: Minimum distance between peaks, in x units
            smoothing_window: Smoothing window in samples (0 or 1 = no smoothing)
            smoothing_method: "Savitzky-Golay" or "Moving Average"

        Returns:
            List of dictionaries containing peak information:
                - index: Peak index in array
                - x: Peak x position
                - y: Peak y value on the smoothed trace
                - prominence: Peak prominence
                - width_half: Peak width at half maximum
                - left_hwhm, right_hwhm: Apex-to-half-height distances
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if len(y) < 3:
            return []

        if smoothing_window and smoothing_window > 1:
            y_smooth = DataProcessor.smooth_data(y, smoothing_method, smoothing_window, 2)
        else:
            y_smooth = y.copy()

        y_range = np.max(y_smooth) - np.min(y_smooth)
        if y_range <= 0:
            return []
        min_height = np.min(y_smooth) + y_range * threshold
        dx = float(np.median(np.diff(x)))
        distance = max(1, int(round(min_distance / dx))) if dx > 0 else 1

        peaks, properties = find_peaks(y_smooth, height=min_height, distance=distance,
                                       prominence=0)
        if len(peaks) == 0:
            return []

        _, _, left_ips, right_ips = peak_widths(y_smooth, peaks, rel_height=0.5)
        index = np.arange(len(x))

        peak_info = []
        for i, peak_idx in enumerate(peaks):
            left_x = np.interp(left_ips[i], index, x)
            right_x = np.interp(right_ips[i], index, x)
            info = {
                'index': int(peak_idx),
                'x': float(x[peak_idx]),
                'y': float(y_smooth[peak_idx]),
                'prominence': float(properties['prominences'][i]),
                'width_half': float(right_x - left_x),
                'left_hwhm': float(x[peak_idx] - left_x),
                'right_hwhm': float(right_x - x[peak_idx]),
            }
            peak_info.append(info)

        return peak_info
