"""
Result Analyzer Module
======================

This module provides goodness-of-fit statistics and per-peak summaries for
fitted results.

Classes
-------
ResultAnalyzer
    Static methods for fit statistics, peak areas and peak statistics
"""

import numpy as np


class ResultAnalyzer:
    """
    Result analysis tools for fitted peaks.

    Provides static methods for:
    - Goodness-of-fit statistics (R², adjusted R², RMSE, reduced χ², AIC, BIC)
    - Peak areas from each shape's closed form
    - Per-peak statistics (FWHM, area %, height %)

    All methods are static and can be called directly on the class.

    Methods
    -------
    calculate_fit_statistics(y, y_fit, n_params)
        Statistics dictionary for one fit
    calculate_peak_areas(shapes)
        Closed-form areas for a list of PeakShapeParams
    calculate_peak_statistics(y, shapes)
        Statistics for every fitted peak

    Examples
    --------
    >>> from peakresolve.fitting import ResultAnalyzer
    >>> stats = ResultAnalyzer.calculate_fit_statistics(y, y_fit, n_params=6)
    >>> stats['r_squared'], stats['bic']
    >>> for peak in ResultAnalyzer.calculate_peak_statistics(y, shapes):
    ...     print(f"Peak {peak['peak_number']}: Area = {peak['area']:.2f}, "
    ...           f"FWHM = {peak['fwhm']:.3f}")
    """

    @staticmethod
    def calculate_fit_statistics(y, y_fit, n_params):
        """
        Goodness-of-fit statistics.

        Parameters
        ----------
        y : array_like
            Observed intensities
        y_fit : array_like
            Model intensities
        n_params : int
            Number of fitted parameters

        Returns
        -------
        dict
            residuals, ss_res, r_squared, adj_r_squared, rmse,
            reduced_chi_squared, aic and bic. All values are finite; R² is 0
            for a flat signal.
        """
        y = np.asarray(y, dtype=float)
        y_fit = np.asarray(y_fit, dtype=float)
        residuals = y - y_fit
        n = len(y)
        p = int(n_params)

        ss_res = float(np.sum(residuals ** 2))
        ss_tot = float(np.sum((y - np.mean(y)) ** 2)) if n else 0.0
        r_squared = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0
        adj_r_squared = (1 - (ss_res / ss_tot) * (n - 1) / (n - p - 1)
                         if ss_tot > 0 and (n - p - 1) > 0 else r_squared)
        rmse = float(np.sqrt(ss_res / n)) if n else 0.0
        reduced_chi_squared = ss_res / (n - p) if (n - p) > 0 else ss_res

        # floor keeps the log finite for an exact fit
        log_term = n * np.log(max(ss_res / n, 1e-300)) if n else 0.0
        aic = log_term + 2 * p
        bic = log_term + p * np.log(max(n, 1))

        return {
            'residuals': residuals,
            'ss_res': ss_res,
            'r_squared': float(r_squared),
            'adj_r_squared': float(adj_r_squared),
            'rmse': rmse,
            'reduced_chi_squared': float(reduced_chi_squared),
            'aic': float(aic),
            'bic': float(bic),
        }

    @staticmethod
    def calculate_peak_areas(shapes):
        """
        Peak areas from each shape's closed-form relation.

        Parameters
        ----------
        shapes : list of PeakShapeParams

        Returns
        -------
        list of float
        """
        return [max(shape.area(), 0.0) for shape in shapes]

    @staticmethod
    def calculate_peak_statistics(y, shapes):
        """
        Per-peak statistics for a fitted set of shapes.

        Parameters
        ----------
        y : array_like
            Original intensities (for the height percentage)
        shapes : list of PeakShapeParams
            Fitted shapes

        Returns
        -------
        list of dict
            One dictionary per peak:
            - peak_number : int - Peak index (1-based)
            - shape_type : str
            - amplitude : float - Peak height
            - center : float - Peak center position
            - fwhm : float - Full width at half maximum
            - area : float - Peak area
            - area_percent : float - Percentage of the total area
            - height_percent : float - Percentage of the maximum intensity
        """
        y_max = float(np.max(y)) if len(y) else 0.0
        areas = ResultAnalyzer.calculate_peak_areas(shapes)
        total_area = sum(areas)

        peak_stats = []
        for i, (shape, area) in enumerate(zip(shapes, areas)):
            peak_stats.append({
                'peak_number': i + 1,
                'shape_type': shape.shape_type,
                'amplitude': shape.amplitude,
                'center': shape.center,
                'fwhm': shape.fwhm(),
                'area': area,
                'area_percent': (area / total_area * 100) if total_area > 0 else 0,
                'height_percent': (shape.amplitude / y_max * 100) if y_max > 0 else 0,
            })
        return peak_stats
