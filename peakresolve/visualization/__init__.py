"""Visualization module for peakresolve."""

from peakresolve.visualization.fit_plot import plot_fitted_peaks

__all__ = [
    'plot_fitted_peaks',
]
