"""Diagnostic plot of a curve and its fitted peaks.

Draws the measured trace, every fitted component and their sum.
"""

from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np

from peakresolve.data import Curve, Peak


def plot_fitted_peaks(
    curve: Curve,
    peaks: Sequence[Peak],
    ax: Optional[plt.Axes] = None,
    show_components: bool = True,
    show_centers: bool = True,
    title: Optional[str] = None,
) -> plt.Axes:
    """Plot ``curve`` with the fitted ``peaks`` overlaid.

    Args:
        curve: The measured trace
        peaks: Fitted peaks; each is drawn from its shape parameters
        ax: Axes to draw on (default: a new figure)
        show_components: Draw each component as a dashed line
        show_centers: Mark each center with a vertical line
        title: Axes title (default: the curve id)

    Returns:
        The axes drawn on
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(6.0, 4.0))

    x = np.linspace(curve.x_min, curve.x_max, max(curve.point_count * 4, 200))
    ax.plot(curve.x_values, curve.y_values, color="0.4", linewidth=1.0, label="data")

    total = np.zeros_like(x)
    for peak in peaks:
        component = peak.shape_params().evaluate(x)
        total += component
        if show_components:
            ax.plot(x, component, linestyle="--", linewidth=0.8,
                    label=f"{peak.peak_type} @ {peak.center:.3g}")
        if show_centers:
            ax.axvline(peak.center, color="0.7", linewidth=0.6, zorder=0)

    if len(peaks):
        ax.plot(x, total, color="tab:red", linewidth=1.4, label="fit")

    label = curve.x_label + (f" ({curve.x_unit})" if curve.x_unit else "")
    ax.set_xlabel(label)
    ax.set_ylabel(curve.y_label + (f" ({curve.y_unit})" if curve.y_unit else ""))
    ax.set_title(title if title is not None else curve.curve_id)
    ax.legend(fontsize="small", frameon=False)
    return ax
