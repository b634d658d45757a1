"""
Overlap metrics shared by the resolver, the fitter and the strategy layer.

Two peaks overlap when their center distance is smaller than the mean of
their FWHMs. Groups are the connected components of that relation over
peaks sorted by center.
"""

from typing import List, Sequence

import numpy as np

from peakresolve.data import Curve, Peak
from peakresolve.fitting.data_processor import DataProcessor


def peaks_overlap(first: Peak, second: Peak) -> bool:
    combined = 0.5 * (first.fwhm + second.fwhm)
    return abs(first.center - second.center) < combined


def group_overlapping_peaks(peaks: Sequence[Peak]) -> List[List[int]]:
    """
    Partition peaks into connected overlap groups.

    Returns
    -------
    list of list of int
        Indices into ``peaks``, each group ordered by center; groups ordered
        by their first center
    """
    order = sorted(range(len(peaks)), key=lambda i: peaks[i].center)
    parent = list(range(len(peaks)))

    def find(i):
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for a in range(len(order)):
        for b in range(a + 1, len(order)):
            i, j = order[a], order[b]
            if peaks_overlap(peaks[i], peaks[j]):
                parent[find(j)] = find(i)

    groups = {}
    for i in order:
        groups.setdefault(find(i), []).append(i)
    return sorted(groups.values(), key=lambda g: peaks[g[0]].center)


def overlap_degree(peaks: Sequence[Peak]) -> float:
    """
    Mean pairwise overlap in [0, 1].

    For each pair, ``max(0, w - d) / w`` with ``w`` the mean of the two
    FWHMs and ``d`` the center distance. Zero for fewer than two peaks.
    """
    if len(peaks) < 2:
        return 0.0
    values = []
    for i in range(len(peaks)):
        for j in range(i + 1, len(peaks)):
            width = 0.5 * (peaks[i].fwhm + peaks[j].fwhm)
            if width <= 0:
                values.append(0.0)
                continue
            distance = abs(peaks[i].center - peaks[j].center)
            values.append(max(0.0, width - distance) / width)
    return float(np.mean(values))


def estimate_snr(peaks: Sequence[Peak], curve: Curve) -> float:
    """Largest peak amplitude over the robust noise of the curve."""
    if not peaks:
        return 0.0
    noise = DataProcessor.estimate_noise(curve.y_values)
    signal = max(peak.amplitude for peak in peaks)
    if noise <= 0:
        return float("inf") if signal > 0 else 0.0
    return float(signal / noise)


def min_separation(peaks: Sequence[Peak]) -> float:
    """Smallest center distance between any two peaks (inf for fewer than two)."""
    centers = np.sort([peak.center for peak in peaks])
    if len(centers) < 2:
        return float("inf")
    return float(np.min(np.diff(centers)))


def chromatographic_resolution(first: Peak, second: Peak) -> float:
    """Rs = 1.18·Δ / (w1 + w2) with half-height widths."""
    widths = first.fwhm + second.fwhm
    if widths <= 0:
        return float("inf")
    return 1.18 * abs(second.center - first.center) / widths
