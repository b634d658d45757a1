"""
Overlap resolution for peakresolve.

Strategies, in escalating order of effort:
- NoOpProcessor ("none")
- FBFProcessor ("fbf"): intensity-weighted Gaussian-mixture EM
- SharpenCWTProcessor ("sharpen_cwt"): sharpening + wavelet relocation
- EMGNLLSProcessor ("emg_nlls"): joint EMG least squares
- ExtremeOverlapProcessor ("extreme_overlap"): Sharpen+CWT -> EMG-NLLS -> validation
"""

from .metrics import (
    chromatographic_resolution,
    estimate_snr,
    group_overlapping_peaks,
    min_separation,
    overlap_degree,
    peaks_overlap,
)
from .base import OverlapProcessor, NoOpProcessor
from .fbf import FBFProcessor
from .sharpen_cwt import SharpenCWTProcessor, morlet_kernel, sharpen, wavelet_responses
from .emg_nlls import EMGNLLSProcessor
from .extreme_overlap import ExtremeOverlapProcessor
from .resolver import OverlapResolver, create_overlap_processor, select_method

__all__ = [
    'chromatographic_resolution',
    'estimate_snr',
    'group_overlapping_peaks',
    'min_separation',
    'overlap_degree',
    'peaks_overlap',
    'OverlapProcessor',
    'NoOpProcessor',
    'FBFProcessor',
    'SharpenCWTProcessor',
    'morlet_kernel',
    'sharpen',
    'wavelet_responses',
    'EMGNLLSProcessor',
    'ExtremeOverlapProcessor',
    'OverlapResolver',
    'create_overlap_processor',
    'select_method',
]
