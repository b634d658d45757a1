"""
Overlap resolver: picks and runs an overlap processor.

The method is chosen when the resolver is built. ``auto`` re-selects per
overlap group on every call from the group's overlap degree and SNR:

============================  ==================
overlap degree / SNR          method
============================  ==================
< 0.1                         none
< 0.5                         fbf
>= 0.5, SNR >= 10             sharpen_cwt
>= 0.5, SNR < 10              extreme_overlap
============================  ==================
"""

import logging
from typing import List

from peakresolve.data import Curve, Peak
from peakresolve.errors import ConfigError
from .base import NoOpProcessor
from .emg_nlls import EMGNLLSProcessor
from .extreme_overlap import ExtremeOverlapProcessor
from .fbf import FBFProcessor
from .metrics import estimate_snr, group_overlapping_peaks, overlap_degree
from .sharpen_cwt import SharpenCWTProcessor

logger = logging.getLogger(__name__)

AUTO = "auto"
LOW_OVERLAP = 0.1
HIGH_OVERLAP = 0.5
LOW_SNR = 10.0

PROCESSORS = {
    cls.name: cls
    for cls in (NoOpProcessor, FBFProcessor, SharpenCWTProcessor, EMGNLLSProcessor,
                ExtremeOverlapProcessor)
}


def create_overlap_processor(name, config=None):
    """
    Build an overlap processor (or an auto-selecting resolver) by name.

    Raises
    ------
    ConfigError
        Unknown method name
    """
    if name == AUTO:
        return OverlapResolver(AUTO, config)
    try:
        cls = PROCESSORS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown overlap method '{name}'. Available: "
            f"{', '.join(sorted(list(PROCESSORS) + [AUTO]))}"
        ) from None
    return cls.from_config(config)


def select_method(peaks: List[Peak], curve: Curve) -> str:
    """Escalation rule for one set of overlapping candidates."""
    degree = overlap_degree(peaks)
    if degree < LOW_OVERLAP:
        return "none"
    if degree < HIGH_OVERLAP:
        return "fbf"
    if estimate_snr(peaks, curve) < LOW_SNR:
        return "extreme_overlap"
    return "sharpen_cwt"


class OverlapResolver:
    """
    Resolve overlapping candidates with a fixed or auto-selected method.

    Parameters
    ----------
    method : str
        Processor name or "auto"
    config : dict, optional
        Settings for the processor(s)
    """

    name = AUTO

    def __init__(self, method=AUTO, config=None):
        self.method = method
        self.config = dict(config or {})
        if method == AUTO:
            self.processor = None
        else:
            self.processor = create_overlap_processor(method, self.config)
            self.name = method

    def select_method(self, peaks: List[Peak], curve: Curve) -> str:
        return select_method(peaks, curve) if self.method == AUTO else self.method

    def resolve(self, candidate_peaks: List[Peak], curve: Curve) -> List[Peak]:
        """Refined copies of the candidates, sorted by center."""
        if self.processor is not None:
            return self.processor.resolve(candidate_peaks, curve)

        refined = []
        for group in group_overlapping_peaks(candidate_peaks):
            members = [candidate_peaks[i] for i in group]
            if len(members) < 2:
                refined.extend(peak.copy() for peak in members)
                continue
            method = select_method(members, curve)
            logger.info("auto overlap resolution: %d peaks near %.4g -> %s",
                        len(members), members[0].center, method)
            processor = create_overlap_processor(method, self.config)
            refined.extend(processor.resolve(members, curve))
        refined.sort(key=lambda p: p.center)
        return refined
