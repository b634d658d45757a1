"""Common behaviour of the overlap processors."""

import logging
from typing import List

from peakresolve.data import Curve, Peak
from .metrics import group_overlapping_peaks

logger = logging.getLogger(__name__)


class OverlapProcessor:
    """
    Base class: split candidates into overlap groups and refine each group
    of two or more peaks with ``resolve_group``. Isolated peaks pass
    through unchanged.
    """

    name = "base"
    CONFIG_KEYS = ()

    @classmethod
    def from_config(cls, config=None):
        config = config or {}
        return cls(**{key: config[key] for key in cls.CONFIG_KEYS if key in config})

    def resolve(self, peaks: List[Peak], curve: Curve) -> List[Peak]:
        """Refined copies of ``peaks`` sorted by center; the inputs are not modified."""
        working = [peak.copy() for peak in peaks]
        refined = []
        for group in group_overlapping_peaks(working):
            members = [working[i] for i in group]
            if len(members) > 1:
                logger.debug("%s: resolving %d overlapping peaks near %.4g",
                             self.name, len(members), members[0].center)
                members = self.resolve_group(members, curve)
            refined.extend(members)
        refined.sort(key=lambda p: p.center)
        return refined

    def resolve_group(self, peaks: List[Peak], curve: Curve) -> List[Peak]:
        raise NotImplementedError


class NoOpProcessor(OverlapProcessor):
    """Leaves candidates untouched."""

    name = "none"

    def resolve(self, peaks, curve):
        return sorted((peak.copy() for peak in peaks), key=lambda p: p.center)
