"""Data bundle handed from one workflow stage to the next."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .curve import Curve
from .peak import Peak


@dataclass
class ProcessingData:
    """
    Peaks, the curve they live on, and accumulated stage outputs.

    Attributes:
        peaks: Current peak list
        curve: The curve being analyzed (never mutated; replaced by derived copies)
        metadata: Run-level annotations (strategy name, context values ...)
        intermediate_results: Per-stage outputs keyed by stage name
    """
    peaks: List[Peak]
    curve: Curve
    metadata: Dict[str, Any] = field(default_factory=dict)
    intermediate_results: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "ProcessingData":
        """Snapshot: peaks and dictionaries are copied, the curve is shared."""
        return ProcessingData(
            peaks=[peak.copy() for peak in self.peaks],
            curve=self.curve,
            metadata=dict(self.metadata),
            intermediate_results=dict(self.intermediate_results),
        )

    def with_peaks(self, peaks: List[Peak], curve: Optional[Curve] = None) -> "ProcessingData":
        return ProcessingData(
            peaks=list(peaks),
            curve=self.curve if curve is None else curve,
            metadata=dict(self.metadata),
            intermediate_results=dict(self.intermediate_results),
        )
