"""Sequence gap detection, the primary packet-loss signal.

Missing sequence numbers are reported as ranges so an outage of millions
of events costs one ``SequenceGap`` rather than millions of integers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SequenceGap:
    """Inclusive range of missing sequence numbers."""

    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1


@dataclass
class GapAnalysis:
    missing_count: int
    total_expected: int
    gaps: List[SequenceGap] = field(default_factory=list)

    @property
    def missing_ratio(self) -> float:
        """``missing_count / total_expected``; 0.0 when nothing was observed."""
        if self.total_expected <= 0:
            return 0.0
        return self.missing_count / self.total_expected


class SequenceGapDetector:
    """Counts missing integers between the smallest and largest observed sequence."""

    def detect(self, sequences: Iterable[int]) -> GapAnalysis:
        observed = sorted(set(sequences))
        if not observed:
            return GapAnalysis(missing_count=0, total_expected=0)

        gaps: List[SequenceGap] = []
        for prev, cur in zip(observed, observed[1:]):
            if cur - prev > 1:
                gaps.append(SequenceGap(prev + 1, cur - 1))

        total_expected = observed[-1] - observed[0] + 1
        missing = sum(g.size for g in gaps)
        if gaps:
            logger.warning(
                "Detected %d sequence gaps containing %d missing sequences (packet loss)",
                len(gaps), missing,
            )
        return GapAnalysis(missing_count=missing, total_expected=total_expected, gaps=gaps)
