"""Decay-rate plausibility for the radioactive entropy source."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..config import EXPECTED_RATE_HZ

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecayRateCheck:
    """Observed mean inter-event interval versus the acceptable range."""

    average_interval_ms: Optional[float]
    realistic: Optional[bool]
    min_acceptable_ms: float
    max_acceptable_ms: float
    expected_interval_ms: float

    @property
    def expected_range(self) -> str:
        return f"{self.min_acceptable_ms:.1f}-{self.max_acceptable_ms:.1f} ms"

    @property
    def deviation_percent(self) -> Optional[float]:
        if self.average_interval_ms is None or self.expected_interval_ms <= 0:
            return None
        return abs(
            (self.average_interval_ms - self.expected_interval_ms) / self.expected_interval_ms * 100.0
        )


def positive_intervals_ns(hw_timestamps_ns: Sequence[int]) -> List[int]:
    """Consecutive differences of the sorted hardware timestamps, zeros dropped."""
    if len(hw_timestamps_ns) < 2:
        return []
    diffs = np.diff(np.sort(np.asarray(hw_timestamps_ns, dtype=np.int64)))
    return [int(d) for d in diffs if d > 0]


class DecayRateValidator:
    """Checks the mean interval against ``[min_factor, max_factor] × 1000 / rate_hz`` ms."""

    def __init__(
        self,
        expected_rate_hz: float = EXPECTED_RATE_HZ,
        min_factor: float = 0.1,
        max_factor: float = 5.0,
    ) -> None:
        if expected_rate_hz <= 0:
            expected_rate_hz = EXPECTED_RATE_HZ
        self.expected_interval_ms = 1000.0 / expected_rate_hz
        self.min_acceptable_ms = self.expected_interval_ms * min_factor
        self.max_acceptable_ms = self.expected_interval_ms * max_factor

    def check(self, hw_timestamps_ns: Sequence[int]) -> DecayRateCheck:
        intervals = positive_intervals_ns(hw_timestamps_ns)
        if not intervals:
            avg_ms = None
            realistic = None
        else:
            avg_ms = float(np.mean(intervals)) / 1_000_000.0
            realistic = self.min_acceptable_ms <= avg_ms <= self.max_acceptable_ms
            if not realistic:
                logger.warning(
                    "Unrealistic decay rate: avg interval = %.2f ms (expected: %.2f ms)",
                    avg_ms, self.expected_interval_ms,
                )
        return DecayRateCheck(
            average_interval_ms=avg_ms,
            realistic=realistic,
            min_acceptable_ms=self.min_acceptable_ms,
            max_acceptable_ms=self.max_acceptable_ms,
            expected_interval_ms=self.expected_interval_ms,
        )
