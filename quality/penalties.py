"""Multiplicative penalty model behind the composite quality score.

Starting from 1.0, each independent penalty that fires multiplies the
score down; the product is clamped to [0, 1].
"""
from __future__ import annotations

import enum
from typing import List, Optional, Tuple

DRIFT_SIGNIFICANT_US_PER_HOUR = 10.0
DRIFT_SEVERE_US_PER_HOUR = 50.0
HIGH_NETWORK_DELAY_MS = 100.0

DRIFT_SIGNIFICANT_FACTOR = 0.95
DRIFT_SEVERE_FACTOR = 0.85
UNREALISTIC_DECAY_FACTOR = 0.90
HIGH_DELAY_FACTOR = 0.95


class Penalty(str, enum.Enum):
    PACKET_LOSS = "packet_loss"
    CLOCK_DRIFT = "clock_drift"
    SEVERE_CLOCK_DRIFT = "severe_clock_drift"
    UNREALISTIC_DECAY = "unrealistic_decay"
    HIGH_NETWORK_DELAY = "high_network_delay"


def composite_score(
    total_events: int,
    missing_sequence_count: Optional[int],
    drift_us_per_hour: Optional[float],
    decay_rate_realistic: Optional[bool],
    average_network_delay_ms: Optional[float],
) -> Tuple[float, List[Penalty]]:
    """Return ``(score, fired_penalties)`` in application order."""
    score = 1.0
    fired: List[Penalty] = []

    if total_events > 0 and missing_sequence_count is not None:
        if missing_sequence_count > 0:
            fired.append(Penalty.PACKET_LOSS)
        score *= 1.0 - missing_sequence_count / total_events

    if drift_us_per_hour is not None:
        abs_drift = abs(drift_us_per_hour)
        if abs_drift > DRIFT_SIGNIFICANT_US_PER_HOUR:
            score *= DRIFT_SIGNIFICANT_FACTOR
            fired.append(Penalty.CLOCK_DRIFT)
        if abs_drift > DRIFT_SEVERE_US_PER_HOUR:
            score *= DRIFT_SEVERE_FACTOR
            fired.append(Penalty.SEVERE_CLOCK_DRIFT)

    # Unknown plausibility (None) is not penalised.
    if decay_rate_realistic is False:
        score *= UNREALISTIC_DECAY_FACTOR
        fired.append(Penalty.UNREALISTIC_DECAY)

    if average_network_delay_ms is not None and average_network_delay_ms > HIGH_NETWORK_DELAY_MS:
        score *= HIGH_DELAY_FACTOR
        fired.append(Penalty.HIGH_NETWORK_DELAY)

    return min(max(score, 0.0), 1.0), fired
