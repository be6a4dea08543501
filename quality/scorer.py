"""Composite data-quality scoring for an event window.

Combines packet loss (sequence gaps), clock drift, decay-rate
plausibility and network delay into one [0, 1] score, a discrete status
and an ordered list of remediation hints.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from ..config_structured import QualityConfig, get_config
from ..events.models import EntropyEvent, TimeWindow
from .decay import DecayRateValidator
from .drift import ClockDriftEstimator
from .gaps import SequenceGapDetector
from .models import GapRange, QualityReport, StatusPolicy
from .penalties import Penalty, composite_score

logger = logging.getLogger(__name__)

_HINTS = {
    Penalty.PACKET_LOSS: (
        "Packet loss detected: check gateway uplink stability and ingestion backpressure"
    ),
    Penalty.CLOCK_DRIFT: (
        "Check clock synchronization (NTP/PTP) on the gateway; drift exceeds 10 us/h"
    ),
    Penalty.SEVERE_CLOCK_DRIFT: (
        "Severe clock drift above 50 us/h: resynchronize the gateway clock before trusting timestamps"
    ),
    Penalty.UNREALISTIC_DECAY: (
        "Decay interval outside the plausible range: inspect the detector and source placement"
    ),
    Penalty.HIGH_NETWORK_DELAY: (
        "Average network delay above 100 ms: investigate the network path to the gateway"
    ),
}


def recommendations_for(
    fired: Sequence[Penalty],
    drift_us_per_hour: Optional[float],
    decay_rate_realistic: Optional[bool],
    total_events: int,
) -> List[str]:
    """Ordered remediation hints for the penalties that fired, then unknown metrics."""
    hints = [_HINTS[p] for p in fired]
    if total_events == 0:
        hints.append("No events in window: verify the gateway is connected and streaming")
        return hints
    if drift_us_per_hour is None:
        hints.append("Insufficient samples for clock drift estimation; widen the analysis window")
    if decay_rate_realistic is None:
        hints.append("Insufficient events to assess decay-rate plausibility")
    return hints


class QualityScorer:
    """Scores one window of events.

    Parameters
    ----------
    config : QualityConfig, optional
        Defaults to the global structured config.
    policy : StatusPolicy, optional
        Score → status table; built from ``config.status_thresholds`` when omitted.
    """

    def __init__(
        self,
        config: Optional[QualityConfig] = None,
        policy: Optional[StatusPolicy] = None,
    ) -> None:
        cfg = config or get_config().quality
        self.policy = policy or StatusPolicy(cfg.status_thresholds)
        self.gap_detector = SequenceGapDetector()
        self.drift_estimator = ClockDriftEstimator(cfg.drift_min_samples, cfg.drift_min_span_hours)
        self.decay_validator = DecayRateValidator(
            cfg.expected_rate_hz, cfg.min_interval_factor, cfg.max_interval_factor
        )

    def score(self, events: Sequence[EntropyEvent], window: TimeWindow) -> QualityReport:
        total = len(events)
        gaps = self.gap_detector.detect(e.sequence for e in events)

        delays = [e.network_delay_ms for e in events if e.network_delay_ms is not None]
        avg_delay = float(np.mean(delays)) if delays else None

        decay = self.decay_validator.check([e.hw_timestamp_ns for e in events])
        drift = self.drift_estimator.estimate(
            [(e.hw_timestamp_ns, e.server_received_at) for e in events]
        )

        score, fired = composite_score(
            total, gaps.missing_count, drift, decay.realistic, avg_delay
        )
        report = QualityReport(
            window=window,
            total_events=total,
            missing_sequence_count=gaps.missing_count,
            gaps=[GapRange(start=g.start, end=g.end, size=g.size) for g in gaps.gaps],
            clock_drift_us_per_hour=drift,
            average_network_delay_ms=avg_delay,
            average_decay_interval_ms=decay.average_interval_ms,
            decay_rate_realistic=decay.realistic,
            status=self.policy.classify(score),
            status_thresholds=self.policy.as_dict(),
            recommendations=recommendations_for(fired, drift, decay.realistic, total),
        )
        logger.info(
            "Quality assessment: %d events, %d missing sequences in %d gaps, score=%.3f (%s)",
            total, gaps.missing_count, len(gaps.gaps), score, report.status.value,
        )
        return report
