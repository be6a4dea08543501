"""Clock drift between the gateway hardware clock and the server reception clock."""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional, Sequence, Tuple

import numpy as np

from ..config import DRIFT_MIN_SAMPLES, DRIFT_MIN_SPAN_HOURS

logger = logging.getLogger(__name__)

_NS_PER_US = 1_000.0
_US_PER_HOUR = 3_600_000_000.0


class ClockDriftEstimator:
    """Least-squares drift rate in microseconds per hour.

    The clock offset ``hardware − reception`` is regressed on elapsed
    reception time; the slope is the drift of the hardware clock relative
    to the reception clock.  Positive means the hardware clock runs fast.

    Parameters
    ----------
    min_samples : int
        Below this many paired samples the estimate is unknown (``None``).
    min_span_hours : float
        Below this reception-time span the estimate is unknown (``None``).
    """

    def __init__(
        self,
        min_samples: int = DRIFT_MIN_SAMPLES,
        min_span_hours: float = DRIFT_MIN_SPAN_HOURS,
    ) -> None:
        self.min_samples = max(2, int(min_samples))
        self.min_span_hours = min_span_hours

    def estimate(self, samples: Sequence[Tuple[int, datetime]]) -> Optional[float]:
        """Return the drift in µs/h, or ``None`` when it cannot be measured.

        Parameters
        ----------
        samples : sequence of (hw_timestamp_ns, reception_time)
            Paired readings of the two clocks.
        """
        if len(samples) < self.min_samples:
            logger.debug(
                "Clock drift unknown: %d samples (minimum %d)", len(samples), self.min_samples
            )
            return None

        ordered = sorted(samples, key=lambda s: s[1])
        t0 = ordered[0][1]
        hw0 = ordered[0][0]
        elapsed_us = np.array(
            [(rx - t0).total_seconds() * 1e6 for _, rx in ordered], dtype=float
        )
        hw_us = np.array([(hw - hw0) / _NS_PER_US for hw, _ in ordered], dtype=float)

        span_hours = float(elapsed_us[-1] / _US_PER_HOUR)
        if span_hours < self.min_span_hours:
            logger.debug("Clock drift unknown: span %.6f h below %.6f h", span_hours, self.min_span_hours)
            return None

        offset_us = hw_us - elapsed_us
        hours = elapsed_us / _US_PER_HOUR
        if np.ptp(hours) == 0.0:
            return None
        slope, _ = np.polyfit(hours, offset_us, 1)
        drift = float(slope)
        if not math.isfinite(drift):
            return None

        logger.debug("Clock drift: %.2f us/h over %.3f h (%d samples)", drift, span_hours, len(ordered))
        return drift
