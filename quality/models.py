"""Quality report records and the score → status policy."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from ..config import QUALITY_STATUS_THRESHOLDS
from ..errors import validation_error
from ..events.models import TimeWindow
from ..utils.timestamps import utc_now
from .penalties import composite_score


class QualityStatus(str, enum.Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class StatusPolicy:
    """Ordered threshold table mapping a composite score to a status.

    A score is classified into the first status (in descending order)
    whose minimum it meets; anything below the WARNING minimum is CRITICAL.
    """

    _ORDER = (QualityStatus.EXCELLENT, QualityStatus.GOOD, QualityStatus.WARNING)

    def __init__(self, thresholds: Optional[Mapping[str, float]] = None) -> None:
        raw = dict(thresholds if thresholds is not None else QUALITY_STATUS_THRESHOLDS)
        table: List[Tuple[QualityStatus, float]] = []
        for status in self._ORDER:
            if status.value not in raw:
                raise validation_error(f"Missing threshold for {status.value}")
            value = float(raw[status.value])
            if not 0.0 <= value <= 1.0:
                raise validation_error(f"Threshold for {status.value} must lie in [0, 1], got {value}")
            table.append((status, value))
        values = [v for _, v in table]
        if values != sorted(values, reverse=True):
            raise validation_error(f"Thresholds must descend EXCELLENT > GOOD > WARNING, got {values}")
        self._table = table

    def classify(self, score: float) -> QualityStatus:
        for status, minimum in self._table:
            if score >= minimum:
                return status
        return QualityStatus.CRITICAL

    def as_dict(self) -> Dict[str, float]:
        return {status.value: minimum for status, minimum in self._table}


class GapRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: int
    end: int
    size: int


class QualityReport(BaseModel):
    """Immutable assessment of one event window.

    ``overall_quality_score`` is derived from the sub-metrics and cannot be
    supplied by a caller.  ``status`` is the score classified under
    ``status_thresholds``; it is filled in when omitted and a supplied
    status that disagrees with the score is rejected.  ``None`` sub-metrics
    mean "could not measure".
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    report_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    window: TimeWindow
    generated_at: datetime = Field(default_factory=utc_now)
    total_events: int
    missing_sequence_count: Optional[int] = None
    gaps: List[GapRange] = Field(default_factory=list)
    clock_drift_us_per_hour: Optional[float] = None
    average_network_delay_ms: Optional[float] = None
    average_decay_interval_ms: Optional[float] = None
    decay_rate_realistic: Optional[bool] = None
    status: Optional[QualityStatus] = None
    status_thresholds: Dict[str, float] = Field(
        default_factory=lambda: dict(QUALITY_STATUS_THRESHOLDS)
    )
    recommendations: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def overall_quality_score(self) -> float:
        score, _ = composite_score(
            self.total_events,
            self.missing_sequence_count,
            self.clock_drift_us_per_hour,
            self.decay_rate_realistic,
            self.average_network_delay_ms,
        )
        return score

    @model_validator(mode="after")
    def _status_matches_score(self) -> "QualityReport":
        score = self.overall_quality_score
        expected = StatusPolicy(self.status_thresholds).classify(score)
        if self.status is None:
            object.__setattr__(self, "status", expected)
        elif self.status is not expected:
            raise ValueError(
                f"status {self.status.value} does not match score {score:.3f} "
                f"(expected {expected.value})"
            )
        return self
