"""Decay event and time window records."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from ..errors import validation_error
from ..utils.timestamps import ensure_utc


class TimeWindow(BaseModel):
    """Half-open analysis range ``[start, end)`` over the event store."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @classmethod
    def of(cls, start: datetime, end: datetime) -> "TimeWindow":
        """Build a window, raising a VALIDATION error for inverted or empty ranges."""
        start, end = ensure_utc(start), ensure_utc(end)
        if end < start:
            raise validation_error(f"Window is inverted: start {start} is after end {end}")
        if end == start:
            raise validation_error(f"Window has zero length at {start}")
        return cls(start=start, end=end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, ts: datetime) -> bool:
        return self.start <= ensure_utc(ts) < self.end

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end


class EntropyEvent(BaseModel):
    """One hardware decay event as received from the sensor gateway."""

    model_config = ConfigDict(frozen=True)

    sequence: int
    hw_timestamp_ns: int
    server_received_at: datetime
    channel: Optional[int] = None
    network_delay_ms: Optional[int] = None
    whitened_entropy: Optional[bytes] = None
    batch_id: Optional[str] = None

    @field_validator("server_received_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def _non_negative(self) -> "EntropyEvent":
        if self.sequence < 0:
            raise ValueError("sequence must be non-negative")
        if self.hw_timestamp_ns < 0:
            raise ValueError("hw_timestamp_ns must be non-negative")
        return self
