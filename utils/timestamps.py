"""UTC timestamp helpers shared by the SQLite stores."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# Fixed-width so stored values compare correctly as strings.
_DB_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    """Attach UTC to naive datetimes and normalise aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_db(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ensure_utc(ts).strftime(_DB_FORMAT)


def from_db(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    return datetime.strptime(raw, _DB_FORMAT).replace(tzinfo=timezone.utc)
