"""Append-only decay event stores.

The core only reads from the store; ``append`` exists for the ingestion
side and for tests.
"""
from __future__ import annotations

import bisect
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

import aiosqlite

from ..utils.timestamps import ensure_utc, from_db, to_db
from .models import EntropyEvent


class EventStore(Protocol):
    """Read interface the quality engine and orchestrator depend on."""

    async def query_window(self, start: datetime, end: datetime) -> List[EntropyEvent]:
        """Events with ``start <= server_received_at < end`` ordered by reception time."""
        ...

    async def received_times(self, start: datetime, end: datetime) -> List[datetime]:
        """Reception timestamps only, same range and order as ``query_window``."""
        ...


class InMemoryEventStore:
    """Sorted in-memory store, suitable for tests and small deployments."""

    def __init__(self, events: Iterable[EntropyEvent] = ()) -> None:
        self._events: List[EntropyEvent] = []
        self._keys: List[datetime] = []
        self.append_sync(events)

    def append_sync(self, events: Iterable[EntropyEvent]) -> int:
        count = 0
        for ev in events:
            idx = bisect.bisect_right(self._keys, ev.server_received_at)
            self._keys.insert(idx, ev.server_received_at)
            self._events.insert(idx, ev)
            count += 1
        return count

    async def append(self, events: Iterable[EntropyEvent]) -> int:
        return self.append_sync(events)

    def _bounds(self, start: datetime, end: datetime) -> tuple[int, int]:
        lo = bisect.bisect_left(self._keys, ensure_utc(start))
        hi = bisect.bisect_left(self._keys, ensure_utc(end))
        return lo, hi

    async def query_window(self, start: datetime, end: datetime) -> List[EntropyEvent]:
        lo, hi = self._bounds(start, end)
        return self._events[lo:hi]

    async def received_times(self, start: datetime, end: datetime) -> List[datetime]:
        lo, hi = self._bounds(start, end)
        return self._keys[lo:hi]

    def __len__(self) -> int:
        return len(self._events)


class SqliteEventStore:
    """Async SQLite event store indexed on reception time."""

    def __init__(self, db_path: str = "entropy_events.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the events table if it doesn't exist."""
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS entropy_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sequence INTEGER NOT NULL,
                hw_timestamp_ns INTEGER NOT NULL,
                server_received_at TEXT NOT NULL,
                channel INTEGER,
                network_delay_ms INTEGER,
                whitened_entropy BLOB,
                batch_id TEXT
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_events_received ON entropy_events(server_received_at)"
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    async def append(self, events: Iterable[EntropyEvent]) -> int:
        rows = [
            (
                ev.sequence,
                ev.hw_timestamp_ns,
                to_db(ev.server_received_at),
                ev.channel,
                ev.network_delay_ms,
                ev.whitened_entropy,
                ev.batch_id,
            )
            for ev in events
        ]
        db = await self._conn()
        await db.executemany(
            "INSERT INTO entropy_events (sequence, hw_timestamp_ns, server_received_at, channel,"
            " network_delay_ms, whitened_entropy, batch_id) VALUES (?,?,?,?,?,?,?)",
            rows,
        )
        await db.commit()
        return len(rows)

    async def query_window(self, start: datetime, end: datetime) -> List[EntropyEvent]:
        db = await self._conn()
        async with db.execute(
            "SELECT sequence, hw_timestamp_ns, server_received_at, channel, network_delay_ms,"
            " whitened_entropy, batch_id FROM entropy_events"
            " WHERE server_received_at >= ? AND server_received_at < ?"
            " ORDER BY server_received_at, id",
            (to_db(start), to_db(end)),
        ) as cur:
            rows = await cur.fetchall()
        return [
            EntropyEvent(
                sequence=r[0],
                hw_timestamp_ns=r[1],
                server_received_at=from_db(r[2]),
                channel=r[3],
                network_delay_ms=r[4],
                whitened_entropy=bytes(r[5]) if r[5] is not None else None,
                batch_id=r[6],
            )
            for r in rows
        ]

    async def received_times(self, start: datetime, end: datetime) -> List[datetime]:
        db = await self._conn()
        async with db.execute(
            "SELECT server_received_at FROM entropy_events"
            " WHERE server_received_at >= ? AND server_received_at < ?"
            " ORDER BY server_received_at, id",
            (to_db(start), to_db(end)),
        ) as cur:
            rows = await cur.fetchall()
        return [from_db(r[0]) for r in rows]
