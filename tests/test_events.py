"""Tests for time windows and the event stores."""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from conftest import T0, make_events
from entropy_engine.errors import EngineError, ErrorKind
from entropy_engine.events.models import EntropyEvent, TimeWindow
from entropy_engine.events.store import InMemoryEventStore, SqliteEventStore


class TestTimeWindow:

    def test_inverted_window_rejected(self):
        with pytest.raises(EngineError) as exc:
            TimeWindow.of(T0, T0 - timedelta(seconds=1))
        assert exc.value.kind is ErrorKind.VALIDATION
        assert "inverted" in exc.value.message

    def test_zero_length_window_rejected(self):
        with pytest.raises(EngineError) as exc:
            TimeWindow.of(T0, T0)
        assert exc.value.kind is ErrorKind.VALIDATION

    def test_naive_datetimes_become_utc(self):
        w = TimeWindow.of(datetime(2026, 1, 1), datetime(2026, 1, 2))
        assert w.start.tzinfo == timezone.utc
        assert w.duration == timedelta(days=1)

    def test_half_open(self):
        w = TimeWindow.of(T0, T0 + timedelta(minutes=1))
        assert w.contains(T0)
        assert not w.contains(T0 + timedelta(minutes=1))

    def test_overlaps(self):
        a = TimeWindow.of(T0, T0 + timedelta(minutes=10))
        b = TimeWindow.of(T0 + timedelta(minutes=5), T0 + timedelta(minutes=15))
        c = TimeWindow.of(T0 + timedelta(minutes=10), T0 + timedelta(minutes=20))
        assert a.overlaps(b)
        assert not a.overlaps(c)


def test_event_rejects_negative_sequence():
    with pytest.raises(ValidationError):
        EntropyEvent(sequence=-1, hw_timestamp_ns=0, server_received_at=T0)


class TestInMemoryEventStore:

    async def test_query_window_is_half_open_and_ordered(self):
        events = make_events(10, interval_ms=1000.0)
        store = InMemoryEventStore(reversed(events))
        got = await store.query_window(T0 + timedelta(seconds=2), T0 + timedelta(seconds=5))
        assert [e.sequence for e in got] == [2, 3, 4]

    async def test_received_times_match_query(self):
        store = InMemoryEventStore(make_events(10, interval_ms=1000.0))
        times = await store.received_times(T0, T0 + timedelta(seconds=3))
        assert times == [T0 + timedelta(seconds=i) for i in range(3)]

    async def test_append(self):
        store = InMemoryEventStore()
        assert await store.append(make_events(5)) == 5
        assert len(store) == 5


class TestSqliteEventStore:

    @pytest.fixture
    async def store(self):
        s = SqliteEventStore(":memory:")
        await s.initialize()
        yield s
        await s.close()

    async def test_roundtrip_window(self, store):
        events = make_events(20, interval_ms=500.0)
        await store.append(events)
        got = await store.query_window(T0 + timedelta(seconds=1), T0 + timedelta(seconds=3))
        assert [e.sequence for e in got] == [2, 3, 4, 5]
        assert got[0].whitened_entropy == events[2].whitened_entropy
        assert got[0].server_received_at == events[2].server_received_at

    async def test_received_times(self, store):
        await store.append(make_events(4, interval_ms=1000.0))
        times = await store.received_times(T0, T0 + timedelta(hours=1))
        assert times == [T0 + timedelta(seconds=i) for i in range(4)]
