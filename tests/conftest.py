"""Shared test fixtures for the entropy_engine test suite."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import pytest

from entropy_engine.config_structured import ChunkingConfig, JobConfig, SystemConfig
from entropy_engine.events.models import EntropyEvent, TimeWindow
from entropy_engine.events.store import InMemoryEventStore
from entropy_engine.jobs.models import AssessmentResult, TestOutcome, ValidationType
from entropy_engine.jobs.store import JobStore


def pytest_sessionfinish(session, exitstatus):
    """Spawn a watchdog that force-exits if the process hangs at shutdown.

    aiosqlite worker threads and asyncio loop cleanup can block
    interpreter exit. This watchdog ensures pytest exits within a few
    seconds of test completion.
    """
    import os
    import threading
    import time

    def _watchdog():
        time.sleep(5)
        os._exit(exitstatus)

    t = threading.Thread(target=_watchdog, daemon=True)
    t.start()


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_events(
    n: int,
    start: datetime = T0,
    interval_ms: float = 1000.0 / 184.0,
    first_sequence: int = 0,
    skip: Iterable[int] = (),
    delay_ms: Optional[int] = 20,
    hw_drift_ppm: float = 0.0,
) -> List[EntropyEvent]:
    """Synthetic decay events, one every *interval_ms*, with optional sequence holes.

    *skip* lists sequence numbers that are dropped.  The hardware clock runs
    ``hw_drift_ppm`` parts per million fast relative to reception time.
    """
    skipped = set(skip)
    events = []
    for i in range(n):
        seq = first_sequence + i
        if seq in skipped:
            continue
        elapsed_ns = int(i * interval_ms * 1_000_000)
        hw_ns = 5_000_000_000 + int(elapsed_ns * (1 + hw_drift_ppm / 1e6))
        events.append(EntropyEvent(
            sequence=seq,
            hw_timestamp_ns=hw_ns,
            server_received_at=start + timedelta(microseconds=elapsed_ns // 1000),
            channel=1,
            network_delay_ms=delay_ms,
            whitened_entropy=seq.to_bytes(32, "big"),
            batch_id="batch-1",
        ))
    return events


@pytest.fixture
def event_factory():
    return make_events


@pytest.fixture
def window() -> TimeWindow:
    """One hour starting at ``T0``."""
    return TimeWindow.of(T0, T0 + timedelta(hours=1))


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
async def job_store():
    s = JobStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def small_config() -> SystemConfig:
    """Ten events per chunk for both validation types, no minimum size."""
    return SystemConfig(
        chunking=ChunkingConfig(suite_max_bytes=320, suite_min_bits=0, entropy_max_bytes=320),
        jobs=JobConfig(max_active_jobs_per_user=3, chunk_timeout_seconds=2.0),
    )


# ── Fake assessment service ──────────────────────────────────────────


class FakeAssessmentClient:
    """In-process stand-in for the assessment service.

    ``fail_on`` maps a 0-based call number to the exception raised on that
    call; ``delay`` makes every call sleep first.
    """

    def __init__(self, fail_on: Optional[dict] = None, delay: float = 0.0) -> None:
        self.calls: List[tuple] = []
        self.fail_on = dict(fail_on or {})
        self.delay = delay

    async def evaluate(self, bitstream: bytes, kind: ValidationType) -> AssessmentResult:
        call = len(self.calls)
        self.calls.append((len(bitstream), kind))
        if self.delay:
            await asyncio.sleep(self.delay)
        if call in self.fail_on:
            raise self.fail_on[call]
        if kind == ValidationType.ENTROPY_ASSESSMENT:
            return AssessmentResult(
                tests=[TestOutcome(name="most_common_value", passed=True, entropy_estimate=7.9)],
                entropy_estimates={"most_common_value": 7.9, "collision": 7.6},
            )
        return AssessmentResult(tests=[
            TestOutcome(name="frequency", passed=True, p_value=0.42),
            TestOutcome(name="runs", passed=call % 2 == 0, p_value=0.004 if call % 2 else 0.51),
        ])


@pytest.fixture
def fake_client() -> FakeAssessmentClient:
    return FakeAssessmentClient()
