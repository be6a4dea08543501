"""Tests for quality report persistence and the quality monitor."""
from datetime import timedelta

import pytest

from conftest import T0, make_events
from entropy_engine.config_structured import QualityConfig
from entropy_engine.errors import EngineError, ErrorKind
from entropy_engine.events.models import TimeWindow
from entropy_engine.events.store import InMemoryEventStore
from entropy_engine.quality.models import QualityReport, QualityStatus
from entropy_engine.quality.monitor import QualityMonitor
from entropy_engine.quality.scorer import QualityScorer
from entropy_engine.quality.store import QualityReportStore


@pytest.fixture
async def reports():
    s = QualityReportStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


def _report(start_offset_min=0, generated_offset_min=0, **kwargs):
    window = TimeWindow.of(
        T0 + timedelta(minutes=start_offset_min),
        T0 + timedelta(minutes=start_offset_min + 60),
    )
    return QualityReport(
        window=window,
        generated_at=T0 + timedelta(hours=2, minutes=generated_offset_min),
        **{"total_events": 1000, "missing_sequence_count": 0, **kwargs},
    )


class TestQualityReportStore:

    async def test_save_and_get_roundtrip(self, reports):
        original = _report(
            missing_sequence_count=50, clock_drift_us_per_hour=60.0, decay_rate_realistic=False,
            average_network_delay_ms=150.0, status=QualityStatus.CRITICAL,
            recommendations=["Check clock synchronization"],
        )
        await reports.save(original)
        loaded = await reports.get(original.report_id)
        assert loaded == original
        assert loaded.overall_quality_score == pytest.approx(original.overall_quality_score)

    async def test_get_unknown_is_not_found(self, reports):
        with pytest.raises(EngineError) as exc:
            await reports.get("missing")
        assert exc.value.kind is ErrorKind.NOT_FOUND

    async def test_latest(self, reports):
        assert await reports.latest() is None
        old = await reports.save(_report(generated_offset_min=0))
        new = await reports.save(_report(generated_offset_min=5))
        assert (await reports.latest()).report_id == new.report_id
        assert old.report_id != new.report_id

    async def test_newest_overlapping_report_supersedes(self, reports):
        first = await reports.save(_report(start_offset_min=0, generated_offset_min=0))
        second = await reports.save(_report(start_offset_min=30, generated_offset_min=10))
        await reports.save(_report(start_offset_min=120, generated_offset_min=20))
        found = await reports.overlapping(T0 + timedelta(minutes=45), T0 + timedelta(minutes=50))
        assert [r.report_id for r in found] == [second.report_id, first.report_id]

    async def test_low_quality_and_average(self, reports):
        good = await reports.save(_report(generated_offset_min=1))
        bad = await reports.save(_report(generated_offset_min=2, missing_sequence_count=500))
        low = await reports.low_quality(0.9, since=T0)
        assert [r.report_id for r in low] == [bad.report_id]
        avg = await reports.average_score(since=T0)
        assert avg == pytest.approx((good.overall_quality_score + bad.overall_quality_score) / 2)
        assert await reports.average_score(since=T0 + timedelta(days=1)) is None

    async def test_drift_issues(self, reports):
        await reports.save(_report(clock_drift_us_per_hour=5.0))
        drifting = await reports.save(_report(clock_drift_us_per_hour=-80.0))
        found = await reports.drift_issues(50.0, since=T0)
        assert [r.report_id for r in found] == [drifting.report_id]


class TestQualityMonitor:

    async def test_assess_window_persists(self, reports):
        events = InMemoryEventStore(make_events(500, interval_ms=5.0))
        monitor = QualityMonitor(events, reports, QualityScorer(QualityConfig()))
        window = TimeWindow.of(T0, T0 + timedelta(minutes=10))
        report = await monitor.assess_window(window)
        assert report.total_events == 500
        assert (await reports.get(report.report_id)) == report

    async def test_assess_recent_uses_clock(self, reports):
        events = InMemoryEventStore(make_events(100, interval_ms=5.0))
        monitor = QualityMonitor(
            events, reports, QualityScorer(QualityConfig()),
            clock=lambda: T0 + timedelta(minutes=30),
        )
        report = await monitor.assess_recent(hours=1.0)
        assert report.window.end == T0 + timedelta(minutes=30)
        assert report.total_events == 100

    async def test_current_returns_newest(self, reports):
        events = InMemoryEventStore(make_events(100, interval_ms=5.0))
        monitor = QualityMonitor(events, reports, QualityScorer(QualityConfig()))
        window = TimeWindow.of(T0, T0 + timedelta(hours=1))
        assert await monitor.current(window) is None
        await reports.save(_report(generated_offset_min=0))
        newer = await reports.save(_report(generated_offset_min=1))
        assert (await monitor.current(window)).report_id == newer.report_id
