"""On-demand and scheduled quality assessment of event windows."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..events.models import TimeWindow
from ..events.store import EventStore
from ..utils.timestamps import utc_now
from .models import QualityReport
from .scorer import QualityScorer
from .store import QualityReportStore

logger = logging.getLogger(__name__)


class QualityMonitor:
    """Loads a window from the event store, scores it and persists the report."""

    def __init__(
        self,
        events: EventStore,
        reports: QualityReportStore,
        scorer: Optional[QualityScorer] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.events = events
        self.reports = reports
        self.scorer = scorer or QualityScorer()
        self._clock = clock

    async def assess_window(self, window: TimeWindow) -> QualityReport:
        events = await self.events.query_window(window.start, window.end)
        report = self.scorer.score(events, window)
        await self.reports.save(report)
        return report

    async def assess_recent(self, hours: float = 1.0) -> QualityReport:
        """Score the trailing *hours* ending now."""
        end = self._clock()
        window = TimeWindow.of(end - timedelta(hours=hours), end)
        return await self.assess_window(window)

    async def current(self, window: TimeWindow) -> Optional[QualityReport]:
        """Newest report overlapping *window*; it supersedes any older overlapping report."""
        reports = await self.reports.overlapping(window.start, window.end)
        return reports[0] if reports else None
