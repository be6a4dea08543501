"""Periodic detection of jobs stuck in a non-terminal state."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..config import WATCHDOG_MAX_QUEUE_WAIT_MINUTES, WATCHDOG_MAX_RUNTIME_MINUTES
from ..jobs.models import JobFilter, JobStatus
from ..jobs.store import JobStore
from ..utils.timestamps import utc_now

logger = logging.getLogger(__name__)


@dataclass
class WatchdogReport:
    stuck_running: int = 0
    stale_queued: int = 0

    @property
    def total(self) -> int:
        return self.stuck_running + self.stale_queued


class Watchdog:
    """Fails RUNNING jobs past the runtime limit and QUEUED jobs past the queue wait.

    Each sweep is one conditional bulk update, so a job that leaves the
    filtered status between scheduling and execution is simply not matched.
    """

    def __init__(
        self,
        store: JobStore,
        max_runtime_minutes: int = WATCHDOG_MAX_RUNTIME_MINUTES,
        max_queue_wait_minutes: int = WATCHDOG_MAX_QUEUE_WAIT_MINUTES,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.max_runtime_minutes = max_runtime_minutes
        self.max_queue_wait_minutes = max_queue_wait_minutes
        self._clock = clock

    @property
    def runtime_message(self) -> str:
        return f"Job exceeded maximum runtime ({self.max_runtime_minutes} minutes)"

    @property
    def queue_message(self) -> str:
        return f"Job queued longer than maximum queue wait ({self.max_queue_wait_minutes} minutes)"

    async def sweep(self, now: Optional[datetime] = None) -> WatchdogReport:
        now = now or self._clock()
        stuck = await self.store.bulk_update_where(
            JobFilter(
                statuses=frozenset({JobStatus.RUNNING}),
                started_before=now - timedelta(minutes=self.max_runtime_minutes),
            ),
            JobStatus.FAILED,
            self.runtime_message,
            now=now,
        )
        stale = await self.store.bulk_update_where(
            JobFilter(
                statuses=frozenset({JobStatus.QUEUED}),
                created_before=now - timedelta(minutes=self.max_queue_wait_minutes),
            ),
            JobStatus.FAILED,
            self.queue_message,
            now=now,
        )
        report = WatchdogReport(stuck_running=stuck, stale_queued=stale)
        if report.total:
            logger.warning(
                "Watchdog failed %d stuck RUNNING and %d stale QUEUED jobs", stuck, stale,
            )
        else:
            logger.debug("Watchdog sweep found no stuck jobs")
        return report
