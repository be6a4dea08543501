"""Retention cleanup for terminal jobs and their result rows."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..config import JOB_RETENTION_DAYS, RESULT_RETENTION_DAYS
from ..jobs.models import TERMINAL_STATUSES, JobFilter
from ..jobs.store import JobStore
from ..utils.timestamps import utc_now

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Hard-deletes COMPLETED/FAILED jobs past the retention horizon.

    QUEUED and RUNNING jobs are never deleted regardless of age.  Result
    rows follow their own horizon via ``sweep_results``.
    """

    def __init__(
        self,
        store: JobStore,
        job_retention_days: int = JOB_RETENTION_DAYS,
        result_retention_days: int = RESULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.job_retention_days = job_retention_days
        self.result_retention_days = result_retention_days
        self._clock = clock

    async def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        cutoff = now - timedelta(days=self.job_retention_days)
        deleted = await self.store.bulk_delete_where(
            JobFilter(statuses=TERMINAL_STATUSES, created_before=cutoff)
        )
        logger.info("Retention removed %d terminal jobs created before %s", deleted, cutoff.isoformat())
        return deleted

    async def sweep_results(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        cutoff = now - timedelta(days=self.result_retention_days)
        deleted = await self.store.delete_results_before(cutoff)
        logger.info("Retention removed %d result rows executed before %s", deleted, cutoff.isoformat())
        return deleted
