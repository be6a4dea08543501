"""Fail jobs orphaned by a previous process."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..jobs.models import JobFilter, JobStatus
from ..jobs.store import JobStore

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "Server restarted before job could start"
RUNNING_MESSAGE = "Server restarted during job processing"


@dataclass
class RecoveryReport:
    queued: int = 0
    running: int = 0


async def recover_orphaned_jobs(store: JobStore, now: Optional[datetime] = None) -> RecoveryReport:
    """Fail every QUEUED and RUNNING job; call once before any job is submitted."""
    queued = await store.bulk_update_where(
        JobFilter(statuses=frozenset({JobStatus.QUEUED})), JobStatus.FAILED, QUEUED_MESSAGE, now=now,
    )
    running = await store.bulk_update_where(
        JobFilter(statuses=frozenset({JobStatus.RUNNING})), JobStatus.FAILED, RUNNING_MESSAGE, now=now,
    )
    if queued or running:
        logger.warning(
            "Startup recovery failed %d queued and %d running jobs left by a previous process",
            queued, running,
        )
    return RecoveryReport(queued=queued, running=running)
