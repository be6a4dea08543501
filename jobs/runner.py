"""Async job runner with concurrency control and progress event streaming."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

from .models import JobStatus, ValidationJob
from .orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)


class JobQueueFullError(Exception):
    """Raised when the job queue is at capacity."""


class JobRunner:
    """Runs ``JobOrchestrator.run`` as background tasks with bounded concurrency."""

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        max_concurrent: int = 2,
        max_queued: int = 20,
    ) -> None:
        self._orchestrator = orchestrator
        self._sem = asyncio.Semaphore(max_concurrent)
        self._active_tasks: Dict[str, asyncio.Task] = {}
        self._event_subscribers: Dict[str, List[asyncio.Queue]] = {}
        self._max_queued = max_queued
        self._reserved = 0

    # ── Submit & Run ─────────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        """Jobs waiting for or holding a worker slot, plus reserved slots."""
        return len(self._active_tasks) + self._reserved

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active_tasks

    def reserve(self) -> None:
        """Claim a queue slot for a job that is about to be created.

        The slot is consumed by ``submit(job_id, reserved=True)`` or handed
        back with ``release()``.

        Raises
        ------
        JobQueueFullError
            If the number of pending jobs reached ``max_queued``.
        """
        self._check_capacity()
        self._reserved += 1

    def release(self) -> None:
        """Return a slot claimed by ``reserve()`` that will not be used."""
        if self._reserved > 0:
            self._reserved -= 1

    async def submit(self, job_id: str, reserved: bool = False) -> None:
        """Schedule the job for background execution.

        Raises
        ------
        JobQueueFullError
            If the number of pending jobs reached ``max_queued`` and no slot
            was reserved for this job.
        """
        if reserved:
            self.release()
        if job_id in self._active_tasks:
            return
        if not reserved:
            self._check_capacity()
        task = asyncio.create_task(self._run(job_id), name=f"validation-job-{job_id}")
        self._active_tasks[job_id] = task

    def _check_capacity(self) -> None:
        if self.pending_count >= self._max_queued:
            raise JobQueueFullError(
                f"Job queue full. {self._max_queued} jobs pending. Try again later."
            )

    async def _run(self, job_id: str) -> Optional[ValidationJob]:
        async with self._sem:
            await self._emit(job_id, {"event": "started", "job_id": job_id})
            try:
                job = await self._orchestrator.run(job_id, on_progress=self._on_progress)
                if job.status == JobStatus.COMPLETED:
                    await self._emit(job_id, {"event": "completed", "job_id": job_id})
                elif job.status == JobStatus.FAILED:
                    await self._emit(
                        job_id, {"event": "failed", "job_id": job_id, "error": job.error_message}
                    )
                return job
            except Exception as exc:
                logger.error("Job %s failed: %s", job_id, exc, exc_info=True)
                await self._emit(job_id, {"event": "failed", "job_id": job_id, "error": str(exc)})
                return None
            finally:
                self._active_tasks.pop(job_id, None)
                await self._emit(job_id, {"event": "done", "job_id": job_id})

    async def _on_progress(self, job: ValidationJob) -> None:
        await self._emit(job.job_id, {
            "event": "progress",
            "job_id": job.job_id,
            "progress": job.progress_percent,
            "chunk": job.current_chunk,
            "total_chunks": job.total_chunks,
        })

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> None:
        """Block until the job's background task (if any) has finished."""
        task = self._active_tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Let running jobs finish for up to *timeout* seconds, then cancel the rest.

        Cancelled jobs stay RUNNING in the store; startup recovery or the
        watchdog fails them later.
        """
        tasks = list(self._active_tasks.values())
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled %d validation jobs at shutdown", len(pending))

    # ── Event Streaming ──────────────────────────────────────────────

    async def subscribe_events(self, job_id: str) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield progress events for a job until it is done."""
        queue: asyncio.Queue = asyncio.Queue()
        self._event_subscribers.setdefault(job_id, []).append(queue)
        try:
            # Send current state as first event
            job = await self._orchestrator.store.find_by_id(job_id)
            if job:
                yield {"event": "status", "data": job.model_dump(mode="json")}
                if job.status.terminal and job_id not in self._active_tasks:
                    return

            while True:
                event = await queue.get()
                yield event
                if event.get("event") == "done":
                    break
        finally:
            subs = self._event_subscribers.get(job_id, [])
            if queue in subs:
                subs.remove(queue)
            if not subs:
                self._event_subscribers.pop(job_id, None)

    async def _emit(self, job_id: str, event: Dict[str, Any]) -> None:
        for q in self._event_subscribers.get(job_id, []):
            await q.put(event)
