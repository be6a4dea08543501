"""Drives validation jobs through QUEUED -> RUNNING -> COMPLETED | FAILED.

Every state change goes through ``JobStore.conditional_update_status`` so a
job is only ever advanced by the invocation that owns it; a watchdog that
fails the job mid-run simply makes the orchestrator's next update miss.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Tuple

from ..config_structured import SystemConfig, get_config
from ..errors import (
    EngineError,
    ErrorKind,
    invalid_input,
    not_found,
    state_conflict,
    validation_error,
)
from ..events.models import TimeWindow
from ..events.store import EventStore
from ..utils.timestamps import utc_now
from .bitstream import bit_length, to_bitstream
from .models import (
    AssessmentResult,
    ChunkResultRow,
    JobStatus,
    RunSummary,
    ValidationJob,
    ValidationType,
    aggregate_by_test,
    total_bits_tested,
)
from .planner import plan_chunks
from .store import JobStore

if TYPE_CHECKING:
    from ..assessment.client import AssessmentClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ValidationJob], Awaitable[None]]

# Failures of a single chunk that are recorded on the job instead of raised.
_CHUNK_FAILURE_KINDS = frozenset({
    ErrorKind.SERVICE_UNAVAILABLE,
    ErrorKind.INVALID_INPUT,
    ErrorKind.VALIDATION,
})


def running_progress(current_chunk: int, total_chunks: int) -> int:
    """Integer percentage for a RUNNING job; 100 is reserved for COMPLETED."""
    if total_chunks <= 0:
        return 0
    return min(100 * current_chunk // total_chunks, 99)


class JobOrchestrator:
    """Creates, plans and executes validation jobs chunk by chunk."""

    def __init__(
        self,
        store: JobStore,
        events: EventStore,
        client: "AssessmentClient",
        config: Optional[SystemConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        cfg = config or get_config()
        self.store = store
        self.events = events
        self.client = client
        self.max_active_per_user = cfg.jobs.max_active_jobs_per_user
        self.chunk_timeout = cfg.jobs.chunk_timeout_seconds
        self.bytes_per_event = cfg.chunking.bytes_per_event
        self.chunk_limits: Dict[ValidationType, Tuple[int, int]] = {
            ValidationType.STATISTICAL_SUITE: (
                cfg.chunking.suite_max_events, cfg.chunking.suite_min_events,
            ),
            ValidationType.ENTROPY_ASSESSMENT: (cfg.chunking.entropy_max_events, 0),
        }
        self._clock = clock

    # ── Creation ─────────────────────────────────────────────────────

    async def create_job(
        self,
        validation_type: ValidationType,
        window: TimeWindow,
        created_by: Optional[str] = None,
    ) -> ValidationJob:
        """Queue a new job for *window*.

        Raises
        ------
        EngineError
            VALIDATION for an inverted or empty window, or when *created_by*
            already has the maximum number of active jobs.
        """
        window = TimeWindow.of(window.start, window.end)
        if created_by is not None:
            active = await self.store.count_active_by_user(created_by)
            if active >= self.max_active_per_user:
                raise validation_error(
                    f"{created_by} already has {active} active validation jobs "
                    f"(maximum {self.max_active_per_user})"
                )
        job = ValidationJob(
            validation_type=validation_type,
            window=window,
            created_at=self._clock(),
            created_by=created_by,
        )
        await self.store.create(job)
        logger.info(
            "Queued %s job %s for %s .. %s (by %s)",
            validation_type.value, job.job_id, window.start.isoformat(),
            window.end.isoformat(), created_by,
        )
        return job

    # ── Lifecycle steps ──────────────────────────────────────────────

    async def start(self, job: ValidationJob) -> ValidationJob:
        """QUEUED -> RUNNING; STATE_CONFLICT if another invocation got there first."""
        won = await self.store.conditional_update_status(
            job.job_id,
            JobStatus.QUEUED,
            {"status": JobStatus.RUNNING, "started_at": self._clock()},
        )
        if not won:
            raise state_conflict(f"Job {job.job_id} is not QUEUED")
        logger.info("Started job %s", job.job_id)
        return await self._reload(job.job_id)

    async def plan(self, job: ValidationJob) -> ValidationJob:
        """Fix the chunk plan, chunk count and result run id of a RUNNING job."""
        if job.status != JobStatus.RUNNING:
            raise state_conflict(f"Job {job.job_id} must be RUNNING to plan, is {job.status.value}")
        if job.total_chunks is not None:
            return job

        max_events, min_events = self.chunk_limits[job.validation_type]
        times = await self.events.received_times(job.window.start, job.window.end)
        chunks = plan_chunks(job.window, max_events, times, min_chunk_events=min_events)
        run_id = job.result_run_id or uuid.uuid4().hex
        won = await self.store.conditional_update_status(
            job.job_id,
            JobStatus.RUNNING,
            {"total_chunks": len(chunks), "chunk_plan": chunks, "result_run_id": run_id},
            expected_chunk=0,
        )
        if not won:
            raise state_conflict(f"Job {job.job_id} changed state while planning")
        logger.info(
            "Planned job %s: %d events in %d chunks (run %s)",
            job.job_id, len(times), len(chunks), run_id,
        )
        return await self._reload(job.job_id)

    async def execute_chunk(self, job: ValidationJob, chunk_index: int) -> ValidationJob:
        """Assess one chunk and advance the job.

        Chunks run strictly in order: *chunk_index* must equal
        ``job.current_chunk``.  Assessment failures are recorded on the job
        (FAILED with the error message verbatim) and the failed job is
        returned; rows persisted by earlier chunks are kept.
        """
        if job.status != JobStatus.RUNNING or job.total_chunks is None:
            raise state_conflict(f"Job {job.job_id} is not a planned RUNNING job")
        if chunk_index != job.current_chunk:
            raise state_conflict(
                f"Job {job.job_id} expects chunk {job.current_chunk}, got {chunk_index}"
            )

        total = job.total_chunks
        sub = job.chunk_plan[chunk_index]
        try:
            result, bits = await self._assess(job, sub, chunk_index, total)
        except EngineError as e:
            if e.kind not in _CHUNK_FAILURE_KINDS:
                raise
            return await self._fail_chunk(job, chunk_index, e.message)
        except asyncio.TimeoutError:
            return await self._fail_chunk(
                job, chunk_index,
                f"Assessment of chunk {chunk_index + 1}/{total} timed out after "
                f"{self.chunk_timeout:g} seconds",
            )

        rows = self._result_rows(job, sub, chunk_index, total, result, bits)
        await self.store.save_chunk_results(rows)

        advanced = chunk_index + 1
        progress = max(job.progress_percent, running_progress(advanced, total))
        won = await self.store.conditional_update_status(
            job.job_id,
            JobStatus.RUNNING,
            {"current_chunk": advanced, "progress_percent": progress},
            expected_chunk=chunk_index,
        )
        if not won:
            logger.warning(
                "Job %s changed state during chunk %d; keeping %d result rows",
                job.job_id, chunk_index, len(rows),
            )
        else:
            logger.info(
                "Job %s chunk %d/%d done: %d results, progress %d%%",
                job.job_id, advanced, total, len(rows), progress,
            )
        return await self._reload(job.job_id)

    async def complete(self, job: ValidationJob) -> ValidationJob:
        """RUNNING with every chunk done -> COMPLETED at 100%."""
        if job.status != JobStatus.RUNNING or job.total_chunks is None:
            raise state_conflict(f"Job {job.job_id} is not a planned RUNNING job")
        if job.current_chunk != job.total_chunks:
            raise state_conflict(
                f"Job {job.job_id} has completed {job.current_chunk} of {job.total_chunks} chunks"
            )
        won = await self.store.conditional_update_status(
            job.job_id,
            JobStatus.RUNNING,
            {
                "status": JobStatus.COMPLETED,
                "progress_percent": 100,
                "completed_at": self._clock(),
            },
            expected_chunk=job.total_chunks,
        )
        if not won:
            raise state_conflict(f"Job {job.job_id} changed state before completion")
        logger.info(
            "Completed job %s (%d chunks)", job.job_id, job.total_chunks,
            extra={"job_id": job.job_id},
        )
        return await self._reload(job.job_id)

    async def fail(self, job: ValidationJob, message: str) -> bool:
        """Move a non-terminal job to FAILED; ``False`` if its status moved on."""
        if not message:
            raise validation_error("A failed job needs a non-empty error message")
        if job.status.terminal:
            return False
        now = self._clock()
        won = await self.store.conditional_update_status(
            job.job_id,
            job.status,
            {
                "status": JobStatus.FAILED,
                "error_message": message,
                "completed_at": now,
                "started_at": job.started_at or now,
            },
        )
        if won:
            logger.error("Job %s failed: %s", job.job_id, message, extra={"job_id": job.job_id})
        return won

    # ── Driver ───────────────────────────────────────────────────────

    async def run(
        self,
        job_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ValidationJob:
        """Take a QUEUED job all the way to a terminal state.

        Losing the start race to another invocation is not an error: the
        job is returned as the winner left it.  Losing ownership later (for
        example to the watchdog) stops processing quietly as well.
        """
        job = await self._reload(job_id)
        try:
            job = await self.start(job)
        except EngineError as e:
            if e.kind is not ErrorKind.STATE_CONFLICT:
                raise
            logger.info("Job %s was already started elsewhere; skipping", job_id)
            return await self._reload(job_id)

        try:
            job = await self.plan(job)
            while job.status == JobStatus.RUNNING and job.current_chunk < job.total_chunks:
                job = await self.execute_chunk(job, job.current_chunk)
                if on_progress is not None:
                    await on_progress(job)
            if job.status == JobStatus.RUNNING:
                job = await self.complete(job)
        except EngineError as e:
            if e.kind is ErrorKind.STATE_CONFLICT:
                logger.warning("Job %s lost ownership: %s", job_id, e.message)
            else:
                await self.fail(await self._reload(job_id), e.message)
        except Exception as exc:
            logger.error("Job %s aborted: %s", job_id, exc, exc_info=True)
            current = await self._reload(job_id)
            await self.fail(current, f"Unexpected error: {exc}")
        return await self._reload(job_id)

    async def job_result(self, job_id: str) -> RunSummary:
        """Summarise a job's run per test name across all of its chunks."""
        job = await self._reload(job_id)
        rows = await self.store.list_chunk_results(job.result_run_id) if job.result_run_id else []
        tests = aggregate_by_test(rows)
        passed = sum(1 for t in tests if t.passed)
        estimates = [t.min_entropy_estimate for t in tests if t.min_entropy_estimate is not None]
        return RunSummary(
            run_id=job.result_run_id or "",
            job_id=job.job_id,
            status=job.status,
            chunk_count=job.total_chunks or 0,
            total_tests=len(tests),
            passed_tests=passed,
            pass_rate=passed / len(tests) if tests else 0.0,
            total_bits_tested=total_bits_tested(rows),
            min_entropy=min(estimates) if estimates else None,
            tests=tests,
            rows=rows,
        )

    # ── Helpers ───────────────────────────────────────────────────────

    async def _reload(self, job_id: str) -> ValidationJob:
        job = await self.store.find_by_id(job_id)
        if job is None:
            raise not_found(f"Validation job {job_id} not found")
        return job

    async def _assess(
        self, job: ValidationJob, sub: TimeWindow, chunk_index: int, total: int,
    ) -> Tuple[AssessmentResult, int]:
        events = await self.events.query_window(sub.start, sub.end)
        if not events:
            raise invalid_input(f"Chunk {chunk_index + 1}/{total} contains no events")
        bitstream = to_bitstream(events, self.bytes_per_event)
        result = await asyncio.wait_for(
            self.client.evaluate(bitstream, job.validation_type),
            timeout=self.chunk_timeout,
        )
        return result, bit_length(bitstream)

    async def _fail_chunk(self, job: ValidationJob, chunk_index: int, message: str) -> ValidationJob:
        logger.warning("Job %s chunk %d failed: %s", job.job_id, chunk_index, message)
        await self.fail(job, message)
        return await self._reload(job.job_id)

    def _result_rows(
        self,
        job: ValidationJob,
        sub: TimeWindow,
        chunk_index: int,
        total: int,
        result: AssessmentResult,
        bits: int,
    ) -> List[ChunkResultRow]:
        executed_at = self._clock()

        def row(name, passed, p_value=None, estimate=None, details=None) -> ChunkResultRow:
            return ChunkResultRow(
                run_id=job.result_run_id,
                job_id=job.job_id,
                validation_type=job.validation_type,
                chunk_index=chunk_index,
                chunk_count=total,
                test_name=name,
                passed=passed,
                p_value=p_value,
                entropy_estimate=estimate,
                bits_tested=bits,
                window_start=sub.start,
                window_end=sub.end,
                executed_at=executed_at,
                details=details,
            )

        rows = [
            row(t.name, t.passed, t.p_value, t.entropy_estimate, t.details) for t in result.tests
        ]
        named = {t.name for t in result.tests}
        for name, estimate in (result.entropy_estimates or {}).items():
            if name not in named:
                rows.append(row(name, estimate is not None, estimate=estimate))
        return rows
