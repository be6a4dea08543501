"""Wires stores, assessment client, orchestrator and maintenance loops together."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .assessment.client import AssessmentClient, HttpAssessmentClient
from .config import validate_config
from .config_structured import SystemConfig, get_config
from .errors import EngineError, ErrorKind, not_found
from .events.models import TimeWindow
from .events.store import EventStore, SqliteEventStore
from .jobs.models import RunSummary, ValidationJob, ValidationType
from .jobs.orchestrator import JobOrchestrator
from .jobs.runner import JobQueueFullError, JobRunner
from .jobs.store import JobStore
from .maintenance.recovery import recover_orphaned_jobs
from .maintenance.retention import RetentionSweeper
from .maintenance.watchdog import Watchdog
from .quality.monitor import QualityMonitor
from .quality.scorer import QualityScorer
from .quality.store import QualityReportStore
from .scheduling import IntervalSchedule, Scheduler, WeeklySchedule
from .settings import EngineSettings
from .utils.logging import configure_logging
from .utils.timestamps import utc_now

logger = logging.getLogger(__name__)

HOURLY_SUITE_WINDOW = timedelta(hours=1)
WEEKLY_ENTROPY_WINDOW = timedelta(days=7)


class EntropyEngine:
    """Long-lived engine instance.

    Usage::

        async with EntropyEngine() as engine:
            job = await engine.submit(ValidationType.STATISTICAL_SUITE, window, "alice")
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        config: Optional[SystemConfig] = None,
        events: Optional[EventStore] = None,
        client: Optional[AssessmentClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.config = cfg = config or get_config()
        self._clock = clock
        self.log_level = self.settings.log_level or cfg.logging.level
        self.log_format = self.settings.log_format or cfg.logging.format

        self.job_store = JobStore(self.settings.job_db_path)
        self.events = events if events is not None else SqliteEventStore(self.settings.event_db_path)
        self.reports = QualityReportStore(self.settings.report_db_path)
        self._owns_client = client is None
        self.client = client if client is not None else HttpAssessmentClient(
            base_url=self.settings.assessment_base_url or cfg.assessment.base_url,
            token=self.settings.assessment_token,
            timeout=cfg.assessment.request_timeout_seconds,
            connect_timeout=cfg.assessment.connect_timeout_seconds,
            min_bits={ValidationType.STATISTICAL_SUITE: cfg.chunking.suite_min_bits},
        )

        self.orchestrator = JobOrchestrator(self.job_store, self.events, self.client, cfg, clock)
        self.runner = JobRunner(self.orchestrator, cfg.jobs.max_concurrent, cfg.jobs.max_queued)
        self.watchdog = Watchdog(
            self.job_store,
            cfg.watchdog.max_runtime_minutes,
            cfg.watchdog.max_queue_wait_minutes,
            clock,
        )
        self.retention = RetentionSweeper(
            self.job_store,
            cfg.retention.job_retention_days,
            cfg.retention.result_retention_days,
            clock,
        )
        self.monitor = QualityMonitor(self.events, self.reports, QualityScorer(cfg.quality), clock)
        self.scheduler = Scheduler(clock)
        self._started = False

    async def __aenter__(self) -> "EntropyEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self, configure_logs: bool = True) -> None:
        """Open stores, fail orphaned jobs and start the maintenance loops."""
        if self._started:
            return
        if configure_logs:
            configure_logging(self.log_level, self.log_format)
        self._log_config_issues()

        await self.job_store.initialize()
        await self.reports.initialize()
        initialize = getattr(self.events, "initialize", None)
        if initialize is not None:
            await initialize()

        if self.config.watchdog.recover_on_startup:
            await recover_orphaned_jobs(self.job_store, now=self._clock())

        self._register_loops()
        self.scheduler.start()
        self._started = True
        logger.info("Entropy engine started")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.scheduler.stop()
        await self.runner.shutdown()
        if self._owns_client:
            await self.client.close()
        await self.job_store.close()
        await self.reports.close()
        close = getattr(self.events, "close", None)
        if close is not None:
            await close()
        self._started = False
        logger.info("Entropy engine stopped")

    # ── Job API ──────────────────────────────────────────────────────

    async def submit(
        self,
        validation_type: ValidationType,
        window: TimeWindow,
        created_by: Optional[str] = None,
    ) -> ValidationJob:
        """Create a job and hand it to the background runner.

        Raises
        ------
        JobQueueFullError
            When the runner has no room; no job is created in that case.
        EngineError
            VALIDATION for a bad window or an exhausted per-user quota.
        """
        self.runner.reserve()
        handed_off = False
        try:
            job = await self.orchestrator.create_job(validation_type, window, created_by)
            handed_off = True
            await self.runner.submit(job.job_id, reserved=True)
        finally:
            if not handed_off:
                self.runner.release()
        return job

    async def job(self, job_id: str) -> ValidationJob:
        job = await self.job_store.find_by_id(job_id)
        if job is None:
            raise not_found(f"Validation job {job_id} not found")
        return job

    async def job_result(self, job_id: str) -> RunSummary:
        return await self.orchestrator.job_result(job_id)

    async def trigger_scheduled(
        self, validation_type: ValidationType, span: timedelta,
    ) -> Optional[ValidationJob]:
        """Queue a job over the trailing *span*; ``None`` when the quota blocks it."""
        end = self._clock()
        window = TimeWindow.of(end - span, end)
        try:
            job = await self.submit(validation_type, window, self.config.schedules.scheduled_created_by)
        except EngineError as e:
            if e.kind is not ErrorKind.VALIDATION:
                raise
            logger.warning("Skipped scheduled %s validation: %s", validation_type.value, e.message)
            return None
        except JobQueueFullError as e:
            logger.warning("Skipped scheduled %s validation: %s", validation_type.value, e)
            return None
        logger.info("Scheduled %s validation queued as job %s", validation_type.value, job.job_id)
        return job

    # ── Internals ────────────────────────────────────────────────────

    def _register_loops(self) -> None:
        cfg = self.config
        if self.scheduler.names:
            return
        self.scheduler.register(
            "watchdog", IntervalSchedule(cfg.watchdog.interval_seconds), self.watchdog.sweep,
        )
        weekly_cleanup = WeeklySchedule(
            cfg.retention.weekday, cfg.retention.hour, cfg.retention.minute,
        )
        self.scheduler.register("job-retention", weekly_cleanup, self.retention.sweep)
        self.scheduler.register("result-retention", weekly_cleanup, self.retention.sweep_results)

        if cfg.schedules.hourly_suite_enabled:
            self.scheduler.register(
                "hourly-suite",
                IntervalSchedule(cfg.schedules.hourly_suite_interval_seconds),
                lambda: self.trigger_scheduled(ValidationType.STATISTICAL_SUITE, HOURLY_SUITE_WINDOW),
            )
        if cfg.schedules.weekly_entropy_enabled:
            self.scheduler.register(
                "weekly-entropy",
                WeeklySchedule(cfg.schedules.weekly_entropy_weekday, cfg.schedules.weekly_entropy_hour),
                lambda: self.trigger_scheduled(ValidationType.ENTROPY_ASSESSMENT, WEEKLY_ENTROPY_WINDOW),
            )
        if cfg.quality.report_interval_seconds:
            self.scheduler.register(
                "quality-report",
                IntervalSchedule(cfg.quality.report_interval_seconds),
                lambda: self.monitor.assess_recent(cfg.quality.report_window_hours),
            )

    def _log_config_issues(self) -> None:
        issues = validate_config(self.config)
        for issue in issues:
            level = issue.get("level", "WARNING")
            msg = issue.get("message", "")
            if level == "ERROR":
                logger.error("Config validation: %s", msg)
            else:
                logger.warning("Config validation: %s", msg)
        if not issues:
            logger.info("Config validation: all checks passed")
