"""Tests for the watchdog, retention sweeps and startup recovery."""
from datetime import timedelta

from conftest import T0
from entropy_engine.events.models import TimeWindow
from entropy_engine.jobs.models import ChunkResultRow, JobStatus, ValidationJob, ValidationType
from entropy_engine.maintenance import RetentionSweeper, Watchdog, recover_orphaned_jobs
from entropy_engine.maintenance.recovery import QUEUED_MESSAGE, RUNNING_MESSAGE

WINDOW = TimeWindow.of(T0, T0 + timedelta(hours=1))


def _job(status=JobStatus.QUEUED, created_at=T0, started_at=None):
    fields = dict(
        validation_type=ValidationType.ENTROPY_ASSESSMENT,
        window=WINDOW,
        status=status,
        created_at=created_at,
    )
    if status != JobStatus.QUEUED:
        fields["started_at"] = started_at or created_at
    if status.terminal:
        fields["completed_at"] = fields["started_at"]
    if status == JobStatus.FAILED:
        fields["error_message"] = "boom"
    return ValidationJob(**fields)


class TestWatchdog:

    async def test_fails_stuck_running_job(self, job_store):
        stuck = await job_store.create(_job(JobStatus.RUNNING, started_at=T0))
        fresh = await job_store.create(_job(JobStatus.RUNNING, started_at=T0 + timedelta(minutes=20)))
        report = await Watchdog(job_store).sweep(now=T0 + timedelta(minutes=31))

        assert report.stuck_running == 1
        failed = await job_store.find_by_id(stuck.job_id)
        assert failed.status == JobStatus.FAILED
        assert failed.error_message == "Job exceeded maximum runtime (30 minutes)"
        assert failed.completed_at == T0 + timedelta(minutes=31)
        assert (await job_store.find_by_id(fresh.job_id)).status == JobStatus.RUNNING

    async def test_fails_stale_queued_job(self, job_store):
        stale = await job_store.create(_job(created_at=T0))
        await job_store.create(_job(created_at=T0 + timedelta(minutes=30)))
        report = await Watchdog(job_store).sweep(now=T0 + timedelta(minutes=61))

        assert report.stale_queued == 1
        assert report.total == 1
        failed = await job_store.find_by_id(stale.job_id)
        assert failed.error_message == "Job queued longer than maximum queue wait (60 minutes)"
        assert failed.check_invariants() == []

    async def test_custom_limits(self, job_store):
        await job_store.create(_job(JobStatus.RUNNING, started_at=T0))
        watchdog = Watchdog(job_store, max_runtime_minutes=5)
        report = await watchdog.sweep(now=T0 + timedelta(minutes=6))
        assert report.stuck_running == 1
        assert watchdog.runtime_message.endswith("(5 minutes)")

    async def test_terminal_jobs_untouched(self, job_store):
        done = await job_store.create(_job(JobStatus.COMPLETED))
        report = await Watchdog(job_store).sweep(now=T0 + timedelta(days=1))
        assert report.total == 0
        assert (await job_store.find_by_id(done.job_id)).status == JobStatus.COMPLETED

    async def test_uses_clock_when_now_omitted(self, job_store):
        await job_store.create(_job(JobStatus.RUNNING, started_at=T0))
        watchdog = Watchdog(job_store, clock=lambda: T0 + timedelta(hours=1))
        assert (await watchdog.sweep()).stuck_running == 1


class TestRetention:

    async def test_only_old_terminal_jobs_deleted(self, job_store):
        old_done = await job_store.create(_job(JobStatus.COMPLETED, created_at=T0))
        old_failed = await job_store.create(_job(JobStatus.FAILED, created_at=T0))
        old_queued = await job_store.create(_job(JobStatus.QUEUED, created_at=T0))
        old_running = await job_store.create(_job(JobStatus.RUNNING, created_at=T0))
        recent = await job_store.create(_job(JobStatus.COMPLETED, created_at=T0 + timedelta(days=5)))

        deleted = await RetentionSweeper(job_store).sweep(now=T0 + timedelta(days=8))

        assert deleted == 2
        for gone in (old_done, old_failed):
            assert await job_store.find_by_id(gone.job_id) is None
        for kept in (old_queued, old_running, recent):
            assert await job_store.find_by_id(kept.job_id) is not None

    async def test_results_have_their_own_horizon(self, job_store):
        def row(run_id, executed_at):
            return ChunkResultRow(
                run_id=run_id, job_id="j", validation_type=ValidationType.ENTROPY_ASSESSMENT,
                chunk_index=0, chunk_count=1, test_name="collision", passed=True,
                entropy_estimate=7.5, bits_tested=256, window_start=T0,
                window_end=T0 + timedelta(hours=1), executed_at=executed_at,
            )

        await job_store.save_chunk_results([row("old", T0), row("new", T0 + timedelta(days=3))])
        sweeper = RetentionSweeper(job_store, result_retention_days=2)
        assert await sweeper.sweep_results(now=T0 + timedelta(days=4)) == 1
        assert await job_store.list_chunk_results("old") == []
        assert len(await job_store.list_chunk_results("new")) == 1


class TestRecovery:

    async def test_orphans_failed_with_restart_messages(self, job_store):
        queued = await job_store.create(_job(JobStatus.QUEUED))
        running = await job_store.create(_job(JobStatus.RUNNING))
        done = await job_store.create(_job(JobStatus.COMPLETED))

        report = await recover_orphaned_jobs(job_store, now=T0 + timedelta(minutes=1))

        assert (report.queued, report.running) == (1, 1)
        q = await job_store.find_by_id(queued.job_id)
        r = await job_store.find_by_id(running.job_id)
        assert q.error_message == QUEUED_MESSAGE == "Server restarted before job could start"
        assert r.error_message == RUNNING_MESSAGE == "Server restarted during job processing"
        assert q.check_invariants() == [] and r.check_invariants() == []
        assert (await job_store.find_by_id(done.job_id)).status == JobStatus.COMPLETED

    async def test_nothing_to_recover(self, job_store):
        report = await recover_orphaned_jobs(job_store)
        assert (report.queued, report.running) == (0, 0)
