"""Tests for the job store: CRUD, conditional updates, bulk operations, results."""
import asyncio
from datetime import timedelta

import pytest

from conftest import T0
from entropy_engine.errors import EngineError, ErrorKind
from entropy_engine.events.models import TimeWindow
from entropy_engine.jobs.models import (
    TERMINAL_STATUSES,
    ChunkResultRow,
    JobFilter,
    JobStatus,
    ValidationJob,
    ValidationType,
)

WINDOW = TimeWindow.of(T0, T0 + timedelta(hours=1))


def _job(created_at=T0, status=JobStatus.QUEUED, created_by="alice", **kwargs):
    fields = dict(
        validation_type=ValidationType.STATISTICAL_SUITE,
        window=WINDOW,
        created_at=created_at,
        status=status,
        created_by=created_by,
    )
    if status != JobStatus.QUEUED:
        fields["started_at"] = created_at
    if status.terminal:
        fields["completed_at"] = created_at
    if status == JobStatus.FAILED:
        fields["error_message"] = "boom"
    fields.update(kwargs)
    return ValidationJob(**fields)


def _row(run_id, chunk_index, name="frequency", executed_at=T0):
    return ChunkResultRow(
        run_id=run_id,
        job_id="job-1",
        validation_type=ValidationType.STATISTICAL_SUITE,
        chunk_index=chunk_index,
        chunk_count=3,
        test_name=name,
        passed=True,
        p_value=0.5,
        bits_tested=8000,
        window_start=T0,
        window_end=T0 + timedelta(minutes=20),
        executed_at=executed_at,
        details={"blocks": 8},
    )


class TestCrud:

    async def test_create_and_find(self, job_store):
        job = await job_store.create(_job())
        fetched = await job_store.find_by_id(job.job_id)
        assert fetched == job
        assert fetched.status == JobStatus.QUEUED
        assert fetched.check_invariants() == []

    async def test_find_nonexistent(self, job_store):
        assert await job_store.find_by_id("nonexistent") is None

    async def test_chunk_plan_roundtrip(self, job_store):
        plan = [
            TimeWindow.of(T0, T0 + timedelta(minutes=30)),
            TimeWindow.of(T0 + timedelta(minutes=30), T0 + timedelta(hours=1)),
        ]
        job = await job_store.create(_job(total_chunks=2, chunk_plan=plan, status=JobStatus.RUNNING))
        fetched = await job_store.find_by_id(job.job_id)
        assert fetched.chunk_plan == plan

    async def test_list_jobs_newest_first(self, job_store):
        old = await job_store.create(_job(created_at=T0))
        new = await job_store.create(_job(created_at=T0 + timedelta(minutes=1), created_by="bob"))
        jobs = await job_store.list_jobs()
        assert [j.job_id for j in jobs] == [new.job_id, old.job_id]
        assert [j.job_id for j in await job_store.list_jobs(created_by="alice")] == [old.job_id]

    async def test_count_active_by_user(self, job_store):
        await job_store.create(_job())
        await job_store.create(_job(status=JobStatus.RUNNING))
        await job_store.create(_job(status=JobStatus.COMPLETED))
        await job_store.create(_job(created_by="bob"))
        assert await job_store.count_active_by_user("alice") == 2
        assert await job_store.count_active_by_user("carol") == 0


class TestConditionalUpdate:

    async def test_matching_status_applies(self, job_store):
        job = await job_store.create(_job())
        ok = await job_store.conditional_update_status(
            job.job_id, JobStatus.QUEUED,
            {"status": JobStatus.RUNNING, "started_at": T0 + timedelta(seconds=5)},
        )
        assert ok is True
        fetched = await job_store.find_by_id(job.job_id)
        assert fetched.status == JobStatus.RUNNING
        assert fetched.started_at == T0 + timedelta(seconds=5)

    async def test_mismatched_status_is_noop(self, job_store):
        job = await job_store.create(_job(status=JobStatus.COMPLETED))
        ok = await job_store.conditional_update_status(
            job.job_id, JobStatus.QUEUED, {"status": JobStatus.RUNNING},
        )
        assert ok is False
        assert (await job_store.find_by_id(job.job_id)).status == JobStatus.COMPLETED

    async def test_single_winner_under_concurrency(self, job_store):
        job = await job_store.create(_job())
        results = await asyncio.gather(*[
            job_store.conditional_update_status(
                job.job_id, JobStatus.QUEUED,
                {"status": JobStatus.RUNNING, "started_at": T0},
            )
            for _ in range(5)
        ])
        assert results.count(True) == 1

    async def test_expected_chunk_guard(self, job_store):
        job = await job_store.create(_job(status=JobStatus.RUNNING, total_chunks=3))
        assert not await job_store.conditional_update_status(
            job.job_id, JobStatus.RUNNING, {"current_chunk": 2}, expected_chunk=1,
        )
        assert await job_store.conditional_update_status(
            job.job_id, JobStatus.RUNNING, {"current_chunk": 1}, expected_chunk=0,
        )
        assert (await job_store.find_by_id(job.job_id)).current_chunk == 1

    async def test_immutable_columns_rejected(self, job_store):
        job = await job_store.create(_job())
        with pytest.raises(EngineError) as exc:
            await job_store.conditional_update_status(
                job.job_id, JobStatus.QUEUED, {"created_by": "mallory"},
            )
        assert exc.value.kind is ErrorKind.VALIDATION


class TestBulkOperations:

    async def test_bulk_update_where_matches_filter_only(self, job_store):
        old = await job_store.create(_job(status=JobStatus.RUNNING, created_at=T0))
        young = await job_store.create(
            _job(status=JobStatus.RUNNING, created_at=T0 + timedelta(hours=2))
        )
        queued = await job_store.create(_job(created_at=T0))
        count = await job_store.bulk_update_where(
            JobFilter(statuses=frozenset({JobStatus.RUNNING}), started_before=T0 + timedelta(hours=1)),
            JobStatus.FAILED,
            "too old",
            now=T0 + timedelta(hours=3),
        )
        assert count == 1
        failed = await job_store.find_by_id(old.job_id)
        assert failed.status == JobStatus.FAILED
        assert failed.error_message == "too old"
        assert failed.completed_at == T0 + timedelta(hours=3)
        assert failed.check_invariants() == []
        assert (await job_store.find_by_id(young.job_id)).status == JobStatus.RUNNING
        assert (await job_store.find_by_id(queued.job_id)).status == JobStatus.QUEUED

    async def test_bulk_fail_of_queued_sets_started_at(self, job_store):
        job = await job_store.create(_job())
        await job_store.bulk_update_where(
            JobFilter(statuses=frozenset({JobStatus.QUEUED})), JobStatus.FAILED, "restart", now=T0,
        )
        failed = await job_store.find_by_id(job.job_id)
        assert failed.started_at == T0
        assert failed.check_invariants() == []

    async def test_bulk_delete_where(self, job_store):
        done = await job_store.create(_job(status=JobStatus.COMPLETED))
        running = await job_store.create(_job(status=JobStatus.RUNNING))
        count = await job_store.bulk_delete_where(
            JobFilter(statuses=TERMINAL_STATUSES, created_before=T0 + timedelta(days=1))
        )
        assert count == 1
        assert await job_store.find_by_id(done.job_id) is None
        assert await job_store.find_by_id(running.job_id) is not None

    async def test_empty_filter_refused(self, job_store):
        await job_store.create(_job())
        with pytest.raises(EngineError):
            await job_store.bulk_delete_where(JobFilter())
        assert len(await job_store.list_jobs()) == 1


class TestChunkResults:

    async def test_results_ordered_by_chunk(self, job_store):
        await job_store.save_chunk_results([_row("run-1", 2), _row("run-1", 0, "runs")])
        await job_store.save_chunk_results([_row("run-1", 1), _row("run-2", 0)])
        rows = await job_store.list_chunk_results("run-1")
        assert [r.chunk_index for r in rows] == [0, 1, 2]
        assert rows[0].test_name == "runs"
        assert rows[0].details == {"blocks": 8}
        assert rows[0].chunk_count == 3

    async def test_save_nothing(self, job_store):
        assert await job_store.save_chunk_results([]) == 0

    async def test_delete_results_before(self, job_store):
        await job_store.save_chunk_results([
            _row("old", 0, executed_at=T0),
            _row("new", 0, executed_at=T0 + timedelta(days=10)),
        ])
        assert await job_store.delete_results_before(T0 + timedelta(days=1)) == 1
        assert await job_store.list_chunk_results("old") == []
        assert len(await job_store.list_chunk_results("new")) == 1
