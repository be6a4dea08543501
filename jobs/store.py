"""SQLite-backed persistence for validation jobs and their chunk results.

Every mutation of a job row after creation is a conditional update keyed by
the row's current status, so the orchestrator and the maintenance sweeps can
race freely without overwriting each other.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import aiosqlite

from ..errors import validation_error
from ..events.models import TimeWindow
from ..utils.timestamps import from_db, to_db, utc_now
from .models import (
    ACTIVE_STATUSES,
    ChunkResultRow,
    JobFilter,
    JobStatus,
    ValidationJob,
    ValidationType,
)

# Columns a conditional update may touch; identity and creation fields are immutable.
_MUTABLE_COLUMNS = frozenset({
    "status",
    "progress_percent",
    "current_chunk",
    "total_chunks",
    "chunk_plan",
    "result_run_id",
    "started_at",
    "completed_at",
    "error_message",
})


class JobStore:
    """Async SQLite store for job lifecycle tracking."""

    def __init__(self, db_path: str = "validation_jobs.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the jobs and chunk result tables if they don't exist."""
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS validation_jobs (
                job_id TEXT PRIMARY KEY,
                validation_type TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'QUEUED',
                progress_percent INTEGER NOT NULL DEFAULT 0,
                current_chunk INTEGER NOT NULL DEFAULT 0,
                total_chunks INTEGER,
                window_start TEXT NOT NULL,
                window_end TEXT NOT NULL,
                chunk_plan TEXT NOT NULL DEFAULT '[]',
                result_run_id TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                error_message TEXT,
                created_by TEXT
            )
        """)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS chunk_results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                validation_type TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                chunk_count INTEGER NOT NULL,
                test_name TEXT NOT NULL,
                passed INTEGER NOT NULL,
                p_value REAL,
                entropy_estimate REAL,
                bits_tested INTEGER NOT NULL,
                window_start TEXT NOT NULL,
                window_end TEXT NOT NULL,
                executed_at TEXT NOT NULL,
                details TEXT
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON validation_jobs(status, created_at)"
        )
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_results_run ON chunk_results(run_id, chunk_index)"
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    # ── Jobs: create & read ──────────────────────────────────────────

    async def create(self, job: ValidationJob) -> ValidationJob:
        """Insert a new job row and return it unchanged."""
        db = await self._conn()
        await db.execute(
            "INSERT INTO validation_jobs (job_id, validation_type, status, progress_percent,"
            " current_chunk, total_chunks, window_start, window_end, chunk_plan, result_run_id,"
            " created_at, started_at, completed_at, error_message, created_by)"
            " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (
                job.job_id,
                job.validation_type.value,
                job.status.value,
                job.progress_percent,
                job.current_chunk,
                job.total_chunks,
                to_db(job.window.start),
                to_db(job.window.end),
                _dump_plan(job.chunk_plan),
                job.result_run_id,
                to_db(job.created_at),
                to_db(job.started_at),
                to_db(job.completed_at),
                job.error_message,
                job.created_by,
            ),
        )
        await db.commit()
        return job

    async def find_by_id(self, job_id: str) -> Optional[ValidationJob]:
        """Fetch a single job by ID."""
        db = await self._conn()
        async with db.execute("SELECT * FROM validation_jobs WHERE job_id = ?", (job_id,)) as cur:
            row = await cur.fetchone()
            desc = cur.description
        if row is None:
            return None
        return self._row_to_job(row, desc)

    async def list_jobs(
        self,
        limit: int = 50,
        created_by: Optional[str] = None,
        status: Optional[JobStatus] = None,
    ) -> List[ValidationJob]:
        """List jobs ordered by creation time (newest first)."""
        clauses: List[str] = []
        params: List[Any] = []
        if created_by is not None:
            clauses.append("created_by = ?")
            params.append(created_by)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        db = await self._conn()
        async with db.execute(
            f"SELECT * FROM validation_jobs {where} ORDER BY created_at DESC LIMIT ?", params
        ) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_job(r, desc) for r in rows]

    async def count_active_by_user(self, created_by: str) -> int:
        """Number of QUEUED or RUNNING jobs owned by *created_by*."""
        statuses = sorted(s.value for s in ACTIVE_STATUSES)
        db = await self._conn()
        async with db.execute(
            f"SELECT COUNT(*) FROM validation_jobs WHERE created_by = ?"
            f" AND status IN ({','.join('?' * len(statuses))})",
            (created_by, *statuses),
        ) as cur:
            row = await cur.fetchone()
        return int(row[0])

    # ── Jobs: conditional mutation ───────────────────────────────────

    async def conditional_update_status(
        self,
        job_id: str,
        expected_status: JobStatus,
        fields: Dict[str, Any],
        expected_chunk: Optional[int] = None,
    ) -> bool:
        """Apply *fields* only if the row is still in *expected_status*.

        When *expected_chunk* is given the row's ``current_chunk`` must also
        match.  Returns ``False`` when nothing matched; of several concurrent
        callers with the same expectation at most one gets ``True``.
        """
        if not fields:
            raise validation_error("conditional update requires at least one field")
        unknown = set(fields) - _MUTABLE_COLUMNS
        if unknown:
            raise validation_error(f"Cannot update job columns: {sorted(unknown)}")

        sets = [f"{col} = ?" for col in fields]
        vals: List[Any] = [_to_column(col, value) for col, value in fields.items()]
        sql = f"UPDATE validation_jobs SET {', '.join(sets)} WHERE job_id = ? AND status = ?"
        vals.extend([job_id, expected_status.value])
        if expected_chunk is not None:
            sql += " AND current_chunk = ?"
            vals.append(expected_chunk)

        db = await self._conn()
        cur = await db.execute(sql, vals)
        await db.commit()
        return cur.rowcount == 1

    async def bulk_update_where(
        self,
        flt: JobFilter,
        new_status: JobStatus,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Move every job matching *flt* to *new_status* in one statement.

        Terminal targets also stamp ``completed_at`` (and ``started_at`` for
        jobs that never started) so the lifecycle invariants keep holding.
        """
        where, params = _filter_sql(flt)
        stamp = to_db(now or utc_now())
        sets = ["status = ?", "error_message = ?"]
        vals: List[Any] = [new_status.value, message]
        if new_status.terminal:
            sets.append("completed_at = ?")
            sets.append("started_at = COALESCE(started_at, ?)")
            vals.extend([stamp, stamp])
        db = await self._conn()
        cur = await db.execute(
            f"UPDATE validation_jobs SET {', '.join(sets)} WHERE {where}", (*vals, *params)
        )
        await db.commit()
        return cur.rowcount

    async def bulk_delete_where(self, flt: JobFilter) -> int:
        """Hard-delete every job matching *flt*; returns the number removed."""
        where, params = _filter_sql(flt)
        db = await self._conn()
        cur = await db.execute(f"DELETE FROM validation_jobs WHERE {where}", params)
        await db.commit()
        return cur.rowcount

    # ── Chunk results ────────────────────────────────────────────────

    async def save_chunk_results(self, rows: Iterable[ChunkResultRow]) -> int:
        payload = [
            (
                r.run_id,
                r.job_id,
                r.validation_type.value,
                r.chunk_index,
                r.chunk_count,
                r.test_name,
                int(r.passed),
                r.p_value,
                r.entropy_estimate,
                r.bits_tested,
                to_db(r.window_start),
                to_db(r.window_end),
                to_db(r.executed_at),
                json.dumps(r.details) if r.details is not None else None,
            )
            for r in rows
        ]
        if not payload:
            return 0
        db = await self._conn()
        await db.executemany(
            "INSERT INTO chunk_results (run_id, job_id, validation_type, chunk_index, chunk_count,"
            " test_name, passed, p_value, entropy_estimate, bits_tested, window_start, window_end,"
            " executed_at, details) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            payload,
        )
        await db.commit()
        return len(payload)

    async def list_chunk_results(self, run_id: str) -> List[ChunkResultRow]:
        """Result rows of one run ordered by chunk, then insertion order."""
        db = await self._conn()
        async with db.execute(
            "SELECT * FROM chunk_results WHERE run_id = ? ORDER BY chunk_index, id", (run_id,)
        ) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_result(r, desc) for r in rows]

    async def delete_results_before(self, cutoff: datetime) -> int:
        """Drop result rows executed before *cutoff*; independent of job retention."""
        db = await self._conn()
        cur = await db.execute("DELETE FROM chunk_results WHERE executed_at < ?", (to_db(cutoff),))
        await db.commit()
        return cur.rowcount

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _row_to_job(row, description) -> ValidationJob:
        cols = [d[0] for d in description]
        d = dict(zip(cols, row))
        return ValidationJob(
            job_id=d["job_id"],
            validation_type=ValidationType(d["validation_type"]),
            status=JobStatus(d["status"]),
            progress_percent=d["progress_percent"],
            current_chunk=d["current_chunk"],
            total_chunks=d["total_chunks"],
            window=TimeWindow(start=from_db(d["window_start"]), end=from_db(d["window_end"])),
            chunk_plan=_load_plan(d["chunk_plan"]),
            result_run_id=d["result_run_id"],
            created_at=from_db(d["created_at"]),
            started_at=from_db(d["started_at"]),
            completed_at=from_db(d["completed_at"]),
            error_message=d["error_message"],
            created_by=d["created_by"],
        )

    @staticmethod
    def _row_to_result(row, description) -> ChunkResultRow:
        cols = [d[0] for d in description]
        d = dict(zip(cols, row))
        d.pop("id", None)
        d["passed"] = bool(d["passed"])
        d["window_start"] = from_db(d["window_start"])
        d["window_end"] = from_db(d["window_end"])
        d["executed_at"] = from_db(d["executed_at"])
        d["details"] = json.loads(d["details"]) if d.get("details") else None
        return ChunkResultRow(**d)


def _dump_plan(plan: List[TimeWindow]) -> str:
    return json.dumps([[to_db(w.start), to_db(w.end)] for w in plan])


def _load_plan(raw: Optional[str]) -> List[TimeWindow]:
    return [TimeWindow(start=from_db(s), end=from_db(e)) for s, e in json.loads(raw or "[]")]


def _to_column(col: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return to_db(value)
    if isinstance(value, JobStatus):
        return value.value
    if col == "chunk_plan":
        return _dump_plan(value)
    return value


def _filter_sql(flt: JobFilter) -> Tuple[str, List[Any]]:
    """WHERE clause for *flt*; an empty filter is refused rather than matching every row."""
    clauses: List[str] = []
    params: List[Any] = []
    if flt.statuses:
        statuses = sorted(s.value for s in flt.statuses)
        clauses.append(f"status IN ({','.join('?' * len(statuses))})")
        params.extend(statuses)
    if flt.created_before is not None:
        clauses.append("created_at < ?")
        params.append(to_db(flt.created_before))
    if flt.started_before is not None:
        clauses.append("started_at IS NOT NULL AND started_at < ?")
        params.append(to_db(flt.started_before))
    if flt.created_by is not None:
        clauses.append("created_by = ?")
        params.append(flt.created_by)
    if not clauses:
        raise validation_error("Bulk job operations require at least one filter criterion")
    return " AND ".join(clauses), params
