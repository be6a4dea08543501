"""SQLite-backed persistence for quality reports."""
from __future__ import annotations

import json
from datetime import datetime
from typing import List, Optional

import aiosqlite

from ..errors import not_found
from ..utils.timestamps import to_db
from .models import QualityReport


class QualityReportStore:
    """Append-only report store; reports are never updated in place."""

    def __init__(self, db_path: str = "quality_reports.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the reports table if it doesn't exist."""
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS quality_reports (
                report_id TEXT PRIMARY KEY,
                generated_at TEXT NOT NULL,
                window_start TEXT NOT NULL,
                window_end TEXT NOT NULL,
                overall_quality_score REAL NOT NULL,
                clock_drift_us_per_hour REAL,
                payload TEXT NOT NULL
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_reports_generated ON quality_reports(generated_at)"
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

    # ── Writes ───────────────────────────────────────────────────────

    async def save(self, report: QualityReport) -> QualityReport:
        db = await self._conn()
        payload = report.model_dump_json(exclude={"overall_quality_score"})
        await db.execute(
            "INSERT INTO quality_reports (report_id, generated_at, window_start, window_end,"
            " overall_quality_score, clock_drift_us_per_hour, payload) VALUES (?,?,?,?,?,?,?)",
            (
                report.report_id,
                to_db(report.generated_at),
                to_db(report.window.start),
                to_db(report.window.end),
                report.overall_quality_score,
                report.clock_drift_us_per_hour,
                payload,
            ),
        )
        await db.commit()
        return report

    # ── Reads ────────────────────────────────────────────────────────

    async def get(self, report_id: str) -> QualityReport:
        """Fetch one report; NOT_FOUND when the id is unknown."""
        rows = await self._select("WHERE report_id = ?", (report_id,))
        if not rows:
            raise not_found(f"Quality report {report_id} not found")
        return rows[0]

    async def latest(self) -> Optional[QualityReport]:
        rows = await self._select("ORDER BY generated_at DESC LIMIT 1", ())
        return rows[0] if rows else None

    async def overlapping(self, start: datetime, end: datetime) -> List[QualityReport]:
        """Reports whose window overlaps ``[start, end)``, newest first."""
        return await self._select(
            "WHERE window_start < ? AND window_end > ? ORDER BY generated_at DESC",
            (to_db(end), to_db(start)),
        )

    async def low_quality(self, min_score: float, since: datetime) -> List[QualityReport]:
        """Reports scoring below *min_score* generated after *since*, worst first."""
        return await self._select(
            "WHERE overall_quality_score < ? AND generated_at > ? ORDER BY overall_quality_score ASC",
            (min_score, to_db(since)),
        )

    async def drift_issues(self, threshold_us_per_hour: float, since: datetime) -> List[QualityReport]:
        return await self._select(
            "WHERE ABS(clock_drift_us_per_hour) > ? AND generated_at > ? ORDER BY generated_at DESC",
            (threshold_us_per_hour, to_db(since)),
        )

    async def average_score(self, since: datetime) -> Optional[float]:
        """Mean score of reports generated after *since*; ``None`` when there are none."""
        db = await self._conn()
        async with db.execute(
            "SELECT AVG(overall_quality_score) FROM quality_reports WHERE generated_at > ?",
            (to_db(since),),
        ) as cur:
            row = await cur.fetchone()
        return float(row[0]) if row and row[0] is not None else None

    async def _select(self, clause: str, params: tuple) -> List[QualityReport]:
        db = await self._conn()
        async with db.execute(f"SELECT payload FROM quality_reports {clause}", params) as cur:
            rows = await cur.fetchall()
        return [QualityReport.model_validate(json.loads(r[0])) for r in rows]
