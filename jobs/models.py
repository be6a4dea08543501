"""Validation job data models."""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from ..events.models import TimeWindow
from ..utils.timestamps import utc_now


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


ACTIVE_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.QUEUED, JobStatus.RUNNING})
TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class ValidationType(str, enum.Enum):
    STATISTICAL_SUITE = "STATISTICAL_SUITE"
    ENTROPY_ASSESSMENT = "ENTROPY_ASSESSMENT"


class ValidationJob(BaseModel):
    """Persistent representation of one validation job.

    Lifecycle: QUEUED -> RUNNING -> (COMPLETED | FAILED).  ``chunk_plan``
    holds the sub-windows fixed at planning time so chunk execution does
    not depend on re-planning against a growing event store.
    """

    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    validation_type: ValidationType
    status: JobStatus = JobStatus.QUEUED
    progress_percent: int = 0
    current_chunk: int = 0
    total_chunks: Optional[int] = None
    window: TimeWindow
    chunk_plan: List[TimeWindow] = Field(default_factory=list)
    result_run_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_by: Optional[str] = None

    def check_invariants(self) -> List[str]:
        """Return descriptions of any broken lifecycle invariants."""
        problems: List[str] = []
        if (self.completed_at is not None) != self.status.terminal:
            problems.append("completed_at must be set exactly when status is terminal")
        if (self.started_at is not None) != (self.status != JobStatus.QUEUED):
            problems.append("started_at must be set exactly when status is not QUEUED")
        if self.progress_percent == 100 and self.status != JobStatus.COMPLETED:
            problems.append("progress_percent may reach 100 only when COMPLETED")
        if not 0 <= self.progress_percent <= 100:
            problems.append("progress_percent must lie in [0, 100]")
        if self.status == JobStatus.FAILED and not self.error_message:
            problems.append("FAILED jobs must carry an error message")
        return problems


@dataclass(frozen=True)
class JobFilter:
    """Selection used by bulk conditional updates and deletes.

    All given criteria must hold; ``None`` criteria are ignored.
    """

    statuses: FrozenSet[JobStatus] = frozenset()
    created_before: Optional[datetime] = None
    started_before: Optional[datetime] = None
    created_by: Optional[str] = None


# ── Assessment results ───────────────────────────────────────────────


class TestOutcome(BaseModel):
    """One named test or estimator reported by the assessment service."""

    __test__ = False  # not a pytest class

    name: str
    passed: bool
    p_value: Optional[float] = None
    entropy_estimate: Optional[float] = None
    details: Optional[Dict[str, object]] = None


class AssessmentResult(BaseModel):
    tests: List[TestOutcome] = Field(default_factory=list)
    entropy_estimates: Optional[Dict[str, Optional[float]]] = None


class ChunkResultRow(BaseModel):
    """One persisted result row, tagged with the chunk that produced it."""

    run_id: str
    job_id: str
    validation_type: ValidationType
    chunk_index: int
    chunk_count: int
    test_name: str
    passed: bool
    p_value: Optional[float] = None
    entropy_estimate: Optional[float] = None
    bits_tested: int
    window_start: datetime
    window_end: datetime
    executed_at: datetime = Field(default_factory=utc_now)
    details: Optional[Dict[str, object]] = None


class AggregateTestResult(BaseModel):
    """One test's outcome across every chunk of a run.

    A test passes only when it passed in every chunk; the reported p-value
    and entropy estimate are the minimum over chunks.
    """

    test_name: str
    passed: bool
    chunks: int
    min_p_value: Optional[float] = None
    min_entropy_estimate: Optional[float] = None
    last_executed_at: datetime


def aggregate_by_test(rows: List[ChunkResultRow]) -> List[AggregateTestResult]:
    """Collapse per-chunk rows into one entry per test name, in first-seen order."""
    grouped: Dict[str, List[ChunkResultRow]] = {}
    for row in rows:
        grouped.setdefault(row.test_name, []).append(row)

    def _min(values):
        present = [v for v in values if v is not None]
        return min(present) if present else None

    return [
        AggregateTestResult(
            test_name=name,
            passed=all(r.passed for r in group),
            chunks=len({r.chunk_index for r in group}),
            min_p_value=_min(r.p_value for r in group),
            min_entropy_estimate=_min(r.entropy_estimate for r in group),
            last_executed_at=max(r.executed_at for r in group),
        )
        for name, group in grouped.items()
    ]


def total_bits_tested(rows: List[ChunkResultRow]) -> int:
    """Bits assessed by the run, counting each chunk once."""
    per_chunk: Dict[int, int] = {}
    for row in rows:
        per_chunk[row.chunk_index] = row.bits_tested
    return sum(per_chunk.values())


class RunSummary(BaseModel):
    """Aggregate view of a run: one entry per test plus the raw chunk rows."""

    run_id: str
    job_id: str
    status: JobStatus
    chunk_count: int
    total_tests: int
    passed_tests: int
    pass_rate: float
    total_bits_tested: int = 0
    min_entropy: Optional[float] = None
    tests: List[AggregateTestResult] = Field(default_factory=list)
    rows: List[ChunkResultRow] = Field(default_factory=list)

    @property
    def failed_tests(self) -> int:
        return self.total_tests - self.passed_tests
