"""Validation job lifecycle: models, persistence, planning and execution."""
from .models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    AggregateTestResult,
    AssessmentResult,
    ChunkResultRow,
    JobFilter,
    JobStatus,
    RunSummary,
    TestOutcome,
    ValidationJob,
    ValidationType,
    aggregate_by_test,
    total_bits_tested,
)
from .store import JobStore
from .planner import plan_chunks
from .bitstream import to_bitstream
from .orchestrator import JobOrchestrator, running_progress
from .runner import JobQueueFullError, JobRunner

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "AggregateTestResult",
    "AssessmentResult",
    "ChunkResultRow",
    "JobFilter",
    "JobStatus",
    "RunSummary",
    "TestOutcome",
    "ValidationJob",
    "ValidationType",
    "aggregate_by_test",
    "total_bits_tested",
    "JobStore",
    "plan_chunks",
    "to_bitstream",
    "JobOrchestrator",
    "running_progress",
    "JobQueueFullError",
    "JobRunner",
]
