"""
Structured configuration for the entropy engine using typed dataclasses.

This is the AUTHORITATIVE source of truth for all configuration values.
``config.py`` derives its flat constants from here.

Each subsystem gets its own dataclass.

Usage:
    from entropy_engine.config_structured import get_config
    cfg = get_config()
    cfg.watchdog.max_runtime_minutes
    cfg.quality.status_thresholds["GOOD"]
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

# Every stored event carries one gateway-whitened block of this size.
WHITENED_BYTES_PER_EVENT = 32


@dataclass
class ChunkingConfig:
    """Per-call size limits for the assessment service."""

    suite_max_bytes: int = 1_250_000
    suite_min_bits: int = 1_000_000
    entropy_max_bytes: int = 1_000_000
    bytes_per_event: int = WHITENED_BYTES_PER_EVENT

    def __post_init__(self):
        if self.bytes_per_event < 1:
            raise ValueError(f"bytes_per_event must be positive, got {self.bytes_per_event}")

    @property
    def suite_max_events(self) -> int:
        return max(1, self.suite_max_bytes // self.bytes_per_event)

    @property
    def suite_min_events(self) -> int:
        bits_per_event = self.bytes_per_event * 8
        return -(-self.suite_min_bits // bits_per_event)

    @property
    def entropy_max_events(self) -> int:
        return max(1, self.entropy_max_bytes // self.bytes_per_event)


@dataclass
class JobConfig:
    """Validation job execution limits."""

    max_active_jobs_per_user: int = 3
    chunk_timeout_seconds: float = 600.0
    max_concurrent: int = 2
    max_queued: int = 20


@dataclass
class WatchdogConfig:
    """Stuck-job detection."""

    interval_seconds: float = 600.0
    max_runtime_minutes: int = 30
    max_queue_wait_minutes: int = 60
    recover_on_startup: bool = True


@dataclass
class RetentionConfig:
    """Cleanup of terminal job records and per-chunk result rows."""

    job_retention_days: int = 7
    result_retention_days: int = 7
    # Sunday 02:00 UTC (Monday=0 … Sunday=6)
    weekday: int = 6
    hour: int = 2
    minute: int = 0


@dataclass
class QualityConfig:
    """Data-quality scoring policy."""

    expected_rate_hz: float = 184.0
    min_interval_factor: float = 0.1
    max_interval_factor: float = 5.0
    drift_min_samples: int = 10
    drift_min_span_hours: float = 0.001
    status_thresholds: Dict[str, float] = field(
        default_factory=lambda: {"EXCELLENT": 0.95, "GOOD": 0.85, "WARNING": 0.70}
    )
    report_interval_seconds: Optional[float] = None  # None disables periodic reports
    report_window_hours: float = 1.0


@dataclass
class AssessmentConfig:
    """Remote assessment service client."""

    base_url: str = "http://localhost:9090"
    connect_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 600.0


@dataclass
class ScheduleConfig:
    """Triggers that queue validation jobs for a trailing window."""

    hourly_suite_enabled: bool = True
    hourly_suite_interval_seconds: float = 3600.0
    weekly_entropy_enabled: bool = True
    weekly_entropy_weekday: int = 6
    weekly_entropy_hour: int = 0
    scheduled_created_by: str = "SCHEDULED_SERVICE"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "structured"  # "structured" (JSON lines, alias "json") or "plain"


@dataclass
class SystemConfig:
    """Top-level system configuration aggregating all subsystems."""

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    jobs: JobConfig = field(default_factory=JobConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    assessment: AssessmentConfig = field(default_factory=AssessmentConfig)
    schedules: ScheduleConfig = field(default_factory=ScheduleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ── Module-level singleton ──────────────────────────────────────────

_CONFIG: Optional[SystemConfig] = None


def get_config() -> SystemConfig:
    """Return the singleton SystemConfig instance.

    On first call, instantiates the default SystemConfig. Subsequent
    calls return the same instance so all callers share one source of
    truth.
    """
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = SystemConfig()
    return _CONFIG
