"""Environment-driven deployment settings."""
from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings


class EngineSettings(BaseSettings):
    """Immutable settings loaded from environment / .env file.

    Fields left unset fall back to the matching value in the structured
    config (``SystemConfig.assessment`` and ``SystemConfig.logging``).
    """

    job_db_path: str = "entropy_jobs.db"
    event_db_path: str = "entropy_events.db"
    report_db_path: str = "quality_reports.db"
    assessment_base_url: Optional[str] = None
    assessment_token: Optional[str] = None
    log_level: Optional[str] = None
    log_format: Optional[str] = None

    model_config = {"env_prefix": "ENTROPY_", "env_file": ".env", "extra": "ignore"}
