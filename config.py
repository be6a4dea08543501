"""
Central configuration for the entropy engine.

Flat-constant interface.  Every value is derived from the structured
config singleton in ``config_structured.py`` so there is a single source
of truth.  Constants here serve as keyword defaults for components built
without an explicit ``SystemConfig``; the engine itself reads the
structured config.

Config Status Legend
====================
  ACTIVE   Imported and used by running code.  Changing the value
           affects live behaviour.

Search for ``# STATUS:`` to locate all annotations.
"""
from typing import Dict, List, Optional

from .config_structured import SystemConfig
from .config_structured import get_config as _get_config

_cfg = _get_config()

# ── Chunking ───────────────────────────────────────────────────────────
BYTES_PER_EVENT = _cfg.chunking.bytes_per_event   # STATUS: ACTIVE; jobs/bitstream.py whitened block size
SUITE_MIN_BITS = _cfg.chunking.suite_min_bits     # STATUS: ACTIVE; assessment/client.py local minimum check

# ── Watchdog / retention ───────────────────────────────────────────────
WATCHDOG_MAX_RUNTIME_MINUTES = _cfg.watchdog.max_runtime_minutes        # STATUS: ACTIVE; RUNNING job age limit
WATCHDOG_MAX_QUEUE_WAIT_MINUTES = _cfg.watchdog.max_queue_wait_minutes  # STATUS: ACTIVE; QUEUED job age limit
JOB_RETENTION_DAYS = _cfg.retention.job_retention_days                  # STATUS: ACTIVE; RetentionSweeper.sweep
RESULT_RETENTION_DAYS = _cfg.retention.result_retention_days            # STATUS: ACTIVE; RetentionSweeper.sweep_results

# ── Quality ────────────────────────────────────────────────────────────
EXPECTED_RATE_HZ = _cfg.quality.expected_rate_hz            # STATUS: ACTIVE; quality/decay.py
DRIFT_MIN_SAMPLES = _cfg.quality.drift_min_samples          # STATUS: ACTIVE; quality/drift.py
DRIFT_MIN_SPAN_HOURS = _cfg.quality.drift_min_span_hours    # STATUS: ACTIVE; quality/drift.py
QUALITY_STATUS_THRESHOLDS: Dict[str, float] = dict(_cfg.quality.status_thresholds)  # STATUS: ACTIVE; quality/models.py StatusPolicy

_STATUS_ORDER = ("EXCELLENT", "GOOD", "WARNING")


def validate_config(cfg: Optional[SystemConfig] = None) -> List[dict]:
    """Check config for common misconfigurations.

    Returns a list of dicts: [{"level": "WARNING"|"ERROR", "message": str}].
    Checks *cfg*, or the shared singleton when omitted.  Called on engine
    startup.
    """
    cfg = cfg or _get_config()
    issues: List[dict] = []

    # 1. Status thresholds must be complete, within [0, 1] and descending
    thresholds = cfg.quality.status_thresholds
    missing = [name for name in _STATUS_ORDER if name not in thresholds]
    if missing:
        issues.append({
            "level": "ERROR",
            "message": f"Quality status thresholds missing entries: {missing}",
        })
    else:
        values = [thresholds[name] for name in _STATUS_ORDER]
        if any(not 0.0 <= v <= 1.0 for v in values):
            issues.append({
                "level": "ERROR",
                "message": f"Quality status thresholds must lie in [0, 1], got {values}",
            })
        if values != sorted(values, reverse=True):
            issues.append({
                "level": "ERROR",
                "message": (
                    "Quality status thresholds must descend EXCELLENT > GOOD > WARNING, "
                    f"got {values}"
                ),
            })

    # 2. A full suite chunk must be able to satisfy the service's minimum
    if cfg.chunking.suite_max_bytes * 8 < cfg.chunking.suite_min_bits:
        issues.append({
            "level": "ERROR",
            "message": (
                f"suite_max_bytes ({cfg.chunking.suite_max_bytes}) is below "
                f"suite_min_bits ({cfg.chunking.suite_min_bits}); every chunk would be rejected"
            ),
        })

    # 3. Watchdog must not fail jobs that are still inside the per-chunk timeout
    if cfg.watchdog.max_runtime_minutes * 60 < cfg.jobs.chunk_timeout_seconds:
        issues.append({
            "level": "WARNING",
            "message": (
                f"Watchdog max runtime ({cfg.watchdog.max_runtime_minutes} min) is shorter "
                f"than one chunk timeout ({cfg.jobs.chunk_timeout_seconds:.0f} s)"
            ),
        })

    # 4. Intervals and horizons must be positive
    if cfg.watchdog.interval_seconds <= 0:
        issues.append({"level": "ERROR", "message": "Watchdog interval must be positive"})
    if cfg.retention.job_retention_days <= 0 or cfg.retention.result_retention_days <= 0:
        issues.append({"level": "ERROR", "message": "Retention horizons must be positive"})
    if cfg.quality.expected_rate_hz <= 0:
        issues.append({
            "level": "ERROR",
            "message": f"expected_rate_hz must be positive, got {cfg.quality.expected_rate_hz}",
        })

    if cfg.logging.format not in ("structured", "json", "plain"):
        issues.append({
            "level": "WARNING",
            "message": f"Unknown LOG_FORMAT {cfg.logging.format!r}; falling back to structured",
        })

    return issues
