"""
Logging setup for the entropy engine.

Provides:
    - StructuredFormatter: one JSON object per record, for log shippers.
    - configure_logging: Root logger setup used at engine start (JSON or plain).
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

_PLAIN_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for machine-parseable log output.

    Each record becomes a single line with ``timestamp`` (the record's
    creation time, UTC), ``level``, ``logger`` and ``message``.  A
    ``job_id`` passed via ``extra={"job_id": ...}`` is carried through, and
    exception tracebacks land under ``"exception"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        job_id = getattr(record, "job_id", None)
        if job_id is not None:
            log_entry["job_id"] = job_id
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "structured") -> None:
    """Configure the root logger once for the whole process.

    ``fmt="plain"`` uses the pipe-separated human-readable format.
    ``"structured"`` (alias ``"json"``) and any unrecognised value emit one
    JSON object per line via ``StructuredFormatter``.
    """
    effective_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    if fmt == "plain":
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    else:
        handler.setFormatter(StructuredFormatter())
    logging.basicConfig(level=effective_level, handlers=[handler], force=True)
