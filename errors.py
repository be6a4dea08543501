"""Closed error taxonomy for the engine core.

Every failure the core reports is an ``EngineError`` tagged with one
``ErrorKind``.  Mapping a kind to an HTTP status happens only at the
transport boundary via ``http_status_for``.
"""
from __future__ import annotations

import enum
from typing import Dict


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    SERVICE_UNAVAILABLE = "service_unavailable"
    STATE_CONFLICT = "state_conflict"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"


class EngineError(Exception):
    """Tagged engine failure carrying a human-readable message."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __repr__(self) -> str:
        return f"EngineError({self.kind.value}, {self.message!r})"


# ── Constructors ─────────────────────────────────────────────────────


def validation_error(message: str) -> EngineError:
    """Bad caller input (inverted window, non-positive chunk size, ...)."""
    return EngineError(ErrorKind.VALIDATION, message)


def service_unavailable(message: str) -> EngineError:
    """Assessment service unreachable or erroring."""
    return EngineError(ErrorKind.SERVICE_UNAVAILABLE, message)


def state_conflict(message: str) -> EngineError:
    """Transition attempted from the wrong job status."""
    return EngineError(ErrorKind.STATE_CONFLICT, message)


def not_found(message: str) -> EngineError:
    """Unknown job or report id."""
    return EngineError(ErrorKind.NOT_FOUND, message)


def invalid_input(message: str) -> EngineError:
    """Assessment service rejected the bitstream for the requested kind."""
    return EngineError(ErrorKind.INVALID_INPUT, message)


# ── Error → HTTP mapping ────────────────────────────────────────────

HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STATE_CONFLICT: 409,
    ErrorKind.INVALID_INPUT: 422,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
}


def http_status_for(exc: Exception) -> int:
    """Status code for *exc*; anything that is not an ``EngineError`` is a 500."""
    if isinstance(exc, EngineError):
        return HTTP_STATUS.get(exc.kind, 500)
    return 500
