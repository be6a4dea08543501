"""Bit-stream representation handed to the assessment service."""
from __future__ import annotations

from typing import Sequence

from ..config import BYTES_PER_EVENT
from ..errors import validation_error
from ..events.models import EntropyEvent


def to_bitstream(events: Sequence[EntropyEvent], bytes_per_event: int = BYTES_PER_EVENT) -> bytes:
    """Concatenate each event's whitened entropy block in reception order."""
    parts = []
    for ev in events:
        block = ev.whitened_entropy
        if block is None:
            raise validation_error(f"Event {ev.sequence} carries no whitened entropy")
        if len(block) != bytes_per_event:
            raise validation_error(
                f"Event {ev.sequence} whitened entropy is {len(block)} bytes, expected {bytes_per_event}"
            )
        parts.append(block)
    return b"".join(parts)


def bit_length(bitstream: bytes) -> int:
    return len(bitstream) * 8
