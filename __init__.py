"""Entropy engine: event-stream quality scoring and validation job orchestration."""

__version__ = "1.0.0"
