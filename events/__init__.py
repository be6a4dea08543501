"""Decay events and the stores they are read from."""
from .models import EntropyEvent, TimeWindow
from .store import EventStore, InMemoryEventStore, SqliteEventStore

__all__ = ["EntropyEvent", "EventStore", "InMemoryEventStore", "SqliteEventStore", "TimeWindow"]
