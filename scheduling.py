"""Explicit scheduler for the engine's periodic control loops.

Each registered loop sleeps until its schedule fires, runs its callable to
completion and only then computes the next delay, so executions of one
loop never overlap.  Failures are logged and the loop carries on.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from .errors import not_found, validation_error
from .utils.timestamps import ensure_utc, utc_now

logger = logging.getLogger(__name__)

LoopFn = Callable[[], Awaitable[object]]


class Schedule(Protocol):
    def next_delay(self, now: datetime) -> float:
        """Seconds from *now* until the next run."""
        ...


@dataclass(frozen=True)
class IntervalSchedule:
    """Fixed delay between the end of one run and the start of the next."""

    seconds: float

    def __post_init__(self):
        if self.seconds <= 0:
            raise validation_error(f"Interval must be positive, got {self.seconds}")

    def next_delay(self, now: datetime) -> float:
        return float(self.seconds)


@dataclass(frozen=True)
class WeeklySchedule:
    """Fires once a week at ``hour:minute`` UTC on ``weekday`` (Monday=0 .. Sunday=6)."""

    weekday: int
    hour: int = 0
    minute: int = 0

    def __post_init__(self):
        if not 0 <= self.weekday <= 6:
            raise validation_error(f"weekday must be 0..6, got {self.weekday}")
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise validation_error(f"Invalid time of day {self.hour:02d}:{self.minute:02d}")

    def next_run(self, now: datetime) -> datetime:
        now = ensure_utc(now)
        candidate = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        candidate += timedelta(days=(self.weekday - now.weekday()) % 7)
        if candidate <= now:
            candidate += timedelta(days=7)
        return candidate

    def next_delay(self, now: datetime) -> float:
        return (self.next_run(now) - ensure_utc(now)).total_seconds()


@dataclass
class _Entry:
    name: str
    schedule: Schedule
    fn: LoopFn
    lock: asyncio.Lock
    task: Optional[asyncio.Task] = None
    runs: int = 0
    failures: int = 0


class Scheduler:
    """Owns one background task per registered loop."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    @property
    def names(self) -> List[str]:
        return list(self._entries)

    @property
    def running(self) -> bool:
        return any(e.task is not None and not e.task.done() for e in self._entries.values())

    def register(self, name: str, schedule: Schedule, fn: LoopFn) -> None:
        if name in self._entries:
            raise validation_error(f"Loop {name!r} is already registered")
        self._entries[name] = _Entry(name=name, schedule=schedule, fn=fn, lock=asyncio.Lock())

    def stats(self, name: str) -> Dict[str, int]:
        entry = self._entry(name)
        return {"runs": entry.runs, "failures": entry.failures}

    def start(self) -> None:
        for entry in self._entries.values():
            if entry.task is None or entry.task.done():
                entry.task = asyncio.create_task(self._loop(entry), name=f"loop-{entry.name}")
        logger.info("Scheduler started %d loops: %s", len(self._entries), ", ".join(self._entries))

    async def stop(self) -> None:
        tasks = [e.task for e in self._entries.values() if e.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for entry in self._entries.values():
            entry.task = None
        logger.info("Scheduler stopped")

    async def run_now(self, name: str) -> bool:
        """Run one loop immediately, waiting for any in-flight run of it first.

        Returns ``True`` on success and ``False`` when the run raised.
        """
        return await self._execute(self._entry(name))

    # ── Internals ────────────────────────────────────────────────────

    def _entry(self, name: str) -> _Entry:
        try:
            return self._entries[name]
        except KeyError:
            raise not_found(f"No loop named {name!r}") from None

    async def _loop(self, entry: _Entry) -> None:
        while True:
            delay = max(entry.schedule.next_delay(self._clock()), 0.0)
            await asyncio.sleep(delay)
            await self._execute(entry)

    async def _execute(self, entry: _Entry) -> bool:
        async with entry.lock:
            try:
                await entry.fn()
            except Exception:  # noqa: BLE001
                entry.failures += 1
                logger.warning("Scheduled loop %s failed", entry.name, exc_info=True)
                return False
            finally:
                entry.runs += 1
        return True
