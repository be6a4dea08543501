"""Partition a validation window into bounded sub-windows."""
from __future__ import annotations

import bisect
import logging
from datetime import datetime
from typing import Iterable, List

from ..errors import validation_error
from ..events.models import TimeWindow
from ..utils.timestamps import ensure_utc

logger = logging.getLogger(__name__)


def plan_chunks(
    window: TimeWindow,
    max_chunk_events: int,
    timestamps: Iterable[datetime],
    min_chunk_events: int = 0,
) -> List[TimeWindow]:
    """Split *window* into ordered, contiguous chunks of at most *max_chunk_events*.

    Parameters
    ----------
    window : TimeWindow
        Half-open range to cover.  The returned chunks tile it exactly.
    max_chunk_events : int
        Upper bound on events per chunk.
    timestamps : iterable of datetime
        Reception times of the events in the window (order irrelevant).
    min_chunk_events : int
        When positive, the trailing chunk borrows events from its
        predecessor so it is not smaller than this, where the totals allow.

    Returns
    -------
    list of TimeWindow
        Always at least one chunk; an empty window yields the window itself.

    Notes
    -----
    A cut never separates events with an identical timestamp.  A run of
    equal timestamps longer than *max_chunk_events* is kept whole and the
    resulting chunk is oversized.
    """
    if max_chunk_events <= 0:
        raise validation_error(f"max_chunk_events must be positive, got {max_chunk_events}")
    if min_chunk_events < 0 or min_chunk_events > max_chunk_events:
        raise validation_error(
            f"min_chunk_events must lie in [0, {max_chunk_events}], got {min_chunk_events}"
        )

    ts = sorted(t for t in (ensure_utc(t) for t in timestamps) if window.contains(t))
    n = len(ts)

    starts = [0]
    i = 0
    while n - i > max_chunk_events:
        k = i + max_chunk_events
        cut = bisect.bisect_left(ts, ts[k], lo=i)
        if cut == i:
            cut = bisect.bisect_right(ts, ts[k], lo=i)
            logger.warning(
                "%d events share timestamp %s; chunk exceeds %d events",
                cut - i, ts[i].isoformat(), max_chunk_events,
            )
            if cut >= n:
                break
        starts.append(cut)
        i = cut

    if min_chunk_events and len(starts) > 1 and n >= min_chunk_events and n - starts[-1] < min_chunk_events:
        s = bisect.bisect_left(ts, ts[n - min_chunk_events])
        if s > starts[-2] and n - s <= max_chunk_events:
            starts[-1] = s

    bounds = [window.start] + [ts[s] for s in starts[1:]] + [window.end]
    chunks = [TimeWindow(start=a, end=b) for a, b in zip(bounds, bounds[1:])]
    logger.debug("Planned %d chunks for %d events in %s", len(chunks), n, window)
    return chunks
