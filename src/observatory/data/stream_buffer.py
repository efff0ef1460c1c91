"""Bounded, insertion-ordered buffer for recent observations."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Iterable, List, Optional, Tuple

from ..core.events import ListenerRegistry, Listener, Subscription
from ..core.models import DataPoint, ensure_utc

Batch = Tuple[DataPoint, ...]


@dataclass(frozen=True, slots=True)
class BufferUpdate:
    """Delta produced by one buffer mutation."""

    batch: Batch
    dropped: int = 0
    cleared: bool = False
    size: int = 0


class StreamBuffer:
    """
    FIFO buffer that never holds more than ``max_size`` points.

    Contents are always a contiguous suffix of everything pushed since the
    last :meth:`clear`. Mutations happen under a lock, so readers never see
    a partially trimmed state, and every :meth:`push` / :meth:`clear` is
    followed by exactly one :class:`BufferUpdate` notification (an empty
    ``batch`` with ``cleared=True`` for clears).
    """

    def __init__(self, max_size: int) -> None:
        self._max_size = self._validate_size(max_size)
        self._points: Deque[DataPoint] = deque()
        self._lock = threading.RLock()
        self._updates: ListenerRegistry[BufferUpdate] = ListenerRegistry("buffer")
        self._total_pushed = 0

    # ------------------------------------------------------------------ ingest
    def push(self, batch: Iterable[DataPoint]) -> BufferUpdate:
        """Append ``batch`` in order, then drop the oldest entries beyond capacity."""
        points: Batch = tuple(point for point in batch if point is not None)
        with self._lock:
            self._points.extend(points)
            dropped = self._truncate()
            self._total_pushed += len(points)
            update = BufferUpdate(batch=points, dropped=dropped, size=len(self._points))
        self._updates.dispatch(update)
        return update

    def clear(self) -> BufferUpdate:
        with self._lock:
            dropped = len(self._points)
            self._points.clear()
            update = BufferUpdate(batch=(), dropped=dropped, cleared=True, size=0)
        self._updates.dispatch(update)
        return update

    def resize(self, max_size: int) -> int:
        """Change capacity, trimming immediately. Returns how many points were dropped."""
        size = self._validate_size(max_size)
        with self._lock:
            self._max_size = size
            return self._truncate()

    def subscribe(self, listener: Listener[BufferUpdate]) -> Subscription:
        return self._updates.subscribe(listener)

    # ------------------------------------------------------------------- query
    def snapshot(self) -> Batch:
        """Return an immutable copy of the current contents, oldest first."""
        with self._lock:
            return tuple(self._points)

    def latest(self, count: int) -> Batch:
        """Return up to ``count`` most recent points, oldest first."""
        if count <= 0:
            return ()
        with self._lock:
            size = len(self._points)
            if count >= size:
                return tuple(self._points)
            result: List[DataPoint] = []
            for point in reversed(self._points):
                result.append(point)
                if len(result) >= count:
                    break
        result.reverse()
        return tuple(result)

    def by_category(self, category: str) -> Batch:
        with self._lock:
            return tuple(point for point in self._points if point.category == category)

    def by_source(self, source: str) -> Batch:
        with self._lock:
            return tuple(point for point in self._points if point.source == source)

    def by_time_range(self, start: datetime, end: datetime) -> Batch:
        """Points with ``start <= timestamp <= end`` (bounds are swapped if reversed)."""
        lo, hi = ensure_utc(start), ensure_utc(end)
        if hi < lo:
            lo, hi = hi, lo
        with self._lock:
            return tuple(point for point in self._points if lo <= point.timestamp <= hi)

    def latest_timestamp(self) -> Optional[datetime]:
        with self._lock:
            if not self._points:
                return None
            return self._points[-1].timestamp

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def total_pushed(self) -> int:
        """Points pushed since construction (trimming does not decrease it)."""
        with self._lock:
            return self._total_pushed

    def utilization(self) -> float:
        """Fill level in percent."""
        with self._lock:
            return 100.0 * len(self._points) / self._max_size

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)

    # ----------------------------------------------------------------- helpers
    def _truncate(self) -> int:
        dropped = 0
        while len(self._points) > self._max_size:
            self._points.popleft()
            dropped += 1
        return dropped

    @staticmethod
    def _validate_size(max_size: int) -> int:
        if isinstance(max_size, bool) or not isinstance(max_size, int) or max_size <= 0:
            raise ValueError(f"max_size must be a positive integer, got {max_size!r}")
        return max_size


__all__ = ["Batch", "BufferUpdate", "StreamBuffer"]
