"""
Clock and task scheduling used for ingestion ticks and debounce timers.

Two implementations share one small interface:

- :class:`ThreadScheduler` runs every task on its own daemon thread, waiting
  on a :class:`threading.Event` so cancellation is immediate.
- :class:`ManualScheduler` keeps a virtual clock that only moves when
  :meth:`ManualScheduler.advance` is called; due tasks then run on the calling
  thread in deadline order. Handy for deterministic replays and tests.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, List, Optional, Protocol, Set, Tuple, Union

logger = logging.getLogger(__name__)

Interval = Union[float, Callable[[], float]]
Callback = Callable[[], None]


def _resolve_interval(interval: Interval) -> float:
    value = interval() if callable(interval) else interval
    return max(0.0, float(value))


class TaskHandle:
    """Cancellable reference to a scheduled one-shot or periodic task."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._cancelled = threading.Event()
        self._finished = threading.Event()

    def cancel(self) -> None:
        """Stop the task; it will not run again. Safe to call repeatedly."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def active(self) -> bool:
        return not (self._cancelled.is_set() or self._finished.is_set())

    def _wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True when cancelled meanwhile."""
        return self._cancelled.wait(timeout)

    def _finish(self) -> None:
        self._finished.set()

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        state = "cancelled" if self.cancelled else ("active" if self.active else "done")
        return f"<TaskHandle {self.name} {state}>"


class Scheduler(Protocol):
    def now(self) -> float:  # pragma: no cover - protocol
        ...

    def call_later(self, delay_s: float, fn: Callback, *, name: Optional[str] = None) -> TaskHandle:  # pragma: no cover - protocol
        ...

    def call_every(self, interval: Interval, fn: Callback, *, name: Optional[str] = None) -> TaskHandle:  # pragma: no cover - protocol
        ...

    def shutdown(self) -> None:  # pragma: no cover - protocol
        ...


def _run_task(handle: TaskHandle, fn: Callback) -> None:
    try:
        fn()
    except Exception:
        logger.exception("Scheduled task %s failed", handle.name)


class ThreadScheduler:
    """Runs each scheduled task on a dedicated daemon thread."""

    def __init__(self, thread_prefix: str = "Observatory") -> None:
        self._prefix = thread_prefix
        self._handles: Set[TaskHandle] = set()
        self._lock = threading.Lock()
        self._closed = False

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay_s: float, fn: Callback, *, name: Optional[str] = None) -> TaskHandle:
        handle = self._register(name or getattr(fn, "__name__", "task"))
        delay = max(0.0, float(delay_s))

        def _target() -> None:
            try:
                if handle._wait(delay):
                    return
                _run_task(handle, fn)
            finally:
                self._release(handle)

        self._start(handle, _target)
        return handle

    def call_every(self, interval: Interval, fn: Callback, *, name: Optional[str] = None) -> TaskHandle:
        """
        Run ``fn`` repeatedly. ``interval`` may be a callable; it is re-read
        before every wait so cadence changes apply from the next tick.
        """
        handle = self._register(name or getattr(fn, "__name__", "task"))

        def _target() -> None:
            try:
                while not handle._wait(_resolve_interval(interval)):
                    _run_task(handle, fn)
            finally:
                self._release(handle)

        self._start(handle, _target)
        return handle

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            handles = list(self._handles)
            self._handles.clear()
        for handle in handles:
            handle.cancel()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._handles)

    def _register(self, name: str) -> TaskHandle:
        handle = TaskHandle(name)
        with self._lock:
            if self._closed:
                raise RuntimeError("scheduler has been shut down")
            self._handles.add(handle)
        return handle

    def _release(self, handle: TaskHandle) -> None:
        handle._finish()
        with self._lock:
            self._handles.discard(handle)

    def _start(self, handle: TaskHandle, target: Callback) -> None:
        thread = threading.Thread(target=target, name=f"{self._prefix}:{handle.name}", daemon=True)
        thread.start()


_Entry = Tuple[float, int, TaskHandle, Callback, Optional[Interval]]


class ManualScheduler:
    """Virtual-time scheduler; nothing runs until :meth:`advance` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self._time = float(start)
        self._queue: List[_Entry] = []
        self._counter = itertools.count()
        self._lock = threading.RLock()
        self._closed = False

    def now(self) -> float:
        with self._lock:
            return self._time

    def call_later(self, delay_s: float, fn: Callback, *, name: Optional[str] = None) -> TaskHandle:
        handle = TaskHandle(name or getattr(fn, "__name__", "task"))
        self._push(self.now() + max(0.0, float(delay_s)), handle, fn, None)
        return handle

    def call_every(self, interval: Interval, fn: Callback, *, name: Optional[str] = None) -> TaskHandle:
        handle = TaskHandle(name or getattr(fn, "__name__", "task"))
        self._push(self.now() + _resolve_interval(interval), handle, fn, interval)
        return handle

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running due tasks in order. Returns tasks run."""
        with self._lock:
            target = self._time + max(0.0, float(seconds))
        ran = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0][0] > target:
                    self._time = max(self._time, target)
                    return ran
                due, _, handle, fn, interval = heapq.heappop(self._queue)
                self._time = max(self._time, due)
            if handle.cancelled:
                continue
            _run_task(handle, fn)
            ran += 1
            if interval is None:
                handle._finish()
            elif not handle.cancelled:
                self._push(due + max(1e-9, _resolve_interval(interval)), handle, fn, interval)

    def run_pending(self) -> int:
        """Run tasks that are already due without moving the clock."""
        return self.advance(0.0)

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            entries, self._queue = self._queue, []
        for entry in entries:
            entry[2].cancel()

    @property
    def pending(self) -> int:
        with self._lock:
            return sum(1 for entry in self._queue if not entry[2].cancelled)

    def _push(self, due: float, handle: TaskHandle, fn: Callback, interval: Optional[Interval]) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("scheduler has been shut down")
            heapq.heappush(self._queue, (due, next(self._counter), handle, fn, interval))


__all__ = ["Scheduler", "TaskHandle", "ThreadScheduler", "ManualScheduler", "Interval"]
