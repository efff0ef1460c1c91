"""Lightweight timing statistics for listener dispatch and filter recomputes."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque

MAX_SAMPLES_PERF = 300


@dataclass
class PerfStats:
    """Ring-buffer style tracking of recent tick, dispatch and filter timings."""

    tick_times: Deque[float] = field(default_factory=lambda: deque(maxlen=MAX_SAMPLES_PERF))
    render_durations: Deque[float] = field(default_factory=lambda: deque(maxlen=MAX_SAMPLES_PERF))
    filter_durations: Deque[float] = field(default_factory=lambda: deque(maxlen=MAX_SAMPLES_PERF))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_tick(self, ts: float) -> None:
        """Add a tick timestamp (monotonic seconds)."""
        with self._lock:
            self.tick_times.append(ts)

    def record_render(self, start_ts: float, end_ts: float) -> None:
        """Track how long listeners took to consume one data batch."""
        with self._lock:
            self.render_durations.append(max(0.0, end_ts - start_ts))

    def record_filter(self, duration_ms: float) -> None:
        with self._lock:
            self.filter_durations.append(max(0.0, float(duration_ms)))

    def compute_fps(self) -> float:
        with self._lock:
            if len(self.tick_times) < 2:
                return 0.0
            dt = self.tick_times[-1] - self.tick_times[0]
            if dt <= 0:
                return 0.0
            return (len(self.tick_times) - 1) / dt

    def avg_render_ms(self) -> float:
        with self._lock:
            if not self.render_durations:
                return 0.0
            return 1000.0 * sum(self.render_durations) / len(self.render_durations)

    def avg_filter_ms(self) -> float:
        with self._lock:
            if not self.filter_durations:
                return 0.0
            return sum(self.filter_durations) / len(self.filter_durations)

    def as_dict(self) -> dict[str, float]:
        """Snapshot of the derived figures, handy for structured logging."""
        return {
            "fps": self.compute_fps(),
            "avg_render_ms": self.avg_render_ms(),
            "avg_filter_ms": self.avg_filter_ms(),
        }

    def reset(self) -> None:
        with self._lock:
            self.tick_times.clear()
            self.render_durations.clear()
            self.filter_durations.clear()
