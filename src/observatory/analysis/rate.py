from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Literal, Optional, Tuple


RateQuality = Literal["empty", "smoothed"]


@dataclass
class RateEstimate:
    """Container for an ingestion rate estimate (events per second)."""

    hz_effective: float
    hz_instant: Optional[float]
    hz_window: Optional[float]
    quality: RateQuality


class ThroughputMeter:
    """
    Estimate an event rate from counts recorded on every tick.

    Notes
    -----
    - :meth:`record` is called per tick with the number of events ingested;
      it only bumps a counter, so cost is O(1) regardless of buffer size.
    - :meth:`sample` is called on a fixed cadence (the metrics interval).
      It turns the counter into an instantaneous rate and folds it into an
      exponential moving average. A sliding window of recent samples gives
      a second, steadier estimate.
    - Times are monotonic seconds supplied by the caller.
    """

    def __init__(self, alpha: float = 0.5, window_size: int = 10) -> None:
        if not 0.0 < alpha <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        if window_size <= 1:
            raise ValueError("window_size must be > 1")
        self.alpha = float(alpha)
        self._pending = 0
        self._total = 0
        self._samples: Deque[Tuple[float, int]] = deque(maxlen=window_size)
        self._ema: Optional[float] = None
        self._last_instant: Optional[float] = None

    def record(self, count: int = 1) -> None:
        """Add ``count`` events to the current sampling interval."""
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        self._pending += int(count)

    def sample(self, now: float) -> RateEstimate:
        """
        Close the current interval at ``now`` and return the updated estimate.

        The first call only establishes the reference time.
        """
        self._total += self._pending
        self._pending = 0
        if self._samples:
            t_prev, total_prev = self._samples[-1]
            span = float(now) - t_prev
            if span > 0:
                instant = (self._total - total_prev) / span
                self._last_instant = instant
                if self._ema is None:
                    self._ema = instant
                else:
                    self._ema = self.alpha * instant + (1.0 - self.alpha) * self._ema
        self._samples.append((float(now), self._total))
        return self.estimate()

    @property
    def window_hz(self) -> Optional[float]:
        """Average rate over the sampling window, or ``None`` with fewer than 2 samples."""
        if len(self._samples) < 2:
            return None
        t0, c0 = self._samples[0]
        t1, c1 = self._samples[-1]
        span = t1 - t0
        if span <= 0:
            return None
        return (c1 - c0) / span

    def estimate(self) -> RateEstimate:
        hz_window = self.window_hz
        if self._ema is None:
            return RateEstimate(hz_effective=0.0, hz_instant=None, hz_window=hz_window, quality="empty")
        return RateEstimate(
            hz_effective=max(0.0, self._ema),
            hz_instant=self._last_instant,
            hz_window=hz_window,
            quality="smoothed",
        )

    @property
    def total(self) -> int:
        """Events recorded so far, including the open interval."""
        return self._total + self._pending

    def reset(self) -> None:
        """Drop all samples and counters."""
        self._pending = 0
        self._total = 0
        self._samples.clear()
        self._ema = None
        self._last_instant = None
