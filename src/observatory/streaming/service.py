"""Streaming service: ingestion cadence, buffering, metrics and subscriptions."""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Iterable, Mapping, Optional, Union

from ..analysis.perf_metrics import PerfStats
from ..analysis.rate import ThroughputMeter
from ..config.runtime import StreamingConfig
from ..core.errors import StreamConnectionError
from ..core.events import ListenerRegistry, Listener, Subscription
from ..core.models import DataPoint, DataScenario, StreamingMetrics, StreamingStatus
from ..core.scheduler import Scheduler, TaskHandle, ThreadScheduler
from ..data.stream_buffer import Batch, BufferUpdate, StreamBuffer
from ..perf_system import get_process_memory_mb
from ..sources import DataSource, SyntheticSource, profile_for
from ..tools.debug import time_block

logger = logging.getLogger(__name__)

PointLike = Union[DataPoint, Mapping[str, Any]]

MAX_RECONNECT_DELAY_S = 30.0


def _resolved(value: Any = None) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


class StreamingService:
    """
    Owns the :class:`StreamBuffer` and drives ingestion into it.

    Status machine::

        disconnected --connect--> connecting --opened--> connected
        connecting --timeout/failure--> error
        connected --transport loss--> error
        error --reconnect (auto_reconnect only)--> connecting
        any --disconnect--> disconnected

    Every buffer write (tick, :meth:`inject_test_data`, :meth:`clear_buffer`)
    is serialised by one lock and followed by exactly one synchronous
    ``on_data`` dispatch. Status transitions are queued under the state lock
    and delivered after it is released, one at a time and in transition
    order, so a status listener may call back into the service.

    With ``auto_reconnect`` enabled a transport loss schedules ``connect``
    again with exponential backoff, up to ``max_reconnect_attempts`` times.

    Construct one instance at start-up and pass it to consumers; call
    :meth:`shutdown` (or use it as a context manager) to release the
    scheduler threads.
    """

    def __init__(
        self,
        config: StreamingConfig | None = None,
        *,
        source: DataSource | None = None,
        scheduler: Scheduler | None = None,
        memory_probe: Callable[[], float] = get_process_memory_mb,
    ) -> None:
        self._config = (config or StreamingConfig()).sanitized()
        self._owns_scheduler = scheduler is None
        self._scheduler: Scheduler = scheduler or ThreadScheduler("ObservatoryStream")
        self._source: DataSource = source or SyntheticSource(
            self._config.categories,
            self._config.sources,
            seed=self._config.seed,
            monotonic=self._scheduler.now,
        )
        self._memory_probe = memory_probe

        self._buffer = StreamBuffer(self._config.max_buffer_size)
        self._lock = threading.RLock()
        self._mutation_lock = threading.RLock()

        self._status = StreamingStatus.DISCONNECTED
        self._attempt = 0
        self._connect_future: Optional[Future] = None
        self._connect_timeout: Optional[TaskHandle] = None
        self._tick_handle: Optional[TaskHandle] = None
        self._metrics_handle: Optional[TaskHandle] = None
        self._connected_at: Optional[float] = None
        self._reconnect_handle: Optional[TaskHandle] = None
        self._reconnect_attempts = 0

        self._status_events: Deque[StreamingStatus] = deque()
        self._status_draining = False

        self._spike_handle: Optional[TaskHandle] = None
        self._spike_baseline: Optional[int] = None
        self._spike_seq = 0
        self._carry = 0.0

        self._meter = ThroughputMeter()
        self._perf = PerfStats()
        self._last_update: Optional[datetime] = None
        self._metrics = StreamingMetrics()

        self._data_listeners: ListenerRegistry[Batch] = ListenerRegistry("data")
        self._status_listeners: ListenerRegistry[StreamingStatus] = ListenerRegistry("status")
        self._metrics_listeners: ListenerRegistry[StreamingMetrics] = ListenerRegistry("metrics")
        self._buffer_subscription = self._buffer.subscribe(self._on_buffer_update)
        self._closed = False

    # -------------------------------------------------------------- lifecycle
    def connect(self) -> Future:
        """
        Start connecting; the returned future resolves once ``connected``.

        Fails with :class:`StreamConnectionError` when the source cannot be
        opened within ``connect_timeout_ms``. Already connected: resolves
        immediately. Already connecting: returns the pending future.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("service has been shut down")
            if self._status is StreamingStatus.CONNECTED:
                return _resolved()
            if self._status is StreamingStatus.CONNECTING and self._connect_future is not None:
                return self._connect_future

            self._attempt += 1
            attempt = self._attempt
            future: Future = Future()
            self._connect_future = future
            self._set_status(StreamingStatus.CONNECTING)
            timeout_s = self._config.connect_timeout_ms / 1000.0
            self._connect_timeout = self._scheduler.call_later(
                timeout_s,
                lambda: self._fail_connect(attempt, StreamConnectionError(f"connect timed out after {timeout_s:.3f}s")),
                name="connect-timeout",
            )
        self._drain_status()
        self._scheduler.call_later(0.0, lambda: self._open_source(attempt), name="connect")
        return future

    def disconnect(self) -> None:
        """Stop ingestion and land on ``disconnected``; the buffer is kept. Idempotent."""
        with self._lock:
            self._disconnect_locked()
        self._drain_status()

    def shutdown(self) -> None:
        """Disconnect, cancel timers and drop all listeners."""
        with self._lock:
            if self._closed:
                return
            self._disconnect_locked()
            self._cancel_spike()
            self._closed = True
        self._drain_status()
        self._buffer_subscription.unsubscribe()
        self._data_listeners.clear()
        self._status_listeners.clear()
        self._metrics_listeners.clear()
        if self._owns_scheduler:
            self._scheduler.shutdown()

    def __enter__(self) -> "StreamingService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ---------------------------------------------------------- configuration
    def change_scenario(self, scenario: DataScenario | str) -> None:
        """Swap the generation profile; applies from the next tick, buffer untouched."""
        parsed = DataScenario.parse(scenario)
        with self._lock:
            self._config = replace(self._config, scenario=parsed)
        logger.info("Changed to scenario: %s", parsed.value)

    def update_config(self, partial: Mapping[str, Any] | None = None, **changes: Any) -> StreamingConfig:
        """
        Merge ``partial`` (and keyword ``changes``) into the current config.

        ``max_buffer_size`` applies immediately and may trim the buffer;
        cadence changes apply on the next scheduled tick.
        """
        payload = dict(partial or {})
        payload.update(changes)
        with self._lock:
            old = self._config
            new = old.merged(payload)
            self._config = new
            if isinstance(self._source, SyntheticSource):
                self._source.categories = new.categories
                self._source.sources = new.sources
        if new.max_buffer_size != old.max_buffer_size:
            with self._mutation_lock:
                dropped = self._buffer.resize(new.max_buffer_size)
            if dropped:
                logger.info("Buffer resized to %d, dropped %d points", new.max_buffer_size, dropped)
        return replace(new)

    def get_config(self) -> StreamingConfig:
        with self._lock:
            return replace(self._config)

    # ------------------------------------------------------------- buffer ops
    def clear_buffer(self) -> None:
        """Empty the buffer; listeners receive an empty batch."""
        with self._mutation_lock:
            self._buffer.clear()
        with self._lock:
            metrics = self._build_metrics()
            self._metrics = metrics
        self._metrics_listeners.dispatch(metrics)

    def inject_test_data(self, points: Iterable[PointLike]) -> None:
        """Append points directly, bypassing the generator and cadence."""
        batch = [p if isinstance(p, DataPoint) else DataPoint.from_mapping(p) for p in points]
        with self._mutation_lock:
            self._buffer.push(batch)
        with self._lock:
            self._meter.record(len(batch))

    def simulate_data_spike(self, duration_ms: float = 2000, multiplier: float = 5) -> None:
        """
        Scale ``points_per_tick`` by ``multiplier`` for ``duration_ms``.

        On expiry the baseline captured now is restored, even if the config
        changed meanwhile. A spike started during another one keeps the
        original baseline and restarts the window.
        """
        if duration_ms < 0 or multiplier < 0:
            raise ValueError("duration_ms and multiplier must be >= 0")
        with self._lock:
            if self._spike_handle is not None and self._spike_baseline is not None:
                self._spike_handle.cancel()
                baseline = self._spike_baseline
            else:
                baseline = self._config.points_per_tick
            self._spike_baseline = baseline
            self._config = replace(self._config, points_per_tick=int(round(baseline * multiplier)))
            self._spike_seq += 1
            seq = self._spike_seq
            self._spike_handle = self._scheduler.call_later(
                duration_ms / 1000.0, lambda: self._end_spike(seq), name="spike-revert"
            )
        logger.info("Data spike x%s for %.0f ms (baseline %d points/tick)", multiplier, duration_ms, baseline)

    # ------------------------------------------------------------------ reads
    def get_buffered_data(self) -> Batch:
        return self._buffer.snapshot()

    def get_status(self) -> StreamingStatus:
        with self._lock:
            return self._status

    def get_metrics(self) -> StreamingMetrics:
        with self._lock:
            return self._build_metrics()

    def get_data_by_category(self, category: str) -> Batch:
        return self._buffer.by_category(category)

    def get_data_by_source(self, source: str) -> Batch:
        return self._buffer.by_source(source)

    def get_data_by_time_range(self, start: datetime, end: datetime) -> Batch:
        return self._buffer.by_time_range(start, end)

    def get_latest_data_points(self, count: int) -> Batch:
        return self._buffer.latest(count)

    def report_filter_time(self, duration_ms: float) -> None:
        """Record a filter recompute duration for the ``filter_time`` metric."""
        self._perf.record_filter(duration_ms)

    @property
    def buffer(self) -> StreamBuffer:
        return self._buffer

    @property
    def source(self) -> DataSource:
        return self._source

    # ---------------------------------------------------------- subscriptions
    def on_data(self, listener: Listener[Batch]) -> Subscription:
        return self._data_listeners.subscribe(listener)

    def on_status_change(self, listener: Listener[StreamingStatus]) -> Subscription:
        return self._status_listeners.subscribe(listener)

    def on_metrics_update(self, listener: Listener[StreamingMetrics]) -> Subscription:
        return self._metrics_listeners.subscribe(listener)

    # ------------------------------------------------------------- internals
    def _set_status(self, status: StreamingStatus) -> None:
        # caller holds self._lock and calls _drain_status() once it is released
        if self._status is status:
            return
        previous, self._status = self._status, status
        logger.info("Streaming status %s -> %s", previous.value, status.value)
        self._status_events.append(status)

    def _drain_status(self) -> None:
        """Deliver queued status transitions outside the state lock, oldest first."""
        while True:
            with self._lock:
                if self._status_draining or not self._status_events:
                    return
                self._status_draining = True
                status = self._status_events.popleft()
            try:
                self._status_listeners.dispatch(status)
            finally:
                with self._lock:
                    self._status_draining = False

    def _disconnect_locked(self) -> None:
        # caller holds self._lock
        self._attempt += 1
        self._cancel_reconnect()
        self._reconnect_attempts = 0
        self._stop_cadence()
        self._cancel_connect_timeout()
        future, self._connect_future = self._connect_future, None
        if self._status is not StreamingStatus.DISCONNECTED:
            self._close_source()
        self._connected_at = None
        self._set_status(StreamingStatus.DISCONNECTED)
        if future is not None and not future.done():
            future.set_exception(StreamConnectionError("disconnected while connecting"))

    def _schedule_reconnect(self) -> None:
        # caller holds self._lock
        if not self._config.auto_reconnect or self._closed:
            return
        self._cancel_reconnect()
        limit = self._config.max_reconnect_attempts
        if self._reconnect_attempts >= limit:
            logger.error("Giving up after %d reconnect attempts", limit)
            return
        self._reconnect_attempts += 1
        delay_s = min(
            self._config.reconnect_interval_ms / 1000.0 * 2 ** (self._reconnect_attempts - 1),
            MAX_RECONNECT_DELAY_S,
        )
        logger.info("Reconnecting in %.1fs (attempt %d/%d)", delay_s, self._reconnect_attempts, limit)
        self._reconnect_handle = self._scheduler.call_later(delay_s, self._reconnect, name="reconnect")

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_handle = None
            if self._closed or self._status is not StreamingStatus.ERROR:
                return
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _open_source(self, attempt: int) -> None:
        with self._lock:
            if attempt != self._attempt or self._status is not StreamingStatus.CONNECTING:
                return
        try:
            self._source.open()
        except Exception as exc:
            logger.warning("Failed to open data source: %s", exc)
            self._fail_connect(attempt, StreamConnectionError(f"failed to open source: {exc}"))
            return

        with self._lock:
            if attempt != self._attempt or self._status is not StreamingStatus.CONNECTING:
                # Superseded by a timeout or disconnect while opening.
                self._close_source()
                return
            self._cancel_connect_timeout()
            self._connected_at = self._scheduler.now()
            self._carry = 0.0
            self._reconnect_attempts = 0
            self._set_status(StreamingStatus.CONNECTED)
            self._start_cadence()
            future, self._connect_future = self._connect_future, None
            if future is not None and not future.done():
                future.set_result(None)
        self._drain_status()

    def _fail_connect(self, attempt: int, error: StreamConnectionError) -> None:
        with self._lock:
            if attempt != self._attempt or self._status is not StreamingStatus.CONNECTING:
                return
            self._attempt += 1
            self._cancel_connect_timeout()
            self._set_status(StreamingStatus.ERROR)
            if self._reconnect_attempts:
                self._schedule_reconnect()
            future, self._connect_future = self._connect_future, None
            if future is not None and not future.done():
                future.set_exception(error)
        self._drain_status()

    def _start_cadence(self) -> None:
        # caller holds self._lock
        self._stop_cadence()
        self._meter.sample(self._scheduler.now())
        self._tick_handle = self._scheduler.call_every(lambda: self._config.tick_interval_s, self._tick, name="tick")
        self._metrics_handle = self._scheduler.call_every(
            lambda: self._config.metrics_interval_ms / 1000.0, self._publish_metrics, name="metrics"
        )

    def _stop_cadence(self) -> None:
        for handle in (self._tick_handle, self._metrics_handle):
            if handle is not None:
                handle.cancel()
        self._tick_handle = None
        self._metrics_handle = None

    def _tick(self) -> None:
        with self._lock:
            if self._status is not StreamingStatus.CONNECTED:
                return
            profile = profile_for(self._config.scenario)
            count = self._next_batch_size(self._config.points_per_tick * profile.rate_multiplier)
            tick_handle = self._tick_handle
            self._perf.record_tick(self._scheduler.now())

        try:
            batch = self._source.read_batch(count, profile)
        except Exception as exc:
            self._on_transport_lost(exc)
            return

        with self._mutation_lock:
            if tick_handle is None or tick_handle.cancelled:
                return
            if batch:
                with time_block(f"tick push of {len(batch)} points"):
                    self._buffer.push(batch)
        with self._lock:
            self._meter.record(len(batch))

    def _next_batch_size(self, rate: float) -> int:
        # Fractional rates accumulate so e.g. 0.5 points/tick yields one point every other tick.
        self._carry += max(0.0, rate)
        count = int(math.floor(self._carry + 1e-9))
        self._carry -= count
        return count

    def _on_transport_lost(self, exc: BaseException) -> None:
        with self._lock:
            if self._status is not StreamingStatus.CONNECTED:
                return
            logger.error("Transport lost: %s", exc)
            self._attempt += 1
            self._stop_cadence()
            self._close_source()
            self._connected_at = None
            self._set_status(StreamingStatus.ERROR)
            self._schedule_reconnect()
        self._drain_status()

    def _on_buffer_update(self, update: BufferUpdate) -> None:
        if not update.cleared:
            self._last_update = datetime.now(timezone.utc)
        start = self._scheduler.now()
        self._data_listeners.dispatch(update.batch)
        if update.batch:
            self._perf.record_render(start, self._scheduler.now())

    def _publish_metrics(self) -> None:
        with self._lock:
            if self._status is not StreamingStatus.CONNECTED:
                return
            self._meter.sample(self._scheduler.now())
            metrics = self._build_metrics()
            self._metrics = metrics
        self._metrics_listeners.dispatch(metrics)

    def _build_metrics(self) -> StreamingMetrics:
        # caller holds self._lock
        uptime = 0.0
        if self._connected_at is not None:
            uptime = max(0.0, self._scheduler.now() - self._connected_at)
        return StreamingMetrics(
            fps=self._perf.compute_fps(),
            memory_usage=max(0.0, float(self._memory_probe())),
            data_points_per_second=self._meter.estimate().hz_effective,
            render_time=self._perf.avg_render_ms(),
            filter_time=self._perf.avg_filter_ms(),
            total_data_points=len(self._buffer),
            connection_uptime_s=uptime,
            last_update_time=self._last_update,
            buffer_utilization=self._buffer.utilization(),
        )

    def _end_spike(self, seq: int) -> None:
        with self._lock:
            if seq != self._spike_seq or self._spike_baseline is None:
                return
            baseline = self._spike_baseline
            self._config = replace(self._config, points_per_tick=baseline)
            self._spike_handle = None
            self._spike_baseline = None
        logger.info("Data spike ended, points_per_tick restored to %d", baseline)

    def _cancel_spike(self) -> None:
        self._spike_seq += 1
        if self._spike_handle is not None:
            self._spike_handle.cancel()
        self._spike_handle = None
        self._spike_baseline = None

    def _cancel_connect_timeout(self) -> None:
        if self._connect_timeout is not None:
            self._connect_timeout.cancel()
            self._connect_timeout = None

    def _close_source(self) -> None:
        try:
            self._source.close()
        except Exception:
            logger.exception("Error closing data source")


__all__ = ["StreamingService"]
