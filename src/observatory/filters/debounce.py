"""Debounced, single-flight filter recomputation."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..core.events import Listener, ListenerRegistry, Subscription
from ..core.models import DataPoint
from ..core.scheduler import Scheduler, TaskHandle, ThreadScheduler
from .conditions import FilterCriteria
from .evaluator import FilterEvaluator, FilterStats

logger = logging.getLogger(__name__)

CriteriaLike = Union[FilterCriteria, Mapping[str, Any], None]


@dataclass(frozen=True)
class FilterState:
    """What consumers of the filter see after each publication."""

    is_filtering: bool = False
    filtered_data: Tuple[DataPoint, ...] = ()
    filtered_data_count: int = 0
    total_data_count: int = 0
    filter_time_ms: float = 0.0
    generation: int = 0


class DebounceCoordinator:
    """
    Turns bursts of criteria/data changes into one recompute.

    A criteria change cancels the pending timer and starts a new
    ``debounce_ms`` window. A data change only starts a window when none is
    pending, so a feed that ticks faster than the window still settles at
    least once per window. When the window elapses the recompute runs on the
    scheduler's timer thread against the newest criteria and data. If the
    timer fires again while a recompute is running, the running result is
    still published (with ``is_filtering`` left on) and a rerun starts as
    soon as it finishes.

    Data changes are only queued here; the index is touched exclusively by
    the recompute, so callers feeding data (e.g. the ingestion tick) never
    wait on filtering.
    """

    def __init__(
        self,
        debounce_ms: int = 300,
        *,
        scheduler: Scheduler | None = None,
        cache_size: int = 100,
        on_filter_time: Callable[[float], None] | None = None,
        criteria: CriteriaLike = None,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")
        self._debounce_s = debounce_ms / 1000.0
        self._owns_scheduler = scheduler is None
        self._scheduler: Scheduler = scheduler or ThreadScheduler("ObservatoryFilter")
        self._evaluator = FilterEvaluator(cache_size=cache_size)
        self._on_filter_time = on_filter_time

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._criteria = _as_criteria(criteria)
        self._known: Tuple[DataPoint, ...] = ()
        self._pending_reset: Optional[Tuple[DataPoint, ...]] = None
        self._pending_append: List[DataPoint] = []
        self._timer: Optional[TaskHandle] = None
        self._running = False
        self._rerun = False
        self._closed = False
        self._generation = 0
        self._state = FilterState()
        self._listeners: ListenerRegistry[FilterState] = ListenerRegistry("filter-state")

    # ---------------------------------------------------------------- inputs
    def set_criteria(self, criteria: CriteriaLike) -> None:
        with self._lock:
            self._criteria = _as_criteria(criteria)
            self._trigger()

    def set_data(self, snapshot: Iterable[DataPoint]) -> None:
        """Replace the dataset wholesale (the index is rebuilt)."""
        with self._lock:
            self._known = tuple(snapshot)
            self._pending_reset = self._known
            self._pending_append = []
            self._trigger(restart=False)

    def append_data(self, points: Iterable[DataPoint]) -> None:
        """Append rows to the dataset (the index is updated incrementally)."""
        batch = tuple(points)
        if not batch:
            return
        with self._lock:
            self._known = self._known + batch
            if self._pending_reset is not None:
                self._pending_reset = self._known
            else:
                self._pending_append.extend(batch)
            self._trigger(restart=False)

    def update_data(self, snapshot: Sequence[DataPoint]) -> None:
        """
        Take a full snapshot from the collaborator and pick the cheapest update.

        When the previous dataset is an unchanged prefix of ``snapshot``
        (checked by identity of its first and last rows) only the new tail is
        appended; anything else is a wholesale replacement.
        """
        snap = tuple(snapshot)
        with self._lock:
            old = self._known
            if len(snap) == len(old) and (not old or (snap[0] is old[0] and snap[-1] is old[-1])):
                return
            if old and len(snap) > len(old) and snap[0] is old[0] and snap[len(old) - 1] is old[-1]:
                self.append_data(snap[len(old):])
            else:
                self.set_data(snap)

    # --------------------------------------------------------------- outputs
    def state(self) -> FilterState:
        with self._lock:
            return self._state

    @property
    def criteria(self) -> FilterCriteria:
        with self._lock:
            return self._criteria

    @property
    def is_filtering(self) -> bool:
        return self.state().is_filtering

    @property
    def filtered_data(self) -> Tuple[DataPoint, ...]:
        return self.state().filtered_data

    @property
    def filtered_data_count(self) -> int:
        return self.state().filtered_data_count

    @property
    def total_data_count(self) -> int:
        return self.state().total_data_count

    def get_filter_stats(self) -> FilterStats:
        return self._evaluator.get_stats()

    def subscribe(self, listener: Listener[FilterState]) -> Subscription:
        return self._listeners.subscribe(listener)

    # -------------------------------------------------------------- lifecycle
    def flush(self, timeout: float | None = None) -> bool:
        """
        Run a pending recompute now and wait until nothing is pending or running.

        Returns ``False`` if ``timeout`` elapsed first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                if self._closed:
                    return True
                run_now = False
                if not self._running:
                    if self._timer is None and not self._rerun:
                        return True
                    if self._timer is not None:
                        self._timer.cancel()
                        self._timer = None
                    self._running = True
                    run_now = True
            if run_now:
                self._run()
                continue
            with self._idle:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                if not self._idle.wait_for(lambda: not self._running or self._closed, remaining):
                    return False

    def close(self) -> None:
        """Cancel the pending timer; nothing is published afterwards."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._rerun = False
            self._idle.notify_all()
        self._listeners.clear()
        if self._owns_scheduler:
            self._scheduler.shutdown()

    def __enter__(self) -> "DebounceCoordinator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------- internals
    def _trigger(self, *, restart: bool = True) -> None:
        # caller holds self._lock
        if self._closed:
            return
        if self._timer is None or restart:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._scheduler.call_later(self._debounce_s, self._on_timer, name="filter-debounce")
        if not self._state.is_filtering:
            self._publish(replace(self._state, is_filtering=True))

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
            if self._closed:
                return
            if self._running:
                self._rerun = True
                return
            self._running = True
        self._run()

    def _run(self) -> None:
        """Recompute until no rerun is requested. Caller has set ``_running``."""
        finished = False
        try:
            while True:
                with self._lock:
                    criteria = self._criteria
                    reset, self._pending_reset = self._pending_reset, None
                    appended, self._pending_append = self._pending_append, []
                    self._rerun = False

                if reset is not None:
                    self._evaluator.set_data(reset)
                if appended:
                    self._evaluator.add_data(appended)

                start = time.perf_counter()
                try:
                    result = self._evaluator.filter(criteria)
                except Exception:
                    logger.exception("Filter recompute failed; publishing unfiltered data")
                    result = self._evaluator.data
                elapsed_ms = (time.perf_counter() - start) * 1000.0
                logger.debug("Recompute produced %d rows in %.3f ms", len(result), elapsed_ms)

                with self._lock:
                    if self._closed:
                        return
                    self._generation += 1
                    pending = self._rerun or self._timer is not None
                    self._publish(
                        FilterState(
                            is_filtering=pending,
                            filtered_data=result,
                            filtered_data_count=len(result),
                            total_data_count=len(self._evaluator.index),
                            filter_time_ms=elapsed_ms,
                            generation=self._generation,
                        )
                    )
                    # the rerun check and the _running reset must be atomic
                    if not self._rerun:
                        self._running = False
                        self._idle.notify_all()
                        finished = True
                if self._on_filter_time is not None:
                    self._on_filter_time(elapsed_ms)
                if finished:
                    return
        finally:
            if not finished:
                with self._lock:
                    self._running = False
                    self._idle.notify_all()

    def _publish(self, state: FilterState) -> None:
        # caller holds self._lock
        self._state = state
        self._listeners.dispatch(state)


def _as_criteria(criteria: CriteriaLike) -> FilterCriteria:
    if criteria is None:
        return FilterCriteria()
    if isinstance(criteria, FilterCriteria):
        return criteria
    return FilterCriteria.from_mapping(criteria)


__all__ = ["DebounceCoordinator", "FilterState"]
