"""Factory helpers that wire a streaming service to a filter coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .config import ObservatoryConfig
from .core.events import Subscription
from .core.scheduler import Scheduler
from .filters import DebounceCoordinator, FilterCriteria
from .sources import DataSource
from .streaming import StreamingService


@dataclass(slots=True)
class DashboardHandles:
    """Return value from :func:`build_dashboard` containing ready-to-use pieces."""

    service: StreamingService
    coordinator: DebounceCoordinator
    subscriptions: List[Subscription] = field(default_factory=list)

    def close(self) -> None:
        """Unsubscribe, stop the coordinator and shut the service down."""
        for subscription in self.subscriptions:
            subscription.unsubscribe()
        self.subscriptions.clear()
        self.coordinator.close()
        self.service.shutdown()

    def __enter__(self) -> "DashboardHandles":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_dashboard(
    cfg: ObservatoryConfig | None = None,
    *,
    scheduler: Optional[Scheduler] = None,
    source: Optional[DataSource] = None,
    criteria: Optional[FilterCriteria] = None,
) -> DashboardHandles:
    """
    Build one :class:`StreamingService` and one :class:`DebounceCoordinator`.

    Parameters
    ----------
    cfg:
        Runtime configuration (usually loaded from YAML). Defaults apply when
        omitted.
    scheduler:
        Shared scheduler for ingestion ticks and debounce timers. When
        omitted each component creates (and later shuts down) its own
        :class:`~observatory.core.scheduler.ThreadScheduler`.
    source:
        Ingestion source; the synthetic feed is used when omitted.
    criteria:
        Initial filter criteria. Without it every buffered point passes.

    Every data notification hands the service's current buffer to
    :meth:`DebounceCoordinator.update_data`, which appends incrementally
    while the buffer only grows and rebuilds after trims or clears.
    Recompute durations flow back into the service's ``filter_time`` metric.
    """

    normalized = (cfg or ObservatoryConfig()).sanitized()

    service = StreamingService(normalized.streaming, source=source, scheduler=scheduler)
    coordinator = DebounceCoordinator(
        normalized.filter.debounce_ms,
        scheduler=scheduler,
        cache_size=normalized.filter.cache_size,
        on_filter_time=service.report_filter_time,
        criteria=criteria,
    )
    coordinator.set_data(service.get_buffered_data())

    subscriptions = [service.on_data(lambda _batch: coordinator.update_data(service.get_buffered_data()))]
    return DashboardHandles(service=service, coordinator=coordinator, subscriptions=subscriptions)


__all__ = ["DashboardHandles", "build_dashboard"]
