"""Core building blocks shared by ingestion and filtering.

Only leaf modules live here: the observation model, error types, listener
registries and the scheduler. Higher-level services import from this package,
never the other way round.
"""

from .errors import MalformedConditionError, ObservatoryError, SourceError, StreamConnectionError
from .events import ListenerRegistry, Subscription
from .models import DataPoint, DataScenario, StreamingMetrics, StreamingStatus, parse_instant
from .scheduler import ManualScheduler, Scheduler, TaskHandle, ThreadScheduler

__all__ = [
    "DataPoint",
    "DataScenario",
    "StreamingMetrics",
    "StreamingStatus",
    "parse_instant",
    "ListenerRegistry",
    "Subscription",
    "Scheduler",
    "TaskHandle",
    "ThreadScheduler",
    "ManualScheduler",
    "ObservatoryError",
    "StreamConnectionError",
    "SourceError",
    "MalformedConditionError",
]
