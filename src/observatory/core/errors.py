"""Exception types shared by the streaming service and the filter engine."""

from __future__ import annotations


class ObservatoryError(Exception):
    """Base class for errors raised by this package."""


class StreamConnectionError(ObservatoryError, ConnectionError):
    """Raised when ``connect()`` times out or the source fails to open."""


class SourceError(ObservatoryError):
    """Transport-level failure reported by a data source while connected."""


class MalformedConditionError(ObservatoryError):
    """
    A filter condition could not be evaluated.

    Only used inside the evaluator: it is always caught, logged and turned
    into an empty match so a filter pass never aborts.
    """

    def __init__(self, condition_id: str, reason: str) -> None:
        super().__init__(f"condition {condition_id!r}: {reason}")
        self.condition_id = condition_id
        self.reason = reason


__all__ = [
    "ObservatoryError",
    "StreamConnectionError",
    "SourceError",
    "MalformedConditionError",
]
