"""Shared dataclasses and enums for observations, status and metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class StreamingStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class DataScenario(str, Enum):
    """Named generation profiles for the synthetic feed."""

    NORMAL = "normal"
    HIGH_LOAD = "high_load"
    SYSTEM_FAILURE = "system_failure"
    MAINTENANCE = "maintenance"
    PEAK_HOURS = "peak_hours"
    WEEKEND = "weekend"

    @classmethod
    def parse(cls, value: "DataScenario | str") -> "DataScenario":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown scenario {value!r}") from None


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Convert ``value`` into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (a trailing ``Z`` is allowed) and
    numbers interpreted as epoch seconds. Returns ``None`` for anything else.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def isoformat(value: datetime) -> str:
    """ISO-8601 text with millisecond precision and a ``Z`` suffix."""
    text = ensure_utc(value).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class DataPoint:
    """
    A single timestamped metric reading.

    Instances are immutable: ``metadata`` is copied into a read-only mapping
    on construction, so sharing a point between components is equivalent to
    handing out a copy.
    """

    id: str
    timestamp: datetime
    value: float
    category: str
    source: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DataPoint":
        """Build a point from a JSON-style mapping; raises ``ValueError`` when invalid."""
        if not isinstance(data, Mapping):
            raise ValueError(f"Expected mapping, got {type(data).__name__}")
        missing = [key for key in ("id", "timestamp", "value", "category", "source") if data.get(key) in (None, "")]
        if missing:
            raise ValueError(f"Missing field(s) {', '.join(missing)} in {dict(data)!r}")

        timestamp = parse_instant(data["timestamp"])
        if timestamp is None:
            raise ValueError(f"Invalid timestamp {data['timestamp']!r}")

        raw_value = data["value"]
        if isinstance(raw_value, bool):
            raise ValueError(f"Invalid value {raw_value!r}")
        try:
            value = float(raw_value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid value {raw_value!r}") from None
        if value != value or value in (float("inf"), float("-inf")):
            raise ValueError(f"Value must be finite, got {raw_value!r}")

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise ValueError(f"metadata must be a mapping, got {type(metadata).__name__}")

        return cls(
            id=str(data["id"]),
            timestamp=timestamp,
            value=value,
            category=str(data["category"]),
            source=str(data["source"]),
            metadata=metadata,
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": isoformat(self.timestamp),
            "value": self.value,
            "category": self.category,
            "source": self.source,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class StreamingMetrics:
    """Point-in-time throughput and resource figures; all values non-negative."""

    fps: float = 0.0
    memory_usage: float = 0.0
    data_points_per_second: float = 0.0
    render_time: float = 0.0
    filter_time: float = 0.0
    total_data_points: int = 0
    connection_uptime_s: float = 0.0
    last_update_time: Optional[datetime] = None
    buffer_utilization: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "fps": self.fps,
            "memoryUsage": self.memory_usage,
            "dataPointsPerSecond": self.data_points_per_second,
            "renderTime": self.render_time,
            "filterTime": self.filter_time,
            "totalDataPoints": self.total_data_points,
            "connectionUptime": self.connection_uptime_s,
            "lastUpdateTime": isoformat(self.last_update_time) if self.last_update_time else None,
            "bufferUtilization": self.buffer_utilization,
        }


__all__ = [
    "DataPoint",
    "DataScenario",
    "StreamingMetrics",
    "StreamingStatus",
    "ensure_utc",
    "isoformat",
    "parse_instant",
]
