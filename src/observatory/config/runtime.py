"""Runtime configuration for the streaming service and the filter engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

import yaml

from ..core.models import DataScenario

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: Tuple[str, ...] = ("cpu", "memory", "network", "disk", "temperature")
DEFAULT_SOURCES: Tuple[str, ...] = ("server-1", "server-2", "server-3")

# camelCase spellings used by dashboard front-ends and older config files.
_ALIASES: Dict[str, str] = {
    "maxBufferSize": "max_buffer_size",
    "bufferSize": "max_buffer_size",
    "tickIntervalMs": "tick_interval_ms",
    "pointsPerTick": "points_per_tick",
    "connectTimeoutMs": "connect_timeout_ms",
    "metricsIntervalMs": "metrics_interval_ms",
    "autoReconnect": "auto_reconnect",
    "maxReconnectAttempts": "max_reconnect_attempts",
    "reconnectIntervalMs": "reconnect_interval_ms",
    "debounceMs": "debounce_ms",
    "cacheSize": "cache_size",
}


def _coerce_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _positive_int(name: str, value: Any) -> int:
    number = _coerce_int(name, value)
    if number <= 0:
        raise ValueError(f"{name} must be > 0, got {value!r}")
    return number


def _non_negative_int(name: str, value: Any) -> int:
    number = _coerce_int(name, value)
    if number < 0:
        raise ValueError(f"{name} must be >= 0, got {value!r}")
    return number


@dataclass(slots=True)
class StreamingConfig:
    """
    Tuning knobs for ingestion cadence, buffering and the synthetic feed.

    The defaults produce 10 points per second into a 10k-point buffer.
    Reconnection after a transport loss is off unless ``auto_reconnect``
    is set; the delay doubles from ``reconnect_interval_ms`` up to 30s.
    """

    max_buffer_size: int = 10_000
    tick_interval_ms: int = 100
    points_per_tick: int = 1
    scenario: DataScenario = DataScenario.NORMAL
    categories: Tuple[str, ...] = DEFAULT_CATEGORIES
    sources: Tuple[str, ...] = DEFAULT_SOURCES
    connect_timeout_ms: int = 5_000
    metrics_interval_ms: int = 1_000
    seed: Optional[int] = None
    auto_reconnect: bool = False
    max_reconnect_attempts: int = 5
    reconnect_interval_ms: int = 1_000

    def sanitized(self) -> StreamingConfig:
        """Return a validated copy; raises ``ValueError`` for out-of-range values."""
        categories = tuple(str(c) for c in self.categories if str(c).strip())
        sources = tuple(str(s) for s in self.sources if str(s).strip())
        if not categories:
            raise ValueError("categories must not be empty")
        if not sources:
            raise ValueError("sources must not be empty")
        return StreamingConfig(
            max_buffer_size=_positive_int("max_buffer_size", self.max_buffer_size),
            tick_interval_ms=_positive_int("tick_interval_ms", self.tick_interval_ms),
            points_per_tick=_non_negative_int("points_per_tick", self.points_per_tick),
            scenario=DataScenario.parse(self.scenario),
            categories=categories,
            sources=sources,
            connect_timeout_ms=_positive_int("connect_timeout_ms", self.connect_timeout_ms),
            metrics_interval_ms=_positive_int("metrics_interval_ms", self.metrics_interval_ms),
            seed=None if self.seed is None else int(self.seed),
            auto_reconnect=_coerce_bool("auto_reconnect", self.auto_reconnect),
            max_reconnect_attempts=_non_negative_int("max_reconnect_attempts", self.max_reconnect_attempts),
            reconnect_interval_ms=_positive_int("reconnect_interval_ms", self.reconnect_interval_ms),
        )

    def merged(self, changes: Mapping[str, Any]) -> StreamingConfig:
        """Apply a partial update (snake_case or camelCase keys) and validate it."""
        payload = _select_fields(changes, _STREAMING_FIELDS, owner="StreamingConfig")
        for key in ("categories", "sources"):
            if key in payload:
                payload[key] = tuple(payload[key])
        return replace(self, **payload).sanitized()

    @property
    def tick_interval_s(self) -> float:
        return self.tick_interval_ms / 1000.0

    @property
    def nominal_rate_hz(self) -> float:
        """Points per second implied by cadence and batch size."""
        return self.points_per_tick / self.tick_interval_s


@dataclass(slots=True)
class FilterConfig:
    """Settings for the debounced filter engine."""

    debounce_ms: int = 300
    cache_size: int = 100

    def sanitized(self) -> FilterConfig:
        return FilterConfig(
            debounce_ms=_non_negative_int("debounce_ms", self.debounce_ms),
            cache_size=_non_negative_int("cache_size", self.cache_size),
        )


@dataclass(slots=True)
class ObservatoryConfig:
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)

    def sanitized(self) -> ObservatoryConfig:
        return ObservatoryConfig(streaming=self.streaming.sanitized(), filter=self.filter.sanitized())


_STREAMING_FIELDS = frozenset(f.name for f in fields(StreamingConfig))
_FILTER_FIELDS = frozenset(f.name for f in fields(FilterConfig))


def _select_fields(data: Mapping[str, Any], known: frozenset, *, owner: str) -> MutableMapping[str, Any]:
    """Normalise aliases and keep only keys that ``owner`` understands."""
    payload: MutableMapping[str, Any] = {}
    for key, value in data.items():
        name = _ALIASES.get(str(key), str(key))
        if name in known:
            payload[name] = value
        else:
            logger.warning("Ignoring unknown %s key %r", owner, key)
    return payload


def config_from_mapping(data: Mapping[str, Any] | None) -> ObservatoryConfig:
    """
    Build :class:`ObservatoryConfig` from ``data``.

    Supported shape::

        streaming:
          max_buffer_size: 20000
          tick_interval_ms: 100
          scenario: peak_hours
        filter:
          debounce_ms: 250

    Unknown keys are ignored (with a warning).
    """
    if not data:
        return ObservatoryConfig()

    streaming_block = data.get("streaming") or {}
    filter_block = data.get("filter") or {}
    if not isinstance(streaming_block, Mapping) or not isinstance(filter_block, Mapping):
        raise ValueError("'streaming' and 'filter' sections must be mappings")

    streaming = StreamingConfig().merged(streaming_block)
    filter_payload = _select_fields(filter_block, _FILTER_FIELDS, owner="FilterConfig")
    filter_cfg = FilterConfig(**filter_payload).sanitized()
    return ObservatoryConfig(streaming=streaming, filter=filter_cfg)


def load_config(path: str | Path | None) -> ObservatoryConfig:
    """
    Load configuration from ``path``.

    Missing files fall back to default :class:`ObservatoryConfig`.
    """
    if path is None:
        return ObservatoryConfig()
    cfg_path = Path(path)
    if not cfg_path.exists():
        logger.info("Config file %s not found, using defaults", cfg_path)
        return ObservatoryConfig()
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Expected mapping in {cfg_path}, got {type(raw).__name__}")
    return config_from_mapping(raw)


__all__ = [
    "DEFAULT_CATEGORIES",
    "DEFAULT_SOURCES",
    "FilterConfig",
    "ObservatoryConfig",
    "StreamingConfig",
    "config_from_mapping",
    "load_config",
]
