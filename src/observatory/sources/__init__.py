"""Ingestion sources feeding the streaming service.

A source only has to provide ``open()``, ``close()`` and
``read_batch(count, profile)``. :class:`SyntheticSource` simulates a metric
feed; :class:`JsonLinesSource` proxies an external line-oriented feed.
"""

from __future__ import annotations

from typing import List, Protocol

from ..core.models import DataPoint
from .jsonl import JsonLinesSource
from .synthetic import (
    SCENARIO_PROFILES,
    ScenarioProfile,
    SyntheticSource,
    generate_historical_data,
    generate_test_data,
    profile_for,
)


class DataSource(Protocol):
    def open(self) -> None:  # pragma: no cover - protocol
        ...

    def close(self) -> None:  # pragma: no cover - protocol
        ...

    def read_batch(self, count: int, profile: ScenarioProfile) -> List[DataPoint]:  # pragma: no cover - protocol
        ...


__all__ = [
    "DataSource",
    "JsonLinesSource",
    "SCENARIO_PROFILES",
    "ScenarioProfile",
    "SyntheticSource",
    "generate_historical_data",
    "generate_test_data",
    "profile_for",
]
