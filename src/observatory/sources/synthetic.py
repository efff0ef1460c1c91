"""
Synthetic metric feed used when no external transport is attached.

Values follow a per-category sine pattern with noise, scaled by the active
:class:`ScenarioProfile`; each point carries category-specific metadata
(``unit``, ``threshold``, ``status`` and a few extra keys) so filters on
``metadata.*`` have something realistic to work with.
"""

from __future__ import annotations

import itertools
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Literal, Mapping, Optional, Sequence

import numpy as np

from ..core.models import DataPoint, DataScenario, ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScenarioProfile:
    """Shape of the feed for one :class:`DataScenario`."""

    scenario: DataScenario
    rate_multiplier: float = 1.0
    value_multiplier: float = 1.0
    noise_level: float = 0.1
    anomaly_probability: float = 0.0


SCENARIO_PROFILES: Dict[DataScenario, ScenarioProfile] = {
    DataScenario.NORMAL: ScenarioProfile(DataScenario.NORMAL),
    DataScenario.HIGH_LOAD: ScenarioProfile(
        DataScenario.HIGH_LOAD, rate_multiplier=2.0, value_multiplier=1.5, noise_level=0.15, anomaly_probability=0.02
    ),
    DataScenario.SYSTEM_FAILURE: ScenarioProfile(
        DataScenario.SYSTEM_FAILURE, noise_level=0.4, anomaly_probability=0.2
    ),
    DataScenario.MAINTENANCE: ScenarioProfile(
        DataScenario.MAINTENANCE, rate_multiplier=0.5, value_multiplier=0.3, noise_level=0.05
    ),
    DataScenario.PEAK_HOURS: ScenarioProfile(
        DataScenario.PEAK_HOURS, rate_multiplier=3.0, value_multiplier=1.3, anomaly_probability=0.01
    ),
    DataScenario.WEEKEND: ScenarioProfile(
        DataScenario.WEEKEND, rate_multiplier=0.5, value_multiplier=0.7, noise_level=0.05
    ),
}


def profile_for(scenario: DataScenario | str) -> ScenarioProfile:
    return SCENARIO_PROFILES[DataScenario.parse(scenario)]


@dataclass(frozen=True)
class _Pattern:
    base: float
    amplitude: float
    frequency: float
    noise: float


_PATTERNS: Dict[str, _Pattern] = {
    "cpu": _Pattern(base=50.0, amplitude=30.0, frequency=0.1, noise=0.1),
    "memory": _Pattern(base=60.0, amplitude=20.0, frequency=0.05, noise=0.05),
    "network": _Pattern(base=200.0, amplitude=100.0, frequency=0.2, noise=0.3),
    "disk": _Pattern(base=80.0, amplitude=15.0, frequency=0.03, noise=0.02),
    "temperature": _Pattern(base=65.0, amplitude=10.0, frequency=0.08, noise=0.05),
}

_UNITS = {"cpu": "%", "memory": "%", "network": "Mbps", "disk": "%", "temperature": "°C"}
_THRESHOLDS = {"cpu": 80.0, "memory": 85.0, "network": 90.0, "disk": 90.0, "temperature": 70.0}

_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _random_token(rng: np.random.Generator, length: int = 5) -> str:
    digits = rng.integers(0, len(_ID_ALPHABET), size=length)
    return "".join(_ID_ALPHABET[int(d)] for d in digits)


def build_metadata(category: str, source: str, value: float, rng: np.random.Generator) -> Dict[str, Any]:
    """Category-specific metadata; ``status`` flips to ``warning`` above the threshold."""
    threshold = _THRESHOLDS.get(category, 80.0)
    metadata: Dict[str, Any] = {
        "unit": _UNITS.get(category, "units"),
        "threshold": threshold,
        "status": "warning" if value > threshold else "normal",
    }
    if category == "cpu":
        metadata["cores"] = int(rng.integers(1, 17))
        metadata["frequency"] = int(rng.integers(2000, 4000))
    elif category == "memory":
        metadata["total"] = int(rng.integers(8, 41))
        metadata["available"] = int(value * 0.3)
    elif category == "network":
        metadata["interface"] = str(rng.choice(["eth0", "eth1", "wlan0"]))
        metadata["protocol"] = str(rng.choice(["tcp", "udp", "http"]))
    elif category == "disk":
        metadata["filesystem"] = str(rng.choice(["/dev/sda1", "/dev/sdb1", "/dev/nvme0n1"]))
        metadata["mountPoint"] = str(rng.choice(["/", "/home", "/var"]))
    elif category == "temperature":
        metadata["sensor"] = str(rng.choice(["cpu", "gpu", "motherboard"]))
        metadata["location"] = source
    return metadata


class PointFactory:
    """Builds :class:`DataPoint` objects with unique ids from one RNG."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.rng = np.random.default_rng(seed)
        self._sequence = itertools.count()

    def make(
        self,
        timestamp: datetime,
        category: str,
        source: str,
        base_value: float,
        *,
        noise_level: float = 0.1,
        value_range: tuple[float, float] | None = None,
    ) -> DataPoint:
        noise = (self.rng.random() - 0.5) * 2.0 * noise_level * base_value
        value = max(0.0, base_value + noise)
        if value_range is not None:
            value = min(max(value, value_range[0]), value_range[1])
        value = round(value, 2)
        ts = ensure_utc(timestamp)
        epoch_ms = int(ts.timestamp() * 1000)
        point_id = f"{source}-{category}-{epoch_ms}-{next(self._sequence):x}{_random_token(self.rng)}"
        return DataPoint(
            id=point_id,
            timestamp=ts,
            value=value,
            category=category,
            source=source,
            metadata=build_metadata(category, source, value, self.rng),
        )


class SyntheticSource:
    """
    Generates batches of points on demand.

    ``now`` and ``monotonic`` are injectable so replays can run on a
    virtual clock.
    """

    def __init__(
        self,
        categories: Sequence[str],
        sources: Sequence[str],
        *,
        seed: Optional[int] = None,
        now: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
    ) -> None:
        if not categories or not sources:
            raise ValueError("categories and sources must not be empty")
        self.categories = tuple(categories)
        self.sources = tuple(sources)
        self._factory = PointFactory(seed)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._monotonic = monotonic or time.monotonic
        self._started_at = self._monotonic()
        self._open = False

    def open(self) -> None:
        self._started_at = self._monotonic()
        self._open = True

    def close(self) -> None:
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def read_batch(self, count: int, profile: ScenarioProfile) -> List[DataPoint]:
        if count <= 0:
            return []
        rng = self._factory.rng
        now = self._now()
        elapsed = self._monotonic() - self._started_at
        batch: List[DataPoint] = []
        for _ in range(count):
            category = self.categories[int(rng.integers(0, len(self.categories)))]
            source = self.sources[int(rng.integers(0, len(self.sources)))]
            base = self._value_for(category, elapsed, profile)
            batch.append(self._factory.make(now, category, source, base, noise_level=profile.noise_level))
        return batch

    def _value_for(self, category: str, elapsed_s: float, profile: ScenarioProfile) -> float:
        pattern = _PATTERNS.get(category, _PATTERNS["cpu"])
        rng = self._factory.rng
        value = pattern.base + pattern.amplitude * math.sin(elapsed_s * pattern.frequency)
        value += (rng.random() - 0.5) * 2.0 * pattern.noise * pattern.base
        value *= profile.value_multiplier
        if profile.anomaly_probability > 0 and rng.random() < profile.anomaly_probability:
            # spike or drop
            value *= 3.0 if rng.random() < 0.5 else 0.1
        return max(0.0, value)


def generate_historical_data(
    start: datetime,
    end: datetime,
    *,
    points_per_hour: float = 100.0,
    categories: Iterable[str] = ("cpu", "memory", "network", "disk", "temperature"),
    sources: Iterable[str] = ("server-1", "server-2", "server-3", "database", "cache"),
    trend: Literal["linear", "exponential", "cyclical", "random"] = "cyclical",
    noise_level: float = 0.1,
    value_range: tuple[float, float] = (0.0, 100.0),
    seed: Optional[int] = None,
) -> List[DataPoint]:
    """
    Backfill ``[start, end)`` with one point per (category, source) per step.

    The number of steps is ``hours * points_per_hour``; output is ordered by
    timestamp.
    """
    start_utc, end_utc = ensure_utc(start), ensure_utc(end)
    if end_utc <= start_utc:
        raise ValueError("end must be after start")
    hours = (end_utc - start_utc).total_seconds() / 3600.0
    steps = max(1, int(hours * points_per_hour))
    return _generate_steps(
        start_utc,
        end_utc,
        steps,
        tuple(categories),
        tuple(sources),
        trend=trend,
        noise_level=noise_level,
        value_range=value_range,
        seed=seed,
    )


TestPattern = Literal["spike", "gradual", "stable", "noisy"]

_TEST_PATTERNS: Mapping[str, dict] = {
    "spike": {"trend": "exponential", "noise_level": 0.05, "value_range": (0.0, 100.0)},
    "gradual": {"trend": "linear", "noise_level": 0.1, "value_range": (0.0, 100.0)},
    "stable": {"trend": "random", "noise_level": 0.02, "value_range": (45.0, 55.0)},
    "noisy": {"trend": "cyclical", "noise_level": 0.3, "value_range": (0.0, 100.0)},
}


def generate_test_data(pattern: TestPattern, count: int = 1000, *, seed: Optional[int] = None) -> List[DataPoint]:
    """``count`` points of category ``test`` spread over the last hour."""
    try:
        options = _TEST_PATTERNS[pattern]
    except KeyError:
        raise ValueError(f"Unknown test pattern {pattern!r}") from None
    end = datetime.now(timezone.utc)
    start = end - timedelta(hours=1)
    return _generate_steps(start, end, max(1, int(count)), ("test",), ("test-source",), seed=seed, **options)


def _generate_steps(
    start: datetime,
    end: datetime,
    steps: int,
    categories: Sequence[str],
    sources: Sequence[str],
    *,
    trend: str,
    noise_level: float,
    value_range: tuple[float, float],
    seed: Optional[int],
) -> List[DataPoint]:
    factory = PointFactory(seed)
    low, high = value_range
    mid = (low + high) / 2.0
    span = high - low
    step = (end - start) / steps
    points: List[DataPoint] = []
    for i in range(steps):
        timestamp = start + step * i
        progress = i / steps
        if trend == "linear":
            base = low + span * progress
        elif trend == "exponential":
            base = low + span * (math.exp(4.0 * progress) - 1.0) / (math.exp(4.0) - 1.0)
        elif trend == "random":
            base = low + span * float(factory.rng.random())
        else:
            hours = (timestamp - start).total_seconds() / 3600.0
            base = mid + (span / 4.0) * math.sin(2.0 * math.pi * hours / 24.0)
        for category in categories:
            for source in sources:
                points.append(
                    factory.make(timestamp, category, source, base, noise_level=noise_level, value_range=value_range)
                )
    return points


__all__ = [
    "PointFactory",
    "SCENARIO_PROFILES",
    "ScenarioProfile",
    "SyntheticSource",
    "build_metadata",
    "generate_historical_data",
    "generate_test_data",
    "profile_for",
]
