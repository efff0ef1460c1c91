"""Per-field secondary index over one dataset snapshot."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

import numpy as np

from ..core.models import DataPoint
from .fields import EqualityKey, equality_key, is_range_native, ordinal

logger = logging.getLogger(__name__)

EQUALITY_FIELDS = ("id", "category", "source")
RANGE_FIELDS = ("value", "timestamp")

_EMPTY_POSITIONS = np.empty(0, dtype=np.int64)

EqualityTable = Dict[EqualityKey, List[int]]


class RangeColumn:
    """
    Row positions sorted by a numeric key.

    Appends go to an unsorted tail in O(1); the tail is sorted and merged
    into the main arrays on the next query.
    """

    __slots__ = ("keys", "positions", "_tail_keys", "_tail_positions")

    def __init__(self) -> None:
        self.keys = np.empty(0, dtype=np.float64)
        self.positions = _EMPTY_POSITIONS
        self._tail_keys: List[float] = []
        self._tail_positions: List[int] = []

    def add(self, key: float, position: int) -> None:
        self._tail_keys.append(key)
        self._tail_positions.append(position)

    def __len__(self) -> int:
        return int(self.keys.size) + len(self._tail_keys)

    def select(self, low: float, high: float, include_low: bool = True, include_high: bool = True) -> np.ndarray:
        """Positions whose key lies between ``low`` and ``high``."""
        self._merge()
        start = int(np.searchsorted(self.keys, low, side="left" if include_low else "right"))
        stop = int(np.searchsorted(self.keys, high, side="right" if include_high else "left"))
        if stop <= start:
            return _EMPTY_POSITIONS
        return self.positions[start:stop]

    def _merge(self) -> None:
        if not self._tail_keys:
            return
        tail_keys = np.asarray(self._tail_keys, dtype=np.float64)
        tail_positions = np.asarray(self._tail_positions, dtype=np.int64)
        order = np.argsort(tail_keys, kind="stable")
        tail_keys = tail_keys[order]
        tail_positions = tail_positions[order]
        if self.keys.size == 0:
            self.keys, self.positions = tail_keys, tail_positions
        else:
            slots = np.searchsorted(self.keys, tail_keys, side="right")
            self.keys = np.insert(self.keys, slots, tail_keys)
            self.positions = np.insert(self.positions, slots, tail_positions)
        self._tail_keys = []
        self._tail_positions = []


class FilterIndex:
    """
    Lookup structures for one dataset snapshot.

    - equality tables (value -> row positions) for ``id``, ``category``,
      ``source`` and every top-level ``metadata`` key with hashable values;
    - sorted :class:`RangeColumn` objects for ``value``, ``timestamp`` and
      ``metadata`` keys whose values are all numbers or datetimes.

    Positions refer to :attr:`points`, so results can be returned in dataset
    order. :meth:`rebuild` swaps in completely new structures; :meth:`append`
    only touches the new rows. A metadata key that turns out to hold mixed
    types loses its range column so scans and lookups never disagree.
    """

    def __init__(self, data: Iterable[DataPoint] = ()) -> None:
        self._points: List[DataPoint] = []
        self._equality: Dict[str, EqualityTable] = {}
        self._ranges: Dict[str, RangeColumn] = {}
        self._unrangeable: Set[str] = set()
        self.rebuild(data)

    def rebuild(self, data: Iterable[DataPoint]) -> None:
        points = list(data)
        equality: Dict[str, EqualityTable] = {}
        ranges: Dict[str, RangeColumn] = {name: RangeColumn() for name in RANGE_FIELDS}
        unrangeable: Set[str] = set()
        for position, point in enumerate(points):
            _index_point(point, position, equality, ranges, unrangeable)
        self._points, self._equality, self._ranges, self._unrangeable = points, equality, ranges, unrangeable

    def append(self, points: Iterable[DataPoint]) -> int:
        """Index appended rows; cost is proportional to the batch. Returns rows added."""
        added = 0
        for point in points:
            position = len(self._points)
            self._points.append(point)
            _index_point(point, position, self._equality, self._ranges, self._unrangeable)
            added += 1
        return added

    @property
    def points(self) -> Sequence[DataPoint]:
        """Indexed rows in dataset order. Treat as read-only."""
        return self._points

    def __len__(self) -> int:
        return len(self._points)

    def equality_positions(self, field: str, key: EqualityKey) -> Optional[List[int]]:
        """Rows whose ``field`` equals ``key``, or ``None`` when ``field`` has no equality table."""
        table = self._equality.get(field)
        if table is None:
            return None
        return table.get(key, [])

    def range_positions(
        self,
        field: str,
        low: float,
        high: float,
        *,
        include_low: bool = True,
        include_high: bool = True,
    ) -> Optional[np.ndarray]:
        """Rows with ``low <= field <= high`` (bounds per flags), or ``None`` without a column."""
        if field in self._unrangeable:
            return None
        column = self._ranges.get(field)
        if column is None:
            return None
        return column.select(low, high, include_low, include_high)

    def has_equality(self, field: str) -> bool:
        return field in self._equality

    def has_range(self, field: str) -> bool:
        return field in self._ranges and field not in self._unrangeable

    @property
    def indexed_fields(self) -> List[str]:
        return sorted(set(self._equality) | set(self._ranges))

    @property
    def size(self) -> int:
        return len(self.indexed_fields)


def _index_point(
    point: DataPoint,
    position: int,
    equality: Dict[str, EqualityTable],
    ranges: Dict[str, RangeColumn],
    unrangeable: Set[str],
) -> None:
    for name in EQUALITY_FIELDS:
        key = equality_key(getattr(point, name, None))
        if key is None:
            logger.debug("Skipping %s index entry for point %r", name, getattr(point, "id", "?"))
            continue
        equality.setdefault(name, {}).setdefault(key, []).append(position)

    for name in RANGE_FIELDS:
        number = ordinal(getattr(point, name, None))
        if number is None:
            logger.debug("Skipping %s range entry for point %r", name, point.id)
            continue
        ranges[name].add(number, position)

    for raw_key, raw in point.metadata.items():
        # dotted keys cannot be addressed by a field path
        if raw is None or not isinstance(raw_key, str) or "." in raw_key:
            continue
        name = f"metadata.{raw_key}"
        key = equality_key(raw)
        if key is None:
            logger.debug("Not indexing unhashable %s on point %r", name, point.id)
        else:
            equality.setdefault(name, {}).setdefault(key, []).append(position)

        if name in unrangeable:
            continue
        if is_range_native(raw):
            ranges.setdefault(name, RangeColumn()).add(ordinal(raw), position)
        else:
            unrangeable.add(name)
            ranges.pop(name, None)


__all__ = ["EQUALITY_FIELDS", "RANGE_FIELDS", "FilterIndex", "RangeColumn"]
