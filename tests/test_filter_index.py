from __future__ import annotations

from datetime import datetime, timedelta, timezone

import numpy as np

from observatory.core.models import DataPoint
from observatory.filters import FilterIndex
from observatory.filters.fields import canonical_field, equality_key
from observatory.filters.index import RangeColumn

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _point(i: int, category: str = "cpu", **metadata) -> DataPoint:
    return DataPoint(
        id=f"p{i}",
        timestamp=T0 + timedelta(minutes=i),
        value=float(i * 10),
        category=category,
        source="s1",
        metadata=metadata,
    )


def test_range_column_bounds_and_incremental_merge() -> None:
    column = RangeColumn()
    for position, key in enumerate([5.0, 1.0, 3.0]):
        column.add(key, position)
    assert column.select(1.0, 3.0).tolist() == [1, 2]
    assert column.select(1.0, 3.0, include_low=False).tolist() == [2]
    assert column.select(1.0, 3.0, include_high=False).tolist() == [1]

    column.add(2.0, 3)
    column.add(9.0, 4)
    assert sorted(column.select(-np.inf, np.inf).tolist()) == [0, 1, 2, 3, 4]
    assert column.select(2.0, 5.0).tolist() == [3, 2, 0]
    assert column.select(6.0, 4.0).tolist() == []
    assert len(column) == 5


def test_index_builds_equality_and_range_tables() -> None:
    index = FilterIndex([_point(0, "cpu", status="normal", cores=4), _point(1, "memory", status="warning", cores=8)])

    assert index.equality_positions("category", equality_key("memory")) == [1]
    assert index.equality_positions("metadata.status", equality_key("normal")) == [0]
    assert index.equality_positions("category", equality_key("disk")) == []
    assert index.equality_positions("value", equality_key(10.0)) is None
    assert index.range_positions("metadata.cores", 5, 10).tolist() == [1]
    assert {"category", "id", "source", "value", "timestamp", "metadata.status", "metadata.cores"} <= set(
        index.indexed_fields
    )


def test_append_only_adds_new_positions() -> None:
    index = FilterIndex([_point(0), _point(1)])
    assert index.append([_point(2, "disk")]) == 1

    assert len(index) == 3
    assert index.equality_positions("category", equality_key("disk")) == [2]
    assert index.range_positions("value", 5.0, 100.0).tolist() == [1, 2]


def test_rebuild_replaces_previous_snapshot() -> None:
    index = FilterIndex([_point(0, "cpu"), _point(1, "cpu")])
    index.rebuild([_point(5, "memory")])

    assert len(index) == 1
    assert index.equality_positions("category", equality_key("cpu")) == []
    assert index.range_positions("value", 0.0, 100.0).tolist() == [0]


def test_mixed_metadata_types_drop_range_column() -> None:
    index = FilterIndex([_point(0, level=5), _point(1, level="high")])
    assert index.range_positions("metadata.level", 0, 10) is None
    assert not index.has_range("metadata.level")
    assert index.equality_positions("metadata.level", equality_key("high")) == [1]


def test_unhashable_metadata_is_skipped_for_that_field_only() -> None:
    index = FilterIndex([_point(0, tags=["a", "b"], status="ok")])
    assert not index.has_equality("metadata.tags")
    assert index.equality_positions("metadata.status", equality_key("ok")) == [0]


def test_equality_keys_are_strict() -> None:
    assert equality_key(1) == equality_key(1.0)
    assert equality_key(True) != equality_key(1)
    assert equality_key("1") != equality_key(1)
    assert equality_key(["x"]) is None


def test_canonical_field_names() -> None:
    assert canonical_field("category") == "category"
    assert canonical_field("status") == "metadata.status"
    assert canonical_field("metadata.status") == "metadata.status"
    assert canonical_field("  ") == ""
