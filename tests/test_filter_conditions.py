from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from observatory.core.models import parse_instant
from observatory.filters import (
    FilterCondition,
    FilterCriteria,
    FilterGroup,
    FilterOperator,
    LogicalOperator,
    SortDirection,
    create_categorical_filter,
    create_date_range_filter,
    create_relative_date_filter,
    create_single_category_filter,
    validate_criteria,
)


def test_date_range_filter_uses_iso_bounds() -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 2, 12, 30, tzinfo=timezone.utc)
    cond = create_date_range_filter("timestamp", start, end, "OR")

    assert cond.operator is FilterOperator.BETWEEN
    assert cond.value == ("2024-01-01T00:00:00.000Z", "2024-01-02T12:30:00.000Z")
    assert cond.logical_operator is LogicalOperator.OR
    assert cond.id.startswith("date-range-")


def test_relative_last_day_spans_24_hours_ending_now() -> None:
    before = datetime.now(timezone.utc)
    cond = create_relative_date_filter("timestamp", "last_day")
    low, high = (parse_instant(v) for v in cond.value)

    assert high - low == timedelta(hours=24)
    assert abs((high - before).total_seconds()) < 5.0


@pytest.mark.parametrize(
    "option, delta",
    [
        ("last_hour", timedelta(hours=1)),
        ("last_week", timedelta(days=7)),
        ("last_month", timedelta(days=30)),
    ],
)
def test_relative_options(option: str, delta: timedelta) -> None:
    now = datetime(2024, 3, 1, tzinfo=timezone.utc)
    low, high = (parse_instant(v) for v in create_relative_date_filter("timestamp", option, now=now).value)
    assert (low, high) == (now - delta, now)


def test_relative_filter_rejects_unknown_option() -> None:
    with pytest.raises(ValueError):
        create_relative_date_filter("timestamp", "last_year")


def test_builders_assign_fresh_ids() -> None:
    ids = {create_single_category_filter("category", "cpu").id for _ in range(50)}
    assert len(ids) == 50


def test_categorical_filter_only_accepts_membership_operators() -> None:
    cond = create_categorical_filter("source", ["a", "b"], "not_in")
    assert cond.operator is FilterOperator.NOT_IN
    assert cond.value == ("a", "b")

    with pytest.raises(ValueError):
        create_categorical_filter("source", ["a"], FilterOperator.GT)


def test_single_category_filter_is_eq() -> None:
    cond = create_single_category_filter("category", "cpu")
    assert cond.operator is FilterOperator.EQ
    assert cond.value == "cpu"
    assert cond.logical_operator is LogicalOperator.AND


def test_unknown_operator_string_is_preserved() -> None:
    cond = FilterCondition(field="value", operator="approx", value=3)
    assert cond.operator == "approx"
    assert not isinstance(cond.operator, FilterOperator)


def test_criteria_from_mapping_accepts_camel_case() -> None:
    criteria = FilterCriteria.from_mapping(
        {
            "conditions": [
                {"id": "c1", "field": "category", "operator": "in", "value": ["cpu"], "logicalOperator": "AND"},
                {"id": "c2", "field": "value", "operator": "gt", "value": 50, "logicalOperator": "or"},
            ],
            "grouping": [
                {"id": "g1", "conditions": [{"field": "source", "operator": "eq", "value": "s1"}]},
                {"id": "g2", "conditions": [], "logicalOperator": "OR", "parentGroupId": "g1"},
            ],
            "sortBy": {"field": "value", "direction": "desc"},
        }
    )

    assert [c.id for c in criteria.conditions] == ["c1", "c2"]
    assert criteria.conditions[1].logical_operator is LogicalOperator.OR
    assert criteria.grouping[1].parent_group_id == "g1"
    assert criteria.sort_by.direction is SortDirection.DESC
    assert FilterCriteria.from_mapping(criteria.to_mapping()) == criteria


def test_criteria_helpers_return_new_objects() -> None:
    first = create_single_category_filter("category", "cpu")
    second = create_single_category_filter("source", "s1")
    base = FilterCriteria()

    combined = base.with_condition(first).with_condition(second)
    assert base.is_empty
    assert [c.id for c in combined.conditions] == [first.id, second.id]

    replaced = combined.with_condition(FilterCondition("category", "eq", "memory", id=first.id))
    assert replaced.conditions[0].value == "memory"
    assert len(replaced.conditions) == 2

    grouped = FilterCriteria(grouping=(FilterGroup(id="g", conditions=(first, second)),))
    removed = grouped.without_condition(first.id)
    assert removed.grouping[0].conditions == (second,)
    assert combined.without_condition(first.id).conditions == (second,)

    in_group = grouped.with_condition(FilterCondition("category", "eq", "disk", id=first.id))
    assert in_group.conditions == ()
    assert in_group.grouping[0].conditions[0].value == "disk"

    assert combined.cleared() == FilterCriteria()


def test_fingerprint_tracks_content() -> None:
    cond = FilterCondition("value", "gt", 5, id="x")
    assert FilterCriteria((cond,)).fingerprint() == FilterCriteria((cond,)).fingerprint()
    other = FilterCondition("value", "gt", 6, id="x")
    assert FilterCriteria((cond,)).fingerprint() != FilterCriteria((other,)).fingerprint()


def test_validate_criteria_reports_problems() -> None:
    criteria = FilterCriteria(
        conditions=(
            FilterCondition("", "eq", "x"),
            FilterCondition("value", "between", 5),
            FilterCondition("value", "gt", None),
            FilterCondition("category", "eq", ""),
            FilterCondition("value", "bogus", 1),
        ),
        grouping=(FilterGroup(id="g1"),),
    )
    result = validate_criteria(criteria)

    assert not result.is_valid
    assert "Condition 1: Field is required" in result.errors
    assert any(e.startswith("Condition 2:") for e in result.errors)
    assert "Condition 3: Value is required" in result.errors
    assert not any(e.startswith("Condition 4:") for e in result.errors)
    assert any("Unknown operator" in e for e in result.errors)
    assert "Group 1: At least one condition is required" in result.errors


def test_validate_criteria_accepts_builder_output() -> None:
    criteria = FilterCriteria(
        conditions=(
            create_relative_date_filter("timestamp", "last_hour"),
            create_categorical_filter("category", ["cpu", "disk"]),
        )
    )
    assert validate_criteria(criteria).is_valid


def test_duplicate_condition_ids_are_renamed(caplog) -> None:
    first = FilterCondition("category", "eq", "cpu", id="dup")
    second = FilterCondition("value", "gt", 5, id="dup")

    criteria = FilterCriteria((first, second))

    ids = [c.id for c in criteria.conditions]
    assert ids[0] == "dup"
    assert len(set(ids)) == 2
    assert "Duplicate condition id 'dup'" in caplog.text
    remaining = criteria.without_condition("dup")
    assert [c.field for c in remaining.conditions] == ["value"]


def test_duplicate_ids_across_chain_and_groups_are_renamed() -> None:
    criteria = FilterCriteria.from_mapping(
        {
            "conditions": [{"id": "c1", "field": "category", "operator": "eq", "value": "cpu"}],
            "grouping": [
                {"id": "g1", "conditions": [{"id": "c1", "field": "source", "operator": "eq", "value": "s1"}]},
                {"id": "g2", "conditions": [{"id": "c2", "field": "source", "operator": "eq", "value": "s2"}]},
            ],
        }
    )

    ids = [c.id for c in criteria.conditions] + [c.id for g in criteria.grouping for c in g.conditions]
    assert len(ids) == len(set(ids)) == 3
    assert criteria.conditions[0].id == "c1"
    assert criteria.grouping[0].conditions[0].field == "source"
    assert criteria.grouping[1].conditions[0].id == "c2"


def test_unknown_logical_operator_is_kept_and_reported() -> None:
    assert LogicalOperator.coerce("XOR") == "XOR"
    assert LogicalOperator.coerce("or") is LogicalOperator.OR

    criteria = FilterCriteria.from_mapping(
        {
            "conditions": [
                {"id": "c1", "field": "category", "operator": "eq", "value": "cpu"},
                {"id": "c2", "field": "value", "operator": "gt", "value": 1, "logicalOperator": "XOR"},
            ],
            "grouping": [
                {"id": "g1", "logicalOperator": "NAND", "conditions": [{"field": "source", "operator": "eq", "value": "s1"}]},
            ],
        }
    )

    assert criteria.conditions[1].logical_operator == "XOR"
    assert criteria.to_mapping()["conditions"][1]["logicalOperator"] == "XOR"
    result = validate_criteria(criteria)
    assert not result.is_valid
    assert "Condition 2: Unknown logical operator 'XOR'" in result.errors
    assert any(e.startswith("Group 1: Unknown logical operator") for e in result.errors)


def test_builders_still_reject_unknown_logical_operator() -> None:
    with pytest.raises(ValueError):
        create_single_category_filter("category", "cpu", "XOR")
