"""
Filter criteria model: conditions, groups, sorting and builder helpers.

Everything here is immutable; helpers such as
:meth:`FilterCriteria.with_condition` return new objects, so a criteria
value handed to the debounce coordinator can never change underneath it.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping, Set as AbstractSet
from dataclasses import dataclass, field as dc_field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional, Set, Tuple, Union

from ..core.models import isoformat, parse_instant

logger = logging.getLogger(__name__)


class FilterOperator(str, Enum):
    EQ = "eq"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"

    @classmethod
    def coerce(cls, value: "FilterOperator | str") -> "FilterOperator | str":
        """Return the enum member for ``value``, or the raw string when unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return str(value)


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, value: "LogicalOperator | str | None") -> "LogicalOperator":
        if value is None or value == "":
            return cls.AND
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown logical operator {value!r}") from None

    @classmethod
    def coerce(cls, value: "LogicalOperator | str | None") -> "LogicalOperator | str":
        """Like :meth:`parse`, but an unknown connector is kept as the raw string."""
        try:
            return cls.parse(value)
        except ValueError:
            return str(value)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class RelativeDateOption(str, Enum):
    LAST_HOUR = "last_hour"
    LAST_DAY = "last_day"
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"

    @property
    def delta(self) -> timedelta:
        return _RELATIVE_DELTAS[self]


_RELATIVE_DELTAS = {
    RelativeDateOption.LAST_HOUR: timedelta(hours=1),
    RelativeDateOption.LAST_DAY: timedelta(hours=24),
    RelativeDateOption.LAST_WEEK: timedelta(days=7),
    RelativeDateOption.LAST_MONTH: timedelta(days=30),
}


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _freeze_value(value: Any) -> Any:
    """Lists become tuples and sets frozensets so conditions stay immutable."""
    if isinstance(value, list):
        return tuple(value)
    if isinstance(value, AbstractSet) and not isinstance(value, frozenset):
        return frozenset(value)
    return value


def _enum_text(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (tuple, list)):
        return [_jsonable(v) for v in value]
    if isinstance(value, AbstractSet):
        return sorted((_jsonable(v) for v in value), key=repr)
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class FilterCondition:
    """
    One predicate: ``field`` ``operator`` ``value``.

    ``logical_operator`` says how the condition combines with the result of
    the conditions before it (ignored for the first one). An unknown
    ``operator`` or ``logical_operator`` string is kept as-is; the evaluator
    treats the condition as matching nothing.
    """

    field: str
    operator: Union[FilterOperator, str]
    value: Any = None
    logical_operator: Union[LogicalOperator, str] = LogicalOperator.AND
    id: str = dc_field(default_factory=lambda: new_id("condition"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "operator", FilterOperator.coerce(self.operator))
        object.__setattr__(self, "logical_operator", LogicalOperator.coerce(self.logical_operator))
        object.__setattr__(self, "value", _freeze_value(self.value))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FilterCondition":
        logical = data.get("logical_operator", data.get("logicalOperator"))
        kwargs = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(
            field=str(data.get("field") or ""),
            operator=data.get("operator") or "",
            value=data.get("value"),
            logical_operator=LogicalOperator.coerce(logical),
            **kwargs,
        )

    def to_mapping(self) -> dict:
        return {
            "id": self.id,
            "field": self.field,
            "operator": _enum_text(self.operator),
            "value": _jsonable(self.value),
            "logicalOperator": _enum_text(self.logical_operator),
        }


@dataclass(frozen=True)
class FilterGroup:
    """
    A sub-chain of conditions.

    Root groups (no ``parent_group_id``) combine with the top-level result;
    child groups combine into their parent's result, each by its own
    ``logical_operator``.
    """

    id: str
    conditions: Tuple[FilterCondition, ...] = ()
    logical_operator: Union[LogicalOperator, str] = LogicalOperator.AND
    parent_group_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "conditions", tuple(self.conditions))
        object.__setattr__(self, "logical_operator", LogicalOperator.coerce(self.logical_operator))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FilterGroup":
        return cls(
            id=str(data.get("id") or new_id("group")),
            conditions=tuple(_condition(c) for c in data.get("conditions") or ()),
            logical_operator=LogicalOperator.coerce(data.get("logical_operator", data.get("logicalOperator"))),
            parent_group_id=data.get("parent_group_id", data.get("parentGroupId")) or None,
        )

    def to_mapping(self) -> dict:
        return {
            "id": self.id,
            "conditions": [c.to_mapping() for c in self.conditions],
            "logicalOperator": _enum_text(self.logical_operator),
            "parentGroupId": self.parent_group_id,
        }


@dataclass(frozen=True)
class SortSpec:
    field: str
    direction: SortDirection = SortDirection.ASC

    def __post_init__(self) -> None:
        if not isinstance(self.direction, SortDirection):
            object.__setattr__(self, "direction", SortDirection(str(self.direction).lower()))


def _condition(item: FilterCondition | Mapping[str, Any]) -> FilterCondition:
    return item if isinstance(item, FilterCondition) else FilterCondition.from_mapping(item)


def _group(item: FilterGroup | Mapping[str, Any]) -> FilterGroup:
    return item if isinstance(item, FilterGroup) else FilterGroup.from_mapping(item)


def _unique_id(condition: FilterCondition, seen: Set[str]) -> FilterCondition:
    if condition.id in seen:
        renamed = replace(condition, id=new_id("condition"))
        logger.warning("Duplicate condition id %r renamed to %r", condition.id, renamed.id)
        condition = renamed
    seen.add(condition.id)
    return condition


@dataclass(frozen=True)
class FilterCriteria:
    conditions: Tuple[FilterCondition, ...] = ()
    grouping: Tuple[FilterGroup, ...] = ()
    sort_by: Optional[SortSpec] = None

    def __post_init__(self) -> None:
        # condition ids must be unique across the chain and every group
        seen: Set[str] = set()
        conditions = tuple(_unique_id(_condition(c), seen) for c in self.conditions)
        grouping: List[FilterGroup] = []
        for item in self.grouping:
            group = _group(item)
            renamed = tuple(_unique_id(c, seen) for c in group.conditions)
            if any(new is not old for new, old in zip(renamed, group.conditions)):
                group = replace(group, conditions=renamed)
            grouping.append(group)
        object.__setattr__(self, "conditions", conditions)
        object.__setattr__(self, "grouping", tuple(grouping))

    @property
    def is_empty(self) -> bool:
        return not self.conditions and not self.grouping

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "FilterCriteria":
        """Accepts the dashboard's camelCase shape (``sortBy``, ``logicalOperator``...)."""
        if not data:
            return cls()
        sort_raw = data.get("sort_by", data.get("sortBy"))
        sort_by = None
        if sort_raw:
            sort_by = SortSpec(field=str(sort_raw["field"]), direction=sort_raw.get("direction", "asc"))
        return cls(
            conditions=tuple(_condition(c) for c in data.get("conditions") or ()),
            grouping=tuple(_group(g) for g in data.get("grouping") or ()),
            sort_by=sort_by,
        )

    def to_mapping(self) -> dict:
        sort = None
        if self.sort_by is not None:
            sort = {"field": self.sort_by.field, "direction": self.sort_by.direction.value}
        return {
            "conditions": [c.to_mapping() for c in self.conditions],
            "grouping": [g.to_mapping() for g in self.grouping],
            "sortBy": sort,
        }

    def fingerprint(self) -> str:
        """Canonical text used as the result-cache key."""
        return json.dumps(self.to_mapping(), sort_keys=True, default=repr)

    def with_condition(self, condition: FilterCondition) -> "FilterCriteria":
        """Replace the condition with the same id (in the chain or a group), or append ``condition``."""
        if any(c.id == condition.id for g in self.grouping for c in g.conditions):
            grouping = tuple(
                replace(g, conditions=tuple(condition if c.id == condition.id else c for c in g.conditions))
                for g in self.grouping
            )
            return replace(self, grouping=grouping)
        conditions: List[FilterCondition] = list(self.conditions)
        for i, existing in enumerate(conditions):
            if existing.id == condition.id:
                conditions[i] = condition
                break
        else:
            conditions.append(condition)
        return replace(self, conditions=tuple(conditions))

    def without_condition(self, condition_id: str) -> "FilterCriteria":
        """Drop the condition with ``condition_id`` from the chain and from every group."""
        conditions = tuple(c for c in self.conditions if c.id != condition_id)
        grouping = tuple(
            replace(g, conditions=tuple(c for c in g.conditions if c.id != condition_id)) for g in self.grouping
        )
        return replace(self, conditions=conditions, grouping=grouping)

    def with_sort(self, sort_by: Optional[SortSpec]) -> "FilterCriteria":
        return replace(self, sort_by=sort_by)

    def cleared(self) -> "FilterCriteria":
        return FilterCriteria()


# ---------------------------------------------------------------- builders
def create_date_range_filter(
    field: str,
    start: datetime,
    end: datetime,
    logical_operator: LogicalOperator | str = LogicalOperator.AND,
) -> FilterCondition:
    """``between`` condition with ISO-8601 bounds."""
    return FilterCondition(
        field=field,
        operator=FilterOperator.BETWEEN,
        value=(isoformat(start), isoformat(end)),
        logical_operator=LogicalOperator.parse(logical_operator),
        id=new_id("date-range"),
    )


def create_relative_date_filter(
    field: str,
    option: RelativeDateOption | str,
    logical_operator: LogicalOperator | str = LogicalOperator.AND,
    *,
    now: datetime | None = None,
) -> FilterCondition:
    """``[now - delta, now]`` for ``last_hour``, ``last_day``, ``last_week`` or ``last_month``."""
    try:
        relative = option if isinstance(option, RelativeDateOption) else RelativeDateOption(str(option))
    except ValueError:
        raise ValueError(f"Unknown relative date option {option!r}") from None
    end = now or datetime.now(timezone.utc)
    return create_date_range_filter(field, end - relative.delta, end, logical_operator)


def create_categorical_filter(
    field: str,
    values: Iterable[Any],
    operator: FilterOperator | str = FilterOperator.IN,
    logical_operator: LogicalOperator | str = LogicalOperator.AND,
) -> FilterCondition:
    op = FilterOperator.coerce(operator)
    if op not in (FilterOperator.IN, FilterOperator.NOT_IN):
        raise ValueError(f"Categorical filters use 'in' or 'not_in', got {operator!r}")
    return FilterCondition(
        field=field,
        operator=op,
        value=tuple(values),
        logical_operator=LogicalOperator.parse(logical_operator),
        id=new_id(f"categorical-{field}"),
    )


def create_single_category_filter(
    field: str,
    value: Any,
    logical_operator: LogicalOperator | str = LogicalOperator.AND,
) -> FilterCondition:
    return FilterCondition(
        field=field,
        operator=FilterOperator.EQ,
        value=value,
        logical_operator=LogicalOperator.parse(logical_operator),
        id=new_id(f"category-{field}"),
    )


# -------------------------------------------------------------- validation
@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: Tuple[str, ...] = ()


def _is_collection(value: Any) -> bool:
    return isinstance(value, (tuple, list, AbstractSet))


def _condition_errors(condition: FilterCondition, label: str) -> List[str]:
    errors: List[str] = []
    if not condition.field or not str(condition.field).strip():
        errors.append(f"{label}: Field is required")
    if not isinstance(condition.logical_operator, LogicalOperator):
        errors.append(f"{label}: Unknown logical operator {condition.logical_operator!r}")
    op = condition.operator
    if not op:
        errors.append(f"{label}: Operator is required")
        return errors
    if not isinstance(op, FilterOperator):
        errors.append(f"{label}: Unknown operator {op!r}")
        return errors

    value = condition.value
    if value is None or value == "":
        # eq may legitimately compare against an empty value
        if op is not FilterOperator.EQ:
            errors.append(f"{label}: Value is required")
        return errors
    if op is FilterOperator.BETWEEN:
        if not isinstance(value, (tuple, list)) or len(value) != 2:
            errors.append(f"{label}: 'between' needs a [low, high] pair")
    elif op in (FilterOperator.IN, FilterOperator.NOT_IN):
        if not _is_collection(value):
            errors.append(f"{label}: '{op.value}' needs a list of values")
    elif op in (FilterOperator.GT, FilterOperator.LT, FilterOperator.GTE, FilterOperator.LTE):
        if _is_collection(value):
            errors.append(f"{label}: '{op.value}' needs a single value")
        elif isinstance(value, str) and parse_instant(value) is None:
            try:
                float(value)
            except ValueError:
                errors.append(f"{label}: '{op.value}' needs a number or date")
    return errors


def validate_criteria(criteria: FilterCriteria) -> ValidationResult:
    """Collect human-readable problems; an empty list means the criteria is usable."""
    errors: List[str] = []
    for index, condition in enumerate(criteria.conditions, start=1):
        errors.extend(_condition_errors(condition, f"Condition {index}"))
    group_ids = {group.id for group in criteria.grouping}
    for index, group in enumerate(criteria.grouping, start=1):
        if not group.conditions:
            errors.append(f"Group {index}: At least one condition is required")
        if not isinstance(group.logical_operator, LogicalOperator):
            errors.append(f"Group {index}: Unknown logical operator {group.logical_operator!r}")
        if group.parent_group_id and group.parent_group_id not in group_ids:
            errors.append(f"Group {index}: Unknown parent group {group.parent_group_id!r}")
        for c_index, condition in enumerate(group.conditions, start=1):
            errors.extend(_condition_errors(condition, f"Group {index} condition {c_index}"))
    return ValidationResult(is_valid=not errors, errors=tuple(errors))


__all__ = [
    "FilterCondition",
    "FilterCriteria",
    "FilterGroup",
    "FilterOperator",
    "LogicalOperator",
    "RelativeDateOption",
    "SortDirection",
    "SortSpec",
    "ValidationResult",
    "create_categorical_filter",
    "create_date_range_filter",
    "create_relative_date_filter",
    "create_single_category_filter",
    "new_id",
    "validate_criteria",
]
