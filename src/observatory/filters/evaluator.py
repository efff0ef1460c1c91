"""
Evaluation of :class:`FilterCriteria` against an indexed dataset.

A chain of conditions is folded left to right: the first condition gives
the starting set, each following condition intersects (``AND``) or unions
(``OR``) its matches with the running result. Results are row positions
and are returned in dataset order unless the criteria asks for sorting.

Conditions never raise out of the evaluator. An unknown operator, a badly
shaped value or an unresolvable field makes that one condition match
nothing and is logged as a warning.
"""

from __future__ import annotations

import logging
import math
import time
from collections import OrderedDict, defaultdict
from collections.abc import Set as AbstractSet
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..core.errors import MalformedConditionError
from ..core.models import DataPoint
from .conditions import FilterCondition, FilterCriteria, FilterGroup, FilterOperator, LogicalOperator, SortDirection, SortSpec
from .fields import MISSING, canonical_field, equality_key, ordinal, resolve
from .index import FilterIndex

logger = logging.getLogger(__name__)

Positions = Set[int]
Handler = Callable[[str, FilterCondition], Positions]


@dataclass(frozen=True)
class FilterStats:
    data_size: int
    index_size: int
    cache_size: int
    indexed_fields: Tuple[str, ...]

    def as_dict(self) -> dict:
        return {
            "dataSize": self.data_size,
            "indexSize": self.index_size,
            "cacheSize": self.cache_size,
            "indexedFields": list(self.indexed_fields),
        }


def _combine(left: Positions, right: Positions, connector: LogicalOperator) -> Positions:
    if connector is LogicalOperator.OR:
        return left | right
    return left & right


def _checked(owner_id: str, connector: Any, matches: Positions) -> Tuple[LogicalOperator, Positions]:
    """An unknown connector makes its owner match nothing, joined by ``AND``."""
    if isinstance(connector, LogicalOperator):
        return connector, matches
    logger.warning("%s has unknown logical operator %r; it matches nothing", owner_id, connector)
    return LogicalOperator.AND, set()


class FilterEvaluator:
    """Owns a :class:`FilterIndex` and a small result cache for one consumer."""

    def __init__(self, data: Iterable[DataPoint] = (), *, cache_size: int = 100) -> None:
        if cache_size < 0:
            raise ValueError("cache_size must be >= 0")
        self._index = FilterIndex(data)
        self._cache: "OrderedDict[str, Tuple[int, ...]]" = OrderedDict()
        self._cache_size = int(cache_size)
        self._handlers: Dict[FilterOperator, Handler] = {
            FilterOperator.EQ: self._match_eq,
            FilterOperator.IN: self._match_in,
            FilterOperator.NOT_IN: self._match_not_in,
            FilterOperator.BETWEEN: self._match_between,
            FilterOperator.GT: self._match_gt,
            FilterOperator.LT: self._match_lt,
            FilterOperator.GTE: self._match_gte,
            FilterOperator.LTE: self._match_lte,
            FilterOperator.CONTAINS: self._match_contains,
        }
        self.last_duration_ms = 0.0

    # ------------------------------------------------------------------ data
    def set_data(self, data: Iterable[DataPoint]) -> None:
        """Replace the dataset wholesale and rebuild the index."""
        self._index.rebuild(data)
        self._cache.clear()

    def add_data(self, points: Iterable[DataPoint]) -> None:
        """Append rows; only the new rows are indexed."""
        if self._index.append(points):
            self._cache.clear()

    @property
    def data(self) -> Tuple[DataPoint, ...]:
        return tuple(self._index.points)

    @property
    def index(self) -> FilterIndex:
        return self._index

    @property
    def handled_operators(self) -> frozenset:
        return frozenset(self._handlers)

    # ------------------------------------------------------------ evaluation
    def filter(self, criteria: FilterCriteria) -> Tuple[DataPoint, ...]:
        """Matching points, in dataset order (or ``criteria.sort_by`` order)."""
        start = time.perf_counter()
        key = criteria.fingerprint()
        positions = self._cache.get(key)
        if positions is not None:
            self._cache.move_to_end(key)
        else:
            positions = self._evaluate(criteria)
            if self._cache_size:
                self._cache[key] = positions
                while len(self._cache) > self._cache_size:
                    self._cache.popitem(last=False)
        points = self._index.points
        result = tuple(points[i] for i in positions)
        self.last_duration_ms = (time.perf_counter() - start) * 1000.0
        logger.debug("Filter applied in %.3f ms, %d of %d rows", self.last_duration_ms, len(result), len(points))
        return result

    def evaluate_condition(self, condition: FilterCondition) -> Positions:
        """
        Positions matching one condition.

        Raises :class:`MalformedConditionError` for unknown operators, bad
        value shapes and blank fields; :meth:`filter` turns that into an
        empty match.
        """
        operator = condition.operator
        if not isinstance(operator, FilterOperator):
            raise MalformedConditionError(condition.id, f"unknown operator {operator!r}")
        field = canonical_field(condition.field)
        if not field:
            raise MalformedConditionError(condition.id, "field is required")
        return self._handlers[operator](field, condition)

    def get_stats(self) -> FilterStats:
        fields = self._index.indexed_fields
        return FilterStats(
            data_size=len(self._index),
            index_size=len(fields),
            cache_size=len(self._cache),
            indexed_fields=tuple(fields),
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------- internals
    def _all(self) -> Positions:
        return set(range(len(self._index)))

    def _evaluate(self, criteria: FilterCriteria) -> Tuple[int, ...]:
        parts: List[Tuple[LogicalOperator, Positions]] = []
        if criteria.conditions:
            parts.append((LogicalOperator.AND, self._evaluate_chain(criteria.conditions)))
        parts.extend(self._evaluate_groups(criteria.grouping))

        if not parts:
            ordered: List[int] = list(range(len(self._index)))
        else:
            result = parts[0][1]
            for connector, matches in parts[1:]:
                result = _combine(result, matches, connector)
            ordered = sorted(result)

        if criteria.sort_by is not None:
            ordered = self._sorted(ordered, criteria.sort_by)
        return tuple(ordered)

    def _evaluate_chain(self, conditions: Sequence[FilterCondition]) -> Positions:
        if not conditions:
            return self._all()
        result: Optional[Positions] = None
        for condition in conditions:
            connector, matches = _checked(condition.id, condition.logical_operator, self._evaluate_safely(condition))
            result = matches if result is None else _combine(result, matches, connector)
        return result if result is not None else set()

    def _evaluate_groups(self, groups: Sequence[FilterGroup]) -> List[Tuple[LogicalOperator, Positions]]:
        if not groups:
            return []
        known = {group.id for group in groups}
        children: Dict[Optional[str], List[FilterGroup]] = defaultdict(list)
        for group in groups:
            parent = group.parent_group_id
            if parent is not None and parent not in known:
                logger.warning("Group %s references unknown parent %s; treating it as a root group", group.id, parent)
                parent = None
            children[parent].append(group)

        def evaluate(group: FilterGroup) -> Positions:
            result = self._evaluate_chain(group.conditions)
            for child in children.get(group.id, ()):
                connector, matches = _checked(child.id, child.logical_operator, evaluate(child))
                result = _combine(result, matches, connector)
            return result

        return [_checked(root.id, root.logical_operator, evaluate(root)) for root in children.get(None, ())]

    def _evaluate_safely(self, condition: FilterCondition) -> Positions:
        try:
            return self.evaluate_condition(condition)
        except MalformedConditionError as exc:
            logger.warning("Condition %s matches nothing: %s", exc.condition_id, exc.reason)
        except Exception:
            logger.exception("Condition %s failed; treating it as matching nothing", condition.id)
        return set()

    def _scan(self, field: str, predicate: Callable[[Any], bool]) -> Positions:
        matches: Positions = set()
        for position, point in enumerate(self._index.points):
            value = resolve(point, field)
            if value is not MISSING and predicate(value):
                matches.add(position)
        return matches

    # --------------------------------------------------------------- operators
    def _match_eq(self, field: str, condition: FilterCondition) -> Positions:
        key = equality_key(condition.value)
        if key is None:
            raise MalformedConditionError(condition.id, f"'eq' needs a scalar value, got {condition.value!r}")
        hits = self._index.equality_positions(field, key)
        if hits is not None:
            return set(hits)
        return self._scan(field, lambda value: equality_key(value) == key)

    def _member_keys(self, condition: FilterCondition) -> Set[Any]:
        values = condition.value
        if not isinstance(values, (tuple, list, AbstractSet)):
            raise MalformedConditionError(condition.id, f"'{condition.operator.value}' needs a list of values")
        keys = set()
        for value in values:
            key = equality_key(value)
            if key is None:
                raise MalformedConditionError(condition.id, f"unhashable member {value!r}")
            keys.add(key)
        return keys

    def _match_in(self, field: str, condition: FilterCondition) -> Positions:
        keys = self._member_keys(condition)
        if self._index.has_equality(field):
            matches: Positions = set()
            for key in keys:
                matches.update(self._index.equality_positions(field, key) or ())
            return matches
        return self._scan(field, lambda value: equality_key(value) in keys)

    def _match_not_in(self, field: str, condition: FilterCondition) -> Positions:
        keys = self._member_keys(condition)
        # absent fields match neither 'in' nor 'not_in'
        return self._scan(field, lambda value: equality_key(value) not in keys)

    def _bound(self, condition: FilterCondition, raw: Any) -> float:
        number = ordinal(raw)
        if number is None:
            raise MalformedConditionError(
                condition.id, f"'{condition.operator.value}' needs a number or date, got {raw!r}"
            )
        return number

    def _match_range(
        self,
        field: str,
        low: float,
        high: float,
        include_low: bool,
        include_high: bool,
    ) -> Positions:
        hits = self._index.range_positions(field, low, high, include_low=include_low, include_high=include_high)
        if hits is not None:
            return set(hits.tolist())

        def in_range(value: Any) -> bool:
            number = ordinal(value)
            if number is None:
                return False
            above = number >= low if include_low else number > low
            below = number <= high if include_high else number < high
            return above and below

        return self._scan(field, in_range)

    def _match_between(self, field: str, condition: FilterCondition) -> Positions:
        value = condition.value
        if not isinstance(value, (tuple, list)) or len(value) != 2:
            raise MalformedConditionError(condition.id, f"'between' needs a [low, high] pair, got {value!r}")
        low, high = self._bound(condition, value[0]), self._bound(condition, value[1])
        if low > high:
            return set()
        return self._match_range(field, low, high, True, True)

    def _match_gt(self, field: str, condition: FilterCondition) -> Positions:
        return self._match_range(field, self._bound(condition, condition.value), math.inf, False, True)

    def _match_gte(self, field: str, condition: FilterCondition) -> Positions:
        return self._match_range(field, self._bound(condition, condition.value), math.inf, True, True)

    def _match_lt(self, field: str, condition: FilterCondition) -> Positions:
        return self._match_range(field, -math.inf, self._bound(condition, condition.value), True, False)

    def _match_lte(self, field: str, condition: FilterCondition) -> Positions:
        return self._match_range(field, -math.inf, self._bound(condition, condition.value), True, True)

    def _match_contains(self, field: str, condition: FilterCondition) -> Positions:
        if condition.value is None or isinstance(condition.value, (tuple, list, AbstractSet)):
            raise MalformedConditionError(condition.id, "'contains' needs a text value")
        needle = str(condition.value).lower()
        return self._scan(field, lambda value: needle in str(value).lower())

    # ----------------------------------------------------------------- sorting
    def _sorted(self, positions: List[int], sort_by: SortSpec) -> List[int]:
        """Stable sort; rows without the field go last in either direction."""
        field = canonical_field(sort_by.field)
        points = self._index.points
        present: List[Tuple[Tuple[int, Any], int]] = []
        absent: List[int] = []
        for position in positions:
            value = resolve(points[position], field) if field else MISSING
            if value is MISSING:
                absent.append(position)
                continue
            number = ordinal(value)
            key = (0, number) if number is not None else (1, str(value))
            present.append((key, position))
        present.sort(key=lambda item: item[0], reverse=sort_by.direction is SortDirection.DESC)
        return [position for _, position in present] + absent


__all__ = ["FilterEvaluator", "FilterStats"]
