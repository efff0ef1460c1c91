"""Indexed filtering of observation snapshots.

:mod:`conditions` defines the immutable criteria model and builders,
:mod:`index` and :mod:`evaluator` answer criteria against one dataset
snapshot, and :mod:`debounce` coalesces bursts of changes into single
recomputes for a consumer.
"""

from .conditions import (
    FilterCondition,
    FilterCriteria,
    FilterGroup,
    FilterOperator,
    LogicalOperator,
    RelativeDateOption,
    SortDirection,
    SortSpec,
    ValidationResult,
    create_categorical_filter,
    create_date_range_filter,
    create_relative_date_filter,
    create_single_category_filter,
    validate_criteria,
)
from .debounce import DebounceCoordinator, FilterState
from .evaluator import FilterEvaluator, FilterStats
from .index import FilterIndex

__all__ = [
    "DebounceCoordinator",
    "FilterCondition",
    "FilterCriteria",
    "FilterEvaluator",
    "FilterGroup",
    "FilterIndex",
    "FilterOperator",
    "FilterState",
    "FilterStats",
    "LogicalOperator",
    "RelativeDateOption",
    "SortDirection",
    "SortSpec",
    "ValidationResult",
    "create_categorical_filter",
    "create_date_range_filter",
    "create_relative_date_filter",
    "create_single_category_filter",
    "validate_criteria",
]
