"""Field path resolution and value coercion shared by the index and the evaluator."""

from __future__ import annotations

import math
from collections.abc import Hashable, Mapping
from datetime import datetime
from typing import Any, Optional, Tuple

from ..core.models import DataPoint, parse_instant

TOP_LEVEL_FIELDS = ("id", "timestamp", "value", "category", "source")


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def canonical_field(name: str) -> str:
    """
    Normalise a field reference.

    Top-level names and dotted paths are kept; any other bare name is looked
    up in ``metadata`` (``status`` becomes ``metadata.status``). Returns ``""``
    for blank input.
    """
    text = str(name or "").strip()
    if not text or text in TOP_LEVEL_FIELDS or "." in text:
        return text
    return f"metadata.{text}"


def resolve(point: DataPoint, field: str) -> Any:
    """Value of canonical ``field`` on ``point``, or :data:`MISSING` when absent or null."""
    if field in TOP_LEVEL_FIELDS:
        return getattr(point, field)
    head, _, rest = field.partition(".")
    if head != "metadata" or not rest:
        return MISSING
    current: Any = point.metadata
    for part in rest.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return MISSING
        current = current[part]
    return MISSING if current is None else current


EqualityKey = Tuple[str, Any]


def equality_key(value: Any) -> Optional[EqualityKey]:
    """
    Hashable key under which ``value`` is strictly equal to others.

    Numbers compare by value across int/float, booleans only with booleans,
    datetimes by instant. Returns ``None`` for unhashable values.
    """
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, (int, float)):
        number = float(value)
        if math.isnan(number):
            return None
        return ("num", number)
    if isinstance(value, str):
        return ("str", value)
    if isinstance(value, datetime):
        return ("time", parse_instant(value).timestamp())
    if isinstance(value, Hashable):
        try:
            hash(value)
        except TypeError:
            return None
        return ("obj", value)
    return None


def ordinal(value: Any) -> Optional[float]:
    """
    Position of ``value`` on the number line used by range operators.

    Numbers map to themselves, datetimes and ISO-8601 strings to epoch
    seconds, numeric strings to their value. Anything else is ``None``.
    """
    if isinstance(value, bool) or value is None or value is MISSING:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) else number
    if isinstance(value, datetime):
        return parse_instant(value).timestamp()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            instant = parse_instant(text)
            return None if instant is None else instant.timestamp()
        return None if math.isnan(number) else number
    return None


def is_range_native(value: Any) -> bool:
    """True for values a sorted numeric column can hold without changing scan semantics."""
    if isinstance(value, datetime):
        return True
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(float(value))


__all__ = [
    "MISSING",
    "TOP_LEVEL_FIELDS",
    "canonical_field",
    "equality_key",
    "is_range_native",
    "ordinal",
    "resolve",
]
