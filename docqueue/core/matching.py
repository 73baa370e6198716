"""
In-process evaluation of MongoDB-style filters and sorts.

Used by the document stores that keep their collection in Python memory
(InMemoryDocumentStore, LocalFileDocumentStore). Supports the subset of the
query language the queue and its callers rely on:

  equality            {"payload.a": 1}          arrays match on any element
  comparison          $eq $ne $gt $gte $lt $lte
  membership          $in $nin
  presence            $exists
  logical             $and $or $not

Type rules follow MongoDB where they matter: booleans never equal numbers,
values of incomparable types never satisfy a range operator, and a missing
field sorts before any present value.
"""

from __future__ import annotations

import functools
from collections.abc import Mapping, Sequence
from datetime import datetime
from numbers import Number
from typing import Any

from docqueue.domain.errors import InvalidArgumentError

_MISSING = object()


def get_path(document: Mapping[str, Any], path: str) -> Any:
    """Value at a dotted path, or _MISSING."""
    current: Any = document
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    """Assign at a dotted path, creating intermediate documents."""
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def matches(document: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    """True when `document` satisfies every clause of `filter`."""
    for key, condition in filter.items():
        match key:
            case "$and":
                if not all(matches(document, sub) for sub in condition):
                    return False
            case "$or":
                if not any(matches(document, sub) for sub in condition):
                    return False
            case _ if key.startswith("$"):
                raise InvalidArgumentError(f"Unsupported top-level operator {key!r}")
            case _:
                if not _matches_condition(get_path(document, key), condition):
                    return False
    return True


def _is_operator_document(condition: Any) -> bool:
    return (
        isinstance(condition, Mapping)
        and bool(condition)
        and all(isinstance(k, str) and k.startswith("$") for k in condition)
    )


def _matches_condition(value: Any, condition: Any) -> bool:
    if not _is_operator_document(condition):
        return _equals(value, condition)
    return all(
        _apply_operator(value, op, operand) for op, operand in condition.items()
    )


def _apply_operator(value: Any, op: str, operand: Any) -> bool:
    match op:
        case "$eq":
            return _equals(value, operand)
        case "$ne":
            return not _equals(value, operand)
        case "$gt":
            return _compare_any(value, operand, lambda c: c > 0)
        case "$gte":
            return _compare_any(value, operand, lambda c: c >= 0)
        case "$lt":
            return _compare_any(value, operand, lambda c: c < 0)
        case "$lte":
            return _compare_any(value, operand, lambda c: c <= 0)
        case "$in":
            return any(_equals(value, candidate) for candidate in operand)
        case "$nin":
            return not any(_equals(value, candidate) for candidate in operand)
        case "$exists":
            return (value is not _MISSING) == bool(operand)
        case "$not":
            return not _matches_condition(value, operand)
        case _:
            raise InvalidArgumentError(f"Unsupported operator {op!r}")


def _scalar_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if right is None:
        return left is None or left is _MISSING
    if left is _MISSING:
        return False
    return bool(left == right)


def _equals(value: Any, expected: Any) -> bool:
    if _scalar_equals(value, expected):
        return True
    if isinstance(value, list) and not isinstance(expected, list):
        return any(_scalar_equals(item, expected) for item in value)
    return False


def _compare_any(value: Any, operand: Any, accept: Any) -> bool:
    candidates = value if isinstance(value, list) else [value]
    for candidate in candidates:
        result = _compare(candidate, operand)
        if result is not None and accept(result):
            return True
    return False


def _compare(left: Any, right: Any) -> int | None:
    """-1/0/1 for values of the same comparable kind, None otherwise."""
    if left is _MISSING or left is None or right is None:
        return None
    if isinstance(left, bool) or isinstance(right, bool):
        if not (isinstance(left, bool) and isinstance(right, bool)):
            return None
    elif isinstance(left, Number) and isinstance(right, Number):
        pass
    elif isinstance(left, datetime) and isinstance(right, datetime):
        pass
    elif type(left) is not type(right):
        return None
    try:
        return (left > right) - (left < right)
    except TypeError:
        return None


# ---------------------------------------------------------------------- #
# Sorting                                                                 #
# ---------------------------------------------------------------------- #


def _type_rank(value: Any) -> int:
    """Cross-type order for sorting: missing/null < numbers < strings < other."""
    if value is _MISSING or value is None:
        return 0
    if isinstance(value, Number) and not isinstance(value, bool):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, bool):
        return 4
    if isinstance(value, datetime):
        return 5
    return 3


def _sort_compare(left: Any, right: Any) -> int:
    left_rank, right_rank = _type_rank(left), _type_rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    if left_rank == 0:
        return 0
    result = _compare(left, right)
    return 0 if result is None else result


def sorted_documents(
    documents: Sequence[dict[str, Any]],
    sort: Sequence[tuple[str, int]],
) -> list[dict[str, Any]]:
    """Stable sort of `documents` by the (field, direction) keys of `sort`."""

    def _cmp(a: dict[str, Any], b: dict[str, Any]) -> int:
        for field, direction in sort:
            result = _sort_compare(get_path(a, field), get_path(b, field))
            if result:
                return result * direction
        return 0

    return sorted(documents, key=functools.cmp_to_key(_cmp))
