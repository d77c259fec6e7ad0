"""Collection and value helpers shared by operators and functions.

Every expression evaluates to a list. Items are either ``ResourceNode``
instances or plain primitive values (bool, int, Decimal, str, date...).
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from fhir_invariants.core.errors import EvaluationError
from fhir_invariants.core.ontology.resource import ResourceNode
from fhir_invariants.core.ontology.types import PrimitiveKind, kind_of_type_name


def unwrap(item: Any) -> Any:
    """Primitive value of an item (the node itself when it has none)."""
    if isinstance(item, ResourceNode) and item.value is not None:
        return item.value
    return item


def singleton(collection: list[Any], what: str) -> Any:
    """Single unwrapped value of a collection, or None when empty."""
    if not collection:
        return None
    if len(collection) > 1:
        raise EvaluationError(f"{what} expects a single item, got {len(collection)}")
    return unwrap(collection[0])


def to_bool(collection: list[Any], what: str = "boolean expression") -> bool | None:
    """Boolean value of a collection; None stands for empty."""
    value = singleton(collection, what)
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    # A single non-boolean item counts as true
    return True


def is_number(value: Any) -> bool:
    return isinstance(value, (int, Decimal)) and not isinstance(value, bool)


def item_matches_kind(item: Any, kind: PrimitiveKind) -> bool:
    """Whether an item is of the given primitive kind."""
    if isinstance(item, ResourceNode):
        declared = kind_of_type_name(item.type_name)
        if declared is not None:
            return declared == kind
        if item.value is None:
            return False
        item = item.value

    if kind == PrimitiveKind.BOOLEAN:
        return isinstance(item, bool)
    elif kind == PrimitiveKind.INTEGER:
        return isinstance(item, int) and not isinstance(item, bool)
    elif kind == PrimitiveKind.DECIMAL:
        return isinstance(item, Decimal)
    elif kind == PrimitiveKind.STRING:
        return isinstance(item, str)
    elif kind == PrimitiveKind.DATE:
        return isinstance(item, date) and not isinstance(item, datetime)
    elif kind == PrimitiveKind.DATETIME:
        return isinstance(item, datetime)
    elif kind == PrimitiveKind.TIME:
        return isinstance(item, time)
    raise EvaluationError(f"Unsupported primitive kind {kind!r}")


def _structure(item: Any) -> Any:
    if isinstance(item, ResourceNode):
        return (
            item.type_name,
            item.value,
            tuple((name, tuple(_structure(c) for c in items)) for name, items in item.children.items()),
        )
    return item


def values_equal(left: Any, right: Any) -> bool:
    """FHIRPath equality of two items."""
    left, right = unwrap(left), unwrap(right)
    if isinstance(left, ResourceNode) or isinstance(right, ResourceNode):
        return _structure(left) == _structure(right)
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if is_number(left) and is_number(right):
        return left == right
    if type(left) is not type(right) and not (isinstance(left, str) and isinstance(right, str)):
        return False
    return left == right


def values_equivalent(left: Any, right: Any) -> bool:
    """FHIRPath equivalence: case and whitespace insensitive for strings."""
    left, right = unwrap(left), unwrap(right)
    if isinstance(left, str) and isinstance(right, str):
        return " ".join(left.lower().split()) == " ".join(right.lower().split())
    return values_equal(left, right)


def compare_values(left: Any, right: Any, op: str) -> bool:
    """Ordered comparison of two primitive values.

    Raises:
        EvaluationError: If the values are not of comparable kinds.
    """
    comparable = (
        (is_number(left) and is_number(right))
        or (isinstance(left, str) and isinstance(right, str))
        or (isinstance(left, datetime) and isinstance(right, datetime))
        or (
            isinstance(left, date) and isinstance(right, date)
            and not isinstance(left, datetime) and not isinstance(right, datetime)
        )
        or (isinstance(left, time) and isinstance(right, time))
    )
    if not comparable:
        raise EvaluationError(
            f"Cannot compare {type(left).__name__} {op} {type(right).__name__}"
        )
    if op == "<":
        return left < right
    if op == ">":
        return left > right
    if op == "<=":
        return left <= right
    return left >= right


def distinct(collection: list[Any]) -> list[Any]:
    """Items in order, dropping later items equal to an earlier one."""
    result: list[Any] = []
    for item in collection:
        if not any(values_equal(item, seen) for seen in result):
            result.append(item)
    return result


def require_string(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise EvaluationError(f"{what} expects a string, got {type(value).__name__}")
    return value
