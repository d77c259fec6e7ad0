"""Built-in expression functions.

Each implementation takes the interpreter, the input collection, the call
node and the caller's scope, and returns a collection. Functions with lazy
arguments evaluate them once per input item with ``$this`` bound to it.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Callable

from fhir_invariants.compiler.ir import Call, TypeSpecifier
from fhir_invariants.core.errors import EvaluationError
from fhir_invariants.core.ontology.resource import ResourceNode
from .values import (
    distinct,
    item_matches_kind,
    require_string,
    singleton,
    to_bool,
    unwrap,
    values_equal,
)

if TYPE_CHECKING:
    from .interpreter import Interpreter, Scope


@lru_cache(maxsize=512)
def _regex(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise EvaluationError(f"Invalid regular expression '{pattern}': {e}") from e


def _criteria(interp: Interpreter, items: list[Any], call: Call, arg: int = 0):
    """Yield (item, criteria result) for every input item."""
    for index, item in enumerate(items):
        result = interp.eval_in_item(call.args[arg], item, index)
        yield item, to_bool(result, f"{call.name}() criteria")


def _string_input(items: list[Any], call: Call) -> str | None:
    value = singleton(items, f"{call.name}()")
    if value is None:
        return None
    return require_string(value, f"{call.name}()")


def _string_arg(interp: Interpreter, call: Call, scope: Scope) -> str | None:
    value = singleton(interp.eval(call.args[0], scope), f"{call.name}() argument")
    if value is None:
        return None
    return require_string(value, f"{call.name}() argument")


# =============================================================================
# Existence and filtering
# =============================================================================


def _exists(interp, items, call, scope):
    if call.args:
        return [any(result is True for _, result in _criteria(interp, items, call))]
    return [len(items) > 0]


def _empty(interp, items, call, scope):
    return [len(items) == 0]


def _all(interp, items, call, scope):
    # Vacuously true for an empty input
    return [all(result is True for _, result in _criteria(interp, items, call))]


def _where(interp, items, call, scope):
    return [item for item, result in _criteria(interp, items, call) if result is True]


def _select(interp, items, call, scope):
    result: list[Any] = []
    for index, item in enumerate(items):
        result.extend(interp.eval_in_item(call.args[0], item, index))
    return result


def _iif(interp, items, call, scope):
    condition = to_bool(interp.eval(call.args[0], scope), "iif() criterion")
    if condition is True:
        return interp.eval(call.args[1], scope)
    if len(call.args) > 2:
        return interp.eval(call.args[2], scope)
    return []


def _all_true(interp, items, call, scope):
    return [all(unwrap(item) is True for item in items)]


def _any_true(interp, items, call, scope):
    return [any(unwrap(item) is True for item in items)]


def _not(interp, items, call, scope):
    value = to_bool(items, "not()")
    return [] if value is None else [not value]


def _has_value(interp, items, call, scope):
    if len(items) != 1:
        return [False]
    item = items[0]
    if isinstance(item, ResourceNode):
        return [item.value is not None]
    return [True]


# =============================================================================
# Subsetting
# =============================================================================


def _count(interp, items, call, scope):
    return [len(items)]


def _first(interp, items, call, scope):
    return items[:1]


def _last(interp, items, call, scope):
    return items[-1:]


def _tail(interp, items, call, scope):
    return items[1:]


def _distinct(interp, items, call, scope):
    return distinct(items)


def _is_distinct(interp, items, call, scope):
    return [len(distinct(items)) == len(items)]


# =============================================================================
# Strings
# =============================================================================


def _matches(interp, items, call, scope):
    value = _string_input(items, call)
    pattern = _string_arg(interp, call, scope)
    if value is None or pattern is None:
        return []
    return [_regex(pattern).search(value) is not None]


def _starts_with(interp, items, call, scope):
    value = _string_input(items, call)
    prefix = _string_arg(interp, call, scope)
    if value is None or prefix is None:
        return []
    return [value.startswith(prefix)]


def _ends_with(interp, items, call, scope):
    value = _string_input(items, call)
    suffix = _string_arg(interp, call, scope)
    if value is None or suffix is None:
        return []
    return [value.endswith(suffix)]


def _contains(interp, items, call, scope):
    value = _string_input(items, call)
    part = _string_arg(interp, call, scope)
    if value is None or part is None:
        return []
    return [part in value]


def _length(interp, items, call, scope):
    value = _string_input(items, call)
    return [] if value is None else [len(value)]


def _lower(interp, items, call, scope):
    value = _string_input(items, call)
    return [] if value is None else [value.lower()]


def _upper(interp, items, call, scope):
    value = _string_input(items, call)
    return [] if value is None else [value.upper()]


# =============================================================================
# Tree navigation
# =============================================================================


def _children(interp, items, call, scope):
    return [child for item in items if isinstance(item, ResourceNode) for child in item.iter_children()]


def _descendants(interp, items, call, scope):
    result: list[Any] = []
    stack = [item for item in reversed(items) if isinstance(item, ResourceNode)]
    while stack:
        node = stack.pop()
        children = list(node.iter_children())
        result.extend(children)
        stack.extend(reversed(children))
    return result


def _extension(interp, items, call, scope):
    url = _string_arg(interp, call, scope)
    if url is None:
        return []
    result = []
    for item in items:
        if not isinstance(item, ResourceNode):
            continue
        for extension in item.child_list("extension"):
            if any(values_equal(u, url) for u in extension.child_list("url")):
                result.append(extension)
    return result


# =============================================================================
# Types
# =============================================================================


def matches_type(item: Any, spec: TypeSpecifier) -> bool:
    """Whether an item is of the type named by ``spec``."""
    if spec.kind is not None:
        return item_matches_kind(item, spec.kind)
    type_name = spec.name.rsplit(".", 1)[-1]
    return isinstance(item, ResourceNode) and item.type_name == type_name


def _is(interp, items, call, scope):
    if not items:
        return []
    if len(items) > 1:
        raise EvaluationError(f"is() expects a single item, got {len(items)}")
    return [matches_type(items[0], call.type_arg)]


def _as(interp, items, call, scope):
    if len(items) > 1:
        raise EvaluationError(f"as() expects a single item, got {len(items)}")
    return [item for item in items if matches_type(item, call.type_arg)]


def _of_type(interp, items, call, scope):
    return [item for item in items if matches_type(item, call.type_arg)]


FUNCTIONS: dict[str, Callable[..., list[Any]]] = {
    "exists": _exists,
    "empty": _empty,
    "all": _all,
    "where": _where,
    "select": _select,
    "count": _count,
    "not": _not,
    "first": _first,
    "last": _last,
    "tail": _tail,
    "hasValue": _has_value,
    "matches": _matches,
    "startsWith": _starts_with,
    "endsWith": _ends_with,
    "contains": _contains,
    "length": _length,
    "lower": _lower,
    "upper": _upper,
    "distinct": _distinct,
    "isDistinct": _is_distinct,
    "iif": _iif,
    "children": _children,
    "descendants": _descendants,
    "allTrue": _all_true,
    "anyTrue": _any_true,
    "extension": _extension,
    "is": _is,
    "as": _as,
    "ofType": _of_type,
}
