"""
Interpreter for compiled expression IR.

Evaluates a ``CompiledExpression`` against an ``EvaluationContext`` and
returns the resulting collection. Faults are raised as ``EvaluationError``;
the invariant evaluator turns them into Fatal issues.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import Any

from fhir_invariants.compiler.ir import (
    Binary,
    Call,
    CompiledExpression,
    Constant,
    EmptyCollection,
    Index,
    Literal,
    Member,
    Node,
    TypeOp,
    Unary,
    Variable,
)
from fhir_invariants.core.errors import EvaluationError
from fhir_invariants.core.ontology.resource import ResourceNode
from fhir_invariants.core.ontology.types import CHOICE_TYPE_SUFFIXES
from .context import EvaluationContext
from .functions import FUNCTIONS, matches_type
from .values import (
    compare_values,
    distinct,
    is_number,
    singleton,
    to_bool,
    unwrap,
    values_equal,
    values_equivalent,
)


@dataclass(frozen=True)
class Scope:
    """What ``$this`` and ``$index`` refer to."""

    this: list[Any]
    index: int | None = None


def _navigate(item: Any, name: str, from_start: bool) -> list[Any]:
    """Children called ``name`` of one item."""
    if not isinstance(item, ResourceNode):
        raise EvaluationError(
            f"Cannot navigate to '{name}' on primitive value {item!r}"
        )
    children = item.child_list(name)
    if children:
        return list(children)
    # Leading type name selects the node itself: Patient.name
    if from_start and name == item.type_name:
        return [item]
    # Choice elements: value -> valueQuantity; the suffix must name a data type
    result: list[Any] = []
    for child_name, items in item.children.items():
        if child_name.startswith(name) and child_name[len(name):] in CHOICE_TYPE_SUFFIXES:
            result.extend(items)
    return result


def _arith(op: str, left: Any, right: Any) -> list[Any]:
    if op == "+" and isinstance(left, str) and isinstance(right, str):
        return [left + right]
    if not (is_number(left) and is_number(right)):
        raise EvaluationError(
            f"Cannot apply '{op}' to {type(left).__name__} and {type(right).__name__}"
        )
    try:
        if op == "+":
            return [left + right]
        if op == "-":
            return [left - right]
        if op == "*":
            return [left * right]
        if op == "/":
            if right == 0:
                return []
            return [Decimal(left) / Decimal(right)]
        if op == "div":
            if right == 0:
                return []
            return [int(Decimal(left) // Decimal(right))]
        if op == "mod":
            if right == 0:
                return []
            return [left % right]
    except (InvalidOperation, DivisionByZero) as e:
        raise EvaluationError(f"Arithmetic fault in '{op}': {e}") from e
    raise EvaluationError(f"Unknown operator '{op}'")


class Interpreter:
    """Evaluates expression IR in one evaluation context."""

    def __init__(self, context: EvaluationContext):
        self.context = context
        self._dispatch = {
            Literal: self._eval_literal,
            EmptyCollection: self._eval_empty,
            Variable: self._eval_variable,
            Constant: self._eval_constant,
            Member: self._eval_member,
            Call: self._eval_call,
            Index: self._eval_index,
            Unary: self._eval_unary,
            Binary: self._eval_binary,
            TypeOp: self._eval_type_op,
        }

    def evaluate(self, compiled: CompiledExpression) -> list[Any]:
        """Evaluate a compiled expression with the context node as focus."""
        return self.eval(compiled.root, Scope(this=[self.context.node]))

    def eval(self, node: Node, scope: Scope) -> list[Any]:
        handler = self._dispatch.get(type(node))
        if handler is None:
            raise EvaluationError(f"Unsupported expression node {type(node).__name__}")
        return handler(node, scope)

    def eval_in_item(self, node: Node, item: Any, index: int) -> list[Any]:
        """Evaluate ``node`` with ``$this`` bound to one item."""
        return self.eval(node, Scope(this=[item], index=index))

    # ------------------------------------------------------------------
    # Terms
    # ------------------------------------------------------------------
    def _eval_literal(self, node: Literal, scope: Scope) -> list[Any]:
        return [node.value]

    def _eval_empty(self, node: EmptyCollection, scope: Scope) -> list[Any]:
        return []

    def _eval_variable(self, node: Variable, scope: Scope) -> list[Any]:
        if node.name == "this":
            return list(scope.this)
        if node.name == "index":
            return [] if scope.index is None else [scope.index]
        if node.name == "parent":
            parent = self.context.parent
            return [] if parent is None else [parent]
        raise EvaluationError(f"Unknown variable '${node.name}'")

    def _eval_constant(self, node: Constant, scope: Scope) -> list[Any]:
        return self.context.resolve_constant(node.name)

    def _eval_member(self, node: Member, scope: Scope) -> list[Any]:
        if node.source is None:
            items = scope.this
        else:
            items = self.eval(node.source, scope)
        from_start = node.source is None
        result: list[Any] = []
        for item in items:
            result.extend(_navigate(item, node.name, from_start))
        return result

    def _eval_call(self, node: Call, scope: Scope) -> list[Any]:
        items = scope.this if node.source is None else self.eval(node.source, scope)
        function = FUNCTIONS.get(node.name)
        if function is None:
            raise EvaluationError(f"Unknown function '{node.name}'")
        return function(self, items, node, scope)

    def _eval_index(self, node: Index, scope: Scope) -> list[Any]:
        items = self.eval(node.source, scope)
        index = singleton(self.eval(node.index, scope), "indexer")
        if index is None:
            return []
        if not isinstance(index, int) or isinstance(index, bool):
            raise EvaluationError(f"Indexer expects an integer, got {index!r}")
        if 0 <= index < len(items):
            return [items[index]]
        return []

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------
    def _eval_unary(self, node: Unary, scope: Scope) -> list[Any]:
        value = singleton(self.eval(node.operand, scope), f"unary '{node.op}'")
        if value is None:
            return []
        if not is_number(value):
            raise EvaluationError(f"Unary '{node.op}' expects a number, got {value!r}")
        return [-value] if node.op == "-" else [value]

    def _eval_binary(self, node: Binary, scope: Scope) -> list[Any]:
        op = node.op
        if op in ("and", "or", "xor", "implies"):
            return self._eval_logical(node, scope)

        left = self.eval(node.left, scope)
        right = self.eval(node.right, scope)

        if op == "|":
            return distinct(left + right)
        if op in ("=", "!="):
            if not left or not right:
                return []
            equal = len(left) == len(right) and all(
                values_equal(a, b) for a, b in zip(left, right)
            )
            return [equal if op == "=" else not equal]
        if op in ("~", "!~"):
            equivalent = len(left) == len(right) and all(
                any(values_equivalent(a, b) for b in right) for a in left
            )
            return [equivalent if op == "~" else not equivalent]
        if op in ("in", "contains"):
            element, container = (left, right) if op == "in" else (right, left)
            if not element:
                return []
            value = singleton(element, f"'{op}' operand")
            return [any(values_equal(value, item) for item in container)]
        if op == "&":
            lvalue = singleton(left, "'&' operand")
            rvalue = singleton(right, "'&' operand")
            return [f"{'' if lvalue is None else lvalue}{'' if rvalue is None else rvalue}"]

        lvalue = singleton(left, f"'{op}' operand")
        rvalue = singleton(right, f"'{op}' operand")
        if lvalue is None or rvalue is None:
            return []
        if op in ("<", ">", "<=", ">="):
            return [compare_values(lvalue, rvalue, op)]
        return _arith(op, lvalue, rvalue)

    def _eval_logical(self, node: Binary, scope: Scope) -> list[Any]:
        op = node.op
        left = to_bool(self.eval(node.left, scope), f"'{op}' operand")

        # Short-circuit where the result is already decided
        if op == "and" and left is False:
            return [False]
        if op == "or" and left is True:
            return [True]
        if op == "implies" and left is False:
            return [True]

        right = to_bool(self.eval(node.right, scope), f"'{op}' operand")

        if op == "and":
            if right is False:
                return [False]
            if left is None or right is None:
                return []
            return [True]
        if op == "or":
            if right is True:
                return [True]
            if left is None or right is None:
                return []
            return [False]
        if op == "xor":
            if left is None or right is None:
                return []
            return [left != right]
        # implies
        if left is True:
            return [] if right is None else [right]
        return [True] if right is True else []

    def _eval_type_op(self, node: TypeOp, scope: Scope) -> list[Any]:
        items = self.eval(node.operand, scope)
        if not items:
            return []
        if len(items) > 1:
            raise EvaluationError(f"'{node.op}' expects a single item, got {len(items)}")
        matched = matches_type(items[0], node.type_spec)
        if node.op == "is":
            return [matched]
        return [items[0]] if matched else []


def evaluate_expression(
    compiled: CompiledExpression, context: EvaluationContext
) -> list[Any]:
    """Evaluate a compiled expression in a context."""
    return Interpreter(context).evaluate(compiled)


def predicate_result(result: list[Any]) -> bool | None:
    """Reduce an invariant result: None (empty) passes, False fails.

    A single boolean is taken as is; any other non-empty result counts as
    true.
    """
    if not result:
        return None
    if len(result) == 1:
        value = unwrap(result[0])
        if isinstance(value, bool):
            return value
    return True
