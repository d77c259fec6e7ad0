"""
Intermediate Representation (IR) for compiled invariant expressions.

The parser produces an immutable tree of these nodes. The tree is evaluated
by ``fhir_invariants.runtime.interpreter``; it carries no evaluation state so
one compiled expression can be shared by any number of evaluation runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fhir_invariants.core.ontology.types import PrimitiveKind


class ExpressionFeature(str, Enum):
    """Expression features worth reviewing when a rule misbehaves."""

    PARENT_REFERENCE = "parent_reference"
    DESCENDANTS = "descendants"
    ENVIRONMENT_VARIABLE = "environment_variable"
    CHOICE_MARKER = "choice_marker"


@dataclass(frozen=True)
class Node:
    """Base class for IR nodes."""


@dataclass(frozen=True)
class Literal(Node):
    value: Any
    kind: PrimitiveKind


@dataclass(frozen=True)
class EmptyCollection(Node):
    pass


@dataclass(frozen=True)
class Variable(Node):
    """``$this``, ``$parent`` or ``$index``."""

    name: str


@dataclass(frozen=True)
class Constant(Node):
    """An environment variable such as ``%resource`` or ``%ucum``."""

    name: str


@dataclass(frozen=True)
class Member(Node):
    """Navigate to child elements called ``name``.

    ``source`` is None for the first segment of a path, which navigates from
    the current focus.
    """

    source: Node | None
    name: str


@dataclass(frozen=True)
class TypeSpecifier:
    name: str
    kind: PrimitiveKind | None = None
    """Resolved at compile time; None for complex (non-primitive) types."""


@dataclass(frozen=True)
class Call(Node):
    source: Node | None
    name: str
    args: tuple[Node, ...] = ()
    type_arg: TypeSpecifier | None = None


@dataclass(frozen=True)
class Index(Node):
    source: Node
    index: Node


@dataclass(frozen=True)
class Unary(Node):
    op: str
    operand: Node


@dataclass(frozen=True)
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class TypeOp(Node):
    """``operand is T`` / ``operand as T``."""

    op: str
    operand: Node
    type_spec: TypeSpecifier


@dataclass(frozen=True)
class FunctionSignature:
    min_args: int
    max_args: int
    type_arg: bool = False
    """The single argument is a type specifier, not an expression."""


FUNCTION_SIGNATURES: dict[str, FunctionSignature] = {
    "exists": FunctionSignature(0, 1),
    "empty": FunctionSignature(0, 0),
    "all": FunctionSignature(1, 1),
    "where": FunctionSignature(1, 1),
    "select": FunctionSignature(1, 1),
    "count": FunctionSignature(0, 0),
    "not": FunctionSignature(0, 0),
    "first": FunctionSignature(0, 0),
    "last": FunctionSignature(0, 0),
    "tail": FunctionSignature(0, 0),
    "hasValue": FunctionSignature(0, 0),
    "matches": FunctionSignature(1, 1),
    "startsWith": FunctionSignature(1, 1),
    "endsWith": FunctionSignature(1, 1),
    "contains": FunctionSignature(1, 1),
    "length": FunctionSignature(0, 0),
    "lower": FunctionSignature(0, 0),
    "upper": FunctionSignature(0, 0),
    "distinct": FunctionSignature(0, 0),
    "isDistinct": FunctionSignature(0, 0),
    "iif": FunctionSignature(2, 3),
    "children": FunctionSignature(0, 0),
    "descendants": FunctionSignature(0, 0),
    "allTrue": FunctionSignature(0, 0),
    "anyTrue": FunctionSignature(0, 0),
    "extension": FunctionSignature(1, 1),
    "is": FunctionSignature(1, 1, type_arg=True),
    "as": FunctionSignature(1, 1, type_arg=True),
    "ofType": FunctionSignature(1, 1, type_arg=True),
}


@dataclass(frozen=True)
class CompiledExpression:
    """A parsed expression plus what the compiler learned about it."""

    text: str
    root: Node
    type_kinds: frozenset[PrimitiveKind] = field(default_factory=frozenset)
    """Primitive kinds named by type specifiers in the expression."""
    features: frozenset[ExpressionFeature] = field(default_factory=frozenset)
