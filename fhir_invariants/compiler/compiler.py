"""
Expression compiler for invariant rules.

Compiles expression text into a ``CompiledExpression``: the IR tree plus the
primitive kinds and expression features it uses. Compilation is pure, so
results are memoized by text.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import fields
from functools import lru_cache

from fhir_invariants.core.errors import CompileError
from fhir_invariants.core.ontology.types import PrimitiveKind
from .ir import (
    Call,
    CompiledExpression,
    Constant,
    ExpressionFeature,
    Index,
    Member,
    Node,
    TypeOp,
    Variable,
)
from .parser import parse_expression


class ExpressionCompiler:
    """Compiles expression text to IR."""

    def compile(self, text: str) -> CompiledExpression:
        """Compile an expression.

        Args:
            text: The expression source.

        Returns:
            The compiled expression.

        Raises:
            CompileError: If the text is not a valid expression.
        """
        if not text or not text.strip():
            raise CompileError(text or "", "Empty expression")

        root = parse_expression(text)
        type_kinds: set[PrimitiveKind] = set()
        features: set[ExpressionFeature] = set()
        self._collect(root, type_kinds, features)

        return CompiledExpression(
            text=text,
            root=root,
            type_kinds=frozenset(type_kinds),
            features=frozenset(features),
        )

    def _collect(
        self,
        node: Node,
        type_kinds: set[PrimitiveKind],
        features: set[ExpressionFeature],
    ) -> None:
        """Walk the IR once, recording type kinds and features."""
        if isinstance(node, Variable) and node.name == "parent":
            features.add(ExpressionFeature.PARENT_REFERENCE)
        elif isinstance(node, Constant):
            features.add(ExpressionFeature.ENVIRONMENT_VARIABLE)
        elif isinstance(node, Call) and node.name == "descendants":
            features.add(ExpressionFeature.DESCENDANTS)
        elif isinstance(node, Index) and isinstance(node.index, Member):
            # value[x] left over from an element path
            if node.index.source is None and node.index.name == "x":
                features.add(ExpressionFeature.CHOICE_MARKER)

        type_spec = None
        if isinstance(node, TypeOp):
            type_spec = node.type_spec
        elif isinstance(node, Call):
            type_spec = node.type_arg
        if type_spec is not None and type_spec.kind is not None:
            type_kinds.add(type_spec.kind)

        for child in _child_nodes(node):
            self._collect(child, type_kinds, features)


def _child_nodes(node: Node) -> Iterable[Node]:
    for item in fields(node):
        value = getattr(node, item.name)
        if isinstance(value, Node):
            yield value
        elif isinstance(value, tuple):
            yield from (v for v in value if isinstance(v, Node))


@lru_cache(maxsize=4096)
def compile_expression(text: str) -> CompiledExpression:
    """Compile (and memoize) a single expression."""
    return ExpressionCompiler().compile(text)


def compile_expressions(
    texts: Iterable[str],
) -> dict[str, CompiledExpression | CompileError]:
    """Compile many expressions, keeping failures instead of raising."""
    results: dict[str, CompiledExpression | CompileError] = {}
    for text in texts:
        try:
            results[text] = compile_expression(text)
        except CompileError as e:
            results[text] = e
    return results
