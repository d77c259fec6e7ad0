"""
Expression compiler package.

Provides compile-time transformation of invariant expressions into an
immutable Intermediate Representation evaluated by the runtime.
"""

from fhir_invariants.compiler.ir import (
    CompiledExpression,
    ExpressionFeature,
    FUNCTION_SIGNATURES,
    TypeSpecifier,
)
from fhir_invariants.compiler.compiler import (
    ExpressionCompiler,
    compile_expression,
    compile_expressions,
)
from fhir_invariants.compiler.parser import parse_expression

__all__ = [
    # IR Types
    "CompiledExpression",
    "ExpressionFeature",
    "FUNCTION_SIGNATURES",
    "TypeSpecifier",
    # Compiler
    "ExpressionCompiler",
    "compile_expression",
    "compile_expressions",
    "parse_expression",
]
