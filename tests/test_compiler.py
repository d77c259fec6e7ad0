"""
Tests for the compiler layer.

Tests tokenizing, parsing to IR, compile errors, and expression analysis.
"""

import pytest
from decimal import Decimal

from fhir_invariants.compiler import (
    FUNCTION_SIGNATURES,
    CompiledExpression,
    ExpressionFeature,
    compile_expression,
    compile_expressions,
)
from fhir_invariants.compiler.ir import (
    Binary,
    Call,
    Constant,
    EmptyCollection,
    Index,
    Literal,
    Member,
    TypeOp,
    TypeSpecifier,
    Variable,
)
from fhir_invariants.compiler.lexer import tokenize
from fhir_invariants.core.errors import CompileError
from fhir_invariants.core.ontology import PrimitiveKind
from fhir_invariants.runtime.functions import FUNCTIONS


class TestTokenizer:
    """Test expression tokenizing."""

    def test_path_and_call(self):
        tokens = tokenize("name.exists()")
        assert [t.kind for t in tokens] == ["IDENT", ".", "IDENT", "(", ")"]
        assert [t.value for t in tokens][:3] == ["name", ".", "exists"]

    def test_two_char_operators(self):
        tokens = tokenize("a <= b != c !~ d >= e")
        assert [t.value for t in tokens if t.kind == "OP"] == ["<=", "!=", "!~", ">="]

    def test_number_does_not_swallow_invocation(self):
        """1.exists() is an integer followed by an invocation."""
        tokens = tokenize("1.exists()")
        assert tokens[0].kind == "NUMBER"
        assert tokens[0].value == "1"
        assert tokens[1].kind == "."

    def test_decimal_number(self):
        tokens = tokenize("1.50")
        assert len(tokens) == 1
        assert tokens[0].value == "1.50"

    def test_string_escapes(self):
        tokens = tokenize(r"'it\'s\n'")
        assert tokens[0].kind == "STRING"
        assert tokens[0].value == "it's\n"

    def test_unknown_escape_keeps_backslash(self):
        tokens = tokenize(r"'\d{5}'")
        assert tokens[0].value == r"\d{5}"

    def test_unicode_escape(self):
        assert tokenize(r"'\u00e9'")[0].value == "\u00e9"

    def test_variables_and_constants(self):
        tokens = tokenize("$this = %ucum and %`vs-name` = %'x'")
        kinds = [(t.kind, t.value) for t in tokens]
        assert ("VARIABLE", "this") in kinds
        assert ("CONSTANT", "ucum") in kinds
        assert ("CONSTANT", "vs-name") in kinds
        assert ("CONSTANT", "x") in kinds

    def test_comments_are_skipped(self):
        tokens = tokenize("a /* block */ and // line\n b")
        assert [t.value for t in tokens] == ["a", "and", "b"]

    def test_positions(self):
        tokens = tokenize("ab.cd")
        assert [t.position for t in tokens] == [0, 2, 3]

    def test_unterminated_string(self):
        with pytest.raises(CompileError):
            tokenize("'open")

    def test_unexpected_character(self):
        with pytest.raises(CompileError) as exc:
            tokenize("a # b")
        assert exc.value.position == 2


class TestParser:
    """Test IR produced by the parser."""

    def test_simple_path_call(self):
        compiled = compile_expression("name.exists()")
        assert compiled.root == Call(Member(None, "name"), "exists")

    def test_literals(self):
        assert compile_expression("1.50").root == Literal(Decimal("1.50"), PrimitiveKind.DECIMAL)
        assert compile_expression("42").root == Literal(42, PrimitiveKind.INTEGER)
        assert compile_expression("'x'").root == Literal("x", PrimitiveKind.STRING)
        assert compile_expression("true").root == Literal(True, PrimitiveKind.BOOLEAN)
        assert compile_expression("{}").root == EmptyCollection()

    def test_integer_invocation(self):
        compiled = compile_expression("1.exists()")
        assert compiled.root == Call(Literal(1, PrimitiveKind.INTEGER), "exists")

    def test_and_binds_tighter_than_or(self):
        compiled = compile_expression("a or b and c")
        assert compiled.root == Binary(
            "or",
            Member(None, "a"),
            Binary("and", Member(None, "b"), Member(None, "c")),
        )

    def test_implies_is_loosest(self):
        compiled = compile_expression("a.exists() implies b or c")
        assert compiled.root.op == "implies"
        assert compiled.root.right.op == "or"

    def test_comparison_binds_tighter_than_equality(self):
        compiled = compile_expression("a < b = true")
        assert compiled.root.op == "="
        assert compiled.root.left.op == "<"

    def test_multiplicative_over_additive(self):
        compiled = compile_expression("1 + 2 * 3")
        assert compiled.root.op == "+"
        assert compiled.root.right.op == "*"

    def test_div_and_mod_keywords(self):
        assert compile_expression("7 div 2").root.op == "div"
        assert compile_expression("7 mod 2").root.op == "mod"

    def test_delimited_identifier(self):
        compiled = compile_expression("text.`div`")
        assert compiled.root == Member(Member(None, "text"), "div")

    def test_indexer(self):
        compiled = compile_expression("name[0]")
        assert compiled.root == Index(Member(None, "name"), Literal(0, PrimitiveKind.INTEGER))

    def test_variables_and_constants(self):
        assert compile_expression("$this").root == Variable("this")
        assert compile_expression("%resource").root == Constant("resource")

    def test_is_operator(self):
        compiled = compile_expression("value is String")
        assert compiled.root == TypeOp(
            "is", Member(None, "value"), TypeSpecifier("String", PrimitiveKind.STRING)
        )

    def test_namespaced_type_specifier(self):
        compiled = compile_expression("value.is(System.Decimal)")
        assert compiled.root.type_arg == TypeSpecifier("System.Decimal", PrimitiveKind.DECIMAL)

    def test_complex_type_specifier(self):
        compiled = compile_expression("value.ofType(Quantity)")
        assert compiled.root.type_arg.kind is None

    def test_function_arguments(self):
        compiled = compile_expression("iif(a, 'y', 'n')")
        assert compiled.root.name == "iif"
        assert len(compiled.root.args) == 3


class TestCompileErrors:
    """Malformed expressions raise CompileError carrying the text."""

    @pytest.mark.parametrize("text", [
        "name.exists(",
        "name.exists() and",
        "foo()",
        "count(1)",
        "all()",
        "b.(",
        "(a or b",
        "$unknown",
        "a b",
        "",
        "   ",
    ])
    def test_rejected(self, text):
        with pytest.raises(CompileError):
            compile_expression(text)

    def test_error_carries_text(self):
        with pytest.raises(CompileError) as exc:
            compile_expression("frobnicate()")
        assert exc.value.text == "frobnicate()"
        assert "frobnicate" in exc.value.reason

    def test_compile_many_keeps_failures(self):
        results = compile_expressions(["a.exists()", "b.("])
        assert isinstance(results["a.exists()"], CompiledExpression)
        assert isinstance(results["b.("], CompileError)


class TestAnalysis:
    """Features and type kinds recorded at compile time."""

    def test_type_kinds(self):
        compiled = compile_expression("(value is String) or value.is(Integer)")
        assert compiled.type_kinds == frozenset({PrimitiveKind.STRING, PrimitiveKind.INTEGER})

    def test_no_kinds_for_complex_types(self):
        assert compile_expression("value.ofType(Quantity)").type_kinds == frozenset()

    @pytest.mark.parametrize("text,feature", [
        ("$parent.exists()", ExpressionFeature.PARENT_REFERENCE),
        ("descendants().count() > 0", ExpressionFeature.DESCENDANTS),
        ("%resource.id.exists()", ExpressionFeature.ENVIRONMENT_VARIABLE),
        ("value[x].exists()", ExpressionFeature.CHOICE_MARKER),
    ])
    def test_features(self, text, feature):
        assert feature in compile_expression(text).features

    def test_plain_expression_has_no_features(self):
        assert compile_expression("name.exists()").features == frozenset()

    def test_memoized(self):
        assert compile_expression("a.exists()") is compile_expression("a.exists()")

    def test_every_signature_has_implementation(self):
        assert set(FUNCTION_SIGNATURES) == set(FUNCTIONS)
