"""Recursive-descent parser producing the expression IR.

Operator precedence, loosest first::

    implies
    or xor
    and
    in contains
    = ~ != !~
    < > <= >=
    |
    is as
    + - &
    * / div mod
    unary + -
    . [] (invocation, indexer)
"""

from __future__ import annotations

from decimal import Decimal

from fhir_invariants.core.errors import CompileError
from fhir_invariants.core.ontology.types import PrimitiveKind, kind_of_type_name
from .ir import (
    FUNCTION_SIGNATURES,
    Binary,
    Call,
    Constant,
    EmptyCollection,
    Index,
    Literal,
    Member,
    Node,
    TypeOp,
    TypeSpecifier,
    Unary,
    Variable,
)
from .lexer import Token, tokenize


KNOWN_VARIABLES = {"this", "parent", "index"}


class Parser:
    def __init__(self, text: str, tokens: list[Token]):
        self.text = text
        self.tokens = tokens
        self.pos = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise CompileError(self.text, "Empty expression")
        expr = self._parse_implies()
        if not self._at_end():
            token = self.tokens[self.pos]
            raise CompileError(
                self.text, f"Unexpected trailing token '{token.value}'", token.position
            )
        return expr

    # ------------------------------------------------------------------
    # Binary operator levels
    # ------------------------------------------------------------------
    def _parse_implies(self) -> Node:
        node = self._parse_or()
        while self._match_keyword({"implies"}):
            node = Binary("implies", node, self._parse_or())
        return node

    def _parse_or(self) -> Node:
        node = self._parse_and()
        while self._match_keyword({"or", "xor"}):
            op = self._previous().value
            node = Binary(op, node, self._parse_and())
        return node

    def _parse_and(self) -> Node:
        node = self._parse_membership()
        while self._match_keyword({"and"}):
            node = Binary("and", node, self._parse_membership())
        return node

    def _parse_membership(self) -> Node:
        node = self._parse_equality()
        while self._match_keyword({"in", "contains"}):
            op = self._previous().value
            node = Binary(op, node, self._parse_equality())
        return node

    def _parse_equality(self) -> Node:
        node = self._parse_inequality()
        while self._match_op({"=", "~", "!=", "!~"}):
            op = self._previous().value
            node = Binary(op, node, self._parse_inequality())
        return node

    def _parse_inequality(self) -> Node:
        node = self._parse_union()
        while self._match_op({"<", ">", "<=", ">="}):
            op = self._previous().value
            node = Binary(op, node, self._parse_union())
        return node

    def _parse_union(self) -> Node:
        node = self._parse_type_expression()
        while self._match_op({"|"}):
            node = Binary("|", node, self._parse_type_expression())
        return node

    def _parse_type_expression(self) -> Node:
        node = self._parse_additive()
        while self._match_keyword({"is", "as"}):
            op = self._previous().value
            node = TypeOp(op, node, self._parse_type_specifier())
        return node

    def _parse_additive(self) -> Node:
        node = self._parse_multiplicative()
        while self._match_op({"+", "-", "&"}):
            op = self._previous().value
            node = Binary(op, node, self._parse_multiplicative())
        return node

    def _parse_multiplicative(self) -> Node:
        node = self._parse_unary()
        while self._match_op({"*", "/"}) or self._match_keyword({"div", "mod"}):
            op = self._previous().value
            node = Binary(op, node, self._parse_unary())
        return node

    def _parse_unary(self) -> Node:
        if self._match_op({"+", "-"}):
            op = self._previous().value
            return Unary(op, self._parse_unary())
        return self._parse_postfix()

    # ------------------------------------------------------------------
    # Terms and invocations
    # ------------------------------------------------------------------
    def _parse_postfix(self) -> Node:
        node = self._parse_term()
        while True:
            if self._match({"."}):
                node = self._parse_invocation(node)
            elif self._match({"["}):
                index = self._parse_implies()
                self._consume("]", "Expected ']' to close indexer")
                node = Index(node, index)
            else:
                return node

    def _parse_term(self) -> Node:
        token = self._peek()
        if token is None:
            raise CompileError(self.text, "Unexpected end of expression")
        if self._match({"("}):
            expr = self._parse_implies()
            self._consume(")", "Expected ')' to close expression")
            return expr
        if self._match({"{"}):
            self._consume("}", "Expected '}' to close empty collection")
            return EmptyCollection()
        if self._match({"NUMBER"}):
            text = token.value
            if "." in text:
                return Literal(Decimal(text), PrimitiveKind.DECIMAL)
            return Literal(int(text), PrimitiveKind.INTEGER)
        if self._match({"STRING"}):
            return Literal(token.value, PrimitiveKind.STRING)
        if self._match({"VARIABLE"}):
            if token.value not in KNOWN_VARIABLES:
                raise CompileError(
                    self.text, f"Unknown variable '${token.value}'", token.position
                )
            return Variable(token.value)
        if self._match({"CONSTANT"}):
            return Constant(token.value)
        if token.kind == "IDENT" and token.value in ("true", "false"):
            self.pos += 1
            return Literal(token.value == "true", PrimitiveKind.BOOLEAN)
        return self._parse_invocation(None)

    def _parse_invocation(self, source: Node | None) -> Node:
        token = self._peek()
        if token is None or token.kind not in ("IDENT", "DELIMITED"):
            position = token.position if token else None
            raise CompileError(self.text, "Expected identifier or function", position)
        self.pos += 1
        name = token.value
        if token.kind == "IDENT" and self._match({"("}):
            return self._parse_call(source, name, token)
        return Member(source, name)

    def _parse_call(self, source: Node | None, name: str, token: Token) -> Node:
        signature = FUNCTION_SIGNATURES.get(name)
        if signature is None:
            raise CompileError(self.text, f"Unknown function '{name}'", token.position)

        if signature.type_arg:
            type_spec = self._parse_type_specifier()
            self._consume(")", f"Expected ')' to close {name}()")
            return Call(source, name, (), type_spec)

        args: list[Node] = []
        if not self._check(")"):
            while True:
                args.append(self._parse_implies())
                if not self._match({","}):
                    break
        self._consume(")", f"Expected ')' to close {name}()")
        if not signature.min_args <= len(args) <= signature.max_args:
            raise CompileError(
                self.text,
                f"Function '{name}' takes {signature.min_args}..{signature.max_args} "
                f"arguments, got {len(args)}",
                token.position,
            )
        return Call(source, name, tuple(args))

    def _parse_type_specifier(self) -> TypeSpecifier:
        token = self._peek()
        if token is None or token.kind not in ("IDENT", "DELIMITED"):
            raise CompileError(self.text, "Expected type name", token.position if token else None)
        self.pos += 1
        name = token.value
        following = self._peek(1)
        if self._check(".") and following is not None and following.kind in ("IDENT", "DELIMITED"):
            self.pos += 1
            name = f"{name}.{self._advance().value}"
        return TypeSpecifier(name=name, kind=kind_of_type_name(name))

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------
    def _match(self, kinds: set[str]) -> bool:
        if self._at_end():
            return False
        if self.tokens[self.pos].kind in kinds:
            self.pos += 1
            return True
        return False

    def _match_op(self, ops: set[str]) -> bool:
        if self._at_end():
            return False
        token = self.tokens[self.pos]
        # Single-character operators are their own token kind
        if token.value in ops and token.kind in ("OP", token.value):
            self.pos += 1
            return True
        return False

    def _match_keyword(self, words: set[str]) -> bool:
        if self._at_end():
            return False
        token = self.tokens[self.pos]
        if token.kind == "IDENT" and token.value in words:
            self.pos += 1
            return True
        return False

    def _consume(self, kind: str, message: str) -> Token:
        if self._check(kind):
            return self._advance()
        token = self._peek()
        raise CompileError(self.text, message, token.position if token else None)

    def _check(self, kind: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == kind

    def _peek(self, offset: int = 0) -> Token | None:
        index = self.pos + offset
        if index < len(self.tokens):
            return self.tokens[index]
        return None

    def _advance(self) -> Token:
        self.pos += 1
        return self.tokens[self.pos - 1]

    def _previous(self) -> Token:
        return self.tokens[self.pos - 1]

    def _at_end(self) -> bool:
        return self.pos >= len(self.tokens)


def parse_expression(text: str) -> Node:
    """Parse expression text into an IR tree."""
    return Parser(text, tokenize(text)).parse()
