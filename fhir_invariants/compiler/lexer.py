"""Tokenizer for invariant expressions."""

from __future__ import annotations

from dataclasses import dataclass

from fhir_invariants.core.errors import CompileError


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    position: int


_TWO_CHAR_OPS = {"<=", ">=", "!=", "!~"}
_SINGLE = {"(", ")", "[", "]", "{", "}", ",", ".", "|", "&", "+", "-", "*", "/",
           "<", ">", "=", "~"}
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "f": "\f", "'": "'", '"': '"',
            "`": "`", "/": "/", "\\": "\\"}


class Tokenizer:
    """Split an expression into tokens.

    Token kinds: NUMBER, STRING, IDENT, DELIMITED (backtick identifier),
    VARIABLE (``$name``), CONSTANT (``%name``), OP, and the punctuation
    characters themselves.
    """

    def __init__(self, text: str):
        self.text = text
        self.length = len(text)
        self.pos = 0

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        while self.pos < self.length:
            ch = self.text[self.pos]
            if ch.isspace():
                self.pos += 1
                continue
            if self.text.startswith("//", self.pos):
                self._skip_line_comment()
                continue
            if self.text.startswith("/*", self.pos):
                self._skip_block_comment()
                continue
            start = self.pos
            if ch == "'":
                tokens.append(Token("STRING", self._read_quoted("'"), start))
                continue
            if ch == "`":
                tokens.append(Token("DELIMITED", self._read_quoted("`"), start))
                continue
            if ch.isalpha() or ch == "_":
                tokens.append(Token("IDENT", self._read_identifier(), start))
                continue
            if ch.isdigit():
                tokens.append(Token("NUMBER", self._read_number(), start))
                continue
            if ch == "$":
                self.pos += 1
                tokens.append(Token("VARIABLE", self._read_identifier(), start))
                continue
            if ch == "%":
                tokens.append(Token("CONSTANT", self._read_constant(), start))
                continue
            two = self.text[self.pos:self.pos + 2]
            if two in _TWO_CHAR_OPS:
                tokens.append(Token("OP", two, start))
                self.pos += 2
                continue
            if ch in _SINGLE:
                tokens.append(Token(ch, ch, start))
                self.pos += 1
                continue
            raise CompileError(self.text, f"Unexpected character '{ch}'", start)
        return tokens

    def _read_quoted(self, quote: str) -> str:
        start = self.pos
        self.pos += 1
        result: list[str] = []
        while self.pos < self.length:
            ch = self.text[self.pos]
            if ch == "\\":
                self.pos += 1
                if self.pos >= self.length:
                    break
                esc = self.text[self.pos]
                if esc == "u":
                    code = self.text[self.pos + 1:self.pos + 5]
                    if len(code) != 4:
                        raise CompileError(self.text, "Invalid unicode escape", self.pos)
                    try:
                        result.append(chr(int(code, 16)))
                    except ValueError:
                        raise CompileError(self.text, "Invalid unicode escape", self.pos) from None
                    self.pos += 5
                    continue
                # Unknown escapes keep their backslash so regex classes survive
                result.append(_ESCAPES.get(esc, "\\" + esc))
                self.pos += 1
                continue
            if ch == quote:
                self.pos += 1
                return "".join(result)
            result.append(ch)
            self.pos += 1
        raise CompileError(self.text, "Unterminated quoted literal", start)

    def _read_identifier(self) -> str:
        start = self.pos
        while self.pos < self.length:
            ch = self.text[self.pos]
            if ch.isalnum() or ch == "_":
                self.pos += 1
                continue
            break
        if self.pos == start:
            raise CompileError(self.text, "Expected identifier", start)
        return self.text[start:self.pos]

    def _read_number(self) -> str:
        start = self.pos
        while self.pos < self.length and self.text[self.pos].isdigit():
            self.pos += 1
        # A '.' only belongs to the number when a digit follows (1.5 vs 1.exists())
        if (
            self.pos + 1 < self.length
            and self.text[self.pos] == "."
            and self.text[self.pos + 1].isdigit()
        ):
            self.pos += 1
            while self.pos < self.length and self.text[self.pos].isdigit():
                self.pos += 1
        return self.text[start:self.pos]

    def _read_constant(self) -> str:
        self.pos += 1
        if self.pos < self.length and self.text[self.pos] in "'`":
            return self._read_quoted(self.text[self.pos])
        return self._read_identifier()

    def _skip_line_comment(self) -> None:
        end = self.text.find("\n", self.pos)
        self.pos = self.length if end == -1 else end + 1

    def _skip_block_comment(self) -> None:
        end = self.text.find("*/", self.pos + 2)
        if end == -1:
            raise CompileError(self.text, "Unterminated comment", self.pos)
        self.pos = end + 2


def tokenize(text: str) -> list[Token]:
    """Tokenize an expression string."""
    return Tokenizer(text).tokenize()
