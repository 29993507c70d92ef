"""Parser for the rule-expression language."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from .ast import Binding, Call, Cond, Expr, Infix, Name, Number, Prefix, Vector
from .lexer import LexError, Token, parse_number_text, tokenize

_PARSE_CACHE_MAX = max(1, int(os.environ.get("DIFFRULES_JAX_PARSE_CACHE_MAX", "512")))

_PREFIX_OPS = {"-", "+", "!"}
_PREFIX_BP = 9

# (left, right) binding powers; right-associative operators bind looser on the right.
_INFIX_BP = {
    "==": (3, 4),
    "!=": (3, 4),
    "<": (3, 4),
    "<=": (3, 4),
    ">": (3, 4),
    ">=": (3, 4),
    "+": (5, 6),
    "-": (5, 6),
    "*": (7, 8),
    "/": (7, 8),
    "^": (11, 10),
}
_TERNARY_BP = 1


class ParseError(SyntaxError):
    def __init__(
        self,
        message: str,
        start: int,
        end: int,
        expected: tuple[str, ...] = (),
        found: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.start = start
        self.end = end
        self.expected = expected
        self.found = found

    def __str__(self) -> str:
        expected_text = ""
        if self.expected:
            expected_text = f"; expected {', '.join(self.expected)}"
        found_text = ""
        if self.found is not None:
            found_text = f"; found {self.found}"
        return f"{self.message} at span [{self.start}, {self.end}){expected_text}{found_text}"


@dataclass
class _Parser:
    tokens: list[Token]
    index: int = 0

    def parse_expression_only(self) -> Expr:
        self._consume_separators()
        expr = self._parse_expression(0)
        self._consume_separators()
        self._expect("EOF")
        return expr

    def parse_bindings(self) -> tuple[Binding, ...]:
        bindings: list[Binding] = []
        self._consume_separators()
        while self._peek().kind != "EOF":
            bindings.append(self._parse_binding())
            if self._peek().kind not in {"SEP", "EOF"}:
                self._error(expected=("SEP", "EOF"))
            self._consume_separators()
        return tuple(bindings)

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _peek_next(self) -> Token:
        return self.tokens[min(self.index + 1, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        tok = self.tokens[self.index]
        self.index += 1
        return tok

    def _expect(self, kind: str) -> Token:
        tok = self._peek()
        if tok.kind != kind:
            self._error(tok, expected=(kind,))
        return self._advance()

    def _error(self, tok: Token | None = None, *, message: str | None = None, expected: tuple[str, ...] = ()) -> None:
        token = tok if tok is not None else self._peek()
        detail = message if message is not None else "Unexpected token"
        normalized_expected = tuple(dict.fromkeys(expected))
        if token.kind == "EOF":
            found = "EOF"
        elif token.text:
            found = f"{token.kind}({token.text})"
        else:
            found = token.kind
        raise ParseError(detail, token.pos, token.end, expected=normalized_expected, found=found)

    def _match(self, kind: str) -> bool:
        if self._peek().kind == kind:
            self._advance()
            return True
        return False

    def _consume_separators(self) -> None:
        while self._peek().kind == "SEP":
            self._advance()

    def _parse_binding(self) -> Binding:
        tok = self._peek()
        if tok.kind == "NAME":
            self._advance()
            targets: tuple[str, ...] = (tok.text,)
        elif self._match("LPAREN"):
            names = [self._expect("NAME").text]
            while self._match("COMMA"):
                names.append(self._expect("NAME").text)
            self._expect("RPAREN")
            targets = tuple(names)
        else:
            self._error(tok, message="Invalid binding target", expected=("NAME", "LPAREN"))
            raise AssertionError("unreachable")

        if len(set(targets)) != len(targets):
            self._error(tok, message="Duplicate name in binding target")
        self._expect("ASSIGN")
        value = self._parse_expression(0)
        return Binding(targets=targets, value=value)

    def _parse_expression(self, min_bp: int) -> Expr:
        left = self._parse_prefix()

        while True:
            tok = self._peek()

            if tok.kind == "QMARK":
                if _TERNARY_BP < min_bp:
                    break
                self._advance()
                then = self._parse_expression(0)
                self._expect("COLON")
                otherwise = self._parse_expression(_TERNARY_BP)
                left = Cond(test=left, then=then, otherwise=otherwise)
                continue

            if tok.kind != "OP" or tok.text not in _INFIX_BP:
                break

            lbp, rbp = _INFIX_BP[tok.text]
            if lbp < min_bp:
                break
            self._advance()
            right = self._parse_expression(rbp)
            left = Infix(op=tok.text, left=left, right=right)

        return left

    def _parse_prefix(self) -> Expr:
        tok = self._peek()
        if tok.kind == "OP" and tok.text in _PREFIX_OPS:
            self._advance()
            right = self._parse_expression(_PREFIX_BP)
            return Prefix(op=tok.text, right=right)
        return self._parse_atom()

    def _parse_atom(self) -> Expr:
        tok = self._peek()

        if tok.kind == "NUMBER":
            self._advance()
            return Number(value=parse_number_text(tok.text))

        if tok.kind == "NAME":
            self._advance()
            if self._peek().kind == "LPAREN":
                self._advance()
                args = self._parse_comma_list()
                return Call(func=tok.text, args=args)
            return Name(value=tok.text)

        if self._match("LPAREN"):
            items = self._parse_comma_list()
            if len(items) == 1 and self.tokens[self.index - 2].kind != "COMMA":
                return items[0]
            return Vector(items=items)

        self._error(tok, expected=("NUMBER", "NAME", "LPAREN"))
        raise AssertionError("unreachable")

    def _parse_comma_list(self) -> tuple[Expr, ...]:
        """Parse `a, b, ...)` after an opening parenthesis."""
        items: list[Expr] = []
        if self._match("RPAREN"):
            return tuple(items)
        while True:
            items.append(self._parse_expression(0))
            if self._match("RPAREN"):
                return tuple(items)
            self._expect("COMMA")
            if self._match("RPAREN"):
                # Trailing comma: `(a,)` is a one-element tuple.
                return tuple(items)


def _tokenize(source: str) -> list[Token]:
    try:
        return tokenize(source)
    except LexError as err:
        raise ParseError(err.message, err.pos, err.pos + 1) from err


@lru_cache(maxsize=_PARSE_CACHE_MAX)
def parse(source: str) -> Expr:
    parser = _Parser(tokens=_tokenize(source))
    return parser.parse_expression_only()


@lru_cache(maxsize=_PARSE_CACHE_MAX)
def parse_bindings(source: str) -> tuple[Binding, ...]:
    parser = _Parser(tokens=_tokenize(source))
    return parser.parse_bindings()
