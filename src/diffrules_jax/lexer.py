"""Tokenization for the rule-expression language."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int
    end: int


class LexError(SyntaxError):
    def __init__(self, message: str, pos: int) -> None:
        super().__init__(message)
        self.message = message
        self.pos = pos


_SINGLE_TOKENS = {
    "(": "LPAREN",
    ")": "RPAREN",
    ",": "COMMA",
    "?": "QMARK",
    ":": "COLON",
}

_OPERATORS_TWO = {"==", "!=", "<=", ">="}
_OPERATORS_ONE = set("+-*/^!<>")

_NUMBER_RE = re.compile(
    r"""
    (?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)   # mantissa
    (?:[eE][+\-]?[0-9]+)?              # exponent
    """,
    re.VERBOSE,
)


def _is_ident_start(ch: str) -> bool:
    return ch == "_" or ch.isalpha()


def _is_ident_continue(ch: str) -> bool:
    return ch == "_" or ch.isalnum()


def parse_number_text(text: str) -> int | float:
    if all(ch.isdigit() for ch in text):
        return int(text)
    return float(text)


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0

    while i < len(source):
        ch = source[i]

        if ch in {" ", "\t", "\f", "\v"}:
            i += 1
            continue

        if ch == "#":
            while i < len(source) and source[i] not in {"\n", "\r"}:
                i += 1
            continue

        if ch in {"\n", "\r", ";"}:
            start = i
            while i < len(source) and source[i] in {"\n", "\r", ";", " ", "\t"}:
                i += 1
            tokens.append(Token("SEP", ";", start, i))
            continue

        two = source[i : i + 2]
        if two in _OPERATORS_TWO:
            tokens.append(Token("OP", two, i, i + 2))
            i += 2
            continue

        if ch == "=":
            tokens.append(Token("ASSIGN", ch, i, i + 1))
            i += 1
            continue

        if ch in _OPERATORS_ONE:
            tokens.append(Token("OP", ch, i, i + 1))
            i += 1
            continue

        if ch in _SINGLE_TOKENS:
            tokens.append(Token(_SINGLE_TOKENS[ch], ch, i, i + 1))
            i += 1
            continue

        if ch.isdigit() or (ch == "." and i + 1 < len(source) and source[i + 1].isdigit()):
            m = _NUMBER_RE.match(source, i)
            if m is None:
                raise LexError(f"Invalid numeric literal at index {i}", i)
            tokens.append(Token("NUMBER", m.group(0), i, m.end()))
            i = m.end()
            if i < len(source) and _is_ident_start(source[i]):
                raise LexError(f"Implicit multiplication is not supported at index {i}", i)
            continue

        if _is_ident_start(ch):
            start = i
            i += 1
            while i < len(source) and _is_ident_continue(source[i]):
                i += 1
            tokens.append(Token("NAME", source[start:i], start, i))
            continue

        raise LexError(f"Unexpected character {ch!r} at index {i}", i)

    tokens.append(Token("EOF", "", len(source), len(source)))
    return tokens
