"""AST nodes for the rule-expression language."""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Number as Numeric
from typing import Union


@dataclass(frozen=True)
class Number:
    value: Numeric


@dataclass(frozen=True)
class Name:
    value: str


@dataclass(frozen=True)
class Vector:
    items: tuple["Expr", ...]


@dataclass(frozen=True)
class Prefix:
    op: str
    right: "Expr"


@dataclass(frozen=True)
class Infix:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Call:
    func: str
    args: tuple["Expr", ...]


@dataclass(frozen=True)
class Cond:
    """Two-way branch; only the selected side is evaluated for a concrete test."""

    test: "Expr"
    then: "Expr"
    otherwise: "Expr"


@dataclass(frozen=True)
class Binding:
    targets: tuple[str, ...]
    value: "Expr"


Expr = Union[Number, Name, Vector, Prefix, Infix, Call, Cond]
