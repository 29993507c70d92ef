"""Rule declarations, signatures and expanded rule bodies.

A rule is declared in one of three forms:

- `ScalarRule`: the primal call, an optional setup block and one row of
  partial derivatives per output. Forward, reverse and partials bodies are
  generated from it.
- `CustomRule`: hand-written forward/reverse/partials bodies.
- `VariadicRule`: a builder producing a `CustomRule` for a given arity.

Declarations are what the fast-math transformer rewrites and what the
consistency validator compares, so expansion always happens after rewriting.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache
import os
from typing import Union

from .ast import Binding, Call, Cond, Expr, Infix, Name, Number, Prefix, Vector
from .errors import RuleArityError, RuleParseError
from .parser import ParseError, parse, parse_bindings
from .values import Domain

OMEGA = "Ω"
COTANGENT = "ΔΩ"

_VARIADIC_CACHE_MAX = max(1, int(os.environ.get("DIFFRULES_JAX_VARIADIC_CACHE_MAX", "256")))


def tangent_name(arg: str) -> str:
    return f"Δ{arg}"


@dataclass(frozen=True)
class Signature:
    """Function identity plus per-argument domain tags.

    A variadic signature repeats its last domain for every extra argument.
    """

    name: str
    domains: tuple[Domain, ...]
    variadic: bool = False

    @property
    def min_arity(self) -> int:
        return len(self.domains)

    def domain_at(self, index: int) -> Domain:
        if index < len(self.domains):
            return self.domains[index]
        return self.domains[-1]

    def accepts(self, call: "Signature") -> bool:
        """Whether a concrete call signature is served by this entry."""
        if call.name != self.name:
            return False
        arity = len(call.domains)
        if self.variadic:
            if arity < self.min_arity:
                return False
        elif arity != self.min_arity:
            return False
        return all(self.domain_at(i).accepts(d) for i, d in enumerate(call.domains))

    def specificity(self) -> tuple[int, int]:
        generic = sum(1 for d in self.domains if d is Domain.ANY)
        return (1 if self.variadic else 0, generic)

    def __str__(self) -> str:
        parts = [d.value for d in self.domains]
        if self.variadic and parts:
            parts[-1] = f"{parts[-1]}..."
        return f"{self.name}({', '.join(parts)})"


@dataclass(frozen=True)
class ForwardBody:
    """`(tangents, args) -> (Ω, tangent)`; tangents are bound as `Δ<arg>`."""

    args: tuple[str, ...]
    setup: tuple[Binding, ...]
    primal: Expr
    tangent: Expr


@dataclass(frozen=True)
class ReverseBody:
    """`(args) -> (Ω, pullback)`; the pullback sees the cotangent as `ΔΩ`."""

    args: tuple[str, ...]
    setup: tuple[Binding, ...]
    primal: Expr
    pullback: tuple[Expr, ...]


@dataclass(frozen=True)
class PartialsBody:
    """`(Ω, args) -> rows of partials`, one row per output."""

    args: tuple[str, ...]
    setup: tuple[Binding, ...]
    partials: tuple[tuple[Expr, ...], ...]


@dataclass(frozen=True)
class CustomRule:
    forward: ForwardBody | None = None
    reverse: ReverseBody | None = None
    partials: PartialsBody | None = None
    source: str = field(default="", compare=False)

    def expand(self, arity: int | None = None) -> "CustomRule":
        return self


@dataclass(frozen=True)
class ScalarRule:
    call: Expr
    setup: tuple[Binding, ...]
    partials: tuple[tuple[Expr, ...], ...]
    source: str = field(default="", compare=False)

    @property
    def args(self) -> tuple[str, ...]:
        return call_arg_names(self.call)

    def expand(self, arity: int | None = None) -> CustomRule:
        return _expand_scalar_rule(self)


@dataclass(frozen=True)
class VariadicRule:
    build: Callable[[int], CustomRule]
    source: str = field(default="", compare=False)

    def expand(self, arity: int | None = None) -> CustomRule:
        if arity is None:
            raise RuleArityError("Variadic rules need an explicit arity to expand")
        return _expand_variadic(self.build, arity)


RuleDecl = Union[ScalarRule, CustomRule, VariadicRule]


@dataclass(frozen=True)
class Rule:
    signature: Signature
    decl: RuleDecl

    def bodies(self, arity: int | None = None) -> CustomRule:
        if arity is None:
            arity = self.signature.min_arity
        return self.decl.expand(arity)

    def forward_rule(self, arity: int | None = None) -> ForwardBody | None:
        return self.bodies(arity).forward

    def reverse_rule(self, arity: int | None = None) -> ReverseBody | None:
        return self.bodies(arity).reverse

    def output_derivative_rule(self, arity: int | None = None) -> PartialsBody | None:
        return self.bodies(arity).partials


@lru_cache(maxsize=_VARIADIC_CACHE_MAX)
def _expand_variadic(build: Callable[[int], CustomRule], arity: int) -> CustomRule:
    return build(arity)


def call_arg_names(call: Expr) -> tuple[str, ...]:
    if isinstance(call, Call):
        args = call.args
    elif isinstance(call, Infix):
        args = (call.left, call.right)
    elif isinstance(call, Prefix):
        args = (call.right,)
    else:
        raise RuleArityError(f"Rule head must be a call or operator application, got {type(call).__name__}")
    names: list[str] = []
    for arg in args:
        if not isinstance(arg, Name):
            raise RuleArityError(f"Rule head arguments must be plain names, got {type(arg).__name__}")
        names.append(arg.value)
    return tuple(names)


def _sum(terms: list[Expr]) -> Expr:
    total = terms[0]
    for term in terms[1:]:
        total = Infix(op="+", left=total, right=term)
    return total


def _expand_scalar_rule(decl: ScalarRule) -> CustomRule:
    args = decl.args
    rows = decl.partials
    for row in rows:
        if len(row) != len(args):
            raise RuleArityError(
                f"Scalar rule {decl.source or decl.call!r} has {len(args)} arguments but a partials row of {len(row)}"
            )

    # Tangent per output: Σ ∂ᵢ Δᵢ.
    out_tangents = [
        _sum([Infix(op="*", left=partial, right=Name(tangent_name(arg))) for partial, arg in zip(row, args)])
        for row in rows
    ]
    tangent: Expr = out_tangents[0] if len(rows) == 1 else Vector(items=tuple(out_tangents))

    # Cotangent per input: Σ_out conj(∂ᵢ) ΔΩ_out.
    if len(rows) == 1:
        out_cotangents: list[Expr] = [Name(COTANGENT)]
    else:
        out_cotangents = [Call(func="getindex", args=(Name(COTANGENT), Number(i))) for i in range(len(rows))]
    pullback = tuple(
        _sum(
            [
                Infix(op="*", left=Call(func="conj", args=(row[i],)), right=out_cotangents[k])
                for k, row in enumerate(rows)
            ]
        )
        for i in range(len(args))
    )

    return CustomRule(
        forward=ForwardBody(args=args, setup=decl.setup, primal=decl.call, tangent=tangent),
        reverse=ReverseBody(args=args, setup=decl.setup, primal=decl.call, pullback=pullback),
        partials=PartialsBody(args=args, setup=decl.setup, partials=rows),
        source=decl.source,
    )


def substitute(expr: Expr, mapping: Mapping[str, Expr]) -> Expr:
    """Replace free names simultaneously; used to instantiate one body inside another."""
    if isinstance(expr, Name):
        return mapping.get(expr.value, expr)
    if isinstance(expr, Number):
        return expr
    if isinstance(expr, Prefix):
        return Prefix(op=expr.op, right=substitute(expr.right, mapping))
    if isinstance(expr, Infix):
        return Infix(op=expr.op, left=substitute(expr.left, mapping), right=substitute(expr.right, mapping))
    if isinstance(expr, Call):
        return Call(func=expr.func, args=tuple(substitute(arg, mapping) for arg in expr.args))
    if isinstance(expr, Vector):
        return Vector(items=tuple(substitute(item, mapping) for item in expr.items))
    if isinstance(expr, Cond):
        return Cond(
            test=substitute(expr.test, mapping),
            then=substitute(expr.then, mapping),
            otherwise=substitute(expr.otherwise, mapping),
        )
    raise TypeError(f"Unsupported expression node: {type(expr).__name__}")


def substitute_bindings(bindings: tuple[Binding, ...], mapping: Mapping[str, Expr]) -> tuple[Binding, ...]:
    return tuple(Binding(targets=b.targets, value=substitute(b.value, mapping)) for b in bindings)


def apply_call(func: str, names: tuple[str, ...]) -> Call:
    return Call(func=func, args=tuple(Name(name) for name in names))


# Authoring helpers


def _parse_expr(source: str) -> Expr:
    try:
        return parse(source)
    except ParseError as err:
        raise RuleParseError.from_parse_error(err, source=source) from err


def _parse_setup(source: str) -> tuple[Binding, ...]:
    if not source:
        return ()
    try:
        return parse_bindings(source)
    except ParseError as err:
        raise RuleParseError.from_parse_error(err, source=source) from err


def _parse_row(source: str) -> tuple[Expr, ...]:
    expr = _parse_expr(source)
    if isinstance(expr, Vector):
        return expr.items
    return (expr,)


def scalar_rule(head: str, *rows: str, setup: str = "") -> ScalarRule:
    """Declare a rule from its partial derivatives.

    `head` is the primal call (`"atan(y, x)"`, `"x + y"`); each row is one
    output's partials, a tuple for multi-argument functions. Partials may
    refer to `Ω` and to setup names.
    """
    source = f"{head} => {' ; '.join(rows)}"
    return ScalarRule(
        call=_parse_expr(head),
        setup=_parse_setup(setup),
        partials=tuple(_parse_row(row) for row in rows),
        source=source,
    )


def forward_body(args: tuple[str, ...], primal: str, tangent: str, *, setup: str = "") -> ForwardBody:
    return ForwardBody(args=tuple(args), setup=_parse_setup(setup), primal=_parse_expr(primal), tangent=_parse_expr(tangent))


def reverse_body(args: tuple[str, ...], primal: str, pullback: str, *, setup: str = "") -> ReverseBody:
    return ReverseBody(args=tuple(args), setup=_parse_setup(setup), primal=_parse_expr(primal), pullback=_parse_row(pullback))


def partials_body(args: tuple[str, ...], partials: str, *, setup: str = "") -> PartialsBody:
    return PartialsBody(args=tuple(args), setup=_parse_setup(setup), partials=(_parse_row(partials),))
