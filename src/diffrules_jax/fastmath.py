"""Relaxed-arithmetic variant of a rule catalogue.

Every precision-sensitive primitive in a rule declaration is replaced by its
`*_fast` counterpart. Control flow is left alone: `Cond` tests and
comparison operators are copied verbatim and argument order never changes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
import logging
from types import MappingProxyType
from typing import Final

from .ast import Binding, Call, Cond, Expr, Infix, Name, Number, Prefix, Vector
from .rules import CustomRule, ForwardBody, PartialsBody, ReverseBody, Rule, RuleDecl, ScalarRule, VariadicRule

logger = logging.getLogger(__name__)

_RELAXED_FUNCTIONS = (
    "sin",
    "cos",
    "tan",
    "sincos",
    "asin",
    "acos",
    "atan",
    "sinh",
    "cosh",
    "tanh",
    "exp",
    "exp2",
    "exp10",
    "expm1",
    "log",
    "log2",
    "log10",
    "log1p",
    "sqrt",
    "cbrt",
    "inv",
    "abs",
    "abs2",
    "conj",
    "angle",
    "hypot",
    "max",
    "min",
    "rem",
)

FASTMATH_TABLE: Final[Mapping[str, str]] = MappingProxyType(
    {
        "+": "add_fast",
        "-": "sub_fast",
        "*": "mul_fast",
        "/": "div_fast",
        "^": "pow_fast",
        **{name: f"{name}_fast" for name in _RELAXED_FUNCTIONS},
    }
)


def rewrite_expr(expr: Expr) -> Expr:
    if isinstance(expr, (Number, Name)):
        return expr

    if isinstance(expr, Vector):
        return Vector(items=tuple(rewrite_expr(item) for item in expr.items))

    if isinstance(expr, Prefix):
        right = rewrite_expr(expr.right)
        fast = FASTMATH_TABLE.get(expr.op)
        if fast is None:
            return Prefix(op=expr.op, right=right)
        return Call(func=fast, args=(right,))

    if isinstance(expr, Infix):
        left = rewrite_expr(expr.left)
        right = rewrite_expr(expr.right)
        fast = FASTMATH_TABLE.get(expr.op)
        if fast is None:
            # comparison
            return Infix(op=expr.op, left=left, right=right)
        return Call(func=fast, args=(left, right))

    if isinstance(expr, Call):
        return Call(func=FASTMATH_TABLE.get(expr.func, expr.func), args=tuple(rewrite_expr(arg) for arg in expr.args))

    if isinstance(expr, Cond):
        return Cond(test=expr.test, then=rewrite_expr(expr.then), otherwise=rewrite_expr(expr.otherwise))

    raise TypeError(f"Unsupported expression node: {type(expr).__name__}")


def _rewrite_setup(setup: tuple[Binding, ...]) -> tuple[Binding, ...]:
    return tuple(Binding(targets=b.targets, value=rewrite_expr(b.value)) for b in setup)


def _rewrite_custom(decl: CustomRule) -> CustomRule:
    forward = decl.forward
    if forward is not None:
        forward = ForwardBody(
            args=forward.args,
            setup=_rewrite_setup(forward.setup),
            primal=rewrite_expr(forward.primal),
            tangent=rewrite_expr(forward.tangent),
        )
    reverse = decl.reverse
    if reverse is not None:
        reverse = ReverseBody(
            args=reverse.args,
            setup=_rewrite_setup(reverse.setup),
            primal=rewrite_expr(reverse.primal),
            pullback=tuple(rewrite_expr(expr) for expr in reverse.pullback),
        )
    partials = decl.partials
    if partials is not None:
        partials = PartialsBody(
            args=partials.args,
            setup=_rewrite_setup(partials.setup),
            partials=tuple(tuple(rewrite_expr(expr) for expr in row) for row in partials.partials),
        )
    return CustomRule(forward=forward, reverse=reverse, partials=partials, source=decl.source)


@dataclass(frozen=True)
class _RewrittenBuilder:
    """Builds the relaxed body for one arity from the standard builder."""

    build: Callable[[int], CustomRule]

    def __call__(self, arity: int) -> CustomRule:
        return _rewrite_custom(self.build(arity))


def rewrite_decl(decl: RuleDecl) -> RuleDecl:
    if isinstance(decl, ScalarRule):
        return ScalarRule(
            call=rewrite_expr(decl.call),
            setup=_rewrite_setup(decl.setup),
            partials=tuple(tuple(rewrite_expr(expr) for expr in row) for row in decl.partials),
            source=decl.source,
        )
    if isinstance(decl, CustomRule):
        return _rewrite_custom(decl)
    if isinstance(decl, VariadicRule):
        return VariadicRule(build=_RewrittenBuilder(decl.build), source=decl.source)
    raise TypeError(f"Unsupported rule declaration: {type(decl).__name__}")


def rewrite_rule(rule: Rule) -> Rule:
    return Rule(signature=rule.signature, decl=rewrite_decl(rule.decl))


def fast_rules(rules: Iterable[Rule]) -> tuple[Rule, ...]:
    """Return the relaxed copy of `rules`, in the same order. Inputs are not modified."""
    rewritten = tuple(rewrite_rule(rule) for rule in rules)
    logger.debug("Rewrote %d rules to relaxed arithmetic", len(rewritten))
    return rewritten
