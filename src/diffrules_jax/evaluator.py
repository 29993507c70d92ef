"""Interpreter for rule bodies, and the callable rule objects built on it."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

import jax

from .ast import Binding, Call, Cond, Expr, Infix, Name, Number, Prefix, Vector
from .errors import RuleArityError, RuleEvaluationError
from .primitives import CONSTANTS, PRIMITIVES
from .rules import COTANGENT, OMEGA, ForwardBody, PartialsBody, ReverseBody, Signature, tangent_name

_select = PRIMITIVES["ifelse"]


class _Frame:
    """Evaluation scope: bound values, lazily evaluated setup bindings and a memo."""

    def __init__(self, values: Mapping[str, Any], bindings: tuple[Binding, ...] = ()) -> None:
        self.values: dict[str, Any] = dict(values)
        self._pending: dict[str, Binding] = {}
        for binding in bindings:
            for target in binding.targets:
                self._pending[target] = binding
        self._active: set[int] = set()
        self._memo: dict[Expr, Any] = {}

    def lookup(self, name: str) -> Any:
        if name in self.values:
            return self.values[name]
        binding = self._pending.get(name)
        if binding is not None:
            self._bind(binding)
            return self.values[name]
        if name in CONSTANTS:
            return CONSTANTS[name]
        raise RuleEvaluationError(f"Unbound name {name!r} in rule body")

    def force(self) -> dict[str, Any]:
        """Evaluate every pending binding and return a snapshot of the scope."""
        for binding in tuple(self._pending.values()):
            if binding.targets[0] not in self.values:
                self._bind(binding)
        return dict(self.values)

    def _bind(self, binding: Binding) -> None:
        key = id(binding)
        if key in self._active:
            raise RuleEvaluationError(f"Cyclic setup binding for {', '.join(binding.targets)}")
        self._active.add(key)
        try:
            value = self.eval(binding.value)
        finally:
            self._active.discard(key)

        if len(binding.targets) == 1:
            self.values[binding.targets[0]] = value
            return
        if not isinstance(value, tuple) or len(value) != len(binding.targets):
            raise RuleEvaluationError(
                f"Cannot destructure value into ({', '.join(binding.targets)})"
            )
        for target, item in zip(binding.targets, value):
            self.values[target] = item

    def eval(self, expr: Expr) -> Any:
        if isinstance(expr, Number):
            return expr.value
        if isinstance(expr, Name):
            return self.lookup(expr.value)

        cached = self._memo.get(expr, _UNSET)
        if cached is not _UNSET:
            return cached
        value = self._eval_compound(expr)
        self._memo[expr] = value
        return value

    def _eval_compound(self, expr: Expr) -> Any:
        if isinstance(expr, Infix):
            return _primitive(expr.op)(self.eval(expr.left), self.eval(expr.right))
        if isinstance(expr, Prefix):
            return _primitive(expr.op)(self.eval(expr.right))
        if isinstance(expr, Call):
            return _primitive(expr.func)(*(self.eval(arg) for arg in expr.args))
        if isinstance(expr, Vector):
            return tuple(self.eval(item) for item in expr.items)
        if isinstance(expr, Cond):
            test = self.eval(expr.test)
            if isinstance(test, jax.core.Tracer):
                return _merge(test, self.eval(expr.then), self.eval(expr.otherwise))
            return self.eval(expr.then if bool(test) else expr.otherwise)
        raise RuleEvaluationError(f"Unsupported expression node: {type(expr).__name__}")


_UNSET = object()


def _primitive(name: str):
    fn = PRIMITIVES.get(name)
    if fn is None:
        raise RuleEvaluationError(f"Unknown primitive {name!r}")
    return fn


def _merge(test, then, otherwise):
    if isinstance(then, tuple) and isinstance(otherwise, tuple):
        return tuple(_merge(test, a, b) for a, b in zip(then, otherwise))
    return _select(test, then, otherwise)


def _check_arity(signature: Signature, names: tuple[str, ...], got: int, what: str) -> None:
    if got != len(names):
        raise RuleArityError(f"{signature} expects {len(names)} {what}, got {got}")


@dataclass(frozen=True)
class ForwardRule:
    """`(tangents, args) -> (primal, tangent)` with one tangent per argument."""

    signature: Signature
    body: ForwardBody

    def apply(self, tangents, args) -> tuple[Any, Any]:
        tangents = tuple(tangents)
        args = tuple(args)
        _check_arity(self.signature, self.body.args, len(args), "arguments")
        _check_arity(self.signature, self.body.args, len(tangents), "tangents")
        values = dict(zip(self.body.args, args))
        values.update((tangent_name(name), t) for name, t in zip(self.body.args, tangents))
        frame = _Frame(values, (Binding(targets=(OMEGA,), value=self.body.primal),) + self.body.setup)
        primal = frame.lookup(OMEGA)
        return primal, frame.eval(self.body.tangent)

    def __call__(self, tangents, *args) -> tuple[Any, Any]:
        return self.apply(tangents, args)


@dataclass(frozen=True)
class Pullback:
    """Maps an output cotangent to one cotangent per input, in argument order.

    The captured scope is read-only; each call evaluates in a fresh frame.
    """

    signature: Signature
    exprs: tuple[Expr, ...]
    scope: Mapping[str, Any]

    def apply(self, cotangent) -> tuple[Any, ...]:
        frame = _Frame({**self.scope, COTANGENT: cotangent})
        return tuple(frame.eval(expr) for expr in self.exprs)

    def __call__(self, cotangent) -> tuple[Any, ...]:
        return self.apply(cotangent)


@dataclass(frozen=True)
class ReverseRule:
    """`(args) -> (primal, pullback)`."""

    signature: Signature
    body: ReverseBody

    def apply(self, args) -> tuple[Any, Pullback]:
        args = tuple(args)
        _check_arity(self.signature, self.body.args, len(args), "arguments")
        frame = _Frame(
            dict(zip(self.body.args, args)),
            (Binding(targets=(OMEGA,), value=self.body.primal),) + self.body.setup,
        )
        scope = frame.force()
        pullback = Pullback(self.signature, self.body.pullback, MappingProxyType(scope))
        return scope[OMEGA], pullback

    def __call__(self, *args) -> tuple[Any, Pullback]:
        return self.apply(args)


@dataclass(frozen=True)
class PartialsRule:
    """`(Ω, args) -> rows of partials` for callers that already hold the primal."""

    signature: Signature
    body: PartialsBody

    def apply(self, primal, args) -> tuple[tuple[Any, ...], ...]:
        args = tuple(args)
        _check_arity(self.signature, self.body.args, len(args), "arguments")
        values = dict(zip(self.body.args, args))
        values[OMEGA] = primal
        frame = _Frame(values, self.body.setup)
        return tuple(tuple(frame.eval(expr) for expr in row) for row in self.body.partials)

    def __call__(self, primal, *args) -> tuple[tuple[Any, ...], ...]:
        return self.apply(primal, args)
