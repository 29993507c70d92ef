"""Published rule catalogues and the lookup API used by differentiation engines.

The standard and relaxed catalogues are built, validated and published once,
on first use. After that they are immutable and safe to read from any thread.
Which one a lookup consults is controlled by an ambient arithmetic mode.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import logging
import os
import threading
from types import MappingProxyType
from typing import Any, Final

from .catalogue import RULES
from .errors import CatalogueConfigurationError, RuleLookupError
from .evaluator import ForwardRule, PartialsRule, Pullback, ReverseRule
from .fastmath import fast_rules
from .rules import Rule, Signature
from .validation import validate_catalogues
from .values import domain_of

logger = logging.getLogger(__name__)

STANDARD: Final = "standard"
FAST: Final = "fast"
MODES: Final[tuple[str, ...]] = (STANDARD, FAST)


def _check_mode(mode: str) -> str:
    normalized = mode.strip().lower()
    if normalized not in MODES:
        raise ValueError(f"Unknown arithmetic mode {mode!r}; expected one of {', '.join(MODES)}")
    return normalized


_DEFAULT_MODE: Final[str] = _check_mode(os.environ.get("DIFFRULES_JAX_ARITHMETIC_MODE", STANDARD))
_ARITHMETIC_MODE: ContextVar[str] = ContextVar("_ARITHMETIC_MODE", default=_DEFAULT_MODE)


@dataclass(frozen=True)
class Catalogue:
    """Immutable `Signature -> Rule` table for one arithmetic mode."""

    mode: str
    rules: Mapping[Signature, Rule]

    @classmethod
    def from_rules(cls, mode: str, rules: Iterable[Rule]) -> "Catalogue":
        table: dict[Signature, Rule] = {}
        for rule in rules:
            if rule.signature in table:
                raise CatalogueConfigurationError(
                    f"Duplicate rule for {rule.signature}", signatures=(rule.signature,)
                )
            table[rule.signature] = rule
        return cls(mode=mode, rules=MappingProxyType(table))

    def __len__(self) -> int:
        return len(self.rules)

    def __contains__(self, signature: object) -> bool:
        return signature in self.rules

    def signatures(self) -> tuple[Signature, ...]:
        return tuple(self.rules)

    def resolve(self, call: Signature) -> Rule | None:
        """Most specific rule for a concrete call signature, or None."""
        exact = self.rules.get(call)
        if exact is not None:
            return exact
        candidates = [rule for sig, rule in self.rules.items() if sig.accepts(call)]
        if not candidates:
            return None
        return min(candidates, key=lambda rule: rule.signature.specificity())


def build_catalogues(rules: Iterable[Rule] | None = None) -> tuple[Catalogue, Catalogue]:
    """Build the standard and relaxed catalogues and check them against each other."""
    source = RULES if rules is None else tuple(rules)
    standard = Catalogue.from_rules(STANDARD, source)
    fast = Catalogue.from_rules(FAST, fast_rules(source))
    validate_catalogues(standard.rules, fast.rules)
    logger.debug("Built %d standard and %d relaxed rules", len(standard), len(fast))
    return standard, fast


_INIT_LOCK = threading.Lock()
_PUBLISHED: tuple[Catalogue, Catalogue] | None = None


def catalogues() -> tuple[Catalogue, Catalogue]:
    """Return `(standard, fast)`, building them on the first call."""
    global _PUBLISHED
    published = _PUBLISHED
    if published is not None:
        return published
    with _INIT_LOCK:
        if _PUBLISHED is None:
            _PUBLISHED = build_catalogues()
        return _PUBLISHED


def current_mode() -> str:
    return _ARITHMETIC_MODE.get()


@contextmanager
def arithmetic_mode(mode: str) -> Iterator[str]:
    """Select the catalogue consulted by lookups inside the block."""
    token = _ARITHMETIC_MODE.set(_check_mode(mode))
    try:
        yield _ARITHMETIC_MODE.get()
    finally:
        _ARITHMETIC_MODE.reset(token)


def catalogue(mode: str | None = None) -> Catalogue:
    standard, fast = catalogues()
    selected = current_mode() if mode is None else _check_mode(mode)
    return fast if selected == FAST else standard


def call_signature(name: str, *args: Any) -> Signature:
    """Concrete signature for a call site, from the domains of its arguments."""
    return Signature(name=name, domains=tuple(domain_of(arg) for arg in args))


def lookup_rule(signature: Signature, mode: str | None = None) -> Rule | None:
    return catalogue(mode).resolve(signature)


def lookup_forward(signature: Signature, mode: str | None = None) -> ForwardRule | None:
    rule = lookup_rule(signature, mode)
    if rule is None:
        return None
    body = rule.forward_rule(len(signature.domains))
    return None if body is None else ForwardRule(signature=signature, body=body)


def lookup_reverse(signature: Signature, mode: str | None = None) -> ReverseRule | None:
    rule = lookup_rule(signature, mode)
    if rule is None:
        return None
    body = rule.reverse_rule(len(signature.domains))
    return None if body is None else ReverseRule(signature=signature, body=body)


def lookup_partials(signature: Signature, mode: str | None = None) -> PartialsRule | None:
    rule = lookup_rule(signature, mode)
    if rule is None:
        return None
    body = rule.output_derivative_rule(len(signature.domains))
    return None if body is None else PartialsRule(signature=signature, body=body)


def frule(name: str, tangents, *args: Any, mode: str | None = None) -> tuple[Any, Any]:
    """Push `tangents` forward through `name(*args)`."""
    signature = call_signature(name, *args)
    rule = lookup_forward(signature, mode)
    if rule is None:
        raise RuleLookupError(f"No forward rule for {signature}")
    return rule.apply(tangents, args)


def rrule(name: str, *args: Any, mode: str | None = None) -> tuple[Any, Pullback]:
    """Primal value of `name(*args)` and its pullback."""
    signature = call_signature(name, *args)
    rule = lookup_reverse(signature, mode)
    if rule is None:
        raise RuleLookupError(f"No reverse rule for {signature}")
    return rule.apply(args)


def derivatives_given_output(name: str, primal: Any, *args: Any, mode: str | None = None):
    signature = call_signature(name, *args)
    rule = lookup_partials(signature, mode)
    if rule is None:
        raise RuleLookupError(f"No output-derivative rule for {signature}")
    return rule.apply(primal, args)
