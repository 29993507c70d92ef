"""Build-time check that the relaxed catalogue really differs from the standard one."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import logging
import os

from .errors import CatalogueConfigurationError
from .rules import Rule, Signature, VariadicRule

logger = logging.getLogger(__name__)


def _parse_arities(text: str) -> tuple[int, ...]:
    arities = []
    for part in text.split(","):
        part = part.strip()
        if part:
            arities.append(int(part))
    return tuple(arities)


_VALIDATION_ARITIES = _parse_arities(os.environ.get("DIFFRULES_JAX_VALIDATION_ARITIES", "3,4,5"))


def _probe_arities(signature: Signature, extra: tuple[int, ...]) -> tuple[int, ...]:
    return tuple(sorted({signature.min_arity, *(a for a in extra if a >= signature.min_arity)}))


def _unchanged(original: Rule, transformed: Rule, arities: tuple[int, ...]) -> bool:
    if isinstance(original.decl, VariadicRule) and isinstance(transformed.decl, VariadicRule):
        # Builders never compare equal; compare what they produce.
        return any(
            original.bodies(arity) == transformed.bodies(arity)
            for arity in _probe_arities(original.signature, arities)
        )
    return original.decl == transformed.decl


def find_untransformed(
    original: Mapping[Signature, Rule],
    transformed: Mapping[Signature, Rule],
    *,
    arities: Iterable[int] | None = None,
) -> tuple[Signature, ...]:
    """Signatures whose declaration is structurally identical in both catalogues."""
    probe = _VALIDATION_ARITIES if arities is None else tuple(arities)
    return tuple(
        signature
        for signature, rule in original.items()
        if signature in transformed and _unchanged(rule, transformed[signature], probe)
    )


def validate_catalogues(
    original: Mapping[Signature, Rule],
    transformed: Mapping[Signature, Rule],
    *,
    arities: Iterable[int] | None = None,
) -> None:
    """Raise `CatalogueConfigurationError` unless every rule was rewritten."""
    missing = tuple(sig for sig in original if sig not in transformed)
    extra = tuple(sig for sig in transformed if sig not in original)
    if missing or extra:
        logger.error("Catalogue key sets differ: missing=%s extra=%s", missing, extra)
        raise CatalogueConfigurationError(
            "Relaxed catalogue does not cover the same signatures as the standard one",
            signatures=missing + extra,
        )

    offending = find_untransformed(original, transformed, arities=arities)
    if offending:
        listing = "\n".join(f"  {sig}" for sig in offending)
        logger.error("Rules without a relaxed-arithmetic form:\n%s", listing)
        raise CatalogueConfigurationError(
            f"Rules declared as relaxable but left unchanged by the rewrite:\n{listing}",
            signatures=offending,
        )
    logger.debug("Validated %d relaxed rules", len(transformed))
