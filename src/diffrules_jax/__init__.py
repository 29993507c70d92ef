"""diffrules-jax public API."""

from .parser import ParseError, parse, parse_bindings
from .errors import (
    CatalogueConfigurationError,
    RuleArityError,
    RuleError,
    RuleEvaluationError,
    RuleLookupError,
    RuleParseError,
)

try:
    from .registry import (
        Catalogue,
        arithmetic_mode,
        build_catalogues,
        call_signature,
        catalogues,
        current_mode,
        derivatives_given_output,
        frule,
        lookup_forward,
        lookup_partials,
        lookup_reverse,
        lookup_rule,
        rrule,
    )
    from .rules import Signature
    from .values import NO_TANGENT, ZERO_TANGENT, Domain, NoTangent, ZeroTangent
except ModuleNotFoundError as exc:
    if exc.name and exc.name.startswith("jax"):
        _jax_import_error = exc

        def catalogues(*_args, **_kwargs):
            raise ModuleNotFoundError(
                "jax is required for catalogues(). Install runtime deps first."
            ) from _jax_import_error

        def frule(*_args, **_kwargs):
            raise ModuleNotFoundError(
                "jax is required for frule(). Install runtime deps first."
            ) from _jax_import_error

        def rrule(*_args, **_kwargs):
            raise ModuleNotFoundError(
                "jax is required for rrule(). Install runtime deps first."
            ) from _jax_import_error

    else:
        raise

__all__ = [
    "parse",
    "parse_bindings",
    "ParseError",
    "Catalogue",
    "Signature",
    "Domain",
    "ZeroTangent",
    "NoTangent",
    "ZERO_TANGENT",
    "NO_TANGENT",
    "arithmetic_mode",
    "current_mode",
    "build_catalogues",
    "catalogues",
    "call_signature",
    "lookup_forward",
    "lookup_reverse",
    "lookup_partials",
    "lookup_rule",
    "frule",
    "rrule",
    "derivatives_given_output",
    "RuleError",
    "RuleParseError",
    "CatalogueConfigurationError",
    "RuleLookupError",
    "RuleArityError",
    "RuleEvaluationError",
]
