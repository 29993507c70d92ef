"""Structured error types for rule authoring, initialization and lookup."""

from __future__ import annotations

from dataclasses import dataclass

from .parser import ParseError


class RuleError(Exception):
    """Base class for structured diffrules-jax errors."""


@dataclass(frozen=True)
class RuleParseError(RuleError):
    """Wraps parser failures with the source text of the offending rule."""

    message: str
    start: int
    end: int
    source: str = ""
    expected: tuple[str, ...] = ()
    found: str | None = None

    @classmethod
    def from_parse_error(cls, err: ParseError, *, source: str = "") -> "RuleParseError":
        return cls(
            message=err.message,
            start=err.start,
            end=err.end,
            source=source,
            expected=err.expected,
            found=err.found,
        )

    def __str__(self) -> str:
        expected = ""
        if self.expected:
            expected = f"; expected {', '.join(self.expected)}"
        found = ""
        if self.found is not None:
            found = f"; found {self.found}"
        where = f" in {self.source!r}" if self.source else ""
        return f"{self.message} at span [{self.start}, {self.end}){where}{expected}{found}"


class CatalogueConfigurationError(RuleError):
    """A catalogue failed its build-time consistency check. Not recoverable."""

    def __init__(self, message: str, signatures: tuple[object, ...] = ()) -> None:
        super().__init__(message)
        self.signatures = signatures


class RuleLookupError(RuleError, LookupError):
    """No rule is registered for the requested signature."""


class RuleArityError(RuleError, TypeError):
    """A rule was invoked with the wrong number of arguments or tangents."""


class RuleEvaluationError(RuleError):
    """A rule body referenced an unknown name or primitive."""
