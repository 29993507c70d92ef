"""Emit a categorized report of the standard and relaxed rule catalogues."""

from __future__ import annotations

import argparse
from collections import Counter
import json
from pathlib import Path

from diffrules_jax.registry import catalogues
from diffrules_jax.rules import CustomRule, ScalarRule, VariadicRule


def write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _decl_kind(decl: object) -> str:
    if isinstance(decl, ScalarRule):
        return "scalar"
    if isinstance(decl, VariadicRule):
        return "variadic"
    if isinstance(decl, CustomRule):
        return "custom"
    return type(decl).__name__


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--json-out",
        default="build/reports/catalogue.json",
        help="where to write machine-readable catalogue summary",
    )
    args = parser.parse_args()

    standard, fast = catalogues()
    rules = list(standard.rules.values())

    by_kind = Counter(_decl_kind(rule.decl) for rule in rules)
    by_arity = Counter(
        f"{rule.signature.min_arity}+" if rule.signature.variadic else str(rule.signature.min_arity)
        for rule in rules
    )
    by_name = Counter(rule.signature.name for rule in rules)
    with_partials = sum(
        1 for rule in rules if not isinstance(rule.decl, VariadicRule) and rule.output_derivative_rule() is not None
    )

    print("Rule catalogue")
    print("--------------")
    print(f"standard rules: {len(standard)}")
    print(f"relaxed rules: {len(fast)}")
    print(f"rules with output partials: {with_partials}")
    print("declaration kinds:")
    for key in sorted(by_kind):
        print(f"  - {key}: {by_kind[key]}")
    print("arities:")
    for key in sorted(by_arity):
        print(f"  - {key}: {by_arity[key]}")
    print("functions with several signatures:")
    for key in sorted(name for name, count in by_name.items() if count > 1):
        print(f"  - {key}: {by_name[key]}")

    write_json(
        Path(args.json_out),
        {
            "standard_rules": len(standard),
            "relaxed_rules": len(fast),
            "with_output_partials": with_partials,
            "by_kind": dict(sorted(by_kind.items())),
            "by_arity": dict(sorted(by_arity.items())),
            "signatures": [
                {"signature": str(rule.signature), "kind": _decl_kind(rule.decl), "source": rule.decl.source}
                for rule in rules
            ],
        },
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
