from __future__ import annotations

import importlib.util
import unittest


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


def _identity_rule(name: str = "identity"):
    from diffrules_jax.rules import CustomRule, Rule, Signature, forward_body, reverse_body
    from diffrules_jax.values import Domain

    return Rule(
        Signature(name=name, domains=(Domain.ANY,)),
        CustomRule(
            forward=forward_body(("x",), "x", "Δx"),
            reverse=reverse_body(("x",), "x", "ΔΩ"),
            source=f"{name}(x)",
        ),
    )


def _echo_builder(arity: int):
    from diffrules_jax.ast import Name
    from diffrules_jax.rules import COTANGENT, CustomRule, ReverseBody

    args = tuple(f"x{i}" for i in range(1, arity + 1))
    return CustomRule(reverse=ReverseBody(args=args, setup=(), primal=Name(args[0]), pullback=(Name(COTANGENT),) * arity))


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for catalogue validation tests")
class CatalogueValidationTests(unittest.TestCase):
    def test_real_catalogue_passes_and_key_sets_match(self) -> None:
        from diffrules_jax.catalogue import RULES
        from diffrules_jax.registry import build_catalogues

        standard, fast = build_catalogues()
        self.assertEqual(standard.mode, "standard")
        self.assertEqual(fast.mode, "fast")
        self.assertEqual(set(standard.rules), set(fast.rules))
        self.assertEqual(len(standard), len(RULES))

    def test_every_rule_is_changed_by_the_rewrite(self) -> None:
        from diffrules_jax.catalogue import RULES
        from diffrules_jax.fastmath import rewrite_rule

        for rule in RULES:
            with self.subTest(signature=str(rule.signature)):
                fast = rewrite_rule(rule)
                if rule.signature.variadic:
                    for arity in (rule.signature.min_arity, 5):
                        self.assertNotEqual(rule.bodies(arity), fast.bodies(arity))
                else:
                    self.assertNotEqual(rule.decl, fast.decl)

    def test_untransformable_rule_aborts_initialization(self) -> None:
        from diffrules_jax.catalogue import RULES
        from diffrules_jax.errors import CatalogueConfigurationError
        from diffrules_jax.registry import build_catalogues

        bad = _identity_rule()
        with self.assertLogs("diffrules_jax.validation", level="ERROR") as logs:
            with self.assertRaises(CatalogueConfigurationError) as ctx:
                build_catalogues(RULES + (bad,))
        self.assertEqual(ctx.exception.signatures, (bad.signature,))
        self.assertIn("identity(any)", str(ctx.exception))
        self.assertIn("identity(any)", "\n".join(logs.output))

    def test_every_offending_signature_is_listed(self) -> None:
        from diffrules_jax.errors import CatalogueConfigurationError
        from diffrules_jax.registry import build_catalogues

        first = _identity_rule("first")
        second = _identity_rule("second")
        with self.assertLogs("diffrules_jax.validation", level="ERROR"):
            with self.assertRaises(CatalogueConfigurationError) as ctx:
                build_catalogues((first, second))
        self.assertEqual(set(ctx.exception.signatures), {first.signature, second.signature})

    def test_untransformable_variadic_rule_is_caught_at_probe_arities(self) -> None:
        from diffrules_jax.errors import CatalogueConfigurationError
        from diffrules_jax.registry import build_catalogues
        from diffrules_jax.rules import Rule, Signature, VariadicRule
        from diffrules_jax.values import Domain

        echo = Rule(Signature(name="echo", domains=(Domain.ANY,), variadic=True), VariadicRule(build=_echo_builder))
        with self.assertLogs("diffrules_jax.validation", level="ERROR"):
            with self.assertRaises(CatalogueConfigurationError) as ctx:
                build_catalogues((echo,))
        self.assertEqual(ctx.exception.signatures, (echo.signature,))

    def test_differing_key_sets_are_rejected(self) -> None:
        from diffrules_jax.catalogue import RULES
        from diffrules_jax.errors import CatalogueConfigurationError
        from diffrules_jax.fastmath import fast_rules
        from diffrules_jax.registry import Catalogue
        from diffrules_jax.validation import validate_catalogues

        standard = Catalogue.from_rules("standard", RULES)
        fast = Catalogue.from_rules("fast", fast_rules(RULES[1:]))
        with self.assertLogs("diffrules_jax.validation", level="ERROR"):
            with self.assertRaises(CatalogueConfigurationError) as ctx:
                validate_catalogues(standard.rules, fast.rules)
        self.assertEqual(ctx.exception.signatures, (RULES[0].signature,))

    def test_duplicate_signatures_are_rejected(self) -> None:
        from diffrules_jax.catalogue import RULES
        from diffrules_jax.errors import CatalogueConfigurationError
        from diffrules_jax.registry import Catalogue

        with self.assertRaises(CatalogueConfigurationError):
            Catalogue.from_rules("standard", RULES + (RULES[0],))

    def test_find_untransformed_respects_explicit_arities(self) -> None:
        from diffrules_jax.catalogue import RULES
        from diffrules_jax.fastmath import fast_rules
        from diffrules_jax.registry import Catalogue
        from diffrules_jax.validation import find_untransformed

        standard = Catalogue.from_rules("standard", RULES)
        fast = Catalogue.from_rules("fast", fast_rules(RULES))
        self.assertEqual(find_untransformed(standard.rules, fast.rules, arities=(3, 7)), ())
        self.assertEqual(len(find_untransformed(standard.rules, standard.rules)), len(RULES))


if __name__ == "__main__":
    unittest.main()
