from __future__ import annotations

import importlib.util
import math
import unittest


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


def _num(value) -> complex:
    from diffrules_jax.values import is_zero_tangent

    if is_zero_tangent(value):
        return 0j
    import jax.numpy as jnp

    return complex(jnp.asarray(value).item())


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for rule semantics tests")
class PowerEdgeCaseTests(unittest.TestCase):
    def test_zero_base_square_has_zero_tangent(self) -> None:
        from diffrules_jax import ZERO_TANGENT, frule

        for dp in (ZERO_TANGENT, 0.0):
            with self.subTest(dp=dp):
                y, dy = frule("^", (1.0, dp), 0.0, 2)
                self.assertEqual(float(y), 0.0)
                self.assertEqual(float(dy), 0.0)
                self.assertFalse(math.isnan(float(dy)))

    def test_zero_base_negative_exponent_is_infinite(self) -> None:
        from diffrules_jax import ZERO_TANGENT, frule, rrule

        y, _ = frule("^", (1.0, ZERO_TANGENT), 0.0, -1)
        self.assertEqual(float(y), math.inf)

        y, _ = rrule("^", 0.0, -1)
        self.assertEqual(float(y), math.inf)

    def test_fractional_exponent_x_partial(self) -> None:
        from diffrules_jax import ZERO_TANGENT, frule, rrule

        expected = 0.5 * 2.0 ** (-0.5)
        _, dy = frule("^", (1.0, ZERO_TANGENT), 2.0, 0.5)
        self.assertAlmostEqual(float(dy), expected, places=5)

        y, pullback = rrule("^", 2.0, 0.5)
        self.assertAlmostEqual(float(y), math.sqrt(2.0), places=5)
        dx, dp = pullback(1.0)
        self.assertAlmostEqual(float(dx), expected, places=5)
        self.assertAlmostEqual(float(dp), math.sqrt(2.0) * math.log(2.0), places=5)

    def test_zero_base_partial_table(self) -> None:
        from diffrules_jax.primitives import PRIMITIVES

        grad_x = PRIMITIVES["pow_grad_x"]
        grad_p = PRIMITIVES["pow_grad_p"]
        cases = [
            (1.0, 0.0, 1.0),
            (0.0, 1.0, 0.0),
            (2.0, 0.0, 0.0),
            (0.5, 0.0, math.inf),
        ]
        for p, y, expected in cases:
            with self.subTest(p=p):
                self.assertEqual(float(grad_x(0.0, p, y)), expected)
        self.assertEqual(float(grad_p(0.0, 2.0, 0.0)), 0.0)
        self.assertTrue(math.isnan(float(grad_p(0.0, -1.0, math.inf))))
        self.assertAlmostEqual(float(grad_p(-2.0, 2.0, 4.0)), 4.0 * math.log(2.0), places=5)

    def test_exponent_tangent_uses_log(self) -> None:
        from diffrules_jax import frule

        _, dy = frule("^", (0.0, 1.0), 3.0, 2)
        self.assertAlmostEqual(float(dy), 9.0 * math.log(3.0), places=4)

    def test_negative_real_base_with_complex_exponent(self) -> None:
        import cmath

        from diffrules_jax import frule, rrule

        x, p = -2.0, 0.5 + 0.5j
        log_x = cmath.log(complex(x))
        expected_y = cmath.exp(p * log_x)
        expected_dp = expected_y * log_x
        for mode in ("standard", "fast"):
            with self.subTest(mode=mode):
                y, pullback = rrule("^", x, p, mode=mode)
                self.assertAlmostEqual(_num(y), expected_y, places=4)
                _, dp = pullback(1.0)
                self.assertTrue(cmath.isfinite(_num(dp)))
                self.assertAlmostEqual(_num(dp), expected_dp.conjugate(), places=4)

                y, dy = frule("^", (0.0, 1.0), x, p, mode=mode)
                self.assertAlmostEqual(_num(y), expected_y, places=4)
                self.assertAlmostEqual(_num(dy), expected_dp, places=4)

    def test_traced_exponent_selects_per_value(self) -> None:
        import jax
        import jax.numpy as jnp

        from diffrules_jax import frule

        def tangent(p):
            return frule("^", (1.0, 0.0), 2.0, p)[1]

        out = jax.jit(tangent)(jnp.asarray(3.0))
        self.assertAlmostEqual(float(out), 12.0, places=4)
        out = jax.jit(tangent)(jnp.asarray(0.5))
        self.assertAlmostEqual(float(out), 0.5 * 2.0 ** (-0.5), places=5)


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for rule semantics tests")
class SingularityTests(unittest.TestCase):
    def test_abs_at_zero(self) -> None:
        from diffrules_jax import derivatives_given_output, frule, rrule

        _, dy = frule("abs", (1.0,), 0.0)
        self.assertEqual(float(dy), 0.0)
        _, dz = frule("abs", (1.0 + 1.0j,), 0j)
        self.assertEqual(float(dz), 0.0)
        _, pullback = rrule("abs", 0j)
        self.assertEqual(_num(pullback(1.0)[0]), 0j)
        ((partial,),) = derivatives_given_output("abs", 5.0, -5.0)
        self.assertEqual(float(partial), -1.0)

    def test_complex_abs_direction(self) -> None:
        from diffrules_jax import rrule

        y, pullback = rrule("abs", 3.0 + 4.0j)
        self.assertAlmostEqual(float(y), 5.0, places=5)
        (dz,) = pullback(1.0)
        self.assertAlmostEqual(_num(dz), 0.6 + 0.8j, places=5)

    def test_hypot_at_origin(self) -> None:
        from diffrules_jax import frule, rrule

        y, dy = frule("hypot", (1.0, 1.0), 0.0, 0.0)
        self.assertEqual(float(y), 0.0)
        self.assertEqual(float(dy), 0.0)
        _, pullback = rrule("hypot", 0.0, 0.0)
        self.assertEqual(tuple(float(v) for v in pullback(1.0)), (0.0, 0.0))

    def test_sign_and_angle_at_zero(self) -> None:
        from diffrules_jax import frule, rrule

        y, dy = frule("sign", (1.0,), 0.0)
        self.assertEqual(float(y), 0.0)
        self.assertEqual(_num(dy), 0j)

        y, dy = frule("sign", (1.0j,), 0j)
        self.assertEqual(_num(y), 0j)
        self.assertEqual(_num(dy), 0j)

        _, dy = frule("angle", (1.0,), 0.0)
        self.assertEqual(float(dy), 0.0)
        _, pullback = rrule("angle", 0j)
        self.assertEqual(_num(pullback(1.0)[0]), 0j)

    def test_real_angle_pullback_of_real_cotangent_is_zero_tangent(self) -> None:
        from diffrules_jax import ZERO_TANGENT, rrule

        _, pullback = rrule("angle", -2.0)
        self.assertIs(pullback(1.0)[0], ZERO_TANGENT)
        (dx,) = pullback(1.0j)
        self.assertAlmostEqual(_num(dx), 0j, places=6)
        (dx,) = pullback(1.0 + 0j)
        self.assertAlmostEqual(_num(dx), -0.5j, places=6)

    def test_complex_sign_is_tangential(self) -> None:
        from diffrules_jax import frule

        y, dy = frule("sign", (1.0j,), 2.0 + 0j)
        self.assertAlmostEqual(_num(y), 1.0 + 0j, places=6)
        self.assertAlmostEqual(_num(dy), 0.5j, places=6)

    def test_rem_at_integer_quotient_is_nan(self) -> None:
        from diffrules_jax import derivatives_given_output

        ((dx, dy),) = derivatives_given_output("rem", 0.0, 6.0, 3.0)
        self.assertTrue(math.isnan(float(dx)))
        self.assertTrue(math.isnan(float(dy)))
        ((dx, dy),) = derivatives_given_output("rem", 1.5, 7.5, 3.0)
        self.assertEqual(float(dx), 1.0)
        self.assertEqual(float(dy), -2.0)


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for rule semantics tests")
class NaryRuleTests(unittest.TestCase):
    def test_plus_broadcasts_cotangent(self) -> None:
        from diffrules_jax import frule, rrule

        for args in ((1.0, 2.0), (1.0, 2.0, 3.0), (1.0, 2.0, 3.0, 4.0, 5.0)):
            with self.subTest(arity=len(args)):
                y, pullback = rrule("+", *args)
                self.assertAlmostEqual(float(y), sum(args), places=5)
                self.assertEqual(tuple(float(v) for v in pullback(0.25)), (0.25,) * len(args))
                tangents = tuple(0.1 * (i + 1) for i in range(len(args)))
                _, dy = frule("+", tangents, *args)
                self.assertAlmostEqual(float(dy), sum(tangents), places=5)

    def test_times_pullback_is_product_of_others(self) -> None:
        from diffrules_jax import rrule

        y, pullback = rrule("*", 2.0, 3.0, 5.0)
        self.assertEqual(float(y), 30.0)
        self.assertEqual(tuple(float(v) for v in pullback(1.0)), (15.0, 10.0, 6.0))

        for args in ((2.0, 3.0), (1.0, 2.0, 3.0, 4.0), (1.0, 2.0, 3.0, 4.0, 5.0), (2.0, 1.5, 3.0, 0.5, 4.0, 1.0, 2.0)):
            with self.subTest(arity=len(args)):
                y, pullback = rrule("*", *args)
                total = math.prod(args)
                self.assertAlmostEqual(float(y), total, places=4)
                expected = tuple(2.0 * total / a for a in args)
                got = tuple(float(v) for v in pullback(2.0))
                for g, e in zip(got, expected):
                    self.assertAlmostEqual(g, e, places=4)

    def test_times_forward_folds_product_rule(self) -> None:
        from diffrules_jax import frule

        args = (2.0, 3.0, 5.0, 7.0)
        tangents = (1.0, 0.0, 0.5, 0.0)
        y, dy = frule("*", tangents, *args)
        self.assertAlmostEqual(float(y), 210.0, places=4)
        self.assertAlmostEqual(float(dy), 1.0 * 105.0 + 0.5 * 42.0, places=4)

    def test_single_argument_times_is_identity(self) -> None:
        from diffrules_jax import frule, rrule

        self.assertEqual(tuple(float(v) for v in frule("*", (0.5,), 3.0)), (3.0, 0.5))
        y, pullback = rrule("*", 3.0)
        self.assertEqual(float(y), 3.0)
        self.assertEqual(pullback(2.0), (2.0,))

    def test_times_output_partials(self) -> None:
        from diffrules_jax import derivatives_given_output

        ((a, b),) = derivatives_given_output("*", 6.0, 2.0, 3.0)
        self.assertEqual((float(a), float(b)), (3.0, 2.0))
        ((a, b, c),) = derivatives_given_output("*", 30.0, 2.0, 3.0, 5.0)
        self.assertEqual((float(a), float(b), float(c)), (15.0, 10.0, 6.0))


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for rule semantics tests")
class PullbackAndTangentTests(unittest.TestCase):
    def test_pullback_is_idempotent(self) -> None:
        from diffrules_jax import rrule

        for name, args in (("sin", (0.3,)), ("^", (1.7, 2.5)), ("*", (2.0, 3.0, 5.0, 7.0)), ("hypot", (3.0, 4.0))):
            with self.subTest(name=name):
                _, pullback = rrule(name, *args)
                first = tuple(float(v) for v in pullback(0.75))
                second = tuple(float(v) for v in pullback(0.75))
                self.assertEqual(first, second)
                pullback(-3.0)
                self.assertEqual(tuple(float(v) for v in pullback(0.75)), first)

    def test_zero_tangents_are_absorbed(self) -> None:
        from diffrules_jax import NO_TANGENT, ZERO_TANGENT, frule, rrule

        _, dy = frule("sin", (ZERO_TANGENT,), 0.3)
        self.assertIs(dy, ZERO_TANGENT)
        _, dy = frule("+", (ZERO_TANGENT, 2.0), 1.0, 1.0)
        self.assertEqual(float(dy), 2.0)
        _, dy = frule("*", (NO_TANGENT, ZERO_TANGENT), 2.0, 3.0)
        self.assertTrue(dy is NO_TANGENT or dy is ZERO_TANGENT)
        _, pullback = rrule("exp", 1.0)
        self.assertIs(pullback(ZERO_TANGENT)[0], ZERO_TANGENT)

    def test_sincos_has_two_outputs(self) -> None:
        from diffrules_jax import frule, rrule

        (s, c), (ds, dc) = frule("sincos", (2.0,), 0.4)
        self.assertAlmostEqual(float(s), math.sin(0.4), places=6)
        self.assertAlmostEqual(float(ds), 2.0 * math.cos(0.4), places=6)
        self.assertAlmostEqual(float(dc), -2.0 * math.sin(0.4), places=6)

        _, pullback = rrule("sincos", 0.4)
        (dx,) = pullback((1.0, 1.0))
        self.assertAlmostEqual(float(dx), math.cos(0.4) - math.sin(0.4), places=6)

    def test_setup_is_shared_between_primal_and_partial(self) -> None:
        from diffrules_jax import rrule

        y, pullback = rrule("sin", 0.3)
        self.assertIn("cosx", pullback.scope)
        self.assertAlmostEqual(float(y), math.sin(0.3), places=6)
        self.assertAlmostEqual(float(pullback(1.0)[0]), math.cos(0.3), places=6)

    def test_arity_mismatch_raises(self) -> None:
        from diffrules_jax import RuleArityError, lookup_forward, Signature
        from diffrules_jax.values import Domain

        rule = lookup_forward(Signature("hypot", (Domain.REAL, Domain.REAL)))
        with self.assertRaises(RuleArityError):
            rule((1.0,), 3.0, 4.0)


if __name__ == "__main__":
    unittest.main()
