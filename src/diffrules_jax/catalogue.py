"""Hand-curated differentiation rules for elementary scalar functions.

Every rule here must have a relaxed-arithmetic counterpart: the fast-math
transformer rewrites each declaration and the validator rejects any rule
that comes through unchanged. Do not add rules for functions without a
`*_fast` primitive.
"""

from __future__ import annotations

from typing import Final

from .ast import Binding, Call, Expr, Infix, Name
from .rules import (
    COTANGENT,
    CustomRule,
    ForwardBody,
    ReverseBody,
    Rule,
    Signature,
    VariadicRule,
    apply_call,
    forward_body,
    partials_body,
    reverse_body,
    scalar_rule,
    substitute,
    substitute_bindings,
    tangent_name,
)
from .values import Domain

ANY = Domain.ANY
REAL = Domain.REAL
COMPLEX = Domain.COMPLEX


def _sig(name: str, *domains: Domain, variadic: bool = False) -> Signature:
    return Signature(name=name, domains=tuple(domains), variadic=variadic)


def _unary(name: str, *rows: str, setup: str = "") -> Rule:
    return Rule(_sig(name, ANY), scalar_rule(f"{name}(x)", *rows, setup=setup))


# Trig basics: `sincos` computes both at once.

_SIN = CustomRule(
    forward=forward_body(("x",), "sinx", "cosx * Δx", setup="(sinx, cosx) = sincos(x)"),
    reverse=reverse_body(("x",), "sinx", "conj(cosx) * ΔΩ", setup="(sinx, cosx) = sincos(x)"),
    source="sin(x)",
)

_COS = CustomRule(
    forward=forward_body(("x",), "cosx", "-sinx * Δx", setup="(sinx, cosx) = sincos(x)"),
    reverse=reverse_body(("x",), "cosx", "-conj(sinx) * ΔΩ", setup="(sinx, cosx) = sincos(x)"),
    source="cos(x)",
)

# Magnitude, phase and conjugation.

_ABS_REAL = CustomRule(
    forward=forward_body(("x",), "abs(x)", "realdot(signx, Δx)", setup="signx = sign(x)"),
    reverse=reverse_body(("x",), "abs(x)", "signx * real(ΔΩ)", setup="signx = sign(x)"),
    partials=partials_body(("x",), "signx", setup="signx = sign(x)"),
    source="abs(x::real)",
)

_ABS_COMPLEX_SETUP = "signx = x / ifelse(iszero(x), one(Ω), Ω)"
_ABS_COMPLEX = CustomRule(
    forward=forward_body(("x",), "abs(x)", "realdot(signx, Δx)", setup=_ABS_COMPLEX_SETUP),
    reverse=reverse_body(("x",), "abs(x)", "signx * real(ΔΩ)", setup=_ABS_COMPLEX_SETUP),
    partials=partials_body(("x",), "signx", setup=_ABS_COMPLEX_SETUP),
    source="abs(x::complex)",
)

_ABS2 = CustomRule(
    forward=forward_body(("z",), "abs2(z)", "2 * realdot(z, Δz)"),
    reverse=reverse_body(("z",), "abs2(z)", "2 * real(ΔΩ) * z"),
    source="abs2(z)",
)

_CONJ = CustomRule(
    forward=forward_body(("z",), "conj(z)", "conj(Δz)"),
    reverse=reverse_body(("z",), "conj(z)", "conj(ΔΩ)"),
    source="conj(z)",
)

_ANGLE_FORWARD = forward_body(
    ("x",),
    "angle(x)",
    "imagconjtimes(x, Δx) / n",
    setup="n = ifelse(iszero(x), one(real(x)), abs2(x))",
)

# A real cotangent on a real input has nothing to pull back.
_ANGLE_REAL = CustomRule(
    forward=_ANGLE_FORWARD,
    reverse=reverse_body(
        ("x",),
        "angle(x)",
        "iscomplex(ΔΩ) ? im * real(ΔΩ) / ifelse(iszero(x), one(x), x) : ZeroTangent",
    ),
    source="angle(x::real)",
)

_ANGLE_COMPLEX = CustomRule(
    forward=_ANGLE_FORWARD,
    reverse=reverse_body(
        ("x",),
        "angle(x)",
        "(-imag(x) + im * real(x)) * real(ΔΩ) / n",
        setup="n = ifelse(iszero(x), one(real(x)), abs2(x))",
    ),
    source="angle(x::complex)",
)

_HYPOT = CustomRule(
    forward=forward_body(
        ("x", "y"),
        "hypot(x, y)",
        "(realdot(x, Δx) + realdot(y, Δy)) / n",
        setup="n = ifelse(iszero(Ω), one(Ω), Ω)",
    ),
    reverse=reverse_body(
        ("x", "y"),
        "hypot(x, y)",
        "(real(ΔΩ) / n * x, real(ΔΩ) / n * y)",
        setup="n = ifelse(iszero(Ω), one(Ω), Ω)",
    ),
    source="hypot(x, y)",
)

# Power. Integer exponents share `x ^ (p - 1)` between the primal and the
# x-partial; the exponent partial needs a log and is skipped for a zero Δp.

_POWER_SETUP = """
tmp = x ^ (p - 1)
(y, dx) = isinteger(p) ? (ifelse(iszero(x), x ^ p, x * tmp), p * tmp) : (x ^ p, pow_grad_x(x, p, float(x ^ p)))
"""

_POWER = CustomRule(
    forward=forward_body(
        ("x", "p"),
        "y",
        "iszero(Δp) ? dx * Δx : muladd(pow_grad_p(x, p, float(y)), Δp, dx * Δx)",
        setup=_POWER_SETUP,
    ),
    reverse=reverse_body(
        ("x", "p"),
        "y",
        "(conj(pow_grad_x(x, p, float(y))) * ΔΩ, conj(pow_grad_p(x, p, float(y))) * ΔΩ)",
        setup="y = x ^ p",
    ),
    source="x ^ p",
)

# `sign` is a unit-modulus projection; its derivative is tangential.

_SIGN_TANGENT = "Ω * (imagconjtimes(Ω, {seed}) / n) * im"


def _sign_rule(primal: str, source: str) -> CustomRule:
    setup = "n = ifelse(iszero(x), one(real(x)), abs(x))"
    return CustomRule(
        forward=forward_body(("x",), primal, _SIGN_TANGENT.format(seed="Δx"), setup=setup),
        reverse=reverse_body(("x",), primal, _SIGN_TANGENT.format(seed=COTANGENT), setup=setup),
        source=source,
    )


# Products


_TIMES_1 = CustomRule(
    forward=ForwardBody(args=("x",), setup=(), primal=apply_call("*", ("x",)), tangent=Name("Δx")),
    reverse=ReverseBody(args=("x",), setup=(), primal=apply_call("*", ("x",)), pullback=(Name(COTANGENT),)),
    source="*(x)",
)

_TIMES_2 = CustomRule(
    forward=forward_body(("x", "y"), "x * y", "muladd(Δx, y, x * Δy)"),
    reverse=reverse_body(("x", "y"), "x * y", "(ΔΩ * conj(y), conj(x) * ΔΩ)"),
    partials=partials_body(("x", "y"), "(conj(y), conj(x))"),
    source="x * y",
)

_TIMES_3 = CustomRule(
    reverse=reverse_body(
        ("x", "y", "z"),
        "x * y * z",
        "(ΔΩ * conj(y) * conj(z), conj(x) * ΔΩ * conj(z), conj(x) * conj(y) * ΔΩ)",
    ),
    partials=partials_body(("x", "y", "z"), "(conj(y) * conj(z), conj(x) * conj(z), conj(x) * conj(y))"),
    source="x * y * z",
)


def _arg_names(arity: int) -> tuple[str, ...]:
    return tuple(f"x{i}" for i in range(1, arity + 1))


def _product_forward(args: tuple[str, ...]) -> ForwardBody:
    """Pairwise product rule: `(p, dp) -> (p * xᵢ, muladd(dp, xᵢ, p * Δxᵢ))`."""
    product: Expr = Name(args[0])
    tangent: Expr = Name(tangent_name(args[0]))
    for name in args[1:]:
        tangent = Call(
            func="muladd",
            args=(tangent, Name(name), Infix(op="*", left=product, right=Name(tangent_name(name)))),
        )
        product = Infix(op="*", left=product, right=Name(name))
    return ForwardBody(args=args, setup=(), primal=product, tangent=tangent)


def _rename(body: ReverseBody, names: tuple[str, ...]) -> ReverseBody:
    mapping = {old: Name(new) for old, new in zip(body.args, names)}
    return ReverseBody(
        args=names,
        setup=substitute_bindings(body.setup, mapping),
        primal=substitute(body.primal, mapping),
        pullback=tuple(substitute(expr, mapping) for expr in body.pullback),
    )


def _times_reverse(arity: int) -> ReverseBody:
    if arity == 2:
        return _TIMES_2.reverse
    if arity == 3:
        return _TIMES_3.reverse

    # Head product over the first three arguments, tail product over
    # (Ω3, rest...). The tail is pulled back first; its first cotangent
    # seeds the head.
    args = _arg_names(arity)
    head_name = f"Ω3_{arity}"
    head = _rename(_TIMES_3.reverse, args[:3])
    tail_args = (head_name,) + args[3:]
    tail = _rename(_times_reverse(arity - 2), tail_args)
    seed = {COTANGENT: tail.pullback[0]}
    return ReverseBody(
        args=args,
        setup=(Binding(targets=(head_name,), value=head.primal),) + tail.setup,
        primal=tail.primal,
        pullback=tuple(substitute(expr, seed) for expr in head.pullback) + tail.pullback[1:],
    )


def _times_rule(arity: int) -> CustomRule:
    args = _arg_names(arity)
    if arity == 3:
        return CustomRule(
            forward=_product_forward(("x", "y", "z")),
            reverse=_TIMES_3.reverse,
            partials=_TIMES_3.partials,
            source="x * y * z",
        )
    return CustomRule(
        forward=_product_forward(args),
        reverse=_times_reverse(arity),
        source=f"*({', '.join(args)})",
    )


def _plus_rule(arity: int) -> CustomRule:
    args = _arg_names(arity)
    primal = apply_call("+", args)
    return CustomRule(
        forward=ForwardBody(
            args=args,
            setup=(),
            primal=primal,
            tangent=apply_call("+", tuple(tangent_name(name) for name in args)),
        ),
        reverse=ReverseBody(args=args, setup=(), primal=primal, pullback=(Name(COTANGENT),) * arity),
        source=f"+({', '.join(args)})",
    )


RULES: Final[tuple[Rule, ...]] = (
    # trig
    Rule(_sig("sin", ANY), _SIN),
    Rule(_sig("cos", ANY), _COS),
    _unary("tan", "1 + Ω ^ 2"),
    # hyperbolic
    _unary("cosh", "sinh(x)"),
    _unary("sinh", "cosh(x)"),
    _unary("tanh", "1 - Ω ^ 2"),
    # inverse trig
    _unary("acos", "-(inv(sqrt(1 - x ^ 2)))"),
    _unary("asin", "inv(sqrt(1 - x ^ 2))"),
    _unary("atan", "inv(1 + x ^ 2)"),
    # multivariate trig
    Rule(_sig("atan", ANY, ANY), scalar_rule("atan(y, x)", "(x / u, -y / u)", setup="u = x ^ 2 + y ^ 2")),
    _unary("sincos", "cosx", "-sinx", setup="(sinx, cosx) = Ω"),
    # exponents and logarithms
    _unary("cbrt", "inv(3 * Ω ^ 2)"),
    _unary("inv", "-(Ω ^ 2)"),
    _unary("sqrt", "inv(2 * Ω)"),
    _unary("exp", "Ω"),
    _unary("exp10", "logten * Ω"),
    _unary("exp2", "logtwo * Ω"),
    _unary("expm1", "exp(x)"),
    _unary("log", "inv(x)"),
    _unary("log10", "inv(logten * x)"),
    _unary("log1p", "inv(x + 1)"),
    _unary("log2", "inv(logtwo * x)"),
    # unary complex functions
    Rule(_sig("abs", REAL), _ABS_REAL),
    Rule(_sig("abs", COMPLEX), _ABS_COMPLEX),
    Rule(_sig("abs2", ANY), _ABS2),
    Rule(_sig("conj", ANY), _CONJ),
    Rule(_sig("angle", REAL), _ANGLE_REAL),
    Rule(_sig("angle", COMPLEX), _ANGLE_COMPLEX),
    # binary functions
    Rule(_sig("hypot", ANY, ANY), _HYPOT),
    Rule(_sig("+", ANY, ANY), scalar_rule("x + y", "(true, true)")),
    Rule(_sig("-", ANY, ANY), scalar_rule("x - y", "(true, -1)")),
    Rule(_sig("/", ANY, ANY), scalar_rule("x / y", "(one(x) / y, -(Ω / y))")),
    Rule(_sig("+", ANY, variadic=True), VariadicRule(build=_plus_rule, source="+(x, ys...)")),
    Rule(_sig("^", ANY, ANY), _POWER),
    Rule(
        _sig("rem", ANY, ANY),
        scalar_rule(
            "rem(x, y)",
            "(ifelse(isint, NaN, one(u)), ifelse(isint, NaN, -trunc(u)))",
            setup="u = x / y; isint = isinteger(x / y)",
        ),
    ),
    Rule(_sig("max", ANY, ANY), scalar_rule("max(x, y)", "(gt, !gt)", setup="gt = x > y")),
    Rule(_sig("min", ANY, ANY), scalar_rule("min(x, y)", "(!gt, gt)", setup="gt = x > y")),
    # unary operators
    Rule(_sig("+", ANY), scalar_rule("+x", "true")),
    Rule(_sig("-", ANY), scalar_rule("-x", "-1")),
    Rule(_sig("sign", REAL), _sign_rule("sign(x)", "sign(x::real)")),
    Rule(_sig("sign", COMPLEX), _sign_rule("x / n", "sign(x::complex)")),
    # products
    Rule(_sig("*", ANY), _TIMES_1),
    Rule(_sig("*", ANY, ANY), _TIMES_2),
    Rule(_sig("*", ANY, ANY, ANY, variadic=True), VariadicRule(build=_times_rule, source="*(x, y, z, more...)")),
)
