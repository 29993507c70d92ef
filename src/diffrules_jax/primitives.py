"""Primitive implementations available to rule bodies.

Every arithmetic or transcendental operation a rule body performs goes
through `PRIMITIVES`, keyed by operator symbol or function name. The table
holds both the standard implementations and their relaxed `*_fast`
counterparts, so a single evaluator runs either catalogue.

Linear primitives (`+`, `-`, `*`, `/`, `conj`, `real`, `imag`, `realdot`,
`muladd`, ...) treat `ZeroTangent`/`NoTangent` as absorbing elements.
"""

from __future__ import annotations

import math
import numbers
from collections.abc import Callable, Mapping
from functools import reduce
from types import MappingProxyType
from typing import Final

from jax import lax
import jax.numpy as jnp

from .values import NO_TANGENT, ZERO_TANGENT, AbstractZero, as_jax_array, is_complex_value, is_zero_tangent, zero_like

_MISSING = object()

CONSTANTS: Final[Mapping[str, object]] = MappingProxyType(
    {
        "true": True,
        "false": False,
        "im": 1j,
        "Inf": math.inf,
        "NaN": math.nan,
        "pi": math.pi,
        "logten": math.log(10.0),
        "logtwo": math.log(2.0),
        "ZeroTangent": ZERO_TANGENT,
        "NoTangent": NO_TANGENT,
    }
)


def _first_zero(args: tuple[object, ...]) -> AbstractZero | None:
    for arg in args:
        if isinstance(arg, AbstractZero):
            return arg
    return None


def _as_inexact(x):
    arr = as_jax_array(x)
    if jnp.issubdtype(arr.dtype, jnp.inexact):
        return arr
    return arr.astype(jnp.result_type(float))


def _as_complex(x):
    arr = as_jax_array(x)
    if jnp.iscomplexobj(arr):
        return arr
    return arr.astype(jnp.result_type(arr, 1j))


def _promote_binary_pair(w: jnp.ndarray, x: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    if w.dtype == x.dtype:
        return w, x
    dtype = jnp.result_type(w, x)
    if w.dtype == dtype:
        return w, lax.convert_element_type(x, dtype)
    if x.dtype == dtype:
        return lax.convert_element_type(w, dtype), x
    return lax.convert_element_type(w, dtype), lax.convert_element_type(x, dtype)


def _static_integer_scalar_or_none(value) -> int | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        real = float(value)
        return int(real) if real.is_integer() else None
    try:
        arr = as_jax_array(value)
        if arr.ndim != 0 or jnp.iscomplexobj(arr):
            return None
        scalar = arr.item()
    except Exception:
        # Traced or otherwise abstract values have no static exponent.
        return None
    if isinstance(scalar, numbers.Integral):
        return int(scalar)
    if isinstance(scalar, numbers.Real):
        real = float(scalar)
        if real.is_integer():
            return int(real)
    return None


def _nonnegative_int_power_array(base: jnp.ndarray, exponent: int) -> jnp.ndarray:
    if exponent == 0:
        return jnp.ones_like(base)
    if exponent == 1:
        return base
    if exponent == 2:
        return base * base

    result = jnp.ones_like(base)
    factor = base
    power = exponent
    while power > 0:
        if power & 1:
            result = result * factor
        power >>= 1
        if power:
            factor = factor * factor
    return result


# Linear arithmetic


def _add(*args):
    live = [arg for arg in args if not is_zero_tangent(arg)]
    if not live:
        return _first_zero(args) or ZERO_TANGENT
    if len(live) == 1:
        return live[0]
    return reduce(jnp.add, live)


def _sub(x, y=_MISSING):
    if y is _MISSING:
        if is_zero_tangent(x):
            return x
        return jnp.negative(x)
    if is_zero_tangent(y):
        return x
    if is_zero_tangent(x):
        return jnp.negative(y)
    return jnp.subtract(x, y)


def _mul(*args):
    zero = _first_zero(args)
    if zero is not None:
        return zero
    if len(args) == 1:
        return args[0]
    return reduce(jnp.multiply, args)


def _div(x, y):
    if is_zero_tangent(x):
        return x
    return jnp.true_divide(x, y)


def _power(x, p):
    static_exponent = _static_integer_scalar_or_none(p)
    if static_exponent is not None:
        return lax.integer_pow(_as_inexact(x), static_exponent)
    base, exponent = _promote_binary_pair(_as_inexact(x), as_jax_array(p))
    return jnp.power(base, exponent)


def _conj(x):
    if is_zero_tangent(x):
        return x
    return jnp.conj(x)


def _real(x):
    if is_zero_tangent(x):
        return x
    return jnp.real(x)


def _imag(x):
    if is_zero_tangent(x):
        return x
    return jnp.imag(x)


def _realdot(x, y):
    """Real inner product `real(conj(x) * y)`."""
    if is_zero_tangent(x) or is_zero_tangent(y):
        return ZERO_TANGENT
    if not is_complex_value(x) and not is_complex_value(y):
        return jnp.multiply(x, y)
    return jnp.real(jnp.conj(x) * y)


def _imagconjtimes(x, y):
    """`imag(conj(x) * y)`."""
    if is_zero_tangent(x) or is_zero_tangent(y):
        return ZERO_TANGENT
    return jnp.imag(jnp.conj(x) * y)


def _muladd(x, y, z):
    return _add(_mul(x, y), z)


def _float(x):
    if is_zero_tangent(x):
        return x
    return _as_inexact(x)


# Predicates and selection


def _iszero(x):
    if is_zero_tangent(x):
        return True
    return as_jax_array(x) == 0


def _isinteger(x):
    if isinstance(x, bool) or isinstance(x, numbers.Integral):
        return True
    if isinstance(x, numbers.Real):
        return float(x).is_integer()
    arr = as_jax_array(x)
    if jnp.issubdtype(arr.dtype, jnp.integer) or arr.dtype == jnp.bool_:
        return jnp.ones(arr.shape, dtype=bool)
    if jnp.iscomplexobj(arr):
        re = jnp.real(arr)
        return (re == jnp.round(re)) & jnp.isfinite(re) & (jnp.imag(arr) == 0)
    return (arr == jnp.round(arr)) & jnp.isfinite(arr)


def _iscomplex(x) -> bool:
    return is_complex_value(x)


def _ifelse(cond, x, y):
    if is_zero_tangent(x) and is_zero_tangent(y):
        return x
    if is_zero_tangent(x):
        x = zero_like(y)
    if is_zero_tangent(y):
        y = zero_like(x)
    return jnp.where(cond, x, y)


def _getindex(items, index):
    if is_zero_tangent(items):
        return items
    return items[int(index)]


def _one(x):
    return jnp.ones_like(as_jax_array(x))


def _zero(x):
    return jnp.zeros_like(as_jax_array(x))


# Elementary functions


def _sincos(x):
    return jnp.sin(x), jnp.cos(x)


def _atan(y, x=_MISSING):
    if x is _MISSING:
        return jnp.arctan(y)
    return jnp.arctan2(y, x)


def _abs2(x):
    if is_complex_value(x):
        return jnp.real(x) ** 2 + jnp.imag(x) ** 2
    return jnp.multiply(x, x)


def _hypot(x, y):
    if is_complex_value(x) or is_complex_value(y):
        return jnp.sqrt(_abs2(x) + _abs2(y))
    return jnp.hypot(x, y)


def _inv(x):
    return jnp.true_divide(1, x)


def _exp10(x):
    return jnp.power(10.0, _as_inexact(x))


def _pow_grad_x(x, p, y):
    """Partial of `x ^ p` w.r.t. `x` given `y = x ^ p`, with the zero-base table."""
    if is_complex_value(x) or is_complex_value(p):
        return as_jax_array(p) * as_jax_array(y) / as_jax_array(x)
    x = as_jax_array(x)
    p = as_jax_array(p)
    y = _as_inexact(y)
    generic = p * y / x
    one = jnp.ones_like(y)
    zero = jnp.zeros_like(y)
    inf = jnp.full_like(y, jnp.inf)
    at_zero = jnp.where(p == 1, one, jnp.where((p == 0) | (p > 1), zero, inf))
    return jnp.where((x != 0) | (p < 0), generic, at_zero)


def _pow_grad_p(x, p, y):
    """Partial of `x ^ p` w.r.t. `p` given `y = x ^ p`."""
    if is_complex_value(x) or is_complex_value(p):
        # Principal branch of the complex log, also for a real negative base.
        return as_jax_array(y) * jnp.log(_as_complex(x))
    x = as_jax_array(x)
    p = as_jax_array(p)
    y = _as_inexact(y)
    generic = y * jnp.log(jnp.abs(x))
    at_zero = jnp.where(p > 0, jnp.zeros_like(y), jnp.full_like(y, jnp.nan))
    return jnp.where(x != 0, generic, at_zero)


# Relaxed counterparts. These assume finite, in-domain inputs and permit
# reassociation; results may differ from the standard ones in the last ulps.


def _add_fast(*args):
    return _add(*args)


def _mul_fast(*args):
    return _mul(*args)


def _div_fast(x, y):
    if is_zero_tangent(x):
        return x
    return jnp.multiply(x, jnp.true_divide(1, y))


def _pow_fast(x, p):
    exponent = _static_integer_scalar_or_none(p)
    base = _as_inexact(x)
    if exponent is not None:
        if exponent >= 0:
            return _nonnegative_int_power_array(base, exponent)
        return jnp.true_divide(1, _nonnegative_int_power_array(base, -exponent))
    if is_complex_value(p):
        base = _as_complex(base)
    return jnp.exp(p * jnp.log(base))


def _tan_fast(x):
    return jnp.sin(x) / jnp.cos(x)


def _cbrt_fast(x):
    return jnp.sign(x) * jnp.power(jnp.abs(_as_inexact(x)), 1.0 / 3.0)


def _sinh_fast(x):
    return (jnp.exp(x) - jnp.exp(-x)) / 2


def _cosh_fast(x):
    return (jnp.exp(x) + jnp.exp(-x)) / 2


def _exp2_fast(x):
    return jnp.exp(x * math.log(2.0))


def _exp10_fast(x):
    return jnp.exp(x * math.log(10.0))


def _expm1_fast(x):
    return jnp.exp(x) - 1


def _log2_fast(x):
    return jnp.log(x) / math.log(2.0)


def _log10_fast(x):
    return jnp.log(x) / math.log(10.0)


def _log1p_fast(x):
    return jnp.log(1 + x)


def _abs2_fast(x):
    return jnp.real(jnp.conj(x) * x)


def _angle_fast(x):
    return jnp.arctan2(jnp.imag(x), jnp.real(x))


def _hypot_fast(x, y):
    return jnp.sqrt(_abs2_fast(x) + _abs2_fast(y))


def _max_fast(x, y):
    return jnp.where(x > y, x, y)


def _min_fast(x, y):
    return jnp.where(x < y, x, y)


def _rem_fast(x, y):
    return x - y * jnp.trunc(x / y)


PRIMITIVES: Final[Mapping[str, Callable[..., object]]] = MappingProxyType(
    {
        # operators
        "+": _add,
        "-": _sub,
        "*": _mul,
        "/": _div,
        "^": _power,
        "!": jnp.logical_not,
        "==": jnp.equal,
        "!=": jnp.not_equal,
        "<": jnp.less,
        "<=": jnp.less_equal,
        ">": jnp.greater,
        ">=": jnp.greater_equal,
        # linear helpers
        "conj": _conj,
        "real": _real,
        "imag": _imag,
        "realdot": _realdot,
        "imagconjtimes": _imagconjtimes,
        "muladd": _muladd,
        "float": _float,
        # predicates, selection, constructors
        "iszero": _iszero,
        "isinteger": _isinteger,
        "iscomplex": _iscomplex,
        "ifelse": _ifelse,
        "getindex": _getindex,
        "one": _one,
        "zero": _zero,
        "trunc": jnp.trunc,
        # elementary functions
        "sin": jnp.sin,
        "cos": jnp.cos,
        "tan": jnp.tan,
        "sincos": _sincos,
        "asin": jnp.arcsin,
        "acos": jnp.arccos,
        "atan": _atan,
        "sinh": jnp.sinh,
        "cosh": jnp.cosh,
        "tanh": jnp.tanh,
        "exp": jnp.exp,
        "exp2": jnp.exp2,
        "exp10": _exp10,
        "expm1": jnp.expm1,
        "log": jnp.log,
        "log2": jnp.log2,
        "log10": jnp.log10,
        "log1p": jnp.log1p,
        "sqrt": jnp.sqrt,
        "cbrt": jnp.cbrt,
        "inv": _inv,
        "abs": jnp.abs,
        "abs2": _abs2,
        "angle": jnp.angle,
        "sign": jnp.sign,
        "hypot": _hypot,
        "max": jnp.maximum,
        "min": jnp.minimum,
        "rem": jnp.fmod,
        "pow_grad_x": _pow_grad_x,
        "pow_grad_p": _pow_grad_p,
        # relaxed counterparts
        "add_fast": _add_fast,
        "sub_fast": _sub,
        "mul_fast": _mul_fast,
        "div_fast": _div_fast,
        "pow_fast": _pow_fast,
        "sin_fast": jnp.sin,
        "cos_fast": jnp.cos,
        "tan_fast": _tan_fast,
        "sincos_fast": _sincos,
        "asin_fast": jnp.arcsin,
        "acos_fast": jnp.arccos,
        "atan_fast": _atan,
        "sinh_fast": _sinh_fast,
        "cosh_fast": _cosh_fast,
        "tanh_fast": jnp.tanh,
        "exp_fast": jnp.exp,
        "exp2_fast": _exp2_fast,
        "exp10_fast": _exp10_fast,
        "expm1_fast": _expm1_fast,
        "log_fast": jnp.log,
        "log2_fast": _log2_fast,
        "log10_fast": _log10_fast,
        "log1p_fast": _log1p_fast,
        "sqrt_fast": jnp.sqrt,
        "cbrt_fast": _cbrt_fast,
        "inv_fast": _inv,
        "abs_fast": jnp.abs,
        "abs2_fast": _abs2_fast,
        "conj_fast": _conj,
        "angle_fast": _angle_fast,
        "hypot_fast": _hypot_fast,
        "max_fast": _max_fast,
        "min_fast": _min_fast,
        "rem_fast": _rem_fast,
    }
)
