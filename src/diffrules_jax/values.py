"""Value model: domain tags and zero-tangent sentinels."""

from __future__ import annotations

import numbers
from enum import Enum

import jax.numpy as jnp


class Domain(str, Enum):
    REAL = "real"
    COMPLEX = "complex"
    ANY = "any"

    def accepts(self, other: "Domain") -> bool:
        return self is Domain.ANY or self is other


class AbstractZero:
    """Absorbing tangent: sums skip it, products and linear maps collapse to it."""

    __slots__ = ()
    _instances: dict[type, "AbstractZero"] = {}

    def __new__(cls):
        instance = AbstractZero._instances.get(cls)
        if instance is None:
            instance = super().__new__(cls)
            AbstractZero._instances[cls] = instance
        return instance

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __bool__(self) -> bool:
        return False

    def __add__(self, other):
        return other

    __radd__ = __add__

    def __sub__(self, other):
        return -other

    def __rsub__(self, other):
        return other

    def __neg__(self):
        return self

    def __pos__(self):
        return self

    def __mul__(self, other):
        return self

    __rmul__ = __mul__

    def __truediv__(self, other):
        return self

    def conjugate(self):
        return self

    @property
    def real(self):
        return self

    @property
    def imag(self):
        return self


class ZeroTangent(AbstractZero):
    """Tangent of an argument that did not change."""

    __slots__ = ()


class NoTangent(AbstractZero):
    """Placeholder for a slot that has no tangent space."""

    __slots__ = ()


ZERO_TANGENT = ZeroTangent()
NO_TANGENT = NoTangent()


def is_zero_tangent(value: object) -> bool:
    return isinstance(value, AbstractZero)


def as_jax_array(value: object):
    if isinstance(value, jnp.ndarray):
        return value
    return jnp.asarray(value)


def is_complex_value(value: object) -> bool:
    if isinstance(value, AbstractZero):
        return False
    if isinstance(value, complex):
        return True
    if isinstance(value, numbers.Number):
        return False
    return bool(jnp.iscomplexobj(value))


def domain_of(value: object) -> Domain:
    if isinstance(value, AbstractZero):
        return Domain.ANY
    return Domain.COMPLEX if is_complex_value(value) else Domain.REAL


def zero_like(value: object):
    if isinstance(value, AbstractZero):
        return value
    arr = as_jax_array(value)
    return jnp.zeros(arr.shape, dtype=arr.dtype)
