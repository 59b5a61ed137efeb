from __future__ import annotations
from typing import Any

from .errors import ArithmeticOverflow, ValidationError

# 1.0 in index units. Indices start here so that 0 can mean "uninitialized".
MULTIPLIER: int = 10**36
UINT256_MAX: int = 2**256 - 1


def as_uint(value: Any, name: str = "amount") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", details={name: value})
    if value < 0:
        raise ValidationError(f"{name} must not be negative", details={name: value})
    if value > UINT256_MAX:
        raise ArithmeticOverflow(f"{name} exceeds 256 bits", details={name: value})
    return value


def checked_add(a: int, b: int) -> int:
    r = a + b
    if r > UINT256_MAX:
        raise ArithmeticOverflow("addition overflow", details={"a": a, "b": b})
    return r


def checked_mul(a: int, b: int) -> int:
    r = a * b
    if r > UINT256_MAX:
        raise ArithmeticOverflow("multiplication overflow", details={"a": a, "b": b})
    return r


def mul_div(a: int, b: int, d: int) -> int:
    """floor(a * b / d), with the product bounded to 256 bits before dividing."""
    if d == 0:
        raise ZeroDivisionError("mul_div by zero")
    return checked_mul(a, b) // d
