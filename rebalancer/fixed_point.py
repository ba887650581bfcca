"""
rebalancer/fixed_point.py
-------------------------
Checked unsigned integer arithmetic.

Python integers never overflow, so every helper here enforces the width the
result is allowed to occupy (64-bit by default, 128-bit for intermediate
products) and raises instead of wrapping or saturating.  Division always
truncates toward zero, matching unsigned integer division.
"""

from __future__ import annotations

from typing import Iterable, Type

import numpy as np

from rebalancer.errors import DivisionByZero, MathOverflow

U64_MAX: int = int(np.iinfo(np.uint64).max)
U128_MAX: int = (1 << 128) - 1


def _check(value: int, limit: int, error: Type[MathOverflow], op: str) -> int:
    if value < 0 or value > limit:
        raise error(f"{op} result {value} outside 0..{limit}")
    return value


def checked_add(
    a: int,
    b: int,
    limit: int = U64_MAX,
    error: Type[MathOverflow] = MathOverflow,
) -> int:
    return _check(a + b, limit, error, "add")


def checked_sub(
    a: int,
    b: int,
    error: Type[MathOverflow] = MathOverflow,
) -> int:
    """Unsigned subtraction; a negative result is an underflow."""
    return _check(a - b, U64_MAX, error, "sub")


def checked_mul(
    a: int,
    b: int,
    limit: int = U64_MAX,
    error: Type[MathOverflow] = MathOverflow,
) -> int:
    return _check(a * b, limit, error, "mul")


def checked_div(a: int, b: int) -> int:
    if b == 0:
        raise DivisionByZero(f"cannot divide {a} by zero")
    return a // b


def mul_div(
    a: int,
    b: int,
    divisor: int,
    intermediate: int = U128_MAX,
    limit: int = U64_MAX,
    error: Type[MathOverflow] = MathOverflow,
) -> int:
    """
    ``a * b // divisor`` with the product held in an *intermediate*-wide
    register and the quotient required to fit in *limit*.
    """
    product = checked_mul(a, b, limit=intermediate, error=error)
    return _check(checked_div(product, divisor), limit, error, "mul_div")


def saturating_sub(a: int, b: int) -> int:
    return a - b if a > b else 0


def checked_sum(
    values: Iterable[int],
    limit: int = U64_MAX,
    error: Type[MathOverflow] = MathOverflow,
) -> int:
    total = 0
    for v in values:
        total = checked_add(total, v, limit=limit, error=error)
    return total


def ensure_u64(value: int, name: str) -> int:
    """Reject values that are not representable as an unsigned 64-bit int."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise TypeError(f"{name} must be an integer, got {type(value).__name__}")
    value = int(value)
    if value < 0:
        raise ValueError(f"{name} must be non-negative (got {value}).")
    if value > U64_MAX:
        raise MathOverflow(f"{name} {value} does not fit in 64 bits")
    return value
