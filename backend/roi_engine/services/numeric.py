# backend/roi_engine/services/numeric.py
"""
Decimal arithmetic layer.

Every monetary, weight, price and NAV computation in the engine goes through
these helpers. They run in a dedicated context (50 significant digits,
ROUND_HALF_UP) so results do not depend on the caller's thread-local
decimal context.

Floats are accepted as input only through their shortest repr and are
produced only by `to_num`, which is the serialization boundary.

Usage:
    from roi_engine.services.numeric import dec, mul, safe_div, to_num

    ret = safe_div(sub(price_today, price_prev), price_prev)
    payload["roi"] = to_num(ret)
"""

import decimal
from decimal import Decimal, ROUND_HALF_UP

DECIMAL_PRECISION = 50
SERIALIZATION_DIGITS = 15

DECIMAL_CONTEXT = decimal.Context(prec=DECIMAL_PRECISION, rounding=ROUND_HALF_UP)

_ZERO = Decimal("0")

NumberLike = Decimal | int | float | str


def dec(value: NumberLike) -> Decimal:
    """
    Convert a value to Decimal.

    Floats are converted through `repr` so 0.1 becomes Decimal("0.1")
    rather than its binary expansion.

    Raises:
        ValueError: If the value is None, not numeric, or not finite
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Not a numeric value: {value!r}")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except decimal.InvalidOperation:
            raise ValueError(f"Not a numeric value: {value!r}") from None

    if not result.is_finite():
        raise ValueError(f"Not a finite value: {value!r}")
    return result


def add(a: NumberLike, b: NumberLike) -> Decimal:
    return DECIMAL_CONTEXT.add(dec(a), dec(b))


def sub(a: NumberLike, b: NumberLike) -> Decimal:
    return DECIMAL_CONTEXT.subtract(dec(a), dec(b))


def mul(a: NumberLike, b: NumberLike) -> Decimal:
    return DECIMAL_CONTEXT.multiply(dec(a), dec(b))


def div(a: NumberLike, b: NumberLike) -> Decimal:
    """Divide; raises ZeroDivisionError when b is zero. Prefer safe_div in pipelines."""
    divisor = dec(b)
    if divisor.is_zero():
        raise ZeroDivisionError("Decimal division by zero")
    return DECIMAL_CONTEXT.divide(dec(a), divisor)


def safe_div(a: NumberLike, b: NumberLike) -> Decimal:
    """
    Divide, returning 0 when the divisor is zero.

    Zero-equity and zero-variance cases are expected (first day of a series,
    flat series) and must not abort a recompute.
    """
    divisor = dec(b)
    if divisor.is_zero():
        return _ZERO
    return DECIMAL_CONTEXT.divide(dec(a), divisor)


def pow(base: NumberLike, exponent: NumberLike) -> Decimal:
    """Raise to a power. Integral exponents are exact; others are correctly rounded."""
    return DECIMAL_CONTEXT.power(dec(base), dec(exponent))


def sqrt(value: NumberLike) -> Decimal:
    """
    Square root.

    Raises:
        ValueError: For negative input
    """
    d = dec(value)
    if d < _ZERO:
        raise ValueError(f"Square root of negative value: {d}")
    return DECIMAL_CONTEXT.sqrt(d)


def total(values) -> Decimal:
    """Sum an iterable of numbers in the engine context."""
    result = _ZERO
    for value in values:
        result = add(result, value)
    return result


def quantize(value: NumberLike, quantum: Decimal) -> Decimal:
    return dec(value).quantize(quantum, rounding=ROUND_HALF_UP, context=DECIMAL_CONTEXT)


# =============================================================================
# COMPARISONS
# =============================================================================

def compare(a: NumberLike, b: NumberLike) -> int:
    """Return -1, 0 or 1."""
    return int(DECIMAL_CONTEXT.compare(dec(a), dec(b)))


def gt(a: NumberLike, b: NumberLike) -> bool:
    return compare(a, b) > 0


def gte(a: NumberLike, b: NumberLike) -> bool:
    return compare(a, b) >= 0


def lt(a: NumberLike, b: NumberLike) -> bool:
    return compare(a, b) < 0


def lte(a: NumberLike, b: NumberLike) -> bool:
    return compare(a, b) <= 0


def eq(a: NumberLike, b: NumberLike) -> bool:
    return compare(a, b) == 0


def is_zero(value: NumberLike) -> bool:
    return dec(value).is_zero()


def max_of(a: NumberLike, b: NumberLike) -> Decimal:
    return DECIMAL_CONTEXT.max(dec(a), dec(b))


def min_of(a: NumberLike, b: NumberLike) -> Decimal:
    return DECIMAL_CONTEXT.min(dec(a), dec(b))


# =============================================================================
# SERIALIZATION BOUNDARY
# =============================================================================

_SERIALIZATION_CONTEXT = decimal.Context(prec=SERIALIZATION_DIGITS, rounding=ROUND_HALF_UP)


def to_num(value: NumberLike | None) -> float | None:
    """
    Convert to float for JSON payloads, rounded to 15 significant digits.

    None passes through so optional metrics serialize as null.
    """
    if value is None:
        return None
    rounded = _SERIALIZATION_CONTEXT.plus(dec(value))
    result = float(rounded)
    # Normalize -0.0
    return result + 0.0 if result == 0 else result
