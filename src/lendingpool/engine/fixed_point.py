"""Fixed-point arithmetic for rates, indices and token amounts.

Key Concepts:
- Rates and indices are Decimals with 18 fractional digits, truncated after every operation
- Token amounts are ints bounded by the 128-bit unsigned range
- Scaled amounts carry SCALING_FACTOR extra digits: real = scaled * index / SCALING_FACTOR
"""

from decimal import (
    ROUND_CEILING,
    ROUND_DOWN,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
)
from typing import Union

from ..errors import ArithmeticOverflow

DecimalLike = Union[Decimal, float, str, int]

UINT128_MAX = 2 ** 128 - 1
DECIMAL_PLACES = 18
DECIMAL_FRACTIONAL = Decimal(1).scaleb(-DECIMAL_PLACES)
DECIMAL_MAX = Decimal(UINT128_MAX).scaleb(-DECIMAL_PLACES)

SCALING_FACTOR = 1_000_000
SECONDS_PER_YEAR = 31_536_000

ZERO = Decimal(0)
ONE = Decimal(1)

# Wide enough that products of two bounded values are exact before truncation
_CONTEXT = Context(
    prec=100,
    rounding=ROUND_DOWN,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)


def to_decimal(value: DecimalLike) -> Decimal:
    """Convert a numeric value to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def truncate(value: Decimal) -> Decimal:
    """
    Truncate a Decimal to 18 fractional digits and check its bounds.

    Raises:
        ArithmeticOverflow: If the value is negative or above DECIMAL_MAX
    """
    if value < 0 or value > DECIMAL_MAX:
        raise ArithmeticOverflow(f"Decimal value out of range: {value}")
    return value.quantize(DECIMAL_FRACTIONAL, rounding=ROUND_DOWN, context=_CONTEXT)


def decimal_add(a: Decimal, b: Decimal) -> Decimal:
    return truncate(_CONTEXT.add(a, b))


def decimal_sub(a: Decimal, b: Decimal) -> Decimal:
    """Subtract, raising ArithmeticOverflow on underflow."""
    return truncate(_CONTEXT.subtract(a, b))


def saturating_sub(a: Decimal, b: Decimal) -> Decimal:
    if b >= a:
        return ZERO
    return truncate(_CONTEXT.subtract(a, b))


def decimal_mul(a: Decimal, b: Decimal) -> Decimal:
    return truncate(_CONTEXT.multiply(a, b))


def decimal_div(a: Decimal, b: Decimal) -> Decimal:
    if b == 0:
        raise ArithmeticOverflow("Division by zero")
    return truncate(_CONTEXT.divide(a, b))


def decimal_from_ratio(numerator: int, denominator: int) -> Decimal:
    """Build the Decimal numerator / denominator from two ints."""
    if denominator == 0:
        raise ArithmeticOverflow("Division by zero")
    return truncate(_CONTEXT.divide(Decimal(numerator), Decimal(denominator)))


def checked_uint128(value: int, name: str = "amount") -> int:
    """
    Ensure an int fits the unsigned 128-bit range.

    Raises:
        ArithmeticOverflow: If the value is negative or too large
    """
    if value < 0:
        raise ArithmeticOverflow(f"{name} underflow: {value}")
    if value > UINT128_MAX:
        raise ArithmeticOverflow(f"{name} overflow: {value}")
    return value


def mul_floor(amount: int, factor: Decimal) -> int:
    """amount * factor rounded down to an int."""
    product = _CONTEXT.multiply(Decimal(amount), factor)
    return int(product.to_integral_value(rounding=ROUND_DOWN, context=_CONTEXT))


def mul_ceil(amount: int, factor: Decimal) -> int:
    """amount * factor rounded up to an int."""
    product = _CONTEXT.multiply(Decimal(amount), factor)
    return int(product.to_integral_value(rounding=ROUND_CEILING, context=_CONTEXT))


def div_floor(amount: int, divisor: Decimal) -> int:
    """amount / divisor rounded down to an int."""
    if divisor == 0:
        raise ArithmeticOverflow("Division by zero")
    quotient = _CONTEXT.divide(Decimal(amount), divisor)
    return int(quotient.to_integral_value(rounding=ROUND_DOWN, context=_CONTEXT))


def div_ceil(amount: int, divisor: Decimal) -> int:
    """amount / divisor rounded up to an int."""
    if divisor == 0:
        raise ArithmeticOverflow("Division by zero")
    quotient = _CONTEXT.divide(Decimal(amount), divisor)
    return int(quotient.to_integral_value(rounding=ROUND_CEILING, context=_CONTEXT))


def value_of(amount: int, price: Decimal) -> Decimal:
    """
    Untruncated valuation amount * price.

    Valuations are only compared, never stored, so they are allowed to exceed
    DECIMAL_MAX.
    """
    return _CONTEXT.multiply(Decimal(amount), price)


def value_add(a: Decimal, b: Decimal) -> Decimal:
    return _CONTEXT.add(a, b)


def value_mul(value: Decimal, factor: Decimal) -> Decimal:
    return _CONTEXT.multiply(value, factor)


def value_div(value: Decimal, divisor: Decimal) -> Decimal:
    if divisor == 0:
        raise ArithmeticOverflow("Division by zero")
    return _CONTEXT.divide(value, divisor)


def mul_div_floor(amount: int, factor: Decimal, divisor: int) -> int:
    """amount * factor / divisor rounded down, without intermediate truncation."""
    if divisor == 0:
        raise ArithmeticOverflow("Division by zero")
    result = _CONTEXT.divide(_CONTEXT.multiply(Decimal(amount), factor), Decimal(divisor))
    return int(result.to_integral_value(rounding=ROUND_DOWN, context=_CONTEXT))


def mul_div_ceil(amount: int, factor: Decimal, divisor: int) -> int:
    """amount * factor / divisor rounded up, without intermediate truncation."""
    if divisor == 0:
        raise ArithmeticOverflow("Division by zero")
    result = _CONTEXT.divide(_CONTEXT.multiply(Decimal(amount), factor), Decimal(divisor))
    return int(result.to_integral_value(rounding=ROUND_CEILING, context=_CONTEXT))


def floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_DOWN, context=_CONTEXT))


def ceil_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING, context=_CONTEXT))
