"""Tests for fixed-point arithmetic and rounding direction."""

from decimal import Decimal

import pytest

from lendingpool.engine.fixed_point import (
    DECIMAL_MAX,
    UINT128_MAX,
    ZERO,
    ceil_int,
    checked_uint128,
    decimal_add,
    decimal_div,
    decimal_from_ratio,
    decimal_mul,
    decimal_sub,
    div_ceil,
    div_floor,
    floor_int,
    mul_ceil,
    mul_div_ceil,
    mul_div_floor,
    mul_floor,
    saturating_sub,
    to_decimal,
    truncate,
)
from lendingpool.errors import ArithmeticOverflow


class TestDecimalOperations:
    """Decimal results keep 18 fractional digits, truncated."""

    def test_ratio_truncates_to_18_digits(self):
        assert decimal_from_ratio(1, 3) == Decimal("0.333333333333333333")
        assert decimal_from_ratio(2, 3) == Decimal("0.666666666666666666")

    def test_multiplication_truncates(self):
        third = decimal_from_ratio(1, 3)
        assert decimal_mul(third, Decimal(3)) == Decimal("0.999999999999999999")

    def test_division_truncates(self):
        assert decimal_div(Decimal(2), Decimal(3)) == Decimal("0.666666666666666666")

    def test_add_and_sub(self):
        assert decimal_add(Decimal("0.1"), Decimal("0.2")) == Decimal("0.3")
        assert decimal_sub(Decimal("1"), Decimal("0.25")) == Decimal("0.75")

    def test_sub_underflow_raises(self):
        with pytest.raises(ArithmeticOverflow):
            decimal_sub(Decimal("0.1"), Decimal("0.2"))

    def test_saturating_sub_floors_at_zero(self):
        assert saturating_sub(Decimal("0.1"), Decimal("0.2")) == ZERO
        assert saturating_sub(Decimal("0.3"), Decimal("0.1")) == Decimal("0.2")

    def test_division_by_zero_raises(self):
        with pytest.raises(ArithmeticOverflow):
            decimal_div(Decimal(1), ZERO)
        with pytest.raises(ArithmeticOverflow):
            decimal_from_ratio(1, 0)

    def test_value_above_max_raises(self):
        with pytest.raises(ArithmeticOverflow):
            truncate(DECIMAL_MAX + 1)
        with pytest.raises(ArithmeticOverflow):
            decimal_mul(DECIMAL_MAX, Decimal(2))

    def test_to_decimal_avoids_float_artifacts(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal("0.75") == Decimal("0.75")


class TestIntegerRounding:
    """Conversions between amounts and Decimals round in a chosen direction."""

    def test_mul_floor_and_ceil(self):
        assert mul_floor(10, Decimal("0.15")) == 1
        assert mul_ceil(10, Decimal("0.15")) == 2
        assert mul_floor(10, Decimal("0.5")) == mul_ceil(10, Decimal("0.5")) == 5

    def test_div_floor_and_ceil(self):
        assert div_floor(10, Decimal(3)) == 3
        assert div_ceil(10, Decimal(3)) == 4
        assert div_floor(9, Decimal(3)) == div_ceil(9, Decimal(3)) == 3

    def test_mul_div_keeps_full_precision(self):
        index = Decimal("1.000000000000000001")
        # 10**18 * index / 10**6 has a fractional part only visible without truncation
        assert mul_div_floor(10 ** 18, index, 10 ** 6) == 10 ** 12
        assert mul_div_ceil(10 ** 18, index, 10 ** 6) == 10 ** 12 + 1

    def test_floor_and_ceil_int(self):
        assert floor_int(Decimal("2.9")) == 2
        assert ceil_int(Decimal("2.1")) == 3
        assert ceil_int(Decimal("2")) == 2

    def test_checked_uint128_bounds(self):
        assert checked_uint128(UINT128_MAX) == UINT128_MAX
        with pytest.raises(ArithmeticOverflow):
            checked_uint128(UINT128_MAX + 1)
        with pytest.raises(ArithmeticOverflow):
            checked_uint128(-1)
