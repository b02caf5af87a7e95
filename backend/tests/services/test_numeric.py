# backend/tests/services/test_numeric.py
"""
Unit tests for the Decimal arithmetic layer.

Test Coverage:
- dec: conversion rules (floats via repr, rejects bool/None/non-finite)
- div vs safe_div on a zero divisor
- sqrt on negative input
- to_num: serialization boundary (15 significant digits, None, -0.0)
"""

from decimal import Decimal

import pytest

from roi_engine.services import numeric


class TestDec:
    """Tests for dec()."""

    def test_float_uses_shortest_repr(self):
        assert numeric.dec(0.1) == Decimal("0.1")

    def test_int_and_string(self):
        assert numeric.dec(3) == Decimal("3")
        assert numeric.dec(" 1.25 ") == Decimal("1.25")

    def test_decimal_passes_through(self):
        value = Decimal("2.5")
        assert numeric.dec(value) is value

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", float("inf")])
    def test_rejects_non_numeric(self, value):
        with pytest.raises(ValueError):
            numeric.dec(value)


class TestArithmetic:
    """Tests for arithmetic helpers."""

    def test_add_is_exact(self):
        assert numeric.add(0.1, 0.2) == Decimal("0.3")

    def test_total(self):
        assert numeric.total([Decimal("0.6"), Decimal("0.3"), Decimal("0.1")]) == Decimal("1.0")

    def test_total_of_empty_is_zero(self):
        assert numeric.total([]) == Decimal("0")

    def test_div_by_zero_raises(self):
        with pytest.raises(ZeroDivisionError):
            numeric.div(1, 0)

    def test_safe_div_by_zero_returns_zero(self):
        assert numeric.safe_div(1, 0) == Decimal("0")

    def test_safe_div(self):
        assert numeric.safe_div(110, 100) == Decimal("1.1")

    def test_sqrt(self):
        assert numeric.sqrt(Decimal("0.01")) == Decimal("0.1")

    def test_sqrt_negative_raises(self):
        with pytest.raises(ValueError):
            numeric.sqrt(-1)

    def test_quantize_rounds_half_up(self):
        assert numeric.quantize(Decimal("1.005"), Decimal("0.01")) == Decimal("1.01")

    def test_comparisons(self):
        assert numeric.gt(2, 1)
        assert numeric.gte(1, 1)
        assert numeric.lt("0.5", 1)
        assert numeric.lte(1, "1.0")
        assert numeric.eq(Decimal("1.00"), 1)
        assert numeric.is_zero("0.000")
        assert numeric.max_of(1, 2) == Decimal("2")
        assert numeric.min_of(1, 2) == Decimal("1")


class TestToNum:
    """Tests for to_num()."""

    def test_none_passes_through(self):
        assert numeric.to_num(None) is None

    def test_rounds_to_fifteen_significant_digits(self):
        value = numeric.div(1, 3)
        assert numeric.to_num(value) == 0.333333333333333

    def test_negative_zero_is_normalized(self):
        result = numeric.to_num(Decimal("-0"))
        assert result == 0.0
        assert str(result) == "0.0"

    def test_returns_float(self):
        assert isinstance(numeric.to_num(Decimal("21.00")), float)
