"""Tests for Q64.64 helpers."""

from decimal import Decimal

import pytest

from powerlend.errors import DomainError
from powerlend.math.fixed_point import (
    ONE,
    div_q64,
    from_base_units,
    from_q64,
    log2_q64,
    mul_div,
    mul_div_up,
    mul_q64,
    to_base_units,
    to_q64,
)


class TestConversion:
    def test_to_q64_exact_for_binary_fractions(self) -> None:
        assert to_q64("1.5") == ONE + ONE // 2
        assert to_q64(Decimal("0.25")) == ONE // 4

    def test_to_q64_truncates(self) -> None:
        assert to_q64("0.1") == ONE // 10

    def test_round_trip_display(self) -> None:
        assert from_q64(to_q64("2.5")) == Decimal("2.5")

    def test_base_units(self) -> None:
        assert to_base_units("1.5", 18) == 15 * 10 ** 17
        assert to_base_units("2", 6) == 2_000_000
        assert from_base_units(2_500_000, 6) == Decimal("2.5")


class TestArithmetic:
    def test_mul_q64(self) -> None:
        assert mul_q64(to_q64("1.5"), to_q64("2")) == to_q64("3")

    def test_div_q64(self) -> None:
        assert div_q64(to_q64("3"), to_q64("2")) == to_q64("1.5")

    def test_div_by_zero(self) -> None:
        with pytest.raises(DomainError):
            div_q64(ONE, 0)

    def test_mul_div_floors(self) -> None:
        assert mul_div(7, 3, 2) == 10

    def test_mul_div_up_ceils(self) -> None:
        assert mul_div_up(7, 3, 2) == 11
        assert mul_div_up(6, 3, 2) == 9

    def test_mul_div_zero_denominator(self) -> None:
        with pytest.raises(DomainError):
            mul_div(1, 1, 0)


class TestLog2:
    def test_log2_of_one(self) -> None:
        assert log2_q64(ONE) == 0

    def test_log2_of_powers_of_two(self) -> None:
        assert log2_q64(2 * ONE) == ONE
        assert log2_q64(8 * ONE) == 3 * ONE

    def test_log2_of_one_and_a_half(self) -> None:
        # log2(1.5) = 0.584962500721156...
        expected = to_q64("0.584962500721156181453738943947816508759814407847")
        assert abs(log2_q64(to_q64("1.5")) - expected) < ONE >> 40

    def test_log2_below_one_rejected(self) -> None:
        with pytest.raises(DomainError):
            log2_q64(ONE - 1)
