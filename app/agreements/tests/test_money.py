"""
Tests for the Money value type.

Tests cover:
- Parsing decimal form input into minor units
- Currency-checked arithmetic and comparison
- Banker's rounding for percentages
- Splits that always sum to the original amount
- Display formatting
"""

from decimal import Decimal

import pytest

from agreements.exceptions import CurrencyMismatch, InvalidAmount
from agreements.money import (
    MAX_AMOUNT_MINOR,
    Money,
    ensure_storable,
    minor_unit_exponent,
    normalize_currency,
    sum_money,
)


# =============================================================================
# Construction
# =============================================================================


class TestMoneyConstruction:
    """Tests for building Money values."""

    def test_normalizes_currency_to_upper_case(self):
        """Should upper-case the currency code."""
        assert Money(100, "usd").currency == "USD"

    def test_rejects_invalid_currency_code(self):
        """Should raise InvalidAmount for a code that is not three letters."""
        with pytest.raises(InvalidAmount):
            Money(100, "US")

    def test_rejects_non_integer_amount(self):
        """Should raise InvalidAmount for a float amount."""
        with pytest.raises(InvalidAmount):
            Money(1.5, "USD")

    def test_rejects_boolean_amount(self):
        """Booleans are ints in Python but never valid amounts."""
        with pytest.raises(InvalidAmount):
            Money(True, "USD")

    def test_zero(self):
        """Should create a zero amount in the given currency."""
        zero = Money.zero("EUR")

        assert zero.amount_minor == 0
        assert zero.currency == "EUR"
        assert zero.is_zero()

    def test_minor_unit_exponents(self):
        """Should know zero- and three-decimal currencies."""
        assert minor_unit_exponent("USD") == 2
        assert minor_unit_exponent("jpy") == 0
        assert minor_unit_exponent("KWD") == 3

    def test_normalize_currency_strips_whitespace(self):
        assert normalize_currency(" eur ") == "EUR"


# =============================================================================
# Parsing
# =============================================================================


class TestMoneyParse:
    """Tests for Money.parse()."""

    @pytest.mark.parametrize(
        "value,expected_minor",
        [
            ("150.00", 15000),
            ("150", 15000),
            ("0.01", 1),
            ("1,000.50", 100050),
            ("$600.00", 60000),
            (" 42.5 ", 4250),
            (250, 25000),
            (Decimal("19.99"), 1999),
        ],
    )
    def test_parses_valid_input(self, value, expected_minor):
        """Should convert major-unit input to minor units."""
        assert Money.parse(value, "USD").amount_minor == expected_minor

    @pytest.mark.parametrize(
        "value",
        ["-1.00", "abc", "", "NaN", "Infinity", "1.005", "1e999999", None, True, 600.0],
    )
    def test_rejects_invalid_input(self, value):
        """Should raise InvalidAmount for negative, non-numeric, float or over-precise input."""
        with pytest.raises(InvalidAmount):
            Money.parse(value, "USD")

    def test_zero_decimal_currency(self):
        """JPY has no minor unit."""
        amount = Money.parse("500", "JPY")

        assert amount.amount_minor == 500
        with pytest.raises(InvalidAmount):
            Money.parse("500.5", "JPY")

    def test_three_decimal_currency(self):
        """KWD has three fractional digits."""
        assert Money.parse("1.234", "KWD").amount_minor == 1234

    def test_error_details_include_value(self):
        """Should report the rejected value in details."""
        with pytest.raises(InvalidAmount) as exc_info:
            Money.parse("12.345", "USD")

        assert exc_info.value.error_code == "INVALID_AMOUNT"
        assert exc_info.value.details["value"] == "12.345"
        assert exc_info.value.details["currency"] == "USD"

    def test_largest_storable_amount(self):
        """The largest signed 64-bit value parses; one cent more does not."""
        assert Money.parse("92233720368547758.07", "USD").amount_minor == MAX_AMOUNT_MINOR

        with pytest.raises(InvalidAmount) as exc_info:
            Money.parse("92233720368547758.08", "USD")

        assert exc_info.value.details["max_amount_minor"] == MAX_AMOUNT_MINOR

    def test_ensure_storable(self):
        assert ensure_storable(Money(-MAX_AMOUNT_MINOR, "USD")).amount_minor == -MAX_AMOUNT_MINOR
        with pytest.raises(InvalidAmount):
            ensure_storable(Money(MAX_AMOUNT_MINOR, "USD") + Money(1, "USD"))


# =============================================================================
# Arithmetic and Comparison
# =============================================================================


class TestMoneyArithmetic:
    """Tests for currency-checked arithmetic."""

    def test_add_and_subtract(self):
        a = Money(60000, "USD")
        b = Money(40000, "USD")

        assert a + b == Money(100000, "USD")
        assert a - b == Money(20000, "USD")
        assert -a == Money(-60000, "USD")

    def test_add_currency_mismatch(self):
        """Should raise CurrencyMismatch naming both currencies."""
        with pytest.raises(CurrencyMismatch) as exc_info:
            Money(100, "USD") + Money(100, "EUR")

        assert exc_info.value.error_code == "CURRENCY_MISMATCH"
        assert exc_info.value.details == {"left_currency": "USD", "right_currency": "EUR"}

    def test_compare(self):
        small = Money(100, "USD")
        large = Money(200, "USD")

        assert small.compare(large) == -1
        assert large.compare(small) == 1
        assert small.compare(Money(100, "USD")) == 0
        assert small < large
        assert large >= small

    def test_compare_currency_mismatch(self):
        with pytest.raises(CurrencyMismatch):
            Money(100, "USD").compare(Money(100, "GBP"))

    def test_sum_money(self):
        amounts = [Money(100, "USD"), Money(250, "USD"), Money(650, "USD")]

        assert sum_money(amounts, "USD") == Money(1000, "USD")
        assert sum_money([], "USD") == Money(0, "USD")

    def test_negative_helpers(self):
        assert Money(-1, "USD").is_negative()
        assert not Money(0, "USD").is_negative()


class TestMultiplyByPercent:
    """Tests for Money.multiply_by_percent() banker's rounding."""

    @pytest.mark.parametrize(
        "amount_minor,percent,expected_minor",
        [
            (100000, 30, 30000),
            (100000, "2.5", 2500),
            (1001, 50, 500),  # 500.5 rounds to even
            (1003, 50, 502),  # 501.5 rounds to even
            (1, 50, 0),  # 0.5 rounds to even
        ],
    )
    def test_rounds_half_even(self, amount_minor, percent, expected_minor):
        result = Money(amount_minor, "USD").multiply_by_percent(percent)

        assert result == Money(expected_minor, "USD")

    def test_rejects_non_numeric_percent(self):
        with pytest.raises(InvalidAmount):
            Money(100, "USD").multiply_by_percent("ten")


# =============================================================================
# Splits
# =============================================================================


def _even_percents(count: int) -> list[Decimal]:
    """Percents with two decimals that sum to exactly 100."""
    share = (Decimal(100) / count).quantize(Decimal("0.01"))
    return [share] * (count - 1) + [Decimal(100) - share * (count - 1)]


class TestSplits:
    """Tests for split_by_percents() and split_evenly()."""

    def test_split_by_percents(self):
        """Should split $1000.00 into $600.00 and $400.00."""
        shares = Money(100000, "USD").split_by_percents([60, 40])

        assert shares == [Money(60000, "USD"), Money(40000, "USD")]

    def test_split_residual_goes_to_last_share(self):
        """Rounding leftovers should land on the last share."""
        shares = Money(100, "USD").split_by_percents(
            [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        )

        assert [s.amount_minor for s in shares] == [33, 33, 34]

    def test_split_evenly_floors_and_keeps_residual(self):
        shares = Money(1000, "USD").split_evenly(3)

        assert [s.amount_minor for s in shares] == [333, 333, 334]

    def test_split_by_percents_requires_sum_of_100(self):
        with pytest.raises(InvalidAmount):
            Money(100, "USD").split_by_percents([50, 40])

    def test_split_by_percents_rejects_negative_percent(self):
        with pytest.raises(InvalidAmount):
            Money(100, "USD").split_by_percents([120, -20])

    def test_split_by_percents_rejects_empty(self):
        with pytest.raises(InvalidAmount):
            Money(100, "USD").split_by_percents([])

    @pytest.mark.parametrize("count", [0, 101])
    def test_split_evenly_rejects_count_out_of_range(self, count):
        with pytest.raises(InvalidAmount):
            Money(100, "USD").split_evenly(count)

    def test_split_rejects_negative_amount(self):
        with pytest.raises(InvalidAmount):
            Money(-100, "USD").split_evenly(2)

    def test_shares_always_sum_to_total(self):
        """For any total and 1-100 shares, shares are non-negative and sum exactly."""
        for total_minor in (0, 1, 99, 100000, 123457):
            total = Money(total_minor, "USD")
            for count in range(1, 101):
                for shares in (
                    total.split_evenly(count),
                    total.split_by_percents(_even_percents(count)),
                ):
                    assert len(shares) == count
                    assert all(share.amount_minor >= 0 for share in shares)
                    assert sum(share.amount_minor for share in shares) == total_minor


# =============================================================================
# Display
# =============================================================================


class TestMoneyDisplay:
    """Tests for formatting."""

    def test_format(self):
        assert Money(15000, "USD").format() == "150.00 USD"
        assert str(Money(5, "USD")) == "0.05 USD"

    def test_format_zero_and_three_decimal_currencies(self):
        assert Money(500, "JPY").format() == "500 JPY"
        assert Money(1234, "KWD").format() == "1.234 KWD"

    def test_to_decimal(self):
        assert Money(100050, "USD").to_decimal() == Decimal("1000.50")
