"""
Money value type for escrow amounts.

All amounts are held as integers in the currency's minor unit (cents for
USD) to avoid floating-point precision issues. Arithmetic is only allowed
between equal currencies; anything else raises CurrencyMismatch.

Types:
    Money: Immutable monetary amount with ISO 4217 currency

Usage:
    from agreements.money import Money

    amount = Money.parse("150.00", "USD")
    print(amount)  # "150.00 USD"

    total = Money(100000, "USD")
    shares = total.split_by_percents([60, 40])
    # [Money(amount_minor=60000, currency='USD'), Money(amount_minor=40000, currency='USD')]

    fee = total.multiply_by_percent("2.5")  # banker's rounding to the cent
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from agreements.exceptions import CurrencyMismatch, InvalidAmount

if TYPE_CHECKING:
    from collections.abc import Sequence


# Minor unit exponents that differ from the ISO 4217 default of 2
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG", "RWF",
     "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}
)
THREE_DECIMAL_CURRENCIES = frozenset(
    {"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"}
)

MAX_SPLIT_COUNT = 100

# Largest amount a signed 64-bit amount column can hold
MAX_AMOUNT_MINOR = 2**63 - 1

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
# Thousands separators and a leading currency symbol are accepted from forms
_STRIP_INPUT = re.compile(r"[,\s$€£¥]")

HUNDRED = Decimal(100)


def minor_unit_exponent(currency: str) -> int:
    """Return the number of fractional digits for an ISO 4217 currency."""
    code = currency.upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def normalize_currency(currency: str) -> str:
    """
    Upper-case and validate an ISO 4217 currency code.

    Raises:
        InvalidAmount: If the code is not three letters
    """
    code = (currency or "").strip().upper()
    if not _CURRENCY_CODE.match(code):
        raise InvalidAmount(
            f"Invalid currency code: {currency!r}",
            details={"currency": currency},
        )
    return code


@dataclass(frozen=True)
class Money:
    """
    Represents a monetary amount.

    Attributes:
        amount_minor: Amount in the smallest currency unit (e.g., cents)
        currency: Upper-case ISO 4217 currency code

    Negative amounts exist only inside the ledger (release, refund and
    adjust entries). Everything exposed to callers is clamped or
    validated to be non-negative.
    """

    amount_minor: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        object.__setattr__(self, "currency", normalize_currency(self.currency))
        if isinstance(self.amount_minor, bool) or not isinstance(self.amount_minor, int):
            raise InvalidAmount(
                "amount_minor must be an integer",
                details={"amount_minor": repr(self.amount_minor)},
            )

    # ==========================================================================
    # Construction
    # ==========================================================================

    @classmethod
    def zero(cls, currency: str = "USD") -> Money:
        return cls(0, currency)

    @classmethod
    def parse(cls, value: str | int | Decimal, currency: str = "USD") -> Money:
        """
        Parse decimal input from a UI form into Money.

        Accepts "150.00", "150", "1,000.50" and "$600.00". Rejects
        non-numeric, non-finite and negative input, input with more
        fractional digits than the currency allows, and amounts above
        MAX_AMOUNT_MINOR.

        Args:
            value: Decimal string (or Decimal/int) in major units
            currency: ISO 4217 code

        Returns:
            Money in minor units

        Raises:
            InvalidAmount: If the value cannot be accepted
        """
        code = normalize_currency(currency)
        if isinstance(value, bool) or value is None:
            raise InvalidAmount(
                "Amount is required",
                details={"value": repr(value)},
            )
        if isinstance(value, float):
            raise InvalidAmount(
                f"Amount {value!r} must be a decimal string, not a float",
                details={"value": repr(value)},
            )

        if isinstance(value, Decimal):
            amount = value
        else:
            text = _STRIP_INPUT.sub("", str(value))
            try:
                amount = Decimal(text)
            except InvalidOperation:
                raise InvalidAmount(
                    f"Amount {value!r} is not a number",
                    details={"value": str(value)},
                )

        if not amount.is_finite():
            raise InvalidAmount(
                f"Amount {value!r} is not a finite number",
                details={"value": str(value)},
            )
        if amount < 0:
            raise InvalidAmount(
                f"Amount {value!r} must not be negative",
                details={"value": str(value)},
            )

        exponent = minor_unit_exponent(code)
        # Compared in major units first so scaling cannot overflow the context
        if amount > MAX_AMOUNT_MINOR or amount.scaleb(exponent) > MAX_AMOUNT_MINOR:
            raise InvalidAmount(
                f"Amount {value!r} is too large",
                details={"value": str(value), "max_amount_minor": MAX_AMOUNT_MINOR},
            )
        scaled = amount.scaleb(exponent)
        if scaled != scaled.to_integral_value():
            raise InvalidAmount(
                f"Amount {value!r} has more than {exponent} decimal places for {code}",
                details={"value": str(value), "currency": code},
            )
        return cls(int(scaled), code)

    # ==========================================================================
    # Arithmetic
    # ==========================================================================

    def _check_currency(self, other: Money, operation: str) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot {operation} Money and {type(other).__name__}")
        if self.currency != other.currency:
            raise CurrencyMismatch(self.currency, other.currency, operation)

    def add(self, other: Money) -> Money:
        self._check_currency(other, "add")
        return Money(self.amount_minor + other.amount_minor, self.currency)

    def subtract(self, other: Money) -> Money:
        self._check_currency(other, "subtract")
        return Money(self.amount_minor - other.amount_minor, self.currency)

    def negate(self) -> Money:
        return Money(-self.amount_minor, self.currency)

    def multiply_by_percent(self, percent: str | int | Decimal) -> Money:
        """
        Return ``percent``% of this amount, rounded half-to-even.

        Example:
            Money(1001, "USD").multiply_by_percent(50)  # Money(500, "USD")
        """
        try:
            factor = Decimal(str(percent))
        except InvalidOperation:
            raise InvalidAmount(
                f"Percent {percent!r} is not a number",
                details={"percent": str(percent)},
            )
        if not factor.is_finite():
            raise InvalidAmount(
                f"Percent {percent!r} is not a finite number",
                details={"percent": str(percent)},
            )
        share = (Decimal(self.amount_minor) * factor / HUNDRED).quantize(
            Decimal(1), rounding=ROUND_HALF_EVEN
        )
        return Money(int(share), self.currency)

    def split_by_percents(self, percents: Sequence[str | int | Decimal]) -> list[Money]:
        """
        Split this amount into shares by percentage.

        Every share but the last is the rounded percent share, capped at
        what is left; the last share takes the residual. The shares always
        sum to exactly this amount and none is negative.

        Raises:
            InvalidAmount: If there are no percents, any is negative,
                or they do not sum to 100
        """
        if not percents or len(percents) > MAX_SPLIT_COUNT:
            raise InvalidAmount(
                f"A split needs between 1 and {MAX_SPLIT_COUNT} shares",
                details={"count": len(percents)},
            )
        try:
            factors = [Decimal(str(p)) for p in percents]
        except InvalidOperation:
            raise InvalidAmount(
                "Split percents must be numbers",
                details={"percents": [str(p) for p in percents]},
            )
        if any(not f.is_finite() or f < 0 for f in factors):
            raise InvalidAmount(
                "Split percents must be non-negative numbers",
                details={"percents": [str(p) for p in percents]},
            )
        if sum(factors) != HUNDRED:
            raise InvalidAmount(
                f"Split percents must sum to 100, got {sum(factors)}",
                details={"percents": [str(p) for p in percents]},
            )
        if self.amount_minor < 0:
            raise InvalidAmount(
                "Cannot split a negative amount",
                details={"amount_minor": self.amount_minor},
            )

        shares: list[Money] = []
        remaining = self.amount_minor
        for factor in factors[:-1]:
            share = min(self.multiply_by_percent(factor).amount_minor, remaining)
            shares.append(Money(share, self.currency))
            remaining -= share
        shares.append(Money(remaining, self.currency))
        return shares

    def split_evenly(self, count: int) -> list[Money]:
        """
        Split this amount into ``count`` equal shares.

        Shares are floored to the minor unit; the residual goes to the
        last share.

        Raises:
            InvalidAmount: If count is outside 1..100 or the amount is negative
        """
        if count < 1 or count > MAX_SPLIT_COUNT:
            raise InvalidAmount(
                f"A split needs between 1 and {MAX_SPLIT_COUNT} shares",
                details={"count": count},
            )
        if self.amount_minor < 0:
            raise InvalidAmount(
                "Cannot split a negative amount",
                details={"amount_minor": self.amount_minor},
            )
        base = self.amount_minor // count
        residual = self.amount_minor - base * count
        shares = [Money(base, self.currency) for _ in range(count)]
        shares[-1] = Money(base + residual, self.currency)
        return shares

    # ==========================================================================
    # Comparison
    # ==========================================================================

    def is_zero(self) -> bool:
        return self.amount_minor == 0

    def is_negative(self) -> bool:
        return self.amount_minor < 0

    def compare(self, other: Money) -> int:
        """Return -1, 0 or 1 as this amount is less than, equal to or greater than ``other``."""
        self._check_currency(other, "compare")
        return (self.amount_minor > other.amount_minor) - (self.amount_minor < other.amount_minor)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __neg__(self) -> Money:
        return self.negate()

    def __lt__(self, other: Money) -> bool:
        return self.compare(other) < 0

    def __le__(self, other: Money) -> bool:
        return self.compare(other) <= 0

    def __gt__(self, other: Money) -> bool:
        return self.compare(other) > 0

    def __ge__(self, other: Money) -> bool:
        return self.compare(other) >= 0

    # ==========================================================================
    # Display
    # ==========================================================================

    def to_decimal(self) -> Decimal:
        """Return the amount in major units (e.g., Decimal('150.00'))."""
        exponent = minor_unit_exponent(self.currency)
        return Decimal(self.amount_minor).scaleb(-exponent).quantize(
            Decimal(1).scaleb(-exponent)
        )

    def format(self) -> str:
        return f"{self.to_decimal()} {self.currency}"

    def __str__(self) -> str:
        """Format as currency string (e.g., '150.00 USD')."""
        return self.format()


def ensure_storable(amount: Money) -> Money:
    """
    Return ``amount`` if it fits a 64-bit amount column.

    Raises:
        InvalidAmount: If the magnitude exceeds MAX_AMOUNT_MINOR
    """
    if abs(amount.amount_minor) > MAX_AMOUNT_MINOR:
        raise InvalidAmount(
            f"Amount {amount} is too large",
            details={
                "amount_minor": amount.amount_minor,
                "max_amount_minor": MAX_AMOUNT_MINOR,
            },
        )
    return amount


def sum_money(amounts: Sequence[Money], currency: str) -> Money:
    """Sum Money values, starting from zero in ``currency``."""
    total = Money.zero(currency)
    for amount in amounts:
        total = total + amount
    return total


__all__ = [
    "Money",
    "MAX_AMOUNT_MINOR",
    "MAX_SPLIT_COUNT",
    "ensure_storable",
    "minor_unit_exponent",
    "normalize_currency",
    "sum_money",
]
