"""
Money and currency utilities using py-moneyed and Babel.

Catalog prices live in integer minor units (cents). Amounts handed to
collaborators (UI, invoices, payment provider) are major-unit Decimals
rounded to the currency precision. Every conversion between the two goes
through this module.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

# Common currencies for quick access
USD = Currency("USD")

# Default locale for formatting
DEFAULT_LOCALE = "en_US"


class MoneyHandler:
    """Central handler for money operations with proper error handling."""

    def __init__(self, default_currency: str = "USD", default_locale: str = DEFAULT_LOCALE) -> None:
        self.default_currency = self._validate_currency(default_currency)
        self.default_locale = self._validate_locale(default_locale)

    def _validate_currency(self, currency_code: str) -> Currency:
        """Validate and return Currency object."""
        try:
            return get_currency(currency_code.upper())
        except CurrencyDoesNotExist:
            raise ValueError(f"Invalid currency code: {currency_code}")

    def _validate_locale(self, locale_code: str) -> str:
        """Validate locale code."""
        try:
            Locale.parse(locale_code)
            return locale_code
        except (UnknownLocaleError, ValueError):
            return DEFAULT_LOCALE

    def create_money(self, amount: int | Decimal | str, currency: str | None = None) -> Money:
        """Create Money object with proper validation."""
        currency = currency or self.default_currency.code
        validated_currency = self._validate_currency(currency)

        if isinstance(amount, float):
            raise TypeError("Use Decimal or str for money amounts, not float")
        decimal_amount = Decimal(amount) if isinstance(amount, str) else Decimal(str(amount))

        return Money(amount=decimal_amount, currency=validated_currency)

    def format_money(self, money: Money, locale: str | None = None, **kwargs: Any) -> str:
        """Format Money object with locale-aware formatting."""
        locale = locale or self.default_locale
        validated_locale = self._validate_locale(locale)

        try:
            return format_currency(
                number=money.amount, currency=money.currency.code, locale=validated_locale, **kwargs
            )
        except (TypeError, ValueError):
            # Fallback to simple formatting if locale issues
            return f"{money.currency.code} {money.amount}"

    def get_currency_precision(self, currency_code: str) -> int:
        """Get decimal precision for a currency."""
        return get_currency_precision(currency_code.upper())

    def round_money(self, money: Money) -> Money:
        """Round Money to proper currency precision, halves away from zero."""
        precision = self.get_currency_precision(money.currency.code)
        rounded_amount = money.amount.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)
        return Money(amount=rounded_amount, currency=money.currency)

    def money_to_minor_units(self, money: Money) -> int:
        """Convert Money to minor units (e.g., cents for USD)."""
        precision = self.get_currency_precision(money.currency.code)
        rounded = self.round_money(money)
        return int(rounded.amount.scaleb(precision))

    def money_from_minor_units(self, minor_units: int | Decimal, currency: str | None = None) -> Money:
        """Create Money from minor units (e.g., cents). Fractional cents are kept."""
        code = currency or self.default_currency.code
        validated_currency = self._validate_currency(code)
        precision = self.get_currency_precision(code)
        amount = Decimal(minor_units).scaleb(-precision)
        return Money(amount=amount, currency=validated_currency)

    def minor_to_major(self, minor_units: int | Decimal, currency: str | None = None) -> Decimal:
        """Boundary conversion: minor units to a rounded major-unit Decimal."""
        money = self.money_from_minor_units(minor_units, currency)
        return self.round_money(money).amount

    def major_to_minor(self, amount: Decimal | int | str, currency: str | None = None) -> int:
        """Boundary conversion: major-unit amount to integer minor units."""
        return self.money_to_minor_units(self.create_money(amount, currency))

    def round_major(self, amount: Decimal | int | str, currency: str | None = None) -> Decimal:
        """Round a major-unit amount to the currency precision."""
        return self.round_money(self.create_money(amount, currency)).amount

    def to_dict(self, money: Money) -> dict[str, Any]:
        """Convert Money to dictionary for serialization."""
        return {
            "amount": str(money.amount),
            "currency": money.currency.code,
            "minor_units": self.money_to_minor_units(money),
        }


# Global instance for convenience
money_handler = MoneyHandler()


# Convenience functions
def create_money(amount: int | Decimal | str, currency: str = "USD") -> Money:
    """Create Money object with default handler."""
    return money_handler.create_money(amount, currency)


def format_money(money: Money, locale: str | None = None, **kwargs: Any) -> str:
    """Format Money with default handler."""
    return money_handler.format_money(money, locale, **kwargs)


def minor_to_major(minor_units: int | Decimal, currency: str = "USD") -> Decimal:
    """Convert minor units to a rounded major amount with default handler."""
    return money_handler.minor_to_major(minor_units, currency)


__all__ = [
    "MoneyHandler",
    "money_handler",
    "create_money",
    "format_money",
    "minor_to_major",
    "USD",
]
