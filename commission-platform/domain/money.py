"""
Domain: Money and percentage primitives (pure).

Rules implemented here:
- Amounts are fixed-point Decimals; binary floats never enter the arithmetic
  unconverted (they are routed through `str` first).
- Rounding is ROUND_HALF_UP to 2 decimal places and is applied only when an
  amount is persisted or displayed (`quantize_money`).
- Percentages are stored on a 0-100 scale, never 0-1.
- `apply_percentage` keeps full precision so proportional math across several
  shares does not compound rounding error.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Mapping, Union

logger = logging.getLogger(__name__)

Numeric = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
ONE_HUNDRED = Decimal("100")

_CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "DOP": "RD$",
    "EUR": "€",
    "MXN": "$",
}


def to_decimal(value: Numeric, *, name: str = "amount") -> Decimal:
    """
    Convert an incoming number into a Decimal without float drift.

    Floats are converted through their shortest repr (`str(0.1) == "0.1"`),
    so `to_decimal(0.1) == Decimal("0.1")` rather than the binary expansion.
    """

    if isinstance(value, bool):
        raise TypeError(f"{name} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"{name} is not a valid number: {value!r}") from exc
    else:
        raise TypeError(f"Unsupported {name} type: {type(value)!r}")

    if not result.is_finite():
        raise ValueError(f"{name} must be a finite number")
    return result


def quantize_money(value: Numeric) -> Decimal:
    """Round half-up to cents. Use only at persist/display boundaries."""

    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def require_percentage(name: str, value: Numeric) -> Decimal:
    """Validate a 0-100 percentage and return it as a Decimal."""

    pct = to_decimal(value, name=name)
    if pct < 0 or pct > ONE_HUNDRED:
        raise ValueError(f"{name} must be between 0 and 100, got {pct}")
    return pct


def apply_percentage(amount: Numeric, percentage: Numeric) -> Decimal:
    """
    amount × percentage / 100, unrounded.

    Callers quantize the result when it becomes a stored amount.
    """

    return to_decimal(amount) * to_decimal(percentage, name="percentage") / ONE_HUNDRED


def complement_percentage(percentage: Numeric) -> Decimal:
    """The share of 100 not covered by `percentage`."""

    return ONE_HUNDRED - require_percentage("percentage", percentage)


def sum_money(values) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return total


def format_money(amount: Numeric, currency: str = "USD") -> str:
    """
    Human-readable amount: symbol, space, thousands separator, 2 decimals.

    Example:
        format_money(Decimal("1234.5"), "DOP")
        # Returns "RD$ 1,234.50"
    """

    symbol = _CURRENCY_SYMBOLS.get(currency.upper(), currency.upper())
    return f"{symbol} {quantize_money(amount):,.2f}"


def convert_to_usd(amount: Numeric, currency: str, rates: Mapping[str, Numeric]) -> Decimal:
    """
    Convert an amount to USD with rates expressed as "1 USD = X currency".

    Returns the amount unconverted when no usable rate exists for the currency.
    """

    value = to_decimal(amount)
    code = currency.upper()
    if code == "USD":
        return value

    rate = rates.get(code)
    rate_value = to_decimal(rate, name="rate") if rate is not None else ZERO
    if rate_value == 0:
        logger.warning(
            f"No exchange rate for {code}; returning amount unconverted",
            extra={"currency": code, "amount": str(value)},
        )
        return value

    return value / rate_value


__all__ = [
    "CENT",
    "ONE_HUNDRED",
    "ZERO",
    "Numeric",
    "apply_percentage",
    "complement_percentage",
    "convert_to_usd",
    "format_money",
    "quantize_money",
    "require_percentage",
    "sum_money",
    "to_decimal",
]
