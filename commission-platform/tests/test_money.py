"""
Tests for `domain/money.py`.

Covers contract rules:
- Floats never leak binary drift into Decimal arithmetic.
- Rounding is half-up to cents.
- Percentages live on a 0-100 scale.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from domain.money import (
    apply_percentage,
    complement_percentage,
    convert_to_usd,
    format_money,
    quantize_money,
    require_percentage,
    sum_money,
    to_decimal,
)


def test_to_decimal_routes_floats_through_str() -> None:
    """Verify 0.1 becomes Decimal('0.1') rather than its binary expansion."""

    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(0.1) + to_decimal(0.2) == Decimal("0.3")


@pytest.mark.parametrize("value", [True, None, [1]])
def test_to_decimal_rejects_non_numeric_types(value) -> None:
    with pytest.raises(TypeError):
        to_decimal(value)


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
def test_to_decimal_rejects_invalid_or_non_finite(value) -> None:
    with pytest.raises(ValueError):
        to_decimal(value)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2.675", Decimal("2.68")),
        ("2.665", Decimal("2.67")),
        ("0.005", Decimal("0.01")),
        ("0.004", Decimal("0.00")),
        (10, Decimal("10.00")),
    ],
)
def test_quantize_money_rounds_half_up(value, expected: Decimal) -> None:
    assert quantize_money(value) == expected


def test_apply_percentage_keeps_full_precision() -> None:
    """Verify intermediate results are not rounded."""

    assert apply_percentage(Decimal("10"), Decimal("33.33")) == Decimal("3.333")
    assert apply_percentage(Decimal("5000"), 70) == Decimal("3500")


@pytest.mark.parametrize("value", [-1, "100.01", 150])
def test_require_percentage_rejects_out_of_range(value) -> None:
    with pytest.raises(ValueError):
        require_percentage("split_pct", value)


def test_complement_percentage() -> None:
    assert complement_percentage(Decimal("70")) == Decimal("30")
    assert complement_percentage(Decimal("33.34")) == Decimal("66.66")


def test_sum_money_adds_exactly() -> None:
    assert sum_money(["0.10", "0.20", 0.3]) == Decimal("0.60")


@pytest.mark.parametrize(
    "amount, currency, expected",
    [
        (Decimal("1234.5"), "DOP", "RD$ 1,234.50"),
        (Decimal("1500"), "USD", "$ 1,500.00"),
        (Decimal("99.999"), "EUR", "€ 100.00"),
        (Decimal("10"), "cop", "COP 10.00"),
    ],
)
def test_format_money(amount: Decimal, currency: str, expected: str) -> None:
    assert format_money(amount, currency) == expected


def test_convert_to_usd_divides_by_rate() -> None:
    assert convert_to_usd(Decimal("5800"), "DOP", {"DOP": Decimal("58")}) == Decimal("100")


def test_convert_to_usd_returns_amount_when_rate_missing() -> None:
    """Verify a missing or zero rate leaves the amount unconverted."""

    assert convert_to_usd(Decimal("5800"), "DOP", {}) == Decimal("5800")
    assert convert_to_usd(Decimal("5800"), "DOP", {"DOP": 0}) == Decimal("5800")
    assert convert_to_usd(Decimal("42"), "usd", {}) == Decimal("42")
