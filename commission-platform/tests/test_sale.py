"""
Tests for `domain/sale.py` and `domain/commission.py`.

Covers contract rules:
- commission_amount = price × commission_pct / 100, rounded half-up.
- Cancellation is soft and happens once.
- Share status is a pure function of (paid_to_date, total_amount).
- The split pair always adds up to 100.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from domain.commission import BeneficiaryRole, CommissionShare, ShareStatus
from domain.sale import Sale


def test_close_derives_commission_amount() -> None:
    sale = Sale.close(price=Decimal("100000"), commission_pct=Decimal("5"))

    assert sale.commission_amount == Decimal("5000.00")
    assert sale.currency == "USD"
    assert sale.cancelled is False


def test_close_rounds_commission_half_up() -> None:
    """Verify 3.5% of 1234.57 (43.20995) rounds to 43.21."""

    sale = Sale.close(price=Decimal("1234.57"), commission_pct=Decimal("3.5"), currency="dop")

    assert sale.commission_amount == Decimal("43.21")
    assert sale.currency == "DOP"


@pytest.mark.parametrize("pct", [Decimal("-1"), Decimal("100.5")])
def test_close_rejects_percentage_out_of_range(pct: Decimal) -> None:
    with pytest.raises(ValueError):
        Sale.close(price=Decimal("1000"), commission_pct=pct)


def test_with_price_recomputes_commission() -> None:
    sale = Sale.close(price=Decimal("100000"), commission_pct=Decimal("5"))

    edited = sale.with_price(Decimal("80000"))
    repriced = sale.with_price(Decimal("80000"), Decimal("6"))

    assert edited.sale_id == sale.sale_id
    assert edited.commission_amount == Decimal("4000.00")
    assert repriced.commission_amount == Decimal("4800.00")


def test_cancel_sets_reason_and_timestamp_once() -> None:
    sale = Sale.close(price=Decimal("1000"), commission_pct=Decimal("5"))
    when = datetime(2025, 5, 1, 9, 30, tzinfo=timezone.utc)

    cancelled = sale.cancel("Buyer withdrew", when)

    assert cancelled.cancelled is True
    assert cancelled.cancel_reason == "Buyer withdrew"
    assert cancelled.cancelled_at == when
    assert sale.cancelled is False
    with pytest.raises(ValueError):
        cancelled.cancel("again", when)


def test_cancel_requires_utc_timestamp() -> None:
    sale = Sale.close(price=Decimal("1000"), commission_pct=Decimal("5"))

    with pytest.raises(ValueError):
        sale.cancel("naive", datetime(2025, 5, 1, 9, 30))
    with pytest.raises(ValueError):
        sale.cancel("offset", datetime(2025, 5, 1, 9, 30, tzinfo=timezone(timedelta(hours=-4))))


@pytest.mark.parametrize(
    "paid, total, expected",
    [
        (Decimal("0"), Decimal("100"), ShareStatus.PENDING),
        (Decimal("0.01"), Decimal("100"), ShareStatus.PARTIAL),
        (Decimal("99.99"), Decimal("100"), ShareStatus.PARTIAL),
        (Decimal("100"), Decimal("100"), ShareStatus.PAID),
        (Decimal("0"), Decimal("0"), ShareStatus.PENDING),
    ],
)
def test_share_status_derive(paid: Decimal, total: Decimal, expected: ShareStatus) -> None:
    assert ShareStatus.derive(paid, total) is expected


def _share(**overrides) -> CommissionShare:
    values = dict(
        share_id=uuid4(),
        sale_id=uuid4(),
        beneficiary_id="agent-17",
        role=BeneficiaryRole.SELLER,
        total_amount=Decimal("3500.00"),
        currency="USD",
        split_pct_self=Decimal("70"),
        split_pct_other=Decimal("30"),
    )
    values.update(overrides)
    return CommissionShare(**values)


def test_share_split_pair_must_add_up_to_100() -> None:
    with pytest.raises(ValueError):
        _share(split_pct_other=Decimal("20"))


def test_share_remaining_and_activity() -> None:
    share = _share(paid_to_date=Decimal("1400.00"), status=ShareStatus.PARTIAL)

    assert share.remaining == Decimal("2100.00")
    assert share.is_active is True
    assert _share(status=ShareStatus.CANCELLED).is_active is False
