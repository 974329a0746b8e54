"""
Tests for `services/history_service.py`.

Covers contract rules:
- Slices of one applied payment regroup into one event with the applied amount.
- Notes from several slices are merged, receipts take the first non-null.
- Events are listed newest first.
- Cancelled sales keep their history unless configured otherwise.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from domain.ledger import DistributionMeta, PaymentLedgerEntry, PaymentType
from services.history_service import consolidate, get_consolidated_history, total_paid
from services.payment_distributor import PaymentRequest, apply_payment
from services.reconciler import cancel_sale
from services.settings import EngineSettings

REGISTERED = datetime(2025, 3, 1, 14, 0, 0, tzinfo=timezone.utc)


def _entry(amount, notes=None, receipt_ref=None, registered_at=REGISTERED, payment_date=date(2025, 3, 1)):
    return PaymentLedgerEntry(
        entry_id=uuid4(),
        share_id=uuid4(),
        sale_id=uuid4(),
        amount=Decimal(amount),
        currency="USD",
        payment_type=PaymentType.PARTIAL,
        payment_date=payment_date,
        registered_at=registered_at,
        distribution_meta=DistributionMeta(
            split_pct_used=Decimal("50"),
            registered_at=registered_at,
            batch_id=uuid4(),
        ),
        receipt_ref=receipt_ref,
        notes=notes,
    )


def test_history_round_trips_applied_payments(built_sale, store, clock, settings) -> None:
    applied = [Decimal("2000.00"), Decimal("1000.00"), Decimal("333.33")]
    for amount in applied:
        apply_payment(
            store,
            PaymentRequest(
                sale_id=built_sale.sale_id,
                amount=amount,
                payment_type=PaymentType.PARTIAL,
                payment_date=date(2025, 3, 1),
                notes=f"Installment {amount}",
            ),
            settings=settings,
            clock=clock,
        )

    events = get_consolidated_history(store, built_sale.sale_id, settings=settings)

    assert [e.amount for e in events] == list(reversed(applied))
    assert all(e.entry_count == 2 for e in events)
    assert events[0].notes == "Installment 333.33"
    assert total_paid(events) == Decimal("3333.33")


def test_consolidate_merges_distinct_notes() -> None:
    events = consolidate([
        _entry("10.00", notes="Wire from attorney"),
        _entry("5.00", notes="Wire from attorney"),
        _entry("5.00", notes="Partial refund adjusted"),
        _entry("1.00", notes="  "),
    ])

    assert len(events) == 1
    assert events[0].amount == Decimal("21.00")
    assert events[0].notes == "Wire from attorney | Partial refund adjusted"


def test_consolidate_takes_first_receipt() -> None:
    events = consolidate([
        _entry("10.00"),
        _entry("5.00", receipt_ref="receipts/1.pdf"),
        _entry("5.00", receipt_ref="receipts/2.pdf"),
    ])

    assert events[0].receipt_ref == "receipts/1.pdf"
    assert events[0].notes is None


def test_consolidate_keeps_same_day_payments_apart() -> None:
    """Two payments on the same business date differ by registered_at."""

    later = datetime(2025, 3, 1, 16, 0, 0, tzinfo=timezone.utc)
    events = consolidate([
        _entry("10.00"),
        _entry("20.00", registered_at=later),
        _entry("20.00", registered_at=later),
    ])

    assert [e.amount for e in events] == [Decimal("40.00"), Decimal("10.00")]
    assert events[0].registered_at == later


def test_consolidate_empty_ledger() -> None:
    assert consolidate([]) == []
    assert total_paid([]) == Decimal("0.00")


def test_cancelled_sale_history_visibility(built_sale, store, clock, settings) -> None:
    apply_payment(
        store,
        PaymentRequest(
            sale_id=built_sale.sale_id,
            amount=Decimal("500.00"),
            payment_type=PaymentType.PARTIAL,
            payment_date=date(2025, 3, 1),
        ),
        settings=settings,
        clock=clock,
    )
    cancel_sale(store, built_sale.sale_id, "Buyer withdrew")

    assert len(get_consolidated_history(store, built_sale.sale_id, settings=settings)) == 1
    hidden = EngineSettings(hide_cancelled_sale_history=True)
    assert get_consolidated_history(store, built_sale.sale_id, settings=hidden) == []
