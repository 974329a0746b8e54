"""
Tests for `services/payment_distributor.py`.

Covers contract rules:
- Σ slices == applied amount exactly; the last share absorbs rounding.
- Overpayment is rejected as a whole and writes nothing.
- All slices of one payment share registered_at and batch_id.
- Idempotency keys make retries safe.
- Concurrent payments never push a sale past its commission.
- A commit that loses a race is retried, then given up on without writing.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from domain.commission import Beneficiary, BeneficiaryRole, CommissionShare, ShareStatus
from domain.errors import (
    ConcurrentModificationError,
    DocumentsIncomplete,
    IdempotencyConflictError,
    InvalidPaymentError,
    NoActiveSharesError,
    OverpaymentError,
    SaleNotFoundError,
)
from domain.expediente import ExpedienteRequirement
from domain.ledger import PaymentType
from domain.sale import Sale
from services.payment_distributor import (
    PaymentRequest,
    apply_payment,
    next_registration_timestamp,
    plan_slices,
    quote_payment_amount,
)
from services.reconciler import cancel_sale
from services.settings import EngineSettings
from services.share_builder import build_shares, get_shares


def _request(sale_id, amount, payment_type=PaymentType.PARTIAL, payment_date=date(2025, 3, 1), **extra):
    return PaymentRequest(
        sale_id=sale_id,
        amount=Decimal(amount),
        payment_type=payment_type,
        payment_date=payment_date,
        **extra,
    )


def test_commission_lifecycle_scenario(built_sale, store, clock, settings) -> None:
    """100,000 USD at 5% split 70/30: pay 2000, pay 1000, reject overpay, settle."""

    first = apply_payment(store, _request(built_sale.sale_id, "2000.00"), settings=settings, clock=clock)
    assert [e.amount for e in first] == [Decimal("1400.00"), Decimal("600.00")]
    assert [e.distribution_meta.split_pct_used for e in first] == [Decimal("70"), Decimal("30")]

    apply_payment(
        store,
        _request(built_sale.sale_id, "1000.00", payment_date=date(2025, 3, 15)),
        settings=settings,
        clock=clock,
    )
    seller, house = get_shares(store, built_sale.sale_id)
    assert (seller.paid_to_date, house.paid_to_date) == (Decimal("2100.00"), Decimal("900.00"))
    assert seller.status is ShareStatus.PARTIAL
    assert seller.last_payment_at == date(2025, 3, 15)

    with pytest.raises(OverpaymentError) as exc:
        apply_payment(store, _request(built_sale.sale_id, "2000.01"), settings=settings, clock=clock)
    assert exc.value.remaining == Decimal("2000.00")
    assert len(store.list_ledger(built_sale.sale_id)) == 4

    apply_payment(
        store,
        _request(built_sale.sale_id, "2000.00", payment_type=PaymentType.TOTAL),
        settings=settings,
        clock=clock,
    )
    shares = get_shares(store, built_sale.sale_id)
    assert [s.paid_to_date for s in shares] == [Decimal("3500.00"), Decimal("1500.00")]
    assert all(s.status is ShareStatus.PAID for s in shares)


def test_slices_share_batch_metadata(built_sale, store, clock, settings) -> None:
    entries = apply_payment(
        store,
        _request(built_sale.sale_id, "500.00", notes="Wire 0042", receipt_ref="receipts/42.pdf", recorded_by="admin-2"),
        settings=settings,
        clock=clock,
    )

    assert len({e.registered_at for e in entries}) == 1
    assert len({e.distribution_meta.batch_id for e in entries}) == 1
    assert all(e.registered_at == clock() for e in entries)
    assert all(e.notes == "Wire 0042" and e.receipt_ref == "receipts/42.pdf" for e in entries)
    assert all(e.recorded_by == "admin-2" for e in entries)


def test_three_way_split_absorbs_rounding_in_last_share(store, clock, settings) -> None:
    sale = Sale.close(price=Decimal("2000"), commission_pct=Decimal("5"))
    build_shares(
        store,
        sale,
        [
            Beneficiary(BeneficiaryRole.SELLER, "agent-1", Decimal("33.33")),
            Beneficiary(BeneficiaryRole.LISTER, "agent-2", Decimal("33.33")),
            Beneficiary(BeneficiaryRole.HOUSE, "office-1", Decimal("33.34")),
        ],
        settings=settings,
    )

    entries = apply_payment(store, _request(sale.sale_id, "10.00"), settings=settings, clock=clock)

    assert [e.amount for e in entries] == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]
    assert sum(e.amount for e in entries) == Decimal("10.00")


@pytest.mark.parametrize("amount", ["0.01", "0.03", "1.00", "77.77", "99.99", "100.00"])
def test_slices_always_sum_to_amount(store, clock, settings, amount: str) -> None:
    sale = Sale.close(price=Decimal("2000"), commission_pct=Decimal("5"))
    build_shares(
        store,
        sale,
        [
            Beneficiary(BeneficiaryRole.SELLER, "agent-1", Decimal("33.33")),
            Beneficiary(BeneficiaryRole.LISTER, "agent-2", Decimal("33.33")),
            Beneficiary(BeneficiaryRole.HOUSE, "office-1", Decimal("33.34")),
        ],
        settings=settings,
    )

    entries = apply_payment(store, _request(sale.sale_id, amount), settings=settings, clock=clock)

    assert sum(e.amount for e in entries) == Decimal(amount)
    for share in get_shares(store, sale.sale_id):
        assert Decimal("0") <= share.paid_to_date <= share.total_amount


def _share(split: str, total: str, paid: str = "0") -> CommissionShare:
    split_pct = Decimal(split)
    return CommissionShare(
        share_id=uuid4(),
        sale_id=uuid4(),
        beneficiary_id=f"b-{split}",
        role=BeneficiaryRole.SELLER,
        total_amount=Decimal(total),
        currency="USD",
        split_pct_self=split_pct,
        split_pct_other=Decimal("100") - split_pct,
        paid_to_date=Decimal(paid),
    )


def test_plan_slices_moves_overflow_to_shares_with_headroom() -> None:
    """Verify a nearly paid share is capped and the excess lands elsewhere."""

    shares = [_share("70", "70.00"), _share("30", "30.00", paid="29.99")]

    slices = plan_slices(shares, Decimal("70.01"))

    assert slices == [Decimal("70.00"), Decimal("0.01")]


def test_plan_slices_rejects_more_than_remaining() -> None:
    with pytest.raises(OverpaymentError):
        plan_slices([_share("100", "10.00", paid="5.00")], Decimal("5.01"))


def test_next_registration_timestamp_is_strictly_increasing(built_sale, store, clock, settings) -> None:
    entries = apply_payment(store, _request(built_sale.sale_id, "100.00"), settings=settings, clock=clock)

    later = next_registration_timestamp(entries, clock())
    assert later == clock() + timedelta(microseconds=1)

    second = apply_payment(store, _request(built_sale.sale_id, "100.00"), settings=settings, clock=clock)
    assert second[0].registered_at > entries[0].registered_at


@pytest.mark.parametrize("amount", ["0", "-5.00", "10.001"])
def test_invalid_amounts_are_rejected(built_sale, store, clock, settings, amount: str) -> None:
    with pytest.raises(InvalidPaymentError):
        apply_payment(store, _request(built_sale.sale_id, amount), settings=settings, clock=clock)

    assert store.list_ledger(built_sale.sale_id) == []


def test_future_payment_date_is_rejected(built_sale, store, clock, settings) -> None:
    tomorrow = clock().date() + timedelta(days=1)

    with pytest.raises(InvalidPaymentError):
        apply_payment(store, _request(built_sale.sale_id, "10.00", payment_date=tomorrow), settings=settings, clock=clock)


def test_payment_date_must_be_a_calendar_date(built_sale, store, clock, settings) -> None:
    with pytest.raises(InvalidPaymentError):
        apply_payment(
            store,
            _request(built_sale.sale_id, "10.00", payment_date=datetime(2025, 3, 1, tzinfo=timezone.utc)),
            settings=settings,
            clock=clock,
        )


def test_unknown_sale(store, clock, settings) -> None:
    with pytest.raises(SaleNotFoundError):
        apply_payment(store, _request(uuid4(), "10.00"), settings=settings, clock=clock)


def test_sale_without_shares_has_nothing_to_pay(store, sale, clock, settings) -> None:
    store.save_sale(sale)

    with pytest.raises(NoActiveSharesError):
        apply_payment(store, _request(sale.sale_id, "10.00"), settings=settings, clock=clock)


def test_cancelled_sale_rejects_payments(built_sale, store, clock, settings) -> None:
    cancel_sale(store, built_sale.sale_id, "Buyer withdrew")

    with pytest.raises(NoActiveSharesError):
        apply_payment(store, _request(built_sale.sale_id, "10.00"), settings=settings, clock=clock)


def test_idempotency_key_replays_original_entries(built_sale, store, clock, settings) -> None:
    request = _request(built_sale.sale_id, "2000.00", idempotency_key="pay-001")

    first = apply_payment(store, request, settings=settings, clock=clock)
    second = apply_payment(store, request, settings=settings, clock=clock)

    assert [e.entry_id for e in second] == [e.entry_id for e in first]
    assert len(store.list_ledger(built_sale.sale_id)) == 2
    assert get_shares(store, built_sale.sale_id)[0].paid_to_date == Decimal("1400.00")


def test_idempotency_key_reused_for_different_payment(built_sale, store, clock, settings) -> None:
    apply_payment(store, _request(built_sale.sale_id, "2000.00", idempotency_key="pay-001"), settings=settings, clock=clock)

    with pytest.raises(IdempotencyConflictError):
        apply_payment(store, _request(built_sale.sale_id, "1000.00", idempotency_key="pay-001"), settings=settings, clock=clock)


def test_concurrent_payments_never_overpay(built_sale, store, clock, settings) -> None:
    """Eight parallel 1000.00 payments against a 5000.00 balance: five succeed."""

    outcomes = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(8)

    def worker() -> None:
        start.wait()
        try:
            apply_payment(store, _request(built_sale.sale_id, "1000.00"), settings=settings, clock=clock)
            result = "ok"
        except OverpaymentError:
            result = "rejected"
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 5
    assert outcomes.count("rejected") == 3
    shares = get_shares(store, built_sale.sale_id)
    assert sum(s.paid_to_date for s in shares) == Decimal("5000.00")
    assert len({e.registered_at for e in store.list_ledger(built_sale.sale_id)}) == 5


def test_conflicting_commit_is_retried(built_sale, store, clock, settings, monkeypatch) -> None:
    """Verify a commit that lost a race is recomputed and written once."""

    commit = store.commit_payment_batch
    calls = []

    def flaky_commit(sale_id, entries, shares, expected_paid):
        calls.append(len(entries))
        if len(calls) == 1:
            raise ConcurrentModificationError(sale_id, "paid_to_date moved")
        return commit(sale_id, entries, shares, expected_paid)

    monkeypatch.setattr(store, "commit_payment_batch", flaky_commit)

    entries = apply_payment(store, _request(built_sale.sale_id, "1000.00"), settings=settings, clock=clock)

    assert calls == [2, 2]
    ledger = store.list_ledger(built_sale.sale_id)
    assert ledger == entries
    assert len({e.distribution_meta.batch_id for e in ledger}) == 1
    assert sum(s.paid_to_date for s in get_shares(store, built_sale.sale_id)) == Decimal("1000.00")


def test_commit_conflicts_exhaust_retries(built_sale, store, clock, monkeypatch) -> None:
    calls = []

    def conflicting_commit(sale_id, entries, shares, expected_paid):
        calls.append(sale_id)
        raise ConcurrentModificationError(sale_id, "paid_to_date moved")

    monkeypatch.setattr(store, "commit_payment_batch", conflicting_commit)

    with pytest.raises(ConcurrentModificationError):
        apply_payment(
            store,
            _request(built_sale.sale_id, "1000.00"),
            settings=EngineSettings(payment_conflict_retries=3),
            clock=clock,
        )

    assert len(calls) == 3
    assert store.list_ledger(built_sale.sale_id) == []
    assert all(s.paid_to_date == Decimal("0") for s in get_shares(store, built_sale.sale_id))


def test_expediente_gate_blocks_payments_when_enabled(built_sale, store, clock) -> None:
    store.add_requirement(
        ExpedienteRequirement(
            requirement_id=uuid4(),
            title="Signed purchase contract",
            is_mandatory=True,
            allowed_file_types=("pdf",),
            max_file_size_bytes=10 * 1024 * 1024,
        )
    )
    gated = EngineSettings(require_complete_expediente=True)

    with pytest.raises(DocumentsIncomplete) as exc:
        apply_payment(store, _request(built_sale.sale_id, "10.00"), settings=gated, clock=clock)
    assert exc.value.missing == ["Signed purchase contract"]

    entries = apply_payment(store, _request(built_sale.sale_id, "10.00"), settings=EngineSettings(), clock=clock)
    assert len(entries) == 2


@pytest.mark.parametrize(
    "percentage, expected",
    [(25, Decimal("1250.00")), (50, Decimal("2500.00")), (100, Decimal("5000.00")), (0, Decimal("0.00"))],
)
def test_quote_payment_amount(built_sale, store, percentage, expected: Decimal) -> None:
    assert quote_payment_amount(store, built_sale.sale_id, percentage) == expected


def test_quote_reflects_payments_and_cancellation(built_sale, store, clock, settings) -> None:
    apply_payment(store, _request(built_sale.sale_id, "2000.00"), settings=settings, clock=clock)
    assert quote_payment_amount(store, built_sale.sale_id, 50) == Decimal("1500.00")

    cancel_sale(store, built_sale.sale_id, "Buyer withdrew")
    assert quote_payment_amount(store, built_sale.sale_id, 50) == Decimal("0.00")
