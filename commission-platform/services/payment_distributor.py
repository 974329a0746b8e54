"""
Payment distributor.

Fans one user-entered payment out across the active commission shares of a
sale, proportionally to each share's frozen split percentage.

Process (one atomic unit per call):
1. Validate the request (amount > 0, cents precision, date not in the future)
2. Under the per-sale lock, load the sale, its shares and its ledger
3. Replay the original batch if the idempotency key was already used
4. Reject with OverpaymentError if amount > Σ(total - paid) of active shares
5. Compute slices: amount × split / 100, rounded; the last share absorbs the
   remainder so the slices add up to the amount exactly
6. Write one ledger entry per share (shared registered_at, batch_id,
   receipt and notes) and the reconciled shares in one commit
7. If balances moved between read and commit, retry the whole cycle
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Sequence
from uuid import UUID, uuid4

from domain.commission import CommissionShare
from domain.errors import (
    ConcurrentModificationError,
    DocumentsIncomplete,
    IdempotencyConflictError,
    InvalidPaymentError,
    NoActiveSharesError,
    OverpaymentError,
    SaleNotFoundError,
)
from domain.ledger import DistributionMeta, PaymentLedgerEntry, PaymentType
from domain.money import ZERO, Numeric, apply_percentage, quantize_money, require_percentage, to_decimal
from domain.time import require_business_date, utc_now
from repositories.commission_store import CommissionStore
from services.expediente_service import load_checklist
from services.reconciler import reconcile_shares
from services.settings import EngineSettings, get_settings

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


@dataclass(frozen=True, slots=True)
class PaymentRequest:
    """
    Request to apply one payment against a sale's commission.

    idempotency_key: client-supplied token; retrying with the same key returns
    the entries of the first successful call instead of paying twice.
    """
    sale_id: UUID
    amount: Decimal
    payment_type: PaymentType
    payment_date: date
    notes: Optional[str] = None
    receipt_ref: Optional[str] = None
    recorded_by: Optional[str] = None
    idempotency_key: Optional[str] = None


def remaining_balance(shares: Sequence[CommissionShare]) -> Decimal:
    """Σ(total_amount - paid_to_date) over active shares."""

    return sum((s.remaining for s in shares if s.is_active), ZERO)


def plan_slices(shares: Sequence[CommissionShare], amount: Numeric) -> List[Decimal]:
    """
    Split `amount` across `shares` by their frozen split percentages.

    Guarantees:
    - Σ slices == amount exactly (the last share absorbs the rounding remainder)
    - no slice exceeds its share's remaining balance; cents that would push a
      share past its total move to shares that still have headroom

    Raises:
        ValueError: empty share list
        OverpaymentError: amount exceeds the combined remaining balance
    """

    if not shares:
        raise ValueError("At least one share is required to plan a distribution")

    total = quantize_money(amount)
    remaining = [s.remaining for s in shares]
    if total > sum(remaining, ZERO):
        raise OverpaymentError(shares[0].sale_id, total, sum(remaining, ZERO))

    slices: List[Decimal] = []
    allocated = ZERO
    for share in shares[:-1]:
        portion = quantize_money(apply_percentage(total, share.split_pct_self))
        slices.append(portion)
        allocated += portion
    slices.append(total - allocated)

    # Shortfall from a negative last slice is taken back from earlier slices.
    deficit = ZERO
    for i in range(len(slices)):
        if slices[i] < 0:
            deficit -= slices[i]
            slices[i] = ZERO
    for i in reversed(range(len(slices))):
        if deficit <= 0:
            break
        take = min(slices[i], deficit)
        slices[i] -= take
        deficit -= take

    overflow = ZERO
    for i, cap in enumerate(remaining):
        if slices[i] > cap:
            overflow += slices[i] - cap
            slices[i] = cap
    for i in reversed(range(len(slices))):
        if overflow <= 0:
            break
        headroom = remaining[i] - slices[i]
        if headroom <= 0:
            continue
        take = min(headroom, overflow)
        slices[i] += take
        overflow -= take

    return slices


def next_registration_timestamp(ledger: Sequence[PaymentLedgerEntry], now: datetime) -> datetime:
    """
    A registration timestamp strictly later than every batch already recorded
    for the sale, so two batches never share a grouping key.
    """

    latest = max((e.registered_at for e in ledger), default=None)
    if latest is not None and now <= latest:
        return latest + _TICK
    return now


def _validate_request(request: PaymentRequest, today: date) -> Decimal:
    amount = to_decimal(request.amount)
    if amount <= 0:
        raise InvalidPaymentError(
            "Payment amount must be greater than 0",
            sale_id=str(request.sale_id),
            requested=str(amount),
        )
    if amount != quantize_money(amount):
        raise InvalidPaymentError(
            "Payment amount cannot have more than 2 decimal places",
            sale_id=str(request.sale_id),
            requested=str(amount),
        )
    try:
        require_business_date("payment_date", request.payment_date)
    except ValueError as exc:
        raise InvalidPaymentError(str(exc), sale_id=str(request.sale_id)) from exc
    if request.payment_date > today:
        raise InvalidPaymentError(
            "Payment date cannot be in the future",
            sale_id=str(request.sale_id),
            payment_date=request.payment_date.isoformat(),
        )
    return quantize_money(amount)


def _replay(
    request: PaymentRequest,
    amount: Decimal,
    ledger: Sequence[PaymentLedgerEntry],
) -> Optional[List[PaymentLedgerEntry]]:
    if not request.idempotency_key:
        return None

    previous = [e for e in ledger if e.distribution_meta.idempotency_key == request.idempotency_key]
    if not previous:
        return None

    first = previous[0]
    same_payment = (
        sum((e.amount for e in previous), ZERO) == amount
        and first.payment_type == request.payment_type
        and first.payment_date == request.payment_date
    )
    if not same_payment:
        raise IdempotencyConflictError(request.sale_id, request.idempotency_key)
    return previous


def apply_payment(
    store: CommissionStore,
    request: PaymentRequest,
    *,
    settings: Optional[EngineSettings] = None,
    clock: Callable[[], datetime] = utc_now,
) -> List[PaymentLedgerEntry]:
    """
    Apply a payment to a sale and distribute it across its active shares.

    Args:
        store: Persistence backend
        request: PaymentRequest (sale, amount, type, business date, extras)
        settings: Engine settings (expediente gate, conflict retries)
        clock: UTC clock used for registration timestamps and "today"

    Returns:
        The ledger entries created (or replayed, for a reused idempotency key)

    Raises:
        InvalidPaymentError: amount <= 0, more than 2 decimals, or a future date
        SaleNotFoundError: unknown sale
        NoActiveSharesError: the sale has no non-cancelled shares
        OverpaymentError: amount exceeds the remaining balance (nothing is written)
        IdempotencyConflictError: key reused for a different payment
        DocumentsIncomplete: only when REQUIRE_COMPLETE_EXPEDIENTE is enabled
        ConcurrentModificationError: balances kept moving after all retries

    Example:
        entries = apply_payment(store, PaymentRequest(
            sale_id=sale.sale_id,
            amount=Decimal("2000.00"),
            payment_type=PaymentType.PARTIAL,
            payment_date=date(2025, 3, 1),
        ))
        # Two shares split 70/30 -> slices of 1400.00 and 600.00
    """

    settings = settings or get_settings()
    amount = _validate_request(request, clock().date())
    sale_id = request.sale_id

    for attempt in range(1, settings.payment_conflict_retries + 1):
        with store.lock(sale_id):
            sale = store.get_sale(sale_id)
            if sale is None:
                raise SaleNotFoundError(sale_id)

            ledger = store.list_ledger(sale_id)
            replayed = _replay(request, amount, ledger)
            if replayed is not None:
                logger.warning(
                    f"Idempotent replay of payment on sale {sale_id}",
                    extra={"sale_id": str(sale_id), "idempotency_key": request.idempotency_key},
                )
                return replayed

            stored = [s for s in store.list_shares(sale_id) if s.is_active]
            if sale.cancelled or not stored:
                raise NoActiveSharesError(sale_id)

            if settings.require_complete_expediente:
                checklist = load_checklist(store, sale)
                if not checklist.is_release_ready:
                    raise DocumentsIncomplete(sale_id, [r.title for r in checklist.missing_mandatory()])

            active = reconcile_shares(stored, ledger)
            remaining = remaining_balance(active)
            if amount > remaining:
                logger.warning(
                    f"Payment rejected: {amount} exceeds remaining balance {remaining}",
                    extra={
                        "sale_id": str(sale_id),
                        "requested": str(amount),
                        "remaining": str(remaining),
                    },
                )
                raise OverpaymentError(sale_id, amount, remaining)

            slices = plan_slices(active, amount)
            registered_at = next_registration_timestamp(ledger, clock())
            batch_id = uuid4()

            entries = [
                PaymentLedgerEntry(
                    entry_id=uuid4(),
                    share_id=share.share_id,
                    sale_id=sale_id,
                    amount=portion,
                    currency=share.currency,
                    payment_type=request.payment_type,
                    payment_date=request.payment_date,
                    registered_at=registered_at,
                    distribution_meta=DistributionMeta(
                        split_pct_used=share.split_pct_self,
                        registered_at=registered_at,
                        batch_id=batch_id,
                        idempotency_key=request.idempotency_key,
                    ),
                    receipt_ref=request.receipt_ref,
                    notes=request.notes,
                    recorded_by=request.recorded_by,
                )
                for share, portion in zip(active, slices)
            ]
            reconciled = reconcile_shares(active, list(ledger) + entries)
            expected_paid = {s.share_id: s.paid_to_date for s in stored}

            try:
                store.commit_payment_batch(sale_id, entries, reconciled, expected_paid)
            except ConcurrentModificationError:
                logger.warning(
                    f"Commission balances changed during commit (attempt {attempt})",
                    extra={"sale_id": str(sale_id), "attempt": attempt},
                )
                continue

        logger.info(
            f"Payment of {amount} applied to sale {sale_id} across {len(entries)} share(s)",
            extra={
                "sale_id": str(sale_id),
                "batch_id": str(batch_id),
                "amount": str(amount),
                "payment_type": request.payment_type.value,
                "shares": len(entries),
            },
        )
        return entries

    raise ConcurrentModificationError(sale_id, "retries exhausted")


def quote_payment_amount(store: CommissionStore, sale_id: UUID, percentage: Numeric) -> Decimal:
    """
    Suggested amount for a percentage of what is still owed.

    Example:
        quote_payment_amount(store, sale_id, 50)
        # Returns half of the remaining balance, rounded to cents
    """

    pct = require_percentage("percentage", percentage)
    sale = store.get_sale(sale_id)
    if sale is None:
        raise SaleNotFoundError(sale_id)
    if sale.cancelled:
        return ZERO
    shares = reconcile_shares(store.list_shares(sale_id), store.list_ledger(sale_id))
    return quantize_money(apply_percentage(remaining_balance(shares), pct))


__all__ = [
    "PaymentRequest",
    "apply_payment",
    "next_registration_timestamp",
    "plan_slices",
    "quote_payment_amount",
    "remaining_balance",
]
