"""
Reconciler and cancellation cascade.

`reconcile_share` is the only code path that sets a share's paid_to_date,
status and last_payment_at. It is pure and idempotent: it derives everything
from the ledger, so it is safe to run after every ledger write (and again
whenever a caller wants to repair drift).

`cancel_sale` soft-cancels a sale and every one of its shares. Ledger entries
already recorded are left untouched; they remain the historical record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID

from domain.commission import CommissionShare, ShareStatus
from domain.errors import InvalidCancellationError, SaleCancelledError, SaleNotFoundError
from domain.ledger import PaymentLedgerEntry
from domain.money import ZERO, quantize_money
from domain.time import utc_now
from repositories.commission_store import CommissionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CancellationResult:
    sale_id: UUID
    cancelled_share_count: int
    cancelled_at: datetime


def reconcile_share(share: CommissionShare, ledger: Iterable[PaymentLedgerEntry]) -> CommissionShare:
    """
    Recompute paid_to_date, status and last_payment_at from the ledger.

    Entries belonging to other shares are ignored, so the whole sale ledger
    may be passed. Cancelled shares keep their terminal status; their
    paid_to_date still reflects the ledger.
    """

    paid = ZERO
    last_payment = None
    for entry in ledger:
        if entry.share_id != share.share_id:
            continue
        paid += entry.amount
        if last_payment is None or entry.payment_date > last_payment:
            last_payment = entry.payment_date

    paid = quantize_money(paid)
    if share.status is ShareStatus.CANCELLED:
        status = ShareStatus.CANCELLED
    else:
        status = ShareStatus.derive(paid, share.total_amount)

    return replace(share, paid_to_date=paid, status=status, last_payment_at=last_payment)


def reconcile_shares(
    shares: Iterable[CommissionShare],
    ledger: Iterable[PaymentLedgerEntry],
) -> List[CommissionShare]:
    entries = list(ledger)
    return [reconcile_share(share, entries) for share in shares]


def cancel_sale(
    store: CommissionStore,
    sale_id: UUID,
    reason: str,
    *,
    cancelled_at: Optional[datetime] = None,
) -> CancellationResult:
    """
    Cancel a sale and cascade the cancellation to all of its shares.

    Args:
        store: Persistence backend
        sale_id: Sale to cancel
        reason: Required, non-blank explanation recorded on the sale
        cancelled_at: UTC timestamp (defaults to now)

    Returns:
        CancellationResult with the number of shares that were cancelled

    Raises:
        InvalidCancellationError: blank reason
        SaleNotFoundError: unknown sale
        SaleCancelledError: the sale was already cancelled
    """

    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise InvalidCancellationError(
            "A cancellation reason is required",
            sale_id=str(sale_id),
        )

    with store.lock(sale_id):
        sale = store.get_sale(sale_id)
        if sale is None:
            raise SaleNotFoundError(sale_id)
        if sale.cancelled:
            raise SaleCancelledError(sale_id)

        timestamp = cancelled_at or utc_now()
        cancelled_sale = sale.cancel(cleaned_reason, timestamp)

        ledger = store.list_ledger(sale_id)
        to_cancel = [s for s in store.list_shares(sale_id) if s.is_active]
        cancelled_shares = [
            reconcile_share(replace(share, status=ShareStatus.CANCELLED), ledger)
            for share in to_cancel
        ]

        store.commit_cancellation(cancelled_sale, cancelled_shares)

    logger.info(
        f"Sale {sale_id} cancelled; {len(cancelled_shares)} commission share(s) cancelled",
        extra={
            "sale_id": str(sale_id),
            "cancelled_share_count": len(cancelled_shares),
            "ledger_entries_kept": len(ledger),
        },
    )

    return CancellationResult(
        sale_id=sale_id,
        cancelled_share_count=len(cancelled_shares),
        cancelled_at=timestamp,
    )


__all__ = [
    "CancellationResult",
    "cancel_sale",
    "reconcile_share",
    "reconcile_shares",
]
