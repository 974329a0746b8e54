"""
Payment history consolidation.

The inverse of the distributor: ledger slices that share
(payment_date, payment_type, registered_at) were produced by one apply-payment
call, so they are regrouped into the single payment event the user applied.

Merging rules per group:
- amount: sum of the slices (recovers the applied total exactly)
- notes: distinct non-empty values in order; one value is kept as is,
  several are joined with " | " so nothing is silently dropped
- receipt_ref, recorded_by, batch_id: first non-null value

Events are returned newest registered_at first.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from domain.errors import SaleNotFoundError
from domain.ledger import PaymentEvent, PaymentLedgerEntry
from domain.money import ZERO, quantize_money
from repositories.commission_store import CommissionStore
from services.settings import EngineSettings, get_settings

NOTES_SEPARATOR = " | "


def _merge_notes(entries: Sequence[PaymentLedgerEntry]) -> Optional[str]:
    values: List[str] = []
    for entry in entries:
        note = (entry.notes or "").strip()
        if note and note not in values:
            values.append(note)
    if not values:
        return None
    return NOTES_SEPARATOR.join(values)


def _first(values: Iterable):
    for value in values:
        if value is not None:
            return value
    return None


def consolidate(entries: Iterable[PaymentLedgerEntry]) -> List[PaymentEvent]:
    """Group ledger slices back into user-visible payment events."""

    groups: Dict[Tuple, List[PaymentLedgerEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.batch_key, []).append(entry)

    events: List[PaymentEvent] = []
    for (payment_date, payment_type, registered_at), members in groups.items():
        total = sum((m.amount for m in members), ZERO)
        events.append(
            PaymentEvent(
                registered_at=registered_at,
                payment_date=payment_date,
                payment_type=payment_type,
                amount=quantize_money(total),
                currency=members[0].currency,
                entry_count=len(members),
                share_ids=tuple(m.share_id for m in members),
                notes=_merge_notes(members),
                receipt_ref=_first(m.receipt_ref for m in members),
                recorded_by=_first(m.recorded_by for m in members),
                batch_id=_first(m.distribution_meta.batch_id for m in members),
            )
        )

    events.sort(key=lambda e: e.registered_at, reverse=True)
    return events


def total_paid(events: Iterable[PaymentEvent]) -> Decimal:
    return quantize_money(sum((e.amount for e in events), ZERO))


def get_consolidated_history(
    store: CommissionStore,
    sale_id: UUID,
    *,
    settings: Optional[EngineSettings] = None,
) -> List[PaymentEvent]:
    """
    Consolidated payment history of a sale, newest first.

    Cancelled sales keep their history visible unless
    HIDE_CANCELLED_SALE_HISTORY is enabled.
    """

    settings = settings or get_settings()
    sale = store.get_sale(sale_id)
    if sale is None:
        raise SaleNotFoundError(sale_id)
    if sale.cancelled and settings.hide_cancelled_sale_history:
        return []
    return consolidate(store.list_ledger(sale_id))


__all__ = [
    "NOTES_SEPARATOR",
    "consolidate",
    "get_consolidated_history",
    "total_paid",
]
