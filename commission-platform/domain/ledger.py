"""
Domain: Payment ledger.

Rules implemented here:
- PaymentLedgerEntry is write-once. It records one share's proportional slice
  of one applied payment; corrections are new entries, never edits.
- payment_type describes the intent of the whole applied batch, not the slice.
- registered_at is the system time of the batch and, together with
  payment_date and payment_type, is the key that regroups slices into the
  payment event a user applied (see `services/history_service.py`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from .time import require_business_date, require_utc_timestamp


class PaymentType(str, Enum):
    PARTIAL = "partial"
    TOTAL = "total"


@dataclass(frozen=True, slots=True)
class DistributionMeta:
    """Which split was used for a slice and which batch produced it."""

    split_pct_used: Decimal
    registered_at: datetime
    batch_id: UUID
    idempotency_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "split_pct_used": str(self.split_pct_used),
            "registered_at": self.registered_at.isoformat(),
            "batch_id": str(self.batch_id),
            "idempotency_key": self.idempotency_key,
        }


@dataclass(frozen=True, slots=True)
class PaymentLedgerEntry:
    entry_id: UUID
    share_id: UUID
    sale_id: UUID
    amount: Decimal
    currency: str
    payment_type: PaymentType
    payment_date: date
    registered_at: datetime
    distribution_meta: DistributionMeta
    receipt_ref: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("registered_at", self.registered_at)
        require_business_date("payment_date", self.payment_date)
        if self.amount < 0:
            raise ValueError("amount must be >= 0")

    @property
    def batch_key(self) -> Tuple[date, PaymentType, datetime]:
        """Composite key shared by every slice of one applied payment."""

        return (self.payment_date, self.payment_type, self.registered_at)


@dataclass(frozen=True, slots=True)
class PaymentEvent:
    """A user-visible payment reconstructed from its ledger slices."""

    registered_at: datetime
    payment_date: date
    payment_type: PaymentType
    amount: Decimal
    currency: str
    entry_count: int
    share_ids: Tuple[UUID, ...] = field(default_factory=tuple)
    notes: Optional[str] = None
    receipt_ref: Optional[str] = None
    recorded_by: Optional[str] = None
    batch_id: Optional[UUID] = None
