"""
Domain: Commission shares.

A CommissionShare is one beneficiary's entitlement on one sale.

Rules implemented here:
- total_amount = sale.commission_amount × split_pct_self / 100 (rounded).
- The split pair (split_pct_self, split_pct_other = 100 - self) is captured
  when the share is created and never re-read from live configuration.
- paid_to_date and status are derivatives of the payment ledger; the only
  writer is the reconciler (`services/reconciler.py`).
- Status is a pure function of (paid_to_date, total_amount):
  - paid_to_date == 0                 -> pending
  - 0 < paid_to_date < total_amount   -> partial
  - paid_to_date >= total_amount      -> paid
  `cancelled` is terminal and set only by the cancellation cascade.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from .money import ONE_HUNDRED, ZERO, require_percentage


class ShareStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"

    @staticmethod
    def derive(paid_to_date: Decimal, total_amount: Decimal) -> "ShareStatus":
        """Resolve the status of a live (non-cancelled) share from its balances."""

        if paid_to_date <= 0:
            return ShareStatus.PENDING
        if paid_to_date < total_amount:
            return ShareStatus.PARTIAL
        return ShareStatus.PAID


class BeneficiaryRole(str, Enum):
    SELLER = "seller"
    LISTER = "lister"
    REFERRER = "referrer"
    EXTERNAL_AGENT = "external_agent"
    MENTOR = "mentor"
    LEADER = "leader"
    HOUSE = "house"


@dataclass(frozen=True, slots=True)
class Beneficiary:
    """A beneficiary definition as supplied when shares are built."""

    role: BeneficiaryRole
    beneficiary_id: str
    split_pct: Decimal

    def __post_init__(self) -> None:
        require_percentage("split_pct", self.split_pct)

    @property
    def key(self) -> tuple[BeneficiaryRole, str]:
        return (self.role, self.beneficiary_id)


@dataclass(frozen=True, slots=True)
class CommissionShare:
    """
    Immutable snapshot of one beneficiary's entitlement on a sale.

    State changes (reconciliation, cancellation, total updates) return new
    instances; persistence layers decide how to store them.
    """

    share_id: UUID
    sale_id: UUID
    beneficiary_id: str
    role: BeneficiaryRole
    total_amount: Decimal
    currency: str
    split_pct_self: Decimal
    split_pct_other: Decimal
    paid_to_date: Decimal = ZERO
    status: ShareStatus = ShareStatus.PENDING
    last_payment_at: Optional[date] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        require_percentage("split_pct_self", self.split_pct_self)
        require_percentage("split_pct_other", self.split_pct_other)
        if self.split_pct_self + self.split_pct_other != ONE_HUNDRED:
            raise ValueError("split_pct_self and split_pct_other must add up to 100")
        if self.total_amount < 0:
            raise ValueError("total_amount must be >= 0")
        if self.paid_to_date < 0:
            raise ValueError("paid_to_date must be >= 0")

    @property
    def key(self) -> tuple[BeneficiaryRole, str]:
        return (self.role, self.beneficiary_id)

    @property
    def is_active(self) -> bool:
        """Active shares take part in payment distribution."""

        return self.status is not ShareStatus.CANCELLED

    @property
    def remaining(self) -> Decimal:
        balance = self.total_amount - self.paid_to_date
        return balance if balance > 0 else ZERO
