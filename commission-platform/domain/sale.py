"""
Domain: Closed sales.

A Sale is the closed transaction that generates commission entitlements.

Rules implemented here:
- commission_amount = price × commission_pct / 100, rounded half-up to cents
  when the sale is created.
- Sales are soft-cancelled only: cancellation sets the flag, reason and UTC
  timestamp and returns a new instance; nothing is ever hard-deleted.

All timestamps must be passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .money import Numeric, apply_percentage, quantize_money, require_percentage, to_decimal
from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class Sale:
    """
    Immutable record of a closed sale.

    Captures:
    - What it sold for (price, currency)
    - The agreed commission (commission_pct on a 0-100 scale, commission_amount)
    - Cancellation state (cancelled, cancel_reason, cancelled_at)
    """

    sale_id: UUID
    price: Decimal
    currency: str
    commission_pct: Decimal
    commission_amount: Decimal
    cancelled: bool = False
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    expediente_category: str = "sale_closing_ready"

    def __post_init__(self) -> None:
        if self.price < 0:
            raise ValueError("price must be >= 0")
        require_percentage("commission_pct", self.commission_pct)
        if self.commission_amount < 0:
            raise ValueError("commission_amount must be >= 0")
        if self.cancelled_at is not None:
            require_utc_timestamp("cancelled_at", self.cancelled_at)
        if self.closed_at is not None:
            require_utc_timestamp("closed_at", self.closed_at)
        if self.cancelled and self.cancelled_at is None:
            raise ValueError("cancelled sales must carry cancelled_at")

    @staticmethod
    def close(
        *,
        price: Numeric,
        commission_pct: Numeric,
        currency: str = "USD",
        closed_at: Optional[datetime] = None,
        sale_id: Optional[UUID] = None,
        expediente_category: str = "sale_closing_ready",
    ) -> "Sale":
        """Create a closed sale, deriving commission_amount from price and percentage."""

        price_value = quantize_money(price)
        pct = require_percentage("commission_pct", commission_pct)
        return Sale(
            sale_id=sale_id or uuid4(),
            price=price_value,
            currency=currency.upper(),
            commission_pct=pct,
            commission_amount=quantize_money(apply_percentage(price_value, pct)),
            closed_at=closed_at,
            expediente_category=expediente_category,
        )

    def with_price(self, price: Numeric, commission_pct: Optional[Numeric] = None) -> "Sale":
        """Return an edited sale with commission_amount recomputed."""

        pct = self.commission_pct if commission_pct is None else to_decimal(commission_pct)
        price_value = quantize_money(price)
        return replace(
            self,
            price=price_value,
            commission_pct=require_percentage("commission_pct", pct),
            commission_amount=quantize_money(apply_percentage(price_value, pct)),
        )

    def cancel(self, reason: str, cancelled_at: datetime) -> "Sale":
        require_utc_timestamp("cancelled_at", cancelled_at)
        if self.cancelled:
            raise ValueError("Sale is already cancelled")
        return replace(
            self,
            cancelled=True,
            cancel_reason=reason,
            cancelled_at=cancelled_at,
        )
