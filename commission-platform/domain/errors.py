"""
Domain: Commission engine error taxonomy.

All engine errors are local validation failures raised synchronously. Each
carries a `context` mapping (sale id, requested amount, remaining balance, ...)
so callers can render a user message without parsing the text.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID


class CommissionError(Exception):
    """Base class for every error raised by the commission engine."""

    def __init__(self, message: str, **context: Any):
        self.context: Dict[str, Any] = context
        super().__init__(message)


class SaleNotFoundError(CommissionError):
    def __init__(self, sale_id: UUID):
        self.sale_id = sale_id
        super().__init__(f"Sale not found: {sale_id}", sale_id=str(sale_id))


class SaleCancelledError(CommissionError):
    """Raised when a mutation targets a sale that is already cancelled."""

    def __init__(self, sale_id: UUID):
        self.sale_id = sale_id
        super().__init__(f"Sale {sale_id} is cancelled", sale_id=str(sale_id))


class InvalidSplit(CommissionError):
    """Beneficiary split percentages are out of range or do not add up to 100."""

    def __init__(self, message: str, total: Optional[Decimal] = None):
        self.total = total
        super().__init__(message, total=str(total) if total is not None else None)


class OverpaymentError(CommissionError):
    """The requested distribution would exceed the remaining commission balance."""

    def __init__(self, sale_id: UUID, requested: Decimal, remaining: Decimal):
        self.sale_id = sale_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Payment of {requested} exceeds remaining balance {remaining} for sale {sale_id}",
            sale_id=str(sale_id),
            requested=str(requested),
            remaining=str(remaining),
        )


class NoActiveSharesError(CommissionError):
    def __init__(self, sale_id: UUID):
        self.sale_id = sale_id
        super().__init__(
            f"Sale {sale_id} has no active commission shares to pay",
            sale_id=str(sale_id),
        )


class InvalidPaymentError(CommissionError):
    """Payment input rejected before any distribution is planned."""


class InvalidCancellationError(CommissionError):
    pass


class ShareTotalBelowPaidError(CommissionError):
    """A rebuild would leave a share owing less than it has already been paid."""

    def __init__(self, share_id: UUID, new_total: Decimal, paid_to_date: Decimal):
        self.share_id = share_id
        self.new_total = new_total
        self.paid_to_date = paid_to_date
        super().__init__(
            f"Share {share_id} total {new_total} would fall below paid-to-date {paid_to_date}",
            share_id=str(share_id),
            new_total=str(new_total),
            paid_to_date=str(paid_to_date),
        )


class IdempotencyConflictError(CommissionError):
    """An idempotency key was reused for a different payment."""

    def __init__(self, sale_id: UUID, idempotency_key: str):
        self.sale_id = sale_id
        self.idempotency_key = idempotency_key
        super().__init__(
            f"Idempotency key {idempotency_key!r} was already used for a different payment on sale {sale_id}",
            sale_id=str(sale_id),
            idempotency_key=idempotency_key,
        )


class ConcurrentModificationError(CommissionError):
    """Share balances changed between reading and committing a batch."""

    def __init__(self, sale_id: UUID, detail: str = ""):
        self.sale_id = sale_id
        super().__init__(
            f"Commission shares for sale {sale_id} changed concurrently{': ' + detail if detail else ''}",
            sale_id=str(sale_id),
        )


class DocumentsIncomplete(CommissionError):
    """Mandatory expediente documents are missing for the sale."""

    def __init__(self, sale_id: UUID, missing: List[str]):
        self.sale_id = sale_id
        self.missing = missing
        super().__init__(
            f"Sale {sale_id} is missing {len(missing)} mandatory document(s)",
            sale_id=str(sale_id),
            missing=list(missing),
        )


class RequirementNotFoundError(CommissionError):
    def __init__(self, requirement_id: UUID):
        self.requirement_id = requirement_id
        super().__init__(
            f"Expediente requirement not found: {requirement_id}",
            requirement_id=str(requirement_id),
        )


class InvalidDocumentError(CommissionError):
    """Uploaded document does not satisfy the requirement's file rules."""


__all__ = [
    "CommissionError",
    "ConcurrentModificationError",
    "DocumentsIncomplete",
    "IdempotencyConflictError",
    "InvalidCancellationError",
    "InvalidDocumentError",
    "InvalidPaymentError",
    "InvalidSplit",
    "NoActiveSharesError",
    "OverpaymentError",
    "RequirementNotFoundError",
    "SaleCancelledError",
    "SaleNotFoundError",
    "ShareTotalBelowPaidError",
]
