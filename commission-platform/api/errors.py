"""
Translation of engine errors into HTTP responses.

Routers catch `CommissionError` and hand it to `raise_http_error`, which picks
the status code from the error type. Anything else propagates as a 500.
"""

from typing import Dict, NoReturn, Type

from fastapi import HTTPException

from domain.errors import (
    CommissionError,
    ConcurrentModificationError,
    DocumentsIncomplete,
    IdempotencyConflictError,
    InvalidCancellationError,
    InvalidDocumentError,
    InvalidPaymentError,
    InvalidSplit,
    NoActiveSharesError,
    OverpaymentError,
    RequirementNotFoundError,
    SaleCancelledError,
    SaleNotFoundError,
    ShareTotalBelowPaidError,
)

STATUS_BY_ERROR: Dict[Type[CommissionError], int] = {
    SaleNotFoundError: 404,
    RequirementNotFoundError: 404,
    InvalidSplit: 422,
    InvalidPaymentError: 422,
    InvalidCancellationError: 422,
    InvalidDocumentError: 422,
    OverpaymentError: 409,
    NoActiveSharesError: 409,
    SaleCancelledError: 409,
    ShareTotalBelowPaidError: 409,
    IdempotencyConflictError: 409,
    ConcurrentModificationError: 409,
    DocumentsIncomplete: 409,
}


def status_for(error: CommissionError) -> int:
    for error_type in type(error).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]
    return 400


def raise_http_error(error: CommissionError) -> NoReturn:
    """Re-raise an engine error as an HTTPException carrying its context."""

    raise HTTPException(
        status_code=status_for(error),
        detail={
            "error": type(error).__name__,
            "message": str(error),
            "context": error.context,
        },
    ) from error


__all__ = ["STATUS_BY_ERROR", "raise_http_error", "status_for"]
