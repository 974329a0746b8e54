"""
Commission API Endpoints.

Endpoints for building commission shares, applying payments, reading the
consolidated payment history and cancelling sales.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from api.dependencies import get_engine_settings, get_store
from api.errors import raise_http_error
from api.models import (
    ApplyPaymentRequest,
    ApplyPaymentResponse,
    BuildSharesRequest,
    BuildSharesResponse,
    CancelSaleRequest,
    CancelSaleResponse,
    CommissionShareResponse,
    LedgerEntryResponse,
    PaymentEventResponse,
    PaymentHistoryResponse,
    PaymentQuoteResponse,
    ShareListResponse,
)
from domain.commission import Beneficiary
from domain.errors import CommissionError
from domain.sale import Sale
from domain.time import utc_now
from repositories.commission_store import CommissionStore
from services.history_service import get_consolidated_history, total_paid
from services.payment_distributor import PaymentRequest, apply_payment, quote_payment_amount, remaining_balance
from services.reconciler import cancel_sale
from services.settings import EngineSettings
from services.share_builder import build_shares, get_shares

router = APIRouter()


@router.post(
    "/sales/{sale_id}/commissions",
    response_model=BuildSharesResponse,
    summary="Build Commission Shares",
    description="Create or refresh the commission shares of a closed sale."
)
def build_commission_shares(
    sale_id: UUID,
    request: BuildSharesRequest,
    store: CommissionStore = Depends(get_store),
    settings: EngineSettings = Depends(get_engine_settings),
):
    """
    Build one commission share per beneficiary.

    **Rules:**
    - Split percentages must add up to 100 (within SPLIT_TOLERANCE)
    - Each share snapshots its split; later rebuilds never re-read it
    - Rebuilding after a price change recomputes totals only, and fails if a
      share would end up owing less than it was already paid
    - Beneficiaries no longer listed are removed unless they were paid; paid
      ones still count toward the 100% and must stay listed to be replaced
    - For a sale that already exists only `price` and `commission_pct` are
      applied; `currency` and `expediente_category` are set on first build

    The order of `beneficiaries` is the distribution order: the last one
    absorbs rounding remainders.
    """
    try:
        sale = Sale.close(
            price=request.price,
            commission_pct=request.commission_pct,
            currency=request.currency,
            closed_at=utc_now(),
            sale_id=sale_id,
            expediente_category=request.expediente_category.value,
        )

        beneficiaries = [
            Beneficiary(role=b.role, beneficiary_id=b.beneficiary_id, split_pct=b.split_pct)
            for b in request.beneficiaries
        ]
        result = build_shares(store, sale, beneficiaries, settings=settings)

        return BuildSharesResponse(
            sale_id=result.sale.sale_id,
            commission_amount=result.sale.commission_amount,
            currency=result.sale.currency,
            shares=[CommissionShareResponse.from_share(s) for s in result.shares],
            created=result.created,
            updated=result.updated,
            removed=result.removed,
        )

    except CommissionError as e:
        raise_http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get(
    "/sales/{sale_id}/commissions",
    response_model=ShareListResponse,
    summary="List Commission Shares",
    description="Commission shares of a sale with their reconciled balances."
)
def list_commission_shares(sale_id: UUID, store: CommissionStore = Depends(get_store)):
    try:
        shares = get_shares(store, sale_id)
        return ShareListResponse(
            sale_id=sale_id,
            shares=[CommissionShareResponse.from_share(s) for s in shares],
            remaining_balance=remaining_balance(shares),
        )
    except CommissionError as e:
        raise_http_error(e)


@router.post(
    "/sales/{sale_id}/payments",
    response_model=ApplyPaymentResponse,
    summary="Apply Payment",
    description="Apply one payment and distribute it across the sale's active shares."
)
def apply_commission_payment(
    sale_id: UUID,
    request: ApplyPaymentRequest,
    idempotency_key: Optional[str] = Header(default=None),
    store: CommissionStore = Depends(get_store),
    settings: EngineSettings = Depends(get_engine_settings),
):
    """
    Apply a payment to a sale's commission.

    **Process:**
    1. Validates amount (> 0, cents precision) and payment date (not in the future)
    2. Rejects the whole payment if it exceeds the remaining balance
    3. Splits the amount by each share's frozen percentage
    4. Writes one ledger entry per share and reconciles the shares

    **Idempotency:**
    Send an `Idempotency-Key` header to make retries safe. A retry with the
    same key returns the original entries; reusing the key for a different
    payment returns 409.

    **Example request:**
    ```json
    {
      "amount": "2000.00",
      "payment_type": "partial",
      "payment_date": "2025-03-01"
    }
    ```
    """
    try:
        entries = apply_payment(
            store,
            PaymentRequest(
                sale_id=sale_id,
                amount=request.amount,
                payment_type=request.payment_type,
                payment_date=request.payment_date,
                notes=request.notes,
                receipt_ref=request.receipt_ref,
                recorded_by=request.recorded_by,
                idempotency_key=idempotency_key,
            ),
            settings=settings,
        )
        shares = get_shares(store, sale_id)

        return ApplyPaymentResponse(
            sale_id=sale_id,
            entries=[LedgerEntryResponse.from_entry(e) for e in entries],
            shares=[CommissionShareResponse.from_share(s) for s in shares],
            remaining_balance=remaining_balance(shares),
        )

    except CommissionError as e:
        raise_http_error(e)


@router.get(
    "/sales/{sale_id}/payments/history",
    response_model=PaymentHistoryResponse,
    summary="Payment History",
    description="Payments as the user applied them, newest first."
)
def get_payment_history(
    sale_id: UUID,
    store: CommissionStore = Depends(get_store),
    settings: EngineSettings = Depends(get_engine_settings),
):
    """
    Consolidated payment history.

    Ledger slices written by the same apply-payment call are merged back into
    one event. Notes from different slices are joined with " | ".
    """
    try:
        events = get_consolidated_history(store, sale_id, settings=settings)
        return PaymentHistoryResponse(
            sale_id=sale_id,
            events=[PaymentEventResponse.from_event(e) for e in events],
            total_paid=total_paid(events),
        )
    except CommissionError as e:
        raise_http_error(e)


@router.get(
    "/sales/{sale_id}/payments/quote",
    response_model=PaymentQuoteResponse,
    summary="Quote Payment Amount",
    description="Suggested payment amount for a percentage of the remaining balance."
)
def quote_payment(
    sale_id: UUID,
    percentage: Decimal = Query(..., ge=0, le=100),
    store: CommissionStore = Depends(get_store),
):
    try:
        amount = quote_payment_amount(store, sale_id, percentage)
        return PaymentQuoteResponse(sale_id=sale_id, percentage=percentage, amount=amount)
    except CommissionError as e:
        raise_http_error(e)


@router.post(
    "/sales/{sale_id}/cancel",
    response_model=CancelSaleResponse,
    summary="Cancel Sale",
    description="Cancel a sale and all of its commission shares."
)
def cancel_commission_sale(
    sale_id: UUID,
    request: CancelSaleRequest,
    store: CommissionStore = Depends(get_store),
):
    """
    Soft-cancel a sale.

    Every share becomes `cancelled`. Payments already recorded stay in the
    ledger and keep showing in the history.
    """
    try:
        result = cancel_sale(store, sale_id, request.reason)
        return CancelSaleResponse(
            sale_id=result.sale_id,
            cancelled_share_count=result.cancelled_share_count,
            cancelled_at=result.cancelled_at,
        )
    except CommissionError as e:
        raise_http_error(e)
