"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
Amounts are Decimals and serialize as strings ("1400.00").
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.commission import BeneficiaryRole, CommissionShare, ShareStatus
from domain.expediente import ExpedienteCategory, ExpedienteItem, RequirementStatus
from domain.ledger import PaymentEvent, PaymentLedgerEntry, PaymentType


# ============================================================================
# Commission Share Models
# ============================================================================

class BeneficiaryInput(BaseModel):
    """One beneficiary and its split of the commission."""
    role: BeneficiaryRole
    beneficiary_id: str = Field(..., min_length=1)
    split_pct: Decimal = Field(..., ge=0, le=100, description="Split percentage on a 0-100 scale")


class BuildSharesRequest(BaseModel):
    """Sale terms plus the beneficiaries that share its commission."""
    price: Decimal = Field(..., ge=0)
    commission_pct: Decimal = Field(..., ge=0, le=100)
    currency: str = Field("USD", min_length=3, max_length=3)
    expediente_category: ExpedienteCategory = ExpedienteCategory.SALE_CLOSING_READY
    beneficiaries: List[BeneficiaryInput] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "price": "100000.00",
                "commission_pct": "5",
                "currency": "USD",
                "beneficiaries": [
                    {"role": "seller", "beneficiary_id": "agent-17", "split_pct": "70"},
                    {"role": "house", "beneficiary_id": "office-1", "split_pct": "30"}
                ]
            }
        }


class CommissionShareResponse(BaseModel):
    share_id: UUID
    sale_id: UUID
    beneficiary_id: str
    role: BeneficiaryRole
    total_amount: Decimal
    currency: str
    split_pct_self: Decimal
    split_pct_other: Decimal
    paid_to_date: Decimal
    remaining: Decimal
    status: ShareStatus
    last_payment_at: Optional[date] = None
    notes: Optional[str] = None

    @staticmethod
    def from_share(share: CommissionShare) -> "CommissionShareResponse":
        return CommissionShareResponse(
            share_id=share.share_id,
            sale_id=share.sale_id,
            beneficiary_id=share.beneficiary_id,
            role=share.role,
            total_amount=share.total_amount,
            currency=share.currency,
            split_pct_self=share.split_pct_self,
            split_pct_other=share.split_pct_other,
            paid_to_date=share.paid_to_date,
            remaining=share.remaining,
            status=share.status,
            last_payment_at=share.last_payment_at,
            notes=share.notes,
        )


class BuildSharesResponse(BaseModel):
    sale_id: UUID
    commission_amount: Decimal
    currency: str
    shares: List[CommissionShareResponse]
    created: int
    updated: int
    removed: int


class ShareListResponse(BaseModel):
    sale_id: UUID
    shares: List[CommissionShareResponse]
    remaining_balance: Decimal


# ============================================================================
# Payment Models
# ============================================================================

class ApplyPaymentRequest(BaseModel):
    """Request to apply a payment against a sale's commission."""
    amount: Decimal = Field(..., gt=0, description="Total applied; split across shares")
    payment_type: PaymentType = PaymentType.PARTIAL
    payment_date: date
    notes: Optional[str] = None
    receipt_ref: Optional[str] = None
    recorded_by: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "amount": "2000.00",
                "payment_type": "partial",
                "payment_date": "2025-03-01",
                "notes": "Wire from closing attorney",
                "receipt_ref": "https://files.example.com/receipts/123.pdf"
            }
        }


class LedgerEntryResponse(BaseModel):
    entry_id: UUID
    share_id: UUID
    sale_id: UUID
    amount: Decimal
    currency: str
    payment_type: PaymentType
    payment_date: date
    registered_at: datetime
    split_pct_used: Decimal
    batch_id: UUID
    receipt_ref: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None

    @staticmethod
    def from_entry(entry: PaymentLedgerEntry) -> "LedgerEntryResponse":
        return LedgerEntryResponse(
            entry_id=entry.entry_id,
            share_id=entry.share_id,
            sale_id=entry.sale_id,
            amount=entry.amount,
            currency=entry.currency,
            payment_type=entry.payment_type,
            payment_date=entry.payment_date,
            registered_at=entry.registered_at,
            split_pct_used=entry.distribution_meta.split_pct_used,
            batch_id=entry.distribution_meta.batch_id,
            receipt_ref=entry.receipt_ref,
            notes=entry.notes,
            recorded_by=entry.recorded_by,
        )


class ApplyPaymentResponse(BaseModel):
    sale_id: UUID
    entries: List[LedgerEntryResponse]
    shares: List[CommissionShareResponse]
    remaining_balance: Decimal


class PaymentEventResponse(BaseModel):
    registered_at: datetime
    payment_date: date
    payment_type: PaymentType
    amount: Decimal
    currency: str
    entry_count: int
    notes: Optional[str] = None
    receipt_ref: Optional[str] = None
    recorded_by: Optional[str] = None

    @staticmethod
    def from_event(event: PaymentEvent) -> "PaymentEventResponse":
        return PaymentEventResponse(
            registered_at=event.registered_at,
            payment_date=event.payment_date,
            payment_type=event.payment_type,
            amount=event.amount,
            currency=event.currency,
            entry_count=event.entry_count,
            notes=event.notes,
            receipt_ref=event.receipt_ref,
            recorded_by=event.recorded_by,
        )


class PaymentHistoryResponse(BaseModel):
    sale_id: UUID
    events: List[PaymentEventResponse]
    total_paid: Decimal


class PaymentQuoteResponse(BaseModel):
    sale_id: UUID
    percentage: Decimal
    amount: Decimal


# ============================================================================
# Cancellation Models
# ============================================================================

class CancelSaleRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the sale is being cancelled")


class CancelSaleResponse(BaseModel):
    sale_id: UUID
    cancelled_share_count: int
    cancelled_at: datetime


# ============================================================================
# Expediente Models
# ============================================================================

class ExpedienteItemResponse(BaseModel):
    item_id: UUID
    requirement_id: UUID
    document_url: str
    file_name: Optional[str] = None
    file_type: str
    file_size: int
    uploaded_at: datetime
    uploaded_by: Optional[str] = None

    @staticmethod
    def from_item(item: ExpedienteItem) -> "ExpedienteItemResponse":
        return ExpedienteItemResponse(
            item_id=item.item_id,
            requirement_id=item.requirement_id,
            document_url=item.document_url,
            file_name=item.file_name,
            file_type=item.file_type,
            file_size=item.file_size,
            uploaded_at=item.uploaded_at,
            uploaded_by=item.uploaded_by,
        )


class RequirementStateResponse(BaseModel):
    requirement_id: UUID
    title: str
    is_mandatory: bool
    status: RequirementStatus
    item: Optional[ExpedienteItemResponse] = None


class ExpedienteResponse(BaseModel):
    sale_id: UUID
    release_ready: bool
    uploaded: int
    total: int
    mandatory_uploaded: int
    mandatory_total: int
    mandatory_percent: int
    missing_mandatory: List[str]
    requirements: List[RequirementStateResponse]


class RecordUploadRequest(BaseModel):
    """Metadata of a document already stored by the upload service."""
    requirement_id: UUID
    document_url: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    file_type: str
    file_size: int = Field(..., ge=0)
    uploaded_by: Optional[str] = None


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {
                "error": "OverpaymentError",
                "detail": "Payment of 1.00 exceeds remaining balance 0.00",
                "status_code": 409
            }
        }
