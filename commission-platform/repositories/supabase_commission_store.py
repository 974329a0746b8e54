"""
Supabase-backed commission store (persistence).

This module provides *only* persistence operations for sales, commission
shares, ledger entries and expediente records. Business rules live in
`services/`; here we only map rows to domain entities and back.

Atomic writes go through PostgreSQL functions called with `rpc`:
- apply_commission_payment_atomic(p_sale_id, p_entries, p_shares, p_expected_paid)
  Locks the sale's share rows (FOR UPDATE), compares each paid_to_date with
  p_expected_paid, and only then inserts the entries and updates the shares.
  Returns {"success": false, "error": "CONFLICT"} when balances moved.
- cancel_sale_atomic(p_sale, p_share_ids)
  Updates the sale and marks the listed shares cancelled in one transaction.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from postgrest.exceptions import APIError

from domain.commission import BeneficiaryRole, CommissionShare, ShareStatus
from domain.errors import ConcurrentModificationError
from domain.expediente import ExpedienteCategory, ExpedienteItem, ExpedienteRequirement
from domain.ledger import DistributionMeta, PaymentLedgerEntry, PaymentType
from domain.sale import Sale
from domain.time import require_utc_timestamp
from repositories.commission_store import SaleLockRegistry

# Supabase table names.
# Keep these aligned with your database schema.
_SALES_TABLE: str = "sales"
_SHARES_TABLE: str = "commission_shares"
_PAYMENTS_TABLE: str = "commission_payments"
_REQUIREMENTS_TABLE: str = "expediente_requirements"
_ITEMS_TABLE: str = "expediente_items"

_APPLY_PAYMENT_RPC: str = "apply_commission_payment_atomic"
_CANCEL_SALE_RPC: str = "cancel_sale_atomic"


def _to_iso_utc(dt: datetime, *, name: str) -> str:
    """Serialize a UTC datetime to ISO-8601 (timezone-aware, offset 0)."""

    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_utc_datetime(value: Any) -> datetime:
    """
    Parse a Supabase timestamp into a timezone-aware UTC datetime.

    Supabase commonly returns ISO-8601 strings, sometimes with a trailing 'Z'.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"Unsupported date type: {type(value)!r}")


def _optional(row: Mapping[str, Any], key: str, parse):
    value = row.get(key)
    return parse(value) if value is not None else None


def _check(response: Any, action: str) -> List[Mapping[str, Any]]:
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")
    return getattr(response, "data", None) or []


# Row mapping


def _row_to_sale(row: Mapping[str, Any]) -> Sale:
    return Sale(
        sale_id=UUID(str(row["sale_id"])),
        price=Decimal(str(row["price"])),
        currency=str(row.get("currency", "USD")),
        commission_pct=Decimal(str(row["commission_pct"])),
        commission_amount=Decimal(str(row["commission_amount"])),
        cancelled=bool(row.get("cancelled", False)),
        cancel_reason=row.get("cancel_reason"),
        cancelled_at=_optional(row, "cancelled_at_utc", _parse_utc_datetime),
        closed_at=_optional(row, "closed_at_utc", _parse_utc_datetime),
        expediente_category=str(row.get("expediente_category") or "sale_closing_ready"),
    )


def _sale_to_row(sale: Sale) -> Dict[str, Any]:
    return {
        "sale_id": str(sale.sale_id),
        "price": str(sale.price),
        "currency": sale.currency,
        "commission_pct": str(sale.commission_pct),
        "commission_amount": str(sale.commission_amount),
        "cancelled": sale.cancelled,
        "cancel_reason": sale.cancel_reason,
        "cancelled_at_utc": _to_iso_utc(sale.cancelled_at, name="cancelled_at") if sale.cancelled_at else None,
        "closed_at_utc": _to_iso_utc(sale.closed_at, name="closed_at") if sale.closed_at else None,
        "expediente_category": sale.expediente_category,
    }


def _row_to_share(row: Mapping[str, Any]) -> CommissionShare:
    return CommissionShare(
        share_id=UUID(str(row["share_id"])),
        sale_id=UUID(str(row["sale_id"])),
        beneficiary_id=str(row["beneficiary_id"]),
        role=BeneficiaryRole(str(row["role"])),
        total_amount=Decimal(str(row["total_amount"])),
        currency=str(row.get("currency", "USD")),
        split_pct_self=Decimal(str(row["split_pct_self"])),
        split_pct_other=Decimal(str(row["split_pct_other"])),
        paid_to_date=Decimal(str(row.get("paid_to_date") or "0")),
        status=ShareStatus(str(row.get("status") or "pending")),
        last_payment_at=_optional(row, "last_payment_at", _parse_date),
        notes=row.get("notes"),
    )


def _share_to_row(share: CommissionShare, position: int) -> Dict[str, Any]:
    return {
        "share_id": str(share.share_id),
        "sale_id": str(share.sale_id),
        "beneficiary_id": share.beneficiary_id,
        "role": share.role.value,
        "total_amount": str(share.total_amount),
        "currency": share.currency,
        "split_pct_self": str(share.split_pct_self),
        "split_pct_other": str(share.split_pct_other),
        "paid_to_date": str(share.paid_to_date),
        "status": share.status.value,
        "last_payment_at": share.last_payment_at.isoformat() if share.last_payment_at else None,
        "notes": share.notes,
        "position": position,
    }


def _row_to_entry(row: Mapping[str, Any]) -> PaymentLedgerEntry:
    registered_at = _parse_utc_datetime(row["registered_at_utc"])
    meta = row.get("distribution_meta") or {}
    return PaymentLedgerEntry(
        entry_id=UUID(str(row["entry_id"])),
        share_id=UUID(str(row["share_id"])),
        sale_id=UUID(str(row["sale_id"])),
        amount=Decimal(str(row["amount"])),
        currency=str(row.get("currency", "USD")),
        payment_type=PaymentType(str(row.get("payment_type") or "partial")),
        payment_date=_parse_date(row["payment_date"]),
        registered_at=registered_at,
        distribution_meta=DistributionMeta(
            split_pct_used=Decimal(str(meta.get("split_pct_used", "0"))),
            registered_at=_parse_utc_datetime(meta["registered_at"]) if meta.get("registered_at") else registered_at,
            batch_id=UUID(str(meta["batch_id"])) if meta.get("batch_id") else UUID(str(row["entry_id"])),
            idempotency_key=meta.get("idempotency_key"),
        ),
        receipt_ref=row.get("receipt_ref"),
        notes=row.get("notes"),
        recorded_by=row.get("recorded_by"),
    )


def _entry_to_row(entry: PaymentLedgerEntry) -> Dict[str, Any]:
    return {
        "entry_id": str(entry.entry_id),
        "share_id": str(entry.share_id),
        "sale_id": str(entry.sale_id),
        "amount": str(entry.amount),
        "currency": entry.currency,
        "payment_type": entry.payment_type.value,
        "payment_date": entry.payment_date.isoformat(),
        "registered_at_utc": _to_iso_utc(entry.registered_at, name="registered_at"),
        "receipt_ref": entry.receipt_ref,
        "notes": entry.notes,
        "recorded_by": entry.recorded_by,
        "distribution_meta": entry.distribution_meta.to_dict(),
    }


def _row_to_requirement(row: Mapping[str, Any]) -> ExpedienteRequirement:
    return ExpedienteRequirement(
        requirement_id=UUID(str(row["requirement_id"])),
        title=str(row["title"]),
        is_mandatory=bool(row.get("is_mandatory", False)),
        allowed_file_types=tuple(row.get("allowed_file_types") or ()),
        max_file_size_bytes=int(row["max_file_size_bytes"]),
        category=ExpedienteCategory(str(row["category"])),
        display_order=int(row.get("display_order") or 0),
        active=bool(row.get("active", True)),
        description=row.get("description"),
    )


def _row_to_item(row: Mapping[str, Any]) -> ExpedienteItem:
    return ExpedienteItem(
        item_id=UUID(str(row["item_id"])),
        sale_id=UUID(str(row["sale_id"])),
        requirement_id=UUID(str(row["requirement_id"])),
        document_url=str(row["document_url"]),
        file_type=str(row.get("file_type") or ""),
        file_size=int(row.get("file_size") or 0),
        uploaded_at=_parse_utc_datetime(row["uploaded_at_utc"]),
        file_name=row.get("file_name"),
        uploaded_by=row.get("uploaded_by"),
    )


def _item_to_row(item: ExpedienteItem) -> Dict[str, Any]:
    return {
        "item_id": str(item.item_id),
        "sale_id": str(item.sale_id),
        "requirement_id": str(item.requirement_id),
        "document_url": item.document_url,
        "file_type": item.file_type,
        "file_size": item.file_size,
        "file_name": item.file_name,
        "uploaded_at_utc": _to_iso_utc(item.uploaded_at, name="uploaded_at"),
        "uploaded_by": item.uploaded_by,
    }


class SupabaseCommissionStore:
    """CommissionStore backed by Supabase tables and atomic RPC functions."""

    def __init__(self, client: Any) -> None:
        self._client = client
        self._sale_locks = SaleLockRegistry()

    def lock(self, sale_id: UUID):
        return self._sale_locks.hold(sale_id)

    def _rpc(self, name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call an atomic PostgreSQL function and return its JSON result.

        supabase-py raises APIError when the function returns JSON, for both
        success and error payloads, so the payload is recovered from it.
        """

        try:
            response = self._client.rpc(name, params).execute()
        except APIError as e:
            payload = e.json() if callable(getattr(e, "json", None)) else {}
            if isinstance(payload, dict) and "success" in payload:
                return payload
            raise RuntimeError(f"Failed to call {name}: {e}") from e

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to call {name}: {error}")
        data = getattr(response, "data", None)
        return data if isinstance(data, dict) else {"success": True}

    # Sales

    def get_sale(self, sale_id: UUID) -> Optional[Sale]:
        response = (
            self._client.table(_SALES_TABLE)
            .select("*")
            .eq("sale_id", str(sale_id))
            .limit(1)
            .execute()
        )
        rows = _check(response, "get sale")
        return _row_to_sale(rows[0]) if rows else None

    def save_sale(self, sale: Sale) -> None:
        response = self._client.table(_SALES_TABLE).upsert(_sale_to_row(sale)).execute()
        _check(response, "save sale")

    # Shares

    def list_shares(self, sale_id: UUID) -> List[CommissionShare]:
        response = (
            self._client.table(_SHARES_TABLE)
            .select("*")
            .eq("sale_id", str(sale_id))
            .order("position")
            .execute()
        )
        return [_row_to_share(row) for row in _check(response, "list commission shares")]

    def save_shares(
        self,
        sale_id: UUID,
        shares: Sequence[CommissionShare],
        deleted_share_ids: Sequence[UUID] = (),
    ) -> None:
        if shares:
            rows = [_share_to_row(share, position) for position, share in enumerate(shares)]
            _check(self._client.table(_SHARES_TABLE).upsert(rows).execute(), "save commission shares")
        if deleted_share_ids:
            response = (
                self._client.table(_SHARES_TABLE)
                .delete()
                .eq("sale_id", str(sale_id))
                .in_("share_id", [str(share_id) for share_id in deleted_share_ids])
                .execute()
            )
            _check(response, "delete commission shares")

    # Ledger

    def list_ledger(self, sale_id: UUID) -> List[PaymentLedgerEntry]:
        response = (
            self._client.table(_PAYMENTS_TABLE)
            .select("*")
            .eq("sale_id", str(sale_id))
            .order("registered_at_utc")
            .execute()
        )
        return [_row_to_entry(row) for row in _check(response, "list commission payments")]

    def commit_payment_batch(
        self,
        sale_id: UUID,
        entries: Sequence[PaymentLedgerEntry],
        shares: Sequence[CommissionShare],
        expected_paid: Mapping[UUID, Decimal],
    ) -> None:
        result = self._rpc(
            _APPLY_PAYMENT_RPC,
            {
                "p_sale_id": str(sale_id),
                "p_entries": [_entry_to_row(entry) for entry in entries],
                "p_shares": [
                    {k: v for k, v in _share_to_row(share, 0).items() if k != "position"}
                    for share in shares
                ],
                "p_expected_paid": {str(k): str(v) for k, v in expected_paid.items()},
            },
        )
        if result.get("success"):
            return
        if result.get("error") == "CONFLICT":
            raise ConcurrentModificationError(sale_id, str(result.get("message") or ""))
        raise RuntimeError(
            f"Failed to record payment: {result.get('error')} {result.get('message') or ''}".strip()
        )

    def commit_cancellation(self, sale: Sale, shares: Sequence[CommissionShare]) -> None:
        result = self._rpc(
            _CANCEL_SALE_RPC,
            {
                "p_sale": _sale_to_row(sale),
                "p_share_ids": [str(share.share_id) for share in shares],
            },
        )
        if not result.get("success"):
            raise RuntimeError(
                f"Failed to cancel sale: {result.get('error')} {result.get('message') or ''}".strip()
            )

    # Expediente

    def list_requirements(self, category: ExpedienteCategory) -> List[ExpedienteRequirement]:
        response = (
            self._client.table(_REQUIREMENTS_TABLE)
            .select("*")
            .eq("category", ExpedienteCategory(category).value)
            .order("display_order")
            .execute()
        )
        return [_row_to_requirement(row) for row in _check(response, "list expediente requirements")]

    def list_expediente_items(self, sale_id: UUID) -> List[ExpedienteItem]:
        response = self._client.table(_ITEMS_TABLE).select("*").eq("sale_id", str(sale_id)).execute()
        return [_row_to_item(row) for row in _check(response, "list expediente items")]

    def save_expediente_item(self, item: ExpedienteItem) -> None:
        response = (
            self._client.table(_ITEMS_TABLE)
            .upsert(_item_to_row(item), on_conflict="sale_id,requirement_id")
            .execute()
        )
        _check(response, "save expediente item")


__all__ = ["SupabaseCommissionStore"]
