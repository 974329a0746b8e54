"""
Expediente (document-completeness) service.

Tracks which required closing documents were uploaded for a sale and exposes
the release-ready signal. The signal is advisory: the payment distributor only
consults it when REQUIRE_COMPLETE_EXPEDIENTE is enabled.

Document storage itself happens elsewhere; this service records the resulting
URL and metadata once an upload succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from domain.errors import RequirementNotFoundError, SaleNotFoundError
from domain.expediente import (
    ExpedienteCategory,
    ExpedienteChecklist,
    ExpedienteItem,
    ExpedienteProgress,
    RequirementStatus,
)
from domain.sale import Sale
from domain.time import utc_now
from repositories.commission_store import CommissionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RequirementState:
    requirement_id: UUID
    title: str
    is_mandatory: bool
    status: RequirementStatus
    item: Optional[ExpedienteItem]


@dataclass(frozen=True, slots=True)
class ExpedienteStatus:
    sale_id: UUID
    release_ready: bool
    progress: ExpedienteProgress
    requirements: List[RequirementState]
    missing_mandatory: List[str]


def load_checklist(store: CommissionStore, sale: Sale) -> ExpedienteChecklist:
    category = ExpedienteCategory(sale.expediente_category)
    return ExpedienteChecklist.build(
        sale.sale_id,
        store.list_requirements(category),
        store.list_expediente_items(sale.sale_id),
    )


def _require_sale(store: CommissionStore, sale_id: UUID) -> Sale:
    sale = store.get_sale(sale_id)
    if sale is None:
        raise SaleNotFoundError(sale_id)
    return sale


def get_expediente_status(store: CommissionStore, sale_id: UUID) -> ExpedienteStatus:
    """Checklist, progress and release signal for a sale."""

    checklist = load_checklist(store, _require_sale(store, sale_id))
    return ExpedienteStatus(
        sale_id=sale_id,
        release_ready=checklist.is_release_ready,
        progress=checklist.progress(),
        requirements=[
            RequirementState(
                requirement_id=r.requirement_id,
                title=r.title,
                is_mandatory=r.is_mandatory,
                status=checklist.status_of(r.requirement_id),
                item=checklist.item_for(r.requirement_id),
            )
            for r in checklist.requirements
        ],
        missing_mandatory=[r.title for r in checklist.missing_mandatory()],
    )


def is_release_ready(store: CommissionStore, sale_id: UUID) -> bool:
    return load_checklist(store, _require_sale(store, sale_id)).is_release_ready


def record_upload(
    store: CommissionStore,
    sale_id: UUID,
    requirement_id: UUID,
    *,
    document_url: str,
    file_name: str,
    file_type: str,
    file_size: int,
    uploaded_by: Optional[str] = None,
    uploaded_at: Optional[datetime] = None,
) -> ExpedienteItem:
    """
    Record an uploaded document for a requirement, replacing any earlier one.

    Raises:
        SaleNotFoundError: unknown sale
        RequirementNotFoundError: requirement not active in the sale's category
        InvalidDocumentError: extension or size not allowed by the requirement
    """

    sale = _require_sale(store, sale_id)
    checklist = load_checklist(store, sale)
    if checklist.requirement(requirement_id) is None:
        raise RequirementNotFoundError(requirement_id)

    previous = checklist.item_for(requirement_id)
    item = ExpedienteItem(
        item_id=previous.item_id if previous is not None else uuid4(),
        sale_id=sale_id,
        requirement_id=requirement_id,
        document_url=document_url,
        file_type=file_type,
        file_size=file_size,
        uploaded_at=uploaded_at or utc_now(),
        file_name=file_name,
        uploaded_by=uploaded_by,
    )
    updated = checklist.record_upload(item)
    store.save_expediente_item(item)

    logger.info(
        f"Expediente document recorded for sale {sale_id}",
        extra={
            "sale_id": str(sale_id),
            "requirement_id": str(requirement_id),
            "replaced": previous is not None,
            "release_ready": updated.is_release_ready,
        },
    )
    return item


__all__ = [
    "ExpedienteStatus",
    "RequirementState",
    "get_expediente_status",
    "is_release_ready",
    "load_checklist",
    "record_upload",
]
