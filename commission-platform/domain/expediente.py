"""
Domain: Expediente (per-sale closing document checklist).

Rules implemented here:
- Requirements are catalog entries owned by the tenant; items are per sale.
- At most one uploaded item per (sale_id, requirement_id). A new upload
  replaces the previous item.
- Per requirement the state machine is one-way: missing -> uploaded.
- Release-ready iff every active mandatory requirement has an uploaded item.

This module contains only pure domain entities: no I/O, no database, no frameworks.
The release signal is advisory; the payment distributor consults it only when
configured to treat it as a hard precondition.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple
from uuid import UUID

from .errors import InvalidDocumentError
from .time import require_utc_timestamp


class ExpedienteCategory(str, Enum):
    SALE_CLOSING_READY = "sale_closing_ready"
    SALE_CLOSING_PROJECT = "sale_closing_project"
    RENTAL_CLOSING = "rental_closing"


class RequirementStatus(str, Enum):
    MISSING = "missing"
    UPLOADED = "uploaded"


@dataclass(frozen=True, slots=True)
class ExpedienteRequirement:
    requirement_id: UUID
    title: str
    is_mandatory: bool
    allowed_file_types: Tuple[str, ...]
    max_file_size_bytes: int
    category: ExpedienteCategory = ExpedienteCategory.SALE_CLOSING_READY
    display_order: int = 0
    active: bool = True
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_file_size_bytes <= 0:
            raise ValueError("max_file_size_bytes must be > 0")

    def accepts(self, file_name: str, file_size: int) -> None:
        """
        Validate a document against this requirement's file rules.

        Raises:
            InvalidDocumentError: when the extension or the size is not allowed
        """

        if file_size > self.max_file_size_bytes:
            max_mb = (Decimal(self.max_file_size_bytes) / Decimal(1024 * 1024)).quantize(
                Decimal("0.1"), rounding=ROUND_HALF_UP
            )
            raise InvalidDocumentError(
                f"File too large for '{self.title}'. Maximum {max_mb}MB.",
                requirement_id=str(self.requirement_id),
                file_size=file_size,
            )

        extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
        allowed = {t.lower().lstrip(".") for t in self.allowed_file_types}
        if allowed and extension not in allowed:
            raise InvalidDocumentError(
                f"File type not allowed for '{self.title}'. Use: {', '.join(self.allowed_file_types)}",
                requirement_id=str(self.requirement_id),
                extension=extension,
            )


@dataclass(frozen=True, slots=True)
class ExpedienteItem:
    item_id: UUID
    sale_id: UUID
    requirement_id: UUID
    document_url: str
    file_type: str
    file_size: int
    uploaded_at: datetime
    file_name: Optional[str] = None
    uploaded_by: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("uploaded_at", self.uploaded_at)
        if not self.document_url:
            raise ValueError("document_url is required")


@dataclass(frozen=True, slots=True)
class ExpedienteProgress:
    uploaded: int
    total: int
    mandatory_uploaded: int
    mandatory_total: int

    @property
    def mandatory_percent(self) -> int:
        """Completion of mandatory items, 0-100 (100 when nothing is mandatory)."""

        if self.mandatory_total == 0:
            return 100
        ratio = Decimal(self.mandatory_uploaded * 100) / Decimal(self.mandatory_total)
        return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True, slots=True)
class ExpedienteChecklist:
    """
    In-memory checklist for a single sale.

    Enforces:
    - one item per requirement (uploads replace)
    - the missing -> uploaded transition never reverts
    """

    sale_id: UUID
    requirements: Tuple[ExpedienteRequirement, ...]
    _items: Mapping[UUID, ExpedienteItem]

    @staticmethod
    def build(
        sale_id: UUID,
        requirements: List[ExpedienteRequirement],
        items: List[ExpedienteItem],
    ) -> "ExpedienteChecklist":
        active = tuple(
            sorted((r for r in requirements if r.active), key=lambda r: (r.display_order, r.title))
        )
        known = {r.requirement_id for r in active}
        by_requirement: Dict[UUID, ExpedienteItem] = {}
        for item in sorted(items, key=lambda i: i.uploaded_at):
            if item.sale_id != sale_id or item.requirement_id not in known:
                continue
            by_requirement[item.requirement_id] = item
        return ExpedienteChecklist(sale_id=sale_id, requirements=active, _items=by_requirement)

    def requirement(self, requirement_id: UUID) -> Optional[ExpedienteRequirement]:
        for requirement in self.requirements:
            if requirement.requirement_id == requirement_id:
                return requirement
        return None

    def item_for(self, requirement_id: UUID) -> Optional[ExpedienteItem]:
        return self._items.get(requirement_id)

    def status_of(self, requirement_id: UUID) -> RequirementStatus:
        if requirement_id in self._items:
            return RequirementStatus.UPLOADED
        return RequirementStatus.MISSING

    def record_upload(self, item: ExpedienteItem) -> "ExpedienteChecklist":
        """Return a new checklist with `item` replacing any earlier upload."""

        if item.sale_id != self.sale_id:
            raise ValueError("Item belongs to a different sale")
        requirement = self.requirement(item.requirement_id)
        if requirement is None:
            raise ValueError("Item does not match an active requirement")
        requirement.accepts(item.file_name or item.document_url, item.file_size)

        updated: Dict[UUID, ExpedienteItem] = dict(self._items)
        updated[item.requirement_id] = item
        return ExpedienteChecklist(sale_id=self.sale_id, requirements=self.requirements, _items=updated)

    def missing_mandatory(self) -> List[ExpedienteRequirement]:
        return [r for r in self.requirements if r.is_mandatory and r.requirement_id not in self._items]

    @property
    def is_release_ready(self) -> bool:
        return not self.missing_mandatory()

    def progress(self) -> ExpedienteProgress:
        mandatory = [r for r in self.requirements if r.is_mandatory]
        return ExpedienteProgress(
            uploaded=sum(1 for r in self.requirements if r.requirement_id in self._items),
            total=len(self.requirements),
            mandatory_uploaded=sum(1 for r in mandatory if r.requirement_id in self._items),
            mandatory_total=len(mandatory),
        )
