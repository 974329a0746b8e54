"""
Commission store (persistence contract + in-memory implementation).

The engine talks to persistence only through `CommissionStore`. Two
implementations exist:
- `InMemoryCommissionStore` (this module): dict-backed, thread-safe, used by
  tests, the demo script and local runs.
- `SupabaseCommissionStore` (`repositories/supabase_commission_store.py`).

Contract every implementation must honour:
- `commit_payment_batch` and `commit_cancellation` are all-or-nothing. A
  concurrent reader never observes part of a batch.
- `commit_payment_batch` re-checks each share's expected paid_to_date and
  raises `ConcurrentModificationError` when it moved, so two writers cannot
  both pass the overpayment precondition.
- Ledger entries are write-once: no method updates or deletes them.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple
from uuid import UUID

from domain.commission import CommissionShare
from domain.errors import ConcurrentModificationError
from domain.expediente import ExpedienteCategory, ExpedienteItem, ExpedienteRequirement
from domain.ledger import PaymentLedgerEntry
from domain.sale import Sale


class SaleLockRegistry:
    """Process-local per-sale locks serializing writers against the same sale."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[UUID, threading.Lock] = {}

    @contextmanager
    def hold(self, sale_id: UUID) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(sale_id, threading.Lock())
        with lock:
            yield


class CommissionStore(Protocol):
    def lock(self, sale_id: UUID): ...

    def get_sale(self, sale_id: UUID) -> Optional[Sale]: ...

    def save_sale(self, sale: Sale) -> None: ...

    def list_shares(self, sale_id: UUID) -> List[CommissionShare]: ...

    def save_shares(
        self,
        sale_id: UUID,
        shares: Sequence[CommissionShare],
        deleted_share_ids: Sequence[UUID] = (),
    ) -> None: ...

    def list_ledger(self, sale_id: UUID) -> List[PaymentLedgerEntry]: ...

    def commit_payment_batch(
        self,
        sale_id: UUID,
        entries: Sequence[PaymentLedgerEntry],
        shares: Sequence[CommissionShare],
        expected_paid: Mapping[UUID, Decimal],
    ) -> None: ...

    def commit_cancellation(self, sale: Sale, shares: Sequence[CommissionShare]) -> None: ...

    def list_requirements(self, category: ExpedienteCategory) -> List[ExpedienteRequirement]: ...

    def list_expediente_items(self, sale_id: UUID) -> List[ExpedienteItem]: ...

    def save_expediente_item(self, item: ExpedienteItem) -> None: ...


class InMemoryCommissionStore:
    """
    Dict-backed store.

    Share order is insertion order per sale, which is the iteration order the
    distributor uses (the last share absorbs rounding remainders).
    """

    def __init__(self) -> None:
        self._data_lock = threading.RLock()
        self._sale_locks = SaleLockRegistry()
        self._sales: Dict[UUID, Sale] = {}
        self._shares: Dict[UUID, Dict[UUID, CommissionShare]] = {}
        self._ledger: Dict[UUID, List[PaymentLedgerEntry]] = {}
        self._requirements: Dict[UUID, ExpedienteRequirement] = {}
        self._items: Dict[Tuple[UUID, UUID], ExpedienteItem] = {}

    def lock(self, sale_id: UUID):
        return self._sale_locks.hold(sale_id)

    # Sales

    def get_sale(self, sale_id: UUID) -> Optional[Sale]:
        with self._data_lock:
            return self._sales.get(sale_id)

    def save_sale(self, sale: Sale) -> None:
        with self._data_lock:
            self._sales[sale.sale_id] = sale

    # Shares

    def list_shares(self, sale_id: UUID) -> List[CommissionShare]:
        with self._data_lock:
            return list(self._shares.get(sale_id, {}).values())

    def save_shares(
        self,
        sale_id: UUID,
        shares: Sequence[CommissionShare],
        deleted_share_ids: Sequence[UUID] = (),
    ) -> None:
        with self._data_lock:
            referenced = {e.share_id for e in self._ledger.get(sale_id, [])}
            blocked = referenced.intersection(deleted_share_ids)
            if blocked:
                raise RuntimeError(
                    f"Failed to save shares: cannot delete shares with ledger entries {sorted(map(str, blocked))}"
                )
            for share in shares:
                if share.sale_id != sale_id:
                    raise RuntimeError(f"Failed to save shares: share {share.share_id} belongs to another sale")

            current = dict(self._shares.get(sale_id, {}))
            for share_id in deleted_share_ids:
                current.pop(share_id, None)
            for share in shares:
                current[share.share_id] = share
            self._shares[sale_id] = current

    # Ledger

    def list_ledger(self, sale_id: UUID) -> List[PaymentLedgerEntry]:
        with self._data_lock:
            return list(self._ledger.get(sale_id, []))

    def commit_payment_batch(
        self,
        sale_id: UUID,
        entries: Sequence[PaymentLedgerEntry],
        shares: Sequence[CommissionShare],
        expected_paid: Mapping[UUID, Decimal],
    ) -> None:
        with self._data_lock:
            current = self._shares.get(sale_id, {})
            for share_id, paid in expected_paid.items():
                existing = current.get(share_id)
                if existing is None or existing.paid_to_date != paid:
                    raise ConcurrentModificationError(sale_id, f"share {share_id}")

            known_ids = {e.entry_id for e in self._ledger.get(sale_id, [])}
            if any(e.entry_id in known_ids for e in entries):
                raise RuntimeError("Failed to record payment: duplicate ledger entry id")

            updated = dict(current)
            for share in shares:
                updated[share.share_id] = share
            self._ledger.setdefault(sale_id, []).extend(entries)
            self._shares[sale_id] = updated

    def commit_cancellation(self, sale: Sale, shares: Sequence[CommissionShare]) -> None:
        with self._data_lock:
            updated = dict(self._shares.get(sale.sale_id, {}))
            for share in shares:
                updated[share.share_id] = share
            self._sales[sale.sale_id] = sale
            self._shares[sale.sale_id] = updated

    # Expediente

    def add_requirement(self, requirement: ExpedienteRequirement) -> None:
        with self._data_lock:
            self._requirements[requirement.requirement_id] = requirement

    def list_requirements(self, category: ExpedienteCategory) -> List[ExpedienteRequirement]:
        with self._data_lock:
            return [r for r in self._requirements.values() if r.category == category]

    def list_expediente_items(self, sale_id: UUID) -> List[ExpedienteItem]:
        with self._data_lock:
            return [item for (sid, _), item in self._items.items() if sid == sale_id]

    def save_expediente_item(self, item: ExpedienteItem) -> None:
        with self._data_lock:
            self._items[(item.sale_id, item.requirement_id)] = item


__all__ = [
    "CommissionStore",
    "InMemoryCommissionStore",
    "SaleLockRegistry",
]
