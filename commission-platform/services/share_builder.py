"""
Commission share builder.

Turns a closed sale plus an ordered list of beneficiaries into one
CommissionShare per beneficiary, snapshotting each beneficiary's split
percentage onto the share.

Re-running the builder for a sale (e.g. after the price was edited) never
discards paid history:
- shares matched by (role, beneficiary_id) keep their frozen split and only
  get total_amount recomputed from the current commission amount
- beneficiaries without a share get a new one
- shares no longer listed are removed only if the ledger has no entries for them
- the frozen splits of every share left active (listed or kept for its paid
  history) must still add up to 100, so the shares never owe more than the
  sale's commission; a paid beneficiary can only be replaced by listing it
  again with its frozen split

When the sale is already stored, the builder applies the caller's price and
commission percentage to the stored record under the sale lock, so a stale
copy never overwrites a concurrent edit or cancellation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from domain.commission import Beneficiary, CommissionShare, ShareStatus
from domain.errors import InvalidSplit, SaleCancelledError, SaleNotFoundError, ShareTotalBelowPaidError
from domain.money import ONE_HUNDRED, ZERO, apply_percentage, complement_percentage, quantize_money
from domain.sale import Sale
from repositories.commission_store import CommissionStore
from services.reconciler import reconcile_shares
from services.settings import EngineSettings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ShareBuildResult:
    sale: Sale
    shares: List[CommissionShare]
    created: int
    updated: int
    removed: int


def validate_split(beneficiaries: Sequence[Beneficiary], tolerance: Decimal = Decimal("0.01")) -> Decimal:
    """
    Check that beneficiary splits add up to 100 within `tolerance`.

    Returns:
        The split total

    Raises:
        InvalidSplit: no beneficiaries, duplicated beneficiaries, or a bad total
    """

    if not beneficiaries:
        raise InvalidSplit("At least one beneficiary is required")

    seen = set()
    for beneficiary in beneficiaries:
        if beneficiary.key in seen:
            raise InvalidSplit(
                f"Beneficiary {beneficiary.beneficiary_id} appears twice as {beneficiary.role.value}"
            )
        seen.add(beneficiary.key)

    total = sum((b.split_pct for b in beneficiaries), ZERO)
    if abs(total - ONE_HUNDRED) > tolerance:
        raise InvalidSplit(f"Split percentages must add up to 100, got {total}", total=total)
    return total


def check_active_split(shares: Sequence[CommissionShare], tolerance: Decimal = Decimal("0.01")) -> Decimal:
    """
    Check that the frozen splits of the non-cancelled shares add up to 100.

    Raises:
        InvalidSplit: the shares would owe more or less than the whole commission
    """

    total = sum((s.split_pct_self for s in shares if s.is_active), ZERO)
    if abs(total - ONE_HUNDRED) > tolerance:
        raise InvalidSplit(
            f"Frozen splits of the sale's shares would add up to {total}, not 100; "
            "beneficiaries with payments must stay listed with their original split",
            total=total,
        )
    return total


def share_total(sale: Sale, split_pct: Decimal) -> Decimal:
    return quantize_money(apply_percentage(sale.commission_amount, split_pct))


def plan_shares(
    sale: Sale,
    beneficiaries: Sequence[Beneficiary],
    existing: Sequence[CommissionShare] = (),
    *,
    tolerance: Decimal = Decimal("0.01"),
) -> tuple[List[CommissionShare], List[CommissionShare]]:
    """
    Pure planning step of the builder.

    Returns:
        (shares to keep or create in beneficiary order, shares no longer listed)
    """

    validate_split(beneficiaries, tolerance)

    by_key: Dict[tuple, CommissionShare] = {share.key: share for share in existing}
    planned: List[CommissionShare] = []

    for beneficiary in beneficiaries:
        current = by_key.pop(beneficiary.key, None)
        if current is None:
            split = beneficiary.split_pct
            planned.append(
                CommissionShare(
                    share_id=uuid4(),
                    sale_id=sale.sale_id,
                    beneficiary_id=beneficiary.beneficiary_id,
                    role=beneficiary.role,
                    total_amount=share_total(sale, split),
                    currency=sale.currency,
                    split_pct_self=split,
                    split_pct_other=complement_percentage(split),
                )
            )
            continue

        if current.status is ShareStatus.CANCELLED:
            planned.append(current)
            continue

        new_total = share_total(sale, current.split_pct_self)
        if new_total < current.paid_to_date:
            raise ShareTotalBelowPaidError(current.share_id, new_total, current.paid_to_date)
        planned.append(replace(current, total_amount=new_total))

    return planned, list(by_key.values())


def build_shares(
    store: CommissionStore,
    sale: Sale,
    beneficiaries: Sequence[Beneficiary],
    *,
    settings: Optional[EngineSettings] = None,
) -> ShareBuildResult:
    """
    Create or refresh the commission shares of a sale.

    Args:
        store: Persistence backend
        sale: The closed sale. If the store already knows it, only its price and
            commission_pct are applied to the stored record
        beneficiaries: Ordered beneficiary definitions; order becomes the
            distribution order, so the last beneficiary absorbs rounding
        settings: Engine settings (split tolerance)

    Returns:
        ShareBuildResult with the sale's shares after the build

    Raises:
        InvalidSplit: splits out of range or not adding up to 100, including the
            frozen splits of existing shares
        SaleCancelledError: the sale is cancelled
        ShareTotalBelowPaidError: a recomputed total is below what was already paid
    """

    settings = settings or get_settings()

    with store.lock(sale.sale_id):
        stored = store.get_sale(sale.sale_id)
        if sale.cancelled or (stored is not None and stored.cancelled):
            raise SaleCancelledError(sale.sale_id)
        if stored is not None:
            sale = stored.with_price(sale.price, sale.commission_pct)

        existing = store.list_shares(sale.sale_id)
        ledger = store.list_ledger(sale.sale_id)
        existing = reconcile_shares(existing, ledger)

        planned, unlisted = plan_shares(sale, beneficiaries, existing, tolerance=settings.split_tolerance)

        paid_share_ids = {entry.share_id for entry in ledger}
        removable: List[UUID] = [s.share_id for s in unlisted if s.share_id not in paid_share_ids]
        kept_unlisted = [s for s in unlisted if s.share_id in paid_share_ids]
        check_active_split(planned + kept_unlisted, settings.split_tolerance)

        shares = reconcile_shares(planned + kept_unlisted, ledger)

        store.save_sale(sale)
        store.save_shares(sale.sale_id, shares, deleted_share_ids=removable)

    existing_ids = {s.share_id for s in existing}
    created = sum(1 for s in planned if s.share_id not in existing_ids)
    result = ShareBuildResult(
        sale=sale,
        shares=shares,
        created=created,
        updated=len(planned) - created,
        removed=len(removable),
    )

    logger.info(
        f"Commission shares built for sale {sale.sale_id}",
        extra={
            "sale_id": str(sale.sale_id),
            "created": result.created,
            "updated": result.updated,
            "removed": result.removed,
            "kept_with_history": len(kept_unlisted),
        },
    )
    return result


def get_shares(store: CommissionStore, sale_id: UUID) -> List[CommissionShare]:
    """Shares of a sale, reconciled against the current ledger."""

    if store.get_sale(sale_id) is None:
        raise SaleNotFoundError(sale_id)
    return reconcile_shares(store.list_shares(sale_id), store.list_ledger(sale_id))


__all__ = [
    "ShareBuildResult",
    "build_shares",
    "check_active_split",
    "get_shares",
    "plan_shares",
    "share_total",
    "validate_split",
]
