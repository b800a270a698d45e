"""Order consumption ledger — orders take eligibility, cancellations give it back.

Every change goes through ``record_changes`` so ``eligibility_ledger`` holds the
exact amount each order consumed; restoration reads those rows back instead of
recomputing from item quantities (consumption is clamped at zero).
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from backend.catalog.models import Product
from backend.common.constants import LedgerReason
from backend.core.models import Employee
from backend.eligibility.models import EligibilityLedgerEntry
from backend.eligibility.normalizer import normalize_category_name
from backend.eligibility.snapshot import (
    SnapshotChange,
    record_changes,
    remaining,
    set_remaining,
)
from backend.orders.models import Order, ReturnRequest

logger = logging.getLogger(__name__)

_RESTORE_REASONS = (LedgerReason.order_cancelled, LedgerReason.order_rejected)
_REFILL_REASONS = (
    LedgerReason.cycle_renewal,
    LedgerReason.full_reset,
    LedgerReason.purge,
)


def resolve_product_category(product: Optional[Product]) -> str:
    """Category reference, then subcategory parent, then legacy free text."""
    if product is None:
        return ""
    if product.category is not None:
        return normalize_category_name(product.category.name)
    if product.subcategory is not None and product.subcategory.parent_category is not None:
        return normalize_category_name(product.subcategory.parent_category.name)
    return normalize_category_name(product.legacy_category)


@dataclass
class ConsumptionResult:
    changes: list[SnapshotChange] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped: bool = False


def requested_by_category(order: Order) -> tuple[dict[str, int], list[str]]:
    totals: dict[str, int] = defaultdict(int)
    errors = []
    for item in order.items:
        if not item.category:
            errors.append(f"Item {item.position + 1}: product category could not be resolved")
            continue
        totals[item.category] += item.quantity
    return dict(totals), errors


def consume_for_order(
    db: AsyncSession,
    employee: Employee,
    order: Order,
) -> ConsumptionResult:
    """Decrement remaining eligibility by the order's quantities (floored at 0)."""
    result = ConsumptionResult()
    if order.is_replacement:
        result.skipped = True
        return result

    totals, result.errors = requested_by_category(order)
    for error in result.errors:
        logger.warning("Order %s: %s", order.id, error)

    for category, qty in sorted(totals.items()):
        new_value = max(0, remaining(employee, category) - qty)
        change = set_remaining(employee, category, new_value)
        if change is not None:
            result.changes.append(change)

    record_changes(
        db, employee, result.changes, LedgerReason.order_placed, order_id=order.id,
    )
    return result


async def refilled_since_order(
    db: AsyncSession,
    employee: Employee,
    order: Order,
    categories: Iterable[str],
) -> set[str]:
    """Categories renewed, reset or purged after *order* consumed them."""
    categories = list(categories)
    if not categories:
        return set()
    placed = aliased(EligibilityLedgerEntry)
    refill = aliased(EligibilityLedgerEntry)
    result = await db.execute(
        select(refill.category)
        .join(
            placed,
            and_(
                placed.employee_id == refill.employee_id,
                placed.category == refill.category,
            ),
        )
        .where(
            placed.order_id == order.id,
            placed.reason == LedgerReason.order_placed,
            refill.employee_id == employee.id,
            refill.category.in_(categories),
            refill.reason.in_(_REFILL_REASONS),
            refill.created_at >= placed.created_at,
        )
        .distinct()
    )
    return set(result.scalars().all())


async def restore_for_order(
    db: AsyncSession,
    employee: Employee,
    order: Order,
    reason: LedgerReason,
) -> list[SnapshotChange]:
    """Give back exactly what the order consumed; a second call is a no-op.

    Categories refilled after the order was placed (cycle renewal, full
    reset, purge) are left alone: the refill already replaced the balance
    the order drew from.
    """
    rows = (
        await db.execute(
            select(EligibilityLedgerEntry).where(
                EligibilityLedgerEntry.order_id == order.id,
                EligibilityLedgerEntry.return_request_id.is_(None),
            )
        )
    ).scalars().all()

    if any(row.reason in _RESTORE_REASONS for row in rows):
        logger.info("Order %s already restored; skipping", order.id)
        return []

    consumed: dict[str, int] = defaultdict(int)
    for row in rows:
        if row.reason == LedgerReason.order_placed:
            consumed[row.category] -= row.delta

    refilled = await refilled_since_order(db, employee, order, consumed)
    if refilled:
        logger.info(
            "Order %s: %s refilled since placement; not restored",
            order.id, ", ".join(sorted(refilled)),
        )

    changes = []
    for category, qty in sorted(consumed.items()):
        if qty <= 0 or category in refilled:
            continue
        change = set_remaining(employee, category, remaining(employee, category) + qty)
        if change is not None:
            changes.append(change)

    record_changes(db, employee, changes, reason, order_id=order.id)
    return changes


def restore_for_return(
    db: AsyncSession,
    employee: Employee,
    return_request: ReturnRequest,
    category: Optional[str],
    order_id: Optional[uuid.UUID] = None,
) -> list[SnapshotChange]:
    """Add the returned quantity back; not capped by the entitlement."""
    if not category:
        logger.warning(
            "Return %s: item has no category; eligibility not restored",
            return_request.id,
        )
        return []

    change = set_remaining(
        employee, category, remaining(employee, category) + return_request.quantity,
    )
    changes = [change] if change is not None else []
    record_changes(
        db, employee, changes, LedgerReason.return_approved,
        order_id=order_id, return_request_id=return_request.id,
    )
    return changes
