"""Employee eligibility snapshot writes and their ledger rows.

The snapshot lives in JSONB columns; in-place mutation is not tracked by the
ORM, so every write assigns a fresh dict.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import LedgerReason
from backend.core.models import Employee
from backend.eligibility.models import EligibilityLedgerEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotChange:
    category: str
    previous: int
    new: int

    @property
    def delta(self) -> int:
        return self.new - self.previous


def remaining(employee: Employee, category: str) -> int:
    value = (employee.eligibility or {}).get(category, 0)
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def set_remaining(employee: Employee, category: str, value: int) -> Optional[SnapshotChange]:
    """Set one category's remaining quantity; ``None`` when nothing changed."""
    previous = remaining(employee, category)
    current = dict(employee.eligibility or {})
    if previous == value and category in current:
        return None
    current[category] = value
    employee.eligibility = current
    return SnapshotChange(category=category, previous=previous, new=value)


def replace_eligibility(employee: Employee, quantities: dict[str, int]) -> list[SnapshotChange]:
    """Swap the whole eligibility map, returning per-category differences."""
    before = dict(employee.eligibility or {})
    changes = []
    for category in sorted(set(before) | set(quantities)):
        old = remaining(employee, category)
        new = quantities.get(category, 0)
        if old != new:
            changes.append(SnapshotChange(category=category, previous=old, new=new))
    employee.eligibility = dict(quantities)
    return changes


def record_changes(
    db: AsyncSession,
    employee: Employee,
    changes: Iterable[SnapshotChange],
    reason: LedgerReason,
    *,
    order_id: Optional[uuid.UUID] = None,
    return_request_id: Optional[uuid.UUID] = None,
) -> list[EligibilityLedgerEntry]:
    # Stamped at write time so rows written in one transaction keep their order
    written_at = datetime.now(timezone.utc)
    entries = []
    for change in changes:
        entry = EligibilityLedgerEntry(
            employee_id=employee.id,
            category=change.category,
            delta=change.delta,
            previous_value=change.previous,
            new_value=change.new,
            reason=reason,
            order_id=order_id,
            return_request_id=return_request_id,
            created_at=written_at,
        )
        db.add(entry)
        entries.append(entry)
        logger.info(
            "Eligibility %s for %s/%s: %d -> %d",
            reason.value, employee.employee_code, change.category,
            change.previous, change.new,
        )
    return entries
