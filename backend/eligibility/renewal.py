"""Renewal scheduler — cycle arithmetic, full resets and per-category renewal.

Cycles are anchored on the first day of the employee's joining month
(``DEFAULT_CYCLE_START`` when the joining date is unknown) and repeat every
``cycle_duration[category]`` months.  A category is *due* when its last reset
stamp predates the start of the cycle containing ``now``.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.constants import DEFAULT_CYCLE_MONTHS, LedgerReason, RecordStatus
from backend.config import settings
from backend.core.models import Employee
from backend.eligibility.aggregator import EligibilityAggregator, Entitlement
from backend.eligibility.snapshot import (
    SnapshotChange,
    record_changes,
    replace_eligibility,
    set_remaining,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# Date helpers
# ═════════════════════════════════════════════════════════════════════


def add_months(value: date, months: int) -> date:
    """Shift by whole months, clamping the day (Jan 31 + 1 → Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def months_between(start: date, end: date) -> int:
    """Calendar-month difference, ignoring the day of month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def cycle_anchor(date_of_joining: Optional[date]) -> date:
    anchor = date_of_joining or settings.DEFAULT_CYCLE_START
    return anchor.replace(day=1)


def current_cycle(
    date_of_joining: Optional[date],
    duration_months: Optional[int],
    now: date,
) -> tuple[date, date]:
    """(start, end) of the cycle containing *now*; both bounds inclusive."""
    duration = duration_months or DEFAULT_CYCLE_MONTHS
    anchor = cycle_anchor(date_of_joining)
    if now < anchor:
        start = anchor
    else:
        cycles_passed = months_between(anchor, now) // duration
        start = add_months(anchor, cycles_passed * duration)
    end = add_months(start, duration) - timedelta(days=1)
    return start, end


def next_cycle_start(
    date_of_joining: Optional[date],
    duration_months: Optional[int],
    now: date,
) -> date:
    _, end = current_cycle(date_of_joining, duration_months, now)
    return end + timedelta(days=1)


def days_remaining_in_cycle(
    date_of_joining: Optional[date],
    duration_months: Optional[int],
    now: date,
) -> int:
    _, end = current_cycle(date_of_joining, duration_months, now)
    return max(0, (end - now).days + 1)


def is_in_current_cycle(
    value: date,
    date_of_joining: Optional[date],
    duration_months: Optional[int],
    now: date,
) -> bool:
    start, end = current_cycle(date_of_joining, duration_months, now)
    return start <= value <= end


def parse_stamp(raw: Any) -> Optional[datetime]:
    """Reset stamps are ISO strings; tolerate datetimes and junk."""
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str) and raw:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable reset stamp %r", raw)
    return None


# ═════════════════════════════════════════════════════════════════════
# Snapshot policies
# ═════════════════════════════════════════════════════════════════════


def apply_full_reset(employee: Employee, entitlement: Entitlement) -> list[SnapshotChange]:
    """Reapply the entitlement and clear every reset stamp."""
    changes = replace_eligibility(employee, entitlement.quantities())
    employee.cycle_duration = entitlement.cadences()
    employee.eligibility_reset_dates = {}
    return changes


def renew_due_categories(
    employee: Employee,
    entitlement: Entitlement,
    now: datetime,
) -> list[SnapshotChange]:
    """Restore categories whose cycle rolled over since their last stamp.

    Unstamped categories are only stamped; a stamp inside the current cycle
    means the category was already renewed this period.
    """
    today = now.date()
    stamps = dict(employee.eligibility_reset_dates or {})
    stamp_value = now.isoformat()
    changes: list[SnapshotChange] = []

    cadences = entitlement.cadences()
    if dict(employee.cycle_duration or {}) != cadences:
        employee.cycle_duration = cadences

    for category, ent in entitlement.categories.items():
        last = parse_stamp(stamps.get(category))
        if last is None:
            stamps[category] = stamp_value
            continue

        start, _ = current_cycle(employee.date_of_joining, ent.cycle_months, today)
        if last.date() >= start:
            continue

        change = set_remaining(employee, category, ent.quantity)
        if change is not None:
            changes.append(change)
        stamps[category] = stamp_value

    if stamps != (employee.eligibility_reset_dates or {}):
        employee.eligibility_reset_dates = stamps
    return changes


# ═════════════════════════════════════════════════════════════════════
# RenewalService
# ═════════════════════════════════════════════════════════════════════


@dataclass
class RenewalSummary:
    processed: int = 0
    renewed_employees: int = 0
    renewed_categories: int = 0
    skipped: int = 0


class RenewalService:
    """Scheduled, idempotent per-category renewal."""

    @staticmethod
    async def run_scheduled_renewal(
        db: AsyncSession,
        now: Optional[datetime] = None,
        *,
        dry_run: bool = False,
    ) -> RenewalSummary:
        now = now or datetime.now(timezone.utc)
        aggregator = EligibilityAggregator()
        rulebook = await aggregator.load_rulebook(db)
        summary = RenewalSummary()

        result = await db.execute(
            select(Employee)
            .where(Employee.status == RecordStatus.active)
            .order_by(Employee.employee_code)
        )
        for employee in result.scalars().all():
            summary.processed += 1
            if not employee.designation:
                summary.skipped += 1
                continue

            entitlement = aggregator.entitlement_for(employee, rulebook)
            changes = renew_due_categories(employee, entitlement, now)
            if not changes:
                continue

            summary.renewed_employees += 1
            summary.renewed_categories += len(changes)
            record_changes(db, employee, changes, LedgerReason.cycle_renewal)

        if dry_run:
            await db.rollback()
            logger.info("Dry run: renewal changes rolled back")
        else:
            await create_audit_entry(
                db,
                action="eligibility.scheduled_renewal",
                entity_type="employee",
                actor="renewal-scheduler",
                new_values={
                    "processed": summary.processed,
                    "renewed_employees": summary.renewed_employees,
                    "renewed_categories": summary.renewed_categories,
                },
            )
            await db.flush()

        logger.info(
            "Scheduled renewal: %d processed, %d employees / %d categories renewed, %d skipped",
            summary.processed, summary.renewed_employees,
            summary.renewed_categories, summary.skipped,
        )
        return summary
