"""Renewal tests — cycle arithmetic, full reset, per-category renewal and the
scheduled job's idempotency.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import AuditTrail
from backend.common.constants import LedgerReason, RecordStatus, RenewalUnit
from backend.eligibility.aggregator import (
    CategoryEntitlement,
    Entitlement,
    default_entitlement,
)
from backend.eligibility.models import EligibilityLedgerEntry
from backend.eligibility.renewal import (
    RenewalService,
    add_months,
    apply_full_reset,
    current_cycle,
    cycle_anchor,
    days_remaining_in_cycle,
    is_in_current_cycle,
    months_between,
    next_cycle_start,
    parse_stamp,
    renew_due_categories,
)
from tests.conftest import _seed_employee, _seed_rule


def _entitlement(**quantities: int) -> Entitlement:
    ent = default_entitlement()
    for cat, qty in quantities.items():
        ent.categories[cat] = CategoryEntitlement(
            quantity=qty, cycle_months=ent.categories[cat].cycle_months,
        )
    return ent


# ═════════════════════════════════════════════════════════════════════
# Date arithmetic
# ═════════════════════════════════════════════════════════════════════


class TestCycleArithmetic:

    def test_add_months_clamps_day(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)

    def test_months_between_ignores_day(self):
        assert months_between(date(2025, 1, 31), date(2025, 2, 1)) == 1
        assert months_between(date(2024, 1, 1), date(2026, 10, 17)) == 33

    def test_anchor_is_first_of_joining_month(self):
        assert cycle_anchor(date(2024, 3, 20)) == date(2024, 3, 1)

    def test_anchor_defaults_when_joining_date_unknown(self):
        assert cycle_anchor(None) == date(2025, 10, 1)

    def test_current_cycle_bounds_inclusive(self):
        start, end = current_cycle(date(2024, 1, 15), 6, date(2024, 7, 1))
        assert (start, end) == (date(2024, 7, 1), date(2024, 12, 31))
        start, end = current_cycle(date(2024, 1, 15), 6, date(2024, 6, 30))
        assert (start, end) == (date(2024, 1, 1), date(2024, 6, 30))

    def test_before_anchor_returns_first_cycle(self):
        start, end = current_cycle(date(2026, 3, 10), 12, date(2025, 12, 1))
        assert (start, end) == (date(2026, 3, 1), date(2027, 2, 28))

    def test_zero_duration_uses_default(self):
        start, end = current_cycle(date(2024, 1, 1), 0, date(2024, 2, 1))
        assert (start, end) == (date(2024, 1, 1), date(2024, 6, 30))

    def test_next_start_and_days_remaining(self):
        doj = date(2024, 1, 15)
        assert next_cycle_start(doj, 12, date(2026, 10, 17)) == date(2027, 1, 1)
        assert days_remaining_in_cycle(doj, 6, date(2026, 12, 31)) == 1
        assert days_remaining_in_cycle(doj, 6, date(2026, 7, 1)) == 184

    def test_is_in_current_cycle(self):
        doj = date(2024, 1, 15)
        now = date(2026, 10, 17)
        assert is_in_current_cycle(date(2026, 7, 1), doj, 6, now)
        assert not is_in_current_cycle(date(2026, 6, 30), doj, 6, now)

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2026-07-01T00:00:00+00:00", datetime(2026, 7, 1, tzinfo=timezone.utc)),
            ("2026-07-01T00:00:00Z", datetime(2026, 7, 1, tzinfo=timezone.utc)),
            ("garbage", None),
            (None, None),
            ("", None),
        ],
    )
    def test_parse_stamp(self, raw, expected):
        assert parse_stamp(raw) == expected


# ═════════════════════════════════════════════════════════════════════
# Snapshot policies
# ═════════════════════════════════════════════════════════════════════


class TestFullReset:

    async def test_sets_quantities_and_clears_stamps(self, db: AsyncSession, company):
        emp = await _seed_employee(
            db, company.id,
            eligibility={"shirt": 0, "pant": 1, "shoe": 0, "jacket": 0},
            eligibility_reset_dates={"shirt": "2026-01-01T00:00:00+00:00"},
        )
        ent = _entitlement(shirt=3, pant=2)
        changes = apply_full_reset(emp, ent)

        assert emp.eligibility == {"shirt": 3, "pant": 2, "shoe": 0, "jacket": 0}
        assert emp.cycle_duration == {"shirt": 6, "pant": 6, "shoe": 6, "jacket": 12}
        assert emp.eligibility_reset_dates == {}
        assert {c.category: c.delta for c in changes} == {"shirt": 3, "pant": 1}

    async def test_clears_stamps_even_without_quantity_change(self, db: AsyncSession, company):
        emp = await _seed_employee(
            db, company.id,
            eligibility_reset_dates={"jacket": "2026-01-01T00:00:00+00:00"},
        )
        assert apply_full_reset(emp, default_entitlement()) == []
        assert emp.eligibility_reset_dates == {}


class TestRenewDueCategories:

    async def test_unstamped_category_only_stamped(self, db: AsyncSession, company):
        emp = await _seed_employee(db, company.id)
        now = datetime(2026, 10, 17, 2, 15, tzinfo=timezone.utc)

        changes = renew_due_categories(emp, _entitlement(shirt=3), now)
        assert changes == []
        assert emp.eligibility["shirt"] == 0
        assert set(emp.eligibility_reset_dates) == {"shirt", "pant", "shoe", "jacket"}

    async def test_stamp_before_cycle_start_renews(self, db: AsyncSession, company):
        emp = await _seed_employee(
            db, company.id,
            date_of_joining=date(2024, 1, 15),
            eligibility={"shirt": 0, "pant": 0, "shoe": 0, "jacket": 1},
            eligibility_reset_dates={
                "shirt": "2026-06-30T23:00:00+00:00",
                "jacket": "2026-06-30T23:00:00+00:00",
            },
        )
        now = datetime(2026, 10, 17, tzinfo=timezone.utc)
        changes = renew_due_categories(emp, _entitlement(shirt=3, jacket=2), now)

        # shirt cycle started 2026-07-01; jacket cycle (12m) started 2026-01-01
        assert [c.category for c in changes] == ["shirt"]
        assert emp.eligibility["shirt"] == 3
        assert emp.eligibility["jacket"] == 1
        assert emp.eligibility_reset_dates["shirt"] == now.isoformat()

    async def test_second_run_same_cycle_is_noop(self, db: AsyncSession, company):
        emp = await _seed_employee(
            db, company.id,
            eligibility_reset_dates={"shirt": "2025-01-01T00:00:00+00:00"},
        )
        ent = _entitlement(shirt=2)
        first = datetime(2026, 10, 17, tzinfo=timezone.utc)
        assert len(renew_due_categories(emp, ent, first)) == 1

        emp.eligibility = {**emp.eligibility, "shirt": 0}
        assert renew_due_categories(emp, ent, datetime(2026, 11, 1, tzinfo=timezone.utc)) == []
        assert emp.eligibility["shirt"] == 0

    async def test_cycle_duration_synced_to_entitlement(self, db: AsyncSession, company):
        emp = await _seed_employee(
            db, company.id, cycle_duration={"shirt": 3, "pant": 6, "shoe": 6, "jacket": 12},
        )
        renew_due_categories(emp, default_entitlement(), datetime(2026, 10, 17, tzinfo=timezone.utc))
        assert emp.cycle_duration["shirt"] == 6


# ═════════════════════════════════════════════════════════════════════
# Scheduled job
# ═════════════════════════════════════════════════════════════════════


class TestScheduledRenewal:

    async def test_renews_writes_ledger_and_audit(self, db: AsyncSession, company):
        await _seed_rule(
            db, company.id, category_name="Shirt", quantity=3,
            renewal_frequency=6, renewal_unit=RenewalUnit.months,
        )
        emp = await _seed_employee(
            db, company.id,
            date_of_joining=date(2024, 1, 15),
            eligibility={"shirt": 1, "pant": 0, "shoe": 0, "jacket": 0},
            eligibility_reset_dates={"shirt": "2026-03-01T00:00:00+00:00"},
        )
        await _seed_employee(db, company.id, designation=None)
        await _seed_employee(db, company.id, status=RecordStatus.inactive)

        now = datetime(2026, 10, 17, 2, 15, tzinfo=timezone.utc)
        summary = await RenewalService.run_scheduled_renewal(db, now)

        assert summary.processed == 2
        assert summary.skipped == 1
        assert summary.renewed_employees == 1
        assert summary.renewed_categories == 1
        assert emp.eligibility["shirt"] == 3

        ledger = (await db.execute(select(EligibilityLedgerEntry))).scalars().all()
        assert [(row.category, row.delta, row.reason) for row in ledger] == [
            ("shirt", 2, LedgerReason.cycle_renewal),
        ]
        audit = (await db.execute(select(AuditTrail))).scalars().all()
        assert [a.action for a in audit] == ["eligibility.scheduled_renewal"]

        again = await RenewalService.run_scheduled_renewal(db, now)
        assert again.renewed_employees == 0

    async def test_dry_run_rolls_back(self, db: AsyncSession, company):
        await _seed_rule(db, company.id, category_name="Shirt", quantity=3)
        emp = await _seed_employee(
            db, company.id,
            eligibility_reset_dates={"shirt": "2024-01-01T00:00:00+00:00"},
        )
        emp_id = emp.id
        await db.commit()

        summary = await RenewalService.run_scheduled_renewal(
            db, datetime(2026, 10, 17, tzinfo=timezone.utc), dry_run=True,
        )
        assert summary.renewed_employees == 1

        db.expire_all()
        refreshed = await db.get(type(emp), emp_id)
        assert refreshed.eligibility["shirt"] == 0
        assert (await db.execute(select(EligibilityLedgerEntry))).scalars().all() == []
