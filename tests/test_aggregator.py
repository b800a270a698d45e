"""Eligibility aggregation tests — pure folding, rule lookup, gender fallback,
encrypted designations and the service-level preview/snapshot views.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import GenderType, RecordStatus, RenewalUnit
from backend.common.crypto import FieldCipher
from backend.eligibility.aggregator import (
    EligibilityAggregator,
    RuleView,
    aggregate_rules,
    default_entitlement,
    renewal_months,
)
from backend.eligibility.service import EligibilityService
from tests.conftest import (
    _seed_category,
    _seed_company,
    _seed_employee,
    _seed_rule,
    _seed_subcategory,
)


def _view(category: str, quantity: int, months: int = 6, order: int = 0) -> RuleView:
    return RuleView(
        rule_id=uuid.uuid4(),
        category=category,
        quantity=quantity,
        cycle_months=months,
        order_key=(2, float(order), ""),
    )


# ═════════════════════════════════════════════════════════════════════
# Pure aggregation
# ═════════════════════════════════════════════════════════════════════


class TestRenewalMonths:

    @pytest.mark.parametrize(
        "frequency, unit, expected",
        [
            (1, RenewalUnit.years, 12),
            (2, "years", 24),
            (6, RenewalUnit.months, 6),
            (6, None, 6),
            (3, "months", 3),
            (None, RenewalUnit.years, 6),
            (0, RenewalUnit.months, 6),
        ],
    )
    def test_conversion(self, frequency, unit, expected):
        assert renewal_months(frequency, unit) == expected


class TestAggregateRules:

    def test_no_rules_gives_zero_default(self):
        ent = aggregate_rules([])
        assert ent.is_default
        assert ent.quantities() == {"shirt": 0, "pant": 0, "shoe": 0, "jacket": 0}
        assert ent.cadences() == {"shirt": 6, "pant": 6, "shoe": 6, "jacket": 12}

    def test_max_not_sum(self):
        ent = aggregate_rules([_view("shirt", 2), _view("shirt", 3), _view("shirt", 1)])
        assert ent.categories["shirt"].quantity == 3

    def test_cadence_follows_max_contributor(self):
        ent = aggregate_rules([
            _view("jacket", 2, months=12, order=1),
            _view("jacket", 3, months=6, order=2),
        ])
        assert ent.categories["jacket"].quantity == 3
        assert ent.categories["jacket"].cycle_months == 6

    def test_tie_later_rule_wins_cadence(self):
        early = _view("shoe", 2, months=6, order=1)
        late = _view("shoe", 2, months=12, order=2)
        ent = aggregate_rules([late, early])
        assert ent.categories["shoe"].cycle_months == 12
        assert ent.categories["shoe"].source_rule_id == late.rule_id

    def test_zero_quantity_rule_still_sets_cadence(self):
        ent = aggregate_rules([_view("jacket", 0, months=24)])
        assert ent.categories["jacket"].quantity == 0
        assert ent.categories["jacket"].cycle_months == 24
        assert not ent.is_default

    def test_unresolved_rules_skipped_and_reported(self):
        broken = _view("", 5)
        ent = aggregate_rules([broken, _view("pant", 1)])
        assert ent.unresolved_rule_ids == [broken.rule_id]
        assert ent.categories["pant"].quantity == 1

    def test_extra_category_added_with_default_cadence_from_rule(self):
        ent = aggregate_rules([_view("accessory", 4, months=3)])
        assert ent.categories["accessory"].quantity == 4
        assert ent.categories["accessory"].cycle_months == 3
        assert set(ent.quantities()) == {"shirt", "pant", "shoe", "jacket", "accessory"}

    def test_default_entitlement_is_fresh_each_call(self):
        a = default_entitlement()
        a.categories["shirt"].quantity = 9
        assert default_entitlement().categories["shirt"].quantity == 0


# ═════════════════════════════════════════════════════════════════════
# Rule lookup against the database
# ═════════════════════════════════════════════════════════════════════


class TestEntitlementForEmployee:

    async def test_pilot_scenario_exact_gender_wins(self, db: AsyncSession, company):
        await _seed_rule(
            db, company.id, gender=GenderType.unisex, category_name="Jacket",
            quantity=2, renewal_frequency=1, renewal_unit=RenewalUnit.years,
        )
        await _seed_rule(
            db, company.id, gender=GenderType.male, category_name="Jacket",
            quantity=3, renewal_frequency=6, renewal_unit=RenewalUnit.months,
        )
        male = await _seed_employee(db, company.id, gender=GenderType.male)

        ent = await EligibilityAggregator().for_employee(db, male)
        assert ent.matched_gender == "male"
        assert ent.categories["jacket"].quantity == 3
        assert ent.categories["jacket"].cycle_months == 6

    async def test_falls_back_to_unisex(self, db: AsyncSession, company):
        await _seed_rule(
            db, company.id, gender=GenderType.unisex, category_name="Jacket",
            quantity=2, renewal_frequency=1, renewal_unit=RenewalUnit.years,
        )
        await _seed_rule(db, company.id, gender=GenderType.male, category_name="Jacket", quantity=3)
        female = await _seed_employee(db, company.id, gender=GenderType.female)

        ent = await EligibilityAggregator().for_employee(db, female)
        assert ent.matched_gender == "unisex"
        assert ent.categories["jacket"].quantity == 2
        assert ent.categories["jacket"].cycle_months == 12

    async def test_missing_gender_treated_as_unisex(self, db: AsyncSession, company):
        await _seed_rule(db, company.id, category_name="Shirt", quantity=4)
        emp = await _seed_employee(db, company.id, gender=None)
        ent = await EligibilityAggregator().for_employee(db, emp)
        assert ent.categories["shirt"].quantity == 4

    async def test_designation_match_is_case_insensitive(self, db: AsyncSession, company):
        await _seed_rule(db, company.id, designation="Cabin Crew", category_name="Shoe", quantity=2)
        emp = await _seed_employee(db, company.id, designation="  CABIN   crew ")
        ent = await EligibilityAggregator().for_employee(db, emp)
        assert ent.categories["shoe"].quantity == 2

    async def test_other_company_rules_ignored(self, db: AsyncSession, company):
        other = await _seed_company(db, name="Vistara")
        await _seed_rule(db, other.id, category_name="Shirt", quantity=5)
        emp = await _seed_employee(db, company.id)
        ent = await EligibilityAggregator().for_employee(db, emp)
        assert ent.is_default

    async def test_inactive_rules_ignored(self, db: AsyncSession, company):
        await _seed_rule(db, company.id, category_name="Shirt", quantity=5, status=RecordStatus.inactive)
        emp = await _seed_employee(db, company.id)
        ent = await EligibilityAggregator().for_employee(db, emp)
        assert ent.is_default

    async def test_subcategory_rule_resolves_parent_category(self, db: AsyncSession, company):
        trousers = await _seed_category(db, "Trousers")
        sub = await _seed_subcategory(db, company.id, trousers, "Crew Trousers")
        await _seed_rule(db, company.id, subcategory=sub, quantity=2)
        emp = await _seed_employee(db, company.id)

        ent = await EligibilityAggregator().for_employee(db, emp)
        assert ent.categories["pant"].quantity == 2

    async def test_inactive_subcategory_rule_is_unresolved(self, db: AsyncSession, company):
        shirts = await _seed_category(db, "Shirt")
        sub = await _seed_subcategory(
            db, company.id, shirts, "Old Shirts", status=RecordStatus.inactive,
        )
        rule = await _seed_rule(db, company.id, subcategory=sub, quantity=2)
        emp = await _seed_employee(db, company.id)

        ent = await EligibilityAggregator().for_employee(db, emp)
        assert ent.categories["shirt"].quantity == 0
        assert ent.unresolved_rule_ids == [rule.id]

    async def test_v2_rule_wins_tie_over_v1(self, db: AsyncSession, company):
        shoes = await _seed_category(db, "Shoe")
        sub = await _seed_subcategory(db, company.id, shoes, "Crew Shoes")
        now = datetime.now(timezone.utc)
        await _seed_rule(
            db, company.id, category_name="Shoe", quantity=2,
            renewal_frequency=1, renewal_unit=RenewalUnit.years, created_at=now,
        )
        v2 = await _seed_rule(
            db, company.id, subcategory=sub, quantity=2,
            renewal_frequency=6, created_at=now - timedelta(days=30),
        )
        emp = await _seed_employee(db, company.id)

        ent = await EligibilityAggregator().for_employee(db, emp)
        assert ent.categories["shoe"].source_rule_id == v2.id
        assert ent.categories["shoe"].cycle_months == 6

    async def test_encrypted_designation_is_decrypted(self, db: AsyncSession, company):
        cipher = FieldCipher("aggregator-test-key")
        await _seed_rule(db, company.id, designation="Pilot", category_name="Shirt", quantity=3)
        emp = await _seed_employee(db, company.id, designation=cipher.encrypt("Pilot"))

        ent = await EligibilityAggregator(cipher).for_employee(db, emp)
        assert ent.categories["shirt"].quantity == 3

    async def test_no_company_or_designation_gives_default(self, db: AsyncSession, company):
        await _seed_rule(db, company.id, category_name="Shirt", quantity=3)
        orphan = await _seed_employee(db, None)
        blank = await _seed_employee(db, company.id, designation=None)

        aggregator = EligibilityAggregator()
        assert (await aggregator.for_employee(db, orphan)).is_default
        assert (await aggregator.for_employee(db, blank)).is_default


# ═════════════════════════════════════════════════════════════════════
# Service views
# ═════════════════════════════════════════════════════════════════════


class TestEligibilityViews:

    async def test_preview_does_not_touch_snapshot(self, db: AsyncSession, company):
        await _seed_rule(db, company.id, category_name="Shirt", quantity=3)
        emp = await _seed_employee(db, company.id)

        out = await EligibilityService.preview(db, emp.id)
        assert out.is_default is False
        assert {c.category: c.quantity for c in out.categories}["shirt"] == 3
        assert emp.eligibility["shirt"] == 0

    async def test_employee_view_includes_cycles(self, db: AsyncSession, company):
        emp = await _seed_employee(
            db, company.id, date_of_joining=date(2024, 1, 15),
            eligibility={"shirt": 1, "pant": 0, "shoe": 0, "jacket": 0},
        )
        out = await EligibilityService.get_employee_eligibility(
            db, emp.id, today=date(2026, 10, 17),
        )
        shirt = next(c for c in out.cycles if c.category == "shirt")
        assert shirt.cycle_start == date(2026, 7, 1)
        assert shirt.cycle_end == date(2026, 12, 31)
        assert shirt.next_cycle_start == date(2027, 1, 1)
        assert shirt.days_remaining == 76
        jacket = next(c for c in out.cycles if c.category == "jacket")
        assert jacket.cycle_start == date(2026, 1, 1)
        assert out.eligibility["shirt"] == 1

    async def test_extra_category_cycle_folds_onto_legacy(self, db: AsyncSession, company):
        emp = await _seed_employee(
            db, company.id, date_of_joining=date(2024, 1, 15),
            eligibility={"shirt": 1, "pant": 0, "shoe": 0, "jacket": 0, "blazer": 1, "belt": 2},
        )
        out = await EligibilityService.get_employee_eligibility(
            db, emp.id, today=date(2026, 10, 17),
        )
        cycles = {c.category: c for c in out.cycles}
        assert cycles["blazer"].cycle_months == 12
        assert cycles["blazer"].cycle_start == date(2026, 1, 1)
        assert cycles["belt"].cycle_months == 6
        assert cycles["belt"].cycle_start == date(2026, 7, 1)
