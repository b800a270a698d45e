"""Integrity checker tests — each check fires on a crafted inconsistency."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import RecordStatus
from backend.common.crypto import FieldCipher
from backend.eligibility.aggregator import EligibilityAggregator
from backend.eligibility.integrity import IntegrityChecker
from tests.conftest import (
    _seed_category,
    _seed_company,
    _seed_employee,
    _seed_product,
    _seed_rule,
    _seed_subcategory,
)


def _checker() -> IntegrityChecker:
    return IntegrityChecker(EligibilityAggregator(FieldCipher("integrity-test-key")))


class TestIntegrityChecker:

    async def test_clean_database(self, db: AsyncSession, company, catalog):
        await _seed_rule(db, company.id, category_name="Shirt", quantity=2)
        await _seed_employee(db, company.id)

        report = await _checker().run(db)
        assert report.ok
        assert report.counts() == {}

    async def test_employee_problems(self, db: AsyncSession, company):
        await _seed_rule(
            db, company.id, category_name="Shirt", quantity=2, renewal_frequency=3,
        )
        await _seed_employee(db, None)
        await _seed_employee(db, company.id, designation="Ground Staff")
        await _seed_employee(
            db, company.id, designation=FieldCipher("some-other-key").encrypt("Pilot"),
        )
        await _seed_employee(db, company.id)  # cadence 6 stored, rule says 3
        await _seed_employee(db, company.id, designation=None)

        report = await _checker().run(db)
        assert report.counts() == {
            "employee_without_company": 1,
            "no_matching_rule": 1,
            "undecryptable_designation": 1,
            "snapshot_drift": 1,
        }

    async def test_rule_problems(self, db: AsyncSession, company):
        shirts = await _seed_category(db, "Shirt")
        dead = await _seed_subcategory(
            db, company.id, shirts, "Retired", status=RecordStatus.inactive,
        )
        await _seed_rule(db, company.id, subcategory=dead, quantity=1)
        await _seed_rule(db, company.id, category_name="Trouser", quantity=1)
        await _seed_rule(db, company.id, category_name="Trousers", quantity=2)

        report = await _checker().run(db)
        counts = report.counts()
        assert counts["unresolved_rule_target"] == 1
        assert counts["duplicate_active_rule"] == 1

    async def test_catalog_problems(self, db: AsyncSession, company):
        other = await _seed_company(db, name="Vistara")
        private = await _seed_category(db, "Vistara Shirt", company_id=other.id)
        await _seed_subcategory(db, company.id, private, "Borrowed")
        await _seed_product(db, name="Mystery", company_id=company.id)
        await _seed_product(db, name="Retired Mystery", company_id=company.id, is_active=False)

        report = await _checker().run(db)
        assert report.counts() == {
            "cross_company_subcategory": 1,
            "product_without_category": 1,
        }
        assert not report.ok
