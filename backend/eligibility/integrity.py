"""Consistency checks over imported and live eligibility data.

Read-only: every check reports, none repairs. ``scripts/check_integrity.py``
runs the whole set on a schedule and exits non-zero when anything is found.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.catalog.models import Product, Subcategory
from backend.common.constants import RecordStatus
from backend.common.crypto import looks_encrypted
from backend.core.models import Employee
from backend.eligibility.aggregator import (
    EligibilityAggregator,
    resolve_rule_category,
)
from backend.eligibility.models import DesignationEligibilityRule
from backend.eligibility.normalizer import normalize_category_name
from backend.orders.ledger import resolve_product_category

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegrityIssue:
    check: str
    entity_type: str
    entity_id: Optional[uuid.UUID]
    detail: str


@dataclass
class IntegrityReport:
    issues: list[IntegrityIssue] = field(default_factory=list)

    def add(self, check: str, entity_type: str, entity_id: Optional[uuid.UUID], detail: str) -> None:
        self.issues.append(IntegrityIssue(check, entity_type, entity_id, detail))

    @property
    def ok(self) -> bool:
        return not self.issues

    def counts(self) -> dict[str, int]:
        return dict(Counter(issue.check for issue in self.issues))


class IntegrityChecker:
    """Runs every check in one session."""

    def __init__(self, aggregator: Optional[EligibilityAggregator] = None) -> None:
        self.aggregator = aggregator or EligibilityAggregator()

    async def run(self, db: AsyncSession) -> IntegrityReport:
        report = IntegrityReport()
        await self.check_employees(db, report)
        await self.check_rules(db, report)
        await self.check_subcategories(db, report)
        await self.check_products(db, report)
        logger.info("Integrity check finished: %s", report.counts() or "no issues")
        return report

    async def check_employees(self, db: AsyncSession, report: IntegrityReport) -> None:
        rulebook = await self.aggregator.load_rulebook(db)
        employees = (
            await db.execute(select(Employee).where(Employee.status == RecordStatus.active))
        ).scalars().all()

        for emp in employees:
            if emp.company_id is None:
                report.add("employee_without_company", "employee", emp.id, emp.employee_code)
                continue

            if looks_encrypted(emp.designation) and (
                self.aggregator.cipher.decrypt(emp.designation) == emp.designation
            ):
                report.add(
                    "undecryptable_designation", "employee", emp.id, emp.employee_code,
                )
                continue

            if not emp.designation:
                continue

            entitlement = self.aggregator.entitlement_for(emp, rulebook)
            if entitlement.is_default:
                report.add(
                    "no_matching_rule", "employee", emp.id,
                    f"{emp.employee_code}: {self.aggregator.designation_key(emp)!r}",
                )
                continue

            stored = {k: int(v or 0) for k, v in (emp.cycle_duration or {}).items()}
            if stored != entitlement.cadences():
                report.add(
                    "snapshot_drift", "employee", emp.id,
                    f"{emp.employee_code}: stored {stored} vs {entitlement.cadences()}",
                )

    async def check_rules(self, db: AsyncSession, report: IntegrityReport) -> None:
        rules = (
            await db.execute(
                select(DesignationEligibilityRule)
                .where(DesignationEligibilityRule.status == RecordStatus.active)
                .options(
                    selectinload(DesignationEligibilityRule.subcategory)
                    .selectinload(Subcategory.parent_category),
                )
            )
        ).scalars().all()

        targets: dict[tuple, list[uuid.UUID]] = defaultdict(list)
        for rule in rules:
            if not resolve_rule_category(rule):
                report.add("unresolved_rule_target", "designation_eligibility_rule",
                           rule.id, rule.target_label)
                continue
            target = (
                rule.subcategory_id
                if rule.subcategory_id is not None
                else normalize_category_name(rule.category_name)
            )
            targets[(rule.company_id, rule.designation_key, rule.gender, target)].append(rule.id)

        for key, ids in targets.items():
            if len(ids) > 1:
                report.add(
                    "duplicate_active_rule", "designation_eligibility_rule", ids[0],
                    f"{len(ids)} active rules for designation {key[1]!r} ({key[2].value})",
                )

    async def check_subcategories(self, db: AsyncSession, report: IntegrityReport) -> None:
        subs = (
            await db.execute(
                select(Subcategory).options(selectinload(Subcategory.parent_category))
            )
        ).scalars().all()
        for sub in subs:
            parent = sub.parent_category
            if parent.company_id is not None and parent.company_id != sub.company_id:
                report.add(
                    "cross_company_subcategory", "subcategory", sub.id,
                    f"{sub.name!r} under {parent.name!r} of another company",
                )

    async def check_products(self, db: AsyncSession, report: IntegrityReport) -> None:
        products = (
            await db.execute(
                select(Product)
                .where(Product.is_active.is_(True))
                .options(
                    selectinload(Product.category),
                    selectinload(Product.subcategory).selectinload(Subcategory.parent_category),
                )
            )
        ).scalars().all()
        for product in products:
            if not resolve_product_category(product):
                report.add("product_without_category", "product", product.id, product.name)
