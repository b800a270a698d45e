"""Eligibility aggregation — rules for a designation → per-category entitlement.

Resolution for one employee:
  1. decrypt the designation (raw value kept when decryption fails)
  2. rules for (company, designation, gender), else (company, designation, unisex)
  3. no rules → zeroed default entitlement (a valid state, not an error)
  4. per canonical category: quantity = max over rules, cadence from the rule
     that supplied that max (later rule wins on equal quantity)
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.catalog.models import Subcategory
from backend.common.constants import (
    DEFAULT_CYCLE_DURATIONS,
    DEFAULT_CYCLE_MONTHS,
    LEGACY_CATEGORIES,
    GenderType,
    RecordStatus,
    RenewalUnit,
)
from backend.common.crypto import FieldCipher, get_cipher
from backend.core.models import Employee
from backend.eligibility.models import DesignationEligibilityRule
from backend.eligibility.normalizer import (
    is_known_category,
    normalize_category_name,
    normalize_designation,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# Pure aggregation
# ═════════════════════════════════════════════════════════════════════


def renewal_months(
    frequency: Optional[int],
    unit: Optional[RenewalUnit | str],
) -> int:
    """Convert a rule's renewal cadence to months (unset/0 frequency → 6)."""
    if not frequency:
        return DEFAULT_CYCLE_MONTHS
    unit_value = unit.value if isinstance(unit, RenewalUnit) else unit
    if unit_value == RenewalUnit.years.value:
        return frequency * 12
    return frequency


@dataclass(frozen=True)
class RuleView:
    """A rule reduced to what aggregation needs; ``category`` is already canonical."""

    rule_id: uuid.UUID
    category: str
    quantity: int
    cycle_months: int
    order_key: tuple = ()


@dataclass
class CategoryEntitlement:
    quantity: int
    cycle_months: int
    source_rule_id: Optional[uuid.UUID] = None


@dataclass
class Entitlement:
    """Aggregated allowance for one employee."""

    categories: dict[str, CategoryEntitlement]
    matched_gender: Optional[str] = None
    rule_ids: list[uuid.UUID] = field(default_factory=list)
    unresolved_rule_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def is_default(self) -> bool:
        return not self.rule_ids

    def quantities(self) -> dict[str, int]:
        return {cat: ent.quantity for cat, ent in self.categories.items()}

    def cadences(self) -> dict[str, int]:
        return {cat: ent.cycle_months for cat, ent in self.categories.items()}


def default_entitlement() -> Entitlement:
    """All legacy categories at zero with the default cadences (6/6/6/12)."""
    return Entitlement(
        categories={
            cat: CategoryEntitlement(quantity=0, cycle_months=DEFAULT_CYCLE_DURATIONS[cat])
            for cat in LEGACY_CATEGORIES
        },
    )


def aggregate_rules(rules: Iterable[RuleView]) -> Entitlement:
    """Fold matching rules into an entitlement; max quantity per category."""
    result = default_entitlement()

    for rule in sorted(rules, key=lambda r: r.order_key):
        if not rule.category:
            result.unresolved_rule_ids.append(rule.rule_id)
            continue

        result.rule_ids.append(rule.rule_id)
        entry = result.categories.get(rule.category)
        if entry is None:
            entry = CategoryEntitlement(quantity=0, cycle_months=DEFAULT_CYCLE_MONTHS)
            result.categories[rule.category] = entry

        if entry.source_rule_id is None or rule.quantity >= entry.quantity:
            entry.quantity = max(entry.quantity, rule.quantity)
            entry.cycle_months = rule.cycle_months
            entry.source_rule_id = rule.rule_id

    return result


# ═════════════════════════════════════════════════════════════════════
# Rule book: active rules indexed by (company, designation, gender)
# ═════════════════════════════════════════════════════════════════════


def resolve_rule_category(rule: DesignationEligibilityRule) -> str:
    """Canonical category a rule targets, or ``""`` when it cannot be resolved."""
    if rule.subcategory_id is not None:
        sub = rule.subcategory
        if sub is None or sub.status != RecordStatus.active:
            return ""
        parent = sub.parent_category
        return normalize_category_name(parent.name if parent else None)
    return normalize_category_name(rule.category_name)


def to_view(rule: DesignationEligibilityRule) -> RuleView:
    created = rule.created_at.timestamp() if rule.created_at else 0.0
    return RuleView(
        rule_id=rule.id,
        category=resolve_rule_category(rule),
        quantity=rule.quantity or 0,
        cycle_months=renewal_months(rule.renewal_frequency, rule.renewal_unit),
        order_key=(rule.schema_version, created, str(rule.id)),
    )


class RuleBook:
    """In-memory index of active rules, built once per request or batch."""

    def __init__(self, rules: Iterable[DesignationEligibilityRule] = ()) -> None:
        self._index: dict[tuple[uuid.UUID, str, str], list[RuleView]] = defaultdict(list)
        for rule in rules:
            self.add(rule)

    def add(self, rule: DesignationEligibilityRule) -> None:
        view = to_view(rule)
        if view.category and not is_known_category(view.category):
            logger.debug(
                "Rule %s targets non-canonical category %r", rule.id, view.category,
            )
        gender = rule.gender.value if rule.gender else GenderType.unisex.value
        self._index[(rule.company_id, rule.designation_key, gender)].append(view)

    def match(
        self,
        company_id: uuid.UUID,
        designation_key: str,
        gender: str,
    ) -> tuple[list[RuleView], Optional[str]]:
        """Exact gender first, then the unisex fallback."""
        views = self._index.get((company_id, designation_key, gender), [])
        if views:
            return views, gender
        if gender != GenderType.unisex.value:
            views = self._index.get(
                (company_id, designation_key, GenderType.unisex.value), [],
            )
            if views:
                return views, GenderType.unisex.value
        return [], None

    def __len__(self) -> int:
        return sum(len(v) for v in self._index.values())


# ═════════════════════════════════════════════════════════════════════
# EligibilityAggregator
# ═════════════════════════════════════════════════════════════════════


class EligibilityAggregator:
    """Resolves employees against the rule store."""

    def __init__(self, cipher: Optional[FieldCipher] = None) -> None:
        self.cipher = cipher or get_cipher()

    @staticmethod
    async def load_rulebook(
        db: AsyncSession,
        company_id: Optional[uuid.UUID] = None,
    ) -> RuleBook:
        query = (
            select(DesignationEligibilityRule)
            .where(DesignationEligibilityRule.status == RecordStatus.active)
            .options(
                selectinload(DesignationEligibilityRule.subcategory)
                .selectinload(Subcategory.parent_category),
            )
        )
        if company_id is not None:
            query = query.where(DesignationEligibilityRule.company_id == company_id)
        result = await db.execute(query)
        return RuleBook(result.scalars().all())

    def designation_key(self, employee: Employee) -> str:
        return normalize_designation(self.cipher.decrypt(employee.designation))

    def entitlement_for(self, employee: Employee, rulebook: RuleBook) -> Entitlement:
        """Aggregate without touching the database."""
        if employee.company_id is None:
            logger.debug("Employee %s has no company; default entitlement", employee.id)
            return default_entitlement()

        key = self.designation_key(employee)
        if not key:
            return default_entitlement()

        gender = employee.gender.value if employee.gender else GenderType.unisex.value
        views, matched = rulebook.match(employee.company_id, key, gender)
        if not views:
            return default_entitlement()

        entitlement = aggregate_rules(views)
        entitlement.matched_gender = matched
        if entitlement.unresolved_rule_ids:
            logger.warning(
                "Employee %s: %d rule(s) with unresolved targets skipped",
                employee.id, len(entitlement.unresolved_rule_ids),
            )
        return entitlement

    async def for_employee(self, db: AsyncSession, employee: Employee) -> Entitlement:
        if employee.company_id is None:
            return default_entitlement()
        rulebook = await self.load_rulebook(db, employee.company_id)
        return self.entitlement_for(employee, rulebook)
