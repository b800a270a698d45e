"""Eligibility service layer — rule store, employee snapshots, batch resets.

Business logic:
  - Rule CRUD with target validation and the one-active-rule-per-target check
  - Employee snapshot view (stored eligibility + live entitlement + cycles)
  - Designation refresh, whole-database reset and purge
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.catalog.models import Subcategory
from backend.common.audit import create_audit_entry, field_diff
from backend.common.constants import (
    DEFAULT_CYCLE_DURATIONS,
    LEGACY_CATEGORIES,
    GenderType,
    LedgerReason,
    RecordStatus,
    RuleSchemaVersion,
)
from backend.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.core.models import Company, Employee
from backend.eligibility.aggregator import (
    EligibilityAggregator,
    Entitlement,
    RuleBook,
)
from backend.eligibility.models import DesignationEligibilityRule
from backend.eligibility.normalizer import (
    legacy_category,
    normalize_category_name,
    normalize_designation,
)
from backend.eligibility.renewal import (
    apply_full_reset,
    current_cycle,
    days_remaining_in_cycle,
    next_cycle_start,
)
from backend.eligibility.schemas import (
    BatchResultOut,
    CategoryEntitlementOut,
    CycleInfoOut,
    EmployeeEligibilityOut,
    EntitlementOut,
    RuleCreate,
    RuleOut,
    RuleUpdate,
)
from backend.eligibility.snapshot import record_changes, replace_eligibility
from backend.orders.models import Order, OrderItem, ReturnRequest

logger = logging.getLogger(__name__)

RULE_SORT_KEYS = {
    "designation": DesignationEligibilityRule.designation_key,
    "quantity": DesignationEligibilityRule.quantity,
    "created_at": DesignationEligibilityRule.created_at,
    "updated_at": DesignationEligibilityRule.updated_at,
}


def _entitlement_out(
    employee: Employee,
    entitlement: Entitlement,
    designation: Optional[str],
) -> EntitlementOut:
    return EntitlementOut(
        employee_id=employee.id,
        designation=designation,
        matched_gender=entitlement.matched_gender,
        is_default=entitlement.is_default,
        categories=[
            CategoryEntitlementOut(
                category=cat,
                quantity=ent.quantity,
                cycle_months=ent.cycle_months,
                source_rule_id=ent.source_rule_id,
            )
            for cat, ent in entitlement.categories.items()
        ],
        unresolved_rule_ids=entitlement.unresolved_rule_ids,
    )


# ═════════════════════════════════════════════════════════════════════
# EligibilityService
# ═════════════════════════════════════════════════════════════════════


class EligibilityService:
    """Async eligibility operations: rules, snapshots, batch jobs."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def _get_rule(db: AsyncSession, rule_id: uuid.UUID) -> DesignationEligibilityRule:
        rule = await db.get(DesignationEligibilityRule, rule_id)
        if rule is None:
            raise NotFoundException("EligibilityRule", rule_id)
        return rule

    @staticmethod
    async def _find_conflict(
        db: AsyncSession,
        company_id: uuid.UUID,
        designation_key: str,
        gender: GenderType,
        subcategory_id: Optional[uuid.UUID],
        category_name: Optional[str],
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[DesignationEligibilityRule]:
        """Active rule already covering the same (company, designation, gender, target)."""
        query = select(DesignationEligibilityRule).where(
            DesignationEligibilityRule.company_id == company_id,
            DesignationEligibilityRule.designation_key == designation_key,
            DesignationEligibilityRule.gender == gender,
            DesignationEligibilityRule.status == RecordStatus.active,
        )
        if exclude_id is not None:
            query = query.where(DesignationEligibilityRule.id != exclude_id)
        if subcategory_id is not None:
            query = query.where(DesignationEligibilityRule.subcategory_id == subcategory_id)
            return (await db.execute(query.limit(1))).scalars().first()

        wanted = normalize_category_name(category_name)
        query = query.where(DesignationEligibilityRule.subcategory_id.is_(None))
        for rule in (await db.execute(query)).scalars().all():
            if normalize_category_name(rule.category_name) == wanted:
                return rule
        return None

    # ─────────────────────────────────────────────────────────────────
    # Rule store
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_rule(
        db: AsyncSession,
        body: RuleCreate,
        actor: Optional[str] = None,
    ) -> RuleOut:
        company = await db.get(Company, body.company_id)
        if company is None:
            raise NotFoundException("Company", body.company_id)

        if body.subcategory_id is not None:
            sub = await db.get(Subcategory, body.subcategory_id)
            if sub is None:
                raise NotFoundException("Subcategory", body.subcategory_id)
            if sub.company_id != body.company_id:
                raise ValidationException(
                    {"subcategory_id": ["Subcategory belongs to a different company."]}
                )
            if sub.status != RecordStatus.active:
                raise ValidationException(
                    {"subcategory_id": ["Subcategory is inactive."]}
                )

        key = normalize_designation(body.designation)
        category_name = body.category_name.strip() if body.category_name else None
        existing = await EligibilityService._find_conflict(
            db, body.company_id, key, body.gender, body.subcategory_id, category_name,
        )
        if existing is not None:
            raise ConflictError(
                "designation/gender/target",
                f"{body.designation}/{body.gender.value}/{existing.target_label}",
            )

        rule = DesignationEligibilityRule(
            schema_version=(
                RuleSchemaVersion.subcategory_level.value
                if body.subcategory_id is not None
                else RuleSchemaVersion.category_level.value
            ),
            company_id=body.company_id,
            designation=body.designation,
            designation_key=key,
            gender=body.gender,
            subcategory_id=body.subcategory_id,
            category_name=category_name,
            quantity=body.quantity,
            renewal_frequency=body.renewal_frequency,
            renewal_unit=body.renewal_unit,
        )
        db.add(rule)
        await db.flush()

        await create_audit_entry(
            db,
            action="eligibility_rule.create",
            entity_type="designation_eligibility_rule",
            entity_id=rule.id,
            actor=actor,
            new_values={
                "designation": rule.designation,
                "gender": rule.gender.value,
                "target": rule.target_label,
                "quantity": rule.quantity,
            },
        )
        await db.refresh(rule)
        logger.info("Created eligibility rule %s (%s)", rule.id, rule.target_label)
        return RuleOut.model_validate(rule)

    @staticmethod
    async def update_rule(
        db: AsyncSession,
        rule_id: uuid.UUID,
        body: RuleUpdate,
        actor: Optional[str] = None,
    ) -> RuleOut:
        rule = await EligibilityService._get_rule(db, rule_id)
        changes = body.model_dump(exclude_unset=True)
        if not changes:
            return RuleOut.model_validate(rule)

        if (
            changes.get("status") == RecordStatus.active
            and rule.status != RecordStatus.active
        ):
            existing = await EligibilityService._find_conflict(
                db, rule.company_id, rule.designation_key, rule.gender,
                rule.subcategory_id, rule.category_name, exclude_id=rule.id,
            )
            if existing is not None:
                raise ConflictError("target", rule.target_label)

        old_values, new_values = field_diff(rule, changes)
        if not new_values:
            return RuleOut.model_validate(rule)
        for field_name, value in changes.items():
            setattr(rule, field_name, value)
        rule.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="eligibility_rule.update",
            entity_type="designation_eligibility_rule",
            entity_id=rule.id,
            actor=actor,
            old_values=old_values,
            new_values=new_values,
        )
        await db.refresh(rule)
        return RuleOut.model_validate(rule)

    @staticmethod
    async def deactivate_rule(
        db: AsyncSession,
        rule_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> RuleOut:
        """Soft delete. Snapshots are not touched until the next refresh or reset."""
        rule = await EligibilityService._get_rule(db, rule_id)
        if rule.status != RecordStatus.inactive:
            rule.status = RecordStatus.inactive
            rule.updated_at = datetime.now(timezone.utc)
            await db.flush()
            await create_audit_entry(
                db,
                action="eligibility_rule.deactivate",
                entity_type="designation_eligibility_rule",
                entity_id=rule.id,
                actor=actor,
                old_values={"status": RecordStatus.active.value},
                new_values={"status": RecordStatus.inactive.value},
            )
            await db.refresh(rule)
        return RuleOut.model_validate(rule)

    @staticmethod
    async def list_rules(
        db: AsyncSession,
        params: PaginationParams,
        *,
        company_id: Optional[uuid.UUID] = None,
        designation: Optional[str] = None,
        gender: Optional[GenderType] = None,
        status: Optional[RecordStatus] = RecordStatus.active,
    ) -> PaginatedResponse[RuleOut]:
        query = select(DesignationEligibilityRule)
        if company_id is not None:
            query = query.where(DesignationEligibilityRule.company_id == company_id)
        if designation:
            query = query.where(
                DesignationEligibilityRule.designation_key == normalize_designation(designation)
            )
        if gender is not None:
            query = query.where(DesignationEligibilityRule.gender == gender)
        if status is not None:
            query = query.where(DesignationEligibilityRule.status == status)
        rows, meta = await paginate(
            db,
            query,
            params,
            sortable=RULE_SORT_KEYS,
            default_order=(
                DesignationEligibilityRule.designation_key,
                DesignationEligibilityRule.created_at,
                DesignationEligibilityRule.id,
            ),
        )
        return PaginatedResponse[RuleOut](
            data=[RuleOut.model_validate(r) for r in rows],
            meta=meta,
        )

    # ─────────────────────────────────────────────────────────────────
    # Employee snapshot
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def preview(db: AsyncSession, employee_id: uuid.UUID) -> EntitlementOut:
        """Aggregated entitlement without touching the stored snapshot."""
        employee = await EligibilityService._get_employee(db, employee_id)
        aggregator = EligibilityAggregator()
        entitlement = await aggregator.for_employee(db, employee)
        return _entitlement_out(
            employee, entitlement, aggregator.cipher.decrypt(employee.designation),
        )

    @staticmethod
    async def get_employee_eligibility(
        db: AsyncSession,
        employee_id: uuid.UUID,
        today: Optional[date] = None,
    ) -> EmployeeEligibilityOut:
        employee = await EligibilityService._get_employee(db, employee_id)
        today = today or datetime.now(timezone.utc).date()
        aggregator = EligibilityAggregator()
        entitlement = await aggregator.for_employee(db, employee)
        designation = aggregator.cipher.decrypt(employee.designation)

        stored_cycles = dict(employee.cycle_duration or {})
        stamps = dict(employee.eligibility_reset_dates or {})
        categories = list(LEGACY_CATEGORIES) + sorted(
            c for c in (employee.eligibility or {}) if c not in LEGACY_CATEGORIES
        )

        cycles = []
        for cat in categories:
            months = int(
                stored_cycles.get(cat) or DEFAULT_CYCLE_DURATIONS[legacy_category(cat)]
            )
            start, end = current_cycle(employee.date_of_joining, months, today)
            cycles.append(
                CycleInfoOut(
                    category=cat,
                    cycle_months=months,
                    cycle_start=start,
                    cycle_end=end,
                    next_cycle_start=next_cycle_start(employee.date_of_joining, months, today),
                    days_remaining=days_remaining_in_cycle(
                        employee.date_of_joining, months, today,
                    ),
                    last_reset=stamps.get(cat),
                )
            )

        return EmployeeEligibilityOut(
            employee_id=employee.id,
            employee_code=employee.employee_code,
            designation=designation,
            gender=employee.gender,
            eligibility={k: int(v or 0) for k, v in (employee.eligibility or {}).items()},
            cycle_duration={k: int(v or 0) for k, v in stored_cycles.items()},
            eligibility_reset_dates={k: str(v) for k, v in stamps.items()},
            entitlement=_entitlement_out(employee, entitlement, designation),
            cycles=cycles,
        )

    # ─────────────────────────────────────────────────────────────────
    # Batch operations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _full_reset_one(
        db: AsyncSession,
        aggregator: EligibilityAggregator,
        rulebook: RuleBook,
        employee: Employee,
        result: BatchResultOut,
    ) -> None:
        entitlement = aggregator.entitlement_for(employee, rulebook)
        if entitlement.is_default:
            result.defaulted += 1
        changes = apply_full_reset(employee, entitlement)
        if changes:
            result.updated += 1
            record_changes(db, employee, changes, LedgerReason.full_reset)

    @staticmethod
    async def refresh_designation(
        db: AsyncSession,
        company_id: uuid.UUID,
        designation: str,
        gender: GenderType = GenderType.unisex,
        actor: Optional[str] = None,
    ) -> BatchResultOut:
        """Full-reset employees of one company/designation after a rule change."""
        if await db.get(Company, company_id) is None:
            raise NotFoundException("Company", company_id)

        key = normalize_designation(designation)
        aggregator = EligibilityAggregator()
        rulebook = await aggregator.load_rulebook(db, company_id)
        result = BatchResultOut()

        employees = (
            await db.execute(
                select(Employee).where(
                    Employee.company_id == company_id,
                    Employee.status == RecordStatus.active,
                )
            )
        ).scalars().all()

        for employee in employees:
            if aggregator.designation_key(employee) != key:
                continue
            if gender != GenderType.unisex and employee.gender != gender:
                continue
            result.processed += 1
            EligibilityService._full_reset_one(db, aggregator, rulebook, employee, result)

        await create_audit_entry(
            db,
            action="eligibility.refresh_designation",
            entity_type="company",
            entity_id=company_id,
            actor=actor,
            new_values={
                "designation": designation,
                "gender": gender.value,
                **result.model_dump(),
            },
        )
        await db.flush()
        logger.info(
            "Refreshed designation %r (%s) in company %s: %d processed, %d updated",
            designation, gender.value, company_id, result.processed, result.updated,
        )
        return result

    @staticmethod
    async def _delete_all_orders(db: AsyncSession) -> int:
        count = (await db.execute(select(func.count()).select_from(Order))).scalar_one()
        await db.execute(delete(ReturnRequest))
        await db.execute(delete(OrderItem))
        await db.execute(delete(Order))
        return count

    @staticmethod
    async def reset_all_eligibility(
        db: AsyncSession,
        *,
        purge_orders: bool = True,
        dry_run: bool = False,
        actor: Optional[str] = None,
    ) -> BatchResultOut:
        """Delete every order, then full-reset every active employee.

        Employees without a designation are skipped. Runs in the caller's
        transaction; ``dry_run`` rolls back instead of leaving changes pending.
        """
        result = BatchResultOut(dry_run=dry_run)
        if purge_orders:
            result.orders_deleted = await EligibilityService._delete_all_orders(db)
            logger.info("Deleted %d orders", result.orders_deleted)

        aggregator = EligibilityAggregator()
        rulebook = await aggregator.load_rulebook(db)
        logger.info("Loaded %d active eligibility rules", len(rulebook))

        employees = (
            await db.execute(
                select(Employee)
                .where(Employee.status == RecordStatus.active)
                .order_by(Employee.employee_code)
            )
        ).scalars().all()

        for employee in employees:
            result.processed += 1
            if not employee.designation:
                result.skipped += 1
                logger.debug("Skipping %s: no designation", employee.employee_code)
                continue
            EligibilityService._full_reset_one(db, aggregator, rulebook, employee, result)

        if dry_run:
            await db.rollback()
        else:
            await create_audit_entry(
                db,
                action="eligibility.reset_all",
                entity_type="employee",
                actor=actor,
                new_values=result.model_dump(),
            )
            await db.flush()

        logger.info(
            "Eligibility reset%s: %d processed, %d updated, %d defaulted, %d skipped",
            " (dry run)" if dry_run else "",
            result.processed, result.updated, result.defaulted, result.skipped,
        )
        return result

    @staticmethod
    async def purge_all_eligibility(
        db: AsyncSession,
        *,
        dry_run: bool = False,
        actor: Optional[str] = None,
    ) -> BatchResultOut:
        """Zero every employee's eligibility, restore default cadences, clear stamps."""
        result = BatchResultOut(dry_run=dry_run)
        zero = {cat: 0 for cat in LEGACY_CATEGORIES}

        employees = (await db.execute(select(Employee))).scalars().all()
        for employee in employees:
            result.processed += 1
            changes = replace_eligibility(employee, zero)
            employee.cycle_duration = dict(DEFAULT_CYCLE_DURATIONS)
            employee.eligibility_reset_dates = {}
            if changes:
                result.updated += 1
                record_changes(db, employee, changes, LedgerReason.purge)

        if dry_run:
            await db.rollback()
        else:
            await create_audit_entry(
                db,
                action="eligibility.purge_all",
                entity_type="employee",
                actor=actor,
                new_values=result.model_dump(),
            )
            await db.flush()

        logger.info(
            "Eligibility purge%s: %d processed, %d updated",
            " (dry run)" if dry_run else "", result.processed, result.updated,
        )
        return result
