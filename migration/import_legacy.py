#!/usr/bin/env python3
"""Import a mongoexport dump of the legacy uniform platform → PostgreSQL.

Order of passes (each one resolves references registered by the previous):
  1. companies
  2. product categories, subcategories, products (``uniforms``)
  3. employees
  4. eligibility rules from both legacy collections into one table
  5. orders + embedded items, return requests
  6. reconciliation: legacy category-level rules superseded by an active
     subcategory-level rule for the same designation/gender/category are
     deactivated

Usage:
    python -m migration.import_legacy /path/to/dump
    python -m migration.import_legacy /path/to/dump --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from dotenv import load_dotenv  # noqa: E402

load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from backend.catalog.models import Product, ProductCategory, Subcategory  # noqa: E402
from backend.common.constants import (  # noqa: E402
    DEFAULT_CYCLE_DURATIONS,
    LEGACY_CATEGORIES,
    GenderType,
    ItemShipmentStatus,
    OrderStatus,
    PRStatus,
    RecordStatus,
    RenewalUnit,
    ReturnStatus,
    RuleSchemaVersion,
)
from backend.common.crypto import FieldCipher, get_cipher  # noqa: E402
from backend.common.references import ReferenceIndex, primary_legacy_id  # noqa: E402
from backend.core.models import Company, Employee  # noqa: E402
from backend.database import engine, session_scope  # noqa: E402
from backend.eligibility.models import DesignationEligibilityRule  # noqa: E402
from backend.eligibility.normalizer import (  # noqa: E402
    normalize_category_name,
    normalize_designation,
)
from backend.orders.models import Order, OrderItem, ReturnRequest  # noqa: E402
from migration.config import DUMP_DIR, load_dump  # noqa: E402

logger = logging.getLogger("import_legacy")


# ── Extended-JSON helpers ────────────────────────────────────────────

def plain(value: Any) -> Any:
    """Unwrap ``{"$date": …}`` / ``{"$numberInt": …}`` style values."""
    if isinstance(value, dict):
        if "$date" in value:
            return plain(value["$date"])
        for key in ("$numberInt", "$numberLong", "$numberDouble", "$numberDecimal"):
            if key in value:
                raw = value[key]
                return float(raw) if key in ("$numberDouble", "$numberDecimal") else int(raw)
    return value


def as_int(value: Any, default: int = 0) -> int:
    value = plain(value)
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def parse_datetime(value: Any) -> Optional[datetime]:
    value = plain(value)
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_date(value: Any) -> Optional[date]:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def _gender(value: Any) -> Optional[GenderType]:
    text = str(plain(value) or "").strip().lower()
    return GenderType(text) if text in GenderType._value2member_map_ else None


def _status(value: Any) -> RecordStatus:
    text = str(plain(value) or "").strip().lower()
    return RecordStatus.inactive if text == RecordStatus.inactive.value else RecordStatus.active


def _renewal_unit(value: Any) -> Optional[RenewalUnit]:
    text = str(plain(value) or "").strip().lower()
    return RenewalUnit(text) if text in RenewalUnit._value2member_map_ else None


_ORDER_STATUS_BY_VALUE = {s.value.lower(): s for s in OrderStatus}
_PR_STATUS_BY_VALUE = {s.value: s for s in PRStatus}
_PR_FROM_ORDER_STATUS = {
    OrderStatus.awaiting_approval: PRStatus.pending_site_admin_approval,
    OrderStatus.awaiting_fulfilment: PRStatus.site_admin_approved,
    OrderStatus.dispatched: PRStatus.in_shipment,
    OrderStatus.delivered: PRStatus.fully_delivered,
    OrderStatus.cancelled: PRStatus.cancelled,
}
_RETURN_STATUS = {
    "APPROVED": ReturnStatus.approved,
    "COMPLETED": ReturnStatus.approved,
    "REJECTED": ReturnStatus.rejected,
}


def _first(doc: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if doc.get(key) not in (None, ""):
            return doc[key]
    return None


# ── Import ───────────────────────────────────────────────────────────

@dataclass
class ImportStats:
    counts: dict[str, int] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    rules_deactivated: int = 0

    def inserted(self, table: str) -> None:
        self.counts[table] = self.counts.get(table, 0) + 1

    def skip(self, table: str, reason: str) -> None:
        self.skipped[table] = self.skipped.get(table, 0) + 1
        self.warnings.append(f"{table}: {reason}")
        logger.warning("  ⚠ %s: %s", table, reason)


class LegacyImporter:
    """Loads one dump into the session; the caller commits."""

    def __init__(self, db: AsyncSession, cipher: Optional[FieldCipher] = None) -> None:
        self.db = db
        self.cipher = cipher or get_cipher()
        self.stats = ImportStats()
        self.companies = ReferenceIndex("companies")
        self.categories = ReferenceIndex("productcategories")
        self.subcategories = ReferenceIndex("subcategories")
        self.products = ReferenceIndex("uniforms")
        self.employees = ReferenceIndex("employees")
        self.orders = ReferenceIndex("orders")
        self._category_tag: dict[uuid.UUID, str] = {}
        self._subcategory_tag: dict[uuid.UUID, str] = {}
        self._product_tag: dict[uuid.UUID, str] = {}
        self._employee_company: dict[uuid.UUID, Optional[uuid.UUID]] = {}
        self._order_items: dict[uuid.UUID, list[OrderItem]] = {}
        self._employee_codes: set[str] = set()

    def _add(self, table: str, obj: Any) -> None:
        self.db.add(obj)
        self.stats.inserted(table)

    # ── Companies ────────────────────────────────────────────────────

    def import_companies(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            company = Company(
                id=uuid.uuid4(),
                legacy_id=primary_legacy_id(doc),
                name=str(_first(doc, "name") or "Unnamed company"),
                require_company_admin_po_approval=bool(
                    plain(doc.get("require_company_admin_po_approval"))
                ),
                is_active=_status(doc.get("status")) == RecordStatus.active,
            )
            self.companies.register(doc, company.id)
            self._add("companies", company)

    # ── Catalog ──────────────────────────────────────────────────────

    def import_categories(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            category = ProductCategory(
                id=uuid.uuid4(),
                legacy_id=primary_legacy_id(doc),
                company_id=self.companies.resolve(doc.get("companyId")),
                name=str(_first(doc, "name") or ""),
                is_active=_status(doc.get("status")) == RecordStatus.active,
            )
            self.categories.register(doc, category.id)
            self._category_tag[category.id] = normalize_category_name(category.name)
            self._add("product_categories", category)

    def import_subcategories(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            parent_id = self.categories.resolve(_first(doc, "parentCategoryId", "categoryId"))
            company_id = self.companies.resolve(doc.get("companyId"))
            if parent_id is None or company_id is None:
                self.stats.skip(
                    "subcategories",
                    f"{primary_legacy_id(doc)}: unresolved parent category or company",
                )
                continue
            sub = Subcategory(
                id=uuid.uuid4(),
                legacy_id=primary_legacy_id(doc),
                company_id=company_id,
                parent_category_id=parent_id,
                name=str(_first(doc, "name") or ""),
                status=_status(doc.get("status")),
            )
            self.subcategories.register(doc, sub.id)
            self._subcategory_tag[sub.id] = self._category_tag.get(parent_id, "")
            self._add("subcategories", sub)

    def import_products(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            company_ref = doc.get("companyId")
            company_id = (
                None if isinstance(company_ref, list) else self.companies.resolve(company_ref)
            )
            category_id = self.categories.resolve(doc.get("categoryId"))
            subcategory_id = self.subcategories.resolve(
                _first(doc, "subCategoryId", "subcategoryId"),
            )
            legacy_category = _first(doc, "category")
            product = Product(
                id=uuid.uuid4(),
                legacy_id=primary_legacy_id(doc),
                company_id=company_id,
                name=str(_first(doc, "name") or "Unnamed product"),
                sku=_first(doc, "sku"),
                category_id=category_id,
                subcategory_id=subcategory_id,
                legacy_category=str(legacy_category) if legacy_category else None,
                is_active=_status(doc.get("status")) == RecordStatus.active,
            )
            self.products.register(doc, product.id)
            tag = (
                self._category_tag.get(category_id)
                if category_id
                else self._subcategory_tag.get(subcategory_id) if subcategory_id else None
            ) or normalize_category_name(product.legacy_category)
            self._product_tag[product.id] = tag
            self._add("products", product)

    # ── Employees ────────────────────────────────────────────────────

    def import_employees(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            code = str(plain(_first(doc, "employeeId", "id")) or "").strip()
            if not code:
                code = primary_legacy_id(doc) or ""
            if not code or code in self._employee_codes:
                self.stats.skip("employees", f"missing or duplicate employee code {code!r}")
                continue
            self._employee_codes.add(code)

            company_id = self.companies.resolve(doc.get("companyId"))
            if company_id is None:
                self.stats.warnings.append(f"employees: {code} has no resolvable company")

            eligibility = {cat: 0 for cat in LEGACY_CATEGORIES}
            for cat, qty in (doc.get("eligibility") or {}).items():
                eligibility[normalize_category_name(cat)] = as_int(qty)
            cycles = dict(DEFAULT_CYCLE_DURATIONS)
            for cat, months in (doc.get("cycleDuration") or {}).items():
                tag = normalize_category_name(cat)
                cycles[tag] = as_int(months, DEFAULT_CYCLE_DURATIONS.get(tag, 6))
            stamps = {}
            for cat, stamp in (doc.get("eligibilityResetDates") or {}).items():
                parsed = parse_datetime(stamp)
                if parsed:
                    stamps[normalize_category_name(cat)] = parsed.isoformat()

            employee = Employee(
                id=uuid.uuid4(),
                legacy_id=primary_legacy_id(doc),
                employee_code=code,
                first_name=str(doc.get("firstName") or ""),
                last_name=str(doc.get("lastName") or ""),
                email=doc.get("email"),
                designation=doc.get("designation"),
                gender=_gender(doc.get("gender")),
                company_id=company_id,
                status=_status(doc.get("status")),
                date_of_joining=parse_date(doc.get("dateOfJoining")),
                eligibility=eligibility,
                cycle_duration=cycles,
                eligibility_reset_dates=stamps,
            )
            self.employees.register(doc, employee.id)
            self._employee_company[employee.id] = company_id
            self._add("employees", employee)

    # ── Eligibility rules ────────────────────────────────────────────

    def _rule_base(self, doc: dict[str, Any], table: str) -> Optional[dict[str, Any]]:
        company_id = self.companies.resolve(doc.get("companyId"))
        designation = self.cipher.decrypt(
            str(plain(_first(doc, "designation", "designationId")) or "")
        )
        if company_id is None or not normalize_designation(designation):
            self.stats.skip(table, f"{primary_legacy_id(doc)}: no company or designation")
            return None
        return {
            "company_id": company_id,
            "designation": designation.strip(),
            "designation_key": normalize_designation(designation),
            "gender": _gender(doc.get("gender")) or GenderType.unisex,
            "status": _status(doc.get("status")),
            "created_at": parse_datetime(doc.get("createdAt")) or datetime.now(timezone.utc),
        }

    def import_category_rules(self, docs: list[dict[str, Any]]) -> None:
        """One legacy document → one rule per ``itemEligibility`` entry."""
        for doc in docs:
            base = self._rule_base(doc, "designationproducteligibilities")
            if base is None:
                continue
            allowed = {
                normalize_category_name(c) for c in doc.get("allowedProductCategories") or []
            }
            legacy_id = primary_legacy_id(doc)
            for cat, spec in (doc.get("itemEligibility") or {}).items():
                if not isinstance(spec, dict):
                    continue
                if allowed and normalize_category_name(cat) not in allowed:
                    continue
                rule = DesignationEligibilityRule(
                    id=uuid.uuid4(),
                    legacy_id=f"{legacy_id}:{cat}" if legacy_id else None,
                    schema_version=RuleSchemaVersion.category_level.value,
                    category_name=cat,
                    quantity=max(0, as_int(spec.get("quantity"))),
                    renewal_frequency=as_int(spec.get("renewalFrequency")) or None,
                    renewal_unit=_renewal_unit(spec.get("renewalUnit")),
                    **base,
                )
                self._add("designation_eligibility_rules", rule)

    def import_subcategory_rules(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            base = self._rule_base(doc, "designationsubcategoryeligibilities")
            if base is None:
                continue
            sub_id = self.subcategories.resolve(_first(doc, "subCategoryId", "subcategoryId"))
            if sub_id is None:
                self.stats.skip(
                    "designationsubcategoryeligibilities",
                    f"{primary_legacy_id(doc)}: unresolved subcategory",
                )
                continue
            rule = DesignationEligibilityRule(
                id=uuid.uuid4(),
                legacy_id=primary_legacy_id(doc),
                schema_version=RuleSchemaVersion.subcategory_level.value,
                subcategory_id=sub_id,
                quantity=max(0, as_int(doc.get("quantity"))),
                renewal_frequency=as_int(doc.get("renewalFrequency")) or None,
                renewal_unit=_renewal_unit(doc.get("renewalUnit")),
                **base,
            )
            self._add("designation_eligibility_rules", rule)

    def reconcile_rules(self) -> int:
        """Deactivate category-level rules shadowed by a subcategory-level rule."""
        rules = [
            obj for obj in self.db.new
            if isinstance(obj, DesignationEligibilityRule) and obj.status == RecordStatus.active
        ]
        covered = {
            (r.company_id, r.designation_key, r.gender, self._subcategory_tag.get(r.subcategory_id, ""))
            for r in rules
            if r.subcategory_id is not None
        }
        deactivated = 0
        for rule in rules:
            if rule.subcategory_id is not None:
                continue
            key = (
                rule.company_id, rule.designation_key, rule.gender,
                normalize_category_name(rule.category_name),
            )
            if key in covered:
                rule.status = RecordStatus.inactive
                deactivated += 1
        self.stats.rules_deactivated = deactivated
        return deactivated

    # ── Orders ───────────────────────────────────────────────────────

    def import_orders(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            employee_id = self.employees.resolve(doc.get("employeeId"))
            if employee_id is None:
                employee_id = self.employees.resolve(doc.get("employeeIdNum"))
            company_id = self.companies.resolve(doc.get("companyId"))
            if company_id is None and employee_id is not None:
                company_id = self._employee_company.get(employee_id)
            if employee_id is None or company_id is None:
                self.stats.skip("orders", f"{primary_legacy_id(doc)}: unresolved employee/company")
                continue

            status = _ORDER_STATUS_BY_VALUE.get(
                str(plain(doc.get("status")) or "").strip().lower(),
                OrderStatus.awaiting_approval,
            )
            pr_status = _PR_STATUS_BY_VALUE.get(
                str(plain(_first(doc, "pr_status", "unified_pr_status")) or "").strip().upper(),
                _PR_FROM_ORDER_STATUS[status],
            )

            items = []
            for idx, raw in enumerate(doc.get("items") or []):
                product_id = self.products.resolve(_first(raw, "uniformId", "productId"))
                category = (
                    self._product_tag.get(product_id) if product_id else None
                ) or normalize_category_name(raw.get("category"))
                shipment = str(plain(raw.get("itemShipmentStatus")) or "PENDING").upper()
                items.append(
                    OrderItem(
                        position=idx,
                        product_id=product_id,
                        category=category or None,
                        quantity=max(1, as_int(raw.get("quantity"), 1)),
                        dispatched_quantity=as_int(raw.get("dispatchedQuantity")),
                        delivered_quantity=as_int(raw.get("deliveredQuantity")),
                        shipment_status=ItemShipmentStatus._value2member_map_.get(
                            shipment, ItemShipmentStatus.pending,
                        ),
                        returns=[],
                    )
                )

            order = Order(
                id=uuid.uuid4(),
                legacy_id=primary_legacy_id(doc),
                employee_id=employee_id,
                company_id=company_id,
                status=status,
                pr_status=pr_status,
                is_replacement=str(plain(doc.get("orderType")) or "").upper() == "REPLACEMENT",
                site_admin_approved_at=parse_datetime(doc.get("site_admin_approved_at")),
                company_admin_approved_at=parse_datetime(doc.get("company_admin_approved_at")),
                dispatched_at=parse_datetime(doc.get("dispatchedDate")),
                delivered_at=parse_datetime(doc.get("deliveredDate")),
                created_at=parse_datetime(_first(doc, "orderDate", "createdAt"))
                or datetime.now(timezone.utc),
                items=items,
            )
            self.orders.register(doc, order.id)
            self._order_items[order.id] = items
            self._add("orders", order)

    def import_returns(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            order_id = self.orders.resolve(_first(doc, "originalOrderId", "orderId"))
            items = self._order_items.get(order_id) if order_id else None
            idx = as_int(_first(doc, "originalOrderItemIndex", "itemIndex"))
            if not items or not 0 <= idx < len(items):
                self.stats.skip("returnrequests", f"{primary_legacy_id(doc)}: unresolved order item")
                continue
            item = items[idx]
            item.returns.append(
                ReturnRequest(
                    legacy_id=primary_legacy_id(doc),
                    order_id=order_id,
                    quantity=max(1, as_int(_first(doc, "requestedQty", "quantity"), 1)),
                    reason=_first(doc, "reason", "returnReason"),
                    status=_RETURN_STATUS.get(
                        str(plain(doc.get("status")) or "").upper(), ReturnStatus.requested,
                    ),
                )
            )
            self.stats.inserted("return_requests")

    # ── Driver ───────────────────────────────────────────────────────

    async def run(self, dump: dict[str, list[dict[str, Any]]]) -> ImportStats:
        steps = [
            ("companies", self.import_companies),
            ("productcategories", self.import_categories),
            ("subcategories", self.import_subcategories),
            ("uniforms", self.import_products),
            ("employees", self.import_employees),
            ("designationproducteligibilities", self.import_category_rules),
            ("designationsubcategoryeligibilities", self.import_subcategory_rules),
        ]
        for name, step in steps:
            docs = dump.get(name, [])
            logger.info("▶ %s (%d documents)", name, len(docs))
            step(docs)

        deactivated = self.reconcile_rules()
        logger.info("  ✓ Deactivated %d superseded category-level rules", deactivated)
        await self.db.flush()

        for name, step in (("orders", self.import_orders), ("returnrequests", self.import_returns)):
            docs = dump.get(name, [])
            logger.info("▶ %s (%d documents)", name, len(docs))
            step(docs)
        await self.db.flush()

        for index in (self.companies, self.categories, self.subcategories,
                      self.products, self.employees, self.orders):
            if index.unresolved:
                logger.warning(
                    "  ⚠ %d unresolved %s reference(s)", len(index.unresolved), index.collection,
                )
        return self.stats


async def import_dump(dump_dir: str, dry_run: bool = False) -> ImportStats:
    dump = load_dump(dump_dir)
    async with session_scope(dry_run=dry_run) as db:
        stats = await LegacyImporter(db).run(dump)
    await engine.dispose()
    if dry_run:
        logger.info("DRY RUN: rolled back, nothing written")
    return stats


def main() -> int:
    parser = argparse.ArgumentParser(description="Import a legacy mongoexport dump")
    parser.add_argument("dump_dir", nargs="?", default=DUMP_DIR)
    parser.add_argument("--dry-run", action="store_true", help="Import then roll back")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stats = asyncio.run(import_dump(args.dump_dir, dry_run=args.dry_run))
    for table, count in sorted(stats.counts.items()):
        logger.info("  ✓ %-32s %6d", table, count)
    for table, count in sorted(stats.skipped.items()):
        logger.info("  ⚠ %-32s %6d skipped", table, count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
