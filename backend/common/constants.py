"""Enums and constants for the uniform entitlement platform — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Employee / Company ──────────────────────────────────────────────

class RecordStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class GenderType(str, enum.Enum):
    male = "male"
    female = "female"
    unisex = "unisex"


# ── Eligibility rules ───────────────────────────────────────────────

class RenewalUnit(str, enum.Enum):
    months = "months"
    years = "years"


class RuleSchemaVersion(int, enum.Enum):
    """Which legacy collection a rule descends from."""

    category_level = 1       # designationproducteligibilities
    subcategory_level = 2    # designationsubcategoryeligibilities


class LedgerReason(str, enum.Enum):
    order_placed = "order_placed"
    order_cancelled = "order_cancelled"
    order_rejected = "order_rejected"
    return_approved = "return_approved"
    full_reset = "full_reset"
    cycle_renewal = "cycle_renewal"
    purge = "purge"


# ── Orders ──────────────────────────────────────────────────────────

class OrderStatus(str, enum.Enum):
    """Legacy order status shown to employees and vendors."""

    awaiting_approval = "Awaiting approval"
    awaiting_fulfilment = "Awaiting fulfilment"
    dispatched = "Dispatched"
    delivered = "Delivered"
    cancelled = "Cancelled"


class PRStatus(str, enum.Enum):
    """Purchase-requisition approval status."""

    pending_site_admin_approval = "PENDING_SITE_ADMIN_APPROVAL"
    site_admin_approved = "SITE_ADMIN_APPROVED"
    pending_company_admin_approval = "PENDING_COMPANY_ADMIN_APPROVAL"
    company_admin_approved = "COMPANY_ADMIN_APPROVED"
    rejected = "REJECTED"
    in_shipment = "IN_SHIPMENT"
    partially_delivered = "PARTIALLY_DELIVERED"
    fully_delivered = "FULLY_DELIVERED"
    cancelled = "CANCELLED"


class ItemShipmentStatus(str, enum.Enum):
    pending = "PENDING"
    dispatched = "DISPATCHED"
    delivered = "DELIVERED"


class ReturnStatus(str, enum.Enum):
    requested = "requested"
    approved = "approved"
    rejected = "rejected"


# ── Eligibility defaults ────────────────────────────────────────────

LEGACY_CATEGORIES: tuple[str, ...] = ("shirt", "pant", "shoe", "jacket")

CANONICAL_CATEGORIES: frozenset[str] = frozenset(
    {"shirt", "pant", "shoe", "jacket", "accessory"}
)

CATEGORY_SYNONYMS: dict[str, str] = {
    "trouser": "pant",
    "trousers": "pant",
    "blazer": "jacket",
}

DEFAULT_CYCLE_MONTHS = 6

DEFAULT_CYCLE_DURATIONS: dict[str, int] = {
    "shirt": 6,
    "pant": 6,
    "shoe": 6,
    "jacket": 12,
}

# ── Misc constants ──────────────────────────────────────────────────

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
