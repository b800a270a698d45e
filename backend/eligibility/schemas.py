"""Eligibility Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request → request bodies (write)
  - *Out                         → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.common.constants import GenderType, RecordStatus, RenewalUnit


# ═════════════════════════════════════════════════════════════════════
# Rules
# ═════════════════════════════════════════════════════════════════════


class RuleCreate(BaseModel):
    """Create a designation rule; target is a subcategory or a legacy category name."""

    company_id: uuid.UUID
    designation: str = Field(..., min_length=1, max_length=200)
    gender: GenderType = GenderType.unisex
    subcategory_id: Optional[uuid.UUID] = None
    category_name: Optional[str] = Field(None, max_length=100)
    quantity: int = Field(..., ge=0)
    renewal_frequency: Optional[int] = Field(None, ge=0)
    renewal_unit: Optional[RenewalUnit] = None

    @field_validator("designation")
    @classmethod
    def strip_designation(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("designation must not be blank")
        return v

    @model_validator(mode="after")
    def exactly_one_target(self):
        has_sub = self.subcategory_id is not None
        has_cat = bool(self.category_name and self.category_name.strip())
        if has_sub == has_cat:
            raise ValueError("Provide exactly one of subcategory_id or category_name")
        return self


class RuleUpdate(BaseModel):
    """Partial update; target and designation are immutable."""

    quantity: Optional[int] = Field(None, ge=0)
    renewal_frequency: Optional[int] = Field(None, ge=0)
    renewal_unit: Optional[RenewalUnit] = None
    status: Optional[RecordStatus] = None


class RuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    legacy_id: Optional[str] = None
    schema_version: int
    company_id: uuid.UUID
    designation: str
    gender: GenderType
    subcategory_id: Optional[uuid.UUID] = None
    category_name: Optional[str] = None
    quantity: int
    renewal_frequency: Optional[int] = None
    renewal_unit: Optional[RenewalUnit] = None
    status: RecordStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ═════════════════════════════════════════════════════════════════════
# Entitlement / snapshot
# ═════════════════════════════════════════════════════════════════════


class CategoryEntitlementOut(BaseModel):
    category: str
    quantity: int
    cycle_months: int
    source_rule_id: Optional[uuid.UUID] = None


class EntitlementOut(BaseModel):
    """Aggregated allowance; ``is_default`` when no rule matched."""

    employee_id: uuid.UUID
    designation: Optional[str] = None
    matched_gender: Optional[GenderType] = None
    is_default: bool
    categories: list[CategoryEntitlementOut]
    unresolved_rule_ids: list[uuid.UUID] = []


class CycleInfoOut(BaseModel):
    category: str
    cycle_months: int
    cycle_start: date
    cycle_end: date
    next_cycle_start: date
    days_remaining: int
    last_reset: Optional[str] = None


class EmployeeEligibilityOut(BaseModel):
    employee_id: uuid.UUID
    employee_code: str
    designation: Optional[str] = None
    gender: Optional[GenderType] = None
    eligibility: dict[str, int]
    cycle_duration: dict[str, int]
    eligibility_reset_dates: dict[str, str]
    entitlement: EntitlementOut
    cycles: list[CycleInfoOut]


# ═════════════════════════════════════════════════════════════════════
# Batch operations
# ═════════════════════════════════════════════════════════════════════


class RefreshRequest(BaseModel):
    """Recompute one designation; ``unisex`` targets every gender."""

    company_id: uuid.UUID
    designation: str = Field(..., min_length=1, max_length=200)
    gender: GenderType = GenderType.unisex


class BatchResultOut(BaseModel):
    processed: int = 0
    updated: int = 0
    defaulted: int = 0
    skipped: int = 0
    orders_deleted: int = 0
    dry_run: bool = False
