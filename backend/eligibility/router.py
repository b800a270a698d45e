"""Eligibility router — employee snapshots, preview, designation refresh, rule store.

All endpoints require the admin API key.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import GenderType, RecordStatus
from backend.common.pagination import PaginationParams
from backend.database import get_db
from backend.dependencies import require_api_key
from backend.eligibility.schemas import (
    BatchResultOut,
    EmployeeEligibilityOut,
    EntitlementOut,
    RefreshRequest,
    RuleCreate,
    RuleOut,
    RuleUpdate,
)
from backend.eligibility.service import EligibilityService

router = APIRouter(prefix="", tags=["eligibility"])


# ── GET /employees/{id} ─────────────────────────────────────────────

@router.get("/employees/{employee_id}", response_model=EmployeeEligibilityOut)
async def get_employee_eligibility(
    employee_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    """Stored snapshot, live entitlement and current cycle per category."""
    return await EligibilityService.get_employee_eligibility(db, employee_id)


# ── GET /employees/{id}/preview ─────────────────────────────────────

@router.get("/employees/{employee_id}/preview", response_model=EntitlementOut)
async def preview_entitlement(
    employee_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await EligibilityService.preview(db, employee_id)


# ── POST /refresh ───────────────────────────────────────────────────

@router.post("/refresh", response_model=BatchResultOut)
async def refresh_designation(
    body: RefreshRequest,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    """Recompute and full-reset every employee of one company/designation."""
    return await EligibilityService.refresh_designation(
        db, body.company_id, body.designation, body.gender, actor=actor,
    )


# ── GET /rules ──────────────────────────────────────────────────────

@router.get("/rules")
async def list_rules(
    company_id: Optional[uuid.UUID] = Query(None),
    designation: Optional[str] = Query(None),
    gender: Optional[GenderType] = Query(None),
    status: Optional[RecordStatus] = Query(RecordStatus.active),
    pagination: PaginationParams = Depends(),
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await EligibilityService.list_rules(
        db,
        pagination,
        company_id=company_id,
        designation=designation,
        gender=gender,
        status=status,
    )


# ── POST /rules ─────────────────────────────────────────────────────

@router.post("/rules", response_model=RuleOut, status_code=201)
async def create_rule(
    body: RuleCreate,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    """Create a rule. 409 when an active rule already covers the same target."""
    return await EligibilityService.create_rule(db, body, actor=actor)


# ── PUT /rules/{id} ─────────────────────────────────────────────────

@router.put("/rules/{rule_id}", response_model=RuleOut)
async def update_rule(
    rule_id: uuid.UUID,
    body: RuleUpdate,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await EligibilityService.update_rule(db, rule_id, body, actor=actor)


# ── DELETE /rules/{id} ──────────────────────────────────────────────

@router.delete("/rules/{rule_id}", response_model=RuleOut)
async def deactivate_rule(
    rule_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete (status → inactive)."""
    return await EligibilityService.deactivate_rule(db, rule_id, actor=actor)
