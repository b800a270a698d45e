"""Orders router — placement, PR approval chain, shipment, returns.

All endpoints require the admin API key.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database import get_db
from backend.dependencies import require_api_key
from backend.orders.schemas import (
    OrderCreate,
    OrderDeliverRequest,
    OrderOut,
    OrderRejectRequest,
    ReturnCreate,
    ReturnRequestOut,
)
from backend.orders.service import OrderService

router = APIRouter(prefix="", tags=["orders"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=OrderOut, status_code=201)
async def place_order(
    body: OrderCreate,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    """Place an order. Validates remaining eligibility, then consumes it."""
    return await OrderService.place_order(db, body, actor=actor)


# ── PUT /returns/{id}/approve ───────────────────────────────────────

@router.put("/returns/{return_id}/approve", response_model=ReturnRequestOut)
async def approve_return(
    return_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    """Approve a return. Restores eligibility for the returned units."""
    return await OrderService.approve_return(db, return_id, actor=actor)


# ── PUT /returns/{id}/reject ────────────────────────────────────────

@router.put("/returns/{return_id}/reject", response_model=ReturnRequestOut)
async def reject_return(
    return_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.reject_return(db, return_id, actor=actor)


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.get_order(db, order_id)


# ── PUT /{id}/site-admin-approve ────────────────────────────────────

@router.put("/{order_id}/site-admin-approve", response_model=OrderOut)
async def site_admin_approve(
    order_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.site_admin_approve(db, order_id, actor=actor)


# ── PUT /{id}/company-admin-approve ─────────────────────────────────

@router.put("/{order_id}/company-admin-approve", response_model=OrderOut)
async def company_admin_approve(
    order_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.company_admin_approve(db, order_id, actor=actor)


# ── PUT /{id}/reject ────────────────────────────────────────────────

@router.put("/{order_id}/reject", response_model=OrderOut)
async def reject_order(
    order_id: uuid.UUID,
    body: Optional[OrderRejectRequest] = Body(None),
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    """Reject a pending PR. Restores consumed eligibility."""
    reason = body.reason if body else None
    return await OrderService.reject(db, order_id, reason=reason, actor=actor)


# ── PUT /{id}/cancel ────────────────────────────────────────────────

@router.put("/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    order_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.cancel(db, order_id, actor=actor)


# ── PUT /{id}/dispatch ──────────────────────────────────────────────

@router.put("/{order_id}/dispatch", response_model=OrderOut)
async def dispatch_order(
    order_id: uuid.UUID,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.dispatch(db, order_id, actor=actor)


# ── PUT /{id}/deliver ───────────────────────────────────────────────

@router.put("/{order_id}/deliver", response_model=OrderOut)
async def deliver_order(
    order_id: uuid.UUID,
    body: Optional[OrderDeliverRequest] = Body(None),
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    """Record deliveries; omit the body to deliver everything dispatched."""
    return await OrderService.deliver(db, order_id, body, actor=actor)


# ── POST /{id}/items/{item_id}/returns ──────────────────────────────

@router.post(
    "/{order_id}/items/{item_id}/returns",
    response_model=ReturnRequestOut,
    status_code=201,
)
async def request_return(
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    body: ReturnCreate,
    actor: str = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.request_return(db, order_id, item_id, body, actor=actor)
