"""Order Pydantic v2 schemas — request / response validation."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.common.constants import (
    ItemShipmentStatus,
    OrderStatus,
    PRStatus,
    ReturnStatus,
)


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class OrderItemCreate(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    employee_id: uuid.UUID
    items: list[OrderItemCreate] = Field(..., min_length=1)
    is_replacement: bool = False


class OrderRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ItemDelivery(BaseModel):
    item_id: uuid.UUID
    quantity: int = Field(..., ge=1)


class OrderDeliverRequest(BaseModel):
    """Omit ``items`` to mark every dispatched unit delivered."""

    items: Optional[list[ItemDelivery]] = None


class ReturnCreate(BaseModel):
    quantity: int = Field(..., ge=1)
    reason: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: Optional[uuid.UUID] = None
    category: Optional[str] = None
    quantity: int
    dispatched_quantity: int = 0
    delivered_quantity: int = 0
    returned_quantity: int = 0
    shipment_status: ItemShipmentStatus


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    company_id: uuid.UUID
    status: OrderStatus
    pr_status: PRStatus
    is_replacement: bool = False
    rejection_reason: Optional[str] = None
    site_admin_approved_at: Optional[datetime] = None
    company_admin_approved_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: list[OrderItemOut] = []
    consumption_errors: list[str] = []


class ReturnRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    order_item_id: uuid.UUID
    quantity: int
    reason: Optional[str] = None
    status: ReturnStatus
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
