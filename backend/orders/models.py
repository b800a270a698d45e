"""Order ORM models: Order, OrderItem, ReturnRequest.

Status columns store the legacy string values ("Awaiting approval",
"PENDING_SITE_ADMIN_APPROVAL", …) rather than the Python member names.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.catalog.models import Product
from backend.common.constants import (
    ItemShipmentStatus,
    OrderStatus,
    PRStatus,
    ReturnStatus,
)
from backend.core.models import Company, Employee
from backend.database import Base


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Order(Base):
    """Uniform order raised by (or for) one employee."""

    __tablename__ = "orders"
    __table_args__ = (
        sa.Index("ix_orders_employee", "employee_id"),
        sa.Index("ix_orders_company_pr_status", "company_id", "pr_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    legacy_id: Mapped[Optional[str]] = mapped_column(sa.String(64), unique=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False,
    )
    status: Mapped[OrderStatus] = mapped_column(
        sa.Enum(OrderStatus, name="order_status", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.awaiting_approval,
    )
    pr_status: Mapped[PRStatus] = mapped_column(
        sa.Enum(PRStatus, name="pr_status", values_callable=_enum_values),
        nullable=False,
        default=PRStatus.pending_site_admin_approval,
    )
    is_replacement: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.false(),
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    # ── Workflow timestamps ─────────────────────────────────────────
    site_admin_approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    company_admin_approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    delivered_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    employee: Mapped[Employee] = relationship(back_populates="orders")
    company: Mapped[Company] = relationship()
    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status.value}/{self.pr_status.value}>"


class OrderItem(Base):
    """One product line of an order; ``category`` is resolved at placement."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(sa.SmallInteger, default=0)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("products.id"),
    )
    category: Mapped[Optional[str]] = mapped_column(sa.String(100))
    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    dispatched_quantity: Mapped[int] = mapped_column(sa.Integer, default=0)
    delivered_quantity: Mapped[int] = mapped_column(sa.Integer, default=0)
    shipment_status: Mapped[ItemShipmentStatus] = mapped_column(
        sa.Enum(
            ItemShipmentStatus, name="item_shipment_status",
            values_callable=_enum_values,
        ),
        default=ItemShipmentStatus.pending,
    )

    order: Mapped[Order] = relationship(back_populates="items")
    product: Mapped[Optional[Product]] = relationship()
    returns: Mapped[list[ReturnRequest]] = relationship(
        back_populates="order_item",
        cascade="all, delete-orphan",
    )

    @property
    def returned_quantity(self) -> int:
        """Units already returned or awaiting a return decision."""
        return sum(
            r.quantity for r in self.returns if r.status != ReturnStatus.rejected
        )

    def __repr__(self) -> str:
        return f"<OrderItem {self.category} x{self.quantity}>"


class ReturnRequest(Base):
    """Return of delivered units; approval gives the eligibility back."""

    __tablename__ = "return_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    legacy_id: Mapped[Optional[str]] = mapped_column(sa.String(64), unique=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("order_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[ReturnStatus] = mapped_column(
        sa.Enum(ReturnStatus, name="return_status"),
        default=ReturnStatus.requested,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    order_item: Mapped[OrderItem] = relationship(back_populates="returns")

    def __repr__(self) -> str:
        return f"<ReturnRequest {self.id} x{self.quantity} {self.status.value}>"
