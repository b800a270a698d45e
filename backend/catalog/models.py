"""Catalog ORM models: ProductCategory, Subcategory, Product."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import RecordStatus
from backend.database import Base


class ProductCategory(Base):
    """Top-level apparel category (Shirt, Trouser, Blazer, …)."""

    __tablename__ = "product_categories"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    legacy_id: Mapped[Optional[str]] = mapped_column(sa.String(64), unique=True)
    # NULL company → platform-wide category
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"),
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.true(),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    subcategories: Mapped[list[Subcategory]] = relationship(
        back_populates="parent_category",
    )

    def __repr__(self) -> str:
        return f"<ProductCategory {self.name!r}>"


class Subcategory(Base):
    """Company-specific subcategory; belongs to exactly one parent category."""

    __tablename__ = "subcategories"
    __table_args__ = (
        sa.UniqueConstraint(
            "company_id", "parent_category_id", "name", name="uq_subcategory_name",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    legacy_id: Mapped[Optional[str]] = mapped_column(sa.String(64), unique=True)
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False,
    )
    parent_category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("product_categories.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    status: Mapped[RecordStatus] = mapped_column(
        sa.Enum(RecordStatus, name="record_status"),
        default=RecordStatus.active,
        server_default=RecordStatus.active.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    parent_category: Mapped[ProductCategory] = relationship(
        back_populates="subcategories",
    )

    def __repr__(self) -> str:
        return f"<Subcategory {self.name!r}>"


class Product(Base):
    """Orderable uniform item."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    legacy_id: Mapped[Optional[str]] = mapped_column(sa.String(64), unique=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"),
    )
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(sa.String(100))
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("product_categories.id"),
    )
    subcategory_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("subcategories.id"),
    )
    # Free-text category carried by products created before categories existed
    legacy_category: Mapped[Optional[str]] = mapped_column(sa.String(100))
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.true(),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    category: Mapped[Optional[ProductCategory]] = relationship()
    subcategory: Mapped[Optional[Subcategory]] = relationship()

    def __repr__(self) -> str:
        return f"<Product {self.name!r}>"
