"""Core ORM models: Company, Employee.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
``legacy_id`` keeps the identifier each row carried in the legacy document
store so imported references can still be traced back.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import (
    DEFAULT_CYCLE_DURATIONS,
    LEGACY_CATEGORIES,
    GenderType,
    RecordStatus,
)
from backend.database import Base

if TYPE_CHECKING:
    from backend.orders.models import Order


def _zero_eligibility() -> dict[str, int]:
    return {category: 0 for category in LEGACY_CATEGORIES}


def _default_cycle_duration() -> dict[str, int]:
    return dict(DEFAULT_CYCLE_DURATIONS)


# ═════════════════════════════════════════════════════════════════════
# Company
# ═════════════════════════════════════════════════════════════════════


class Company(Base):
    """Tenant: a company whose employees order uniforms."""

    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    legacy_id: Mapped[Optional[str]] = mapped_column(sa.String(64), unique=True)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    require_company_admin_po_approval: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.false(),
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.true(),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    employees: Mapped[list[Employee]] = relationship(back_populates="company")

    def __repr__(self) -> str:
        return f"<Company {self.name!r}>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Employee entitled to uniforms; owns its own eligibility snapshot."""

    __tablename__ = "employees"

    # ── Primary key ─────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Identifiers ─────────────────────────────────────────────────
    legacy_id: Mapped[Optional[str]] = mapped_column(sa.String(64), unique=True)
    employee_code: Mapped[str] = mapped_column(
        sa.String(50), unique=True, nullable=False,
    )

    # ── Identity (may be ciphertext when imported) ──────────────────
    first_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    last_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(sa.Text)
    designation: Mapped[Optional[str]] = mapped_column(sa.Text)
    gender: Mapped[Optional[GenderType]] = mapped_column(
        sa.Enum(GenderType, name="gender_type"),
    )

    # ── Employment ──────────────────────────────────────────────────
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"),
    )
    status: Mapped[RecordStatus] = mapped_column(
        sa.Enum(RecordStatus, name="record_status"),
        default=RecordStatus.active,
        server_default=RecordStatus.active.value,
    )
    date_of_joining: Mapped[Optional[date]] = mapped_column(sa.Date)

    # ── Eligibility snapshot ────────────────────────────────────────
    # eligibility: remaining units per category in the current period
    eligibility: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=_zero_eligibility,
    )
    # cycle_duration: renewal cadence in months per category
    cycle_duration: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=_default_cycle_duration,
    )
    # eligibility_reset_dates: category → ISO timestamp of the last renewal
    eligibility_reset_dates: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict,
    )

    # ── Timestamps ──────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    company: Mapped[Optional[Company]] = relationship(back_populates="employees")
    orders: Mapped[list["Order"]] = relationship(back_populates="employee")

    __table_args__ = (
        sa.Index("ix_employees_company_status", "company_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == RecordStatus.active

    def __repr__(self) -> str:
        return f"<Employee {self.employee_code}>"
