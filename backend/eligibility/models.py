"""Eligibility ORM models: DesignationEligibilityRule, EligibilityLedgerEntry."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.catalog.models import Subcategory
from backend.common.constants import (
    GenderType,
    LedgerReason,
    RecordStatus,
    RenewalUnit,
    RuleSchemaVersion,
)
from backend.database import Base


class DesignationEligibilityRule(Base):
    """How many units of one category/subcategory a designation may order.

    One table for both legacy shapes: ``schema_version=1`` rules target a
    category by name (``category_name``), ``schema_version=2`` rules target a
    subcategory (``subcategory_id``).
    """

    __tablename__ = "designation_eligibility_rules"
    __table_args__ = (
        sa.Index(
            "ix_eligibility_rule_lookup",
            "company_id", "designation_key", "gender", "status",
        ),
        sa.CheckConstraint(
            "subcategory_id IS NOT NULL OR category_name IS NOT NULL",
            name="ck_eligibility_rule_target",
        ),
        sa.CheckConstraint("quantity >= 0", name="ck_eligibility_rule_quantity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    legacy_id: Mapped[Optional[str]] = mapped_column(sa.String(64))
    schema_version: Mapped[int] = mapped_column(
        sa.SmallInteger,
        nullable=False,
        default=RuleSchemaVersion.subcategory_level.value,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False,
    )
    designation: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    designation_key: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    gender: Mapped[GenderType] = mapped_column(
        sa.Enum(GenderType, name="gender_type"),
        default=GenderType.unisex,
        server_default=GenderType.unisex.value,
    )
    subcategory_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("subcategories.id"),
    )
    category_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    renewal_frequency: Mapped[Optional[int]] = mapped_column(sa.Integer)
    renewal_unit: Mapped[Optional[RenewalUnit]] = mapped_column(
        sa.Enum(RenewalUnit, name="renewal_unit"),
    )
    status: Mapped[RecordStatus] = mapped_column(
        sa.Enum(RecordStatus, name="record_status"),
        default=RecordStatus.active,
        server_default=RecordStatus.active.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    subcategory: Mapped[Optional[Subcategory]] = relationship()

    @property
    def target_label(self) -> str:
        if self.subcategory_id is not None:
            return f"subcategory:{self.subcategory_id}"
        return f"category:{self.category_name}"

    def __repr__(self) -> str:
        return (
            f"<DesignationEligibilityRule {self.designation!r}/{self.gender} "
            f"{self.target_label} x{self.quantity}>"
        )


class EligibilityLedgerEntry(Base):
    """One change to an employee's remaining eligibility for one category."""

    __tablename__ = "eligibility_ledger"
    __table_args__ = (
        sa.Index("ix_eligibility_ledger_employee", "employee_id", "category"),
        sa.Index("ix_eligibility_ledger_order", "order_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    category: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    delta: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    previous_value: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    new_value: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reason: Mapped[LedgerReason] = mapped_column(
        sa.Enum(LedgerReason, name="ledger_reason"), nullable=False,
    )
    # Plain references: orders are purged by the batch reset, the ledger stays
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    return_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<EligibilityLedgerEntry {self.category} {self.delta:+d} "
            f"({self.reason.value})>"
        )
