"""Append-only audit trail for rule edits, order transitions and batch jobs.

``actor`` is a free-form label (the ``X-Actor`` header, a script name),
not a foreign key: callers are API-key holders and cron jobs, not users.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import Column, DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from backend.database import Base


class AuditTrail(Base):
    __tablename__ = "audit_trail"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor: Mapped[Optional[str]] = mapped_column(String(100))
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # NULL for batch actions that touch many rows
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    old_values = Column(JSONB, nullable=True)
    new_values = Column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("ix_audit_trail_entity", "entity_type", "entity_id"),
        Index("ix_audit_trail_created_at", "created_at"),
        Index("ix_audit_trail_action", "action"),
    )

    def __repr__(self) -> str:
        return f"<AuditTrail {self.action} {self.entity_type}/{self.entity_id} by {self.actor}>"


def jsonable(value: Any) -> Any:
    """Coerce enums, UUIDs, dates and decimals so JSONB accepts the payload."""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [jsonable(v) for v in value]
    return value


def field_diff(obj: Any, changes: dict[str, Any], fields: Optional[Iterable[str]] = None) -> tuple[dict, dict]:
    """(old, new) for the keys of *changes* whose value actually differs on *obj*."""
    old: dict[str, Any] = {}
    new: dict[str, Any] = {}
    for name in fields if fields is not None else changes:
        before, after = jsonable(getattr(obj, name)), jsonable(changes[name])
        if before != after:
            old[name], new[name] = before, after
    return old, new


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: Optional[uuid.UUID] = None,
    actor: Optional[str] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> AuditTrail:
    entry = AuditTrail(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=jsonable(old_values) if old_values is not None else None,
        new_values=jsonable(new_values) if new_values is not None else None,
    )
    session.add(entry)
    await session.flush()
    return entry
