"""Page/sort handling for list endpoints.

Responses use the ``{"data": [...], "meta": {...}}`` envelope. Each endpoint
declares which public sort keys it accepts and which columns they map to;
anything else in ``?sort=`` falls back to the endpoint's default order.
"""

from __future__ import annotations

import math
from typing import Any, Generic, Mapping, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

T = TypeVar("T")


class PaginationParams:
    """``Depends()``-able query parameters: page, page_size, sort."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        sort: Optional[str] = Query(
            default=None, description='Sort key; prefix "-" for descending',
        ),
    ) -> None:
        self.page = page
        self.page_size = page_size
        self.sort = sort

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def for_total(cls, params: PaginationParams, total: int) -> "PaginationMeta":
        pages = math.ceil(total / params.page_size) if total else 0
        return cls(
            page=params.page,
            page_size=params.page_size,
            total=total,
            total_pages=pages,
            has_next=params.page < pages,
            has_prev=params.page > 1,
        )


class PaginatedResponse(BaseModel, Generic[T]):
    data: Sequence[T]
    meta: PaginationMeta


def order_clause(sort: Optional[str], sortable: Mapping[str, Any]) -> Optional[Any]:
    """``"-created_at"`` → ``sortable["created_at"].desc()``; unknown keys → None."""
    if not sort:
        return None
    key = sort.lstrip("-")
    column = sortable.get(key)
    if column is None:
        return None
    return column.desc() if sort.startswith("-") else column.asc()


async def paginate(
    session: AsyncSession,
    query: Select,
    params: PaginationParams,
    *,
    sortable: Mapping[str, Any],
    default_order: Sequence[Any] = (),
) -> tuple[Sequence[Any], PaginationMeta]:
    total: int = (
        await session.execute(
            query.with_only_columns(func.count(), maintain_column_froms=True).order_by(None)
        )
    ).scalar_one()

    clause = order_clause(params.sort, sortable)
    ordered = query.order_by(clause, *default_order) if clause is not None else query.order_by(*default_order)
    rows = (
        await session.execute(ordered.offset(params.offset).limit(params.page_size))
    ).scalars().all()
    return rows, PaginationMeta.for_total(params, total)
