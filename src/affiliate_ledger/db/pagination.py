"""Pagination helpers shared by the ledger and withdrawal queries."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import Select, func
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Pagination parameters for list queries."""

    page: int = Field(default=1, ge=1, description="Page number (1-based)")
    page_size: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Number of items per page",
    )

    @property
    def offset(self) -> int:
        """Calculate offset for SQL queries."""
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        """Get limit for SQL queries."""
        return self.page_size


@dataclass(slots=True)
class Page(Generic[T]):
    """One page of results plus the totals needed to render a pager."""

    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return math.ceil(self.total / self.page_size)


async def paginate_query(
    session: AsyncSession,
    stmt: Select[Any],
    pagination: PaginationParams,
) -> Page[Any]:
    """Paginate a SQLAlchemy query and return items with total count."""
    count_stmt = stmt.order_by(None).with_only_columns(
        func.count(), maintain_column_froms=True
    )
    total = (await session.execute(count_stmt)).scalar() or 0

    paginated_stmt = stmt.offset(pagination.offset).limit(pagination.limit)
    result = await session.execute(paginated_stmt)
    items = list(result.scalars().all())

    return Page(
        items=items,
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )
