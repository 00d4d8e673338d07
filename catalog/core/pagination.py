"""
Pagination Utilities.

Offset-based page math and the Page container returned by repositories.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


def last_page_for(total: int, per_page: int) -> int:
    """Index of the last page; an empty result still has page 1."""
    return max(1, math.ceil(total / per_page))


def offset_for(page: int, per_page: int) -> int:
    return (page - 1) * per_page


@dataclass
class Page(Generic[T]):
    """
    One page of a paginated query.

    `items` holds at most `per_page` entries and is empty when the result
    set is empty or `current_page` is past `last_page`.
    """

    items: list[T]
    total: int
    per_page: int
    current_page: int
    last_page: int = field(init=False)

    def __post_init__(self) -> None:
        self.last_page = last_page_for(self.total, self.per_page)

    @classmethod
    def empty(cls, per_page: int, current_page: int = 1) -> "Page[T]":
        return cls(items=[], total=0, per_page=per_page, current_page=current_page)

    def meta(self) -> dict[str, int]:
        """Pagination metadata keyed the way list responses expose it."""
        return {
            "current_page": self.current_page,
            "per_page": self.per_page,
            "total": self.total,
            "last_page": self.last_page,
        }


async def count_query(session: AsyncSession, stmt: Select) -> int:
    """Count the rows a select would return, ignoring its ordering."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    result = await session.execute(count_stmt)
    return int(result.scalar_one())


async def paginate_query(
    session: AsyncSession,
    stmt: Select,
    page: int,
    per_page: int,
    count_stmt: Select | None = None,
) -> Page[Any]:
    """
    Execute a paginated select.

    Args:
        session: Session to execute against
        stmt: Fully filtered and ordered select; items are its result rows
        page: 1-based page number
        per_page: Page size
        count_stmt: Select to count instead of `stmt` (e.g. one without
            eager loads or count columns)

    Returns:
        Page of result rows with the totals

    Usage:
        page = await paginate_query(session, stmt, page=2, per_page=15)
    """
    total = await count_query(session, count_stmt if count_stmt is not None else stmt)
    if total == 0 or offset_for(page, per_page) >= total:
        return Page(items=[], total=total, per_page=per_page, current_page=page)

    result = await session.execute(
        stmt.limit(per_page).offset(offset_for(page, per_page))
    )
    items = list(result.all())
    return Page(items=items, total=total, per_page=per_page, current_page=page)
