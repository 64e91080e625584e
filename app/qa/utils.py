from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: list[T]
    page: int
    per_page: int
    total: int

    @property
    def total_pages(self) -> int:
        return max(1, (self.total + self.per_page - 1) // self.per_page)

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page * self.per_page < self.total

    @property
    def first_index(self) -> int:
        return (self.page - 1) * self.per_page + 1 if self.items else 0

    @property
    def last_index(self) -> int:
        return (self.page - 1) * self.per_page + len(self.items)


# Largest value a BIGINT / SQLite INTEGER column can hold.
MAX_ROW_ID = 2**63 - 1


def parse_int(value: str | int | None) -> int | None:
    """Parse a row id; anything that cannot be a stored id gives None."""
    if isinstance(value, int):
        n = value
    else:
        v = (value or "").strip()
        if not v:
            return None
        try:
            n = int(v)
        except ValueError:
            return None
    return n if 1 <= n <= MAX_ROW_ID else None


def paginate(s: Session, stmt: Select, page: int | None, per_page: int) -> Page:
    """Run ``stmt`` with offset/limit and a matching COUNT(*)."""
    page = page if page and page > 0 else 1
    total = s.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    offset = (page - 1) * per_page
    # Past the end there is nothing to fetch; also keeps huge ?page= values out of OFFSET.
    items = list(s.scalars(stmt.offset(offset).limit(per_page)).all()) if offset < total else []
    return Page(items=items, page=page, per_page=per_page, total=total)
