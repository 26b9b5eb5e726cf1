from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, TypeVar

from sqlalchemy import Select, asc, desc, func, select
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ValidationFailed

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    nodes: list[T] = field(default_factory=list)
    total_count: int = 0
    current_page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return int(math.ceil(self.total_count / float(self.limit)))

    @property
    def page_info(self) -> dict[str, Any]:
        return {
            "total_count": self.total_count,
            "total_pages": self.total_pages,
            "current_page": self.current_page,
            "has_next_page": self.current_page < self.total_pages,
            "has_previous_page": self.current_page > 1,
        }

    def as_dict(self) -> dict[str, Any]:
        return {"nodes": list(self.nodes), "page_info": self.page_info}


def order_by_field(stmt: Select, columns: Mapping[str, Any], sort_by: str, sort_order: str) -> Select:
    col = columns.get(sort_by)
    if col is None:
        raise ValidationFailed(f"cannot sort by {sort_by!r}; choose one of {sorted(columns)}")
    order = (sort_order or "desc").strip().lower()
    if order not in ("asc", "desc"):
        raise ValidationFailed("sort_order must be 'asc' or 'desc'")
    return stmt.order_by(asc(col) if order == "asc" else desc(col))


def paginate(db: Session, stmt: Select, *, page: int = 1, limit: int | None = None) -> Page:
    limit = int(limit or settings.default_page_size)
    if page < 1:
        raise ValidationFailed("page must be >= 1")
    if limit < 1 or limit > settings.max_page_size:
        raise ValidationFailed(f"limit must be between 1 and {settings.max_page_size}")

    total = int(db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0)
    rows = db.scalars(stmt.offset((page - 1) * limit).limit(limit)).unique().all()
    return Page(nodes=list(rows), total_count=total, current_page=page, limit=limit)
