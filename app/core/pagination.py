"""Offset pagination shared by every list endpoint."""

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel, to_snake
from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestError

T = TypeVar("T")

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class PageParams:
    page: int = 1
    limit: int = DEFAULT_LIMIT
    sort_by: str = "createdAt"
    sort_order: SortOrder = SortOrder.DESC
    search: str | None = None

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def page_params(
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    sort_by: Annotated[str, Query(alias="sortBy")] = "createdAt",
    sort_order: Annotated[SortOrder, Query(alias="sortOrder")] = SortOrder.DESC,
    search: Annotated[str | None, Query(max_length=255)] = None,
) -> PageParams:
    """FastAPI dependency reading the pagination query parameters."""
    return PageParams(
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search or None,
    )


class PageMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, total: int, params: PageParams) -> "PageMeta":
        return cls(
            total=total,
            page=params.page,
            limit=params.limit,
            total_pages=math.ceil(total / params.limit) if total else 0,
            has_next=params.skip + params.limit < total,
            has_prev=params.skip > 0,
        )


class Page(BaseModel, Generic[T]):
    data: list[T]
    meta: PageMeta


def _sort_column(model: Any, sort_by: str):
    column = model.__table__.columns.get(to_snake(sort_by))
    if column is None:
        raise BadRequestError(f"Cannot sort by '{sort_by}'")
    return column


async def paginate(
    session: AsyncSession,
    stmt: Select,
    model: Any,
    params: PageParams,
    search_fields: tuple[str, ...] = (),
    options: tuple[Any, ...] = (),
) -> tuple[list[Any], PageMeta]:
    """Apply search, ordering and the page window to ``stmt``.

    Loader ``options`` apply to the page query only, never to the count.
    Returns the rows of the requested page and the envelope metadata.
    """
    if params.search and search_fields:
        term = f"%{params.search}%"
        stmt = stmt.where(or_(*(getattr(model, name).ilike(term) for name in search_fields)))

    column = _sort_column(model, params.sort_by)
    order = column.asc() if params.sort_order == SortOrder.ASC else column.desc()

    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await session.execute(count_stmt)).scalar_one()

    result = await session.execute(
        stmt.options(*options)
        .order_by(order, model.id)
        .offset(params.skip)
        .limit(params.limit)
    )
    return list(result.scalars().all()), PageMeta.build(total, params)
