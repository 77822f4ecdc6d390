from typing import Generic, List, Sequence, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class PageInfo(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def of(cls, page: int, limit: int, total: int) -> "PageInfo":
        # An empty listing still reports one page.
        total_pages = max(1, -(-total // limit))
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class Page(BaseModel, Generic[T]):
    """One page of a tenant-scoped listing."""

    data: List[T] = Field(default_factory=list)
    pagination: PageInfo

    @classmethod
    def build(cls, items: Sequence[T], page: int, limit: int, total: int) -> "Page[T]":
        return cls(data=list(items), pagination=PageInfo.of(page, limit, total))
