# backend/roi_engine/schemas/pagination.py
"""
Page-based pagination metadata for admin list endpoints.

Usage:
    total, rows = service.list_points(db, "BTC", page=2, page_size=50)
    return {"items": [...], "pagination": PaginationMeta.create(total, 2, 50)}
"""

from pydantic import BaseModel, Field, computed_field


class PaginationMeta(BaseModel):
    """
    Attributes:
        total: Items matching the query
        page: Current page (1-indexed)
        page_size: Items per page
        pages, has_next, has_previous: Computed
    """

    total: int = Field(..., ge=0, description="Total number of items matching query")
    page: int = Field(..., ge=1, description="Current page number (1-indexed)")
    page_size: int = Field(..., ge=1, description="Maximum items per page")

    @computed_field
    @property
    def pages(self) -> int:
        if self.total <= 0:
            return 1
        return (self.total + self.page_size - 1) // self.page_size

    @computed_field
    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total

    @computed_field
    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @classmethod
    def create(cls, total: int, page: int, page_size: int) -> "PaginationMeta":
        return cls(total=total, page=page, page_size=page_size)
