"""
Pagination Helpers - Consistent pagination across list endpoints.
"""

from __future__ import annotations

from typing import Any, List

from fastapi import Query
from pydantic import BaseModel, Field


class PaginationMeta(BaseModel):
    """Standard pagination metadata."""
    limit: int = Field(..., description="Number of items per page")
    offset: int = Field(..., description="Number of items skipped")
    count: int = Field(..., description="Number of items in this page")
    has_previous: bool = Field(..., description="Whether there are items before this page")
    page: int = Field(..., description="Current page number (1-indexed)")


def paginate(items: List[Any], limit: int, offset: int, data_key: str = "data") -> dict:
    """
    Build a list response with pagination metadata.

    Example:
        >>> paginate([{"id": 1}], limit=10, offset=0)["pagination"]["page"]
        1
    """
    pagination = PaginationMeta(
        limit=limit,
        offset=offset,
        count=len(items),
        has_previous=offset > 0,
        page=(offset // limit) + 1 if limit > 0 else 1,
    )
    return {
        data_key: items,
        "pagination": pagination.model_dump(),
    }


def pagination_params(default_limit: int = 50, max_limit: int = 200):
    """
    Factory for common pagination query parameters.

    Usage:
        @router.get("/items")
        async def list_items(pagination: dict = Depends(pagination_params())):
            limit, offset = pagination["limit"], pagination["offset"]
    """
    def get_params(
        limit: int = Query(default_limit, ge=1, le=max_limit, description="Number of items to return"),
        offset: int = Query(0, ge=0, description="Number of items to skip"),
    ) -> dict:
        return {"limit": limit, "offset": offset}

    return get_params
