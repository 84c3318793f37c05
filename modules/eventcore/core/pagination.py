"""
Pagination Utilities.

Page-based pagination for list endpoints (`?page=1&limit=20`).
"""

import math
from dataclasses import dataclass
from typing import Any

from fastapi import Query
from pydantic import BaseModel

from modules.eventcore.schemas.base import PaginatedResponse, PaginationInfo, ResponseMetadata


@dataclass
class PageParams:
    """Pagination parameters extracted from the query string."""

    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def get_page_params(
    page: int = Query(default=1, ge=1, description="Page number, starting at 1"),
    limit: int = Query(default=20, ge=1, le=100, description="Items per page"),
) -> PageParams:
    """
    FastAPI dependency for pagination parameters.

    Usage:
        @router.get("/dead-letter")
        async def list_dead_letters(params: PageParams = Depends(get_page_params)):
            ...
    """
    return PageParams(page=page, limit=limit)


def create_paginated_response(
    items: list[Any],
    item_schema: type[BaseModel],
    total: int,
    params: PageParams,
    request_id: str | None = None,
) -> dict[str, Any]:
    """
    Create a standardized paginated response.

    Args:
        items: Items of the current page (model instances or dicts)
        item_schema: Pydantic schema to validate items
        total: Total count across all pages
        params: Page and limit of the request
        request_id: Request ID for metadata

    Returns:
        Dict matching PaginatedResponse structure
    """
    validated_items = [
        item_schema.model_validate(item).model_dump(mode="json", by_alias=True)
        for item in items
    ]

    pagination = PaginationInfo(
        total=total,
        page=params.page,
        limit=params.limit,
        pages=math.ceil(total / params.limit) if total else 0,
        has_more=params.offset + len(items) < total,
    )

    response = PaginatedResponse(
        data=validated_items,
        pagination=pagination,
        metadata=ResponseMetadata(request_id=request_id),
    )
    return response.model_dump(mode="json")
