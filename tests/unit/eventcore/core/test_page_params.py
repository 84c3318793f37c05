"""Unit tests for page-based pagination helpers."""

from pydantic import BaseModel

from modules.eventcore.core.pagination import PageParams, create_paginated_response, get_page_params


class ItemSchema(BaseModel):
    id: int


class TestPageParams:
    def test_offset(self):
        assert PageParams(page=1, limit=20).offset == 0
        assert PageParams(page=3, limit=10).offset == 20

    def test_dependency_builds_params(self):
        params = get_page_params(page=2, limit=50)
        assert params == PageParams(page=2, limit=50)


class TestCreatePaginatedResponse:
    def test_structure(self):
        response = create_paginated_response(
            items=[{"id": 1}, {"id": 2}],
            item_schema=ItemSchema,
            total=5,
            params=PageParams(page=1, limit=2),
            request_id="req-1",
        )

        assert response["success"] is True
        assert response["data"] == [{"id": 1}, {"id": 2}]
        assert response["metadata"]["request_id"] == "req-1"
        assert response["pagination"] == {"total": 5, "page": 1, "limit": 2, "pages": 3, "has_more": True}

    def test_last_page(self):
        response = create_paginated_response(
            items=[{"id": 5}],
            item_schema=ItemSchema,
            total=5,
            params=PageParams(page=3, limit=2),
        )

        assert response["pagination"]["has_more"] is False

    def test_empty(self):
        response = create_paginated_response(
            items=[],
            item_schema=ItemSchema,
            total=0,
            params=PageParams(page=1, limit=20),
        )

        assert response["data"] == []
        assert response["pagination"]["pages"] == 0
        assert response["pagination"]["has_more"] is False

    def test_extra_fields_dropped(self):
        response = create_paginated_response(
            items=[{"id": 1, "secret": "x"}],
            item_schema=ItemSchema,
            total=1,
            params=PageParams(page=1, limit=20),
        )

        assert response["data"] == [{"id": 1}]
