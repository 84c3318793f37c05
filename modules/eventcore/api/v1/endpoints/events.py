"""
Event Monitoring API Endpoints.

Operator endpoints for the event-delivery pipeline: counts, dead-letter
review and replay, recent activity, health thresholds, and manual retry.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from modules.eventcore.core.dependencies import DeadLetters, EventMonitor, Recovery, RequestId
from modules.eventcore.core.pagination import PageParams, create_paginated_response, get_page_params
from modules.eventcore.schemas.base import ApiResponse, ResponseMetadata
from modules.eventcore.schemas.events import (
    DeadLetterItem,
    EventActivity,
    EventHealth,
    EventStats,
    PendingStats,
    ReprocessResult,
    RetryResult,
)

router = APIRouter()


@router.get(
    "/stats",
    response_model=ApiResponse[EventStats],
    summary="Event record counts",
)
async def get_event_stats(monitor: EventMonitor, request_id: RequestId) -> ApiResponse[EventStats]:
    stats = await monitor.stats()
    return ApiResponse(data=stats, metadata=ResponseMetadata(request_id=request_id))


@router.get(
    "/dead-letter",
    summary="List dead-letter events (paginated)",
    description="Dead letters awaiting manual review, newest first.",
)
async def list_dead_letter_events(
    dead_letters: DeadLetters,
    request_id: RequestId,
    params: PageParams = Depends(get_page_params),
) -> dict[str, Any]:
    records, total = await dead_letters.list_dead_letters(page=params.page, limit=params.limit)
    return create_paginated_response(
        items=[DeadLetterItem.from_record(record) for record in records],
        item_schema=DeadLetterItem,
        total=total,
        params=params,
        request_id=request_id,
    )


@router.post(
    "/dead-letter/reprocess",
    response_model=ApiResponse[ReprocessResult],
    summary="Republish dead-letter events",
    description="Republish up to `limit` dead letters, oldest first, with a reduced retry budget.",
)
async def reprocess_dead_letter_events(
    dead_letters: DeadLetters,
    request_id: RequestId,
    limit: int = Query(default=10, ge=1, le=100),
) -> ApiResponse[ReprocessResult]:
    count = await dead_letters.reprocess(limit)
    return ApiResponse(
        data=ReprocessResult(
            reprocessed_count=count,
            message=f"Successfully reprocessed {count} dead letter events",
        ),
        metadata=ResponseMetadata(request_id=request_id),
    )


@router.get(
    "/activity",
    response_model=ApiResponse[EventActivity],
    summary="Recent event activity",
)
async def get_event_activity(
    monitor: EventMonitor,
    request_id: RequestId,
    hours: int = Query(default=24, ge=1, le=24 * 30),
) -> ApiResponse[EventActivity]:
    activity = await monitor.activity(hours)
    return ApiResponse(data=activity, metadata=ResponseMetadata(request_id=request_id))


@router.get(
    "/health",
    response_model=ApiResponse[EventHealth],
    summary="Event system health",
    description="200 when healthy, 503 with alerts when a monitoring threshold trips.",
    responses={503: {"model": ApiResponse[EventHealth]}},
)
async def event_health(monitor: EventMonitor, request_id: RequestId) -> Any:
    health = await monitor.health()
    body = ApiResponse(data=health, metadata=ResponseMetadata(request_id=request_id))
    if not health.healthy:
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return body


@router.get(
    "/pending",
    response_model=ApiResponse[PendingStats],
    summary="Pending event backlog",
)
async def get_pending_stats(recovery: Recovery, request_id: RequestId) -> ApiResponse[PendingStats]:
    stats = await recovery.pending_stats()
    return ApiResponse(data=PendingStats(**stats), metadata=ResponseMetadata(request_id=request_id))


@router.post(
    "/{event_id}/retry",
    response_model=ApiResponse[RetryResult],
    summary="Retry a single event now",
    description="Reset the retry count of a live event and enqueue it immediately.",
)
async def retry_event(event_id: int, monitor: EventMonitor, request_id: RequestId) -> ApiResponse[RetryResult]:
    result = await monitor.retry_event(event_id)
    return ApiResponse(data=result, metadata=ResponseMetadata(request_id=request_id))
