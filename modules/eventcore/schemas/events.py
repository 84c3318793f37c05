"""
Event Monitoring Schemas.

Pydantic schemas for the event monitoring API responses.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from modules.eventcore.core.utils import load_json
from modules.eventcore.models.event_record import EventRecord


class TypeStatusCount(BaseModel):
    """Record count for one (event_type, status) pair."""

    event_type: str
    status: str
    count: int


class EventStats(BaseModel):
    """Counts of live and quarantined event records."""

    pending: int = Field(description="Records not yet completed (pending + retry_scheduled)")
    retry_scheduled: int = Field(description="Records waiting for a scheduled retry")
    dead_letter: int = Field(description="Quarantined records awaiting manual review")
    completed: int = Field(default=0, description="Always 0; completed records are deleted")
    failed: int = Field(default=0, description="Always 0; failures end in retry or dead letter")
    by_type: list[TypeStatusCount] = Field(default_factory=list)


class EventHealth(BaseModel):
    healthy: bool
    stuck_events: int
    dead_letter_events: int
    alerts: list[str] = Field(default_factory=list)


class EventRecordSummary(BaseModel):
    """Event record in list responses."""

    id: int
    event_type: str
    status: str
    created_at: datetime
    updated_at: datetime
    next_retry_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DeadLetterItem(BaseModel):
    """Dead-letter record with its archived body unpacked."""

    id: int
    event_type: str
    original_event_type: str | None = None
    original_payload: Any = None
    error: str | None = None
    retry_count: int | None = None
    moved_at: str | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: EventRecord) -> "DeadLetterItem":
        try:
            body = load_json(record.payload)
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        return cls(
            id=record.id,
            event_type=record.event_type,
            original_event_type=body.get("originalEventType"),
            original_payload=body.get("originalPayload"),
            error=body.get("error"),
            retry_count=body.get("retryCount"),
            moved_at=body.get("movedAt"),
            created_at=record.created_at,
        )


class TimeRange(BaseModel):
    since: datetime
    hours: int


class EventActivity(BaseModel):
    recent_activity: list[EventRecordSummary]
    summary: list[TypeStatusCount]
    time_range: TimeRange


class ReprocessResult(BaseModel):
    reprocessed_count: int
    message: str


class RetryResult(BaseModel):
    event_id: int
    status: str
    message: str


class PendingStats(BaseModel):
    total_pending: int
    old_pending: int = Field(description="Pending for more than 5 minutes")
    very_old_pending: int = Field(description="Pending for more than 1 hour")
    max_retry_exceeded: int
