"""
Event Schemas.

Wire and storage shapes for the delivery pipeline. Both models use
camelCase aliases so stored metadata and queue messages keep the field
names existing producers and dashboards read.

    DeliveryMetadata  → event_outbox.delivery_metadata
    QueueMessage      → body of every message on the event queue

Usage:
    message = QueueMessage(event_type="CAMPAIGN_PUBLISH_CONTENT", payload={...}, event_id=42)
    await broker_client.publish("event-queue", message)
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from modules.eventcore.core.utils import utc_now
from modules.eventcore.events.types import Priority
from modules.eventcore.models.event_record import DEFAULT_MAX_RETRIES


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class DeliveryMetadata(_CamelModel):
    """Retry bookkeeping stored beside each event record."""

    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    priority: Priority = Priority.NORMAL
    delay_ms: int = Field(default=0, ge=0)
    last_error: str | None = None
    last_retry_at: datetime | None = None
    next_retry_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    recovery_count: int = Field(default=0, ge=0)

    @classmethod
    def from_record(cls, raw: dict[str, Any] | None) -> "DeliveryMetadata":
        return cls.model_validate(raw or {})

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class QueueMessage(_CamelModel):
    """A single delivery attempt. `retry_attempt` is 0 for the first delivery."""

    event_type: str = Field(min_length=1)
    payload: Any = None
    event_id: int
    priority: Priority = Priority.NORMAL
    retry_attempt: int = Field(default=0, ge=0)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
