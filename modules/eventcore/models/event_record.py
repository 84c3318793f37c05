"""
Event Record Model.

Durable outbox row for a published domain event. A row lives until its
event completes (deleted), is purged, or is reprocessed from dead-letter.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from modules.eventcore.models.base import Base, TimestampMixin


class EventStatus(StrEnum):
    PENDING = "pending"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTER = "dead_letter"


LIVE_STATUSES = (EventStatus.PENDING, EventStatus.RETRY_SCHEDULED)

# Retry budget of a record whose metadata predates maxRetries.
DEFAULT_MAX_RETRIES = 3


class EventRecord(TimestampMixin, Base):
    """
    Outbox record.

    `status` is authoritative. Dead-lettered rows additionally carry the
    DEAD_LETTER_ prefix on `event_type` and an archived payload.
    """

    __tablename__ = "event_outbox"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    event_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    delivery_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=EventStatus.PENDING.value,
        index=True,
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<EventRecord(id={self.id}, type={self.event_type!r}, status={self.status!r})>"
