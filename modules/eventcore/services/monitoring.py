"""
Event Monitoring Service.

Read-side views over the outbox for operators: counts, health thresholds,
recent activity, and a manual retry for a single live record.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

from modules.eventcore.core.config_schema import EventsSchema
from modules.eventcore.core.exceptions import NotFoundError, ValidationError
from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.utils import load_json, utc_now
from modules.eventcore.events.publishers import EventPublisher
from modules.eventcore.events.schemas import DeliveryMetadata, QueueMessage
from modules.eventcore.models.event_record import LIVE_STATUSES, EventStatus
from modules.eventcore.repositories.event_record import RecordFilter
from modules.eventcore.schemas.events import (
    EventActivity,
    EventHealth,
    EventRecordSummary,
    EventStats,
    RetryResult,
    TimeRange,
    TypeStatusCount,
)
from modules.eventcore.services.event_store import EventStore

logger = get_logger(__name__)


class EventMonitorService:
    def __init__(
        self,
        store: EventStore,
        publisher: EventPublisher,
        config: EventsSchema,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.config = config
        self._clock = clock

    async def stats(self) -> EventStats:
        pending = await self.store.count(RecordFilter(statuses=LIVE_STATUSES))
        retry_scheduled = await self.store.count(RecordFilter(statuses=(EventStatus.RETRY_SCHEDULED,)))
        dead_letter = await self.store.count(RecordFilter(statuses=(EventStatus.DEAD_LETTER,)))
        groups = await self.store.group_by(["event_type", "status"])
        return EventStats(
            pending=pending,
            retry_scheduled=retry_scheduled,
            dead_letter=dead_letter,
            by_type=[TypeStatusCount(**group) for group in groups],
        )

    async def health(self) -> EventHealth:
        """
        Evaluate the alert thresholds from events.monitoring.

        Unhealthy when too many live records are older than stuck_age_minutes,
        or when the dead-letter backlog reaches dead_letter_threshold.
        """
        monitoring = self.config.monitoring
        stuck_before = self._clock() - timedelta(minutes=monitoring.stuck_age_minutes)

        stuck = await self.store.count(RecordFilter(statuses=LIVE_STATUSES, created_before=stuck_before))
        dead = await self.store.count(RecordFilter(statuses=(EventStatus.DEAD_LETTER,)))

        alerts: list[str] = []
        if stuck >= monitoring.stuck_threshold:
            alerts.append(
                f"{stuck} events appear to be stuck (older than {monitoring.stuck_age_minutes} minutes, "
                f"threshold {monitoring.stuck_threshold})"
            )
        if dead >= monitoring.dead_letter_threshold:
            alerts.append(
                f"{dead} events in dead letter queue (threshold {monitoring.dead_letter_threshold})"
            )

        if alerts:
            logger.warning("Event system unhealthy", extra={"alerts": alerts})
        return EventHealth(healthy=not alerts, stuck_events=stuck, dead_letter_events=dead, alerts=alerts)

    async def activity(self, hours: int = 24) -> EventActivity:
        since = self._clock() - timedelta(hours=hours)
        window = RecordFilter(created_after=since)
        records = await self.store.find_many(window, limit=self.config.monitoring.activity_limit, newest_first=True)
        groups = await self.store.group_by(["event_type", "status"], window)
        return EventActivity(
            recent_activity=[EventRecordSummary.model_validate(record) for record in records],
            summary=[TypeStatusCount(**group) for group in groups],
            time_range=TimeRange(since=since, hours=hours),
        )

    async def retry_event(self, record_id: int) -> RetryResult:
        """
        Reset a live record's retry state and enqueue it immediately.

        Raises:
            NotFoundError: If the record does not exist
            ValidationError: If the record is a dead letter
            QueueError: If the enqueue fails
        """
        record = await self.store.find(record_id)
        if record is None:
            raise NotFoundError(f"Event {record_id} not found")
        if record.status == EventStatus.DEAD_LETTER:
            raise ValidationError(
                "Dead-letter events must be reprocessed, not retried",
                details={"event_id": record_id, "status": record.status},
            )

        metadata = DeliveryMetadata.from_record(record.delivery_metadata)
        metadata.retry_count = 0
        metadata.last_error = None
        metadata.next_retry_at = None

        updated = await self.store.update(
            record_id,
            delivery_metadata=metadata.to_record(),
            status=EventStatus.PENDING,
            next_retry_at=None,
        )
        if updated is None:
            raise NotFoundError(f"Event {record_id} not found")

        await self.publisher.enqueue(
            QueueMessage(
                event_type=record.event_type,
                payload=load_json(record.payload),
                event_id=record_id,
                priority=metadata.priority,
                retry_attempt=0,
            )
        )
        logger.info("Event manually retried", extra={"event_id": record_id, "event_type": record.event_type})
        return RetryResult(event_id=record_id, status=EventStatus.PENDING.value, message="Event queued for retry")
