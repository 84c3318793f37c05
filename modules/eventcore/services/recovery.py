"""
Event Recovery Service.

Reconciles outbox records left behind by a stopped worker.

When a worker dies, messages it had dequeued are gone from Redis but their
records are still pending. `recover_pending()` runs once at worker startup
and re-enqueues those orphans; a record already recovered `max_recoveries`
times is dead-lettered instead. `purge_expired()` is a maintenance job that
keeps the table from growing without bound. It deletes dead letters only:
live records leave the table by completing or by being dead-lettered,
never by age alone.

Recovery never blocks startup: a failed scan is logged and reported as an
empty result.
"""

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from modules.eventcore.core.config_schema import EventsSchema
from modules.eventcore.core.exceptions import ApplicationError, PersistenceError
from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.utils import load_json, utc_now
from modules.eventcore.events.publishers import EventPublisher
from modules.eventcore.events.schemas import DeliveryMetadata, QueueMessage
from modules.eventcore.models.event_record import EventRecord, EventStatus
from modules.eventcore.repositories.event_record import RecordFilter
from modules.eventcore.services.dead_letter import DeadLetterService
from modules.eventcore.services.event_store import EventStore

logger = get_logger(__name__)


@dataclass
class RecoveryReport:
    recovered: int = 0
    failed: int = 0
    skipped: int = 0
    dead_lettered: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class EventRecoveryService:
    def __init__(
        self,
        store: EventStore,
        publisher: EventPublisher,
        dead_letters: DeadLetterService,
        config: EventsSchema,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.dead_letters = dead_letters
        self.config = config
        self._clock = clock

    async def recover_pending(self, started_at: datetime | None = None) -> RecoveryReport:
        """
        Re-enqueue pending records orphaned by a previous worker.

        Each record is recovered at most `recovery.max_recoveries` times.
        Stale pending records past that limit are dead-lettered instead.
        The limit is applied in the query, so records that are never
        going to be recovered cannot crowd real orphans out of the batch.

        Args:
            started_at: When this worker started; defaults to now

        Returns:
            RecoveryReport with per-record outcome counts
        """
        recovery = self.config.recovery
        started_at = started_at or self._clock()
        cutoff = started_at - timedelta(seconds=recovery.orphan_age_seconds)

        try:
            orphans = await self.store.find_many(
                RecordFilter(
                    statuses=(EventStatus.PENDING,),
                    created_before=cutoff,
                    recoveries_below=recovery.max_recoveries,
                ),
                limit=recovery.batch_size,
            )
            exhausted = await self.store.find_many(
                RecordFilter(
                    statuses=(EventStatus.PENDING,),
                    created_before=cutoff,
                    recoveries_at_least=recovery.max_recoveries,
                ),
                limit=recovery.batch_size,
            )
        except PersistenceError as e:
            logger.error("Event recovery scan failed", extra={"error": str(e)})
            return RecoveryReport()

        report = RecoveryReport(total=len(orphans) + len(exhausted))
        if not report.total:
            logger.info("No orphaned events to recover")
            return report

        logger.info(
            "Recovering orphaned events",
            extra={"count": len(orphans), "recovery_limit_exceeded": len(exhausted)},
        )
        recent = self._clock() - timedelta(seconds=recovery.recent_update_seconds)

        for record in exhausted:
            if self._skip_recent(record, recent, report):
                continue
            if await self._dead_letter(record):
                report.dead_lettered += 1
            else:
                report.failed += 1

        for record in orphans:
            if self._skip_recent(record, recent, report):
                continue

            try:
                await self._recover(record)
            except (ApplicationError, ValueError) as e:
                report.failed += 1
                logger.error(
                    "Failed to recover event",
                    extra={"event_id": record.id, "event_type": record.event_type, "error": str(e)},
                )
                await self._record_failure(record, e)
                continue
            report.recovered += 1

        logger.info("Event recovery complete", extra=report.to_dict())
        if report.failed > report.recovered:
            logger.warning(
                "High recovery failure rate",
                extra={"failed": report.failed, "total": report.total},
            )
        return report

    @staticmethod
    def _skip_recent(record: EventRecord, recent: datetime, report: RecoveryReport) -> bool:
        if record.updated_at is None or record.updated_at <= recent:
            return False
        report.skipped += 1
        logger.info(
            "Skipping recently updated event",
            extra={"event_id": record.id, "event_type": record.event_type},
        )
        return True

    async def _dead_letter(self, record: EventRecord) -> bool:
        metadata = DeliveryMetadata.from_record(record.delivery_metadata)
        try:
            payload = load_json(record.payload)
        except ValueError:
            payload = record.payload
        return await self.dead_letters.move_to_dead_letter(
            record.id,
            record.event_type,
            payload,
            f"Recovery limit exceeded after {metadata.recovery_count} recoveries",
            metadata.retry_count,
        )

    async def _recover(self, record: EventRecord) -> None:
        metadata = DeliveryMetadata.from_record(record.delivery_metadata)
        await self.publisher.enqueue(
            QueueMessage(
                event_type=record.event_type,
                payload=load_json(record.payload),
                event_id=record.id,
                priority=metadata.priority,
                retry_attempt=metadata.retry_count,
            )
        )
        metadata.recovery_count += 1
        await self.store.update(record.id, delivery_metadata=metadata.to_record())
        logger.info(
            "Recovered event",
            extra={
                "event_id": record.id,
                "event_type": record.event_type,
                "recovery_count": metadata.recovery_count,
            },
        )

    async def _record_failure(self, record: EventRecord, error: Exception) -> None:
        metadata = DeliveryMetadata.from_record(record.delivery_metadata)
        metadata.last_error = f"Recovery failed: {error}"
        try:
            await self.store.update(record.id, delivery_metadata=metadata.to_record())
        except PersistenceError as e:
            logger.error(
                "Failed to record recovery error",
                extra={"event_id": record.id, "error": str(e)},
            )

    async def purge_expired(self, retention_days: int | None = None) -> int:
        """
        Delete dead letters not touched within the retention window.

        Pending and retry-scheduled records are never purged.

        Returns:
            Number of records deleted
        """
        days = self.config.recovery.retention_days if retention_days is None else retention_days
        cutoff = self._clock() - timedelta(days=days)
        deleted = await self.store.purge(
            RecordFilter(statuses=(EventStatus.DEAD_LETTER,), updated_before=cutoff)
        )
        logger.info("Expired dead letters purged", extra={"deleted": deleted, "retention_days": days})
        return deleted

    async def pending_stats(self) -> dict[str, Any]:
        """Counts of pending records by age, plus those past their retry budget."""
        now = self._clock()
        pending = (EventStatus.PENDING,)

        total_pending = await self.store.count(RecordFilter(statuses=pending))
        old_pending = await self.store.count(
            RecordFilter(statuses=pending, created_before=now - timedelta(minutes=5))
        )
        very_old_pending = await self.store.count(
            RecordFilter(statuses=pending, created_before=now - timedelta(hours=1))
        )

        max_retry_exceeded = await self.store.count(
            RecordFilter(statuses=pending, retries_exhausted=True)
        )

        return {
            "total_pending": total_pending,
            "old_pending": old_pending,
            "very_old_pending": very_old_pending,
            "max_retry_exceeded": max_retry_exceeded,
        }
