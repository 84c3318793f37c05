"""
Dead-Letter Service.

Quarantine for events that must not be retried automatically, and the
manual replay path back out of it.

A dead letter is the original outbox row rewritten in place:
    event_type  → DEAD_LETTER_<original type>
    payload     → {originalEventType, originalPayload, error, retryCount, movedAt}
    status      → dead_letter

Dead letters are never reprocessed automatically. `reprocess()` is invoked
from the API or the CLI by an operator.
"""

from typing import Any

from modules.eventcore.core.config_schema import DeadLetterSchema
from modules.eventcore.core.exceptions import PersistenceError
from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.utils import load_json, utc_now
from modules.eventcore.events.publishers import EventPublisher
from modules.eventcore.models.event_record import EventRecord, EventStatus
from modules.eventcore.repositories.event_record import RecordFilter
from modules.eventcore.services.event_store import EventStore

logger = get_logger(__name__)

DEAD_LETTER_FILTER = RecordFilter(statuses=(EventStatus.DEAD_LETTER,))


def parse_dead_letter(record: EventRecord) -> tuple[str, Any, dict[str, Any]]:
    """
    Extract the original event from an archived payload.

    Returns:
        (original event type, original payload, full archived body)

    Raises:
        ValueError: If the payload is not a valid dead-letter body
    """
    body = load_json(record.payload)
    if not isinstance(body, dict) or not body.get("originalEventType"):
        raise ValueError(f"Event record {record.id} is not a dead-letter payload")
    return str(body["originalEventType"]), body.get("originalPayload"), body


class DeadLetterService:
    def __init__(
        self,
        store: EventStore,
        publisher: EventPublisher,
        config: DeadLetterSchema,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.config = config

    def dead_letter_type(self, event_type: str) -> str:
        prefix = self.config.type_prefix
        return event_type if event_type.startswith(prefix) else f"{prefix}{event_type}"

    async def move_to_dead_letter(
        self,
        record_id: int,
        event_type: str,
        payload: Any,
        error: str,
        retry_count: int,
    ) -> bool:
        """Archive a record as a dead letter. Failures are logged, not raised."""
        archived = {
            "originalEventType": event_type,
            "originalPayload": payload,
            "error": error,
            "retryCount": retry_count,
            "movedAt": utc_now().isoformat(),
        }
        try:
            record = await self.store.update(
                record_id,
                event_type=self.dead_letter_type(event_type),
                payload=archived,
                status=EventStatus.DEAD_LETTER,
                next_retry_at=None,
            )
        except PersistenceError as e:
            logger.error(
                "Failed to move event to dead letter",
                extra={"event_id": record_id, "event_type": event_type, "error": str(e)},
            )
            return False

        if record is None:
            logger.warning(
                "Event record missing, cannot dead-letter",
                extra={"event_id": record_id, "event_type": event_type},
            )
            return False

        logger.warning(
            "Event moved to dead letter",
            extra={
                "event_id": record_id,
                "event_type": event_type,
                "retry_count": retry_count,
                "error": error,
            },
        )
        return True

    async def reprocess(self, limit: int | None = None) -> int:
        """
        Republish up to `limit` dead letters, oldest first.

        Each original event is published as a new record with a reduced
        retry budget; the dead letter is deleted only once that succeeds.

        Returns:
            Number of dead letters successfully republished
        """
        if limit is None:
            limit = self.config.default_reprocess_limit
        records = await self.store.find_many(DEAD_LETTER_FILTER, limit=limit, newest_first=False)

        reprocessed = 0
        for record in records:
            try:
                original_type, original_payload, _ = parse_dead_letter(record)
            except ValueError as e:
                logger.error(
                    "Cannot parse dead letter, leaving in place",
                    extra={"event_id": record.id, "error": str(e)},
                )
                continue

            new_id = await self.publisher.publish(
                original_type,
                original_payload,
                max_retries=self.config.reprocess_max_retries,
            )
            if new_id is None:
                logger.error(
                    "Dead letter republish failed, leaving in place",
                    extra={"event_id": record.id, "event_type": original_type},
                )
                continue

            try:
                await self.store.delete(record.id)
            except PersistenceError as e:
                logger.error(
                    "Republished dead letter could not be deleted",
                    extra={"event_id": record.id, "new_event_id": new_id, "error": str(e)},
                )
                continue

            reprocessed += 1
            logger.info(
                "Dead letter reprocessed",
                extra={"event_id": record.id, "new_event_id": new_id, "event_type": original_type},
            )

        logger.info("Dead letter reprocessing finished", extra={"reprocessed": reprocessed, "scanned": len(records)})
        return reprocessed

    async def list_dead_letters(self, page: int = 1, limit: int = 20) -> tuple[list[EventRecord], int]:
        """Dead letters for manual review, newest first."""
        offset = (page - 1) * limit
        records = await self.store.find_many(DEAD_LETTER_FILTER, limit=limit, offset=offset, newest_first=True)
        total = await self.store.count(DEAD_LETTER_FILTER)
        return records, total

    async def count(self) -> int:
        return await self.store.count(DEAD_LETTER_FILTER)
