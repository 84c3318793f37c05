"""
Processing Coordinator.

Runs one delivery attempt and decides what happens to the record:

    handler succeeds         → record deleted                     COMPLETED
    fatal / non-retryable    → dead letter                        DEAD_LETTERED
    retry budget exhausted   → dead letter                        DEAD_LETTERED
    breaker open for failure → dead letter                        DEAD_LETTERED
    otherwise                → backoff, retry_scheduled, timer    RETRY_SCHEDULED
    record vanished          → nothing to do                      ABANDONED

Handler exceptions never escape `process()`. Store and queue failures
during bookkeeping are logged and swallowed; the worst case is a retry
count that drifts if the process dies mid-update.
"""

import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from modules.eventcore.core.config_schema import EventsSchema
from modules.eventcore.core.exceptions import PersistenceError
from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.resilience import CircuitBreakerRegistry
from modules.eventcore.core.utils import error_message, utc_now
from modules.eventcore.events.schemas import DeliveryMetadata, QueueMessage
from modules.eventcore.models.event_record import EventRecord, EventStatus
from modules.eventcore.services.classifier import ErrorClassifier, FailureClass
from modules.eventcore.services.dead_letter import DeadLetterService
from modules.eventcore.services.event_store import EventStore
from modules.eventcore.services.retry_scheduler import RetryScheduler

logger = get_logger(__name__)

EventHandler = Callable[[str, Any], Awaitable[None]]


class ProcessingOutcome(StrEnum):
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    ABANDONED = "abandoned"


class ProcessingCoordinator:
    def __init__(
        self,
        store: EventStore,
        classifier: ErrorClassifier,
        breakers: CircuitBreakerRegistry,
        dead_letters: DeadLetterService,
        retry_scheduler: RetryScheduler,
        config: EventsSchema,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.breakers = breakers
        self.dead_letters = dead_letters
        self.retry_scheduler = retry_scheduler
        self.config = config
        self._clock = clock

    def backoff_ms(self, retry_count: int) -> int:
        """Delay before the given retry: base * 2^(n-1), capped."""
        retry = self.config.retry
        return min(retry.base_delay_ms * 2 ** (retry_count - 1), retry.max_delay_ms)

    async def process(
        self,
        record_id: int,
        event_type: str,
        payload: Any,
        handler: EventHandler,
    ) -> ProcessingOutcome:
        started = time.monotonic()
        try:
            await handler(event_type, payload)
        except Exception as exc:
            logger.warning(
                "Event handler failed",
                extra={
                    "event_id": record_id,
                    "event_type": event_type,
                    "error": error_message(exc),
                    "error_type": type(exc).__name__,
                    "duration_ms": round((time.monotonic() - started) * 1000, 1),
                },
            )
            return await self._handle_failure(record_id, event_type, payload, exc)

        await self._complete(record_id)
        logger.info(
            "Event processed",
            extra={
                "event_id": record_id,
                "event_type": event_type,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return ProcessingOutcome.COMPLETED

    async def _complete(self, record_id: int) -> None:
        try:
            await self.store.delete(record_id)
        except PersistenceError as e:
            logger.error(
                "Failed to delete completed event record",
                extra={"event_id": record_id, "error": str(e)},
            )

    async def _load(self, record_id: int) -> EventRecord | None:
        try:
            return await self.store.find(record_id)
        except PersistenceError as e:
            logger.error(
                "Failed to load event record after handler failure",
                extra={"event_id": record_id, "error": str(e)},
            )
            return None

    async def _dead_letter(
        self,
        record_id: int,
        event_type: str,
        payload: Any,
        error: str,
        retry_count: int,
    ) -> ProcessingOutcome:
        await self.dead_letters.move_to_dead_letter(record_id, event_type, payload, error, retry_count)
        return ProcessingOutcome.DEAD_LETTERED

    async def _handle_failure(
        self,
        record_id: int,
        event_type: str,
        payload: Any,
        exc: Exception,
    ) -> ProcessingOutcome:
        error = error_message(exc)

        record = await self._load(record_id)
        if record is None:
            logger.warning(
                "Event record not found after failure, abandoning",
                extra={"event_id": record_id, "event_type": event_type},
            )
            return ProcessingOutcome.ABANDONED

        metadata = DeliveryMetadata.from_record(record.delivery_metadata)

        failure = self.classifier.classify(event_type, exc)
        if failure is not FailureClass.RETRYABLE:
            logger.warning(
                "Failure is not retryable, dead-lettering",
                extra={"event_id": record_id, "event_type": event_type, "failure_class": failure.value},
            )
            return await self._dead_letter(record_id, event_type, payload, error, metadata.retry_count)

        retry_count = metadata.retry_count + 1
        if retry_count > metadata.max_retries:
            logger.warning(
                "Retry budget exhausted, dead-lettering",
                extra={"event_id": record_id, "event_type": event_type, "max_retries": metadata.max_retries},
            )
            return await self._dead_letter(record_id, event_type, payload, error, metadata.retry_count)

        breaker_key = self.breakers.key_for(event_type, exc)
        if self.breakers.is_open(breaker_key):
            logger.warning(
                "Circuit open for failure signature, dead-lettering",
                extra={"event_id": record_id, "event_type": event_type, "breaker_key": breaker_key},
            )
            return await self._dead_letter(record_id, event_type, payload, error, metadata.retry_count)
        self.breakers.record_failure(breaker_key)

        delay_ms = self.backoff_ms(retry_count)
        now = self._clock()
        next_retry_at = now + timedelta(milliseconds=delay_ms)
        metadata.retry_count = retry_count
        metadata.last_error = error
        metadata.last_retry_at = now
        metadata.next_retry_at = next_retry_at

        persisted = True
        try:
            updated = await self.store.update(
                record_id,
                delivery_metadata=metadata.to_record(),
                status=EventStatus.RETRY_SCHEDULED,
                next_retry_at=next_retry_at,
            )
        except PersistenceError as e:
            logger.error(
                "Failed to persist retry metadata",
                extra={"event_id": record_id, "error": str(e)},
            )
            persisted = False
        else:
            if updated is None:
                logger.warning(
                    "Event record deleted before retry was scheduled, abandoning",
                    extra={"event_id": record_id, "event_type": event_type},
                )
                return ProcessingOutcome.ABANDONED

        self.retry_scheduler.schedule(
            QueueMessage(
                event_type=event_type,
                payload=payload,
                event_id=record_id,
                priority=self.config.queue.retry_priority,
                retry_attempt=retry_count,
            ),
            delay_ms,
            claim=persisted,
        )
        logger.info(
            "Event retry scheduled",
            extra={
                "event_id": record_id,
                "event_type": event_type,
                "retry_count": retry_count,
                "delay_ms": delay_ms,
            },
        )
        return ProcessingOutcome.RETRY_SCHEDULED
