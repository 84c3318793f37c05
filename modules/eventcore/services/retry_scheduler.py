"""
Retry Scheduler.

Re-enqueues failed events once their backoff delay has elapsed. Due times
are durable (event_outbox.next_retry_at), so there are two ways a retry
goes out:

    Timer  - an asyncio timer armed by the coordinator in the worker that
             saw the failure. This is the normal, low-latency path.
    Sweep  - a scheduled task that runs every minute and dispatches every
             retry_scheduled record whose due time has passed. This covers
             retries whose timer died with its process.

Both paths call `dispatch()`, which first claims the record
(retry_scheduled → pending). Only one caller can win the claim, so a timer
and the sweep never both enqueue the same retry.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from modules.eventcore.core.concurrency import ShutdownState, TaskSupervisor
from modules.eventcore.core.config_schema import EventsSchema
from modules.eventcore.core.exceptions import PersistenceError, QueueError
from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.resilience import log_retry
from modules.eventcore.core.utils import load_json, utc_now
from modules.eventcore.events.publishers import EventPublisher
from modules.eventcore.events.schemas import DeliveryMetadata, QueueMessage
from modules.eventcore.models.event_record import EventRecord, EventStatus
from modules.eventcore.repositories.event_record import RecordFilter
from modules.eventcore.services.event_store import EventStore

logger = get_logger(__name__)


class RetryScheduler:
    def __init__(
        self,
        store: EventStore,
        publisher: EventPublisher,
        config: EventsSchema,
        shutdown: ShutdownState | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.config = config
        self.shutdown = shutdown or ShutdownState()
        self._clock = clock
        self._timers = TaskSupervisor("retry-timers")

    @property
    def pending_timers(self) -> int:
        return self._timers.in_flight

    def schedule(self, message: QueueMessage, delay_ms: int, claim: bool = True) -> asyncio.Task | None:
        """
        Arm a timer that dispatches `message` after `delay_ms`.

        Args:
            message: The retry message to enqueue
            delay_ms: Backoff delay in milliseconds
            claim: Claim the record before enqueueing. Pass False when the
                retry_scheduled status could not be persisted.

        Returns:
            The timer task, or None if the worker is shutting down
        """
        if self.shutdown.is_shutting_down:
            logger.info(
                "Shutting down, leaving retry to the sweep",
                extra={"event_id": message.event_id, "delay_ms": delay_ms},
            )
            return None

        return self._timers.spawn(
            self._fire_after(message, delay_ms, claim),
            name=f"retry-{message.event_id}-{message.retry_attempt}",
        )

    async def _fire_after(self, message: QueueMessage, delay_ms: int, claim: bool) -> None:
        await asyncio.sleep(delay_ms / 1000)
        await self.dispatch(message, claim=claim)

    async def dispatch(self, message: QueueMessage, claim: bool = True) -> bool:
        """
        Claim the record and enqueue the retry.

        Returns:
            True if the message was enqueued
        """
        if claim:
            try:
                claimed = await self.store.claim_retry(message.event_id)
            except PersistenceError as e:
                logger.error(
                    "Could not claim scheduled retry",
                    extra={"event_id": message.event_id, "error": str(e)},
                )
                return False
            if not claimed:
                logger.debug(
                    "Retry already claimed or record gone, skipping",
                    extra={"event_id": message.event_id, "retry_attempt": message.retry_attempt},
                )
                return False

        try:
            await self._enqueue(message)
        except QueueError as e:
            logger.error(
                "Failed to enqueue retry, releasing for sweep",
                extra={"event_id": message.event_id, "retry_attempt": message.retry_attempt, "error": str(e)},
            )
            if claim:
                await self._release(message.event_id)
            return False

        logger.info(
            "Retry enqueued",
            extra={
                "event_id": message.event_id,
                "event_type": message.event_type,
                "retry_attempt": message.retry_attempt,
            },
        )
        return True

    async def _enqueue(self, message: QueueMessage) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.retry.enqueue_attempts),
            wait=wait_exponential(multiplier=0.2, max=2),
            retry=retry_if_exception_type(QueueError),
            before_sleep=log_retry,
            reraise=True,
        ):
            with attempt:
                await self.publisher.enqueue(message)

    async def _release(self, record_id: int) -> None:
        next_retry_at = self._clock() + timedelta(milliseconds=self.config.retry.base_delay_ms)
        try:
            await self.store.release_claim(record_id, next_retry_at)
        except PersistenceError as e:
            logger.error(
                "Could not release retry claim; recovery will pick the record up",
                extra={"event_id": record_id, "error": str(e)},
            )

    def message_for(self, record: EventRecord) -> QueueMessage:
        """Rebuild the retry message for a stored record."""
        metadata = DeliveryMetadata.from_record(record.delivery_metadata)
        return QueueMessage(
            event_type=record.event_type,
            payload=load_json(record.payload),
            event_id=record.id,
            priority=self.config.queue.retry_priority,
            retry_attempt=metadata.retry_count,
        )

    async def sweep_due(self, limit: int | None = None) -> int:
        """
        Dispatch retry_scheduled records whose due time has passed.

        Returns:
            Number of retries enqueued
        """
        if limit is None:
            limit = self.config.retry.sweep_batch_size
        due = RecordFilter(statuses=(EventStatus.RETRY_SCHEDULED,), due_before=self._clock())
        records = await self.store.find_many(due, limit=limit)

        dispatched = 0
        for record in records:
            try:
                message = self.message_for(record)
            except ValueError as e:
                logger.error(
                    "Scheduled retry has an unreadable payload",
                    extra={"event_id": record.id, "error": str(e)},
                )
                continue
            if await self.dispatch(message):
                dispatched += 1

        if records:
            logger.info("Retry sweep finished", extra={"due": len(records), "dispatched": dispatched})
        return dispatched

    def cancel_pending(self) -> int:
        """Cancel armed timers. Their due times stay in the store for the sweep."""
        return self._timers.cancel_all()
