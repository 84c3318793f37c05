"""
Event Publisher.

Entry point for domain code that wants an event delivered. Publishing is
three steps, in order:

    1. Create the durable outbox record (pending)
    2. Notify same-process listeners on the LocalEventBus
    3. Enqueue the first delivery attempt on the event queue

`publish()` never raises. A failure at any step is logged and reported as
None; a record whose enqueue failed stays pending and is re-enqueued by the
recovery service on the next worker start.

When the events_publish_enabled feature flag is off, publish() does nothing
and returns None.

Usage:
    from modules.eventcore.services.factory import build_event_services

    publisher = build_event_services().publisher
    event_id = await publisher.publish(EventType.CAMPAIGN_PUBLISH_CONTENT, {"campaign_id": 7})
"""

from typing import Any

from modules.eventcore.core.config_schema import EventsSchema
from modules.eventcore.core.logging import get_logger
from modules.eventcore.events.broker import BrokerClient
from modules.eventcore.events.bus import LocalEventBus
from modules.eventcore.events.schemas import DeliveryMetadata, QueueMessage
from modules.eventcore.events.types import Priority
from modules.eventcore.services.event_store import EventStore

logger = get_logger(__name__)


class EventPublisher:
    def __init__(
        self,
        store: EventStore,
        broker_client: BrokerClient,
        bus: LocalEventBus,
        config: EventsSchema,
        publish_enabled: bool = True,
    ) -> None:
        self.store = store
        self.broker_client = broker_client
        self.bus = bus
        self.config = config
        self.publish_enabled = publish_enabled

    @property
    def queue_name(self) -> str:
        return self.config.queue.name

    async def publish(
        self,
        event_type: str,
        payload: Any,
        max_retries: int | None = None,
        priority: Priority | str | None = None,
        delay_ms: int | None = None,
    ) -> int | None:
        """
        Store and enqueue an event.

        Args:
            event_type: Domain event kind
            payload: JSON-serializable event data
            max_retries: Retry budget; defaults to events.delivery.max_retries
            priority: Delivery priority; defaults to events.queue.default_priority
            delay_ms: Requested delay, stored as metadata only

        Returns:
            The record id, or None if publishing is disabled or failed
        """
        event_type = str(event_type)
        if not self.publish_enabled:
            logger.debug("Event publishing disabled, skipping", extra={"event_type": event_type})
            return None

        try:
            metadata = DeliveryMetadata(
                max_retries=self.config.delivery.max_retries if max_retries is None else max_retries,
                priority=priority or self.config.queue.default_priority,
                delay_ms=delay_ms or 0,
            )
            record = await self.store.create(event_type, payload, metadata.to_record())

            self.bus.emit(event_type, payload)

            await self.enqueue(
                QueueMessage(
                    event_type=event_type,
                    payload=payload,
                    event_id=record.id,
                    priority=metadata.priority,
                    retry_attempt=0,
                )
            )
        except Exception as e:
            logger.error(
                "Failed to publish event",
                extra={"event_type": event_type, "error": str(e), "error_type": type(e).__name__},
            )
            return None

        logger.info(
            "Event published",
            extra={"event_id": record.id, "event_type": event_type, "queue": self.queue_name},
        )
        return record.id

    async def enqueue(self, message: QueueMessage) -> None:
        """
        Put a delivery attempt on the configured queue.

        Raises:
            QueueError: If the broker rejects the message
        """
        await self.broker_client.publish(self.queue_name, message)
        logger.debug(
            "Event enqueued",
            extra={
                "event_id": message.event_id,
                "event_type": message.event_type,
                "retry_attempt": message.retry_attempt,
            },
        )
