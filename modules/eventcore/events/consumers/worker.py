"""
Event Consumer.

Receives messages from the event queue subscriber and hands each one to
the processing coordinator on a supervised task, so the dequeue callback
returns immediately and a slow handler never blocks the next message.

Shutdown (SIGTERM/SIGINT via FastStream, or an uncaught async error) sets
the shared flag, stops new work, cancels retry timers, and waits up to the
grace period for in-flight handlers.
"""

import json
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from modules.eventcore.core.concurrency import ShutdownState, TaskSupervisor
from modules.eventcore.core.logging import event_log_context, get_logger
from modules.eventcore.events.handlers import HandlerRegistry
from modules.eventcore.events.schemas import QueueMessage
from modules.eventcore.services.coordinator import ProcessingCoordinator, ProcessingOutcome
from modules.eventcore.services.retry_scheduler import RetryScheduler

logger = get_logger(__name__)


def decode_message(body: Any) -> dict[str, Any] | None:
    """Accept a pre-decoded dict, a JSON string, or JSON bytes."""
    if isinstance(body, dict):
        return body
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            decoded = json.loads(body)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


class EventConsumer:
    def __init__(
        self,
        coordinator: ProcessingCoordinator,
        registry: HandlerRegistry,
        retry_scheduler: RetryScheduler,
        shutdown: ShutdownState,
        grace_seconds: float = 5.0,
        supervisor: TaskSupervisor | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.registry = registry
        self.retry_scheduler = retry_scheduler
        self.shutdown_state = shutdown
        self.grace_seconds = grace_seconds
        self.supervisor = supervisor or TaskSupervisor("event-consumer")

    async def on_message(self, body: Any) -> bool:
        """
        Validate a dequeued message and spawn its processing task.

        Returns:
            True if a processing task was started
        """
        if self.shutdown_state.is_shutting_down:
            logger.warning("Shutting down, skipping dequeued message", extra={"body": str(body)[:200]})
            return False

        data = decode_message(body)
        if data is None or not data.get("eventId") or not data.get("eventType"):
            logger.error("Malformed event message, dropping", extra={"body": str(body)[:500]})
            return False

        try:
            message = QueueMessage.model_validate(data)
        except PydanticValidationError as e:
            logger.error(
                "Invalid event message, dropping",
                extra={"body": str(body)[:500], "errors": e.errors(include_url=False)},
            )
            return False

        self.supervisor.spawn(self._process(message), name=f"event-{message.event_id}")
        return True

    async def _process(self, message: QueueMessage) -> ProcessingOutcome:
        with event_log_context(
            event_id=message.event_id,
            event_type=message.event_type,
            retry_attempt=message.retry_attempt,
        ):
            logger.debug("Processing event")
            return await self.coordinator.process(
                message.event_id,
                message.event_type,
                message.payload,
                self.registry.dispatch,
            )

    async def shutdown(self, reason: str = "shutdown") -> int:
        """
        Stop accepting work and drain in-flight handlers.

        Returns:
            Number of handler tasks still running when the grace period ended
        """
        self.shutdown_state.begin(reason)
        cancelled = self.retry_scheduler.cancel_pending()
        pending = await self.supervisor.drain(self.grace_seconds)
        logger.info(
            "Event consumer stopped",
            extra={"retry_timers_cancelled": cancelled, "tasks_abandoned": pending},
        )
        return pending
