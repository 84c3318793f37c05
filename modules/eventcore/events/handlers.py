"""
Handler Registry.

Dispatch table from EventType to the async function that handles it.
The registry's `dispatch` is what the processing coordinator calls for
every dequeued message.

Usage:
    from modules.eventcore.events.handlers import HandlerRegistry
    from modules.eventcore.events.types import EventType

    registry = HandlerRegistry()

    @registry.handles(EventType.CAMPAIGN_PUBLISH_CONTENT)
    async def publish_content(event_type: str, payload: dict) -> None:
        ...

    registry.validate(require_exhaustive=True)
"""

from collections.abc import Awaitable, Callable
from typing import Any

from modules.eventcore.core.exceptions import ConfigurationError
from modules.eventcore.core.logging import get_logger
from modules.eventcore.events.types import EventType

logger = get_logger(__name__)

Handler = Callable[[str, Any], Awaitable[None]]


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[EventType, Handler] = {}

    def register(self, event_type: EventType | str, handler: Handler) -> None:
        """
        Register the handler for an event type, replacing any previous one.

        Raises:
            ConfigurationError: If the event type is not an EventType member
        """
        member = EventType.parse(str(event_type))
        if member is None:
            raise ConfigurationError(f"Unknown event type: {event_type}")
        if member in self._handlers:
            logger.warning("Replacing event handler", extra={"event_type": member.value})
        self._handlers[member] = handler

    def handles(self, event_type: EventType | str) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.register(event_type, handler)
            return handler

        return decorator

    def get(self, event_type: str) -> Handler | None:
        member = EventType.parse(event_type)
        if member is None:
            return None
        return self._handlers.get(member)

    def missing(self) -> list[EventType]:
        return [member for member in EventType if member not in self._handlers]

    def validate(self, require_exhaustive: bool) -> None:
        """
        Check that every EventType has a handler.

        Raises:
            ConfigurationError: If require_exhaustive is set and types are unhandled
        """
        missing = self.missing()
        if not missing:
            return
        names = [member.value for member in missing]
        if require_exhaustive:
            raise ConfigurationError(f"No handler registered for event types: {', '.join(names)}")
        logger.warning("Event types without handlers", extra={"event_types": names})

    async def dispatch(self, event_type: str, payload: Any) -> None:
        """Invoke the registered handler. Unknown and unhandled types are skipped."""
        handler = self.get(event_type)
        if handler is None:
            logger.warning("No handler for event type, skipping", extra={"event_type": event_type})
            return
        await handler(event_type, payload)
