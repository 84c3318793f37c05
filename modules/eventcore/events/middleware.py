"""
Event Observability Middleware.

Cross-cutting middleware applied to every message consumed from the event
queue. Binds structlog context (message_id, correlation_id, source) and
measures how long the dequeue callback took.

The callback only hands the message to a supervised task, so the duration
here is dispatch time. Handler timing is logged by the coordinator.
"""

import time
from typing import Any

import structlog
from faststream import BaseMiddleware

from modules.eventcore.core.logging import get_logger

logger = get_logger(__name__)


class EventObservabilityMiddleware(BaseMiddleware):
    """Middleware that binds structlog context for the event subscriber."""

    async def on_consume(self, msg: Any) -> Any:
        structlog.contextvars.bind_contextvars(
            message_id=getattr(msg, "message_id", None) or "unknown",
            correlation_id=getattr(msg, "correlation_id", None) or "unknown",
            source="events",
        )
        self._start_time = time.monotonic()
        return await super().on_consume(msg)

    async def after_consume(self, err: BaseException | None) -> Any:
        duration_ms = round((time.monotonic() - getattr(self, "_start_time", time.monotonic())) * 1000, 1)

        if err:
            logger.error(
                "Event dispatch failed",
                extra={"duration_ms": duration_ms, "error": str(err)},
            )
        else:
            logger.debug("Event dispatched", extra={"duration_ms": duration_ms})

        structlog.contextvars.unbind_contextvars("message_id", "correlation_id", "source")
        return await super().after_consume(err)
