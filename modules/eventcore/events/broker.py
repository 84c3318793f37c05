"""
Event Broker.

FastStream RedisBroker setup with lazy initialization. Events travel over a
Redis list, so every worker process listening on the queue competes for
messages and each message is handled by exactly one of them.

BrokerClient is the only publish path. It guards the broker with an
aiobreaker circuit breaker and surfaces every failure as QueueError.

Usage:
    from modules.eventcore.events.broker import get_event_broker, BrokerClient

    client = BrokerClient(get_event_broker())
    await client.publish("event-queue", message)

Worker process:
    faststream run --factory modules.eventcore.events.broker:create_event_app
"""

import asyncio
import os
import signal
from datetime import datetime
from typing import Any

import aiobreaker
from faststream import FastStream
from faststream.redis import RedisBroker

from modules.eventcore.core.concurrency import ShutdownState
from modules.eventcore.core.exceptions import QueueError
from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.resilience import create_circuit_breaker
from modules.eventcore.core.utils import utc_now
from modules.eventcore.events.schemas import QueueMessage

logger = get_logger(__name__)

_broker: RedisBroker | None = None
_app: FastStream | None = None


class BrokerClient:
    """Publishes queue messages through a circuit breaker."""

    def __init__(
        self,
        broker: RedisBroker,
        breaker: aiobreaker.CircuitBreaker | None = None,
    ) -> None:
        self.broker = broker
        self._breaker = breaker or create_circuit_breaker("redis-broker")

    async def publish(self, queue: str, message: QueueMessage) -> None:
        """
        Push a message onto the Redis list `queue`.

        Raises:
            QueueError: If the breaker is open or Redis rejects the publish
        """
        try:
            await self._breaker.call_async(self.broker.publish, message.to_wire(), list=queue)
        except aiobreaker.CircuitBreakerError as e:
            raise QueueError(f"Broker circuit open: {e}") from e
        except Exception as e:
            raise QueueError(f"Failed to publish to {queue}: {e}") from e

    async def connect(self) -> None:
        await self.broker.connect()

    async def close(self) -> None:
        await self.broker.close()


def create_event_broker() -> RedisBroker:
    """Create a new RedisBroker using the project's Redis URL.

    Returns:
        Configured RedisBroker instance
    """
    from modules.eventcore.core.config import get_redis_url
    from modules.eventcore.events.middleware import EventObservabilityMiddleware

    broker = RedisBroker(get_redis_url(), middlewares=[EventObservabilityMiddleware])
    logger.info("Event broker created")
    return broker


def get_event_broker() -> RedisBroker:
    """Get the shared event broker (lazy initialization).

    Returns:
        Shared RedisBroker instance
    """
    global _broker
    if _broker is None:
        _broker = create_event_broker()
    return _broker


def install_loop_exception_handler(shutdown: ShutdownState) -> None:
    """
    Route uncaught async errors into the graceful shutdown path.

    The handler logs the error, sets the shutdown flag, and sends SIGTERM to
    the current process so FastStream runs its normal shutdown hooks.
    """
    loop = asyncio.get_running_loop()

    def handle(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        logger.error(
            "Uncaught async error, shutting down",
            extra={
                "message": context.get("message"),
                "error": str(exc) if exc else None,
                "error_type": type(exc).__name__ if exc else None,
            },
            exc_info=exc,
        )
        if shutdown.begin("uncaught async error"):
            os.kill(os.getpid(), signal.SIGTERM)

    loop.set_exception_handler(handle)


def create_event_app() -> FastStream:
    """Create a FastStream application for the event worker process.

    This is a factory function; the FastStream CLI must be invoked with `--factory`:
        faststream run --factory modules.eventcore.events.broker:create_event_app

    Returns:
        FastStream app with the event queue subscriber registered
    """
    global _app
    if _app is not None:
        return _app

    from modules.eventcore.core.config import get_app_config
    from modules.eventcore.core.logging import setup_logging
    from modules.eventcore.services.factory import build_event_services

    setup_logging()
    app_config = get_app_config()
    broker = get_event_broker()
    services = build_event_services(broker=broker)
    consumer = services.consumer
    started_at: datetime = utc_now()

    @broker.subscriber(list=app_config.events.queue.name)
    async def on_event_message(body: Any) -> None:
        await consumer.on_message(body)

    app = FastStream(broker)

    @app.after_startup
    async def start_worker() -> None:
        services.registry.validate(app_config.events.handlers.require_exhaustive)
        install_loop_exception_handler(services.shutdown)
        if app_config.features.events_recovery_on_startup:
            await services.recovery.recover_pending(started_at)
        logger.info(
            "Event worker started",
            extra={"queue": app_config.events.queue.name, "source": "events"},
        )

    @app.on_shutdown
    async def stop_worker() -> None:
        await consumer.shutdown("SIGTERM")
        from modules.eventcore.core.database import dispose_engine
        await dispose_engine()

    _app = app
    logger.info("Event worker application created")
    return _app
