"""
Taskiq Broker Configuration.

Broker for the periodic maintenance tasks of the event system (retry
sweep, dead-letter purge, stats report). Uses a Redis list queue separate
from the event queue itself.

Usage:
    taskiq worker modules.eventcore.tasks.broker:broker
"""

from typing import TYPE_CHECKING

from modules.eventcore.core.logging import get_logger

logger = get_logger(__name__)

if TYPE_CHECKING:
    from taskiq_redis import ListQueueBroker


def create_broker() -> "ListQueueBroker":
    """
    Create and configure the Taskiq broker.

    Returns:
        Configured ListQueueBroker instance
    """
    from taskiq_redis import ListQueueBroker, RedisAsyncResultBackend

    from modules.eventcore.core.config import get_app_config, get_redis_url

    redis_url = get_redis_url()
    broker_config = get_app_config().database.redis.broker

    result_backend = RedisAsyncResultBackend(
        redis_url=redis_url,
        result_ex_time=broker_config.result_expiry_seconds,
    )

    broker = ListQueueBroker(
        url=redis_url,
        queue_name=broker_config.queue_name,
    ).with_result_backend(result_backend)

    logger.debug(
        "Taskiq broker configured",
        extra={
            "queue_name": broker_config.queue_name,
            "result_expiry": broker_config.result_expiry_seconds,
        },
    )

    return broker


# Lazy broker initialization
_broker: "ListQueueBroker | None" = None


def get_broker() -> "ListQueueBroker":
    """
    Get the broker instance, creating it and registering tasks if necessary.

    Returns:
        Configured broker instance
    """
    global _broker
    if _broker is None:
        from taskiq import TaskiqEvents

        from modules.eventcore.tasks.scheduled import (
            close_task_services,
            get_task_services,
            register_scheduled_tasks,
        )

        _broker = create_broker()

        @_broker.on_event(TaskiqEvents.WORKER_STARTUP)
        async def on_startup(state) -> None:
            """Connect the event broker so tasks can publish retries."""
            from modules.eventcore.core.logging import setup_logging

            setup_logging()
            await get_task_services().broker_client.connect()
            logger.info("Taskiq worker starting up", extra={"source": "tasks"})

        @_broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
        async def on_shutdown(state) -> None:
            await close_task_services()
            logger.info("Taskiq worker shutting down", extra={"source": "tasks"})

        register_scheduled_tasks(_broker)

    return _broker


# For direct access (e.g., taskiq worker command)
def __getattr__(name: str):
    """Lazy attribute access for broker."""
    if name == "broker":
        return get_broker()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
