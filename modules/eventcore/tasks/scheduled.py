"""
Scheduled Event Maintenance Tasks.

Tasks that run on a schedule (cron-based). They are registered with the
broker including schedule metadata that the TaskiqScheduler reads via
LabelScheduleSource.

    sweep_due_retries     every minute    enqueue retries whose due time passed
    purge_expired_events  every 6 hours   delete dead letters past retention
    report_event_stats    every 5 minutes log counts, warn on dead letters

The task functions are plain async functions and accept an EventServices
instance, so they can be called directly in tests without Redis.
"""

from typing import Any

from modules.eventcore.core.logging import get_logger, log_with_source
from modules.eventcore.core.utils import utc_now
from modules.eventcore.services.factory import EventServices

logger = get_logger(__name__)

_services: EventServices | None = None


def get_task_services() -> EventServices:
    """Event services for this task worker process (built on first use)."""
    global _services
    if _services is None:
        from modules.eventcore.services.factory import build_event_services
        _services = build_event_services()
    return _services


async def close_task_services() -> None:
    global _services
    if _services is not None:
        await _services.broker_client.close()
        _services = None
    from modules.eventcore.core.database import dispose_engine
    await dispose_engine()


# =============================================================================
# Scheduled Task Functions
# =============================================================================


async def sweep_due_retries(limit: int | None = None, services: EventServices | None = None) -> dict[str, Any]:
    """
    Dispatch scheduled retries whose due time has passed.

    Covers retries whose in-process timer was lost with its worker.
    """
    services = services or get_task_services()
    dispatched = await services.retry_scheduler.sweep_due(limit)
    result = {"dispatched": dispatched, "swept_at": utc_now().isoformat()}
    log_with_source(logger, "tasks", "debug", "Retry sweep task finished", **result)
    return result


async def purge_expired_events(
    retention_days: int | None = None,
    services: EventServices | None = None,
) -> dict[str, Any]:
    """Delete dead letters older than the retention window."""
    services = services or get_task_services()
    deleted = await services.recovery.purge_expired(retention_days)
    result = {"deleted": deleted, "purged_at": utc_now().isoformat()}
    log_with_source(logger, "tasks", "info", "Dead letter purge task finished", **result)
    return result


async def report_event_stats(services: EventServices | None = None) -> dict[str, Any]:
    """Log event counts; dead letters are never reprocessed automatically, so flag them."""
    services = services or get_task_services()
    stats = await services.monitor.stats()
    result = stats.model_dump(exclude={"by_type"})

    log_with_source(logger, "tasks", "info", "Event stats", **result)
    if stats.dead_letter > 0:
        log_with_source(
            logger,
            "tasks",
            "warning",
            "Dead letter events require manual review",
            dead_letter=stats.dead_letter,
        )
    return result


# =============================================================================
# Schedule Configuration
# =============================================================================

SCHEDULED_TASKS = {
    "sweep_due_retries": {
        "function": sweep_due_retries,
        "schedule": [{"cron": "* * * * *"}],
        "retry_on_error": False,
        "description": "Enqueue due event retries every minute",
    },
    "purge_expired_events": {
        "function": purge_expired_events,
        "schedule": [{"cron": "0 */6 * * *"}],
        "retry_on_error": True,
        "max_retries": 2,
        "description": "Purge expired dead letters every 6 hours",
    },
    "report_event_stats": {
        "function": report_event_stats,
        "schedule": [{"cron": "*/5 * * * *"}],
        "retry_on_error": False,
        "description": "Log event stats every 5 minutes",
    },
}


def register_scheduled_tasks(broker: Any = None) -> dict[str, Any]:
    """
    Register scheduled task functions with the Taskiq broker.

    This wraps the plain async functions with broker.task decorators
    including their schedule configuration.

    Returns:
        Dict mapping task names to registered task objects
    """
    if broker is None:
        from modules.eventcore.tasks.broker import get_broker
        broker = get_broker()

    registered = {}

    for task_name, config in SCHEDULED_TASKS.items():
        task_kwargs = {
            "task_name": task_name,
            "schedule": config["schedule"],
            "retry_on_error": config.get("retry_on_error", False),
        }

        if "max_retries" in config:
            task_kwargs["max_retries"] = config["max_retries"]

        registered[task_name] = broker.task(**task_kwargs)(config["function"])

    logger.info(
        "Scheduled tasks registered",
        extra={
            "task_count": len(registered),
            "tasks": list(registered.keys()),
        },
    )

    return registered
