"""
Task Scheduler Configuration.

Configures the Taskiq scheduler for the event maintenance tasks.
Uses LabelScheduleSource for the schedules attached at registration.

Usage:
    taskiq scheduler modules.eventcore.tasks.scheduler:scheduler

Important:
    Run only ONE scheduler instance. Multiple instances will cause
    duplicate task execution.
"""

from typing import TYPE_CHECKING

from modules.eventcore.core.logging import get_logger

logger = get_logger(__name__)

if TYPE_CHECKING:
    from taskiq import TaskiqScheduler


def create_scheduler() -> "TaskiqScheduler":
    """
    Create and configure the Taskiq scheduler.

    Returns:
        Configured TaskiqScheduler instance
    """
    from taskiq import TaskiqScheduler
    from taskiq.schedule_sources import LabelScheduleSource

    from modules.eventcore.tasks.broker import get_broker

    broker = get_broker()

    scheduler = TaskiqScheduler(
        broker=broker,
        sources=[LabelScheduleSource(broker)],
    )

    logger.info("Taskiq scheduler configured with LabelScheduleSource")

    return scheduler


# Lazy scheduler initialization
_scheduler: "TaskiqScheduler | None" = None


def get_scheduler() -> "TaskiqScheduler":
    """
    Get the scheduler instance, creating it if necessary.

    Returns:
        Configured scheduler instance
    """
    global _scheduler
    if _scheduler is None:
        _scheduler = create_scheduler()
    return _scheduler


# For direct access (e.g., taskiq scheduler command)
def __getattr__(name: str):
    """Lazy attribute access for scheduler."""
    if name == "scheduler":
        return get_scheduler()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
