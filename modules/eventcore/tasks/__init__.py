"""
Background Tasks Package.

Taskiq-based periodic maintenance for the event system, with a Redis backend.

Usage (with Redis - production):
    taskiq worker modules.eventcore.tasks.broker:broker
    taskiq scheduler modules.eventcore.tasks.scheduler:scheduler

Usage (without Redis - testing):
    from modules.eventcore.tasks.scheduled import sweep_due_retries
    result = await sweep_due_retries(services=services)

Important:
    Run only ONE scheduler instance to avoid duplicate task execution.
"""

from modules.eventcore.tasks.broker import get_broker
from modules.eventcore.tasks.scheduler import get_scheduler
from modules.eventcore.tasks.scheduled import (
    SCHEDULED_TASKS,
    purge_expired_events,
    register_scheduled_tasks,
    report_event_stats,
    sweep_due_retries,
)

__all__ = [
    "get_broker",
    "get_scheduler",
    "register_scheduled_tasks",
    "SCHEDULED_TASKS",
    "sweep_due_retries",
    "purge_expired_events",
    "report_event_stats",
]


def __getattr__(name: str):
    """Lazy attribute access for broker and scheduler."""
    if name == "broker":
        return get_broker()
    if name == "scheduler":
        return get_scheduler()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
