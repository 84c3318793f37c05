"""
Concurrency Infrastructure.

Tracked background tasks and the shared shutdown flag for event workers.

TaskSupervisor:
    Every task spawned for a dequeued message or a scheduled retry is
    registered here, so shutdown awaits a known set instead of whatever
    happens to still be running on the loop.

ShutdownState:
    A constructed flag passed to the consumer and the retry scheduler.
    Once set, new messages are skipped and no new timers are armed.

Usage:
    from modules.eventcore.core.concurrency import ShutdownState, TaskSupervisor

    supervisor = TaskSupervisor("events")
    supervisor.spawn(coordinator.process(...), name="event-42")

    shutdown = ShutdownState()
    shutdown.begin("SIGTERM")
    pending = await supervisor.drain(timeout=5.0)
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from modules.eventcore.core.logging import get_logger

logger = get_logger(__name__)


class ShutdownState:
    """Process shutdown flag with the reason that triggered it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_shutting_down(self) -> bool:
        return self._event.is_set()

    def begin(self, reason: str) -> bool:
        """Set the flag. Returns False if shutdown was already in progress."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        logger.info("Shutdown started", extra={"reason": reason})
        return True

    async def wait(self) -> None:
        await self._event.wait()


class TaskSupervisor:
    """Owns a set of asyncio tasks and awaits them on shutdown.

    Finished tasks remove themselves. Exceptions that escape a task are
    logged here, since nothing else awaits the task's result.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Supervised task failed",
                extra={
                    "supervisor": self.name,
                    "task": task.get_name(),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=exc,
            )

    async def drain(self, timeout: float) -> int:
        """
        Wait for in-flight tasks to finish.

        Args:
            timeout: Seconds to wait before giving up

        Returns:
            Number of tasks still running when the timeout expired
        """
        if not self._tasks:
            return 0

        logger.info(
            "Waiting for in-flight tasks",
            extra={"supervisor": self.name, "in_flight": len(self._tasks), "timeout": timeout},
        )
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(
                "Tasks still running after grace period",
                extra={"supervisor": self.name, "pending": len(pending)},
            )
        return len(pending)

    def cancel_all(self) -> int:
        """Cancel every tracked task. Returns the number cancelled."""
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(
                "Cancelled supervised tasks",
                extra={"supervisor": self.name, "cancelled": len(tasks)},
            )
        return len(tasks)
