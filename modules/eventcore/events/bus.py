"""
In-Process Event Bus.

Same-process, fire-and-forget notifications emitted by the publisher after
a record is stored. Nothing here is durable: listeners that need delivery
guarantees must consume from the broker instead.

Sync listeners run inline; coroutine listeners are spawned on the
supervisor. Listener failures are logged and never reach the emitter.
"""

import inspect
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from modules.eventcore.core.concurrency import TaskSupervisor
from modules.eventcore.core.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[Any], Any]


class LocalEventBus:
    def __init__(self, supervisor: TaskSupervisor | None = None) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._supervisor = supervisor or TaskSupervisor("local-bus")

    def on(self, event_type: str, listener: Listener) -> None:
        self._listeners[str(event_type)].append(listener)

    def off(self, event_type: str, listener: Listener) -> bool:
        """Remove a listener. Returns False if it was not registered."""
        listeners = self._listeners.get(str(event_type), [])
        if listener not in listeners:
            return False
        listeners.remove(listener)
        return True

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(str(event_type), []))

    def emit(self, event_type: str, payload: Any) -> int:
        """Notify listeners of `event_type`. Returns how many were invoked."""
        listeners = list(self._listeners.get(str(event_type), []))
        for listener in listeners:
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    self._supervisor.spawn(
                        self._guard(event_type, result),
                        name=f"local-bus-{event_type}",
                    )
            except Exception as e:
                self._log_failure(event_type, listener, e)
        return len(listeners)

    async def _guard(self, event_type: str, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as e:
            self._log_failure(event_type, awaitable, e)

    @staticmethod
    def _log_failure(event_type: str, listener: Any, error: Exception) -> None:
        logger.error(
            "Local event listener failed",
            extra={
                "event_type": str(event_type),
                "listener": getattr(listener, "__qualname__", repr(listener)),
                "error": str(error),
            },
        )

    @property
    def supervisor(self) -> TaskSupervisor:
        return self._supervisor
