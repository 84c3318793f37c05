"""
Resilience Infrastructure.

Two kinds of circuit breaking live here:

    Dependency breakers (aiobreaker) guard calls to infrastructure such as
    the Redis broker. They trip on consecutive call failures and probe again
    after a cooldown.

    Failure-signature breakers (CircuitBreakerRegistry) track repeated
    handler failures per (event type, error signature). An open signature
    sends further failures straight to dead-letter instead of retrying.

Retries of bookkeeping calls use tenacity with `log_retry` as the
before_sleep callback, so retry attempts show up as structured events.

Usage:
    from modules.eventcore.core.resilience import create_circuit_breaker, log_retry

    breaker = create_circuit_breaker("redis", fail_max=5, timeout_duration=30)
    await breaker.call_async(broker.publish, message, list="event-queue")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
        retry=retry_if_exception_type(QueueError),
        before_sleep=log_retry,
        reraise=True,
    )
    async def enqueue():
        ...
"""

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

import aiobreaker

from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.utils import error_message, utc_now

logger = get_logger(__name__)


class ResilienceLogger(aiobreaker.CircuitBreakerListener):
    """Circuit breaker listener that emits structured resilience events.

    Every state transition is logged with a standardized set of fields
    so that resilience events can be filtered and aggregated:

        jq 'select(.resilience_event != null)' logs/system.jsonl
    """

    def __init__(self, dependency: str) -> None:
        self.dependency = dependency

    def state_change(self, cb: aiobreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        event_map = {
            "open": "circuit_breaker_opened",
            "half-open": "circuit_breaker_half_open",
            "closed": "circuit_breaker_closed",
        }
        new_str = str(new_state).lower()
        event = event_map.get(new_str, f"circuit_breaker_{new_str}")
        log_level = "error" if new_str == "open" else "info"

        getattr(logger, log_level)(
            f"Circuit breaker {self.dependency}: {old_state} → {new_state}",
            extra={
                "resilience_event": event,
                "dependency": self.dependency,
                "failure_count": cb.fail_counter,
            },
        )

    def failure(self, cb: aiobreaker.CircuitBreaker, exception: Exception) -> None:
        logger.warning(
            f"Circuit breaker {self.dependency}: failure recorded",
            extra={
                "resilience_event": "circuit_breaker_failure",
                "dependency": self.dependency,
                "failure_count": cb.fail_counter,
                "error": str(exception),
            },
        )


def log_retry(retry_state: Any) -> None:
    """Tenacity before_sleep callback that emits structured retry events.

    Pass this as `before_sleep=log_retry` in any @retry decorator.

    Args:
        retry_state: tenacity.RetryCallState instance
    """
    duration_ms = None
    if retry_state.outcome_timestamp and retry_state.start_time:
        duration_ms = round(
            (retry_state.outcome_timestamp - retry_state.start_time) * 1000
        )

    error = None
    if retry_state.outcome and retry_state.outcome.failed:
        error = str(retry_state.outcome.exception())

    fn_name = getattr(retry_state.fn, "__name__", "unknown")

    logger.warning(
        f"Retrying {fn_name} (attempt {retry_state.attempt_number})",
        extra={
            "resilience_event": "retry_attempt",
            "dependency": fn_name,
            "attempt": retry_state.attempt_number,
            "duration_ms": duration_ms,
            "error": error,
        },
    )


def create_circuit_breaker(
    dependency: str,
    fail_max: int = 5,
    timeout_duration: int = 30,
) -> aiobreaker.CircuitBreaker:
    """Create a circuit breaker with structured logging.

    Args:
        dependency: Name of the external dependency (for logging)
        fail_max: Number of failures before opening
        timeout_duration: Seconds to wait before half-open test

    Returns:
        Configured CircuitBreaker instance
    """
    return aiobreaker.CircuitBreaker(
        fail_max=fail_max,
        timeout_duration=timedelta(seconds=timeout_duration),
        listeners=[ResilienceLogger(dependency)],
    )


# =============================================================================
# Failure-signature breakers
# =============================================================================


@dataclass
class BreakerState:
    failures: int = 0
    last_failure: datetime | None = None
    is_open: bool = False


class CircuitBreakerRegistry:
    """In-memory breaker state keyed by (event type, error signature).

    State is process-local. Every worker builds its own registry, so
    separate processes may disagree about whether a signature is open.

    Reset is lazy: a key whose last failure is older than `reset_after`
    is closed again (failures = 0) the next time it is checked or recorded.
    Entries are never removed.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_after: timedelta = timedelta(minutes=30),
        signature_length: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_after = reset_after
        self.signature_length = signature_length
        self._clock = clock
        self._states: dict[str, BreakerState] = {}

    def key_for(self, event_type: str, error: BaseException | str) -> str:
        """Build the breaker key from the event type and the error's message prefix."""
        message = error if isinstance(error, str) else error_message(error)
        return f"{event_type}:{message[: self.signature_length]}"

    def _current(self, key: str) -> BreakerState | None:
        state = self._states.get(key)
        if state is None:
            return None
        if state.last_failure is not None and self._clock() - state.last_failure > self.reset_after:
            if state.is_open:
                logger.info(
                    "Failure-signature breaker reset",
                    extra={"breaker_key": key, "failures": state.failures},
                )
            state.failures = 0
            state.is_open = False
        return state

    def is_open(self, key: str) -> bool:
        state = self._current(key)
        return state is not None and state.is_open

    def record_failure(self, key: str) -> BreakerState:
        """Count one failure for the key, opening it at the threshold."""
        state = self._current(key)
        if state is None:
            state = BreakerState()
            self._states[key] = state

        state.failures += 1
        state.last_failure = self._clock()

        if not state.is_open and state.failures >= self.failure_threshold:
            state.is_open = True
            logger.error(
                "Failure-signature breaker opened",
                extra={
                    "resilience_event": "circuit_breaker_opened",
                    "breaker_key": key,
                    "failures": state.failures,
                },
            )
        return replace(state)

    def snapshot(self) -> dict[str, BreakerState]:
        """Copy of all tracked keys, with lazy resets applied."""
        for key in list(self._states):
            self._current(key)
        return {key: replace(state) for key, state in self._states.items()}
