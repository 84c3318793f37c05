"""
Failure Classification.

Decides what a handler failure means for delivery:

    FATAL          event type is not safe to re-run (non-idempotent side effects)
    NON_RETRYABLE  retrying cannot help (explicit NonRetryableError, rate limits,
                   downstream contract rejections)
    RETRYABLE      anything else; goes through backoff and the breaker

Patterns come from events.classification in events.yaml and are matched
case-insensitively against the exception message.
"""

import re
from collections.abc import Iterable
from enum import StrEnum

from modules.eventcore.core.config_schema import ClassificationSchema
from modules.eventcore.core.exceptions import NonRetryableError
from modules.eventcore.core.utils import error_message


class FailureClass(StrEnum):
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    FATAL = "fatal"


class ErrorClassifier:
    def __init__(
        self,
        non_retryable_event_types: Iterable[str] = (),
        non_retryable_patterns: Iterable[str] = (),
    ) -> None:
        self.non_retryable_event_types = frozenset(str(t) for t in non_retryable_event_types)
        self._patterns = [re.compile(pattern, re.IGNORECASE) for pattern in non_retryable_patterns]

    @classmethod
    def from_config(cls, config: ClassificationSchema) -> "ErrorClassifier":
        return cls(config.non_retryable_event_types, config.non_retryable_error_patterns)

    def classify(self, event_type: str, exc: BaseException) -> FailureClass:
        if str(event_type) in self.non_retryable_event_types:
            return FailureClass.FATAL
        if isinstance(exc, NonRetryableError):
            return FailureClass.NON_RETRYABLE

        message = error_message(exc)
        if any(pattern.search(message) for pattern in self._patterns):
            return FailureClass.NON_RETRYABLE
        return FailureClass.RETRYABLE
