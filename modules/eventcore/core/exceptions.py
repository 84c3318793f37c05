"""
Custom Exceptions.

Application-specific exception classes for consistent error handling.

Delivery taxonomy:
    HandlerError        - domain handler failed; drives retry / dead-letter
    NonRetryableError   - handler failure that must never be retried
    PersistenceError    - event record store operation failed
    QueueError          - broker publish / consume failed
    ConfigurationError  - invalid wiring detected at startup
"""


class ApplicationError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, code: str = "SYS_INTERNAL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class NotFoundError(ApplicationError):
    """Raised when a resource cannot be found."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message, code="RES_NOT_FOUND")


class ValidationError(ApplicationError):
    """Raised when validation fails."""

    def __init__(self, message: str = "Validation failed", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message, code="VAL_VALIDATION_ERROR")


class HandlerError(ApplicationError):
    """Raised by (or on behalf of) a domain event handler that failed."""

    def __init__(self, message: str = "Event handler failed", code: str = "EVT_HANDLER_FAILED") -> None:
        super().__init__(message, code=code)


class NonRetryableError(HandlerError):
    """Raised by a handler when retrying cannot succeed without human remediation."""

    def __init__(self, message: str = "Event handler failed permanently") -> None:
        super().__init__(message, code="EVT_NON_RETRYABLE")


class PersistenceError(ApplicationError):
    """Raised when an event record store operation fails."""

    def __init__(self, message: str = "Persistence error") -> None:
        super().__init__(message, code="SYS_PERSISTENCE_ERROR")


class QueueError(ApplicationError):
    """Raised when publishing to or consuming from the broker fails."""

    def __init__(self, message: str = "Queue error") -> None:
        super().__init__(message, code="SYS_QUEUE_ERROR")


class ConfigurationError(ApplicationError):
    """Raised when the event system is wired incorrectly."""

    def __init__(self, message: str = "Invalid configuration") -> None:
        super().__init__(message, code="SYS_CONFIGURATION_ERROR")
