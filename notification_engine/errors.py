"""Error taxonomy of the notification engine.

Policy violations (validation, not-found, invalid-state, duplicate) are
raised synchronously to callers. Provider failures are recorded on the
notification and retried by the sweeper; only the initial synchronous
send re-raises them.
"""


class NotificationError(Exception):
    """Base class for notification engine errors."""
    pass


class ValidationError(NotificationError):
    """Raised when a required field is missing or invalid."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(NotificationError):
    """Raised when a notification, template or campaign id is unresolved."""
    pass


class InvalidStateError(NotificationError):
    """Raised when an operation is not legal for the current status."""
    pass


class DuplicateNotificationError(NotificationError):
    """Raised when an identical notification was created recently."""
    pass


class ProviderError(NotificationError):
    """Raised when a delivery provider fails to accept a message."""

    def __init__(
        self,
        message: str,
        error_code: str = "SEND_ERROR",
        is_retryable: bool = True,
        invalid_endpoint: bool = False,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.is_retryable = is_retryable
        self.invalid_endpoint = invalid_endpoint
