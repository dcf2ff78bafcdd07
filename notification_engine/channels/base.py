"""Base channel handler interface."""

from abc import ABC, abstractmethod

from notification_engine.errors import ValidationError
from notification_engine.models.notification import Notification, NotificationType


class ChannelHandler(ABC):
    """One delivery channel: field validation plus the provider call.

    Subclasses set ``channel`` and implement validate() and deliver().
    Handlers do not retry beyond the provider call wrapper and never touch
    the notification's lifecycle; the dispatcher does that.
    """

    channel: NotificationType

    # True when a successful send also counts as delivered
    delivers_on_send: bool = False

    def __init__(
        self,
        retry_attempts: int | None = None,
        retry_wait_seconds: float | None = None,
    ) -> None:
        self.retry_attempts = retry_attempts
        self.retry_wait_seconds = retry_wait_seconds

    @abstractmethod
    def validate(self, notification: Notification) -> None:
        """Check channel-specific fields.

        Raises:
            ValidationError: Naming the first missing field
        """

    @abstractmethod
    def deliver(self, notification: Notification) -> str | None:
        """Hand the notification to the provider.

        Returns:
            Provider message id

        Raises:
            ProviderError: If the provider rejects or cannot be reached
        """

    @staticmethod
    def require(value: str | None, field: str, message: str) -> None:
        if value is None or not value.strip():
            raise ValidationError(message, field=field)
