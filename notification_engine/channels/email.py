"""Email channel."""

from notification_engine.channels.base import ChannelHandler
from notification_engine.channels.providers import EmailProvider, with_provider_retry
from notification_engine.models.notification import Notification, NotificationType


class EmailChannel(ChannelHandler):
    channel = NotificationType.EMAIL

    def __init__(self, provider: EmailProvider, **kwargs) -> None:
        super().__init__(**kwargs)
        self.provider = provider

    def validate(self, notification: Notification) -> None:
        self.require(
            notification.recipient_email,
            "recipient_email",
            "Recipient email is required for email notifications",
        )
        self.require(
            notification.subject,
            "subject",
            "Subject is required for email notifications",
        )

    def deliver(self, notification: Notification) -> str | None:
        return with_provider_retry(
            lambda: self.provider.send_email(
                notification.recipient_email,
                notification.subject,
                notification.content,
                notification.html_content,
            ),
            self.retry_attempts,
            self.retry_wait_seconds,
        )
