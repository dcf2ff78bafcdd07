"""SMS channel."""

from notification_engine.channels.base import ChannelHandler
from notification_engine.channels.providers import SmsProvider, with_provider_retry
from notification_engine.models.notification import Notification, NotificationType


class SmsChannel(ChannelHandler):
    channel = NotificationType.SMS

    def __init__(self, provider: SmsProvider, **kwargs) -> None:
        super().__init__(**kwargs)
        self.provider = provider

    def validate(self, notification: Notification) -> None:
        self.require(
            notification.recipient_phone,
            "recipient_phone",
            "Recipient phone is required for SMS notifications",
        )

    def deliver(self, notification: Notification) -> str | None:
        return with_provider_retry(
            lambda: self.provider.send_sms(notification.recipient_phone, notification.content),
            self.retry_attempts,
            self.retry_wait_seconds,
        )
