"""Push channel."""

from notification_engine.channels.base import ChannelHandler
from notification_engine.channels.providers import PushProvider, with_provider_retry
from notification_engine.models.notification import Notification, NotificationType


class PushChannel(ChannelHandler):
    """Push delivery to a registered endpoint, or to the raw token.

    A provider error flagged ``invalid_endpoint`` is passed up unchanged so
    the dispatch engine can invalidate the device registration.
    """

    channel = NotificationType.PUSH

    def __init__(self, provider: PushProvider, **kwargs) -> None:
        super().__init__(**kwargs)
        self.provider = provider

    def validate(self, notification: Notification) -> None:
        self.require(
            notification.push_token,
            "push_token",
            "Push token is required for push notifications",
        )
        self.require(
            notification.platform,
            "platform",
            "Platform is required for push notifications",
        )

    def deliver(self, notification: Notification) -> str | None:
        endpoint = notification.push_endpoint or notification.push_token
        data = {"notification_id": str(notification.id)}
        if notification.tracking_data:
            data.update(notification.tracking_data)

        return with_provider_retry(
            lambda: self.provider.send_push(endpoint, notification.title, notification.content, data),
            self.retry_attempts,
            self.retry_wait_seconds,
        )
