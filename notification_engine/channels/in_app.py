"""In-app channel: the stored record is the delivery."""

from notification_engine.channels.base import ChannelHandler
from notification_engine.models.notification import Notification, NotificationType


class InAppChannel(ChannelHandler):
    channel = NotificationType.IN_APP
    delivers_on_send = True

    def validate(self, notification: Notification) -> None:
        pass

    def deliver(self, notification: Notification) -> str | None:
        return None
