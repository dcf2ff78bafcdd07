"""Channel selection and the send contract shared by all channels."""

import logging
from datetime import datetime

from notification_engine.channels.base import ChannelHandler
from notification_engine.channels.email import EmailChannel
from notification_engine.channels.in_app import InAppChannel
from notification_engine.channels.providers import (
    EmailProvider,
    PushProvider,
    SmsProvider,
    build_providers,
)
from notification_engine.channels.push import PushChannel
from notification_engine.channels.sms import SmsChannel
from notification_engine.errors import InvalidStateError, ProviderError, ValidationError
from notification_engine.models.notification import (
    SENDABLE_STATUSES,
    Notification,
    NotificationType,
)

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Maps each NotificationType to its handler."""

    def __init__(self, handlers: list[ChannelHandler]) -> None:
        self._handlers: dict[NotificationType, ChannelHandler] = {
            handler.channel: handler for handler in handlers
        }

    @classmethod
    def with_providers(
        cls,
        email: EmailProvider,
        sms: SmsProvider,
        push: PushProvider,
        retry_attempts: int | None = None,
        retry_wait_seconds: float | None = None,
    ) -> "ChannelRegistry":
        retry = {"retry_attempts": retry_attempts, "retry_wait_seconds": retry_wait_seconds}
        return cls([
            EmailChannel(email, **retry),
            SmsChannel(sms, **retry),
            PushChannel(push, **retry),
            InAppChannel(),
        ])

    @classmethod
    def from_settings(cls) -> "ChannelRegistry":
        return cls.with_providers(*build_providers())

    def get(self, channel: NotificationType) -> ChannelHandler:
        handler = self._handlers.get(channel)
        if handler is None:
            raise ValidationError(f"Unsupported notification type: {channel}", field="type")
        return handler

    def validate(self, notification: Notification) -> None:
        self.get(notification.type).validate(notification)


class ChannelDispatcher:
    """Runs one delivery attempt and records its outcome on the entity.

    Success marks the notification SENT (IN_APP also DELIVERED). Any provider
    exception marks it FAILED and is re-raised as ProviderError. Persisting
    the entity is the caller's job.
    """

    def __init__(self, registry: ChannelRegistry) -> None:
        self.registry = registry

    def dispatch(
        self,
        notification: Notification,
        error_code: str = "SEND_ERROR",
        now: datetime | None = None,
    ) -> None:
        if notification.status not in SENDABLE_STATUSES:
            raise InvalidStateError(
                f"Notification {notification.id} cannot be sent from status {notification.status.value}"
            )

        handler = self.registry.get(notification.type)
        try:
            handler.validate(notification)
        except ValidationError as e:
            notification.mark_failed(str(e), "VALIDATION_ERROR", now)
            raise

        try:
            message_id = handler.deliver(notification)
        except ProviderError as e:
            notification.mark_failed(str(e), error_code, now)
            logger.warning(
                "Notification send failed",
                extra={
                    "notification_id": str(notification.id),
                    "type": notification.type.value,
                    "error_code": e.error_code,
                    "retry_count": notification.retry_count,
                },
            )
            raise
        except Exception as e:
            notification.mark_failed(str(e), error_code, now)
            logger.warning(
                "Notification send failed",
                extra={
                    "notification_id": str(notification.id),
                    "type": notification.type.value,
                    "retry_count": notification.retry_count,
                },
                exc_info=True,
            )
            raise ProviderError(str(e), error_code=error_code) from e

        notification.mark_sent(message_id, now)
        if handler.delivers_on_send:
            notification.mark_delivered(now)

        logger.info(
            "Notification sent",
            extra={
                "notification_id": str(notification.id),
                "type": notification.type.value,
                "message_id": message_id,
            },
        )
