"""SQLModel entities for the notification engine."""

from notification_engine.models.campaign import (
    CampaignRecipient,
    CampaignStatus,
    CampaignType,
    NotificationCampaign,
)
from notification_engine.models.device import DeviceToken
from notification_engine.models.notification import (
    Notification,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
)
from notification_engine.models.template import NotificationTemplate, TemplateType

__all__ = [
    "Notification",
    "NotificationType",
    "NotificationStatus",
    "NotificationPriority",
    "NotificationTemplate",
    "TemplateType",
    "NotificationCampaign",
    "CampaignRecipient",
    "CampaignStatus",
    "CampaignType",
    "DeviceToken",
]
