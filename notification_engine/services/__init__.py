"""Services module for the notification engine.

Services:
- dispatch.py: Send pipeline, delivery attempts and notification lifecycle
- campaigns.py: Campaign management, transitions and execution
- templates.py: Template rendering, caching and management
- devices.py: Push device registration
- repository.py: Conditional updates and sweep queries
"""

from notification_engine.services.campaigns import (
    CampaignRunResult,
    CampaignService,
    CampaignTargeting,
    Contact,
)
from notification_engine.services.dispatch import NotificationDispatcher
from notification_engine.services.templates import TemplateCache, get_template_cache

__all__ = [
    # Dispatch engine
    "NotificationDispatcher",
    # Campaigns
    "CampaignService",
    "CampaignTargeting",
    "CampaignRunResult",
    "Contact",
    # Templates
    "TemplateCache",
    "get_template_cache",
]
