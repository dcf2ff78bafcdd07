"""API dependencies for dependency injection."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from notification_engine.channels.providers import PushProvider
from notification_engine.channels.push import PushChannel
from notification_engine.db.session import get_session
from notification_engine.engine import NotificationEngine, get_engine
from notification_engine.models.notification import NotificationType
from notification_engine.services.campaigns import CampaignService
from notification_engine.services.dispatch import NotificationDispatcher


def get_db_session() -> Generator[Session, None, None]:
    """Get database session dependency."""
    yield from get_session()


DBSession = Annotated[Session, Depends(get_db_session)]


def get_notification_engine() -> NotificationEngine:
    """Get the process-wide engine."""
    return get_engine()


Engine = Annotated[NotificationEngine, Depends(get_notification_engine)]


def get_dispatcher(engine: Engine) -> NotificationDispatcher:
    return engine.dispatcher


def get_campaign_service(engine: Engine) -> CampaignService:
    return engine.campaigns


def get_push_provider(dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)]) -> PushProvider:
    """Push provider of the dispatcher's push channel."""
    handler: PushChannel = dispatcher.channels.registry.get(NotificationType.PUSH)
    return handler.provider


Dispatcher = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
Campaigns = Annotated[CampaignService, Depends(get_campaign_service)]
Push = Annotated[PushProvider, Depends(get_push_provider)]
