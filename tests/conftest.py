"""Shared fixtures: in-memory database, fake providers and wired services."""

from collections.abc import Generator
from concurrent.futures import Executor, Future
from datetime import datetime
from typing import Any
from uuid import UUID

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import notification_engine.models  # noqa: F401
from notification_engine.channels.providers import EmailProvider, PushProvider, SmsProvider
from notification_engine.channels.registry import ChannelDispatcher, ChannelRegistry
from notification_engine.config import DispatchPolicy
from notification_engine.errors import ProviderError
from notification_engine.models.notification import (
    Notification,
    NotificationStatus,
    NotificationType,
)
from notification_engine.services.campaigns import CampaignService, CampaignTargeting, Contact
from notification_engine.services.dispatch import NotificationDispatcher
from notification_engine.services.templates import get_template_cache


class FakeProvider(EmailProvider, SmsProvider, PushProvider):
    """Records every delivery; recipients in ``failures`` raise instead."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failures: dict[str, ProviderError] = {}
        self.deleted_endpoints: list[str] = []

    def fail_for(self, recipient: str, error: ProviderError | None = None) -> None:
        self.failures[recipient] = error or ProviderError("Gateway rejected message", is_retryable=False)

    def _deliver(self, channel: str, recipient: str, **fields: Any) -> str:
        if recipient in self.failures:
            raise self.failures[recipient]
        self.sent.append({"channel": channel, "recipient": recipient, **fields})
        return f"{channel}-{len(self.sent)}"

    def send_email(self, recipient, subject, text_body, html_body=None):
        return self._deliver("email", recipient, subject=subject, body=text_body)

    def send_sms(self, recipient, body):
        return self._deliver("sms", recipient, body=body)

    def send_push(self, endpoint, title, body, data=None):
        return self._deliver("push", endpoint, title=title, body=body, data=data)

    def register_endpoint(self, device_token, platform):
        return f"endpoint/{platform.lower()}/{device_token}"

    def get_endpoint_status(self, endpoint):
        return True

    def delete_endpoint(self, endpoint):
        self.deleted_endpoints.append(endpoint)


class ImmediateExecutor(Executor):
    """Runs submitted work inline so campaign runs finish before assertions."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class DirectoryTargeting(CampaignTargeting):
    """Derives contact details from the user id."""

    def resolve_contact(self, user_id: UUID, notification_type: NotificationType) -> Contact:
        return Contact(
            recipient_email=f"{user_id.hex[:12]}@example.com",
            recipient_phone=f"+1555{user_id.int % 10_000_000:07d}",
            recipient_name="Ana",
            push_token=f"token-{user_id.hex}",
            platform="IOS",
        )


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="db_session")
def db_session_fixture(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return lambda: Session(engine)


@pytest.fixture(autouse=True)
def clear_template_cache():
    get_template_cache().clear()
    yield
    get_template_cache().clear()


@pytest.fixture(name="provider")
def provider_fixture() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(name="policy")
def policy_fixture() -> DispatchPolicy:
    return DispatchPolicy()


@pytest.fixture(name="registry")
def registry_fixture(provider: FakeProvider) -> ChannelRegistry:
    return ChannelRegistry.with_providers(
        provider, provider, provider, retry_attempts=1, retry_wait_seconds=0
    )


@pytest.fixture(name="dispatcher")
def dispatcher_fixture(registry: ChannelRegistry, policy: DispatchPolicy) -> NotificationDispatcher:
    return NotificationDispatcher(
        channels=ChannelDispatcher(registry),
        policy=policy,
        template_cache=get_template_cache(),
    )


@pytest.fixture(name="campaign_service")
def campaign_service_fixture(dispatcher: NotificationDispatcher, session_factory) -> CampaignService:
    return CampaignService(
        dispatcher,
        targeting=DirectoryTargeting(),
        executor=ImmediateExecutor(),
        session_factory=session_factory,
    )


@pytest.fixture(name="make_notification")
def make_notification_fixture(db_session: Session):
    """Insert a notification row directly, bypassing the send pipeline."""

    def make(**overrides: Any) -> Notification:
        now = datetime.utcnow()
        values: dict[str, Any] = {
            "type": NotificationType.IN_APP,
            "title": "Stored",
            "content": "Stored notification",
            "status": NotificationStatus.PENDING,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        notification = Notification(**values)
        db_session.add(notification)
        db_session.commit()
        db_session.refresh(notification)
        return notification

    return make
