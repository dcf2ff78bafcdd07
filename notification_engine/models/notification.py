"""Notification entity model and its delivery lifecycle."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import EmailStr, field_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from notification_engine.errors import InvalidStateError


class NotificationType(str, Enum):
    """Delivery channel of a notification."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


class NotificationStatus(str, Enum):
    """Lifecycle status of a notification.

    PENDING -> SENT | FAILED | CANCELLED | BOUNCED
    SENT -> DELIVERED | BOUNCED | FAILED
    FAILED -> SENT (retry) | terminal once retries are exhausted
    """

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"
    CANCELLED = "cancelled"


class NotificationPriority(str, Enum):
    """Notification priority."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


SENDABLE_STATUSES = (NotificationStatus.PENDING, NotificationStatus.FAILED)
BOUNCEABLE_STATUSES = (NotificationStatus.PENDING, NotificationStatus.SENT)


class Notification(SQLModel, table=True):
    """Notification database model.

    One addressed delivery attempt through a single channel. Lifecycle
    transitions are methods on the entity; persistence is left to the
    caller.
    """

    __tablename__ = "notifications"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID | None = Field(default=None, index=True)  # None for broadcasts
    type: NotificationType = Field(index=True)
    status: NotificationStatus = Field(default=NotificationStatus.PENDING, index=True)
    priority: NotificationPriority = Field(default=NotificationPriority.NORMAL)

    # Recipient per channel
    recipient_email: str | None = Field(default=None, max_length=255)
    recipient_phone: str | None = Field(default=None, max_length=20)
    recipient_name: str | None = Field(default=None, max_length=100)
    push_token: str | None = Field(default=None, max_length=255)
    push_endpoint: str | None = Field(default=None, max_length=500)
    platform: str | None = Field(default=None, max_length=20)

    # Weak references
    template_id: UUID | None = Field(default=None, index=True)
    campaign_id: UUID | None = Field(default=None, index=True)

    # Content
    title: str = Field(max_length=500)
    content: str
    html_content: str | None = Field(default=None)
    subject: str | None = Field(default=None, max_length=255)

    # Provider message ids, one per channel
    email_message_id: str | None = Field(default=None, max_length=255)
    sms_message_id: str | None = Field(default=None, max_length=255)
    push_message_id: str | None = Field(default=None, max_length=255)

    bounce_count: int = Field(default=0)
    retry_count: int = Field(default=0)
    max_retry_count: int = Field(default=3)

    scheduled_at: datetime | None = Field(default=None, index=True)
    sent_at: datetime | None = Field(default=None)
    delivered_at: datetime | None = Field(default=None)
    failed_at: datetime | None = Field(default=None)
    opened_at: datetime | None = Field(default=None)
    clicked_at: datetime | None = Field(default=None)

    error_message: str | None = Field(default=None)
    error_code: str | None = Field(default=None, max_length=50)
    last_error_at: datetime | None = Field(default=None, index=True)

    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    tracking_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    related_entity_type: str | None = Field(default=None, max_length=50)
    related_entity_id: UUID | None = Field(default=None)
    source: str | None = Field(default=None, max_length=50)
    triggered_by: str | None = Field(default=None, max_length=100)

    # Dispatch claim (one attempt at a time per record)
    claim_token: UUID | None = Field(default=None)
    claimed_at: datetime | None = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime | None = Field(default=None)

    # -------------------------------------------------------------------------
    # Lifecycle transitions
    # -------------------------------------------------------------------------

    def mark_sent(self, provider_message_id: str | None, now: datetime | None = None) -> None:
        """Record a successful hand-off to the provider."""
        if self.status not in SENDABLE_STATUSES:
            raise InvalidStateError(
                f"Notification {self.id} cannot be sent from status {self.status.value}"
            )
        now = now or datetime.utcnow()
        self.status = NotificationStatus.SENT
        self.sent_at = now
        self.updated_at = now

        if self.type == NotificationType.EMAIL:
            self.email_message_id = provider_message_id
        elif self.type == NotificationType.SMS:
            self.sms_message_id = provider_message_id
        elif self.type == NotificationType.PUSH:
            self.push_message_id = provider_message_id

    def mark_delivered(self, now: datetime | None = None) -> None:
        if self.status != NotificationStatus.SENT:
            raise InvalidStateError(
                f"Notification {self.id} cannot be delivered from status {self.status.value}"
            )
        now = now or datetime.utcnow()
        self.status = NotificationStatus.DELIVERED
        self.delivered_at = now
        self.updated_at = now

    def mark_failed(
        self,
        error_message: str | None,
        error_code: str | None,
        now: datetime | None = None,
    ) -> None:
        """Record a failed attempt.

        This is the only place the retry count grows: every failed attempt
        counts once, so a record makes at most max_retry_count attempts.
        """
        now = now or datetime.utcnow()
        self.status = NotificationStatus.FAILED
        self.failed_at = now
        self.last_error_at = now
        self.error_message = error_message[:1000] if error_message else None
        self.error_code = error_code
        self.retry_count += 1
        self.updated_at = now

    def mark_bounced(self, now: datetime | None = None) -> None:
        if self.status not in BOUNCEABLE_STATUSES:
            raise InvalidStateError(
                f"Notification {self.id} cannot bounce from status {self.status.value}"
            )
        now = now or datetime.utcnow()
        self.status = NotificationStatus.BOUNCED
        self.bounce_count += 1
        self.last_error_at = now
        self.updated_at = now

    def mark_cancelled(self, now: datetime | None = None) -> None:
        if self.status != NotificationStatus.PENDING:
            raise InvalidStateError(
                f"Notification {self.id} cannot be cancelled from status {self.status.value}"
            )
        self.status = NotificationStatus.CANCELLED
        self.updated_at = now or datetime.utcnow()

    def mark_opened(self, now: datetime | None = None) -> None:
        # Timestamp only, last call wins
        self.opened_at = now or datetime.utcnow()

    def mark_clicked(self, now: datetime | None = None) -> None:
        self.clicked_at = now or datetime.utcnow()

    # -------------------------------------------------------------------------
    # Predicates
    # -------------------------------------------------------------------------

    def can_retry(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return (
            self.retry_count < self.max_retry_count
            and self.status == NotificationStatus.FAILED
            and (self.expires_at is None or now < self.expires_at)
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return self.expires_at is not None and now > self.expires_at

    def is_pending(self) -> bool:
        return self.status == NotificationStatus.PENDING

    def is_scheduled(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return self.scheduled_at is not None and now < self.scheduled_at

    def should_send_now(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return self.is_pending() and not self.is_scheduled(now) and not self.is_expired(now)

    def is_terminal(self) -> bool:
        if self.status in (NotificationStatus.DELIVERED, NotificationStatus.CANCELLED):
            return True
        return self.status == NotificationStatus.FAILED and self.retry_count >= self.max_retry_count

    def apply_default_expiry(
        self,
        default_expiry: timedelta = timedelta(days=7),
        urgent_expiry: timedelta = timedelta(days=1),
        now: datetime | None = None,
    ) -> None:
        """Set expires_at from priority unless the caller supplied one."""
        if self.expires_at is not None:
            return
        base = now or self.created_at or datetime.utcnow()
        lifetime = urgent_expiry if self.priority == NotificationPriority.URGENT else default_expiry
        self.expires_at = base + lifetime

    def recipient(self) -> str | None:
        """Channel-specific recipient address."""
        if self.type == NotificationType.EMAIL:
            return self.recipient_email
        if self.type == NotificationType.SMS:
            return self.recipient_phone
        if self.type == NotificationType.PUSH:
            return self.push_endpoint or self.push_token
        return str(self.user_id) if self.user_id else None


class SendNotificationRequest(SQLModel):
    """Schema for a send request."""

    type: NotificationType
    user_id: UUID | None = None
    recipient_email: EmailStr | None = Field(default=None, max_length=255)
    recipient_phone: str | None = Field(default=None, max_length=20)
    recipient_name: str | None = Field(default=None, max_length=100)
    push_token: str | None = Field(default=None, max_length=255)
    platform: str | None = Field(default=None, max_length=20)

    title: str | None = Field(default=None, max_length=500)
    content: str | None = None
    html_content: str | None = None
    subject: str | None = Field(default=None, max_length=255)
    priority: NotificationPriority = NotificationPriority.NORMAL

    template_id: UUID | None = None
    template_variables: dict[str, Any] | None = None
    campaign_id: UUID | None = None

    scheduled_at: datetime | None = None
    expires_at: datetime | None = None
    max_retry_count: int | None = Field(default=None, ge=0)

    details: dict[str, Any] | None = None
    tracking_params: dict[str, Any] | None = None
    related_entity_type: str | None = None
    related_entity_id: UUID | None = None
    source: str | None = None
    triggered_by: str | None = None

    @field_validator("recipient_email", mode="before")
    @classmethod
    def blank_email_is_missing(cls, v: Any) -> Any:
        """Treat a blank address as absent so channel validation reports it."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class NotificationResponse(SQLModel):
    """Schema for notification response."""

    id: UUID
    user_id: UUID | None
    type: NotificationType
    status: NotificationStatus
    priority: NotificationPriority
    recipient_email: str | None
    recipient_phone: str | None
    push_token: str | None
    template_id: UUID | None
    campaign_id: UUID | None
    title: str
    content: str
    subject: str | None
    email_message_id: str | None
    sms_message_id: str | None
    push_message_id: str | None
    bounce_count: int
    retry_count: int
    max_retry_count: int
    scheduled_at: datetime | None
    sent_at: datetime | None
    delivered_at: datetime | None
    failed_at: datetime | None
    opened_at: datetime | None
    clicked_at: datetime | None
    error_message: str | None
    error_code: str | None
    created_at: datetime
    expires_at: datetime | None

    model_config = {"from_attributes": True}


class NotificationListResponse(SQLModel):
    """Schema for notification list response."""

    notifications: list[NotificationResponse]
    total: int
