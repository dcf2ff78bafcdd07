"""NotificationCampaign and CampaignRecipient entity models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Numeric, UniqueConstraint
from sqlmodel import Field, SQLModel

from notification_engine.models.notification import NotificationPriority, NotificationType


class CampaignType(str, Enum):
    """Kind of campaign, which determines the notification channel."""

    EMAIL_MARKETING = "email_marketing"
    SMS_MARKETING = "sms_marketing"
    PUSH_MARKETING = "push_marketing"
    CART_ABANDONMENT = "cart_abandonment"
    ORDER_FOLLOW_UP = "order_follow_up"
    WELCOME_SERIES = "welcome_series"
    RE_ENGAGEMENT = "re_engagement"
    BIRTHDAY_CAMPAIGN = "birthday_campaign"
    LOYALTY_PROGRAM = "loyalty_program"
    PRODUCT_LAUNCH = "product_launch"
    SEASONAL_PROMOTION = "seasonal_promotion"
    FEEDBACK_REQUEST = "feedback_request"
    NEWSLETTER = "newsletter"
    SYSTEM_MAINTENANCE = "system_maintenance"


class CampaignStatus(str, Enum):
    """Campaign status.

    DRAFT -> SCHEDULED -> RUNNING -> COMPLETED
    RUNNING <-> PAUSED
    DRAFT | SCHEDULED | RUNNING | PAUSED -> CANCELLED
    """

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RecipientOutcome(str, Enum):
    """Outcome of a single campaign target."""

    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


CAMPAIGN_CHANNELS: dict[CampaignType, NotificationType] = {
    CampaignType.SMS_MARKETING: NotificationType.SMS,
    CampaignType.PUSH_MARKETING: NotificationType.PUSH,
}

STARTABLE_STATUSES = (CampaignStatus.DRAFT, CampaignStatus.SCHEDULED)
CANCELLABLE_STATUSES = (
    CampaignStatus.DRAFT,
    CampaignStatus.SCHEDULED,
    CampaignStatus.RUNNING,
    CampaignStatus.PAUSED,
)
DELETABLE_STATUSES = (CampaignStatus.DRAFT, CampaignStatus.CANCELLED)

# Counters that may be incremented atomically in storage
COUNTER_FIELDS = (
    "total_recipients",
    "sent_count",
    "delivered_count",
    "failed_count",
    "opened_count",
    "clicked_count",
    "bounced_count",
    "unsubscribed_count",
)


def _rate(numerator: int, denominator: int) -> float:
    return (numerator / denominator) * 100 if denominator > 0 else 0.0


class NotificationCampaign(SQLModel, table=True):
    """Notification campaign database model."""

    __tablename__ = "notification_campaigns"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=200, unique=True, index=True)
    description: str | None = Field(default=None, max_length=1000)
    type: CampaignType
    status: CampaignStatus = Field(default=CampaignStatus.DRAFT, index=True)
    priority: NotificationPriority = Field(default=NotificationPriority.NORMAL)
    template_id: UUID | None = Field(default=None)

    # Targeting
    target_audience: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    target_user_ids: list[str] | None = Field(default=None, sa_column=Column(JSON))
    target_segments: list[str] | None = Field(default=None, sa_column=Column(JSON))
    max_recipients: int | None = Field(default=None, ge=1)

    # Schedule
    scheduled_start_at: datetime | None = Field(default=None, index=True)
    scheduled_end_at: datetime | None = Field(default=None)
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)
    is_active: bool = Field(default=True)
    is_recurring: bool = Field(default=False)
    recurrence_pattern: str | None = Field(default=None, max_length=100)

    # Budget
    budget_limit: Decimal | None = Field(default=None, sa_column=Column(Numeric(12, 2)))
    cost_per_notification: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(12, 4))
    )
    total_cost: Decimal = Field(
        default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False, default=0)
    )

    # Running counters
    total_recipients: int = Field(default=0)
    sent_count: int = Field(default=0)
    delivered_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    opened_count: int = Field(default=0)
    clicked_count: int = Field(default=0)
    bounced_count: int = Field(default=0)
    unsubscribed_count: int = Field(default=0)

    # A/B testing
    is_ab_test: bool = Field(default=False)
    ab_test_percentage: int | None = Field(default=None, ge=0, le=100)
    ab_test_variant: str | None = Field(default=None, max_length=10)
    content_variations: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    tags: list[str] | None = Field(default=None, sa_column=Column(JSON))
    created_by: str | None = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def can_start(self) -> bool:
        return self.status in STARTABLE_STATUSES

    def is_running(self) -> bool:
        return self.status == CampaignStatus.RUNNING

    def is_scheduled(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return self.scheduled_start_at is not None and now < self.scheduled_start_at

    def within_budget(self, additional_cost: Decimal | None) -> bool:
        """True if adding additional_cost keeps total_cost within budget_limit."""
        if self.budget_limit is None:
            return True
        return (self.total_cost or Decimal("0")) + (additional_cost or Decimal("0")) <= self.budget_limit

    def notification_type(self) -> NotificationType:
        return CAMPAIGN_CHANNELS.get(self.type, NotificationType.EMAIL)

    @property
    def delivery_rate(self) -> float:
        return _rate(self.delivered_count, self.sent_count)

    @property
    def open_rate(self) -> float:
        return _rate(self.opened_count, self.delivered_count)

    @property
    def click_rate(self) -> float:
        return _rate(self.clicked_count, self.delivered_count)

    @property
    def bounce_rate(self) -> float:
        return _rate(self.bounced_count, self.sent_count)

    @property
    def unsubscribe_rate(self) -> float:
        return _rate(self.unsubscribed_count, self.delivered_count)


class CampaignRecipient(SQLModel, table=True):
    """Per-target ledger entry of a campaign run.

    A run reserves a target by inserting its row as PROCESSING before the
    send; the unique key keeps overlapping runs from sending twice. A target
    already present in the ledger is not sent again when the campaign
    resumes.
    """

    __tablename__ = "campaign_recipients"
    __table_args__ = (UniqueConstraint("campaign_id", "user_id", name="uq_campaign_recipient"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    campaign_id: UUID = Field(foreign_key="notification_campaigns.id", index=True)
    user_id: UUID
    outcome: RecipientOutcome
    notification_id: UUID | None = Field(default=None)
    error_message: str | None = Field(default=None, max_length=1000)
    processed_at: datetime = Field(default_factory=datetime.utcnow)


class CampaignCreate(SQLModel):
    """Schema for campaign creation."""

    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    type: CampaignType
    priority: NotificationPriority = NotificationPriority.NORMAL
    template_id: UUID | None = None
    target_audience: dict[str, Any] | None = None
    target_user_ids: list[UUID] | None = None
    target_segments: list[str] | None = None
    max_recipients: int | None = Field(default=None, ge=1)
    scheduled_start_at: datetime | None = None
    scheduled_end_at: datetime | None = None
    is_recurring: bool = False
    recurrence_pattern: str | None = None
    budget_limit: Decimal | None = Field(default=None, ge=0)
    cost_per_notification: Decimal | None = Field(default=None, ge=0)
    is_ab_test: bool = False
    ab_test_percentage: int | None = Field(default=None, ge=0, le=100)
    ab_test_variant: str | None = Field(default=None, max_length=10)
    content_variations: dict[str, Any] | None = None
    tags: list[str] | None = None
    created_by: str | None = None


class CampaignUpdate(SQLModel):
    """Schema for campaign update (DRAFT campaigns only)."""

    description: str | None = Field(default=None, max_length=1000)
    priority: NotificationPriority | None = None
    template_id: UUID | None = None
    target_audience: dict[str, Any] | None = None
    target_user_ids: list[UUID] | None = None
    target_segments: list[str] | None = None
    max_recipients: int | None = Field(default=None, ge=1)
    scheduled_start_at: datetime | None = None
    scheduled_end_at: datetime | None = None
    budget_limit: Decimal | None = Field(default=None, ge=0)
    cost_per_notification: Decimal | None = Field(default=None, ge=0)
    is_ab_test: bool | None = None
    ab_test_percentage: int | None = Field(default=None, ge=0, le=100)
    ab_test_variant: str | None = Field(default=None, max_length=10)
    content_variations: dict[str, Any] | None = None
    tags: list[str] | None = None


class CampaignResponse(SQLModel):
    """Schema for campaign response."""

    id: UUID
    name: str
    description: str | None
    type: CampaignType
    status: CampaignStatus
    priority: NotificationPriority
    template_id: UUID | None
    max_recipients: int | None
    scheduled_start_at: datetime | None
    scheduled_end_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    budget_limit: Decimal | None
    cost_per_notification: Decimal | None
    total_cost: Decimal
    total_recipients: int
    sent_count: int
    delivered_count: int
    failed_count: int
    opened_count: int
    clicked_count: int
    bounced_count: int
    unsubscribed_count: int
    delivery_rate: float
    open_rate: float
    click_rate: float
    bounce_rate: float
    unsubscribe_rate: float
    is_ab_test: bool
    ab_test_variant: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CampaignListResponse(SQLModel):
    """Schema for campaign list response."""

    campaigns: list[CampaignResponse]
    total: int
