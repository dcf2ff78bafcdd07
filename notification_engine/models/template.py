"""NotificationTemplate entity models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from notification_engine.models.notification import NotificationType


class TemplateType(str, Enum):
    """Business purpose of a template."""

    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_STATUS_UPDATE = "order_status_update"
    DELIVERY_NOTIFICATION = "delivery_notification"
    CART_ABANDONMENT = "cart_abandonment"
    MARKETING_CAMPAIGN = "marketing_campaign"
    PASSWORD_RESET = "password_reset"
    WELCOME = "welcome"
    RECEIPT = "receipt"
    FEEDBACK_REQUEST = "feedback_request"
    PROMOTION = "promotion"
    LOW_STOCK_ALERT = "low_stock_alert"
    SYSTEM_MAINTENANCE = "system_maintenance"
    BIRTHDAY_WISHES = "birthday_wishes"
    LOYALTY_POINTS = "loyalty_points"
    NEWSLETTER = "newsletter"


class NotificationTemplate(SQLModel, table=True):
    """Notification template database model."""

    __tablename__ = "notification_templates"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=100, unique=True, index=True)
    description: str | None = Field(default=None, max_length=500)
    type: TemplateType = Field(index=True)
    channel: NotificationType | None = Field(default=None)

    # Per-channel content templates
    subject_template: str | None = Field(default=None, max_length=500)
    title_template: str | None = Field(default=None, max_length=500)
    content_template: str | None = Field(default=None)
    html_template: str | None = Field(default=None)
    sms_template: str | None = Field(default=None, max_length=1600)
    push_template: str | None = Field(default=None, max_length=500)

    variables: list[str] | None = Field(default=None, sa_column=Column(JSON))
    sample_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    tags: list[str] | None = Field(default=None, sa_column=Column(JSON))

    is_active: bool = Field(default=True)
    is_default: bool = Field(default=False)
    version: int = Field(default=1)
    language: str = Field(default="en", max_length=10)
    category: str | None = Field(default=None, max_length=50)

    usage_count: int = Field(default=0)
    last_used_at: datetime | None = Field(default=None)

    created_by: str | None = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def content_sources(self) -> list[str]:
        """All non-empty template strings, for variable extraction."""
        return [
            source
            for source in (
                self.subject_template,
                self.title_template,
                self.content_template,
                self.html_template,
                self.sms_template,
                self.push_template,
            )
            if source
        ]


class TemplateCreate(SQLModel):
    """Schema for template creation."""

    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    type: TemplateType
    channel: NotificationType | None = None
    subject_template: str | None = Field(default=None, max_length=500)
    title_template: str | None = Field(default=None, max_length=500)
    content_template: str | None = None
    html_template: str | None = None
    sms_template: str | None = Field(default=None, max_length=1600)
    push_template: str | None = Field(default=None, max_length=500)
    sample_data: dict[str, Any] | None = None
    tags: list[str] | None = None
    is_default: bool = False
    language: str = Field(default="en", max_length=10)
    category: str | None = Field(default=None, max_length=50)
    created_by: str | None = None


class TemplateUpdate(SQLModel):
    """Schema for template update."""

    description: str | None = Field(default=None, max_length=500)
    subject_template: str | None = Field(default=None, max_length=500)
    title_template: str | None = Field(default=None, max_length=500)
    content_template: str | None = None
    html_template: str | None = None
    sms_template: str | None = Field(default=None, max_length=1600)
    push_template: str | None = Field(default=None, max_length=500)
    sample_data: dict[str, Any] | None = None
    tags: list[str] | None = None
    category: str | None = Field(default=None, max_length=50)


class TemplateResponse(SQLModel):
    """Schema for template response."""

    id: UUID
    name: str
    description: str | None
    type: TemplateType
    channel: NotificationType | None
    subject_template: str | None
    title_template: str | None
    content_template: str | None
    html_template: str | None
    sms_template: str | None
    push_template: str | None
    variables: list[str] | None
    sample_data: dict[str, Any] | None
    is_active: bool
    is_default: bool
    version: int
    language: str
    category: str | None
    usage_count: int
    last_used_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TemplateValidationResponse(SQLModel):
    """Result of rendering a template against test data."""

    template_id: UUID
    valid: bool
    required_variables: list[str]
    missing_variables: list[str]
    processed_subject: str | None = None
    processed_title: str | None = None
    processed_content: str | None = None
    processed_sms: str | None = None
    processed_push: str | None = None
