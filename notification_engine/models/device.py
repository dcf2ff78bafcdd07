"""DeviceToken entity models."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class DeviceToken(SQLModel, table=True):
    """Registered push endpoint of a single device."""

    __tablename__ = "device_tokens"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID | None = Field(default=None, index=True)  # None for guest devices
    device_token: str = Field(max_length=500, unique=True, index=True)
    endpoint_arn: str | None = Field(default=None, max_length=500)
    platform: str = Field(max_length=20)  # IOS, ANDROID, WEB
    device_id: str | None = Field(default=None, max_length=255)
    app_version: str | None = Field(default=None, max_length=20)

    is_active: bool = Field(default=True)
    is_valid: bool = Field(default=True)
    invalid_reason: str | None = Field(default=None)
    error_count: int = Field(default=0)
    last_error_at: datetime | None = Field(default=None)
    last_used_at: datetime | None = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def is_usable(self) -> bool:
        return self.is_active and self.is_valid


class DeviceTokenCreate(SQLModel):
    """Schema for device registration."""

    user_id: UUID | None = None
    device_token: str = Field(min_length=1, max_length=500)
    platform: str = Field(min_length=1, max_length=20)
    device_id: str | None = Field(default=None, max_length=255)
    app_version: str | None = Field(default=None, max_length=20)


class DeviceTokenResponse(SQLModel):
    """Schema for device token response."""

    id: UUID
    user_id: UUID | None
    device_token: str
    endpoint_arn: str | None
    platform: str
    is_active: bool
    is_valid: bool
    invalid_reason: str | None
    last_used_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
