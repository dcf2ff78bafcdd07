"""Device registration for push delivery."""

import logging
from datetime import datetime
from uuid import UUID

from sqlmodel import Session, select

from notification_engine.channels.providers import PushProvider
from notification_engine.errors import NotFoundError, ProviderError
from notification_engine.models.device import DeviceToken, DeviceTokenCreate

logger = logging.getLogger(__name__)


def get_device_by_token(session: Session, device_token: str) -> DeviceToken | None:
    return session.exec(
        select(DeviceToken).where(DeviceToken.device_token == device_token)
    ).first()


def register_device(
    session: Session,
    data: DeviceTokenCreate,
    provider: PushProvider,
) -> DeviceToken:
    """Register a device token, creating its provider endpoint.

    Re-registering a known token reactivates it and refreshes its endpoint.

    Raises:
        ProviderError: If the push provider cannot create the endpoint
    """
    platform = data.platform.upper()
    endpoint = provider.register_endpoint(data.device_token, platform)
    now = datetime.utcnow()

    device = get_device_by_token(session, data.device_token)
    if device is None:
        device = DeviceToken(
            user_id=data.user_id,
            device_token=data.device_token,
            platform=platform,
            device_id=data.device_id,
            app_version=data.app_version,
        )
    else:
        device.user_id = data.user_id or device.user_id
        device.platform = platform
        device.app_version = data.app_version or device.app_version
        device.is_active = True
        device.is_valid = True
        device.invalid_reason = None
        device.error_count = 0

    device.endpoint_arn = endpoint
    device.updated_at = now
    session.add(device)
    session.commit()
    session.refresh(device)

    logger.info(
        "Device registered",
        extra={"device_id": str(device.id), "platform": platform},
    )
    return device


def deactivate_device(
    session: Session,
    device_token: str,
    provider: PushProvider | None = None,
) -> DeviceToken:
    """Deactivate a device and drop its provider endpoint."""
    device = get_device_by_token(session, device_token)
    if device is None:
        raise NotFoundError("Device token not found")

    if provider is not None and device.endpoint_arn:
        try:
            provider.delete_endpoint(device.endpoint_arn)
        except ProviderError as e:
            # The endpoint is unusable either way
            logger.warning(
                "Failed to delete push endpoint",
                extra={"device_id": str(device.id), "error": str(e)},
            )

    device.is_active = False
    device.updated_at = datetime.utcnow()
    session.add(device)
    session.commit()
    session.refresh(device)

    logger.info("Device deactivated", extra={"device_id": str(device.id)})
    return device


def list_user_devices(session: Session, user_id: UUID) -> list[DeviceToken]:
    """Active, valid devices of a user."""
    return list(
        session.exec(
            select(DeviceToken)
            .where(DeviceToken.user_id == user_id)
            .where(DeviceToken.is_active == True)  # noqa: E712
            .where(DeviceToken.is_valid == True)  # noqa: E712
            .order_by(DeviceToken.created_at)
        ).all()
    )


def invalidate_token(session: Session, device_token: str, reason: str) -> bool:
    """Mark a device registration invalid after the provider rejected it.

    Does not commit; runs inside the caller's dispatch transaction.

    Returns:
        True if a registration was found and invalidated
    """
    device = get_device_by_token(session, device_token)
    if device is None:
        return False

    now = datetime.utcnow()
    device.is_valid = False
    device.invalid_reason = reason[:500] if reason else None
    device.error_count += 1
    device.last_error_at = now
    device.updated_at = now
    session.add(device)

    logger.warning(
        "Device token invalidated",
        extra={"device_id": str(device.id), "reason": device.invalid_reason},
    )
    return True


def touch_device(session: Session, device_token: str) -> None:
    """Record a successful push to a device."""
    device = get_device_by_token(session, device_token)
    if device is not None:
        device.last_used_at = datetime.utcnow()
        session.add(device)
