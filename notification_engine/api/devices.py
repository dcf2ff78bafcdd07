"""Push device registration endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from notification_engine.api.deps import DBSession, Push
from notification_engine.models.device import DeviceTokenCreate, DeviceTokenResponse
from notification_engine.services.devices import (
    deactivate_device,
    list_user_devices,
    register_device,
)

router = APIRouter(prefix="/api/devices", tags=["Devices"])


@router.post("", response_model=DeviceTokenResponse, status_code=status.HTTP_201_CREATED)
def register_device_endpoint(
    session: DBSession,
    provider: Push,
    device_data: DeviceTokenCreate,
) -> DeviceTokenResponse:
    """Register (or re-register) a push device token."""
    device = register_device(session, device_data, provider)
    return DeviceTokenResponse.model_validate(device)


@router.get("/users/{user_id}", response_model=list[DeviceTokenResponse])
def list_user_devices_endpoint(session: DBSession, user_id: UUID) -> list[DeviceTokenResponse]:
    return [DeviceTokenResponse.model_validate(d) for d in list_user_devices(session, user_id)]


@router.delete("/{device_token}", response_model=DeviceTokenResponse)
def deactivate_device_endpoint(
    session: DBSession,
    provider: Push,
    device_token: str,
) -> DeviceTokenResponse:
    device = deactivate_device(session, device_token, provider)
    return DeviceTokenResponse.model_validate(device)
