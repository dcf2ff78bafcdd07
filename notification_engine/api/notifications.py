"""Notification API endpoints."""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, status

from notification_engine.api.deps import DBSession, Dispatcher
from notification_engine.models.notification import (
    NotificationListResponse,
    NotificationResponse,
    NotificationStatus,
    SendNotificationRequest,
)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
def send_notification_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    request: SendNotificationRequest,
) -> NotificationResponse:
    """Create a notification and deliver it if it is due."""
    notification = dispatcher.send(session, request)
    return NotificationResponse.model_validate(notification)


@router.post("/bulk", response_model=NotificationListResponse, status_code=status.HTTP_201_CREATED)
def send_bulk_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    requests: list[SendNotificationRequest],
) -> NotificationListResponse:
    """Send several notifications; failed items are left out of the response."""
    notifications = dispatcher.send_bulk(session, requests)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        total=len(notifications),
    )


@router.get("/statistics")
def statistics_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    start: datetime | None = Query(default=None, description="Range start (default: 30 days ago)"),
    end: datetime | None = Query(default=None, description="Range end (default: now)"),
) -> dict[str, Any]:
    """Notification counts and rates for a time range."""
    end = end or datetime.utcnow()
    start = start or end - timedelta(days=30)
    return dispatcher.get_statistics(session, start, end)


@router.get("/users/{user_id}", response_model=NotificationListResponse)
def list_user_notifications_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    user_id: UUID,
    notification_status: NotificationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> NotificationListResponse:
    """List a user's notifications, newest first."""
    notifications, total = dispatcher.list_user_notifications(
        session, user_id, notification_status, limit, offset
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
    )


@router.get("/campaigns/{campaign_id}", response_model=NotificationListResponse)
def list_campaign_notifications_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    campaign_id: UUID,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> NotificationListResponse:
    """List the notifications a campaign produced."""
    notifications, total = dispatcher.list_campaign_notifications(session, campaign_id, limit, offset)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
    )


@router.get("/{notification_id}", response_model=NotificationResponse)
def get_notification_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    notification_id: UUID,
) -> NotificationResponse:
    notification = dispatcher.get_notification(session, notification_id)
    return NotificationResponse.model_validate(notification)


@router.post("/{notification_id}/cancel", response_model=NotificationResponse)
def cancel_notification_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    notification_id: UUID,
) -> NotificationResponse:
    """Cancel a PENDING notification."""
    notification = dispatcher.cancel(session, notification_id)
    return NotificationResponse.model_validate(notification)


@router.post("/{notification_id}/opened", response_model=NotificationResponse)
def mark_opened_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    notification_id: UUID,
) -> NotificationResponse:
    """Open-tracking callback."""
    notification = dispatcher.mark_opened(session, notification_id)
    return NotificationResponse.model_validate(notification)


@router.post("/{notification_id}/clicked", response_model=NotificationResponse)
def mark_clicked_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    notification_id: UUID,
) -> NotificationResponse:
    """Click-tracking callback."""
    notification = dispatcher.mark_clicked(session, notification_id)
    return NotificationResponse.model_validate(notification)


@router.post("/{notification_id}/delivered", response_model=NotificationResponse)
def mark_delivered_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    notification_id: UUID,
) -> NotificationResponse:
    """Provider delivery receipt."""
    notification = dispatcher.mark_delivered(session, notification_id)
    return NotificationResponse.model_validate(notification)


@router.post("/{notification_id}/bounced", response_model=NotificationResponse)
def mark_bounced_endpoint(
    session: DBSession,
    dispatcher: Dispatcher,
    notification_id: UUID,
) -> NotificationResponse:
    """Provider bounce receipt."""
    notification = dispatcher.mark_bounced(session, notification_id)
    return NotificationResponse.model_validate(notification)
