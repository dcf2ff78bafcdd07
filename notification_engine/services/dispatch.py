"""Notification dispatch engine.

Builds notifications from send requests, renders templates, validates
channel fields, suppresses duplicates, persists, and runs delivery
attempts. Every operation takes an explicit database session.

A delivery attempt holds a claim on the record (see repository.py) so two
dispatchers never run against the same notification at once.
"""

import logging
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlmodel import Session, func, select

from notification_engine.channels.registry import ChannelDispatcher, ChannelRegistry
from notification_engine.config import DispatchPolicy
from notification_engine.errors import (
    DuplicateNotificationError,
    InvalidStateError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from notification_engine.models.notification import (
    Notification,
    NotificationStatus,
    NotificationType,
    SendNotificationRequest,
)
from notification_engine.services import repository
from notification_engine.services.devices import invalidate_token, touch_device
from notification_engine.services.templates import (
    TemplateCache,
    apply_template,
    get_template_cache,
    resolve_template,
)

logger = logging.getLogger(__name__)

InvalidEndpointCallback = Callable[[Session, str, str], Any]


def _require_text(value: str | None, field: str) -> None:
    if value is None or not value.strip():
        raise ValidationError(f"{field.capitalize()} is required", field=field)


class NotificationDispatcher:
    """Send pipeline and lifecycle operations for notifications.

    Usage:
        dispatcher = NotificationDispatcher()
        notification = dispatcher.send(session, request)
    """

    def __init__(
        self,
        channels: ChannelDispatcher | None = None,
        policy: DispatchPolicy | None = None,
        template_cache: TemplateCache | None = None,
        on_invalid_endpoint: InvalidEndpointCallback | None = None,
    ) -> None:
        self.channels = channels or ChannelDispatcher(ChannelRegistry.from_settings())
        self.policy = policy or DispatchPolicy.from_settings()
        self.template_cache = template_cache if template_cache is not None else get_template_cache()
        self.on_invalid_endpoint = on_invalid_endpoint or invalidate_token
        self._logger = logging.getLogger(self.__class__.__name__)

    # -------------------------------------------------------------------------
    # Send pipeline
    # -------------------------------------------------------------------------

    def build_notification(
        self,
        request: SendNotificationRequest,
        now: datetime,
    ) -> Notification:
        """Create an unsaved PENDING notification from a request."""
        if request.template_id is None:
            _require_text(request.title, "title")
            _require_text(request.content, "content")
        if request.expires_at is not None and request.expires_at <= now:
            raise ValidationError("Expiry must be in the future", field="expires_at")

        max_retries = request.max_retry_count
        if max_retries is None:
            max_retries = self.policy.default_max_retries

        return Notification(
            type=request.type,
            user_id=request.user_id,
            priority=request.priority,
            recipient_email=request.recipient_email,
            recipient_phone=request.recipient_phone,
            recipient_name=request.recipient_name,
            push_token=request.push_token,
            platform=request.platform,
            template_id=request.template_id,
            campaign_id=request.campaign_id,
            title=request.title or "",
            content=request.content or "",
            html_content=request.html_content,
            subject=request.subject,
            scheduled_at=request.scheduled_at,
            expires_at=request.expires_at,
            max_retry_count=max_retries,
            details=request.details,
            tracking_data=request.tracking_params,
            related_entity_type=request.related_entity_type,
            related_entity_id=request.related_entity_id,
            source=request.source,
            triggered_by=request.triggered_by,
            created_at=now,
            updated_at=now,
        )

    def send(
        self,
        session: Session,
        request: SendNotificationRequest,
        now: datetime | None = None,
    ) -> Notification:
        """Create a notification and deliver it if it is due.

        Args:
            session: Database session
            request: Send request
            now: Current time (defaults to utcnow)

        Returns:
            Notification: The persisted record in its post-send state

        Raises:
            ValidationError: If a required field is missing
            NotFoundError: If the template does not exist
            InvalidStateError: If the template is inactive
            DuplicateNotificationError: If the same message was sent recently
            ProviderError: If the immediate delivery attempt failed; the
                record is persisted as FAILED first
        """
        now = now or datetime.utcnow()
        notification = self.build_notification(request, now)

        if request.template_id is not None:
            template = resolve_template(session, request.template_id, self.template_cache)
            apply_template(notification, template, request.template_variables)
            _require_text(notification.title, "title")
            _require_text(notification.content, "content")

        self.channels.registry.validate(notification)

        if notification.user_id is not None:
            duplicate = repository.find_recent_duplicate(
                session,
                notification.user_id,
                notification.title,
                notification.content,
                since=now - self.policy.duplicate_window,
            )
            if duplicate is not None:
                raise DuplicateNotificationError(
                    f"Duplicate notification for user {notification.user_id} "
                    f"(matches {duplicate.id})"
                )

        notification.apply_default_expiry(self.policy.default_expiry, self.policy.urgent_expiry, now)
        session.add(notification)
        if notification.template_id is not None:
            repository.increment_template_usage(session, notification.template_id, now)
        session.commit()
        session.refresh(notification)

        self._logger.info(
            "Notification created",
            extra={
                "notification_id": str(notification.id),
                "type": notification.type.value,
                "user_id": str(notification.user_id) if notification.user_id else None,
                "campaign_id": str(notification.campaign_id) if notification.campaign_id else None,
            },
        )

        if notification.should_send_now(now):
            self.dispatch_notification(session, notification, now=now)

        return notification

    def send_bulk(
        self,
        session: Session,
        requests: list[SendNotificationRequest],
    ) -> list[Notification]:
        """Send each request independently; failures are logged and skipped."""
        sent: list[Notification] = []
        for index, request in enumerate(requests):
            try:
                sent.append(self.send(session, request))
            except Exception as e:
                session.rollback()
                self._logger.warning(
                    f"Bulk item {index} failed: {e}",
                    extra={"index": index, "error": str(e), "error_type": type(e).__name__},
                )

        self._logger.info(
            "Bulk send complete",
            extra={"requested": len(requests), "succeeded": len(sent)},
        )
        return sent

    def dispatch_notification(
        self,
        session: Session,
        notification: Notification,
        error_code: str = "SEND_ERROR",
        now: datetime | None = None,
    ) -> Notification:
        """Run one delivery attempt under a claim and persist the outcome.

        Raises:
            InvalidStateError: If the record is not sendable or another
                attempt holds the claim
            ProviderError: If delivery failed (the FAILED state is persisted)
        """
        now = now or datetime.utcnow()
        token = repository.claim_notification(session, notification.id, self.policy.claim_lease, now)
        if token is None:
            session.rollback()
            raise InvalidStateError(
                f"Notification {notification.id} is not sendable or is already being dispatched"
            )
        session.commit()

        try:
            self.channels.dispatch(notification, error_code, now)
        except (ProviderError, ValidationError) as e:
            if isinstance(e, ProviderError) and e.invalid_endpoint and notification.push_token:
                self.on_invalid_endpoint(session, notification.push_token, str(e))
            self._complete_attempt(session, notification)
            raise
        except Exception:
            session.rollback()
            repository.release_claim(session, notification.id, token)
            session.commit()
            raise

        if notification.type == NotificationType.PUSH and notification.push_token:
            touch_device(session, notification.push_token)
        self._complete_attempt(session, notification)
        return notification

    def _complete_attempt(self, session: Session, notification: Notification) -> None:
        notification.claim_token = None
        notification.claimed_at = None
        session.add(notification)
        if notification.campaign_id and notification.status == NotificationStatus.DELIVERED:
            repository.increment_campaign_counter(session, notification.campaign_id, "delivered_count")
        session.commit()
        session.refresh(notification)

    # -------------------------------------------------------------------------
    # Lifecycle operations
    # -------------------------------------------------------------------------

    def get_notification(self, session: Session, notification_id: UUID) -> Notification:
        notification = session.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return notification

    def cancel(self, session: Session, notification_id: UUID) -> Notification:
        """Cancel a PENDING notification that is not being dispatched."""
        notification = self.get_notification(session, notification_id)
        if not repository.cancel_notification(session, notification_id, self.policy.claim_lease):
            session.rollback()
            session.refresh(notification)
            if notification.status == NotificationStatus.PENDING:
                raise InvalidStateError(f"Notification {notification_id} is being dispatched")
            raise InvalidStateError(
                f"Notification {notification_id} cannot be cancelled from status {notification.status.value}"
            )
        session.commit()
        session.refresh(notification)

        self._logger.info("Notification cancelled", extra={"notification_id": str(notification_id)})
        return notification

    def cancel_by_campaign(self, session: Session, campaign_id: UUID) -> int:
        cancelled = repository.cancel_pending_for_campaign(session, campaign_id, self.policy.claim_lease)
        session.commit()

        self._logger.info(
            "Campaign notifications cancelled",
            extra={"campaign_id": str(campaign_id), "cancelled": cancelled},
        )
        return cancelled

    def _record_engagement(
        self,
        session: Session,
        notification_id: UUID,
        field: str,
        counter: str,
    ) -> Notification:
        notification = self.get_notification(session, notification_id)
        first = repository.stamp_engagement(session, notification_id, field, datetime.utcnow())
        if first and notification.campaign_id:
            repository.increment_campaign_counter(session, notification.campaign_id, counter)
        session.commit()
        session.refresh(notification)
        return notification

    def mark_opened(self, session: Session, notification_id: UUID) -> Notification:
        return self._record_engagement(session, notification_id, "opened_at", "opened_count")

    def mark_clicked(self, session: Session, notification_id: UUID) -> Notification:
        return self._record_engagement(session, notification_id, "clicked_at", "clicked_count")

    def mark_delivered(self, session: Session, notification_id: UUID) -> Notification:
        """Provider callback: the message reached the recipient."""
        notification = self.get_notification(session, notification_id)
        if not repository.mark_notification_delivered(session, notification_id, datetime.utcnow()):
            session.rollback()
            session.refresh(notification)
            raise InvalidStateError(
                f"Notification {notification_id} cannot be delivered from status {notification.status.value}"
            )
        if notification.campaign_id:
            repository.increment_campaign_counter(session, notification.campaign_id, "delivered_count")
        session.commit()
        session.refresh(notification)
        return notification

    def mark_bounced(self, session: Session, notification_id: UUID) -> Notification:
        """Provider callback: the message bounced."""
        notification = self.get_notification(session, notification_id)
        if not repository.mark_notification_bounced(session, notification_id, datetime.utcnow()):
            session.rollback()
            session.refresh(notification)
            raise InvalidStateError(
                f"Notification {notification_id} cannot bounce from status {notification.status.value}"
            )
        if notification.campaign_id:
            repository.increment_campaign_counter(session, notification.campaign_id, "bounced_count")
        session.commit()
        session.refresh(notification)

        self._logger.warning("Notification bounced", extra={"notification_id": str(notification_id)})
        return notification


    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_user_notifications(
        self,
        session: Session,
        user_id: UUID,
        status: NotificationStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Notification], int]:
        query = select(Notification).where(Notification.user_id == user_id)
        count_query = select(func.count()).select_from(Notification).where(Notification.user_id == user_id)
        if status is not None:
            query = query.where(Notification.status == status)
            count_query = count_query.where(Notification.status == status)

        notifications = list(
            session.exec(
                query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
            ).all()
        )
        total = session.exec(count_query).one()
        return notifications, total

    def list_campaign_notifications(
        self,
        session: Session,
        campaign_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Notification], int]:
        notifications = list(
            session.exec(
                select(Notification)
                .where(Notification.campaign_id == campaign_id)
                .order_by(Notification.created_at)
                .offset(offset)
                .limit(limit)
            ).all()
        )
        total = session.exec(
            select(func.count()).select_from(Notification).where(Notification.campaign_id == campaign_id)
        ).one()
        return notifications, total

    def get_statistics(
        self,
        session: Session,
        start: datetime,
        end: datetime,
    ) -> dict[str, Any]:
        """Counts and rates for notifications created in [start, end)."""
        in_range = (Notification.created_at >= start, Notification.created_at < end)

        by_status = dict(
            session.exec(
                select(Notification.status, func.count()).where(*in_range).group_by(Notification.status)
            ).all()
        )
        by_type = dict(
            session.exec(
                select(Notification.type, func.count()).where(*in_range).group_by(Notification.type)
            ).all()
        )
        opened = session.exec(
            select(func.count()).select_from(Notification).where(*in_range).where(Notification.opened_at != None)  # noqa: E711
        ).one()
        clicked = session.exec(
            select(func.count()).select_from(Notification).where(*in_range).where(Notification.clicked_at != None)  # noqa: E711
        ).one()
        send_times = session.exec(
            select(Notification.created_at, Notification.sent_at)
            .where(*in_range)
            .where(Notification.sent_at != None)  # noqa: E711
        ).all()

        total = sum(by_status.values())
        delivered = by_status.get(NotificationStatus.DELIVERED, 0)
        # Everything that reached the provider at least once
        sent = delivered + by_status.get(NotificationStatus.SENT, 0) + by_status.get(NotificationStatus.BOUNCED, 0)
        latency = (
            sum((sent_at - created_at).total_seconds() for created_at, sent_at in send_times) / len(send_times)
            if send_times
            else None
        )

        def rate(numerator: int, denominator: int) -> float:
            return (numerator / denominator) * 100 if denominator else 0.0

        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "total": total,
            "by_status": {status.value: count for status, count in by_status.items()},
            "by_type": {kind.value: count for kind, count in by_type.items()},
            "delivery_rate": rate(delivered, sent),
            "open_rate": rate(opened, sent),
            "click_rate": rate(clicked, sent),
            "average_send_latency_seconds": latency,
        }
