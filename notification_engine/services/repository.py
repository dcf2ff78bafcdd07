"""Storage helpers for the dispatch core.

Every mutation here is a single conditional or incrementing UPDATE so that
request handlers, sweeps and campaign runs can share rows without
read-modify-write races. Nothing in this module commits; callers own the
transaction.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, or_, update
from sqlmodel import Session, select

from notification_engine.models.campaign import (
    COUNTER_FIELDS,
    CampaignRecipient,
    CampaignStatus,
    NotificationCampaign,
    RecipientOutcome,
)
from notification_engine.models.notification import (
    BOUNCEABLE_STATUSES,
    SENDABLE_STATUSES,
    Notification,
    NotificationStatus,
)
from notification_engine.models.template import NotificationTemplate

logger = logging.getLogger(__name__)

ENGAGEMENT_FIELDS = ("opened_at", "clicked_at")


def _unclaimed(now: datetime, lease: timedelta):
    """Criterion for notifications with no live dispatch claim."""
    return or_(
        Notification.claim_token == None,  # noqa: E711
        Notification.claimed_at < now - lease,
    )


# =============================================================================
# Notification claims
# =============================================================================


def claim_notification(
    session: Session,
    notification_id: UUID,
    lease: timedelta,
    now: datetime | None = None,
) -> UUID | None:
    """Take the dispatch claim on a sendable notification.

    Returns the claim token, or None if the record is not sendable or
    another dispatcher holds a live claim.
    """
    now = now or datetime.utcnow()
    token = uuid4()
    result = session.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.status.in_(SENDABLE_STATUSES))
        .where(_unclaimed(now, lease))
        .values(claim_token=token, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    return token if result.rowcount == 1 else None


def release_claim(session: Session, notification_id: UUID, token: UUID) -> None:
    """Drop a claim if it is still held by token."""
    session.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.claim_token == token)
        .values(claim_token=None, claimed_at=None)
        .execution_options(synchronize_session=False)
    )


# =============================================================================
# Notification queries
# =============================================================================


def find_recent_duplicate(
    session: Session,
    user_id: UUID,
    title: str,
    content: str,
    since: datetime,
) -> Notification | None:
    return session.exec(
        select(Notification)
        .where(Notification.user_id == user_id)
        .where(Notification.title == title)
        .where(Notification.content == content)
        .where(Notification.created_at > since)
    ).first()


def find_pending_notifications(
    session: Session,
    now: datetime,
    lease: timedelta,
    limit: int,
) -> list[Notification]:
    """PENDING records that are due and not yet expired."""
    return list(
        session.exec(
            select(Notification)
            .where(Notification.status == NotificationStatus.PENDING)
            .where(or_(Notification.scheduled_at == None, Notification.scheduled_at <= now))  # noqa: E711
            .where(or_(Notification.expires_at == None, Notification.expires_at > now))  # noqa: E711
            .where(_unclaimed(now, lease))
            .order_by(Notification.created_at)
            .limit(limit)
        ).all()
    )


def find_retryable_notifications(
    session: Session,
    now: datetime,
    cooldown: timedelta,
    lease: timedelta,
    limit: int,
) -> list[Notification]:
    """FAILED records with retries left whose last error is past the cool-down."""
    return list(
        session.exec(
            select(Notification)
            .where(Notification.status == NotificationStatus.FAILED)
            .where(Notification.retry_count < Notification.max_retry_count)
            .where(or_(Notification.expires_at == None, Notification.expires_at > now))  # noqa: E711
            .where(Notification.last_error_at < now - cooldown)
            .where(_unclaimed(now, lease))
            .order_by(Notification.last_error_at)
            .limit(limit)
        ).all()
    )


def find_expired_pending(session: Session, now: datetime, limit: int) -> list[Notification]:
    return list(
        session.exec(
            select(Notification)
            .where(Notification.status == NotificationStatus.PENDING)
            .where(Notification.expires_at != None)  # noqa: E711
            .where(Notification.expires_at < now)
            .order_by(Notification.expires_at)
            .limit(limit)
        ).all()
    )


def cancel_notification(
    session: Session,
    notification_id: UUID,
    lease: timedelta,
    now: datetime | None = None,
) -> bool:
    """Cancel one notification if it is still PENDING and not in flight."""
    now = now or datetime.utcnow()
    result = session.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.status == NotificationStatus.PENDING)
        .where(_unclaimed(now, lease))
        .values(status=NotificationStatus.CANCELLED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_notification_delivered(session: Session, notification_id: UUID, now: datetime) -> bool:
    """SENT to DELIVERED; False if the record is no longer SENT."""
    result = session.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.status == NotificationStatus.SENT)
        .values(status=NotificationStatus.DELIVERED, delivered_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_notification_bounced(session: Session, notification_id: UUID, now: datetime) -> bool:
    result = session.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.status.in_(BOUNCEABLE_STATUSES))
        .values(
            status=NotificationStatus.BOUNCED,
            bounce_count=Notification.bounce_count + 1,
            last_error_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def stamp_engagement(session: Session, notification_id: UUID, field: str, now: datetime) -> bool:
    """Set opened_at or clicked_at.

    Returns True only for the call that filled an empty timestamp; later
    calls still move the timestamp forward.
    """
    if field not in ENGAGEMENT_FIELDS:
        raise ValueError(f"Unknown engagement field: {field}")
    column = getattr(Notification, field)
    first = session.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .where(column == None)  # noqa: E711
        .values({field: now})
        .execution_options(synchronize_session=False)
    )
    if first.rowcount == 1:
        return True

    session.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .values({field: now})
        .execution_options(synchronize_session=False)
    )
    return False


def cancel_pending_for_campaign(
    session: Session,
    campaign_id: UUID,
    lease: timedelta,
    now: datetime | None = None,
) -> int:
    """Bulk-cancel a campaign's PENDING notifications that are not in flight."""
    now = now or datetime.utcnow()
    result = session.execute(
        update(Notification)
        .where(Notification.campaign_id == campaign_id)
        .where(Notification.status == NotificationStatus.PENDING)
        .where(_unclaimed(now, lease))
        .values(status=NotificationStatus.CANCELLED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def delete_finished_notifications(session: Session, cutoff: datetime) -> int:
    """Delete DELIVERED and CANCELLED notifications created before cutoff."""
    result = session.execute(
        delete(Notification)
        .where(Notification.status.in_((NotificationStatus.DELIVERED, NotificationStatus.CANCELLED)))
        .where(Notification.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def delete_exhausted_failures(session: Session, cutoff: datetime) -> int:
    """Delete FAILED notifications out of retries whose last error is before cutoff."""
    result = session.execute(
        delete(Notification)
        .where(Notification.status == NotificationStatus.FAILED)
        .where(Notification.retry_count >= Notification.max_retry_count)
        .where(Notification.last_error_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# =============================================================================
# Templates
# =============================================================================


def increment_template_usage(
    session: Session,
    template_id: UUID,
    now: datetime | None = None,
) -> None:
    session.execute(
        update(NotificationTemplate)
        .where(NotificationTemplate.id == template_id)
        .values(
            usage_count=NotificationTemplate.usage_count + 1,
            last_used_at=now or datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


# =============================================================================
# Campaigns
# =============================================================================


def transition_campaign(
    session: Session,
    campaign_id: UUID,
    from_statuses: tuple[CampaignStatus, ...],
    to_status: CampaignStatus,
    **values: Any,
) -> bool:
    """Move a campaign to to_status only if it is currently in from_statuses."""
    values.setdefault("updated_at", datetime.utcnow())
    result = session.execute(
        update(NotificationCampaign)
        .where(NotificationCampaign.id == campaign_id)
        .where(NotificationCampaign.status.in_(from_statuses))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    changed = result.rowcount == 1
    if changed:
        logger.info(
            "Campaign status changed",
            extra={"campaign_id": str(campaign_id), "status": to_status.value},
        )
    return changed


def increment_campaign_counter(
    session: Session,
    campaign_id: UUID,
    counter: str,
    amount: int = 1,
) -> None:
    if counter not in COUNTER_FIELDS:
        raise ValueError(f"Unknown campaign counter: {counter}")
    column = getattr(NotificationCampaign, counter)
    session.execute(
        update(NotificationCampaign)
        .where(NotificationCampaign.id == campaign_id)
        .values({counter: column + amount})
        .execution_options(synchronize_session=False)
    )


def add_campaign_cost(session: Session, campaign_id: UUID, amount: Decimal) -> None:
    session.execute(
        update(NotificationCampaign)
        .where(NotificationCampaign.id == campaign_id)
        .values(total_cost=NotificationCampaign.total_cost + amount)
        .execution_options(synchronize_session=False)
    )


def find_campaigns_ready_to_start(session: Session, now: datetime) -> list[NotificationCampaign]:
    return list(
        session.exec(
            select(NotificationCampaign)
            .where(NotificationCampaign.status == CampaignStatus.SCHEDULED)
            .where(NotificationCampaign.scheduled_start_at <= now)
            .order_by(NotificationCampaign.scheduled_start_at)
        ).all()
    )


def find_campaigns_to_complete(session: Session, now: datetime) -> list[NotificationCampaign]:
    return list(
        session.exec(
            select(NotificationCampaign)
            .where(NotificationCampaign.status == CampaignStatus.RUNNING)
            .where(NotificationCampaign.scheduled_end_at <= now)
        ).all()
    )


def settle_campaign_recipient(
    session: Session,
    campaign_id: UUID,
    user_id: UUID,
    outcome: RecipientOutcome,
    notification_id: UUID | None = None,
    error_message: str | None = None,
) -> None:
    """Record the final outcome of a reserved ledger row."""
    session.execute(
        update(CampaignRecipient)
        .where(CampaignRecipient.campaign_id == campaign_id)
        .where(CampaignRecipient.user_id == user_id)
        .values(
            outcome=outcome,
            notification_id=notification_id,
            error_message=error_message,
            processed_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


def delete_campaign_ledger(session: Session, campaign_ids: list[UUID]) -> int:
    if not campaign_ids:
        return 0
    result = session.execute(
        delete(CampaignRecipient)
        .where(CampaignRecipient.campaign_id.in_(campaign_ids))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def delete_old_cancelled_campaigns(session: Session, cutoff: datetime) -> int:
    """Delete CANCELLED campaigns (and their ledgers) cancelled before cutoff."""
    campaign_ids = list(
        session.exec(
            select(NotificationCampaign.id)
            .where(NotificationCampaign.status == CampaignStatus.CANCELLED)
            .where(NotificationCampaign.cancelled_at < cutoff)
        ).all()
    )
    if not campaign_ids:
        return 0
    delete_campaign_ledger(session, campaign_ids)
    result = session.execute(
        delete(NotificationCampaign)
        .where(NotificationCampaign.id.in_(campaign_ids))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
