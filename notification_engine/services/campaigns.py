"""Campaign management and execution.

Campaign status changes are conditional updates, so two callers racing on
the same campaign cannot both succeed. Execution runs out-of-band on a
thread pool: start and resume return a Future the caller may wait on or
ignore.

Each processed target is written to the campaign_recipients ledger.
Resuming a paused campaign re-resolves its targets but skips every user
already in the ledger.
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from notification_engine.config import get_settings
from notification_engine.db.session import new_session
from notification_engine.errors import InvalidStateError, NotFoundError, ValidationError
from notification_engine.models.campaign import (
    CANCELLABLE_STATUSES,
    DELETABLE_STATUSES,
    STARTABLE_STATUSES,
    CampaignCreate,
    CampaignRecipient,
    CampaignStatus,
    CampaignUpdate,
    NotificationCampaign,
    RecipientOutcome,
)
from notification_engine.models.notification import (
    NotificationType,
    SendNotificationRequest,
)
from notification_engine.models.template import NotificationTemplate
from notification_engine.services import repository
from notification_engine.services.dispatch import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class Contact:
    """Channel addresses of one target user."""

    recipient_email: str | None = None
    recipient_phone: str | None = None
    recipient_name: str | None = None
    push_token: str | None = None
    platform: str | None = None


class CampaignTargeting:
    """Audience resolution for campaigns.

    The default resolves the campaign's explicit user id list and knows no
    contact details. Deployments subclass this to query their user store.
    """

    def resolve_targets(self, campaign: NotificationCampaign) -> list[UUID]:
        seen: set[UUID] = set()
        targets: list[UUID] = []
        for raw in campaign.target_user_ids or []:
            user_id = UUID(str(raw))
            if user_id not in seen:
                seen.add(user_id)
                targets.append(user_id)
        if campaign.max_recipients is not None:
            targets = targets[: campaign.max_recipients]
        return targets

    def resolve_contact(self, user_id: UUID, notification_type: NotificationType) -> Contact:
        return Contact()


@dataclass
class CampaignRunResult:
    """Outcome of one execution pass over a campaign's targets."""

    campaign_id: UUID
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    final_status: CampaignStatus | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_id": str(self.campaign_id),
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "final_status": self.final_status.value if self.final_status else None,
            "errors": self.errors,
        }


class CampaignService:
    """Campaign CRUD, status transitions and execution.

    Usage:
        service = CampaignService(dispatcher)
        future = service.start_campaign(session, campaign_id)
        result = future.result()  # optional
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        targeting: CampaignTargeting | None = None,
        executor: Executor | None = None,
        session_factory: Callable[[], Session] = new_session,
    ) -> None:
        self.dispatcher = dispatcher
        self.targeting = targeting or CampaignTargeting()
        self.executor = executor or ThreadPoolExecutor(
            max_workers=get_settings().CAMPAIGN_WORKERS,
            thread_name_prefix="campaign",
        )
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    # -------------------------------------------------------------------------
    # Management
    # -------------------------------------------------------------------------

    def get_campaign(self, session: Session, campaign_id: UUID) -> NotificationCampaign:
        campaign = session.get(NotificationCampaign, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    def _check_template(self, session: Session, template_id: UUID | None) -> None:
        if template_id is None:
            return
        template = session.get(NotificationTemplate, template_id)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        if not template.is_active:
            raise InvalidStateError(f"Template {template.name} is not active")

    def create_campaign(self, session: Session, data: CampaignCreate) -> NotificationCampaign:
        """Create a DRAFT campaign.

        Raises:
            ValidationError: If the name is taken
            NotFoundError: If the template does not exist
            InvalidStateError: If the template is inactive
        """
        existing = session.exec(
            select(NotificationCampaign).where(NotificationCampaign.name == data.name)
        ).first()
        if existing:
            raise ValidationError(f"Campaign '{data.name}' already exists", field="name")
        self._check_template(session, data.template_id)

        values = data.model_dump(exclude={"target_user_ids"})
        campaign = NotificationCampaign(
            **values,
            target_user_ids=[str(u) for u in data.target_user_ids] if data.target_user_ids else None,
        )
        session.add(campaign)
        session.commit()
        session.refresh(campaign)

        self._logger.info(
            "Campaign created",
            extra={"campaign_id": str(campaign.id), "campaign_name": campaign.name, "type": campaign.type.value},
        )
        return campaign

    def update_campaign(
        self,
        session: Session,
        campaign_id: UUID,
        data: CampaignUpdate,
    ) -> NotificationCampaign:
        campaign = self.get_campaign(session, campaign_id)
        if campaign.status != CampaignStatus.DRAFT:
            raise InvalidStateError(f"Only DRAFT campaigns can be edited (status {campaign.status.value})")

        update_data = data.model_dump(exclude_unset=True)
        if "template_id" in update_data:
            self._check_template(session, update_data["template_id"])
        if update_data.get("target_user_ids") is not None:
            update_data["target_user_ids"] = [str(u) for u in update_data["target_user_ids"]]

        for key, value in update_data.items():
            setattr(campaign, key, value)
        campaign.updated_at = datetime.utcnow()
        session.add(campaign)
        session.commit()
        session.refresh(campaign)

        self._logger.info("Campaign updated", extra={"campaign_id": str(campaign_id)})
        return campaign

    def delete_campaign(self, session: Session, campaign_id: UUID) -> None:
        campaign = self.get_campaign(session, campaign_id)
        if campaign.status not in DELETABLE_STATUSES:
            raise InvalidStateError(
                f"Only DRAFT or CANCELLED campaigns can be deleted (status {campaign.status.value})"
            )
        repository.delete_campaign_ledger(session, [campaign_id])
        session.delete(campaign)
        session.commit()

        self._logger.info("Campaign deleted", extra={"campaign_id": str(campaign_id)})

    def list_campaigns(
        self,
        session: Session,
        status: CampaignStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[NotificationCampaign], int]:
        query = select(NotificationCampaign)
        count_query = select(func.count()).select_from(NotificationCampaign)
        if status is not None:
            query = query.where(NotificationCampaign.status == status)
            count_query = count_query.where(NotificationCampaign.status == status)

        campaigns = list(
            session.exec(
                query.order_by(NotificationCampaign.created_at.desc()).offset(offset).limit(limit)
            ).all()
        )
        total = session.exec(count_query).one()
        return campaigns, total

    def get_campaign_statistics(self, session: Session, campaign_id: UUID) -> dict[str, Any]:
        campaign = self.get_campaign(session, campaign_id)
        processed = session.exec(
            select(CampaignRecipient.outcome, func.count())
            .where(CampaignRecipient.campaign_id == campaign_id)
            .group_by(CampaignRecipient.outcome)
        ).all()

        return {
            "campaign_id": str(campaign.id),
            "status": campaign.status.value,
            "total_recipients": campaign.total_recipients,
            "sent_count": campaign.sent_count,
            "delivered_count": campaign.delivered_count,
            "failed_count": campaign.failed_count,
            "opened_count": campaign.opened_count,
            "clicked_count": campaign.clicked_count,
            "bounced_count": campaign.bounced_count,
            "unsubscribed_count": campaign.unsubscribed_count,
            "delivery_rate": campaign.delivery_rate,
            "open_rate": campaign.open_rate,
            "click_rate": campaign.click_rate,
            "bounce_rate": campaign.bounce_rate,
            "unsubscribe_rate": campaign.unsubscribe_rate,
            "total_cost": str(campaign.total_cost),
            "budget_limit": str(campaign.budget_limit) if campaign.budget_limit is not None else None,
            "processed": {outcome.value: count for outcome, count in processed},
        }

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(
        self,
        session: Session,
        campaign_id: UUID,
        from_statuses: tuple[CampaignStatus, ...],
        to_status: CampaignStatus,
        action: str,
        **values: Any,
    ) -> None:
        if repository.transition_campaign(session, campaign_id, from_statuses, to_status, **values):
            session.commit()
            return

        session.rollback()
        campaign = self.get_campaign(session, campaign_id)
        raise InvalidStateError(
            f"Campaign {campaign_id} cannot be {action} from status {campaign.status.value}"
        )

    def schedule_campaign(
        self,
        session: Session,
        campaign_id: UUID,
        start_at: datetime | None = None,
    ) -> NotificationCampaign:
        campaign = self.get_campaign(session, campaign_id)
        start_at = start_at or campaign.scheduled_start_at
        if start_at is None:
            raise ValidationError("A scheduled start time is required", field="scheduled_start_at")

        self._transition(
            session,
            campaign_id,
            (CampaignStatus.DRAFT,),
            CampaignStatus.SCHEDULED,
            "scheduled",
            scheduled_start_at=start_at,
        )
        return self.get_campaign(session, campaign_id)

    def start_campaign(self, session: Session, campaign_id: UUID) -> Future:
        """Move a DRAFT or SCHEDULED campaign to RUNNING and execute it."""
        campaign = self.get_campaign(session, campaign_id)
        if not campaign.can_start():
            raise InvalidStateError(
                f"Campaign {campaign_id} cannot be started from status {campaign.status.value}"
            )
        self._transition(
            session,
            campaign_id,
            STARTABLE_STATUSES,
            CampaignStatus.RUNNING,
            "started",
            started_at=datetime.utcnow(),
        )
        return self.submit_execution(campaign_id)

    def pause_campaign(self, session: Session, campaign_id: UUID) -> None:
        self._transition(session, campaign_id, (CampaignStatus.RUNNING,), CampaignStatus.PAUSED, "paused")

    def resume_campaign(self, session: Session, campaign_id: UUID) -> Future:
        """Move a PAUSED campaign back to RUNNING and continue execution."""
        self._transition(session, campaign_id, (CampaignStatus.PAUSED,), CampaignStatus.RUNNING, "resumed")
        return self.submit_execution(campaign_id)

    def complete_campaign(self, session: Session, campaign_id: UUID) -> None:
        self._transition(
            session,
            campaign_id,
            (CampaignStatus.RUNNING,),
            CampaignStatus.COMPLETED,
            "completed",
            completed_at=datetime.utcnow(),
        )

    def cancel_campaign(self, session: Session, campaign_id: UUID) -> int:
        """Cancel the campaign and its still-PENDING notifications.

        Returns:
            Number of notifications cancelled
        """
        self._transition(
            session,
            campaign_id,
            CANCELLABLE_STATUSES,
            CampaignStatus.CANCELLED,
            "cancelled",
            cancelled_at=datetime.utcnow(),
        )
        return self.dispatcher.cancel_by_campaign(session, campaign_id)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def submit_execution(self, campaign_id: UUID) -> Future:
        return self.executor.submit(self.execute_campaign, campaign_id)

    def execute_campaign(self, campaign_id: UUID) -> CampaignRunResult:
        """Run a campaign in its own session (executor entry point)."""
        with self.session_factory() as session:
            try:
                return self.run_campaign(session, campaign_id)
            except Exception:
                self._logger.error(
                    "Campaign execution failed",
                    extra={"campaign_id": str(campaign_id)},
                    exc_info=True,
                )
                raise

    def _build_request(
        self,
        campaign: NotificationCampaign,
        user_id: UUID,
    ) -> SendNotificationRequest:
        notification_type = campaign.notification_type()
        contact = self.targeting.resolve_contact(user_id, notification_type)
        title = f"Campaign: {campaign.name}"

        return SendNotificationRequest(
            type=notification_type,
            user_id=user_id,
            recipient_email=contact.recipient_email,
            recipient_phone=contact.recipient_phone,
            recipient_name=contact.recipient_name,
            push_token=contact.push_token,
            platform=contact.platform,
            priority=campaign.priority,
            campaign_id=campaign.id,
            template_id=campaign.template_id,
            template_variables={
                "user_id": str(user_id),
                "name": contact.recipient_name or "",
                "campaign_name": campaign.name,
            },
            title=None if campaign.template_id else title,
            content=None if campaign.template_id else f"This is a notification from campaign: {campaign.name}",
            subject=title if notification_type == NotificationType.EMAIL else None,
            tracking_params={
                "campaign_id": str(campaign.id),
                "campaign_type": campaign.type.value,
                "ab_variant": campaign.ab_test_variant,
            },
            source="campaign",
            triggered_by=f"campaign:{campaign.id}",
        )

    def _reserve(self, session: Session, campaign_id: UUID, user_id: UUID) -> bool:
        """Insert the target's ledger row; False if another run already holds it."""
        session.add(
            CampaignRecipient(
                campaign_id=campaign_id,
                user_id=user_id,
                outcome=RecipientOutcome.PROCESSING,
            )
        )
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            self._logger.info(
                "Campaign target already taken by another run",
                extra={"campaign_id": str(campaign_id), "user_id": str(user_id)},
            )
            return False
        return True

    def run_campaign(self, session: Session, campaign_id: UUID) -> CampaignRunResult:
        """Fan a RUNNING campaign out to its targets.

        Stops early when the campaign leaves RUNNING (paused or cancelled
        elsewhere) or when the next send would exceed the budget, in which
        case the campaign is paused. Completes the campaign once every
        target is processed.
        """
        result = CampaignRunResult(campaign_id=campaign_id)
        campaign = self.get_campaign(session, campaign_id)
        if not campaign.is_running():
            self._logger.warning(
                "Campaign is not running, skipping execution",
                extra={"campaign_id": str(campaign_id), "status": campaign.status.value},
            )
            result.final_status = campaign.status
            return result

        targets = self.targeting.resolve_targets(campaign)
        done = set(
            session.exec(
                select(CampaignRecipient.user_id).where(CampaignRecipient.campaign_id == campaign_id)
            ).all()
        )
        if not done:
            campaign.total_recipients = len(targets)
            session.add(campaign)
            session.commit()

        self._logger.info(
            "Executing campaign",
            extra={"campaign_id": str(campaign_id), "targets": len(targets), "already_processed": len(done)},
        )

        for user_id in targets:
            if user_id in done:
                result.skipped += 1
                continue

            # Reload status and total_cost from storage
            session.refresh(campaign)
            if not campaign.is_running():
                self._logger.info(
                    "Campaign left RUNNING, stopping execution",
                    extra={"campaign_id": str(campaign_id), "status": campaign.status.value},
                )
                result.final_status = campaign.status
                return result

            cost = campaign.cost_per_notification
            if cost and not campaign.within_budget(cost):
                self._logger.warning(
                    "Campaign budget exhausted, pausing",
                    extra={
                        "campaign_id": str(campaign_id),
                        "total_cost": str(campaign.total_cost),
                        "budget_limit": str(campaign.budget_limit),
                    },
                )
                repository.transition_campaign(
                    session, campaign_id, (CampaignStatus.RUNNING,), CampaignStatus.PAUSED
                )
                session.commit()
                result.final_status = CampaignStatus.PAUSED
                return result

            if not self._reserve(session, campaign_id, user_id):
                result.skipped += 1
                continue

            request = self._build_request(campaign, user_id)
            try:
                notification = self.dispatcher.send(session, request)
            except Exception as e:
                session.rollback()
                repository.increment_campaign_counter(session, campaign_id, "failed_count")
                repository.settle_campaign_recipient(
                    session, campaign_id, user_id, RecipientOutcome.FAILED, error_message=str(e)[:1000]
                )
                session.commit()
                result.failed += 1
                result.errors.append({"user_id": str(user_id), "error": str(e)})
                self._logger.warning(
                    "Campaign send failed",
                    extra={"campaign_id": str(campaign_id), "user_id": str(user_id), "error": str(e)},
                )
                continue

            repository.increment_campaign_counter(session, campaign_id, "sent_count")
            if cost:
                repository.add_campaign_cost(session, campaign_id, Decimal(cost))
            repository.settle_campaign_recipient(
                session, campaign_id, user_id, RecipientOutcome.SENT, notification_id=notification.id
            )
            session.commit()
            result.sent += 1

        if repository.transition_campaign(
            session,
            campaign_id,
            (CampaignStatus.RUNNING,),
            CampaignStatus.COMPLETED,
            completed_at=datetime.utcnow(),
        ):
            result.final_status = CampaignStatus.COMPLETED
        session.commit()

        self._logger.info("Campaign execution finished", extra=result.to_dict())
        return result
