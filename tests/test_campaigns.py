"""Tests for campaign management, transitions and execution."""

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from notification_engine.errors import InvalidStateError, NotFoundError, ValidationError
from notification_engine.models.campaign import (
    CampaignCreate,
    CampaignRecipient,
    CampaignStatus,
    CampaignType,
    CampaignUpdate,
    NotificationCampaign,
    RecipientOutcome,
)
from notification_engine.models.notification import (
    Notification,
    NotificationStatus,
    NotificationType,
)
from notification_engine.models.template import TemplateCreate, TemplateType
from notification_engine.services.campaigns import CampaignTargeting
from notification_engine.services.templates import create_template, set_active


def _campaign(campaign_service, db_session, targets=None, **overrides) -> NotificationCampaign:
    values = {
        "name": "spring-sale",
        "type": CampaignType.EMAIL_MARKETING,
        "target_user_ids": targets,
    }
    values.update(overrides)
    return campaign_service.create_campaign(db_session, CampaignCreate(**values))


def _reload(db_session, campaign_id) -> NotificationCampaign:
    db_session.expire_all()
    return db_session.get(NotificationCampaign, campaign_id)


def _email_for(user_id) -> str:
    return f"{user_id.hex[:12]}@example.com"


# ============================================================================
# Management
# ============================================================================

class TestManagement:
    """Tests for campaign CRUD."""

    def test_create_starts_as_draft(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session, targets=[uuid4()])

        assert campaign.status == CampaignStatus.DRAFT
        assert campaign.total_cost == Decimal("0")
        assert len(campaign.target_user_ids) == 1

    def test_duplicate_name_is_rejected(self, db_session, campaign_service):
        _campaign(campaign_service, db_session)

        with pytest.raises(ValidationError):
            _campaign(campaign_service, db_session)

    def test_inactive_template_is_rejected(self, db_session, campaign_service):
        template = create_template(
            db_session,
            TemplateCreate(name="promo", type=TemplateType.PROMOTION, content_template="Sale!"),
        )
        set_active(db_session, template.id, False)

        with pytest.raises(InvalidStateError):
            _campaign(campaign_service, db_session, template_id=template.id)

    def test_unknown_template_is_rejected(self, db_session, campaign_service):
        with pytest.raises(NotFoundError):
            _campaign(campaign_service, db_session, template_id=uuid4())

    def test_update_draft(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)

        updated = campaign_service.update_campaign(
            db_session, campaign.id, CampaignUpdate(description="Spring", budget_limit=Decimal("50"))
        )

        assert updated.description == "Spring"
        assert updated.budget_limit == Decimal("50")

    def test_update_rejected_once_started(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)
        campaign_service.start_campaign(db_session, campaign.id)

        with pytest.raises(InvalidStateError):
            campaign_service.update_campaign(db_session, campaign.id, CampaignUpdate(description="Late"))

    def test_delete_draft(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)

        campaign_service.delete_campaign(db_session, campaign.id)

        with pytest.raises(NotFoundError):
            campaign_service.get_campaign(db_session, campaign.id)

    def test_delete_completed_is_rejected(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)
        campaign_service.start_campaign(db_session, campaign.id)

        with pytest.raises(InvalidStateError):
            campaign_service.delete_campaign(db_session, campaign.id)

    def test_list_by_status(self, db_session, campaign_service):
        _campaign(campaign_service, db_session, name="a")
        started = _campaign(campaign_service, db_session, name="b")
        campaign_service.start_campaign(db_session, started.id)

        drafts, draft_total = campaign_service.list_campaigns(db_session, status=CampaignStatus.DRAFT)
        everything, total = campaign_service.list_campaigns(db_session)

        assert draft_total == 1 and drafts[0].name == "a"
        assert total == 2


# ============================================================================
# Transitions
# ============================================================================

class TestTransitions:
    """Tests for the campaign state machine."""

    def test_schedule_requires_start_time(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)

        with pytest.raises(ValidationError):
            campaign_service.schedule_campaign(db_session, campaign.id)

    def test_schedule_from_draft(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)
        start_at = datetime.utcnow() + timedelta(days=1)

        scheduled = campaign_service.schedule_campaign(db_session, campaign.id, start_at=start_at)

        assert scheduled.status == CampaignStatus.SCHEDULED
        assert scheduled.scheduled_start_at == start_at

    def test_start_empty_campaign_completes(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)

        result = campaign_service.start_campaign(db_session, campaign.id).result()

        assert result.final_status == CampaignStatus.COMPLETED
        campaign = _reload(db_session, campaign.id)
        assert campaign.status == CampaignStatus.COMPLETED
        assert campaign.started_at is not None
        assert campaign.total_recipients == 0

    def test_start_twice_is_rejected(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)
        campaign_service.start_campaign(db_session, campaign.id)

        with pytest.raises(InvalidStateError):
            campaign_service.start_campaign(db_session, campaign.id)

    def test_pause_requires_running(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)

        with pytest.raises(InvalidStateError):
            campaign_service.pause_campaign(db_session, campaign.id)

    def test_resume_requires_paused(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)

        with pytest.raises(InvalidStateError):
            campaign_service.resume_campaign(db_session, campaign.id)

    def test_complete_requires_running(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)

        with pytest.raises(InvalidStateError):
            campaign_service.complete_campaign(db_session, campaign.id)

    def test_completed_campaign_cannot_be_cancelled(self, db_session, campaign_service):
        campaign = _campaign(campaign_service, db_session)
        campaign_service.start_campaign(db_session, campaign.id)

        with pytest.raises(InvalidStateError):
            campaign_service.cancel_campaign(db_session, campaign.id)

    def test_unknown_campaign_raises_not_found(self, db_session, campaign_service):
        with pytest.raises(NotFoundError):
            campaign_service.pause_campaign(db_session, uuid4())

    def test_cancel_cancels_pending_notifications(self, db_session, campaign_service, make_notification):
        campaign = _campaign(campaign_service, db_session)
        campaign_id = campaign.id
        make_notification(campaign_id=campaign_id)
        make_notification(campaign_id=campaign_id)
        make_notification(campaign_id=campaign_id, status=NotificationStatus.SENT)
        make_notification()

        cancelled = campaign_service.cancel_campaign(db_session, campaign_id)

        assert cancelled == 2
        assert _reload(db_session, campaign_id).status == CampaignStatus.CANCELLED
        statuses = db_session.exec(
            select(Notification.status).where(Notification.campaign_id == campaign_id)
        ).all()
        assert sorted(s.value for s in statuses) == ["cancelled", "cancelled", "sent"]

    def test_paused_run_stops_early(self, db_session, campaign_service):
        """A run that finds the campaign no longer RUNNING sends nothing."""
        campaign = _campaign(campaign_service, db_session, targets=[uuid4()])
        campaign.status = CampaignStatus.PAUSED
        db_session.add(campaign)
        db_session.commit()

        result = campaign_service.execute_campaign(campaign.id)

        assert result.sent == 0
        assert result.final_status == CampaignStatus.PAUSED


# ============================================================================
# Execution
# ============================================================================

class TestExecution:
    """Tests for fanning a campaign out to its targets."""

    def test_sends_one_notification_per_target(self, db_session, campaign_service, provider):
        targets = [uuid4() for _ in range(3)]
        campaign = _campaign(campaign_service, db_session, targets=targets)

        result = campaign_service.start_campaign(db_session, campaign.id).result()

        assert result.sent == 3
        campaign = _reload(db_session, campaign.id)
        assert campaign.status == CampaignStatus.COMPLETED
        assert campaign.total_recipients == 3
        assert campaign.sent_count == 3
        assert sorted(item["recipient"] for item in provider.sent) == sorted(_email_for(u) for u in targets)
        notifications = db_session.exec(select(Notification)).all()
        assert {n.campaign_id for n in notifications} == {campaign.id}
        assert all(n.subject == "Campaign: spring-sale" for n in notifications)

    def test_counters_split_sent_and_failed(self, db_session, campaign_service, provider):
        targets = [uuid4() for _ in range(5)]
        provider.fail_for(_email_for(targets[1]))
        provider.fail_for(_email_for(targets[3]))
        campaign = _campaign(campaign_service, db_session, targets=targets)

        result = campaign_service.start_campaign(db_session, campaign.id).result()

        assert (result.sent, result.failed) == (3, 2)
        campaign = _reload(db_session, campaign.id)
        assert campaign.sent_count == 3
        assert campaign.failed_count == 2
        assert campaign.status == CampaignStatus.COMPLETED

    def test_sms_campaign_uses_sms_channel(self, db_session, campaign_service, provider):
        campaign = _campaign(
            campaign_service, db_session, targets=[uuid4()], type=CampaignType.SMS_MARKETING
        )

        campaign_service.start_campaign(db_session, campaign.id).result()

        notification = db_session.exec(select(Notification)).one()
        assert notification.type == NotificationType.SMS
        assert provider.sent[0]["channel"] == "sms"

    def test_template_campaign_renders_per_user(self, db_session, campaign_service, provider):
        template = create_template(
            db_session,
            TemplateCreate(
                name="promo",
                type=TemplateType.PROMOTION,
                title_template="{{campaign_name}} for {{name}}",
                content_template="Hi {{name}}",
                subject_template="{{campaign_name}}",
            ),
        )
        campaign = _campaign(campaign_service, db_session, targets=[uuid4()], template_id=template.id)

        campaign_service.start_campaign(db_session, campaign.id).result()

        notification = db_session.exec(select(Notification)).one()
        assert notification.title == "spring-sale for Ana"
        assert notification.subject == "spring-sale"
        assert notification.template_id == template.id

    def test_budget_exhaustion_pauses_campaign(self, db_session, campaign_service):
        targets = [uuid4() for _ in range(15)]
        campaign = _campaign(
            campaign_service,
            db_session,
            targets=targets,
            budget_limit=Decimal("10"),
            cost_per_notification=Decimal("1"),
        )

        result = campaign_service.start_campaign(db_session, campaign.id).result()

        assert result.sent == 10
        assert result.final_status == CampaignStatus.PAUSED
        campaign = _reload(db_session, campaign.id)
        assert campaign.status == CampaignStatus.PAUSED
        assert campaign.sent_count == 10
        assert campaign.total_cost == Decimal("10")

    def test_resume_skips_processed_targets(self, db_session, campaign_service, provider):
        """Resuming after a budget pause only sends to unprocessed targets."""
        targets = [uuid4() for _ in range(15)]
        campaign = _campaign(
            campaign_service,
            db_session,
            targets=targets,
            budget_limit=Decimal("10"),
            cost_per_notification=Decimal("1"),
        )
        campaign_service.start_campaign(db_session, campaign.id).result()

        campaign = _reload(db_session, campaign.id)
        campaign.budget_limit = Decimal("20")
        db_session.add(campaign)
        db_session.commit()

        result = campaign_service.resume_campaign(db_session, campaign.id).result()

        assert result.sent == 5
        assert result.skipped == 10
        campaign = _reload(db_session, campaign.id)
        assert campaign.status == CampaignStatus.COMPLETED
        assert campaign.sent_count == 15
        assert campaign.total_recipients == 15
        recipients = [item["recipient"] for item in provider.sent]
        assert len(recipients) == len(set(recipients)) == 15
        ledger = db_session.exec(
            select(CampaignRecipient).where(CampaignRecipient.campaign_id == campaign.id)
        ).all()
        assert len(ledger) == 15

    def test_target_taken_by_overlapping_run_is_skipped(self, engine, db_session, campaign_service, provider):
        """A target another run of the same campaign already holds is not sent again."""
        first, second = uuid4(), uuid4()
        campaign_id = _campaign(campaign_service, db_session, targets=[first, second]).id
        resolve_contact = campaign_service.targeting.resolve_contact

        def resolve_while_other_run_takes_second(user_id, notification_type):
            if user_id == first:
                with Session(engine) as other:
                    other.add(
                        CampaignRecipient(
                            campaign_id=campaign_id, user_id=second, outcome=RecipientOutcome.PROCESSING
                        )
                    )
                    other.commit()
            return resolve_contact(user_id, notification_type)

        with patch.object(
            campaign_service.targeting, "resolve_contact", side_effect=resolve_while_other_run_takes_second
        ):
            result = campaign_service.start_campaign(db_session, campaign_id).result()

        assert (result.sent, result.failed, result.skipped) == (1, 0, 1)
        assert [item["recipient"] for item in provider.sent] == [_email_for(first)]
        campaign = _reload(db_session, campaign_id)
        assert campaign.sent_count == 1
        assert campaign.status == CampaignStatus.COMPLETED

    def test_ledger_rows_are_settled(self, db_session, campaign_service, provider):
        targets = [uuid4() for _ in range(2)]
        provider.fail_for(_email_for(targets[1]))
        campaign_id = _campaign(campaign_service, db_session, targets=targets).id

        campaign_service.start_campaign(db_session, campaign_id).result()

        db_session.expire_all()
        ledger = {
            row.user_id: row
            for row in db_session.exec(
                select(CampaignRecipient).where(CampaignRecipient.campaign_id == campaign_id)
            ).all()
        }
        assert ledger[targets[0]].outcome == RecipientOutcome.SENT
        assert ledger[targets[0]].notification_id is not None
        assert ledger[targets[1]].outcome == RecipientOutcome.FAILED
        assert "Gateway rejected message" in ledger[targets[1]].error_message

    def test_statistics(self, db_session, campaign_service, provider):
        targets = [uuid4() for _ in range(4)]
        provider.fail_for(_email_for(targets[0]))
        campaign = _campaign(campaign_service, db_session, targets=targets)
        campaign_service.start_campaign(db_session, campaign.id).result()

        db_session.expire_all()
        stats = campaign_service.get_campaign_statistics(db_session, campaign.id)

        assert stats["status"] == "completed"
        assert stats["sent_count"] == 3
        assert stats["failed_count"] == 1
        assert stats["processed"] == {"sent": 3, "failed": 1}


# ============================================================================
# Targeting
# ============================================================================

class TestTargeting:
    def test_explicit_targets_are_deduplicated_and_capped(self):
        first, second, third = uuid4(), uuid4(), uuid4()
        campaign = NotificationCampaign(
            name="cap",
            type=CampaignType.NEWSLETTER,
            target_user_ids=[str(first), str(first), str(second), str(third)],
            max_recipients=2,
        )

        assert CampaignTargeting().resolve_targets(campaign) == [first, second]

    def test_no_targets(self):
        campaign = NotificationCampaign(name="empty", type=CampaignType.NEWSLETTER)

        assert CampaignTargeting().resolve_targets(campaign) == []
