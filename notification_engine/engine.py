"""Notification engine facade.

Wires the dispatch engine, campaign service and sweep workers together and
exposes the engine's operations without requiring callers to manage
sessions.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future
from uuid import UUID

from sqlmodel import Session

from notification_engine.config import DispatchPolicy, get_settings
from notification_engine.db.session import new_session
from notification_engine.models.notification import Notification, SendNotificationRequest
from notification_engine.services.campaigns import CampaignService, CampaignTargeting
from notification_engine.services.dispatch import NotificationDispatcher
from notification_engine.workers.base import WorkerBase, WorkerResult
from notification_engine.workers.campaign_worker import CampaignScheduleWorker
from notification_engine.workers.notification_workers import (
    CleanupWorker,
    ExpiryWorker,
    PendingNotificationWorker,
    RetryNotificationWorker,
)

logger = logging.getLogger(__name__)


class NotificationEngine:
    """Entry point to the notification engine.

    Usage:
        engine = NotificationEngine()
        notification = engine.send(request)
        engine.run_retry_sweep()
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = new_session,
        dispatcher: NotificationDispatcher | None = None,
        campaign_service: CampaignService | None = None,
        targeting: CampaignTargeting | None = None,
        policy: DispatchPolicy | None = None,
        batch_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.policy = policy or (dispatcher.policy if dispatcher else DispatchPolicy.from_settings(settings))
        self.dispatcher = dispatcher or NotificationDispatcher(policy=self.policy)
        self.campaigns = campaign_service or CampaignService(
            self.dispatcher,
            targeting=targeting,
            session_factory=session_factory,
        )

        batch_size = batch_size or settings.WORKER_BATCH_SIZE
        self.expiry_worker = ExpiryWorker(batch_size=batch_size)
        self.pending_worker = PendingNotificationWorker(self.dispatcher, self.policy, batch_size)
        self.retry_worker = RetryNotificationWorker(self.dispatcher, self.policy, batch_size)
        self.campaign_worker = CampaignScheduleWorker(self.campaigns, batch_size)
        self.cleanup_worker = CleanupWorker(self.policy, batch_size)

    @property
    def workers(self) -> list[WorkerBase]:
        """Sweep workers in the order one runner cycle executes them."""
        return [
            self.expiry_worker,
            self.pending_worker,
            self.retry_worker,
            self.campaign_worker,
            self.cleanup_worker,
        ]

    # Notifications

    def send(self, request: SendNotificationRequest) -> Notification:
        with self.session_factory() as session:
            return self.dispatcher.send(session, request)

    def send_bulk(self, requests: list[SendNotificationRequest]) -> list[Notification]:
        with self.session_factory() as session:
            return self.dispatcher.send_bulk(session, requests)

    def cancel(self, notification_id: UUID) -> Notification:
        with self.session_factory() as session:
            return self.dispatcher.cancel(session, notification_id)

    def mark_opened(self, notification_id: UUID) -> Notification:
        with self.session_factory() as session:
            return self.dispatcher.mark_opened(session, notification_id)

    def mark_clicked(self, notification_id: UUID) -> Notification:
        with self.session_factory() as session:
            return self.dispatcher.mark_clicked(session, notification_id)

    # Campaigns

    def start_campaign(self, campaign_id: UUID) -> Future:
        with self.session_factory() as session:
            return self.campaigns.start_campaign(session, campaign_id)

    def pause_campaign(self, campaign_id: UUID) -> None:
        with self.session_factory() as session:
            self.campaigns.pause_campaign(session, campaign_id)

    def resume_campaign(self, campaign_id: UUID) -> Future:
        with self.session_factory() as session:
            return self.campaigns.resume_campaign(session, campaign_id)

    def cancel_campaign(self, campaign_id: UUID) -> int:
        with self.session_factory() as session:
            return self.campaigns.cancel_campaign(session, campaign_id)

    # Periodic hooks

    def _run(self, worker: WorkerBase) -> WorkerResult:
        with self.session_factory() as session:
            return worker.run(session)

    def run_pending_sweep(self) -> WorkerResult:
        return self._run(self.pending_worker)

    def run_retry_sweep(self) -> WorkerResult:
        return self._run(self.retry_worker)

    def run_expiry_sweep(self) -> WorkerResult:
        return self._run(self.expiry_worker)

    def run_cleanup_sweep(self) -> WorkerResult:
        return self._run(self.cleanup_worker)

    def run_scheduled_campaign_sweep(self) -> WorkerResult:
        return self._run(self.campaign_worker)


_engine_instance: NotificationEngine | None = None


def get_engine() -> NotificationEngine:
    """Get or create the engine singleton.

    Returns:
        NotificationEngine: The singleton engine instance
    """
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = NotificationEngine()
    return _engine_instance
