"""Notification sweep workers.

- PendingNotificationWorker: dispatches due PENDING notifications
- RetryNotificationWorker: re-dispatches FAILED notifications with retries
  left once their last error is older than the cool-down
- ExpiryWorker: cancels PENDING notifications past their expiry
- CleanupWorker: deletes finished records older than the retention window

Delivery failures are persisted by the dispatch engine itself, so the
failure hooks here only log.
"""

import logging
from uuid import UUID

from sqlmodel import Session

from notification_engine.config import DispatchPolicy
from notification_engine.models.notification import Notification
from notification_engine.services import repository
from notification_engine.services.dispatch import NotificationDispatcher
from notification_engine.workers.base import WorkerBase

logger = logging.getLogger(__name__)


class _DispatchWorker(WorkerBase[Notification]):
    """Shared plumbing for workers that run delivery attempts."""

    error_code = "SEND_ERROR"

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        policy: DispatchPolicy | None = None,
        batch_size: int = 50,
    ) -> None:
        super().__init__(batch_size=batch_size)
        self.dispatcher = dispatcher
        self.policy = policy or dispatcher.policy

    def process_item(self, session: Session, item: Notification) -> None:
        self.dispatcher.dispatch_notification(session, item, self.error_code, now=self.now)

    def mark_failed(self, session: Session, item: Notification, error: str, can_retry: bool) -> None:
        logger.info(
            f"[{self.worker_name}] Delivery attempt failed",
            extra={
                "notification_id": str(item.id),
                "retry_count": item.retry_count,
                "max_retry_count": item.max_retry_count,
                "can_retry": can_retry,
            },
        )

    def get_item_id(self, item: Notification) -> UUID:
        return item.id


class PendingNotificationWorker(_DispatchWorker):
    @property
    def worker_name(self) -> str:
        return "PendingNotificationWorker"

    def fetch_pending(self, session: Session) -> list[Notification]:
        return repository.find_pending_notifications(
            session, self.now, self.policy.claim_lease, self.batch_size
        )

    def mark_processing(self, session: Session, item: Notification) -> bool:
        return item.should_send_now(self.now)


class RetryNotificationWorker(_DispatchWorker):
    """Retry pass.

    The retry count is not touched here: the failed attempt that put the
    record in FAILED already counted, so a record makes at most
    max_retry_count attempts in total.
    """

    error_code = "RETRY_ERROR"

    @property
    def worker_name(self) -> str:
        return "RetryNotificationWorker"

    def fetch_pending(self, session: Session) -> list[Notification]:
        return repository.find_retryable_notifications(
            session,
            self.now,
            self.policy.retry_cooldown,
            self.policy.claim_lease,
            self.batch_size,
        )

    def mark_processing(self, session: Session, item: Notification) -> bool:
        return item.can_retry(self.now)


class ExpiryWorker(WorkerBase[Notification]):
    @property
    def worker_name(self) -> str:
        return "ExpiryWorker"

    def fetch_pending(self, session: Session) -> list[Notification]:
        return repository.find_expired_pending(session, self.now, self.batch_size)

    def mark_processing(self, session: Session, item: Notification) -> bool:
        return item.is_pending() and item.is_expired(self.now)

    def process_item(self, session: Session, item: Notification) -> None:
        item.mark_cancelled(self.now)
        item.error_code = "EXPIRED"
        session.add(item)

    def get_item_id(self, item: Notification) -> UUID:
        return item.id


class CleanupWorker(WorkerBase[str]):
    """Retention pass; each item is one bulk delete."""

    STEPS = ("finished_notifications", "exhausted_failures", "cancelled_campaigns")

    def __init__(self, policy: DispatchPolicy, batch_size: int = 50) -> None:
        super().__init__(batch_size=batch_size)
        self.policy = policy

    @property
    def worker_name(self) -> str:
        return "CleanupWorker"

    def fetch_pending(self, session: Session) -> list[str]:
        return list(self.STEPS)

    def process_item(self, session: Session, item: str) -> None:
        cutoff = self.now - self.policy.retention
        if item == "finished_notifications":
            deleted = repository.delete_finished_notifications(session, cutoff)
        elif item == "exhausted_failures":
            deleted = repository.delete_exhausted_failures(session, cutoff)
        else:
            deleted = repository.delete_old_cancelled_campaigns(session, cutoff)

        self.metadata[item] = deleted
        if deleted:
            logger.info(
                f"[{self.worker_name}] Deleted {deleted} {item.replace('_', ' ')}",
                extra={"step": item, "deleted": deleted, "cutoff": cutoff.isoformat()},
            )

    def get_item_id(self, item: str) -> str:
        return item
