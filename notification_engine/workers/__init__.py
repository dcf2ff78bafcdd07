"""Sweep workers of the notification engine.

- Pending pass: dispatch due PENDING notifications
- Retry pass: re-dispatch FAILED notifications after the cool-down
- Expiry pass: cancel PENDING notifications past their expiry
- Cleanup pass: delete finished records past the retention window
- Campaign schedule pass: start and complete scheduled campaigns

The runner (run_worker_once, run_worker_loop) lives in
notification_engine.workers.runner, next to the engine it drives.
"""

from notification_engine.workers.base import (
    WorkerBase,
    WorkerResult,
    WorkerStatus,
)
from notification_engine.workers.campaign_worker import CampaignScheduleWorker
from notification_engine.workers.notification_workers import (
    CleanupWorker,
    ExpiryWorker,
    PendingNotificationWorker,
    RetryNotificationWorker,
)

__all__ = [
    # Base classes
    "WorkerBase",
    "WorkerResult",
    "WorkerStatus",
    # Workers
    "PendingNotificationWorker",
    "RetryNotificationWorker",
    "ExpiryWorker",
    "CleanupWorker",
    "CampaignScheduleWorker",
]
