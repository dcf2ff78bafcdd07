"""Scheduled campaign admission worker.

Starts SCHEDULED campaigns whose start time has passed and completes
RUNNING campaigns whose end time has passed, whatever targets remain.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlmodel import Session

from notification_engine.services import repository
from notification_engine.services.campaigns import CampaignService
from notification_engine.workers.base import WorkerBase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CampaignAction:
    campaign_id: UUID
    action: str  # "start" or "complete"


class CampaignScheduleWorker(WorkerBase[CampaignAction]):
    def __init__(self, campaign_service: CampaignService, batch_size: int = 50) -> None:
        super().__init__(batch_size=batch_size)
        self.campaign_service = campaign_service

    @property
    def worker_name(self) -> str:
        return "CampaignScheduleWorker"

    def fetch_pending(self, session: Session) -> list[CampaignAction]:
        to_start = repository.find_campaigns_ready_to_start(session, self.now)
        to_complete = repository.find_campaigns_to_complete(session, self.now)
        actions = [CampaignAction(c.id, "start") for c in to_start]
        actions += [CampaignAction(c.id, "complete") for c in to_complete]
        return actions[: self.batch_size]

    def process_item(self, session: Session, item: CampaignAction) -> None:
        if item.action == "start":
            # Execution continues on the campaign executor
            self.campaign_service.start_campaign(session, item.campaign_id)
        else:
            self.campaign_service.complete_campaign(session, item.campaign_id)

        logger.info(
            f"[{self.worker_name}] Campaign {item.action} triggered by schedule",
            extra={"campaign_id": str(item.campaign_id), "action": item.action},
        )

    def get_item_id(self, item: CampaignAction) -> UUID:
        return item.campaign_id
