"""Campaign API endpoints.

Start and resume return as soon as the campaign is RUNNING; execution
continues in the background.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Query, status

from notification_engine.api.deps import Campaigns, DBSession
from notification_engine.models.campaign import (
    CampaignCreate,
    CampaignListResponse,
    CampaignResponse,
    CampaignStatus,
    CampaignUpdate,
)

router = APIRouter(prefix="/api/campaigns", tags=["Campaigns"])


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
def create_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_data: CampaignCreate,
) -> CampaignResponse:
    """Create a DRAFT campaign."""
    campaign = campaigns.create_campaign(session, campaign_data)
    return CampaignResponse.model_validate(campaign)


@router.get("", response_model=CampaignListResponse)
def list_campaigns_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_status: CampaignStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> CampaignListResponse:
    items, total = campaigns.list_campaigns(session, campaign_status, limit, offset)
    return CampaignListResponse(
        campaigns=[CampaignResponse.model_validate(c) for c in items],
        total=total,
    )


@router.get("/{campaign_id}", response_model=CampaignResponse)
def get_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
) -> CampaignResponse:
    return CampaignResponse.model_validate(campaigns.get_campaign(session, campaign_id))


@router.get("/{campaign_id}/statistics")
def campaign_statistics_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
) -> dict[str, Any]:
    return campaigns.get_campaign_statistics(session, campaign_id)


@router.put("/{campaign_id}", response_model=CampaignResponse)
def update_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
    campaign_data: CampaignUpdate,
) -> CampaignResponse:
    """Edit a DRAFT campaign."""
    campaign = campaigns.update_campaign(session, campaign_id, campaign_data)
    return CampaignResponse.model_validate(campaign)


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
) -> None:
    campaigns.delete_campaign(session, campaign_id)


@router.post("/{campaign_id}/schedule", response_model=CampaignResponse)
def schedule_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
    start_at: datetime | None = Body(default=None, embed=True),
) -> CampaignResponse:
    campaign = campaigns.schedule_campaign(session, campaign_id, start_at)
    return CampaignResponse.model_validate(campaign)


@router.post("/{campaign_id}/start", response_model=CampaignResponse, status_code=status.HTTP_202_ACCEPTED)
def start_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
) -> CampaignResponse:
    campaigns.start_campaign(session, campaign_id)
    session.expire_all()
    return CampaignResponse.model_validate(campaigns.get_campaign(session, campaign_id))


@router.post("/{campaign_id}/pause", response_model=CampaignResponse)
def pause_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
) -> CampaignResponse:
    campaigns.pause_campaign(session, campaign_id)
    session.expire_all()
    return CampaignResponse.model_validate(campaigns.get_campaign(session, campaign_id))


@router.post("/{campaign_id}/resume", response_model=CampaignResponse, status_code=status.HTTP_202_ACCEPTED)
def resume_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
) -> CampaignResponse:
    campaigns.resume_campaign(session, campaign_id)
    session.expire_all()
    return CampaignResponse.model_validate(campaigns.get_campaign(session, campaign_id))


@router.post("/{campaign_id}/cancel")
def cancel_campaign_endpoint(
    session: DBSession,
    campaigns: Campaigns,
    campaign_id: UUID,
) -> dict[str, Any]:
    """Cancel the campaign and its still-pending notifications."""
    cancelled = campaigns.cancel_campaign(session, campaign_id)
    return {"campaign_id": str(campaign_id), "cancelled_notifications": cancelled}
