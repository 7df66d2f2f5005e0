"""
Landing Page Content API.

- POST /api/admin/campaigns: create a campaign
- POST /api/admin/campaigns/{id}/generate: generate city pages with the LLM
- GET  /api/landing-pages/{slug}: public page, counts a view
"""

import asyncio
import logging
from decimal import Decimal
from typing import Callable, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from content.seo_generator import (
    CampaignNotFoundError,
    create_campaign,
    generate_city_pages,
    get_published_page,
    page_to_dict,
)
from database.connection import get_session
from database.models import Campaign, CampaignStatus
from integrations.ai_client import LLMClient
from web.auth import UserContext, require_admin
from web.dependencies import get_llm_client, get_session_factory
from web.helpers.error_responses import ErrorCode, raise_api_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Landing Pages"])


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    service_name: str = Field(..., min_length=1, max_length=200)
    service_type: str = Field("personal", max_length=32)
    starting_price: Optional[Decimal] = Field(None, ge=0)
    average_refund: Optional[Decimal] = Field(None, ge=0)
    turnaround: Optional[str] = Field(None, max_length=100)
    specialties: List[str] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    cities: Optional[List[str]] = Field(None, description="City slugs; defaults to the largest cities")
    batch_size: Optional[int] = Field(None, ge=1, le=50)


@router.post("/api/admin/campaigns", status_code=201)
def add_campaign(
    body: CampaignCreate,
    admin: UserContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    campaign = create_campaign(
        session,
        created_by_id=admin.profile_id,
        **body.model_dump(),
    )
    return {
        "success": True,
        "campaign": {"id": str(campaign.id), "name": campaign.name, "status": campaign.status.value},
    }


def _ensure_can_generate(session_factory: Callable[[], Session], campaign_id: UUID) -> None:
    with session_factory() as session:
        campaign = session.get(Campaign, campaign_id)
        if campaign is None:
            raise_api_error(ErrorCode.NOT_FOUND, "Campaign not found")
        # A partial run leaves GENERATING with counts and may be retried
        in_progress = (
            campaign.status == CampaignStatus.GENERATING
            and not campaign.cities_generated
            and not campaign.cities_failed
        )
        if in_progress:
            raise_api_error(ErrorCode.CONFLICT, "Campaign generation already in progress")


@router.post("/api/admin/campaigns/{campaign_id}/generate")
async def generate_campaign(
    campaign_id: UUID,
    body: Optional[GenerateRequest] = None,
    admin: UserContext = Depends(require_admin),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    client: LLMClient = Depends(get_llm_client),
):
    """Runs generation in the request; large campaigns should use small batches."""
    body = body or GenerateRequest()
    await asyncio.to_thread(_ensure_can_generate, session_factory, campaign_id)

    try:
        result = await generate_city_pages(
            session_factory, campaign_id, client,
            cities=body.cities, batch_size=body.batch_size,
        )
    except CampaignNotFoundError:
        raise_api_error(ErrorCode.NOT_FOUND, "Campaign not found")

    logger.info(f"Admin {admin.profile_id} generated campaign {campaign_id}")
    return {"success": True, **result.to_dict()}


@router.get("/api/landing-pages/{slug}")
def landing_page(slug: str, session: Session = Depends(get_session)):
    page = get_published_page(session, slug)
    if page is None:
        raise_api_error(ErrorCode.NOT_FOUND, "Page not found")
    return page_to_dict(page)
