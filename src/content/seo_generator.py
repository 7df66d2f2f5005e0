"""
City Landing Page Generator

Generates one SEO landing page per city for a campaign:
1. Load the campaign and the most populous cities
2. Generate intro, benefits and FAQs per city with the LLM client
3. Persist each page as published (existing slugs are updated in place)

Cities run concurrently within a batch; batches are spaced out by
batch_delay to stay under provider rate limits.
"""

import asyncio
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.models import Campaign, CampaignStatus, City, PageStatus, SeoLandingPage
from integrations.ai_client import ContentGenerationError, LLMClient
from services.logging_config import log_performance
from .seo_prompts import (
    BENEFIT_COUNT,
    COPYWRITER_SYSTEM,
    FAQ_COUNT,
    JSON_SYSTEM,
    CityData,
    TaxServiceSpec,
    build_benefits_prompt,
    build_faqs_prompt,
    build_intro_prompt,
    parse_json_response,
)

logger = logging.getLogger(__name__)


class CampaignNotFoundError(Exception):
    pass


@dataclass
class CityContent:
    intro: str
    benefits: List[str]
    faqs: List[Dict[str, str]]

    @property
    def word_count(self) -> int:
        return len(self.intro.split())


@dataclass
class CityPageResult:
    city_slug: str
    success: bool
    page_slug: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CampaignGenerationResult:
    campaign_id: UUID
    status: CampaignStatus
    results: List[CityPageResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len([r for r in self.results if r.success])

    @property
    def failed(self) -> int:
        return len([r for r in self.results if not r.success])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": str(self.campaign_id),
            "status": self.status.value,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [
                {"city": r.city_slug, "error": r.error}
                for r in self.results if not r.success
            ],
        }


# =============================================================================
# CONTENT
# =============================================================================

async def generate_city_content(client: LLMClient, city: CityData, service: TaxServiceSpec) -> CityContent:
    """Generate the three copy sections for one city."""
    intro = await client.generate(build_intro_prompt(city, service), system=COPYWRITER_SYSTEM)
    if not intro or not intro.strip():
        raise ContentGenerationError(f"Empty introduction for {city.slug}")

    benefits = parse_json_response(
        await client.generate(build_benefits_prompt(city, service), system=JSON_SYSTEM),
        "benefits",
    )
    faqs = parse_json_response(
        await client.generate(build_faqs_prompt(city, service), system=JSON_SYSTEM),
        "faqs",
    )

    if not isinstance(benefits, list) or not isinstance(faqs, list):
        raise ContentGenerationError(f"Malformed benefits or FAQs for {city.slug}")

    faqs = [
        {"question": str(f["question"]), "answer": str(f["answer"])}
        for f in faqs
        if isinstance(f, dict) and f.get("question") and f.get("answer")
    ]
    return CityContent(
        intro=intro.strip(),
        benefits=[str(b) for b in benefits][:BENEFIT_COUNT],
        faqs=faqs[:FAQ_COUNT],
    )


def build_page_metadata(city: CityData, service: TaxServiceSpec) -> Dict[str, str]:
    year = datetime.utcnow().year
    location = f"{city.name}, {city.state_code}"
    price = f" Starting at ${service.starting_price}." if service.starting_price is not None else ""
    return {
        "title": f"{service.name} in {location} | {year}",
        "meta_desc": (
            f"Professional {service.name.lower()} for {city.name} residents. "
            f"IRS-certified preparers, maximum refund.{price}"
        )[:500],
        "h1": f"{service.name} in {location}",
    }


def make_page_slug(service_name: str, city_slug: str) -> str:
    service_slug = re.sub(r"\s+", "-", service_name.strip().lower())
    service_slug = re.sub(r"[^a-z0-9-]", "", service_slug)
    return f"{service_slug}-{city_slug}"


# =============================================================================
# PERSISTENCE
# =============================================================================

@contextmanager
def _session_scope(session_factory: Callable[[], Session]):
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _save_page(session: Session, campaign_id: UUID, city_id: UUID, city: CityData,
               service: TaxServiceSpec, content: CityContent) -> SeoLandingPage:
    slug = make_page_slug(service.name, city.slug)
    page = session.execute(
        select(SeoLandingPage).where(SeoLandingPage.slug == slug)
    ).scalars().first()
    if page is None:
        page = SeoLandingPage(slug=slug, campaign_id=campaign_id, city_id=city_id, views=0)
        session.add(page)

    metadata = build_page_metadata(city, service)
    page.title = metadata["title"]
    page.meta_desc = metadata["meta_desc"]
    page.h1 = metadata["h1"]
    page.intro = content.intro
    page.benefits = content.benefits
    page.faqs = content.faqs
    page.status = PageStatus.PUBLISHED
    page.published_at = page.published_at or datetime.utcnow()
    session.flush()
    return page


def _load_cities(session: Session, limit: int) -> List[City]:
    return session.execute(
        select(City).order_by(City.population.desc()).limit(limit)
    ).scalars().all()


# Blocking steps below run via asyncio.to_thread, off the event loop

def _start_generation(
    session_factory: Callable[[], Session],
    campaign_id: UUID,
    cities: Optional[List[str]],
    max_cities: int,
) -> Tuple[TaxServiceSpec, List[Tuple[UUID, CityData]]]:
    with _session_scope(session_factory) as session:
        campaign = session.get(Campaign, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")

        if cities:
            city_rows = session.execute(
                select(City).where(City.slug.in_(cities)).order_by(City.population.desc())
            ).scalars().all()
        else:
            city_rows = _load_cities(session, max_cities)

        service = TaxServiceSpec.from_campaign(campaign)
        targets = [(row.id, CityData.from_model(row)) for row in city_rows]

        campaign.status = CampaignStatus.GENERATING
        campaign.generation_started_at = datetime.utcnow()
        campaign.cities_generated = 0
        campaign.cities_failed = 0
    return service, targets


def _persist_batch(
    session_factory: Callable[[], Session],
    campaign_id: UUID,
    service: TaxServiceSpec,
    batch: List[Tuple[UUID, CityData]],
    outcomes: List[Any],
) -> List[CityPageResult]:
    results = []
    with _session_scope(session_factory) as session:
        for (city_id, city), outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Page generation failed for {city.slug}: {outcome}")
                results.append(CityPageResult(city_slug=city.slug, success=False, error=str(outcome)))
                continue
            page = _save_page(session, campaign_id, city_id, city, service, outcome)
            results.append(CityPageResult(city_slug=city.slug, success=True, page_slug=page.slug))
    return results


def _finish_generation(session_factory: Callable[[], Session], result: CampaignGenerationResult) -> None:
    with _session_scope(session_factory) as session:
        campaign = session.get(Campaign, result.campaign_id)
        campaign.status = result.status
        campaign.cities_generated = result.succeeded
        campaign.cities_failed = result.failed
        if result.status != CampaignStatus.GENERATING:
            campaign.generation_completed_at = datetime.utcnow()


# =============================================================================
# CAMPAIGN GENERATION
# =============================================================================

@log_performance("generate_city_pages")
async def generate_city_pages(
    session_factory: Callable[[], Session],
    campaign_id: UUID,
    client: LLMClient,
    cities: Optional[List[str]] = None,
    batch_size: Optional[int] = None,
    batch_delay: Optional[float] = None,
) -> CampaignGenerationResult:
    """
    Generate landing pages for a campaign.

    Args:
        session_factory: Callable returning a new Session
        campaign_id: Campaign to generate
        client: LLM client
        cities: Optional city slugs; defaults to the most populous cities
        batch_size: Cities generated concurrently
        batch_delay: Seconds to wait between batches
    """
    ai = get_settings().ai
    batch_size = batch_size or ai.batch_size
    batch_delay = ai.batch_delay if batch_delay is None else batch_delay

    service, targets = await asyncio.to_thread(
        _start_generation, session_factory, campaign_id, cities, ai.max_cities
    )

    logger.info(f"Generating {len(targets)} city pages for campaign {campaign_id}")
    result = CampaignGenerationResult(campaign_id=campaign_id, status=CampaignStatus.GENERATING)

    for start in range(0, len(targets), batch_size):
        batch = targets[start:start + batch_size]
        outcomes = await asyncio.gather(
            *(generate_city_content(client, city, service) for _, city in batch),
            return_exceptions=True,
        )

        result.results.extend(
            await asyncio.to_thread(_persist_batch, session_factory, campaign_id, service, batch, outcomes)
        )

        logger.info(f"Batch {start // batch_size + 1} done: {result.succeeded} ok, {result.failed} failed")
        if start + batch_size < len(targets) and batch_delay > 0:
            await asyncio.sleep(batch_delay)

    if result.failed == 0:
        result.status = CampaignStatus.COMPLETED
    elif result.succeeded == 0:
        result.status = CampaignStatus.FAILED
    else:
        result.status = CampaignStatus.GENERATING

    await asyncio.to_thread(_finish_generation, session_factory, result)

    logger.info(
        f"Campaign {campaign_id} finished: {result.status.value} "
        f"({result.succeeded} generated, {result.failed} failed)"
    )
    return result


def create_campaign(session: Session, name: str, service_name: str, created_by_id: Optional[UUID] = None,
                    **fields) -> Campaign:
    campaign = Campaign(
        name=name,
        service_name=service_name,
        status=CampaignStatus.DRAFT,
        created_by_id=created_by_id,
        **{k: v for k, v in fields.items() if v is not None},
    )
    session.add(campaign)
    session.flush()
    logger.info(f"Created campaign {campaign.id}: {name}")
    return campaign


def get_published_page(session: Session, slug: str, count_view: bool = True) -> Optional[SeoLandingPage]:
    """Published page by slug; counts a view when found."""
    page = session.execute(
        select(SeoLandingPage).where(
            SeoLandingPage.slug == slug,
            SeoLandingPage.status == PageStatus.PUBLISHED,
        )
    ).scalars().first()
    if page is not None and count_view:
        page.views = (page.views or 0) + 1
        session.flush()
    return page


def page_to_dict(page: SeoLandingPage) -> Dict[str, Any]:
    return {
        "slug": page.slug,
        "title": page.title,
        "meta_desc": page.meta_desc,
        "h1": page.h1,
        "intro": page.intro,
        "benefits": page.benefits or [],
        "faqs": page.faqs or [],
        "views": page.views,
        "city": page.city.name if page.city else None,
        "published_at": page.published_at.isoformat() if page.published_at else None,
    }
