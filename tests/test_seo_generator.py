"""
Tests for city landing page generation.
"""

import asyncio
from types import SimpleNamespace

import pytest

from config.settings import AISettings
from content.seo_generator import (
    CampaignNotFoundError,
    build_page_metadata,
    create_campaign,
    generate_city_pages,
    get_published_page,
    make_page_slug,
)
from content.seo_prompts import (
    CityData,
    TaxServiceSpec,
    build_benefits_prompt,
    build_faqs_prompt,
    build_intro_prompt,
    parse_json_response,
)
from database.models import Campaign, CampaignStatus, City, SeoLandingPage, UserRole
from integrations.ai_client import ContentGenerationError, OpenAIClient


@pytest.fixture
def cities(session):
    rows = [
        City(name="Austin", state="Texas", state_code="TX", slug="austin-tx",
             population=960000, has_state_tax=False, industries=["Technology"]),
        City(name="Dallas", state="Texas", state_code="TX", slug="dallas-tx",
             population=1300000, has_state_tax=False),
        City(name="Denver", state="Colorado", state_code="CO", slug="denver-co",
             population=710000, state_tax_rate="4.4%"),
    ]
    session.add_all(rows)
    session.commit()
    return rows


@pytest.fixture
def campaign(session):
    campaign = create_campaign(session, "Spring push", "Tax Preparation", starting_price=99)
    session.commit()
    return campaign


def _run(session_factory, campaign_id, llm, **kwargs):
    kwargs.setdefault("batch_delay", 0)
    return asyncio.run(generate_city_pages(session_factory, campaign_id, llm, **kwargs))


class TestPrompts:

    def test_prompts_carry_city_and_service(self):
        city = CityData(name="Austin", state="Texas", state_code="TX", slug="austin-tx", has_state_tax=False)
        service = TaxServiceSpec(name="Tax Preparation", turnaround="48 hours")

        intro = build_intro_prompt(city, service)
        assert "Austin, Texas" in intro
        assert "Texas has no state income tax" in intro
        assert "Turnaround: 48 hours" in intro
        assert '{"benefits":' in build_benefits_prompt(city, service)
        assert '{"faqs":' in build_faqs_prompt(city, service)

    def test_parse_fenced_json(self):
        assert parse_json_response('```json\n{"benefits": ["a"]}\n```', "benefits") == ["a"]

    @pytest.mark.parametrize("text", ["not json", '{"other": []}', "[1, 2]", ""])
    def test_parse_errors(self, text):
        with pytest.raises(ContentGenerationError):
            parse_json_response(text, "benefits")


class TestPageHelpers:

    def test_slug(self):
        assert make_page_slug("Tax Preparation", "austin-tx") == "tax-preparation-austin-tx"
        assert make_page_slug("IRS & Audit Help", "austin-tx") == "irs--audit-help-austin-tx"

    def test_metadata(self):
        city = CityData(name="Austin", state="Texas", state_code="TX", slug="austin-tx")
        metadata = build_page_metadata(city, TaxServiceSpec(name="Tax Preparation", starting_price=99))
        assert metadata["title"].startswith("Tax Preparation in Austin, TX | ")
        assert metadata["h1"] == "Tax Preparation in Austin, TX"
        assert "Starting at $99." in metadata["meta_desc"]


class TestGeneration:

    def test_all_cities_succeed(self, session, session_factory, cities, campaign, fake_llm):
        result = _run(session_factory, campaign.id, fake_llm)

        assert result.status == CampaignStatus.COMPLETED
        assert result.succeeded == 3
        # Three prompts per city
        assert len(fake_llm.prompts) == 9

        session.expire_all()
        page = session.query(SeoLandingPage).filter_by(slug="tax-preparation-austin-tx").one()
        assert page.benefits == ["Fast filing", "Maximum refund"]
        assert page.faqs == [{"question": "When is the deadline?", "answer": "April 15."}]
        assert page.published_at is not None

        stored = session.get(Campaign, campaign.id)
        assert stored.cities_generated == 3
        assert stored.generation_completed_at is not None

    def test_partial_failure_keeps_generating(self, session, session_factory, cities, campaign, fake_llm):
        fake_llm.fail_for = {"Dallas"}
        result = _run(session_factory, campaign.id, fake_llm, batch_size=2)

        assert result.status == CampaignStatus.GENERATING
        assert result.succeeded == 2
        assert result.to_dict()["errors"] == [{"city": "dallas-tx", "error": "provider error for Dallas"}]

        session.expire_all()
        stored = session.get(Campaign, campaign.id)
        assert stored.cities_failed == 1
        assert stored.generation_completed_at is None

    def test_everything_fails(self, session, session_factory, cities, campaign, fake_llm):
        fake_llm.fail_for = {"Austin", "Dallas", "Denver"}
        result = _run(session_factory, campaign.id, fake_llm)
        assert result.status == CampaignStatus.FAILED
        assert session.query(SeoLandingPage).count() == 0

    def test_selected_cities_and_regeneration(self, session, session_factory, cities, campaign, fake_llm):
        _run(session_factory, campaign.id, fake_llm, cities=["denver-co"])
        _run(session_factory, campaign.id, fake_llm, cities=["denver-co"])

        assert session.query(SeoLandingPage).count() == 1

    def test_persistence_runs_in_worker_threads(self, session_factory, cities, campaign, fake_llm, monkeypatch):
        calls = []
        to_thread = asyncio.to_thread

        async def recording(func, *args, **kwargs):
            calls.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording)
        result = _run(session_factory, campaign.id, fake_llm, batch_size=2)

        assert result.succeeded == 3
        assert calls == ["_start_generation", "_persist_batch", "_persist_batch", "_finish_generation"]

    def test_unknown_campaign(self, session_factory, fake_llm):
        from uuid import uuid4
        with pytest.raises(CampaignNotFoundError):
            _run(session_factory, uuid4(), fake_llm)

    def test_view_counter(self, session, session_factory, cities, campaign, fake_llm):
        _run(session_factory, campaign.id, fake_llm, cities=["austin-tx"])

        page = get_published_page(session, "tax-preparation-austin-tx")
        get_published_page(session, "tax-preparation-austin-tx")
        assert page.views == 2
        assert get_published_page(session, "tax-preparation-austin-tx", count_view=False).views == 2
        assert get_published_page(session, "missing") is None


class TestOpenAIClient:

    def _client(self, content):
        async def create(**kwargs):
            self.request = kwargs
            return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

        client = OpenAIClient(AISettings(openai_api_key="sk-test"))
        client._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        return client

    def test_generate_sends_system_prompt(self):
        text = asyncio.run(self._client("  Hello  ").generate("Write", system="Be brief"))
        assert text == "Hello"
        assert [m["role"] for m in self.request["messages"]] == ["system", "user"]

    def test_empty_response(self):
        with pytest.raises(ContentGenerationError):
            asyncio.run(self._client("").generate("Write"))

    def test_missing_key(self):
        client = OpenAIClient(AISettings(openai_api_key=""))
        assert not client.is_configured
        with pytest.raises(ContentGenerationError):
            client.client


class TestContentApi:

    def test_create_generate_and_view(self, client, session, cities, make_profile, auth_headers):
        admin = make_profile(role=UserRole.ADMIN)
        session.commit()

        created = client.post(
            "/api/admin/campaigns",
            json={"name": "Spring", "service_name": "Tax Preparation"},
            headers=auth_headers(admin),
        )
        assert created.status_code == 201
        campaign_id = created.json()["campaign"]["id"]
        assert created.json()["campaign"]["status"] == "draft"

        generated = client.post(
            f"/api/admin/campaigns/{campaign_id}/generate",
            json={"cities": ["austin-tx", "dallas-tx"], "batch_size": 5},
            headers=auth_headers(admin),
        )
        assert generated.status_code == 200
        assert generated.json()["status"] == "completed"
        assert generated.json()["succeeded"] == 2

        page = client.get("/api/landing-pages/tax-preparation-dallas-tx")
        assert page.status_code == 200
        assert page.json()["city"] == "Dallas"
        assert page.json()["views"] == 1

        assert client.get("/api/landing-pages/nope").status_code == 404

    def test_generation_in_progress_conflicts(self, client, session, campaign, make_profile, auth_headers):
        admin = make_profile(role=UserRole.ADMIN)
        campaign.status = CampaignStatus.GENERATING
        session.commit()

        response = client.post(
            f"/api/admin/campaigns/{campaign.id}/generate", json={}, headers=auth_headers(admin)
        )
        assert response.status_code == 409

    def test_admin_only(self, client, session, make_profile, auth_headers):
        affiliate = make_profile(role=UserRole.AFFILIATE)
        session.commit()
        response = client.post(
            "/api/admin/campaigns", json={"name": "x", "service_name": "y"}, headers=auth_headers(affiliate)
        )
        assert response.status_code == 403
