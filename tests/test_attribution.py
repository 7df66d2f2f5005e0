"""
Tests for referral links, click tracking and lead attribution.

Attribution priority: cookie, email match, phone match, direct.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from database.models import (
    AffiliateBonding,
    AttributionMethod,
    Lead,
    LeadStatus,
    LinkClick,
    MarketingLink,
    UserRole,
)
from referrals.attribution import (
    get_attribution,
    get_commission_rate,
    get_referrer_attribution_stats,
    normalize_phone,
    referrer_key,
    save_lead_attribution,
)
from referrals.commissions import calculate_commission, get_earnings_summary
from referrals.links import (
    ClickMetadata,
    LinkError,
    LinkNotFoundError,
    auto_generate_referral_links,
    build_tracking_url,
    record_link_click,
)
from referrals.tracking_codes import customize_tracking_code


@pytest.fixture
def affiliate(make_profile):
    return make_profile(role=UserRole.AFFILIATE, username="amy", tracking_code="TGP-100001")


@pytest.fixture
def affiliate_links(session, affiliate):
    return auto_generate_referral_links(session, affiliate, affiliate.tracking_code)


def _lead(session, **fields):
    fields.setdefault("first_name", "Lee")
    fields.setdefault("last_name", "Doe")
    fields.setdefault("email", "lee@example.com")
    fields.setdefault("phone", "5550001111")
    lead = Lead(status=fields.pop("status", LeadStatus.NEW), **fields)
    session.add(lead)
    session.flush()
    return lead


class TestLinks:

    def test_tracking_url_parameters(self):
        url = build_tracking_url("https://site.test/form?x=1", "abc", source="s", medium="m")
        assert url == "https://site.test/form?x=1&ref=abc&utm_source=s&utm_medium=m"

    def test_links_point_at_intake_and_appointment(self, affiliate_links):
        intake, appointment = affiliate_links
        assert intake.code == "tgp-100001-intake"
        assert "/start-filing/form?ref=TGP-100001" in intake.url
        assert appointment.code == "tgp-100001-appt"
        assert "/book-appointment?ref=TGP-100001" in appointment.url
        assert intake.short_url.endswith("/go/tgp-100001-intake")

    def test_link_code_owned_by_another_profile(self, session, make_profile, affiliate_links):
        intruder = make_profile(role=UserRole.CLIENT)
        with pytest.raises(LinkError):
            auto_generate_referral_links(session, intruder, "TGP-100001")

    def test_click_counts_unique_by_ip(self, session, affiliate_links):
        intake, _ = affiliate_links
        record_link_click(session, intake.code, ClickMetadata(ip_address="1.1.1.1"))
        record_link_click(session, intake.code, ClickMetadata(ip_address="1.1.1.1"))
        record_link_click(session, intake.code, ClickMetadata(ip_address="2.2.2.2"))

        assert intake.clicks == 3
        assert intake.unique_clicks == 2

    def test_click_normalizes_contact_details(self, session, affiliate_links):
        intake, _ = affiliate_links
        click = record_link_click(session, intake.code, ClickMetadata(
            user_email="Lee@Example.com", user_phone="(555) 000-1111",
        ))
        assert click.user_email == "lee@example.com"
        assert click.user_phone == "5550001111"

    def test_unknown_link(self, session):
        with pytest.raises(LinkNotFoundError):
            record_link_click(session, "missing")


class TestAttributionChain:

    def test_cookie_wins(self, session, affiliate, affiliate_links):
        result = get_attribution(session, cookie_value="amy", email="lee@example.com")
        assert result.method == AttributionMethod.COOKIE
        assert result.confidence == 100
        assert result.referrer_username == "amy"
        assert result.referrer_type == "affiliate"
        assert result.commission_rate == Decimal("50.00")

    def test_unknown_cookie_falls_through_to_direct(self, session):
        result = get_attribution(session, cookie_value="nobody")
        assert result.method == AttributionMethod.DIRECT
        assert result.referrer_username is None
        assert result.success

    def test_email_match(self, session, affiliate_links):
        intake, _ = affiliate_links
        record_link_click(session, intake.code, ClickMetadata(user_email="lee@example.com"))

        result = get_attribution(session, email="LEE@example.com")
        assert result.method == AttributionMethod.EMAIL_MATCH
        assert result.confidence == 90
        assert result.referrer_username == "amy"

    def test_phone_match_uses_last_ten_digits(self, session, affiliate_links):
        intake, _ = affiliate_links
        record_link_click(session, intake.code, ClickMetadata(user_phone="555-000-1111"))

        result = get_attribution(session, email="other@example.com", phone="+1 (555) 000-1111")
        assert result.method == AttributionMethod.PHONE_MATCH
        assert result.confidence == 85

    def test_click_outside_window_ignored(self, session, affiliate_links):
        intake, _ = affiliate_links
        click = record_link_click(session, intake.code, ClickMetadata(user_email="lee@example.com"))
        click.clicked_at = datetime.utcnow() - timedelta(days=15)
        session.flush()

        result = get_attribution(session, email="lee@example.com")
        assert result.method == AttributionMethod.DIRECT

    def test_cross_device_requires_username(self, session, make_profile):
        anonymous = make_profile(role=UserRole.AFFILIATE, tracking_code="TGP-100002")
        intake, _ = auto_generate_referral_links(session, anonymous, anonymous.tracking_code)
        record_link_click(session, intake.code, ClickMetadata(user_email="lee@example.com"))

        result = get_attribution(session, email="lee@example.com")
        assert result.method == AttributionMethod.DIRECT

    def test_short_phone_is_ignored(self, session):
        assert get_attribution(session, phone="12345").method == AttributionMethod.DIRECT

    def test_lookup_failure_returns_unsuccessful_direct(self, session, monkeypatch):
        import referrals.attribution as attribution

        def broken(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(attribution, "find_profile_by_code", broken)
        result = get_attribution(session, cookie_value="amy")

        assert result.method == AttributionMethod.DIRECT
        assert result.confidence == 0
        assert not result.success
        assert result.error


class TestCommissionRates:

    def test_default_rate(self, session, affiliate):
        assert get_commission_rate(session, "amy") == (Decimal("50.00"), "default")

    def test_unknown_referrer_gets_default(self, session):
        rate, source = get_commission_rate(session, "ghost")
        assert source == "default"

    def test_preparer_rate_is_zero(self, session, make_profile):
        make_profile(role=UserRole.TAX_PREPARER, username="prep")
        assert get_commission_rate(session, "prep") == (Decimal("0"), "preparer_bonus")

    def test_bonding_tiers(self, session, affiliate, make_profile):
        preparer = make_profile(role=UserRole.TAX_PREPARER, username="prep")
        session.add(AffiliateBonding(
            affiliate_id=affiliate.id,
            preparer_id=preparer.id,
            commission_structure={
                "tier1": {"count": 0, "rate": 60},
                "tier2": {"count": 2, "rate": 80},
            },
        ))
        session.flush()

        assert get_commission_rate(session, "amy") == (Decimal("60"), "affiliate_bonding")

        for i in range(2):
            _lead(session, email=f"c{i}@example.com", referrer_username="amy", status=LeadStatus.CONVERTED)

        assert get_commission_rate(session, "amy") == (Decimal("80"), "affiliate_bonding")


class TestPersistence:

    def test_save_locks_rate(self, session, affiliate):
        lead = _lead(session)
        result = get_attribution(session, cookie_value="amy")

        saved = save_lead_attribution(session, lead.id, result)

        assert saved.referrer_username == "amy"
        assert saved.attribution_method == AttributionMethod.COOKIE
        assert saved.attribution_confidence == 100
        assert saved.commission_rate == Decimal("50.00")
        assert saved.commission_rate_locked_at is not None

    def test_stats(self, session):
        _lead(session, email="a@example.com", referrer_username="amy", attribution_method=AttributionMethod.COOKIE)
        _lead(session, email="b@example.com", referrer_username="amy", attribution_method=AttributionMethod.EMAIL_MATCH)
        _lead(session, email="c@example.com", referrer_username="amy", attribution_method=AttributionMethod.PHONE_MATCH)
        _lead(session, email="d@example.com", referrer_username="amy", attribution_method=AttributionMethod.REF_PARAM)

        stats = get_referrer_attribution_stats(session, "amy")

        assert stats["total_leads"] == 4
        assert stats["by_method"]["cookie"] == 1
        assert stats["cross_device_rate"] == 50.0

    def test_helpers(self, make_profile):
        assert normalize_phone("+1 (555) 000-1111") == "15550001111"
        profile = make_profile(tracking_code="TGP-100003")
        assert referrer_key(profile) == "TGP-100003"

    def test_earnings_survive_vanity_code(self, session, make_profile):
        profile = make_profile(role=UserRole.AFFILIATE, tracking_code="TGP-100004")
        lead = save_lead_attribution(
            session, _lead(session).id, get_attribution(session, cookie_value="TGP-100004")
        )
        lead.status = LeadStatus.CONVERTED
        calculate_commission(session, lead.id)

        customize_tracking_code(session, profile.id, "acme-tax")

        assert referrer_key(profile) == "TGP-100004"
        assert get_attribution(session, cookie_value="acme-tax").referrer_username == "TGP-100004"
        assert get_earnings_summary(session, referrer_key(profile)).total_earnings == Decimal("50.00")


class TestShortLinkRoute:

    def test_redirect_sets_cookie_and_records_click(self, client, session, affiliate, affiliate_links):
        session.commit()

        response = client.get(
            "/go/tgp-100001-intake",
            params={"email": "lee@example.com"},
            follow_redirects=False,
        )

        assert response.status_code == 307
        assert "/start-filing/form?ref=TGP-100001" in response.headers["location"]
        cookie = response.headers["set-cookie"]
        assert "referrer_username=amy" in cookie
        assert "Max-Age=1209600" in cookie
        assert "HttpOnly" in cookie

        session.expire_all()
        link = session.query(MarketingLink).filter_by(code="tgp-100001-intake").one()
        assert link.clicks == 1
        assert session.query(LinkClick).filter_by(user_email="lee@example.com").count() == 1

    def test_unknown_link_is_404(self, client):
        response = client.get("/go/nothing-here", follow_redirects=False)
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "NOT_FOUND"
