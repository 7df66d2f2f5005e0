"""
Tests for tax intake lead submission, routing and the lead pipeline.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from database.models import AttributionMethod, CRMContact, Lead, LeadStatus, UserRole
from leads.intake_service import (
    LeadIntakeRequest,
    LeadNotFoundError,
    list_leads,
    resolve_assignment,
    submit_intake_lead,
    update_lead_status,
)
from referrals.links import ClickMetadata, auto_generate_referral_links, record_link_click


def _request(**overrides):
    data = {
        "first_name": "Lee",
        "last_name": "Doe",
        "email": "Lee.Doe@Example.com",
        "phone": "(555) 000-1111",
        "filing_status": "single",
    }
    data.update(overrides)
    return LeadIntakeRequest(**data)


@pytest.fixture
def preparer(make_profile):
    return make_profile(
        role=UserRole.TAX_PREPARER, username="ira", tracking_code="iw", email="ira@example.com"
    )


@pytest.fixture
def affiliate(make_profile):
    return make_profile(role=UserRole.AFFILIATE, username="amy", tracking_code="TGP-200001")


class TestIntakeRequest:

    def test_email_is_lowercased(self):
        assert _request().email == "lee.doe@example.com"

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            _request(email="not-an-email")

    def test_missing_name(self):
        with pytest.raises(ValidationError):
            _request(first_name="")


class TestSubmission:

    def test_direct_lead(self, session):
        result = submit_intake_lead(session, _request())

        assert result.created
        assert result.attribution.method == AttributionMethod.DIRECT
        assert result.assigned_preparer_id is None
        lead = session.get(Lead, result.lead_id)
        assert lead.status == LeadStatus.NEW
        assert lead.referrer_username is None

    def test_ref_param_outranks_cookie(self, session, preparer, affiliate):
        result = submit_intake_lead(session, _request(), ref_param="iw", cookie_value="amy")

        assert result.attribution.method == AttributionMethod.REF_PARAM
        assert result.attribution.referrer_username == "ira"
        assert result.assigned_preparer_id == preparer.id

    def test_unknown_ref_param_falls_back_to_cookie(self, session, affiliate):
        result = submit_intake_lead(session, _request(), ref_param="nobody", cookie_value="amy")

        assert result.attribution.method == AttributionMethod.COOKIE
        assert result.attribution.referrer_username == "amy"

    def test_affiliate_referral_stays_with_corporate(self, session, affiliate):
        result = submit_intake_lead(session, _request(), cookie_value="amy")

        assert result.assigned_preparer_id is None
        lead = session.get(Lead, result.lead_id)
        assert lead.commission_rate == Decimal("50.00")

    def test_preparer_referral_has_zero_rate(self, session, preparer):
        result = submit_intake_lead(session, _request(), cookie_value="ira")
        lead = session.get(Lead, result.lead_id)
        assert lead.assigned_preparer_id == preparer.id
        assert lead.commission_rate == Decimal("0")

    def test_email_match_from_earlier_click(self, session, affiliate):
        intake, _ = auto_generate_referral_links(session, affiliate, affiliate.tracking_code)
        record_link_click(session, intake.code, ClickMetadata(user_email="lee.doe@example.com"))

        result = submit_intake_lead(session, _request())

        assert result.attribution.method == AttributionMethod.EMAIL_MATCH
        assert result.attribution.referrer_username == "amy"

    def test_resubmission_keeps_first_referrer(self, session, preparer, affiliate):
        first = submit_intake_lead(session, _request(), cookie_value="amy")
        second = submit_intake_lead(session, _request(city="Austin"), ref_param="iw")

        assert not second.created
        assert second.lead_id == first.lead_id
        assert second.attribution.referrer_username == "amy"
        lead = session.get(Lead, first.lead_id)
        assert lead.city == "Austin"
        assert lead.assigned_preparer_id is None
        assert session.query(Lead).count() == 1

    def test_direct_resubmission_can_gain_referrer(self, session, affiliate):
        submit_intake_lead(session, _request())
        second = submit_intake_lead(session, _request(), cookie_value="amy")
        assert second.attribution.referrer_username == "amy"

    def test_crm_contact_synced(self, session):
        submit_intake_lead(session, _request())
        contact = session.query(CRMContact).filter_by(email="lee.doe@example.com").one()
        assert contact.contact_type == "lead"

    def test_crm_failure_does_not_block_intake(self, session, monkeypatch):
        import leads.intake_service as intake_service

        def broken(*args, **kwargs):
            raise RuntimeError("crm down")

        monkeypatch.setattr(intake_service, "sync_lead_to_crm", broken)
        result = submit_intake_lead(session, _request())
        assert result.created


class TestRouting:

    def test_no_referrer(self):
        assert resolve_assignment(None) is None

    def test_client_referrer(self, make_profile):
        assert resolve_assignment(make_profile(role=UserRole.CLIENT)) is None


class TestPipeline:

    def test_conversion_creates_commission(self, session, affiliate):
        result = submit_intake_lead(session, _request(), cookie_value="amy")
        lead = update_lead_status(session, result.lead_id, LeadStatus.CONVERTED)

        assert lead.status == LeadStatus.CONVERTED
        assert lead.commission is not None
        assert lead.commission.amount == Decimal("50.00")

    def test_missing_lead(self, session):
        from uuid import uuid4
        with pytest.raises(LeadNotFoundError):
            update_lead_status(session, uuid4(), LeadStatus.CONTACTED)

    def test_list_by_preparer(self, session, preparer):
        submit_intake_lead(session, _request(), ref_param="iw")
        submit_intake_lead(session, _request(email="other@example.com"))

        leads = list_leads(session, assigned_preparer_id=preparer.id)
        assert [lead.email for lead in leads] == ["lee.doe@example.com"]


class TestIntakeApi:

    def test_submit_with_ref_and_utm(self, client, session, preparer, email_backend):
        session.commit()

        response = client.post(
            "/api/tax-intake/lead?ref=iw&utm_source=facebook",
            json={"first_name": "Lee", "last_name": "Doe", "email": "lee@example.com", "phone": "5550001111"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["created"] is True
        assert data["attribution"]["method"] == "ref_param"
        assert data["assigned_preparer_id"] == str(preparer.id)

        session.expire_all()
        lead = session.query(Lead).filter_by(email="lee@example.com").one()
        assert lead.utm_source == "facebook"

        assert len(email_backend.sent_emails) == 1
        assert email_backend.sent_emails[0].to == "ira@example.com"

    def test_cookie_attribution(self, client, session, affiliate, email_backend):
        session.commit()
        client.cookies.set("referrer_username", "amy")

        response = client.post(
            "/api/tax-intake/lead",
            json={"first_name": "Lee", "last_name": "Doe", "email": "lee@example.com", "phone": "5550001111"},
        )

        assert response.json()["attribution"]["method"] == "cookie"
        # Unassigned leads notify the corporate inbox
        assert email_backend.sent_emails[0].to != "ira@example.com"

    def test_invalid_payload_is_400(self, client):
        response = client.post("/api/tax-intake/lead", json={"first_name": "Lee"})
        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "VALIDATION_ERROR"
        assert body["details"]

    def test_status_update_permissions(self, client, session, preparer, make_profile, auth_headers):
        other_preparer = make_profile(role=UserRole.TAX_PREPARER, username="other")
        lead_id = submit_intake_lead(session, _request(), ref_param="iw").lead_id
        session.commit()

        denied = client.patch(
            f"/api/leads/{lead_id}/status", json={"status": "contacted"}, headers=auth_headers(other_preparer)
        )
        assert denied.status_code == 403

        allowed = client.patch(
            f"/api/leads/{lead_id}/status", json={"status": "contacted"}, headers=auth_headers(preparer)
        )
        assert allowed.status_code == 200
        assert allowed.json()["lead"]["status"] == "contacted"

    def test_leads_scoped_to_referrer(self, client, session, affiliate, make_profile, auth_headers):
        submit_intake_lead(session, _request(), cookie_value="amy")
        submit_intake_lead(session, _request(email="direct@example.com"))
        admin = make_profile(role=UserRole.ADMIN)
        session.commit()

        mine = client.get("/api/leads", headers=auth_headers(affiliate)).json()
        assert [lead["email"] for lead in mine["data"]] == ["lee.doe@example.com"]

        everything = client.get("/api/leads", headers=auth_headers(admin)).json()
        assert everything["pagination"]["count"] == 2
