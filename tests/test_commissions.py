"""
Tests for the commission lifecycle, earnings summary and payouts.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from database.models import (
    Commission,
    CommissionStatus,
    Lead,
    LeadStatus,
    Payout,
    PayoutStatus,
    UserRole,
)
from referrals.commissions import (
    CommissionError,
    PayoutError,
    auto_approve_commissions,
    calculate_commission,
    get_commission_history,
    get_earnings_summary,
    mark_commission_paid,
    request_payout,
    update_commission_status,
)


def _referred_lead(session, email="lead@example.com", rate="50.00", status=LeadStatus.NEW, referrer="amy"):
    lead = Lead(
        first_name="Lee",
        last_name="Doe",
        email=email,
        phone="5550001111",
        status=status,
        referrer_username=referrer,
        referrer_type="affiliate",
        commission_rate=Decimal(rate),
        commission_rate_locked_at=datetime.utcnow(),
    )
    session.add(lead)
    session.flush()
    return lead


def _approved_commission(session, email, amount="50.00"):
    lead = _referred_lead(session, email=email, rate=amount, status=LeadStatus.CONVERTED)
    commission = calculate_commission(session, lead.id)
    commission.status = CommissionStatus.APPROVED
    session.flush()
    return commission


class TestCalculation:

    def test_converted_lead_gets_pending_commission(self, session):
        lead = _referred_lead(session, status=LeadStatus.CONVERTED)
        commission = calculate_commission(session, lead.id)

        assert commission.status == CommissionStatus.PENDING
        assert commission.amount == Decimal("50.00")
        assert commission.referrer_username == "amy"

    def test_calculation_is_idempotent(self, session):
        lead = _referred_lead(session, status=LeadStatus.CONVERTED)
        first = calculate_commission(session, lead.id)
        second = calculate_commission(session, lead.id)
        assert first.id == second.id
        assert session.query(Commission).count() == 1

    def test_not_converted(self, session):
        lead = _referred_lead(session, status=LeadStatus.QUALIFIED)
        assert calculate_commission(session, lead.id) is None

    def test_zero_rate_creates_nothing(self, session):
        lead = _referred_lead(session, rate="0", status=LeadStatus.CONVERTED)
        assert calculate_commission(session, lead.id) is None

    def test_locked_rate_is_used(self, session):
        lead = _referred_lead(session, rate="75.00", status=LeadStatus.CONVERTED)
        assert calculate_commission(session, lead.id).amount == Decimal("75.00")

    def test_missing_lead(self, session):
        from uuid import uuid4
        with pytest.raises(CommissionError):
            calculate_commission(session, uuid4())


class TestStatusChanges:

    def test_conversion_creates_commission(self, session):
        lead = _referred_lead(session)
        lead.status = LeadStatus.CONVERTED
        commission = update_commission_status(session, lead.id, LeadStatus.CONVERTED)
        assert commission.status == CommissionStatus.PENDING

    def test_leaving_converted_cancels_pending(self, session):
        lead = _referred_lead(session, status=LeadStatus.CONVERTED)
        calculate_commission(session, lead.id)

        commission = update_commission_status(session, lead.id, LeadStatus.LOST)

        assert commission.status == CommissionStatus.CANCELLED
        assert commission.lead_status == LeadStatus.LOST
        assert commission.notes == "Commission cancelled due to lead status change to lost"

    def test_approved_commission_is_not_cancelled(self, session):
        commission = _approved_commission(session, "a@example.com")
        updated = update_commission_status(session, commission.lead_id, LeadStatus.LOST)
        assert updated.status == CommissionStatus.APPROVED

    def test_no_commission_for_other_statuses(self, session):
        lead = _referred_lead(session)
        assert update_commission_status(session, lead.id, LeadStatus.CONTACTED) is None


class TestApproval:

    def test_auto_approve_after_hold_period(self, session):
        old = _referred_lead(session, email="old@example.com", status=LeadStatus.CONVERTED)
        old.updated_at = datetime.utcnow() - timedelta(days=31)
        recent = _referred_lead(session, email="new@example.com", status=LeadStatus.CONVERTED)
        old_commission = calculate_commission(session, old.id)
        recent_commission = calculate_commission(session, recent.id)
        session.flush()

        approved = auto_approve_commissions(session)

        assert approved == 1
        assert old_commission.status == CommissionStatus.APPROVED
        assert old_commission.approved_at is not None
        assert recent_commission.status == CommissionStatus.PENDING

    def test_mark_paid(self, session):
        commission = _approved_commission(session, "p@example.com")
        paid = mark_commission_paid(session, commission.id)
        assert paid.status == CommissionStatus.PAID
        assert paid.paid_at is not None

    def test_only_approved_can_be_paid(self, session):
        lead = _referred_lead(session, status=LeadStatus.CONVERTED)
        commission = calculate_commission(session, lead.id)
        with pytest.raises(CommissionError, match="Only approved"):
            mark_commission_paid(session, commission.id)


class TestEarnings:

    def test_summary_totals(self, session):
        _approved_commission(session, "a@example.com", "50.00")
        _approved_commission(session, "b@example.com", "30.00")
        pending_lead = _referred_lead(session, email="c@example.com", rate="20.00", status=LeadStatus.CONVERTED)
        calculate_commission(session, pending_lead.id)
        cancelled_lead = _referred_lead(session, email="d@example.com", rate="99.00", status=LeadStatus.CONVERTED)
        calculate_commission(session, cancelled_lead.id)
        update_commission_status(session, cancelled_lead.id, LeadStatus.LOST)
        session.add(Payout(referrer_username="amy", amount=Decimal("25.00"), status=PayoutStatus.REQUESTED))
        session.add(Payout(referrer_username="amy", amount=Decimal("40.00"), status=PayoutStatus.REJECTED))
        session.flush()

        summary = get_earnings_summary(session, "amy")

        assert summary.total_earnings == Decimal("100.00")
        assert summary.pending_earnings == Decimal("20.00")
        assert summary.approved_earnings == Decimal("80.00")
        assert summary.available_balance == Decimal("55.00")
        assert summary.total_leads == 4
        assert summary.average_commission == Decimal("33.33")
        assert summary.this_month_earnings == Decimal("100.00")

    def test_empty_summary(self, session):
        summary = get_earnings_summary(session, "nobody")
        assert summary.total_earnings == Decimal("0")
        assert summary.to_dict()["available_balance"] == 0.0

    def test_history_newest_first(self, session):
        first = _approved_commission(session, "a@example.com")
        first.created_at = datetime.utcnow() - timedelta(days=2)
        second = _approved_commission(session, "b@example.com")
        session.flush()

        history = get_commission_history(session, "amy")
        assert [c.id for c in history] == [second.id, first.id]


class TestPayouts:

    def test_payout_within_balance(self, session):
        _approved_commission(session, "a@example.com", "50.00")
        payout = request_payout(session, "amy", Decimal("50.00"), "paypal", {"email": "amy@example.com"})

        assert payout.status == PayoutStatus.REQUESTED
        assert get_earnings_summary(session, "amy").available_balance == Decimal("0")

    def test_payout_over_balance(self, session):
        _approved_commission(session, "a@example.com", "50.00")
        with pytest.raises(PayoutError, match="Insufficient"):
            request_payout(session, "amy", Decimal("50.01"), "paypal")

    def test_paid_commission_cannot_be_withdrawn_again(self, session):
        commission = _approved_commission(session, "a@example.com", "50.00")
        mark_commission_paid(session, commission.id)

        summary = get_earnings_summary(session, "amy")
        assert summary.paid_earnings == Decimal("50.00")
        assert summary.available_balance == Decimal("0")
        with pytest.raises(PayoutError, match="Insufficient"):
            request_payout(session, "amy", Decimal("50.00"), "paypal")

    def test_non_positive_amount(self, session):
        with pytest.raises(PayoutError):
            request_payout(session, "amy", Decimal("0"), "paypal")


class TestEarningsApi:

    def test_summary_and_payout(self, client, session, make_profile, auth_headers):
        profile = make_profile(role=UserRole.AFFILIATE, username="amy")
        _approved_commission(session, "a@example.com", "50.00")
        session.commit()
        headers = auth_headers(profile)

        summary = client.get("/api/earnings/summary", headers=headers)
        assert summary.status_code == 200
        assert summary.json()["data"]["available_balance"] == 50.0

        too_much = client.post(
            "/api/earnings/payouts", json={"amount": "75.00", "payment_method": "paypal"}, headers=headers
        )
        assert too_much.status_code == 400

        ok = client.post(
            "/api/earnings/payouts", json={"amount": "20.00", "payment_method": "paypal"}, headers=headers
        )
        assert ok.status_code == 201

        payouts = client.get("/api/earnings/payouts", headers=headers).json()["data"]
        assert len(payouts) == 1

    def test_admin_actions(self, client, session, make_profile, auth_headers):
        admin = make_profile(role=UserRole.ADMIN, username="boss")
        affiliate = make_profile(role=UserRole.AFFILIATE, username="amy")
        commission = _approved_commission(session, "a@example.com")
        session.commit()

        forbidden = client.post(f"/api/admin/commissions/{commission.id}/paid", headers=auth_headers(affiliate))
        assert forbidden.status_code == 403

        paid = client.post(f"/api/admin/commissions/{commission.id}/paid", headers=auth_headers(admin))
        assert paid.status_code == 200

        again = client.post(f"/api/admin/commissions/{commission.id}/paid", headers=auth_headers(admin))
        assert again.status_code == 409

        approve = client.post("/api/admin/commissions/auto-approve", headers=auth_headers(admin))
        assert approve.json()["approved"] == 0
