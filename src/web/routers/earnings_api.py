"""
Earnings API.

Provides endpoints for:
- Referrer earnings summary, commission and payout history
- Payout requests against the available balance
- Admin commission approval and settlement
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from database.connection import get_session
from database.models import Commission, Payout, Profile
from referrals.attribution import referrer_key
from referrals.commissions import (
    CommissionError,
    EarningsSummary,
    PayoutError,
    auto_approve_commissions,
    get_commission_history,
    get_earnings_summary,
    get_payout_history,
    mark_commission_paid,
    request_payout,
)
from web.auth import UserContext, get_current_profile, require_admin
from web.helpers.error_responses import ErrorCode, raise_api_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Earnings"])


class PayoutRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    payment_method: str = Field(..., min_length=1, max_length=50)
    payment_details: Optional[Dict[str, Any]] = None


def _commission_to_dict(commission: Commission) -> Dict[str, Any]:
    return {
        "id": str(commission.id),
        "lead_id": str(commission.lead_id),
        "amount": float(commission.amount),
        "status": commission.status.value,
        "lead_status": commission.lead_status.value,
        "created_at": commission.created_at.isoformat() if commission.created_at else None,
        "approved_at": commission.approved_at.isoformat() if commission.approved_at else None,
        "paid_at": commission.paid_at.isoformat() if commission.paid_at else None,
    }


def _payout_to_dict(payout: Payout) -> Dict[str, Any]:
    return {
        "id": str(payout.id),
        "amount": float(payout.amount),
        "status": payout.status.value,
        "payment_method": payout.payment_method,
        "requested_at": payout.requested_at.isoformat() if payout.requested_at else None,
        "processed_at": payout.processed_at.isoformat() if payout.processed_at else None,
    }


# =============================================================================
# REFERRER
# =============================================================================

@router.get("/api/earnings/summary")
def earnings_summary(
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    key = referrer_key(profile)
    summary = get_earnings_summary(session, key) if key else EarningsSummary()
    return {"success": True, "data": summary.to_dict()}


@router.get("/api/earnings/commissions")
def commission_history(
    limit: int = Query(50, ge=1, le=200),
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    key = referrer_key(profile)
    commissions = get_commission_history(session, key, limit=limit) if key else []
    return {"success": True, "data": [_commission_to_dict(c) for c in commissions]}


@router.get("/api/earnings/payouts")
def payout_history(
    limit: int = Query(20, ge=1, le=100),
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    key = referrer_key(profile)
    payouts = get_payout_history(session, key, limit=limit) if key else []
    return {"success": True, "data": [_payout_to_dict(p) for p in payouts]}


@router.post("/api/earnings/payouts", status_code=201)
def create_payout(
    body: PayoutRequest,
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    key = referrer_key(profile)
    if not key:
        raise_api_error(ErrorCode.INVALID_STATE, "No referral identity on this profile")
    try:
        payout = request_payout(session, key, body.amount, body.payment_method, body.payment_details)
    except PayoutError as e:
        raise_api_error(ErrorCode.INVALID_INPUT, str(e))
    return {"success": True, "data": _payout_to_dict(payout)}


# =============================================================================
# ADMIN
# =============================================================================

@router.post("/api/admin/commissions/auto-approve")
def run_auto_approval(
    admin: UserContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    approved = auto_approve_commissions(session)
    logger.info(f"Admin {admin.profile_id} ran commission auto-approval: {approved} approved")
    return {"success": True, "approved": approved}


@router.post("/api/admin/commissions/{commission_id}/paid")
def settle_commission(
    commission_id: UUID,
    admin: UserContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    try:
        commission = mark_commission_paid(session, commission_id)
    except CommissionError as e:
        if session.get(Commission, commission_id) is None:
            raise_api_error(ErrorCode.NOT_FOUND, "Commission not found")
        raise_api_error(ErrorCode.INVALID_STATE, str(e))
    return {"success": True, "data": _commission_to_dict(commission)}
