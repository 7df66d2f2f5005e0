"""
Tax Intake and Lead Pipeline API.

Provides endpoints for:
- Public tax intake form submission with referral attribution
- Lead status updates (commissions follow the status)
- Scoped lead listing
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Cookie, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.connection import get_session
from database.models import Lead, LeadStatus, Profile
from integrations.email_service import EmailService
from leads.intake_service import (
    LeadIntakeRequest,
    LeadNotFoundError,
    get_lead,
    list_leads,
    submit_intake_lead,
    update_lead_status,
)
from referrals.attribution import referrer_key
from referrals.commissions import CommissionError
from web.auth import UserContext, get_current_profile, get_current_user
from web.dependencies import get_email
from web.helpers.error_responses import ErrorCode, raise_api_error
from web.helpers.pagination import paginate, pagination_params
from web.helpers.request_meta import extract_utm_params, get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Leads"])

_COOKIE_NAME = get_settings().referral.cookie_name


class LeadStatusUpdate(BaseModel):
    status: LeadStatus


def _lead_to_dict(lead: Lead) -> Dict[str, Any]:
    return {
        "id": str(lead.id),
        "name": lead.full_name,
        "email": lead.email,
        "phone": lead.phone,
        "status": lead.status.value,
        "referrer_username": lead.referrer_username,
        "referrer_type": lead.referrer_type,
        "attribution_method": lead.attribution_method.value if lead.attribution_method else None,
        "attribution_confidence": lead.attribution_confidence,
        "commission_rate": float(lead.commission_rate) if lead.commission_rate is not None else None,
        "assigned_preparer_id": str(lead.assigned_preparer_id) if lead.assigned_preparer_id else None,
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
    }


# =============================================================================
# INTAKE
# =============================================================================

@router.post("/api/tax-intake/lead", status_code=201)
def submit_tax_intake(
    request: Request,
    payload: LeadIntakeRequest,
    background_tasks: BackgroundTasks,
    ref: Optional[str] = Query(None, max_length=64),
    referrer_cookie: Optional[str] = Cookie(None, alias=_COOKIE_NAME),
    session: Session = Depends(get_session),
    email_service: EmailService = Depends(get_email),
):
    """Public intake form. Attribution: ?ref=, cookie, email match, phone match."""
    # UTM values may arrive on the page URL rather than in the form body
    for key, value in extract_utm_params(request.query_params).items():
        if value and not getattr(payload, key):
            setattr(payload, key, value)

    result = submit_intake_lead(
        session,
        payload,
        ref_param=ref,
        cookie_value=referrer_cookie,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    preparer_email = None
    if result.assigned_preparer_id:
        preparer = session.get(Profile, result.assigned_preparer_id)
        preparer_email = preparer.email if preparer else None

    lead = get_lead(session, result.lead_id)
    background_tasks.add_task(
        email_service.send_lead_notification,
        {
            "name": lead.full_name,
            "email": lead.email,
            "phone": lead.phone,
            "referrer_username": result.attribution.referrer_username,
            "attribution_method": result.attribution.method.value,
        },
        preparer_email,
    )

    return {"success": True, **result.to_dict()}


# =============================================================================
# PIPELINE
# =============================================================================

@router.patch("/api/leads/{lead_id}/status")
def change_lead_status(
    lead_id: UUID,
    body: LeadStatusUpdate,
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Admins update any lead; preparers update leads assigned to them."""
    if not (user.is_admin or user.is_preparer):
        raise_api_error(ErrorCode.FORBIDDEN)

    try:
        lead = get_lead(session, lead_id)
        if not user.is_admin and lead.assigned_preparer_id != user.profile_id:
            raise_api_error(ErrorCode.FORBIDDEN, "Lead is not assigned to you")
        lead = update_lead_status(session, lead_id, body.status)
    except LeadNotFoundError:
        raise_api_error(ErrorCode.NOT_FOUND, "Lead not found")
    except CommissionError as e:
        raise_api_error(ErrorCode.INVALID_STATE, str(e))

    return {"success": True, "lead": _lead_to_dict(lead)}


@router.get("/api/leads")
def get_leads(
    status: Optional[LeadStatus] = Query(None),
    pagination: dict = Depends(pagination_params()),
    profile: Profile = Depends(get_current_profile),
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Admins see all leads, preparers their assigned leads, referrers their referrals."""
    filters: Dict[str, Any] = {"status": status, **pagination}
    if user.is_admin:
        pass
    elif user.is_preparer:
        filters["assigned_preparer_id"] = profile.id
    else:
        key = referrer_key(profile)
        if not key:
            return paginate([], pagination["limit"], pagination["offset"])
        filters["referrer_username"] = key

    leads = list_leads(session, **filters)
    return paginate([_lead_to_dict(lead) for lead in leads], pagination["limit"], pagination["offset"])
