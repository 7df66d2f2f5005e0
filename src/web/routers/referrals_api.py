"""
Referral API.

Provides endpoints for:
- Short link redirects that record clicks and set the attribution cookie
- Tracking code management (assign, customize once, finalize, check)
- Attribution statistics for the current referrer
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.connection import get_session
from database.models import Profile
from referrals.attribution import get_referrer_attribution_stats, referrer_key
from referrals.links import ClickMetadata, LinkNotFoundError, get_link_by_code, record_link_click
from referrals.tracking_codes import (
    TrackingCodeError,
    assign_tracking_code,
    customize_tracking_code,
    finalize_tracking_code,
    get_tracking_code,
    is_tracking_code_available,
    validate_custom_tracking_code,
)
from web.auth import get_current_profile
from web.helpers.error_responses import ErrorCode, raise_api_error
from web.helpers.request_meta import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Referrals"])


class CustomizeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


# =============================================================================
# SHORT LINKS
# =============================================================================

@router.get("/go/{code}")
def follow_short_link(
    code: str,
    request: Request,
    email: str = Query(None, max_length=255),
    phone: str = Query(None, max_length=32),
    session: Session = Depends(get_session),
):
    """Record the visit, remember the referrer for 14 days and redirect."""
    link = get_link_by_code(session, code)
    if link is None:
        raise_api_error(ErrorCode.NOT_FOUND, "Link not found")

    try:
        record_link_click(session, link.code, ClickMetadata(
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            referrer=request.headers.get("referer"),
            user_email=email,
            user_phone=phone,
        ))
    except LinkNotFoundError:
        raise_api_error(ErrorCode.NOT_FOUND, "Link not found")

    referral = get_settings().referral
    response = RedirectResponse(url=link.url, status_code=307)
    cookie_value = referrer_key(link.creator) if link.creator else None
    if cookie_value:
        response.set_cookie(
            key=referral.cookie_name,
            value=cookie_value,
            max_age=int(timedelta(days=referral.attribution_window_days).total_seconds()),
            httponly=True,
            samesite="lax",
            secure=get_settings().is_production,
        )
    return response


# =============================================================================
# TRACKING CODES
# =============================================================================

@router.get("/api/tracking-code")
def get_my_tracking_code(
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    data = get_tracking_code(session, profile.id)
    return {"success": True, "data": data.to_dict() if data else None}


@router.post("/api/tracking-code")
def assign_my_tracking_code(
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    try:
        data = assign_tracking_code(session, profile.id)
    except TrackingCodeError as e:
        raise_api_error(ErrorCode.INVALID_INPUT, str(e))
    return {"success": True, "data": data.to_dict()}


@router.post("/api/tracking-code/customize")
def customize_my_tracking_code(
    body: CustomizeRequest,
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    try:
        data = customize_tracking_code(session, profile.id, body.code)
    except TrackingCodeError as e:
        raise_api_error(ErrorCode.INVALID_INPUT, str(e))
    return {"success": True, "data": data.to_dict()}


@router.post("/api/tracking-code/finalize")
def finalize_my_tracking_code(
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    try:
        data = finalize_tracking_code(session, profile.id)
    except TrackingCodeError as e:
        raise_api_error(ErrorCode.INVALID_STATE, str(e))
    return {"success": True, "data": data.to_dict()}


@router.get("/api/tracking-code/check")
def check_tracking_code(
    code: str = Query(..., min_length=1, max_length=64),
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    """Validate a vanity code and report whether it is free."""
    valid, error = validate_custom_tracking_code(code)
    if not valid:
        return {"code": code, "valid": False, "available": False, "error": error}
    available = is_tracking_code_available(session, code)
    return {
        "code": code,
        "valid": True,
        "available": available,
        "error": None if available else "This tracking code is already taken",
    }


# =============================================================================
# ATTRIBUTION
# =============================================================================

@router.get("/api/attribution/stats")
def attribution_stats(
    profile: Profile = Depends(get_current_profile),
    session: Session = Depends(get_session),
):
    key = referrer_key(profile)
    if not key:
        return {"total_leads": 0, "by_method": {}, "cross_device_rate": 0.0}
    return get_referrer_attribution_stats(session, key)
