"""
Lead Intake Service

Handles tax intake form submissions:
1. Resolve the referrer (?ref= override, else the attribution chain)
2. Route the lead: tax preparer referrals go to that preparer, everything
   else stays with corporate (unassigned)
3. Upsert the lead by email and lock the commission rate
4. Sync the CRM contact (failures are logged, never raised)

Email notification is dispatched by the caller after the transaction.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from database.models import (
    AttributionMethod,
    Lead,
    LeadStatus,
    Profile,
    UserRole,
)
from leads.crm_sync import sync_lead_to_crm
from referrals.attribution import (
    AttributionResult,
    attribution_for_profile,
    get_attribution,
    save_lead_attribution,
)
from referrals.commissions import update_commission_status
from referrals.tracking_codes import find_profile_by_code

logger = logging.getLogger(__name__)


class LeadNotFoundError(Exception):
    pass


# =============================================================================
# REQUEST / RESULT MODELS
# =============================================================================

class LeadIntakeRequest(BaseModel):
    """Tax intake form payload. Field names follow the public form."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    first_name: str = Field(..., min_length=1, max_length=100)
    middle_name: Optional[str] = Field(default=None, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., min_length=7, max_length=32)
    country_code: Optional[str] = Field(default=None, max_length=8)
    date_of_birth: Optional[str] = None
    address_line_1: Optional[str] = None
    address_line_2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    filing_status: Optional[str] = None
    employment_type: Optional[str] = None
    occupation: Optional[str] = None
    has_dependents: Optional[bool] = None
    number_of_dependents: Optional[int] = Field(default=None, ge=0, le=50)
    full_form_data: Optional[Dict[str, Any]] = None
    locale: Optional[str] = Field(default="en", max_length=8)

    # Marketing
    source: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


@dataclass
class LeadIntakeResult:
    lead_id: UUID
    created: bool
    attribution: AttributionResult
    assigned_preparer_id: Optional[UUID]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": str(self.lead_id),
            "created": self.created,
            "attribution": self.attribution.to_dict(),
            "assigned_preparer_id": str(self.assigned_preparer_id) if self.assigned_preparer_id else None,
        }


# =============================================================================
# ROUTING
# =============================================================================

def resolve_assignment(referrer: Optional[Profile]) -> Optional[UUID]:
    """
    Pick the preparer for a lead.

    Only tax preparer referrals are routed to the referrer. Client,
    affiliate and unknown referrers leave the lead with corporate.
    """
    if referrer is None:
        return None
    if referrer.role == UserRole.TAX_PREPARER:
        logger.info(f"Lead from tax preparer referral assigned to preparer {referrer.id}")
        return referrer.id
    logger.info(f"Lead from {referrer.role.value} referral assigned to corporate")
    return None


def _resolve_attribution(
    session: Session,
    request: LeadIntakeRequest,
    ref_param: Optional[str],
    cookie_value: Optional[str],
) -> Tuple[AttributionResult, Optional[Profile]]:
    if ref_param:
        referrer = find_profile_by_code(session, ref_param)
        if referrer is not None:
            logger.info(f"Attribution from URL ref parameter: {ref_param}")
            return attribution_for_profile(session, referrer, AttributionMethod.REF_PARAM), referrer
        logger.warning(f"Unknown ref parameter ignored: {ref_param}")

    attribution = get_attribution(
        session,
        cookie_value=cookie_value,
        email=request.email,
        phone=request.phone,
    )
    referrer = find_profile_by_code(session, attribution.referrer_username)
    return attribution, referrer


_LEAD_FIELDS = (
    "first_name", "middle_name", "last_name", "phone", "country_code",
    "date_of_birth", "address_line_1", "address_line_2", "city", "state",
    "zip_code", "filing_status", "employment_type", "occupation",
    "has_dependents", "number_of_dependents", "locale", "source",
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
)


def submit_intake_lead(
    session: Session,
    request: LeadIntakeRequest,
    ref_param: Optional[str] = None,
    cookie_value: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> LeadIntakeResult:
    """
    Create or update a lead from an intake submission.

    A resubmission keeps its original referrer when it already has one.
    """
    attribution, referrer = _resolve_attribution(session, request, ref_param, cookie_value)

    lead = session.execute(
        select(Lead).where(Lead.email == request.email)
    ).scalars().first()
    created = lead is None

    if created:
        lead = Lead(email=request.email, status=LeadStatus.NEW)
        session.add(lead)

    for field_name in _LEAD_FIELDS:
        value = getattr(request, field_name)
        if value is not None or created:
            setattr(lead, field_name, value)
    if request.full_form_data is not None:
        lead.full_form_data = request.full_form_data
    lead.ip_address = ip_address or lead.ip_address
    lead.user_agent = user_agent or lead.user_agent
    session.flush()

    # First touch wins: a referred lead keeps its referrer on resubmission
    if created or not lead.referrer_username:
        save_lead_attribution(session, lead.id, attribution)
        lead.assigned_preparer_id = resolve_assignment(referrer)
    else:
        attribution = AttributionResult(
            referrer_username=lead.referrer_username,
            referrer_type=lead.referrer_type,
            method=lead.attribution_method or AttributionMethod.DIRECT,
            confidence=lead.attribution_confidence or 0,
            commission_rate=Decimal(lead.commission_rate or 0),
        )
    session.flush()

    try:
        sync_lead_to_crm(session, lead)
    except Exception as e:
        logger.error(f"CRM sync failed for lead {lead.id}: {e}", exc_info=True)

    logger.info(
        f"Tax intake lead {'created' if created else 'updated'}: {lead.id} "
        f"(method={attribution.method.value}, referrer={attribution.referrer_username})"
    )
    return LeadIntakeResult(
        lead_id=lead.id,
        created=created,
        attribution=attribution,
        assigned_preparer_id=lead.assigned_preparer_id,
    )


# =============================================================================
# PIPELINE
# =============================================================================

def get_lead(session: Session, lead_id: UUID) -> Lead:
    lead = session.get(Lead, lead_id)
    if lead is None:
        raise LeadNotFoundError(f"Lead not found: {lead_id}")
    return lead


def update_lead_status(session: Session, lead_id: UUID, status: LeadStatus) -> Lead:
    """Move a lead through the pipeline and keep its commission in step."""
    lead = get_lead(session, lead_id)
    previous = lead.status
    lead.status = status
    session.flush()

    update_commission_status(session, lead.id, status)
    logger.info(f"Lead {lead_id} status {previous.value} -> {status.value}")
    return lead


def list_leads(
    session: Session,
    referrer_username: Optional[str] = None,
    assigned_preparer_id: Optional[UUID] = None,
    status: Optional[LeadStatus] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Lead]:
    stmt = select(Lead)
    if referrer_username is not None:
        stmt = stmt.where(Lead.referrer_username == referrer_username)
    if assigned_preparer_id is not None:
        stmt = stmt.where(Lead.assigned_preparer_id == assigned_preparer_id)
    if status is not None:
        stmt = stmt.where(Lead.status == status)
    stmt = stmt.order_by(Lead.created_at.desc()).limit(limit).offset(offset)
    return session.execute(stmt).scalars().all()
