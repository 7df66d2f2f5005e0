"""
Attribution Service

Decides which referrer gets credit for a new lead.

Attribution priority:
1. Cookie (100% confidence) - set when a visitor follows a referral link
2. Email match in LinkClick history (90%) - cross-device
3. Phone match in LinkClick history (85%) - cross-device
4. Direct, no referrer (100%)

An explicit ?ref= on the intake request outranks all of these and is
handled by the intake service. The commission rate is locked on the lead
when attribution is saved.
"""

import logging
import re
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.models import (
    AffiliateBonding,
    AttributionMethod,
    Lead,
    LeadStatus,
    LinkClick,
    MarketingLink,
    Profile,
    UserRole,
)
from referrals.tracking_codes import find_profile_by_code

logger = logging.getLogger(__name__)

ATTRIBUTION_CONFIDENCE = {
    AttributionMethod.REF_PARAM: 100,
    AttributionMethod.COOKIE: 100,
    AttributionMethod.EMAIL_MATCH: 90,
    AttributionMethod.PHONE_MATCH: 85,
    AttributionMethod.DIRECT: 100,
}

RATE_SOURCE_DEFAULT = "default"
RATE_SOURCE_BONDING = "affiliate_bonding"
RATE_SOURCE_PREPARER = "preparer_bonus"


class AttributionError(Exception):
    """Raised when attribution cannot be stored."""
    pass


@dataclass
class AttributionResult:
    """Outcome of the attribution chain."""
    referrer_username: Optional[str]
    referrer_type: Optional[str]
    method: AttributionMethod
    confidence: int
    commission_rate: Decimal = Decimal("0")
    success: bool = True
    error: Optional[str] = None

    @classmethod
    def direct(cls) -> "AttributionResult":
        return cls(
            referrer_username=None,
            referrer_type=None,
            method=AttributionMethod.DIRECT,
            confidence=ATTRIBUTION_CONFIDENCE[AttributionMethod.DIRECT],
        )

    @property
    def has_referrer(self) -> bool:
        return self.referrer_username is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["method"] = self.method.value
        data["commission_rate"] = float(self.commission_rate)
        return data


def normalize_phone(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def referrer_key(profile: Profile) -> Optional[str]:
    """
    Identifier stored on leads, commissions and payouts for a referrer.

    Uses the generated tracking code rather than the active one, which
    changes when a vanity code is chosen.
    """
    return profile.username or profile.tracking_code


def _role_value(role) -> Optional[str]:
    if role is None:
        return None
    return role.value if hasattr(role, "value") else str(role)


# =============================================================================
# ATTRIBUTION SOURCES
# =============================================================================

def attribution_for_profile(
    session: Session, profile: Profile, method: AttributionMethod
) -> AttributionResult:
    """Build a result for a resolved referrer, including its locked rate."""
    username = referrer_key(profile)
    rate, _ = get_commission_rate(session, username)
    return AttributionResult(
        referrer_username=username,
        referrer_type=_role_value(profile.role),
        method=method,
        confidence=ATTRIBUTION_CONFIDENCE[method],
        commission_rate=rate,
    )


def _from_cookie(session: Session, cookie_value: Optional[str]) -> Optional[AttributionResult]:
    if not cookie_value:
        return None
    profile = find_profile_by_code(session, cookie_value)
    if profile is None:
        logger.warning(f"Attribution cookie has invalid referrer: {cookie_value}")
        return None
    return attribution_for_profile(session, profile, AttributionMethod.COOKIE)


def _from_click(
    session: Session, click: Optional[LinkClick], method: AttributionMethod
) -> Optional[AttributionResult]:
    if click is None:
        return None
    creator = session.get(Profile, click.link.creator_id)
    # Cross-device matches only credit profiles with a short-link username
    if creator is None or not creator.username:
        return None
    return attribution_for_profile(session, creator, method)


def _latest_click(session: Session, since: datetime, *criteria) -> Optional[LinkClick]:
    stmt = (
        select(LinkClick)
        .join(MarketingLink, LinkClick.link_id == MarketingLink.id)
        .where(LinkClick.clicked_at >= since, *criteria)
        .order_by(LinkClick.clicked_at.desc())
        .limit(1)
    )
    return session.execute(stmt).scalars().first()


def _from_email(session: Session, email: Optional[str], since: datetime) -> Optional[AttributionResult]:
    if not email:
        return None
    click = _latest_click(session, since, func.lower(LinkClick.user_email) == email.strip().lower())
    return _from_click(session, click, AttributionMethod.EMAIL_MATCH)


def _from_phone(session: Session, phone: Optional[str], since: datetime) -> Optional[AttributionResult]:
    digits = normalize_phone(phone)
    if len(digits) < 10:
        return None
    click = _latest_click(session, since, LinkClick.user_phone.contains(digits[-10:]))
    return _from_click(session, click, AttributionMethod.PHONE_MATCH)


def get_attribution(
    session: Session,
    cookie_value: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AttributionResult:
    """
    Run the attribution chain: cookie, email, phone, then direct.

    Never raises. A lookup failure yields a direct result with
    success=False and confidence 0.
    """
    now = now or datetime.utcnow()
    since = now - timedelta(days=get_settings().referral.attribution_window_days)

    try:
        result = (
            _from_cookie(session, cookie_value)
            or _from_email(session, email, since)
            or _from_phone(session, phone, since)
        )
        return result or AttributionResult.direct()
    except Exception as e:
        logger.error(f"Error determining attribution for {email}: {e}", exc_info=True)
        return AttributionResult(
            referrer_username=None,
            referrer_type=None,
            method=AttributionMethod.DIRECT,
            confidence=0,
            success=False,
            error="Failed to determine attribution",
        )


# =============================================================================
# COMMISSION RATES
# =============================================================================

def _converted_referrals(session: Session, username: str) -> int:
    return session.execute(
        select(func.count(Lead.id)).where(
            Lead.referrer_username == username,
            Lead.status == LeadStatus.CONVERTED,
        )
    ).scalar_one()


def _tier_rate(structure: Optional[Dict[str, Any]], converted: int) -> Optional[Decimal]:
    """
    Pick the rate of the highest tier whose count threshold is met.

    Falls back to the lowest tier when no threshold is reached yet.
    """
    if not structure:
        return None
    tiers = []
    for tier in structure.values():
        if isinstance(tier, dict) and "rate" in tier:
            tiers.append((int(tier.get("count", 0)), Decimal(str(tier["rate"]))))
    if not tiers:
        return None
    tiers.sort(key=lambda t: t[0])
    rate = tiers[0][1]
    for threshold, tier_rate in tiers:
        if converted >= threshold:
            rate = tier_rate
    return rate


def get_commission_rate(session: Session, referrer_username: Optional[str]) -> Tuple[Decimal, str]:
    """
    Commission amount for one converted lead from this referrer.

    Returns:
        (rate, source) where source is default, affiliate_bonding or preparer_bonus.
    """
    default_rate = get_settings().referral.default_commission_amount
    if not referrer_username:
        return default_rate, RATE_SOURCE_DEFAULT

    profile = find_profile_by_code(session, referrer_username)
    if profile is None:
        return default_rate, RATE_SOURCE_DEFAULT

    if profile.role == UserRole.TAX_PREPARER:
        # Preparers earn from the return itself, not a referral commission
        return Decimal("0"), RATE_SOURCE_PREPARER

    if profile.role == UserRole.AFFILIATE:
        bonding = session.execute(
            select(AffiliateBonding)
            .where(AffiliateBonding.affiliate_id == profile.id, AffiliateBonding.is_active.is_(True))
            .order_by(AffiliateBonding.created_at.desc())
            .limit(1)
        ).scalars().first()
        if bonding is not None:
            converted = _converted_referrals(session, referrer_key(profile))
            rate = _tier_rate(bonding.commission_structure, converted)
            if rate is not None:
                return rate, RATE_SOURCE_BONDING

    return default_rate, RATE_SOURCE_DEFAULT


# =============================================================================
# PERSISTENCE AND STATS
# =============================================================================

def save_lead_attribution(session: Session, lead_id: UUID, attribution: AttributionResult) -> Lead:
    """
    Write attribution onto a lead and lock its commission rate.

    Raises:
        AttributionError: If the lead does not exist.
    """
    lead = session.get(Lead, lead_id)
    if lead is None:
        raise AttributionError(f"Lead not found: {lead_id}")

    lead.referrer_username = attribution.referrer_username
    lead.referrer_type = attribution.referrer_type
    lead.attribution_method = attribution.method
    lead.attribution_confidence = attribution.confidence
    lead.commission_rate = attribution.commission_rate or Decimal("0")
    lead.commission_rate_locked_at = datetime.utcnow()
    session.flush()

    logger.info(
        f"Lead attribution saved: lead={lead_id} referrer={attribution.referrer_username} "
        f"method={attribution.method.value} rate={attribution.commission_rate}"
    )
    return lead


def get_referrer_attribution_stats(session: Session, referrer_username: str) -> Dict[str, Any]:
    """Lead counts per attribution method and the cross-device share (percent)."""
    rows = session.execute(
        select(Lead.attribution_method, func.count(Lead.id))
        .where(Lead.referrer_username == referrer_username)
        .group_by(Lead.attribution_method)
    ).all()
    counts = {method: count for method, count in rows}
    total = sum(counts.values())

    by_method = {m.value: counts.get(m, 0) for m in AttributionMethod if m != AttributionMethod.DIRECT}
    cross_device = counts.get(AttributionMethod.EMAIL_MATCH, 0) + counts.get(AttributionMethod.PHONE_MATCH, 0)

    return {
        "total_leads": total,
        "by_method": by_method,
        "cross_device_rate": round(cross_device / total * 100, 2) if total else 0.0,
    }
