"""
Referral Links

Each tracking code owns two short links:
- {code}-intake -> /start-filing/form
- {code}-appt   -> /book-appointment

Short links resolve through /go/{code}. Every visit is stored as a
LinkClick, which later feeds email/phone attribution.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.models import LinkClick, LinkType, MarketingLink, Profile
from referrals.attribution import normalize_phone

logger = logging.getLogger(__name__)

INTAKE_PATH = "/start-filing/form"
APPOINTMENT_PATH = "/book-appointment"


class LinkError(Exception):
    """Raised when a referral link cannot be created."""
    pass


class LinkNotFoundError(LinkError):
    pass


@dataclass
class ClickMetadata:
    """Request details captured for a link visit."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    user_email: Optional[str] = None
    user_phone: Optional[str] = None


def build_tracking_url(
    url: str,
    tracking_code: str,
    source: Optional[str] = None,
    medium: Optional[str] = None,
    campaign: Optional[str] = None,
    content: Optional[str] = None,
) -> str:
    """Append ref and utm_* parameters to a destination URL."""
    params = {"ref": tracking_code}
    for key, value in (
        ("utm_source", source),
        ("utm_medium", medium),
        ("utm_campaign", campaign),
        ("utm_content", content),
    ):
        if value:
            params[key] = value
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def referral_link_codes(tracking_code: str) -> Tuple[str, str]:
    return f"{tracking_code}-intake".lower(), f"{tracking_code}-appt".lower()


def _upsert_link(
    session: Session,
    profile: Profile,
    code: str,
    link_type: LinkType,
    url: str,
    title: str,
    target_page: str,
) -> MarketingLink:
    base_url = get_settings().public_base_url
    link = session.execute(
        select(MarketingLink).where(MarketingLink.code == code)
    ).scalars().first()

    if link is None:
        link = MarketingLink(
            creator_id=profile.id,
            creator_type=profile.role,
            link_type=link_type,
            code=code,
        )
        session.add(link)

    link.url = url
    link.short_url = f"{base_url}/go/{code}"
    link.title = title
    link.campaign = "auto-referral"
    link.target_page = target_page
    link.is_active = True
    return link


def auto_generate_referral_links(
    session: Session, profile: Profile, tracking_code: str
) -> Tuple[MarketingLink, MarketingLink]:
    """
    Create or refresh the intake and appointment links for a tracking code.

    Raises:
        LinkError: If a link code is already owned by another profile.
    """
    base_url = get_settings().public_base_url
    intake_code, appointment_code = referral_link_codes(tracking_code)

    owners = session.execute(
        select(MarketingLink.code, MarketingLink.creator_id).where(
            MarketingLink.code.in_([intake_code, appointment_code])
        )
    ).all()
    for code, creator_id in owners:
        if creator_id != profile.id:
            raise LinkError(f"Link code {code} belongs to another profile")

    intake_url = build_tracking_url(
        f"{base_url}{INTAKE_PATH}",
        tracking_code,
        source="referral-link",
        medium="direct",
        campaign="auto-referral",
        content="intake",
    )
    appointment_url = build_tracking_url(
        f"{base_url}{APPOINTMENT_PATH}",
        tracking_code,
        source="referral-link",
        medium="direct",
        campaign="auto-referral",
        content="appointment",
    )

    intake = _upsert_link(
        session, profile, intake_code, LinkType.TAX_INTAKE, intake_url,
        "Referral Link - Tax Filing", INTAKE_PATH,
    )
    appointment = _upsert_link(
        session, profile, appointment_code, LinkType.APPOINTMENT, appointment_url,
        "Referral Link - Book Appointment", APPOINTMENT_PATH,
    )
    session.flush()
    return intake, appointment


def delete_referral_links(session: Session, profile: Profile, tracking_code: str) -> int:
    """Remove the auto-generated links for a code the profile is abandoning."""
    codes = referral_link_codes(tracking_code)
    links = session.execute(
        select(MarketingLink).where(
            MarketingLink.creator_id == profile.id,
            MarketingLink.code.in_(codes),
        )
    ).scalars().all()
    for link in links:
        session.delete(link)
    session.flush()
    if links:
        logger.info(f"Deleted {len(links)} referral links for code {tracking_code}")
    return len(links)


def get_link_by_code(session: Session, code: str) -> Optional[MarketingLink]:
    return session.execute(
        select(MarketingLink).where(
            MarketingLink.code == code.lower(),
            MarketingLink.is_active.is_(True),
        )
    ).scalars().first()


def record_link_click(
    session: Session, link_code: str, metadata: Optional[ClickMetadata] = None
) -> LinkClick:
    """
    Store a visit and bump the link counters.

    A click counts as unique when the link has no earlier click from the
    same IP address.

    Raises:
        LinkNotFoundError: Unknown or inactive link code.
    """
    metadata = metadata or ClickMetadata()
    link = get_link_by_code(session, link_code)
    if link is None:
        raise LinkNotFoundError(f"Link not found: {link_code}")

    is_unique = True
    if metadata.ip_address:
        previous = session.execute(
            select(func.count(LinkClick.id)).where(
                LinkClick.link_id == link.id,
                LinkClick.ip_address == metadata.ip_address,
            )
        ).scalar_one()
        is_unique = previous == 0

    click = LinkClick(
        link_id=link.id,
        ip_address=metadata.ip_address,
        user_agent=metadata.user_agent,
        referrer=metadata.referrer,
        city=metadata.city,
        state=metadata.state,
        user_email=metadata.user_email.lower() if metadata.user_email else None,
        user_phone=normalize_phone(metadata.user_phone) or None,
    )
    session.add(click)

    link.clicks = (link.clicks or 0) + 1
    if is_unique:
        link.unique_clicks = (link.unique_clicks or 0) + 1

    session.flush()
    logger.debug(f"Recorded click on link {link.code} (unique={is_unique})")
    return click
