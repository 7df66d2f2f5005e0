"""
Tracking Code Service

Every referring profile carries a tracking code that is appended to
public URLs (?ref=CODE) and embedded in its referral links.

- Tax preparers get readable initials (idw, idw2, ...)
- Everyone else gets PREFIX-NNNNNN
- A vanity code may be set once; it then replaces the generated code
- Finalizing locks whichever code is active
"""

import logging
import random
import re
import unicodedata
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.models import Profile, UserRole

logger = logging.getLogger(__name__)

CUSTOM_CODE_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
CUSTOM_CODE_MIN_LENGTH = 3
CUSTOM_CODE_MAX_LENGTH = 20
RESERVED_CODES = {"admin", "api", "dashboard", "auth", "test", "demo", "support", "help"}


class TrackingCodeError(Exception):
    """Raised when a tracking code cannot be generated, validated or changed."""
    pass


@dataclass
class TrackingCodeData:
    """Tracking code state returned to the owning profile."""
    code: str
    is_custom: bool
    can_customize: bool
    is_finalized: bool
    tracking_url: str
    qr_code_url: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


# =============================================================================
# GENERATION
# =============================================================================

def generate_initials(
    first_name: Optional[str],
    middle_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> str:
    """
    Build lowercase initials from a person's name.

    Accents are stripped and non-letters dropped, so "Ìra D. Watkins"
    becomes "idw". Falls back to "user" when nothing usable remains.
    """
    initials = ""
    for part in (first_name, middle_name, last_name):
        if not part:
            continue
        normalized = unicodedata.normalize("NFKD", part)
        letters = "".join(
            ch for ch in normalized
            if not unicodedata.combining(ch) and ch.isascii() and ch.isalpha()
        )
        if letters:
            initials += letters[0].lower()
    return initials or "user"


def is_tracking_code_available(session: Session, code: str) -> bool:
    """A code is taken if any profile uses it as generated code, vanity code or username."""
    lowered = code.lower()
    stmt = select(func.count(Profile.id)).where(
        or_(
            func.lower(Profile.tracking_code) == lowered,
            func.lower(Profile.custom_tracking_code) == lowered,
            func.lower(Profile.username) == lowered,
        )
    )
    return session.execute(stmt).scalar_one() == 0


def generate_unique_tracking_code(
    session: Session,
    role: Optional[UserRole] = None,
    first_name: Optional[str] = None,
    middle_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> str:
    """
    Generate a tracking code that no profile uses.

    Raises:
        TrackingCodeError: If no free code is found within the attempt limit.
    """
    referral = get_settings().referral
    max_attempts = referral.max_generation_attempts

    if role == UserRole.TAX_PREPARER and first_name and last_name:
        base = generate_initials(first_name, middle_name, last_name)
        if is_tracking_code_available(session, base):
            return base
        # Suffixes start at 2: idw, idw2, idw3, ...
        for suffix in range(2, max_attempts + 2):
            candidate = f"{base}{suffix}"
            if is_tracking_code_available(session, candidate):
                return candidate
        raise TrackingCodeError(
            f"Failed to generate unique initials code for {base} after {max_attempts} attempts"
        )

    for _ in range(max_attempts):
        candidate = f"{referral.tracking_code_prefix}-{random.randint(100000, 999999)}"
        if is_tracking_code_available(session, candidate):
            return candidate

    raise TrackingCodeError(
        f"Failed to generate unique tracking code after {max_attempts} attempts"
    )


# =============================================================================
# VALIDATION
# =============================================================================

def validate_custom_tracking_code(code: str) -> Tuple[bool, Optional[str]]:
    """
    Check a vanity code against the format rules.

    Returns:
        (valid, error message)
    """
    if not code or len(code) < CUSTOM_CODE_MIN_LENGTH:
        return False, f"Tracking code must be at least {CUSTOM_CODE_MIN_LENGTH} characters"

    if len(code) > CUSTOM_CODE_MAX_LENGTH:
        return False, f"Tracking code must be at most {CUSTOM_CODE_MAX_LENGTH} characters"

    if not CUSTOM_CODE_PATTERN.match(code):
        return False, "Tracking code can only contain letters, numbers, hyphens, and underscores"

    if code[0] in "-_" or code[-1] in "-_":
        return False, "Tracking code cannot start or end with a hyphen or underscore"

    if code.isdigit():
        return False, "Tracking code cannot be only numbers"

    if code.lower() in RESERVED_CODES:
        return False, "This tracking code is reserved"

    return True, None


# =============================================================================
# PROFILE OPERATIONS
# =============================================================================

def _get_profile(session: Session, profile_id: UUID) -> Profile:
    profile = session.get(Profile, profile_id)
    if profile is None:
        raise TrackingCodeError("Profile not found")
    return profile


def _tracking_url(code: str) -> str:
    return f"{get_settings().public_base_url}?ref={code}"


def _to_data(profile: Profile) -> TrackingCodeData:
    code = profile.active_tracking_code
    return TrackingCodeData(
        code=code,
        is_custom=bool(profile.custom_tracking_code),
        can_customize=not profile.tracking_code_changed and not profile.tracking_code_finalized,
        is_finalized=profile.tracking_code_finalized,
        tracking_url=_tracking_url(code),
        qr_code_url=profile.tracking_code_qr_url,
    )


def _regenerate_links(session: Session, profile: Profile, code: str) -> None:
    # Link failures never undo the tracking code change
    from referrals.links import auto_generate_referral_links

    try:
        auto_generate_referral_links(session, profile, code)
        logger.info(f"Generated referral links for profile {profile.id} with code {code}")
    except Exception as e:
        logger.error(f"Failed to generate referral links for profile {profile.id}: {e}")


def assign_tracking_code(session: Session, profile_id: UUID) -> TrackingCodeData:
    """
    Assign a generated tracking code to a profile that has none.

    Also creates the profile's intake and appointment referral links.
    """
    profile = _get_profile(session, profile_id)

    if profile.tracking_code:
        return _to_data(profile)

    code = generate_unique_tracking_code(
        session,
        role=profile.role,
        first_name=profile.first_name,
        middle_name=profile.middle_name,
        last_name=profile.last_name,
    )
    profile.tracking_code = code
    profile.tracking_code_changed = False
    profile.tracking_code_finalized = False
    session.flush()

    logger.info(f"Assigned tracking code {code} to profile {profile_id}")
    _regenerate_links(session, profile, code)

    return _to_data(profile)


def customize_tracking_code(session: Session, profile_id: UUID, custom_code: str) -> TrackingCodeData:
    """
    Replace the generated code with a vanity code. Allowed once.

    Raises:
        TrackingCodeError: finalized, already customized, invalid or taken.
    """
    from referrals.links import delete_referral_links

    profile = _get_profile(session, profile_id)

    if profile.tracking_code_finalized:
        raise TrackingCodeError("Tracking code has been finalized and cannot be changed")

    if profile.tracking_code_changed or profile.custom_tracking_code:
        raise TrackingCodeError("Tracking code can only be customized once")

    valid, error = validate_custom_tracking_code(custom_code)
    if not valid:
        raise TrackingCodeError(error)

    if not is_tracking_code_available(session, custom_code):
        raise TrackingCodeError("This tracking code is already taken")

    old_code = profile.active_tracking_code
    if old_code:
        delete_referral_links(session, profile, old_code)

    profile.custom_tracking_code = custom_code
    profile.tracking_code_changed = True
    session.flush()

    logger.info(f"Profile {profile_id} customized tracking code {old_code} -> {custom_code}")
    _regenerate_links(session, profile, custom_code)

    return _to_data(profile)


def finalize_tracking_code(session: Session, profile_id: UUID) -> TrackingCodeData:
    """
    Lock the active tracking code permanently.

    Raises:
        TrackingCodeError: If already finalized or no code exists.
    """
    profile = _get_profile(session, profile_id)

    if profile.tracking_code_finalized:
        raise TrackingCodeError("Tracking code is already finalized")

    if not profile.active_tracking_code:
        raise TrackingCodeError("No tracking code to finalize")

    profile.tracking_code_finalized = True
    session.flush()
    logger.info(f"Finalized tracking code {profile.active_tracking_code} for profile {profile_id}")

    return _to_data(profile)


def get_tracking_code(session: Session, profile_id: UUID) -> Optional[TrackingCodeData]:
    """Active tracking code for a profile; the vanity code wins."""
    profile = session.get(Profile, profile_id)
    if profile is None or not profile.active_tracking_code:
        return None
    return _to_data(profile)


def find_profile_by_code(session: Session, code: Optional[str]) -> Optional[Profile]:
    """
    Resolve a referrer from a short-link username, vanity code or tracking code.

    Checked in that order so rows created before usernames were reserved
    still resolve the same way every time.
    """
    if not code:
        return None
    lowered = code.strip().lower()
    if not lowered:
        return None
    for column in (Profile.username, Profile.custom_tracking_code, Profile.tracking_code):
        profile = session.execute(
            select(Profile)
            .where(func.lower(column) == lowered)
            .order_by(Profile.created_at)
            .limit(1)
        ).scalars().first()
        if profile is not None:
            return profile
    return None


def backfill_tracking_codes(session: Session) -> Tuple[int, List[str]]:
    """
    Assign tracking codes to every profile that lacks one.

    Returns:
        (number updated, error messages)
    """
    profile_ids = session.execute(
        select(Profile.id).where(Profile.tracking_code.is_(None))
    ).scalars().all()

    updated = 0
    errors: List[str] = []
    for profile_id in profile_ids:
        try:
            assign_tracking_code(session, profile_id)
            updated += 1
        except TrackingCodeError as e:
            errors.append(f"{profile_id}: {e}")
            logger.error(f"Backfill failed for profile {profile_id}: {e}")

    logger.info(f"Backfilled tracking codes: {updated} updated, {len(errors)} errors")
    return updated, errors
