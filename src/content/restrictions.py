"""
Page Restrictions

Role and username based access control for site routes.

Rules are evaluated in this order:
1. Blocked usernames (highest priority)
2. Allowed usernames
3. Authentication requirement (allow_non_logged_in)
4. Blocked roles
5. Allowed roles (empty list allows every authenticated user)
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from database.models import PageRestriction

logger = logging.getLogger(__name__)


class RestrictionError(Exception):
    pass


class RestrictionNotFoundError(RestrictionError):
    pass


@dataclass
class AccessUser:
    """Who is asking. Anonymous visitors have no username or role."""
    username: Optional[str] = None
    role: Optional[str] = None
    is_authenticated: bool = False


@dataclass
class AccessResult:
    allowed: bool
    reason: str
    redirect_url: Optional[str] = None
    custom_content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "redirect_url": self.redirect_url,
            "custom_content": self.custom_content,
        }


# =============================================================================
# PATTERN MATCHING
# =============================================================================

def match_route_pattern(route: str, pattern: str) -> bool:
    """
    Check if a route matches a pattern.

    /admin/users matches only itself; /admin/* matches anything below
    /admin/; /dashboard/*/settings matches any middle segment.
    """
    if "*" not in pattern:
        return route == pattern
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.fullmatch(regex, route) is not None


def _normalize_username(username: str) -> str:
    return username.strip().lower()


def _username_in(username: str, usernames: Optional[Iterable[str]]) -> bool:
    normalized = _normalize_username(username)
    return any(_normalize_username(u) == normalized for u in usernames or [])


# =============================================================================
# ACCESS CHECKS
# =============================================================================

def check_access_with_restriction(rule: PageRestriction, user: AccessUser) -> AccessResult:
    """Evaluate one restriction rule for a user."""

    def denied(reason: str) -> AccessResult:
        return AccessResult(
            allowed=False,
            reason=reason,
            redirect_url=rule.redirect_url or None,
            custom_content=rule.custom_html_on_block or None,
        )

    if user.username and _username_in(user.username, rule.blocked_usernames):
        return denied("blocked_username")

    if user.username and _username_in(user.username, rule.allowed_usernames):
        return AccessResult(allowed=True, reason="allowed_username")

    if not user.is_authenticated:
        if rule.allow_non_logged_in:
            return AccessResult(allowed=True, reason="public_access")
        return denied("not_authenticated")

    if user.role and user.role in (rule.blocked_roles or []):
        return denied("blocked_role")

    allowed_roles = rule.allowed_roles or []
    if not allowed_roles:
        return AccessResult(allowed=True, reason="authenticated")
    if user.role and user.role in allowed_roles:
        return AccessResult(allowed=True, reason="allowed_role")

    return denied("no_permission")


def _active_restrictions(session: Session) -> List[PageRestriction]:
    return session.execute(
        select(PageRestriction)
        .where(PageRestriction.is_active.is_(True))
        .order_by(PageRestriction.priority.desc())
    ).scalars().all()


def _first_match(route: str, restrictions: List[PageRestriction]) -> Optional[PageRestriction]:
    for restriction in restrictions:
        if match_route_pattern(route, restriction.route_path):
            return restriction
    return None


def check_page_access(session: Session, route: str, user: AccessUser) -> AccessResult:
    """
    Check a route against the highest priority matching restriction.

    Routes with no restriction are open. Lookup errors deny access.
    """
    try:
        restriction = _first_match(route, _active_restrictions(session))
        if restriction is None:
            return AccessResult(allowed=True, reason="no_restriction")

        logger.info(
            f"Route {route} matched pattern '{restriction.route_path}' "
            f"(priority: {restriction.priority})"
        )
        return check_access_with_restriction(restriction, user)
    except Exception as e:
        logger.error(f"Error checking page access for {route}: {e}", exc_info=True)
        return AccessResult(allowed=False, reason="error")


def check_batch_page_access(session: Session, routes: List[str], user: AccessUser) -> Dict[str, AccessResult]:
    """Check several routes at once, e.g. for a navigation menu."""
    try:
        restrictions = _active_restrictions(session)
    except Exception as e:
        logger.error(f"Error in batch access check: {e}", exc_info=True)
        return {route: AccessResult(allowed=False, reason="error") for route in routes}

    results = {}
    for route in routes:
        restriction = _first_match(route, restrictions)
        if restriction is None:
            results[route] = AccessResult(allowed=True, reason="no_restriction")
        else:
            results[route] = check_access_with_restriction(restriction, user)
    return results


def get_hidden_nav_routes(session: Session, user: AccessUser) -> List[str]:
    """Routes to leave out of navigation: flagged hidden, or denied to this user."""
    hidden = []
    for restriction in _active_restrictions(session):
        if restriction.hide_from_nav:
            hidden.append(restriction.route_path)
        elif not check_access_with_restriction(restriction, user).allowed:
            hidden.append(restriction.route_path)
    return hidden


# =============================================================================
# ADMIN CRUD
# =============================================================================

_RESTRICTION_FIELDS = (
    "route_path", "allowed_roles", "blocked_roles", "allowed_usernames",
    "blocked_usernames", "allow_non_logged_in", "redirect_url",
    "custom_html_on_block", "hide_from_nav", "priority", "is_active",
    "description",
)


def create_restriction(session: Session, route_path: str, **fields) -> PageRestriction:
    existing = session.execute(
        select(PageRestriction).where(PageRestriction.route_path == route_path)
    ).scalars().first()
    if existing is not None:
        raise RestrictionError(f"Restriction already exists for {route_path}")

    restriction = PageRestriction(
        route_path=route_path,
        allowed_roles=[],
        blocked_roles=[],
        allowed_usernames=[],
        blocked_usernames=[],
    )
    for name, value in fields.items():
        if name not in _RESTRICTION_FIELDS:
            raise RestrictionError(f"Unknown restriction field: {name}")
        if value is not None:
            setattr(restriction, name, value)
    session.add(restriction)
    session.flush()

    logger.info(f"Created page restriction for {route_path}")
    return restriction


def get_restriction(session: Session, restriction_id: UUID) -> PageRestriction:
    restriction = session.get(PageRestriction, restriction_id)
    if restriction is None:
        raise RestrictionNotFoundError(f"Restriction not found: {restriction_id}")
    return restriction


def update_restriction(session: Session, restriction_id: UUID, **fields) -> PageRestriction:
    restriction = get_restriction(session, restriction_id)
    for name, value in fields.items():
        if name not in _RESTRICTION_FIELDS:
            raise RestrictionError(f"Unknown restriction field: {name}")
        if value is not None:
            setattr(restriction, name, value)
    session.flush()
    logger.info(f"Updated page restriction for {restriction.route_path}")
    return restriction


def delete_restriction(session: Session, restriction_id: UUID) -> None:
    restriction = get_restriction(session, restriction_id)
    session.delete(restriction)
    session.flush()
    logger.info(f"Deleted page restriction for {restriction.route_path}")


def list_restrictions(session: Session, include_inactive: bool = True) -> List[PageRestriction]:
    stmt = select(PageRestriction)
    if not include_inactive:
        stmt = stmt.where(PageRestriction.is_active.is_(True))
    return session.execute(
        stmt.order_by(PageRestriction.priority.desc(), PageRestriction.route_path)
    ).scalars().all()


def restriction_to_dict(restriction: PageRestriction) -> Dict[str, Any]:
    return {
        "id": str(restriction.id),
        **{name: getattr(restriction, name) for name in _RESTRICTION_FIELDS},
    }
