"""
Page Restrictions API.

- POST /api/restrictions/check: can the caller open a route (anonymous allowed)
- GET  /api/restrictions/hidden-nav: routes to hide from the caller's navigation
- Admin CRUD under /api/admin/restrictions
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from content.restrictions import (
    AccessUser,
    RestrictionError,
    RestrictionNotFoundError,
    check_batch_page_access,
    check_page_access,
    create_restriction,
    delete_restriction,
    get_hidden_nav_routes,
    list_restrictions,
    restriction_to_dict,
    update_restriction,
)
from database.connection import get_session
from web.auth import UserContext, get_optional_user, require_admin
from web.helpers.error_responses import ErrorCode, raise_api_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Page Restrictions"])


class AccessCheckRequest(BaseModel):
    route: Optional[str] = Field(None, max_length=300)
    routes: List[str] = Field(default_factory=list, max_length=100)


class RestrictionFields(BaseModel):
    allowed_roles: Optional[List[str]] = None
    blocked_roles: Optional[List[str]] = None
    allowed_usernames: Optional[List[str]] = None
    blocked_usernames: Optional[List[str]] = None
    allow_non_logged_in: Optional[bool] = None
    redirect_url: Optional[str] = Field(None, max_length=500)
    custom_html_on_block: Optional[str] = None
    hide_from_nav: Optional[bool] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    description: Optional[str] = Field(None, max_length=500)


class RestrictionCreate(RestrictionFields):
    route_path: str = Field(..., min_length=1, max_length=300)


class RestrictionUpdate(RestrictionFields):
    route_path: Optional[str] = Field(None, min_length=1, max_length=300)


def _access_user(user: Optional[UserContext]) -> AccessUser:
    if user is None:
        return AccessUser()
    return AccessUser(username=user.username, role=user.role.value, is_authenticated=True)


# =============================================================================
# ACCESS CHECKS
# =============================================================================

@router.post("/api/restrictions/check")
def check_access(
    body: AccessCheckRequest,
    user: Optional[UserContext] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    if not body.route and not body.routes:
        raise_api_error(ErrorCode.INVALID_INPUT, "route or routes is required")

    access_user = _access_user(user)
    if body.routes:
        results = check_batch_page_access(session, body.routes, access_user)
        return {"results": {route: result.to_dict() for route, result in results.items()}}
    return check_page_access(session, body.route, access_user).to_dict()


@router.get("/api/restrictions/hidden-nav")
def hidden_nav(
    user: Optional[UserContext] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    return {"hidden_routes": get_hidden_nav_routes(session, _access_user(user))}


# =============================================================================
# ADMIN CRUD
# =============================================================================

@router.get("/api/admin/restrictions")
def get_restrictions(
    admin: UserContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return {"restrictions": [restriction_to_dict(r) for r in list_restrictions(session)]}


@router.post("/api/admin/restrictions", status_code=201)
def add_restriction(
    body: RestrictionCreate,
    admin: UserContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    fields = body.model_dump(exclude={"route_path"}, exclude_none=True)
    try:
        restriction = create_restriction(session, body.route_path, **fields)
    except RestrictionError as e:
        raise_api_error(ErrorCode.CONFLICT, str(e))
    return {"success": True, "restriction": restriction_to_dict(restriction)}


@router.patch("/api/admin/restrictions/{restriction_id}")
def edit_restriction(
    restriction_id: UUID,
    body: RestrictionUpdate,
    admin: UserContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    try:
        restriction = update_restriction(session, restriction_id, **body.model_dump(exclude_unset=True))
    except RestrictionNotFoundError:
        raise_api_error(ErrorCode.NOT_FOUND, "Restriction not found")
    except RestrictionError as e:
        raise_api_error(ErrorCode.INVALID_INPUT, str(e))
    return {"success": True, "restriction": restriction_to_dict(restriction)}


@router.delete("/api/admin/restrictions/{restriction_id}")
def remove_restriction(
    restriction_id: UUID,
    admin: UserContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    try:
        delete_restriction(session, restriction_id)
    except RestrictionNotFoundError:
        raise_api_error(ErrorCode.NOT_FOUND, "Restriction not found")
    return {"success": True}
