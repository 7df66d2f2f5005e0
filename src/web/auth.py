"""
JWT Authentication - bearer tokens for API requests.

Tokens are HS256 signed and carry the profile id, username, role and
email. Use the dependencies below in routes:

    @router.get("/mine")
    async def mine(user: UserContext = Depends(get_current_user)): ...

    @router.post("/admin-only")
    async def admin_only(user: UserContext = Depends(require_roles(*ADMIN_ROLES))): ...
"""

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.connection import get_session
from database.models import ADMIN_ROLES, Profile, UserRole
from services.logging_config import user_id_var
from web.helpers.error_responses import ErrorCode, raise_api_error

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
_DEV_SECRET = "development-only-insecure-secret-key-32ch"

_bearer = HTTPBearer(auto_error=False)


def _get_jwt_secret() -> str:
    """JWT secret with production enforcement."""
    secret = os.environ.get("JWT_SECRET")
    if not secret:
        if get_settings().is_production:
            raise RuntimeError("JWT_SECRET environment variable is required in production")
        return _DEV_SECRET
    return secret


@dataclass
class UserContext:
    """Authenticated caller."""
    profile_id: UUID
    role: UserRole
    username: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_preparer(self) -> bool:
        return self.role == UserRole.TAX_PREPARER


def create_access_token(
    profile_id: UUID,
    role: UserRole,
    username: Optional[str] = None,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed access token for a profile."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=get_settings().access_token_expire_minutes)

    now = datetime.utcnow()
    payload: Dict[str, Any] = {
        "sub": str(profile_id),
        "role": role.value,
        "type": "access",
        "iat": now,
        "exp": now + expires_delta,
        "jti": str(uuid.uuid4()),
    }
    if username:
        payload["username"] = username
    if email:
        payload["email"] = email

    return jwt.encode(payload, _get_jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> UserContext:
    """
    Decode and validate an access token.

    Raises:
        InvalidTokenError: If the token is invalid, expired or malformed
    """
    payload = jwt.decode(token, _get_jwt_secret(), algorithms=[JWT_ALGORITHM])
    if payload.get("type") != "access":
        raise InvalidTokenError("Not an access token")
    try:
        return UserContext(
            profile_id=UUID(payload["sub"]),
            role=UserRole(payload["role"]),
            username=payload.get("username"),
            email=payload.get("email"),
        )
    except (KeyError, ValueError) as e:
        raise InvalidTokenError(f"Malformed token claims: {e}") from e


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[UserContext]:
    """Caller if a valid token was sent, otherwise None."""
    if credentials is None:
        return None
    try:
        user = decode_token(credentials.credentials)
    except InvalidTokenError as e:
        logger.info(f"Ignoring invalid bearer token: {e}")
        return None
    user_id_var.set(str(user.profile_id))
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> UserContext:
    if credentials is None:
        raise_api_error(ErrorCode.UNAUTHORIZED)
    try:
        user = decode_token(credentials.credentials)
    except InvalidTokenError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise_api_error(ErrorCode.UNAUTHORIZED, "Invalid or expired token")
    user_id_var.set(str(user.profile_id))
    return user


def require_roles(*roles: UserRole):
    """Dependency factory that admits only the given roles."""
    allowed = set(roles)

    def checker(user: UserContext = Depends(get_current_user)) -> UserContext:
        if user.role not in allowed:
            raise_api_error(ErrorCode.FORBIDDEN)
        return user

    return checker


def require_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    if not user.is_admin:
        raise_api_error(ErrorCode.FORBIDDEN, "Admin access required")
    return user


def get_current_profile(
    user: UserContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Profile:
    """Profile row behind the token; 401 if it no longer exists."""
    profile = session.get(Profile, user.profile_id)
    if profile is None:
        raise_api_error(ErrorCode.UNAUTHORIZED, "Profile not found")
    return profile
