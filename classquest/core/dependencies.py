import logging
from typing import Any, Dict

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.config import JWT_SECRET_KEY, JWT_ALGORITHM
from classquest.core.database import get_session
from classquest.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
)
from classquest.users.crud.users import get_user_by_id
from classquest.users.models.users import MANAGER_ROLES, User, UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer(
    scheme_name="JWT Token",
    description="Bearer token carrying the user id (sub) and role",
    auto_error=False,
)

if not JWT_SECRET_KEY:
    raise ConfigurationError("JWT_SECRET_KEY", "JWT secret key is required")


def decode_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry, return the payload"""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid JWT token: {str(e)}")
        raise AuthenticationError("Invalid token")


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials.strip():
        raise AuthenticationError("Authentication data is required")

    payload = decode_token(credentials.credentials)
    if "sub" not in payload:
        raise AuthenticationError("Token has no subject")
    return payload


async def get_current_user(
    payload: Dict[str, Any] = Depends(get_token_payload),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Dependency resolving the bearer token to an active user.

    The role stored on the user wins over the role claim in the token.
    """
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise AuthenticationError("Token subject is not a user id")

    if user_id <= 0:
        raise AuthenticationError("Token subject is not a user id")

    user = await get_user_by_id(db, user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    claimed_role = payload.get("role")
    if claimed_role and claimed_role != user.role.value:
        logger.warning(
            f"Token role '{claimed_role}' differs from stored role '{user.role.value}'",
            extra={"user_id": user.id},
        )

    return user


async def require_manager(current_user: User = Depends(get_current_user)) -> User:
    """Admins, tutors and assistants"""
    if current_user.role not in MANAGER_ROLES:
        raise AuthorizationError("Manager role required")
    return current_user


async def require_tutor_or_admin(current_user: User = Depends(get_current_user)) -> User:
    """Session owners: admins and tutors, never assistants"""
    if current_user.role not in (UserRole.ADMIN, UserRole.TUTOR):
        raise AuthorizationError("Tutor or admin role required")
    return current_user
