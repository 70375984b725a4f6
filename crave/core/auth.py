"""
Caller resolution for the reward API.

Identity lives outside this service. A request is resolved to a stable
user id from:
1. An HS256 bearer JWT signed with AUTH_JWT_SECRET (``sub`` claim)
2. The X-User-Id header, when ALLOW_HEADER_AUTH is on (tests, internal callers)
"""
import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, Request

from crave.core.config import settings
from crave.core.errors import ForbiddenError, UnauthenticatedError

logger = logging.getLogger(__name__)


def verify_jwt(token: str, secret: Optional[str] = None) -> str:
    """
    Verify a bearer JWT and extract the user id.

    Raises:
        UnauthenticatedError: Invalid, expired or subject-less token
    """
    key = secret or settings.AUTH_JWT_SECRET
    if not key:
        raise UnauthenticatedError("Bearer tokens are not accepted: no signing secret configured")

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthenticatedError("Invalid token")

    user_id = payload.get("sub")
    if not user_id or not str(user_id).strip():
        raise UnauthenticatedError("Token has no subject")
    return str(user_id).strip()


def resolve_caller(authorization: Optional[str], x_user_id: Optional[str]) -> str:
    if authorization and authorization.startswith("Bearer "):
        return verify_jwt(authorization[7:].strip())

    if x_user_id and x_user_id.strip() and settings.ALLOW_HEADER_AUTH:
        return x_user_id.strip()

    raise UnauthenticatedError("Missing Authorization (Bearer JWT) or X-User-Id header")


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Internal/test caller id"),
) -> str:
    """FastAPI dependency returning the caller's user id."""
    user_id = resolve_caller(request.headers.get("Authorization"), x_user_id)
    request.state.user_id = user_id
    return user_id


def operator_ids() -> set:
    return {uid.strip() for uid in settings.ADMIN_USER_IDS.split(",") if uid.strip()}


async def require_operator(user_id: str = Depends(get_current_user_id)) -> str:
    """Caller must be listed in ADMIN_USER_IDS (when that list is configured)."""
    allowed = operator_ids()
    if allowed and user_id not in allowed:
        logger.warning("auth.operator_denied", extra={"user_id": user_id})
        raise ForbiddenError("Access denied")
    return user_id
