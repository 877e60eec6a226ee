"""
Bearer authentication for the arcade API.

Validates HS256 JWTs issued by the game's auth service and extracts the
user from the ``sub`` claim. Rejection happens before any storage access.
"""
from dataclasses import dataclass
from typing import Optional
import logging

import jwt
from fastapi import Request

from arcade.core.config import settings
from arcade.core.errors import AuthorizationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    email: Optional[str] = None


def verify_bearer_token(token: str, secret: Optional[str] = None) -> AuthenticatedUser:
    """
    Verify a bearer JWT and return the authenticated user.

    Raises:
        AuthorizationError: token missing, expired, forged or without ``sub``
    """
    key = secret or settings.AUTH_JWT_SECRET
    if not key:
        raise AuthorizationError("Authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthorizationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthorizationError("Invalid token")

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthorizationError("Invalid token")

    email = payload.get("email")
    return AuthenticatedUser(user_id=user_id, email=email if isinstance(email, str) else None)


async def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency: resolve the caller from ``Authorization: Bearer``."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise AuthorizationError("Missing Authorization (Bearer JWT) header")

    user = verify_bearer_token(auth_header[7:].strip())
    request.state.user_id = user.user_id
    return user
