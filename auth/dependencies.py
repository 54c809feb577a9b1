"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Clients authenticate with an access token in the Authorization: Bearer
header. The token is verified by TokenService (signature + expiry only), then
the subject is loaded so deactivated or deleted accounts stop working as soon
as their next request arrives.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises AuthenticationError if unauthenticated;
api/main.py renders that as the generic 401 envelope.

Layer rule: no imports from teams/ or cache/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.models import User
from core.errors import AuthenticationError, InvalidToken

logger = logging.getLogger("teamauth.auth")


def get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None on any failure. Never raises."""
    token = get_bearer_token(request)
    if not token:
        return None
    try:
        claims = request.app.state.token_service.verify_access(token)
    except InvalidToken:
        return None
    user = request.app.state.user_store.get_by_id(claims["sub"])
    if user is None or not user.is_active:
        logger.info("Access token for missing or inactive user %s rejected", claims["sub"])
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise AuthenticationError()
    return user
