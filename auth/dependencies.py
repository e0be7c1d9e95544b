"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with an access token in the Authorization: Bearer
header. Only access tokens are accepted here:
  - reset tokens (role=reset_only) authorize a password change, nothing else
  - refresh tokens (no email/role) are only good at POST /auth/refresh

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: may import from fastapi (Depends/HTTPException/Request) because
this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import TokenError
from auth.models import User


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:] or None
    return None


def try_get_current_user(request: Request) -> User | None:
    """Resolve the bearer access token to a User.

    Returns None for a missing, invalid, expired or wrongly scoped token.
    ConfigError (no signing secret) and StorageError propagate: they are
    server faults, not an unauthenticated request.
    """
    token = _bearer_token(request)
    if not token:
        return None

    try:
        claims = request.app.state.tokens.validate(token)
    except TokenError:
        return None
    if claims.is_reset_token or claims.is_refresh_token:
        return None

    try:
        user_id = int(claims.subject)
    except ValueError:
        return None
    return request.app.state.user_store.get_by_id(user_id)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
