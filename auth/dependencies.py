"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with an ``Authorization: Bearer <jwt>`` header carrying
a token issued by POST /api/v1/auth/login.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 unless the
user's effective authorities include the configured admin role.

The user is always reloaded from the store: a token issued before the account
was disabled, or before a profile was disabled, grants nothing afterwards.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.authorities import has_authority
from auth.models import User
from core.config import get_settings


def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request via its Bearer token.

    Returns the authenticated User on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_user().
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    claims = request.app.state.token_issuer.decode(auth_header[7:])
    if not claims:
        return None
    user = request.app.state.user_store.get_by_id(claims["id"])
    if user is None or user.disabled:
        return None
    return user


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


def require_admin(request: Request) -> User:
    """Require the admin authority. Raises HTTP 401 if unauthenticated, HTTP 403 otherwise."""
    user = get_current_user(request)
    if not has_authority(user, get_settings().admin_role):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
