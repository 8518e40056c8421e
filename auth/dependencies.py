"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is read from, in priority order:
  1. The HTTP-only session cookie (Settings.session_cookie_name) -- set by
     POST /api/auth/login for browser clients.
  2. Authorization: Bearer <token> -- the same token for non-browser clients.

resolve_session() is the soft variant: it never raises for a missing or
stale session and returns a typed AuthResult (Authenticated | Unauthenticated).
require_auth() turns Unauthenticated into a 401 with the reason as code.
get_current_user() and require_admin() build on it, so handlers receive
their User as an explicit argument instead of reading it off the request.

The user row is re-read on every request (no cache): deactivation and role
changes take effect on the very next call. A session whose user vanished or
was deactivated is destroyed on sight.

Layer rule: no imports from policies/ or appsettings/. This module is part of
the FastAPI dependency injection system, so it may import fastapi and the
HTTP error taxonomy in api/errors.py (and nothing else from api/).
"""

from __future__ import annotations

import logging
import time

from fastapi import Depends, Request

from api.errors import AuthError, ForbiddenError, RateLimitError
from auth.models import Authenticated, AuthResult, Unauthenticated, User
from auth.ratelimit import Denied
from core.config import get_settings

logger = logging.getLogger("securewatch.auth")

_REASON_MESSAGES: dict[str, str] = {
    "NOT_AUTHENTICATED": "Authentication required.",
    "USER_NOT_FOUND": "Invalid user session.",
    "ACCOUNT_INACTIVE": "Account has been deactivated.",
}


def session_token_from_request(request: Request) -> str | None:
    token = request.cookies.get(get_settings().session_cookie_name)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def resolve_session(request: Request) -> AuthResult:
    """Resolve the request's session into Authenticated or Unauthenticated.

    Database errors propagate; callers that must never fail (GET
    /auth/status) catch them.
    """
    token = session_token_from_request(request)
    if token is None:
        return Unauthenticated("NOT_AUTHENTICATED")

    sessions = request.app.state.session_store
    record = sessions.get(token)
    if record is None:
        return Unauthenticated("NOT_AUTHENTICATED")

    user = request.app.state.user_store.get_by_id(record.user_id)
    if user is None:
        sessions.destroy(token)
        return Unauthenticated("USER_NOT_FOUND")
    if not user.is_active:
        sessions.destroy(token)
        return Unauthenticated("ACCOUNT_INACTIVE")
    return Authenticated(user=user, token=token)


def require_auth(request: Request) -> Authenticated:
    """Require a live session. Raises 401 with the Unauthenticated reason as code.

    Use when the handler needs the session token as well as the user:
        @router.post("/auth/logout")
        def logout(auth: Authenticated = Depends(require_auth)): ...
    """
    result = resolve_session(request)
    if isinstance(result, Unauthenticated):
        raise AuthError(result.reason, _REASON_MESSAGES.get(result.reason, "Authentication required."))
    return result


def get_current_user(auth: Authenticated = Depends(require_auth)) -> User:
    """Require authentication and hand the User to the handler.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    return auth.user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require the admin role. 401 if unauthenticated, 403 otherwise."""
    if user.role != "admin":
        raise ForbiddenError("INSUFFICIENT_PERMISSIONS", "Admin role required.")
    return user


# ---------------------------------------------------------------------------
# Login rate limit
# ---------------------------------------------------------------------------


def client_identity(request: Request) -> str:
    """Rate-limit key: the direct connection address.

    Forwarded-for headers are client controlled and are not trusted. Behind
    a reverse proxy, run uvicorn with --proxy-headers so request.client is
    the real peer.
    """
    return request.client.host if request.client else "unknown"


def login_rate_limit(request: Request) -> None:
    """Count one login attempt for the caller; 429 once the window is full."""
    limiter = request.app.state.login_limiter
    result = limiter.hit(client_identity(request), time.monotonic())
    if isinstance(result, Denied):
        logger.warning(
            "Login rate limit exceeded for %s (retry in %ds)",
            client_identity(request),
            result.retry_after,
        )
        raise RateLimitError(result.retry_after)
