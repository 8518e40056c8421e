"""
api/routes/auth.py -- Authentication and self-service account endpoints.

Routes:
  POST /api/auth/login            -- email/password login; sets the session cookie
  POST /api/auth/logout           -- destroys the session; always clears the cookie
  GET  /api/auth/me               -- current user (requires session)
  GET  /api/auth/status           -- {authenticated, user?}; never errors
  PUT  /api/auth/change-password  -- re-verify current password, set a new one
  PUT  /api/auth/profile          -- update own name/department

Security:
  Login is guarded by the fixed-window limiter (5 attempts / 15 min per
  client address) via the login_rate_limit dependency. Every attempt counts,
  successful or not.
  auth.service.authenticate() runs bcrypt even for unknown emails, so
  response time does not reveal which accounts exist.
  Cache-Control: no-store on login responses.

All handlers that hash or verify passwords are plain `def`: FastAPI runs them
on its worker thread pool, keeping bcrypt off the event loop.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.errors import InternalError, error_for_status
from api.models import (
    AuthStatusResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    ProfileUpdate,
    UserEnvelope,
    UserPublic,
)
from auth.dependencies import (
    get_current_user,
    login_rate_limit,
    require_auth,
    resolve_session,
    session_token_from_request,
)
from auth.models import Authenticated, User
from auth.service import AuthFailure, authenticate, change_password, update_profile
from auth.sessions import SessionError, SessionStore, clear_session_cookie, set_session_cookie
from auth.store import UserStore

logger = logging.getLogger("securewatch.auth")

# Auth policy:
# - POST /api/auth/login:           public, login rate limit
# - POST /api/auth/logout:          public -- clearing a session needs no prior auth
# - GET  /api/auth/status:          public -- reports whether a session exists
# - GET  /api/auth/me:              requires session (get_current_user)
# - PUT  /api/auth/change-password: requires session (require_auth, keeps this session)
# - PUT  /api/auth/profile:         requires session (get_current_user)
router = APIRouter()


def _record_last_login(store: UserStore, user_id: int) -> None:
    """Background task: stamp last_login. Failures are logged, never surfaced."""
    try:
        store.update_last_login(user_id)
    except SQLAlchemyError:
        logger.exception("Failed to update last_login for user_id=%s", user_id)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse, dependencies=[Depends(login_rate_limit)])
def login(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[LoginRequest] = None,
) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Unknown email and wrong password both answer 401 INVALID_CREDENTIALS
    with the same message, so callers cannot enumerate accounts.
    """
    body = body or LoginRequest()
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store

    try:
        user = authenticate(user_store, body.email, body.password)
    except AuthFailure as exc:
        raise error_for_status(exc.status_code, exc.code, exc.message) from None

    try:
        token = sessions.create(
            user.id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("User-Agent"),
        )
    except SessionError:
        raise InternalError("SESSION_ERROR", "Login failed.") from None

    background_tasks.add_task(_record_last_login, user_store, user.id)
    logger.info("Login succeeded for user_id=%s", user.id)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user=UserPublic.from_user(user)).model_dump(by_alias=True),
    )
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Destroy the session. The cookie is cleared on success and on failure."""
    token = session_token_from_request(request)
    if token is not None:
        try:
            request.app.state.session_store.destroy(token)
        except SessionError:
            resp = JSONResponse(
                status_code=500,
                content={"error": {"code": "SESSION_ERROR", "message": "Logout failed."}},
            )
            clear_session_cookie(resp)
            return resp
    resp = JSONResponse(content={"message": "Logout successful"})
    clear_session_cookie(resp)
    return resp


@router.get("/auth/status", response_model=AuthStatusResponse, response_model_exclude_none=True)
def status(request: Request) -> AuthStatusResponse:
    """Report whether the caller has a live session. Never returns an error status."""
    try:
        result = resolve_session(request)
    except (SQLAlchemyError, SessionError):
        logger.exception("Auth status check failed")
        return AuthStatusResponse(authenticated=False)
    if isinstance(result, Authenticated):
        return AuthStatusResponse(authenticated=True, user=UserPublic.from_user(result.user))
    return AuthStatusResponse(authenticated=False)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserEnvelope)
def me(current_user: User = Depends(get_current_user)) -> UserEnvelope:
    """Return identity information for the currently authenticated user."""
    return UserEnvelope(user=UserPublic.from_user(current_user))


@router.put("/auth/change-password", response_model=MessageResponse)
def put_change_password(
    request: Request,
    body: Optional[ChangePasswordRequest] = None,
    auth: Authenticated = Depends(require_auth),
) -> MessageResponse:
    """Change the caller's password. Other sessions of the account are signed out."""
    body = body or ChangePasswordRequest()
    try:
        change_password(
            request.app.state.user_store,
            request.app.state.session_store,
            auth.user,
            body.current_password,
            body.new_password,
            current_token=auth.token,
        )
    except AuthFailure as exc:
        raise error_for_status(exc.status_code, exc.code, exc.message) from None
    except SessionError:
        raise InternalError("SESSION_ERROR", "Password changed, but other sessions could not be revoked.") from None
    return MessageResponse(message="Password changed successfully")


@router.put("/auth/profile", response_model=ProfileResponse)
def put_profile(
    request: Request,
    body: Optional[ProfileUpdate] = None,
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    """Update the caller's display name and department."""
    body = body or ProfileUpdate()
    try:
        updated = update_profile(request.app.state.user_store, current_user, body.name, body.department)
    except AuthFailure as exc:
        raise error_for_status(exc.status_code, exc.code, exc.message) from None
    return ProfileResponse(user=UserPublic.from_user(updated))
