"""
api/routes/users.py -- User administration REST endpoints (admin only).

Routes:
  GET    /api/users                       -- active users, newest first
  GET    /api/users/meta/roles            -- role catalogue
  GET    /api/users/{id}                  -- one user
  POST   /api/users                       -- create user
  PUT    /api/users/{id}                  -- partial update
  POST   /api/users/{id}/reset-password   -- set a new password
  DELETE /api/users/{id}                  -- soft delete (is_active = 0)

Security:
  Every route depends on require_admin.
  An admin cannot deactivate or delete their own account, and the last
  active admin cannot be demoted or deactivated.
  Deactivation, deletion and password reset destroy every session of the
  target user, so the change takes effect immediately.
  Responses never include password hashes.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError

from api.errors import ConflictError, InternalError, NotFoundError, ValidationError, error_for_status
from api.limiter import limiter
from api.models import (
    PasswordReset,
    RoleInfo,
    RolesResponse,
    UserCreate,
    UserDetail,
    UserDetailResponse,
    UserListResponse,
    UserUpdate,
)
from auth.dependencies import require_admin
from auth.models import ROLES, User
from auth.passwords import hash_password
from auth.service import AuthFailure, check_new_password
from auth.sessions import SessionError, SessionStore
from auth.store import UserStore
from core.database import MAX_ID, classify_integrity_error

logger = logging.getLogger("securewatch.api")

router = APIRouter(dependencies=[Depends(require_admin)])

_ROLE_CATALOGUE: list[RoleInfo] = [
    RoleInfo(name="admin", label="Administrator", description="Full system access and user management"),
    RoleInfo(
        name="analyst",
        label="Security Analyst",
        description="Can view and manage employee data and violations",
    ),
    RoleInfo(name="viewer", label="Viewer", description="Read-only access to dashboard and reports"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_user_id(raw: str) -> int:
    try:
        user_id = int(raw)
    except ValueError:
        raise ValidationError("INVALID_ID", "Invalid user ID.") from None
    if not 1 <= user_id <= MAX_ID:
        raise ValidationError("INVALID_ID", "Invalid user ID.")
    return user_id


def _get_user_or_404(store: UserStore, user_id: int) -> User:
    user = store.get_by_id(user_id)
    if user is None:
        raise NotFoundError("USER_NOT_FOUND", "User not found.")
    return user


def _check_role(role: Optional[str]) -> None:
    if role is not None and role not in ROLES:
        raise ValidationError("INVALID_ROLE", f"Role must be one of: {', '.join(ROLES)}.")


def _check_password(password: Optional[str]) -> str:
    try:
        return check_new_password(password)
    except AuthFailure as exc:
        raise error_for_status(exc.status_code, exc.code, exc.message) from None


def _revoke_sessions(request: Request, user_id: int) -> None:
    sessions: SessionStore = request.app.state.session_store
    try:
        revoked = sessions.destroy_for_user(user_id)
    except SessionError:
        raise InternalError("SESSION_ERROR", "User updated, but sessions could not be revoked.") from None
    if revoked:
        logger.info("Revoked %d sessions for user_id=%s", revoked, user_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
def list_users(request: Request) -> UserListResponse:
    """List active user accounts, newest first."""
    store: UserStore = request.app.state.user_store
    return UserListResponse(users=[UserDetail.from_user(u) for u in store.list_active_users()])


@router.get("/users/meta/roles", response_model=RolesResponse)
def list_roles() -> RolesResponse:
    return RolesResponse(roles=_ROLE_CATALOGUE)


@router.get("/users/{user_id}", response_model=UserDetailResponse, response_model_exclude_none=True)
def get_user(request: Request, user_id: str) -> UserDetailResponse:
    store: UserStore = request.app.state.user_store
    user = _get_user_or_404(store, _parse_user_id(user_id))
    return UserDetailResponse(user=UserDetail.from_user(user))


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@limiter.limit("30/minute")
@router.post("/users", response_model=UserDetailResponse, status_code=201)
def create_user(request: Request, body: Optional[UserCreate] = None) -> UserDetailResponse:
    """Create an account. Role defaults to viewer; email is trimmed and lower-cased."""
    body = body or UserCreate()
    if not (body.email or "").strip() or not body.password or not (body.name or "").strip():
        raise ValidationError("MISSING_FIELDS", "Email, password, and name are required.")
    _check_password(body.password)
    _check_role(body.role)

    store: UserStore = request.app.state.user_store
    new_user = User(
        email=body.email,
        name=body.name,
        role=body.role or "viewer",
        department=(body.department or "").strip() or None,
        password_hash=hash_password(body.password),
    )
    try:
        user_id = store.create_user(new_user)
    except IntegrityError as exc:
        if classify_integrity_error(exc) != "unique":
            raise
        raise ConflictError("EMAIL_EXISTS", "Email address already exists.") from exc

    logger.info("Created user_id=%s role=%s", user_id, new_user.role)
    created = _get_user_or_404(store, user_id)
    return UserDetailResponse(message="User created successfully", user=UserDetail.from_user(created))


@router.put("/users/{user_id}", response_model=UserDetailResponse)
def update_user(
    request: Request,
    user_id: str,
    body: Optional[UserUpdate] = None,
    current_user: User = Depends(require_admin),
) -> UserDetailResponse:
    """Partially update email, name, role, department and isActive.

    Omitted (or empty) email/name/role are left unchanged; department may be
    cleared with an empty string.
    """
    body = body or UserUpdate()
    target_id = _parse_user_id(user_id)
    _check_role(body.role or None)

    store: UserStore = request.app.state.user_store
    target = _get_user_or_404(store, target_id)

    updates: dict = {}
    if body.email and body.email.strip():
        updates["email"] = body.email
    if body.name and body.name.strip():
        updates["name"] = body.name.strip()
    if body.role:
        updates["role"] = body.role
    if "department" in body.model_fields_set:
        updates["department"] = (body.department or "").strip() or None
    if body.is_active is not None:
        updates["is_active"] = body.is_active

    if not updates:
        raise ValidationError("NO_UPDATES", "No valid fields to update.")

    deactivating = updates.get("is_active") is False and target.is_active
    if deactivating and target.id == current_user.id:
        raise ValidationError("CANNOT_DEACTIVATE_SELF", "You cannot deactivate your own account.")
    losing_admin = target.role == "admin" and target.is_active and (
        deactivating or updates.get("role", "admin") != "admin"
    )
    if losing_admin and store.count_active_admins() <= 1:
        raise ValidationError("LAST_ADMIN", "Cannot remove the last active admin account.")

    try:
        store.update_user(target_id, **updates)
    except IntegrityError as exc:
        if classify_integrity_error(exc) != "unique":
            raise
        raise ConflictError("EMAIL_EXISTS", "Email address already exists.") from exc

    if deactivating:
        _revoke_sessions(request, target_id)

    updated = _get_user_or_404(store, target_id)
    return UserDetailResponse(message="User updated successfully", user=UserDetail.from_user(updated))


@limiter.limit("30/minute")
@router.post("/users/{user_id}/reset-password", response_model=UserDetailResponse)
def reset_password(request: Request, user_id: str, body: Optional[PasswordReset] = None) -> UserDetailResponse:
    """Set a new password for another account and sign that account out everywhere."""
    body = body or PasswordReset()
    target_id = _parse_user_id(user_id)
    new_password = _check_password(body.new_password)

    store: UserStore = request.app.state.user_store
    if not store.set_password_hash(target_id, hash_password(new_password)):
        raise NotFoundError("USER_NOT_FOUND", "User not found.")
    _revoke_sessions(request, target_id)

    logger.info("Password reset for user_id=%s", target_id)
    user = _get_user_or_404(store, target_id)
    return UserDetailResponse(message="Password reset successfully", user=UserDetail.from_user(user))


@router.delete("/users/{user_id}", response_model=UserDetailResponse)
def delete_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_admin),
) -> UserDetailResponse:
    """Soft delete: the row stays, is_active becomes false, sessions are destroyed."""
    target_id = _parse_user_id(user_id)
    if target_id == current_user.id:
        raise ValidationError("CANNOT_DELETE_SELF", "Cannot delete your own account.")

    store: UserStore = request.app.state.user_store
    if not store.deactivate_user(target_id):
        raise NotFoundError("USER_NOT_FOUND", "User not found.")
    _revoke_sessions(request, target_id)

    logger.info("Deactivated user_id=%s", target_id)
    user = _get_user_or_404(store, target_id)
    return UserDetailResponse(message="User deactivated successfully", user=UserDetail.from_user(user))
