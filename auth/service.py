"""
auth/service.py -- Credential checks and the password/profile lifecycle.

Pure domain logic over UserStore and SessionStore. Failures raise AuthFailure
carrying the HTTP status and stable code the API layer should answer with;
the routes translate it through api.errors.error_for_status(). Keeping HTTP
types out of this module lets the CLI reuse the same rules.

Login decision order:
  1. email or password blank        -> 400 MISSING_CREDENTIALS
  2. no user for the lower-cased email -> 401 INVALID_CREDENTIALS
     (bcrypt still runs against DUMMY_HASH so timing matches case 4)
  3. user found but inactive        -> 401 ACCOUNT_INACTIVE
  4. password does not verify       -> 401 INVALID_CREDENTIALS

Cases 2 and 4 are indistinguishable to the caller: same status, same code,
same message.

Layer rule: no imports from api/, policies/, or appsettings/.
"""

from __future__ import annotations

import logging

from auth.models import User
from auth.passwords import DUMMY_HASH, MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH, hash_password, verify_password
from auth.sessions import SessionStore
from auth.store import UserStore

logger = logging.getLogger("securewatch.auth")

_INVALID_CREDENTIALS = "Invalid email or password."


class AuthFailure(Exception):
    """A rejected auth operation. status_code and code are part of the API contract."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def authenticate(store: UserStore, email: str | None, password: str | None) -> User:
    """Return the User for a valid email/password pair or raise AuthFailure."""
    if not email or not email.strip() or not password:
        raise AuthFailure(400, "MISSING_CREDENTIALS", "Email and password are required.")

    user = store.get_by_email(email)
    if user is None:
        verify_password(password, DUMMY_HASH)
        logger.info("Login rejected: unknown account")
        raise AuthFailure(401, "INVALID_CREDENTIALS", _INVALID_CREDENTIALS)

    if not user.is_active:
        logger.info("Login rejected: inactive account user_id=%s", user.id)
        raise AuthFailure(401, "ACCOUNT_INACTIVE", "Account has been deactivated.")

    if not verify_password(password, user.password_hash):
        logger.info("Login rejected: bad password user_id=%s", user.id)
        raise AuthFailure(401, "INVALID_CREDENTIALS", _INVALID_CREDENTIALS)

    return user


def check_new_password(password: str | None) -> str:
    """Enforce the length rules shared by change, reset and create."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise AuthFailure(
            400,
            "PASSWORD_TOO_SHORT",
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.",
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise AuthFailure(
            400,
            "PASSWORD_TOO_LONG",
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.",
        )
    return password


def change_password(
    store: UserStore,
    sessions: SessionStore,
    user: User,
    current_password: str | None,
    new_password: str | None,
    current_token: str | None = None,
) -> None:
    """Re-verify current_password, then store a fresh hash of new_password.

    Every other session of the user is destroyed; the caller's own session
    (current_token) survives so the browser stays logged in.
    """
    if not current_password or not new_password:
        raise AuthFailure(400, "MISSING_PASSWORDS", "Current password and new password are required.")
    check_new_password(new_password)

    stored = store.get_by_id(user.id)
    if stored is None:
        raise AuthFailure(404, "USER_NOT_FOUND", "User not found.")
    if not verify_password(current_password, stored.password_hash):
        raise AuthFailure(401, "INVALID_CURRENT_PASSWORD", "Current password is incorrect.")

    store.set_password_hash(user.id, hash_password(new_password))
    revoked = sessions.destroy_for_user(user.id, keep_token=current_token)
    logger.info("Password changed for user_id=%s (%d other sessions revoked)", user.id, revoked)


def update_profile(store: UserStore, user: User, name: str | None, department: str | None) -> User:
    """Update the caller's own name and department. Blank department clears it."""
    if not name or not name.strip():
        raise AuthFailure(400, "MISSING_NAME", "Name is required.")
    store.update_user(
        user.id,
        name=name.strip(),
        department=(department or "").strip() or None,
    )
    updated = store.get_by_id(user.id)
    if updated is None:
        raise AuthFailure(404, "USER_NOT_FOUND", "User not found.")
    return updated
