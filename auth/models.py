"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and routes do the work.

The auth result types replace "attach the user to the request object":
resolve_session() returns either Authenticated or Unauthenticated, and the
FastAPI dependencies hand the Authenticated user to handlers explicitly.

Layer rule: no imports from api/, policies/, or appsettings/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

ROLES: tuple[str, ...] = ("admin", "analyst", "viewer")


@dataclass
class User:
    """An operator of the SecureWatch console (not a monitored employee).

    email is unique and always stored lower-cased; lookups lower-case their
    input. password_hash is a bcrypt digest and must never leave the server --
    use public_fields() for anything returned to a client.

    Users are never hard-deleted. DELETE /users/{id} sets is_active=False.
    """

    email: str
    name: str
    role: str  # "admin", "analyst", "viewer"
    password_hash: str = ""
    id: int | None = None
    department: str | None = None
    is_active: bool = True
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def public_fields(self) -> dict:
        """Sanitized identity fields safe to return to the client."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "department": self.department,
        }


@dataclass
class SessionRecord:
    """A server-side session row.

    session_id is HMAC-SHA256(SECRET_KEY, token). The raw token only exists in
    the client's cookie (or Bearer header) and in the login response.
    """

    session_id: str
    user_id: int
    created_at: str
    last_seen_at: str
    expires_at: str
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class Authenticated:
    user: User
    token: str


@dataclass(frozen=True)
class Unauthenticated:
    """reason is a stable error code: NOT_AUTHENTICATED, USER_NOT_FOUND, ACCOUNT_INACTIVE."""

    reason: str


AuthResult = Union[Authenticated, Unauthenticated]
