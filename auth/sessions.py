"""
auth/sessions.py -- Server-side session store.

A session is an opaque token handed to the client (cookie or Bearer header)
plus a row in user_sessions keyed by HMAC-SHA256(SECRET_KEY, token). The raw
token is never persisted: a leaked database does not yield usable sessions.

Token generation:
  secrets.token_urlsafe(32) gives 256 bits of entropy. HMAC rather than
  bcrypt because lookup must be O(1) by key and the input is already
  high-entropy.

Expiry:
  expires_at is fixed at creation (created_at + SESSION_TTL_SECONDS). get()
  deletes an expired row and reports it as absent; purge_expired() sweeps
  the rest and is run periodically by the API lifespan task.

Failure model:
  Every write raises SessionError on a database failure so the auth layer can
  answer SESSION_ERROR (500) without leaking driver text.

Layer rule: no imports from api/, policies/, or appsettings/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import SessionRecord
from core.config import get_settings
from core.database import create_schema
from core.schema import user_sessions as _sessions

logger = logging.getLogger("securewatch.auth")


class SessionError(Exception):
    """Raised when a session cannot be persisted or destroyed."""


def hash_session_token(token: str, secret_key: str | None = None) -> str:
    """Return HMAC-SHA256(SECRET_KEY, token) as a hex string (the row id)."""
    key = secret_key or get_settings().secret_key
    return hmac.new(key.encode(), token.encode(), hashlib.sha256).hexdigest()


def _iso(ts: datetime) -> str:
    return ts.isoformat()


class SessionStore:
    """Repository for server-side sessions.

    Usage:
        sessions = SessionStore(engine, ttl_seconds=8 * 3600)
        token = sessions.create(user.id, ip_address="10.0.0.5")
        record = sessions.get(token)   # None when unknown or expired
        sessions.destroy(token)
    """

    def __init__(self, engine: Engine, ttl_seconds: int | None = None, secret_key: str | None = None) -> None:
        settings = get_settings()
        self.engine = engine
        self.ttl_seconds = ttl_seconds or settings.session_ttl_seconds
        self._secret_key = secret_key or settings.secret_key
        create_schema(self.engine)

    def _key(self, token: str) -> str:
        return hash_session_token(token, self._secret_key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, user_id: int, ip_address: str | None = None, user_agent: str | None = None) -> str:
        """Persist a new session for user_id and return the raw token."""
        token = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _sessions.insert().values(
                        id=self._key(token),
                        user_id=user_id,
                        created_at=_iso(now),
                        last_seen_at=_iso(now),
                        expires_at=_iso(now + timedelta(seconds=self.ttl_seconds)),
                        ip_address=ip_address,
                        user_agent=(user_agent or "")[:255] or None,
                    )
                )
        except SQLAlchemyError as exc:
            logger.exception("Failed to persist session for user_id=%s", user_id)
            raise SessionError("Could not create session.") from exc
        return token

    def get(self, token: str) -> SessionRecord | None:
        """Return the live session for token and refresh last_seen_at.

        An expired session is deleted on sight and reported as absent.
        """
        if not token:
            return None
        key = self._key(token)
        now = _iso(datetime.now(timezone.utc))
        with self.engine.begin() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == key)).fetchone()
            if row is None:
                return None
            if row.expires_at <= now:
                conn.execute(delete(_sessions).where(_sessions.c.id == key))
                return None
            conn.execute(_sessions.update().where(_sessions.c.id == key).values(last_seen_at=now))
        return SessionRecord(
            session_id=row.id,
            user_id=row.user_id,
            created_at=row.created_at,
            last_seen_at=now,
            expires_at=row.expires_at,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
        )

    def destroy(self, token: str) -> None:
        """Delete the session for token. Unknown tokens are a no-op."""
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(_sessions).where(_sessions.c.id == self._key(token)))
        except SQLAlchemyError as exc:
            logger.exception("Failed to destroy session")
            raise SessionError("Could not destroy session.") from exc

    def destroy_for_user(self, user_id: int, keep_token: str | None = None) -> int:
        """Delete every session of user_id, optionally sparing keep_token.

        Used on deactivation, password reset and password change. Returns
        the number of sessions removed.
        """
        stmt = delete(_sessions).where(_sessions.c.user_id == user_id)
        if keep_token:
            stmt = stmt.where(_sessions.c.id != self._key(keep_token))
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to destroy sessions for user_id=%s", user_id)
            raise SessionError("Could not destroy sessions.") from exc
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete every expired session. Returns the number removed."""
        now = _iso(datetime.now(timezone.utc))
        with self.engine.begin() as conn:
            result = conn.execute(delete(_sessions).where(_sessions.c.expires_at <= now))
        if result.rowcount:
            logger.info("Purged %d expired sessions", result.rowcount)
        return result.rowcount


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs (CSRF mitigation for the
        state-changing routes).
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the server-side session TTL.
    """
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_ttl_seconds,
    )


def clear_session_cookie(response) -> None:
    settings = get_settings()
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
