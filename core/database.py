"""
core/database.py -- Engine factory and shared persistence helpers.

Every store receives an Engine built here rather than building its own.
The policy store joins users (created_by) and employees, so all stores must
share one database and one connection pool.

SQLite specifics:
  check_same_thread=False -- FastAPI runs sync handlers on a thread pool.
  PRAGMA journal_mode=WAL  -- readers do not block during writes.
  PRAGMA foreign_keys=ON   -- SQLite ignores FOREIGN KEY clauses (and so
                              ON DELETE CASCADE) unless this is set on every
                              connection.

PostgreSQL needs none of this: swapping SQLite for PostgreSQL is a
DATABASE_URL change.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.schema import metadata

# Largest id an INTEGER primary key holds on both SQLite and PostgreSQL.
MAX_ID = 2**31 - 1

# SQLSTATE codes for integrity violations (PostgreSQL).
_PG_CODES: dict[str, str] = {
    "23505": "unique",
    "23514": "check",
    "23502": "not_null",
    "23503": "foreign_key",
}

# SQLite reports the violated constraint kind in the message text only.
_SQLITE_MARKERS: tuple[tuple[str, str], ...] = (
    ("UNIQUE constraint failed", "unique"),
    ("CHECK constraint failed", "check"),
    ("NOT NULL constraint failed", "not_null"),
    ("FOREIGN KEY constraint failed", "foreign_key"),
)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(db_url: str) -> Engine:
    """Create an Engine for db_url with dialect-specific connection setup."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def create_schema(engine: Engine) -> None:
    """Create every table that does not exist yet. Idempotent."""
    metadata.create_all(engine)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def classify_integrity_error(exc: IntegrityError) -> str:
    """Return the kind of constraint an IntegrityError violated.

    One of "unique", "check", "not_null", "foreign_key", or "other". Route
    handlers turn the kind into a stable error code (e.g. unique ->
    DUPLICATE_POLICY_NAME) without ever echoing the driver message.
    """
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _PG_CODES:
        return _PG_CODES[code]
    message = str(orig)
    for marker, kind in _SQLITE_MARKERS:
        if marker in message:
            return kind
    return "other"
