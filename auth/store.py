"""
auth/store.py -- SQLAlchemy Core persistence layer for SecureWatch users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are lower-cased on every write and every lookup, so uniqueness is
  effectively case-insensitive without a functional index.

Layer rule: no imports from api/, policies/, or appsettings/.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from auth.models import User
from core.database import create_schema, now_iso
from core.schema import users as _users

# Columns an admin (or the profile endpoint) may change through update_user().
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {"email", "name", "role", "department", "is_active", "password_hash", "last_login"}
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(make_engine("sqlite:///securewatch.db"))
        uid = store.create_user(User(email="a@b.c", name="A", role="admin", password_hash=hash_password("x")))
        user = store.get_by_email("A@B.C")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        create_schema(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_active_users(self) -> list[User]:
        """Return active users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(_users.c.is_active == 1)
                .order_by(_users.c.created_at.desc(), _users.c.id.desc())
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers turn that into EMAIL_EXISTS.
        """
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    password_hash=user.password_hash,
                    name=user.name.strip(),
                    role=user.role,
                    department=user.department,
                    is_active=1 if user.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Accepted fields: email, name, role, department, is_active,
        password_hash, last_login. is_active is passed as bool and stored as
        0/1. Unknown field names raise ValueError -- column names never come
        from request data.

        Returns True if a row was updated, False if user_id was not found.
        Raises IntegrityError if a new email collides with another user.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_password_hash(self, user_id: int, password_hash: str) -> bool:
        return self.update_user(user_id, password_hash=password_hash)

    def deactivate_user(self, user_id: int) -> bool:
        """Soft delete. Returns False if user_id was not found."""
        return self.update_user(user_id, is_active=False)

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login.

        Runs as a background task after a successful login. updated_at is
        left alone.
        """
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))
            conn.commit()

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where((_users.c.role == "admin") & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        role=row.role,
        department=row.department,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
