"""
tests/conftest.py -- Shared test fixtures for SecureWatch integration tests.

This module provides:
  - engine: an isolated named shared-memory SQLite engine per test
  - stores: UserStore/SessionStore/PolicyStore/SettingsStore on that engine,
    seeded with one admin and one viewer
  - client: TestClient over the real app with a patched lifespan
  - login(): helper returning the session token for an account

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import: DEBUG lets
get_settings() auto-generate SECRET_KEY, and the minimum work factor keeps
password hashing fast.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("API_RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from appsettings.store import SettingsStore
from auth.models import User
from auth.passwords import hash_password
from auth.ratelimit import FixedWindowRateLimiter
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings
from core.database import make_engine
from core.schema import employees, violations
from policies.store import PolicyStore

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
VIEWER_EMAIL = "viewer@example.com"
VIEWER_PASSWORD = "viewerpass123"


class FakeResolver:
    """Stands in for the database-side get_effective_policies() function."""

    def __init__(self) -> None:
        self.rows: dict[int, list[dict]] = {}
        self.error: Exception | None = None
        self.calls: list[int] = []

    def resolve(self, employee_id: int) -> list[dict]:
        self.calls.append(employee_id)
        if self.error is not None:
            raise self.error
        return self.rows.get(employee_id, [])


@dataclass
class Stores:
    engine: Engine
    users: UserStore
    sessions: SessionStore
    policies: PolicyStore
    settings: SettingsStore
    resolver: FakeResolver
    admin_id: int
    viewer_id: int


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_engine() -> Engine:
    """Engine on a fresh named shared-memory database."""
    return make_engine(f"sqlite:///file:securewatch_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def seed_employee(engine: Engine, name: str = "Jane Doe", email: str = "jane@example.com", **extra) -> int:
    with engine.begin() as conn:
        result = conn.execute(
            employees.insert().values(
                name=name,
                email=email,
                department=extra.get("department", "Engineering"),
                job_title=extra.get("job_title", "Developer"),
            )
        )
        return result.inserted_primary_key[0]


def seed_violation(engine: Engine, employee_id: int, type_: str = "data_exfiltration", severity: str = "high") -> int:
    with engine.begin() as conn:
        result = conn.execute(
            violations.insert().values(employee_id=employee_id, type=type_, severity=severity)
        )
        return result.inserted_primary_key[0]


def _patch_lifespan(stores: Stores):
    """Return a lifespan that wires the test stores into app.state.

    The purge_task is a long-sleeping coroutine: a real asyncio.Task is
    required because shutdown calls .cancel() on it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = stores.engine
        app.state.user_store = stores.users
        app.state.session_store = stores.sessions
        app.state.policy_store = stores.policies
        app.state.settings_store = stores.settings
        app.state.policy_resolver = stores.resolver
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng = make_test_engine()
    yield eng
    eng.dispose()


@pytest.fixture()
def stores(engine: Engine) -> Stores:
    users = UserStore(engine)
    admin_id = users.create_user(
        User(email=ADMIN_EMAIL, name="Ada Admin", role="admin", password_hash=hash_password(ADMIN_PASSWORD))
    )
    viewer_id = users.create_user(
        User(
            email=VIEWER_EMAIL,
            name="Vic Viewer",
            role="viewer",
            department="Finance",
            password_hash=hash_password(VIEWER_PASSWORD),
        )
    )
    return Stores(
        engine=engine,
        users=users,
        sessions=SessionStore(engine),
        policies=PolicyStore(engine),
        settings=SettingsStore(engine),
        resolver=FakeResolver(),
        admin_id=admin_id,
        viewer_id=viewer_id,
    )


@pytest.fixture()
def client(stores: Stores) -> Generator[TestClient, None, None]:
    """TestClient over the real app, isolated stores and a fresh login limiter."""
    settings = get_settings()
    app.router.lifespan_context = _patch_lifespan(stores)
    app.state.login_limiter = FixedWindowRateLimiter(
        max_requests=settings.login_rate_limit_max,
        window_seconds=settings.login_rate_limit_window_seconds,
    )
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def login(client: TestClient, email: str, password: str) -> str:
    """Log in and return the raw session token.

    The cookie jar is cleared afterwards so tests can switch identities with
    explicit Authorization headers.
    """
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    token = resp.cookies[get_settings().session_cookie_name]
    client.cookies.clear()
    return token


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(client: TestClient) -> dict[str, str]:
    return bearer(login(client, ADMIN_EMAIL, ADMIN_PASSWORD))


@pytest.fixture()
def viewer_headers(client: TestClient) -> dict[str, str]:
    return bearer(login(client, VIEWER_EMAIL, VIEWER_PASSWORD))


@pytest.fixture()
def make_employee(engine: Engine):
    """Callable that inserts an employee row and returns its id."""

    def _make(name: str = "Jane Doe", email: str = "jane@example.com", **extra) -> int:
        return seed_employee(engine, name=name, email=email, **extra)

    return _make


@pytest.fixture()
def make_violation(engine: Engine):
    """Callable that inserts a violation row and returns its id."""

    def _make(employee_id: int, type_: str = "data_exfiltration", severity: str = "high") -> int:
        return seed_violation(engine, employee_id, type_=type_, severity=severity)

    return _make


@pytest.fixture()
def login_as(client: TestClient):
    """Callable that logs in and returns Authorization headers for the account."""

    def _login(email: str, password: str) -> dict[str, str]:
        return bearer(login(client, email, password))

    return _login
