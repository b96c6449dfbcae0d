"""
tests/conftest.py -- Shared test fixtures for TripDesk integration tests.

This module provides:
  - make_test_store(): creates an isolated in-memory auth DB
  - FakeMailer: records reset emails instead of talking to SMTP
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client / web_client: TestClient plus a seeded two-tenant world

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import: DEBUG lets
get_settings() auto-generate SECRET_KEY and accept a low bcrypt cost, and the
forgot-password limit is raised because the limiter's counters are
process-global.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("FORGOT_PASSWORD_RATE_LIMIT", "1000/minute")
os.environ.setdefault("APP_BASE_URL", "https://app.tripdesk.example")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import Agency, Role, SessionIdentity, User
from auth.reset import PasswordResetManager
from auth.store import UserStore
from auth.tokens import create_session_token, hash_password
from core.config import get_settings

OWNER_PASSWORD = "Owner123!"
STAFF_PASSWORD = "Staff123!"
ADMIN_PASSWORD = "Admin123!"


# ---------------------------------------------------------------------------
# Store and mail helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str | None = None) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state. Random when omitted.
    """
    suffix = db_suffix or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")


@dataclass
class SentMail:
    to: str
    reset_url: str
    ttl_seconds: int


@dataclass
class FakeMailer:
    """Stands in for core.mailer.Mailer. Set fail_with to simulate SMTP errors."""

    outbox: list[SentMail] = field(default_factory=list)
    fail_with: Exception | None = None

    def send_password_reset(self, to: str, reset_url: str, ttl_seconds: int) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.outbox.append(SentMail(to, reset_url, ttl_seconds))


def session_for(user: User) -> str:
    """Sign a session JWT for a stored user."""
    return create_session_token(
        SessionIdentity(user_id=user.id, email=user.email, role=user.role, tenant_id=user.tenant_id)
    )


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Seeded world: two agencies, each with an owner; one staff member; admins
# ---------------------------------------------------------------------------


@dataclass
class World:
    client: TestClient
    store: UserStore
    mailer: FakeMailer
    sunrise_id: int
    lagoon_id: int
    owner: User
    staff: User
    other_owner: User
    admin: User
    super_admin: User
    owner_password: str = OWNER_PASSWORD

    def token(self, user: User) -> str:
        return session_for(user)

    def headers(self, user: User) -> dict[str, str]:
        return bearer(session_for(user))


def _seed(store: UserStore) -> dict:
    sunrise_id, owner_id = store.create_agency_with_owner(
        Agency(name="Sunrise Tours"),
        User(
            email="owner@sunrise-tours.com",
            role=Role.AGENCY.value,
            hashed_password=hash_password(OWNER_PASSWORD),
            display_name="Sam Sunrise",
        ),
    )
    lagoon_id, other_owner_id = store.create_agency_with_owner(
        Agency(name="Blue Lagoon Travel"),
        User(
            email="owner@bluelagoon.com",
            role=Role.AGENCY.value,
            hashed_password=hash_password(OWNER_PASSWORD),
        ),
    )
    staff_id = store.create_user(
        User(
            email="staff@sunrise-tours.com",
            role=Role.STAFF.value,
            hashed_password=hash_password(STAFF_PASSWORD),
            tenant_id=sunrise_id,
        )
    )
    admin_id = store.create_user(
        User(email="admin@tripdesk.com", role=Role.ADMIN.value, hashed_password=hash_password(ADMIN_PASSWORD))
    )
    super_id = store.create_user(
        User(email="root@tripdesk.com", role=Role.SUPER_ADMIN.value, hashed_password=hash_password(ADMIN_PASSWORD))
    )
    return {
        "sunrise_id": sunrise_id,
        "lagoon_id": lagoon_id,
        "owner": store.get_by_id(owner_id),
        "staff": store.get_by_id(staff_id),
        "other_owner": store.get_by_id(other_owner_id),
        "admin": store.get_by_id(admin_id),
        "super_admin": store.get_by_id(super_id),
    }


def _patch_lifespan(user_store: UserStore, mailer: FakeMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and FakeMailer into app.state so TestClient routes
    see isolated test DBs and never open an SMTP connection.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.mailer = mailer
        app.state.reset_manager = PasswordResetManager(user_store, mailer, get_settings())
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        try:
            await app.state.purge_task
        except asyncio.CancelledError:
            pass

    return test_lifespan


def _world(db_suffix: str, **client_kwargs) -> Generator[World, None, None]:
    store = make_test_store(f"{db_suffix}_{uuid.uuid4().hex[:8]}")
    mailer = FakeMailer()
    seeded = _seed(store)

    app.router.lifespan_context = _patch_lifespan(store, mailer)

    with TestClient(app, raise_server_exceptions=True, **client_kwargs) as client:
        yield World(client=client, store=store, mailer=mailer, **seeded)

    store.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """A fresh, empty store per test."""
    s = make_test_store()
    yield s
    s.close()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture(scope="module")
def api_client() -> Generator[World, None, None]:
    """Seeded world for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    """
    yield from _world("api")


@pytest.fixture(scope="module")
def web_client() -> Generator[World, None, None]:
    """Seeded world for web route tests.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations* (e.g. 302 to /login), which are invisible once
    the client follows the redirect and returns the final 200 response.
    """
    yield from _world("web", follow_redirects=False)


@pytest.fixture(autouse=True)
def _fresh_cookies(request):
    """Module-scoped clients keep cookies; drop any session a test left behind."""
    yield
    for name in ("api_client", "web_client"):
        if name in request.fixturenames:
            request.getfixturevalue(name).client.cookies.clear()
