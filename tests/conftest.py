"""
tests/conftest.py -- Shared test fixtures for CarLot integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory DBs for users, sessions, vehicles
  - _patch_lifespan(): wires test stores and a recording mailer into
    app.state, bypassing real startup
  - harness: module-scoped TestClient plus the stores and a session cookie
    for each role (admin, salesperson, unassigned)
  - client: the harness's TestClient with its cookie jar emptied around
    every test, so a login in one test never leaks into the next
  - as_role: switches the client to a seeded role's session (or none)
  - vehicle_form: factory for a valid add-vehicle form body

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any CarLot import: Settings is
read once and cached, and several modules read it at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.credentials import hash_password
from auth.models import Identity, Role, User
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings
from inventory.store import VehicleStore

PASSWORD = "correct-horse-9"


class RecordingMailer:
    """Stands in for SmtpMailer; records users instead of sending mail."""

    def __init__(self) -> None:
        self.sent: list[User] = []
        self.fail = False

    def send_registration_confirmation(self, user: User) -> None:
        if self.fail:
            raise OSError("relay unavailable")
        self.sent.append(user)


@dataclass
class Harness:
    client: TestClient
    user_store: UserStore
    session_store: SessionStore
    vehicle_store: VehicleStore
    mailer: RecordingMailer
    auth_url: str
    password: str = PASSWORD
    users: dict[Role, User] = field(default_factory=dict)
    _cookies: dict[Role, dict[str, str]] = field(default_factory=dict)

    def cookies_for(self, role: Role) -> dict[str, str]:
        """Session cookie for the seeded account holding this role."""
        return dict(self._cookies[role])


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> tuple[str, UserStore, SessionStore, VehicleStore]:
    """Create isolated named shared-memory SQLite stores for one test module.

    Users and sessions share one database, as they do in production.
    """
    auth_url = memory_url(f"test_auth_{db_suffix}")
    inventory_url = memory_url(f"test_inventory_{db_suffix}")
    return auth_url, UserStore(auth_url), SessionStore(auth_url), VehicleStore(inventory_url)


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, vehicle_store: VehicleStore, mailer):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.vehicle_store = vehicle_store
        app.state.mailer = mailer
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _seed_account(user_store: UserStore, session_store: SessionStore, role: Role, suffix: str) -> tuple[User, dict]:
    user = User(
        first_name=role.value.capitalize(),
        last_name="Tester",
        email=f"{role.value}.{suffix}@autolot.io",
        hashed_password=hash_password(PASSWORD),
        role=role,
    )
    user.id = user_store.create_user(user)
    raw_token = session_store.create(Identity.from_user(user))
    return user, {get_settings().session_cookie_name: raw_token}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def harness(request) -> Generator[Harness, None, None]:
    """Yield a Harness for one test module.

    follow_redirects=False is essential for web route tests: we assert on
    redirect locations, which are invisible once the client follows them.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    auth_url, user_store, session_store, vehicle_store = _make_test_stores(suffix)
    mailer = RecordingMailer()

    users: dict[Role, User] = {}
    cookies: dict[Role, dict[str, str]] = {}
    for role in Role:
        users[role], cookies[role] = _seed_account(user_store, session_store, role, suffix)

    app.router.lifespan_context = _patch_lifespan(user_store, session_store, vehicle_store, mailer)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Harness(
            client=client,
            user_store=user_store,
            session_store=session_store,
            vehicle_store=vehicle_store,
            mailer=mailer,
            auth_url=auth_url,
            users=users,
            _cookies=cookies,
        )

    vehicle_store.close()
    session_store.close()
    user_store.close()


@pytest.fixture
def client(harness: Harness) -> Generator[TestClient, None, None]:
    harness.client.cookies.clear()
    yield harness.client
    harness.client.cookies.clear()


@pytest.fixture
def as_role(client: TestClient, harness: Harness) -> Callable[[Role | None], TestClient]:
    """Return a function that points the client at one role's session.

    as_role(None) leaves the client anonymous.
    """

    def _as(role: Role | None) -> TestClient:
        client.cookies.clear()
        if role is not None:
            client.cookies.update(harness.cookies_for(role))
        return client

    return _as


@pytest.fixture
def vehicle_form() -> Callable[..., dict[str, str]]:
    """Return a factory for a complete, valid add-vehicle form body."""

    def _build(**overrides: str) -> dict[str, str]:
        data = {
            "manufacturer": "Toyota",
            "model": "Corolla",
            "year": "2018",
            "price": "15999.99",
            "color": "Blue",
            "engine_type": "1.8L I4",
            "vin": "4512398765",
            "mileage": "42000",
            "fuel_type": "Gasoline",
            "transmission_type": "Automatic",
            "images": "https://img.autolot.io/corolla-1.jpg\nhttps://img.autolot.io/corolla-2.jpg",
            "status": "available",
        }
        data.update(overrides)
        return data

    return _build
