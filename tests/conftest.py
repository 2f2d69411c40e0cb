"""
tests/conftest.py -- Shared test fixtures for EventDesk.

This module provides:
  - FakeClock + token_cache: MemoryTokenCache whose TTLs tests can fast-forward
  - user_store / codec / engine: a fully wired AuthEngine on in-memory SQLite
  - make_user: factory that inserts a user with a known password
  - api: TestClient on the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit-level fixtures run on one thread and use :memory:.

JWT secrets must be in the environment before any core/auth import so
get_settings() can build Settings without raising.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set secrets before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012345678")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.engine import AuthEngine
from auth.mailer import EmailSender
from auth.models import Role, User
from auth.provisioning import generate_uid, role_prefix
from auth.store import UserStore
from auth.tokens import TokenCodec, hash_password
from cache.store import MemoryTokenCache
from events.store import EventStore

ACCESS_SECRET = "unit-access-secret-0123456789abcdef0123456789"
REFRESH_SECRET = "unit-refresh-secret-0123456789abcdef012345678"
PASSWORD = "CorrectHorse#1"

# Login tests would otherwise trip the 10/minute limit within one module.
limiter.enabled = False


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_cache(clock: FakeClock) -> MemoryTokenCache:
    return MemoryTokenCache(clock=clock)


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(ACCESS_SECRET, REFRESH_SECRET)


@pytest.fixture
def engine(user_store: UserStore, token_cache: MemoryTokenCache, codec: TokenCodec) -> AuthEngine:
    return AuthEngine(user_store, token_cache, codec)


def insert_user(
    store: UserStore,
    *,
    email: str,
    role: Role = Role.DOMAIN_LEAD,
    verified: bool = True,
    password: str = PASSWORD,
    name: str = "Test User",
) -> User:
    user = User(
        email=email,
        name=name,
        role=role,
        hashed_password=hash_password(password),
        uid=generate_uid(role_prefix(role)),
        is_verified=verified,
    )
    user.id = store.create_user(user)
    return user


@pytest.fixture
def make_user(user_store: UserStore):
    """Factory: make_user("a@x.io", role=Role.CAMPUS_AMBASSADOR, verified=False) -> User."""

    def _make(email: str, **kwargs) -> User:
        return insert_user(user_store, email=email, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    user_store: UserStore
    event_store: EventStore
    token_cache: MemoryTokenCache
    engine: AuthEngine
    lead: User
    ambassador: User

    def login(self, email: str, password: str = PASSWORD) -> dict:
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()

    def bearer(self, access_token: str) -> dict:
        return {"Authorization": f"Bearer {access_token}"}

    def add_user(self, email: str, **kwargs) -> User:
        return insert_user(self.user_store, email=email, **kwargs)


def _patch_lifespan(ctx: dict):
    """Return a lifespan that wires pre-built test collaborators into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = ctx["user_store"]
        app.state.event_store = ctx["event_store"]
        app.state.token_cache = ctx["token_cache"]
        app.state.auth_engine = ctx["engine"]
        app.state.mailer = EmailSender()
        yield

    return test_lifespan


@pytest.fixture
def api() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext backed by an isolated shared-memory database.

    Seeded accounts:
      lead       -- DOMAIN_LEAD, verified, password PASSWORD
      ambassador -- CAMPUS_AMBASSADOR, unverified, password PASSWORD
    """
    db_url = f"sqlite:///file:test_api_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    token_cache = MemoryTokenCache()
    event_store = EventStore(db_url, token_cache)
    engine = AuthEngine(user_store, token_cache, TokenCodec(ACCESS_SECRET, REFRESH_SECRET))

    lead = insert_user(user_store, email="lead@eventdesk.test", name="Lena Lead")
    ambassador = insert_user(
        user_store,
        email="ca@eventdesk.test",
        name="Cal Ambassador",
        role=Role.CAMPUS_AMBASSADOR,
        verified=False,
    )

    app.router.lifespan_context = _patch_lifespan(
        {"user_store": user_store, "event_store": event_store, "token_cache": token_cache, "engine": engine}
    )

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            user_store=user_store,
            event_store=event_store,
            token_cache=token_cache,
            engine=engine,
            lead=lead,
            ambassador=ambassador,
        )

    event_store.close()
    user_store.close()


@pytest.fixture
def password() -> str:
    """Plaintext password of every account created by insert_user()."""
    return PASSWORD
