"""
tests/conftest.py -- Shared test fixtures for ClubGate unit and integration tests.

This module provides:
  - auth_engine / user_store / session_store / invite_store / reset_store:
    isolated in-memory stores, fresh per test
  - make_user: factory that inserts a user with a real bcrypt hash
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus an admin token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core import: get_settings()
is cached on first call and auth/tokens.py reads it at import time.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import. DEBUG lets get_settings()
# auto-generate SECRET_KEY; 4 bcrypt rounds keeps the suite fast; rate limits
# off so repeated logins never hit 429; "testserver" is TestClient's Host.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.invites import InviteStore
from auth.models import User
from auth.resets import PasswordResetStore
from auth.roles import Role
from auth.store import SessionStore, UserStore, create_auth_engine
from auth.tokens import create_access_token, hash_password

ADMIN_EMAIL = "admin@test.org"
ADMIN_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(name: str) -> str:
    return f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true"


def _create_user(
    user_store: UserStore,
    email: str,
    role: Role = Role.MEMBER,
    password: str = "testpass123",
    is_active: bool = True,
) -> str:
    return user_store.create_user(
        User(
            email=email,
            role=role,
            hashed_password=hash_password(password),
            first_name="Test",
            last_name=role.value.replace("_", " ").title(),
            is_active=is_active,
        )
    )


@pytest.fixture
def auth_engine() -> Generator[Engine, None, None]:
    """Fresh named in-memory database per test. Dropped on dispose."""
    engine = create_auth_engine(_memory_url(uuid.uuid4().hex))
    yield engine
    engine.dispose()


@pytest.fixture
def user_store(auth_engine: Engine) -> UserStore:
    return UserStore(auth_engine)


@pytest.fixture
def session_store(auth_engine: Engine) -> SessionStore:
    return SessionStore(auth_engine)


@pytest.fixture
def invite_store(auth_engine: Engine) -> InviteStore:
    return InviteStore(auth_engine)


@pytest.fixture
def reset_store(auth_engine: Engine) -> PasswordResetStore:
    return PasswordResetStore(auth_engine)


@pytest.fixture
def make_user(user_store: UserStore) -> Callable[..., str]:
    """Return a factory: make_user("a@b.org", Role.CAPTAIN) -> user id."""

    def factory(email: str, role: Role = Role.MEMBER, **kwargs) -> str:
        return _create_user(user_store, email, role, **kwargs)

    return factory


def _patch_lifespan(
    user_store: UserStore,
    session_store: SessionStore,
    invite_store: InviteStore,
    reset_store: PasswordResetStore,
):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.invite_store = invite_store
        app.state.reset_store = reset_store
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database.
    The admin user is created before the client starts; its token has a
    session row, exactly as if it had come from POST /auth/login.
    """
    engine = create_auth_engine(_memory_url(f"api_{uuid.uuid4().hex}"))
    user_store = UserStore(engine)
    session_store = SessionStore(engine)
    invite_store = InviteStore(engine)
    reset_store = PasswordResetStore(engine)

    uid = _create_user(user_store, ADMIN_EMAIL, Role.ADMIN, password=ADMIN_PASSWORD)
    issued = create_access_token(uid)
    session_store.create(uid, issued.token, issued.expires_at)

    app.router.lifespan_context = _patch_lifespan(user_store, session_store, invite_store, reset_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, issued.token, uid

    engine.dispose()
