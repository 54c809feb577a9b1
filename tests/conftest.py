"""
tests/conftest.py -- Shared test fixtures for teamauth.

This module provides:
  - store / revocations: isolated in-memory persistence + blacklist per test
  - token_service / directory / team_service: services wired to those stores
  - make_user: factory creating a local user (with personal team)
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

Environment variables must be set before any auth/core import so
get_settings() auto-generates signing secrets in dev mode, uses the cheapest
bcrypt cost, and lets the "testserver" host through TrustedHostMiddleware.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.directory import IdentityDirectory
from auth.models import SystemRole, User
from auth.permissions import AuthorizationModel
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from cache.store import RevocationCache
from teams.service import TeamService

# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def revocations() -> Generator[RevocationCache, None, None]:
    cache = RevocationCache(":memory:")
    yield cache
    cache.close()


@pytest.fixture
def token_service(store: UserStore, revocations: RevocationCache) -> TokenService:
    return TokenService(store, revocations)


@pytest.fixture
def directory(store: UserStore) -> IdentityDirectory:
    return IdentityDirectory(store, AuthorizationModel())


@pytest.fixture
def team_service(store: UserStore) -> TeamService:
    return TeamService(store, AuthorizationModel())


@pytest.fixture
def make_user(store: UserStore, directory: IdentityDirectory):
    """Factory: make_user("a@example.com", role=SystemRole.TEAM_LEAD) -> User.

    The user is created through IdentityDirectory.create_local(), so it owns a
    personal team. role, when given, is applied afterwards so tests are not
    sensitive to the first-user-becomes-OWNER bootstrap.
    """

    def _make(email: str | None = None, password: str = "s3cret-pass", role: SystemRole | None = None) -> User:
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        user = directory.create_local(email, hash_password(password), name=email.split("@")[0])
        if role is not None:
            store.update_user(user.id, role=role)
            user = store.get_by_id(user.id)
        return user

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, revocations: RevocationCache):
    """Return an async context manager that replaces the real lifespan.

    Wires test stores into app.state and mocks the OAuth registry so no
    network calls happen. The purge_task is a long-sleeping coroutine so
    shutdown can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, user_store, revocations)
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, access_token, user_id) for the bootstrap OWNER account.

    The bootstrap user is the first account in a fresh database and therefore
    holds system role OWNER. Every account created through /auth/signup in
    the same module afterwards is a MEMBER.
    """
    name = f"test_auth_{uuid.uuid4().hex[:8]}"
    user_store = UserStore(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")
    revocations = RevocationCache(":memory:")

    owner = IdentityDirectory(user_store).create_local(
        "owner@example.com", hash_password("ownerpass123"), name="Owner"
    )
    token = TokenService(user_store, revocations).issue(owner).access_token

    app.router.lifespan_context = _patch_lifespan(user_store, revocations)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, owner.id

    revocations.close()
    user_store.close()


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def signup(client: TestClient, email: str | None = None, password: str = "password123", name: str = "Tester") -> dict:
    """POST /auth/signup and return the JSON body (tokens + user)."""
    email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
    resp = client.post(
        "/api/v1/auth/signup",
        json={"email": email, "password": password, "name": name, "terms_accepted": True},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
