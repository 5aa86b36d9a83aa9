"""
tests/conftest.py -- Shared test fixtures for the identity service tests.

This module provides:
  - store / service: fresh in-memory CredentialStore and AuthSessionService per test
  - api_client: TestClient with an admin access token for HTTP integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.roles import RoleName
from auth.service import AuthSessionService, build_auth_service
from auth.store import CredentialStore
from core.config import get_settings
from tests.factories import fast_hash, make_identity

ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"


# ---------------------------------------------------------------------------
# Unit-test fixtures -- one fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: CredentialStore) -> AuthSessionService:
    """AuthSessionService over the in-memory store, catalog seeded, dev-mode settings."""
    return build_auth_service(store, get_settings(), password_hasher=fast_hash)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, service: AuthSessionService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test store and service into app.state so TestClient
    routes see an isolated database instead of the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.credential_store = store
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store. The
    admin identity is created before the client starts and its access token
    is issued for use in Authorization headers.

    Rate limiting is switched off for the module; tests that exercise it turn
    it back on locally.
    """
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    store = CredentialStore(db_url=f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    service = build_auth_service(store, get_settings(), password_hasher=fast_hash)

    admin = make_identity(store, ADMIN_USERNAME, ADMIN_PASSWORD, roles=(RoleName.ADMIN,))
    token = service.issuer.issue_access(admin, service.roles.resolve(admin)).value

    app.router.lifespan_context = _patch_lifespan(store, service)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    limiter.enabled = True
    store.close()
