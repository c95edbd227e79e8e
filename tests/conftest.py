"""
tests/conftest.py -- Shared test fixtures for the library portal auth tests.

This module provides:
  - make_store(): isolated named shared-memory SQLite CredentialStore
  - seeded accounts covering every account status the policy knows about
  - auth_service: AuthenticationService wired to a fresh store and cache
  - api_client: TestClient over the full ASGI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because verification and last_login writes run on worker threads. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG must be set before any app import so get_settings() auto-generates
SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from functools import lru_cache

# CRITICAL: set before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BASE_URL", "http://localhost")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import build_auth_service
from asgi import app
from auth.models import CredentialRecord
from auth.policy import SessionPolicy
from auth.service import AuthenticationService
from auth.store import CredentialStore
from auth.tokens import SessionTokenIssuer, hash_password
from cache.store import IdentityCache
from core.config import get_settings

# Every test request comes from the same client address.
limiter.enabled = False

ACTIVE_EMAIL = "a@b.com"
ACTIVE_PASSWORD = "correctpw"

# email -> (status, password)
SEEDED_ACCOUNTS: dict[str, tuple[str | None, str]] = {
    ACTIVE_EMAIL: ("active", ACTIVE_PASSWORD),
    "nostatus@b.com": (None, "nostatuspw"),
    "suspended@b.com": ("Suspended", "suspendedpw"),
    "blocked@b.com": ("BLOCKED", "blockedpw"),
    "banned@b.com": ("banned", "bannedpw"),
    "legacy@b.com": ("on-hold", "legacypw"),
}


@lru_cache
def _hashed(password: str) -> str:
    return hash_password(password)


def make_store(prefix: str = "auth") -> CredentialStore:
    """Create an isolated named shared-memory CredentialStore."""
    name = f"test_{prefix}_{uuid.uuid4().hex}"
    return CredentialStore(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def seed_accounts(store: CredentialStore) -> dict[str, int]:
    """Insert SEEDED_ACCOUNTS and return {email: id}."""
    ids: dict[str, int] = {}
    for email, (status, password) in SEEDED_ACCOUNTS.items():
        ids[email] = store.create_user(
            CredentialRecord(
                email=email,
                password_hash=_hashed(password),
                role="admin" if email == ACTIVE_EMAIL else None,
                status=status,
                name=email.split("@")[0].title(),
                username=email.split("@")[0],
                avatar=f"/avatars/{email.split('@')[0]}.png",
                created_at="2024-01-15T10:00:00+00:00",
            )
        )
    return ids


def make_service(
    store: CredentialStore,
    cache: IdentityCache | None = None,
    issuer: SessionTokenIssuer | None = None,
    policy: SessionPolicy | None = None,
    **kwargs,
) -> AuthenticationService:
    secret = get_settings().secret_key
    return AuthenticationService(
        store=store,
        cache=cache if cache is not None else IdentityCache(),
        policy=policy or SessionPolicy(),
        issuer=issuer or SessionTokenIssuer(secret),
        secret_key=secret,
        **kwargs,
    )


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def seeded_ids(store: CredentialStore) -> dict[str, int]:
    return seed_accounts(store)


@pytest.fixture
def auth_service(store: CredentialStore, seeded_ids: dict[str, int]) -> Generator[AuthenticationService, None, None]:
    service = make_service(store)
    yield service
    service.close()


# ---------------------------------------------------------------------------
# ASGI client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state so TestClient routes see an isolated
    DB. The purge_task is a long-sleeping coroutine so shutdown can cancel a
    real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.credential_store = store
        app.state.auth_service = build_auth_service(get_settings(), store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        app.state.auth_service.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, dict[str, int]], None, None]:
    """Yield (client, {email: id}) for HTTP integration tests.

    base_url matches BASE_URL and the default TrustedHost allow-list.
    follow_redirects=False so redirect Location headers can be asserted.
    """
    store = make_store("api")
    ids = seed_accounts(store)
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, base_url="http://localhost", follow_redirects=False) as client:
        yield client, ids

    store.close()
