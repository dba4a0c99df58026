"""
tests/conftest.py -- Shared fixtures for tenantauth tests.

This module provides:
  - settings: Settings with a fixed 40-char key and a configured directory
  - user_store / tenant_store: in-memory SQLite stores seeded with tenants
    and users covering each account state
  - FakeDirectory: DirectoryClient stand-in (no LDAP server needed)
  - coordinator: AuthenticationCoordinator wired to the above
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Named shared-memory SQLite URIs are used for api_client because TestClient
runs sync route handlers in a thread pool; plain :memory: is per-connection.

The DEBUG env var must be set before any api/ import so get_settings() can
auto-generate SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any core/api import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from auth.credentials import CredentialVerifier
from auth.errors import AuthenticationFailed
from auth.models import DirectoryEntry, Tenant, User
from auth.service import AuthenticationCoordinator
from auth.store import TenantStore, UserStore
from auth.tenancy import TenantGate
from auth.tokens import TokenIssuer, hash_password
from core.config import Settings

PASSWORD = "correct horse battery"
# bcrypt is slow on purpose; hash once per session.
PASSWORD_HASH = hash_password(PASSWORD)

ROOT = "root"
ACME = "acme"
GLOBEX = "globex"
EXPIRED = "initech"
INACTIVE = "umbrella"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeDirectory:
    """In-process DirectoryClient: records the bind, returns canned entries."""

    def __init__(self, entries: list[DirectoryEntry] | None = None, bind_error: Exception | None = None) -> None:
        self.entries = entries or []
        self.bind_error = bind_error
        self.bound_as: tuple[str, str] | None = None
        self.searches: list[tuple[str, str]] = []
        self.closed = False

    def bind(self, server: str, port: int, domain: str, username: str, password: str) -> None:
        if self.bind_error is not None:
            raise self.bind_error
        if password != PASSWORD:
            raise AuthenticationFailed()
        self.bound_as = (username, password)

    def search(self, base, search_filter, scope="SUBTREE", attributes=None) -> list[DirectoryEntry]:
        self.searches.append((base, search_filter))
        return list(self.entries)

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


def _tenants() -> list[Tenant]:
    now = datetime.now(timezone.utc)
    return [
        Tenant(id=ROOT, name="Root", is_active=True),
        Tenant(id=ACME, name="Acme", is_active=True, valid_upto=now + timedelta(days=365)),
        Tenant(id=GLOBEX, name="Globex", is_active=True, valid_upto=now + timedelta(days=365)),
        Tenant(id=EXPIRED, name="Initech", is_active=True, valid_upto=now - timedelta(days=1)),
        Tenant(id=INACTIVE, name="Umbrella", is_active=False, valid_upto=now + timedelta(days=365)),
    ]


def _users() -> list[User]:
    def make(username: str, tenant_id: str = ACME, **fields) -> User:
        fields.setdefault("hashed_password", PASSWORD_HASH)
        fields.setdefault("email_confirmed", True)
        return User(tenant_id=tenant_id, username=username, email=f"{username}@example.test", **fields)

    return [
        make(
            "alice",
            first_name="Alice",
            last_name="Liddell",
            phone_number="+1-555-0100",
            image_url="https://img.example.test/alice.png",
        ),
        make("jdoe", hashed_password=None),  # directory-only account
        make("bob", two_factor_enabled=True),
        make("carol", is_active=False),
        make("dave", email_confirmed=False),
        make("erin", tenant_id=EXPIRED),
        make("frank", tenant_id=INACTIVE),
        make("admin", tenant_id=ROOT),
    ]


def seed(user_store: UserStore, tenant_store: TenantStore) -> None:
    for tenant in _tenants():
        tenant_store.create_tenant(tenant)
    for user in _users():
        user_store.create_user(user)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        secret_key="k" * 40,
        root_tenant_id=ROOT,
        ldap_server="dc1.example.test",
        ldap_port=389,
        ldap_domain="EXAMPLE",
        ldap_query_base="DC=example,DC=test",
    )


@pytest.fixture
def password() -> str:
    """Plaintext password shared by every seeded account."""
    return PASSWORD


@pytest.fixture
def stores() -> Generator[tuple[UserStore, TenantStore], None, None]:
    user_store = UserStore("sqlite:///:memory:")
    tenant_store = TenantStore("sqlite:///:memory:")
    seed(user_store, tenant_store)
    yield user_store, tenant_store
    user_store.close()
    tenant_store.close()


@pytest.fixture
def user_store(stores) -> UserStore:
    return stores[0]


@pytest.fixture
def tenant_store(stores) -> TenantStore:
    return stores[1]


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory(entries=[DirectoryEntry(account_name="jdoe")])


@pytest.fixture
def issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer.from_settings(settings)


def make_coordinator(settings: Settings, user_store: UserStore, directory: FakeDirectory) -> AuthenticationCoordinator:
    return AuthenticationCoordinator(
        user_store,
        TokenIssuer.from_settings(settings),
        CredentialVerifier(user_store, settings, directory_factory=lambda: directory),
        TenantGate(settings.root_tenant_id),
        require_confirmed_account=settings.require_confirmed_account,
    )


@pytest.fixture
def coordinator(settings, user_store, directory) -> AuthenticationCoordinator:
    return make_coordinator(settings, user_store, directory)


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, UserStore, FakeDirectory], None, None]:
    """Yield (client, user_store, directory) for HTTP integration tests.

    The real app and routes run; only the lifespan is swapped so the stores
    are isolated in-memory databases and the directory is a fake.
    """
    from api.limiter import limiter
    from api.main import app

    db_url = f"sqlite:///file:{request.module.__name__}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    tenant_store = TenantStore(db_url)
    seed(user_store, tenant_store)
    directory = FakeDirectory(entries=[DirectoryEntry(account_name="jdoe")])
    settings = Settings(
        secret_key="k" * 40,
        root_tenant_id=ROOT,
        ldap_server="dc1.example.test",
        ldap_domain="EXAMPLE",
        ldap_query_base="DC=example,DC=test",
    )

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.tenant_store = tenant_store
        app.state.coordinator = make_coordinator(settings, user_store, directory)
        yield

    app.router.lifespan_context = test_lifespan
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, directory

    user_store.close()
    tenant_store.close()
