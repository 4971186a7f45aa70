"""
tests/conftest.py -- Shared test fixtures for the stocktrack auth tests.

This module provides:
  - make_store(): isolated named shared-memory SQLite PrincipalStore
  - principal factory (add_principal) and scope factory (scope_for)
  - core fixtures: store, refresh_store, issuer, policy, guard, auth_service,
    principal_service
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any auth/core import:
  DEBUG=true                  -- get_settings() auto-generates SECRET_KEY
  PASSWORD_HASH_ROUNDS=4      -- bcrypt minimum cost keeps the suite fast
  *_RATE_LIMIT=1000/minute    -- integration tests log in many times per module
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REFRESH_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_auth
from auth.hashing import hash_secret
from auth.models import Principal, PrincipalStatus, Role, Scope
from auth.policy import RolePolicy
from auth.principals import PrincipalService
from auth.refresh import RefreshStore
from auth.scope import TenantScopeGuard
from auth.service import AuthService
from auth.store import PrincipalStore
from auth.tokens import TokenIssuer, get_token_issuer

_db_counter = itertools.count()

TEST_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(name: str = "unit") -> PrincipalStore:
    """Create a fresh named shared-memory store; each call gets its own database."""
    url = f"sqlite:///file:test_auth_{name}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"
    return PrincipalStore(db_url=url)


def add_principal(
    store: PrincipalStore,
    tenant_id: int,
    email: str,
    role: Role = Role.EMPLOYEE,
    status: PrincipalStatus = PrincipalStatus.ACTIVE,
    password: str = TEST_PASSWORD,
) -> Principal:
    """Insert a principal directly through the store and return it with its id."""
    principal = Principal(
        tenant_id=tenant_id,
        email=email,
        password_hash=hash_secret(password),
        role=role,
        status=status,
    )
    principal.id = store.create_principal(principal)
    return principal


def scope_for(principal: Principal) -> Scope:
    return Scope(principal_id=principal.id, tenant_id=principal.tenant_id, role=principal.role, email=principal.email)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[PrincipalStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def refresh_store(store: PrincipalStore) -> RefreshStore:
    return RefreshStore(store.engine)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer("x" * 32 + "-unit-test-signing-key", access_ttl=900, refresh_ttl=86400, leeway=5)


@pytest.fixture
def policy() -> RolePolicy:
    return RolePolicy()


@pytest.fixture
def guard(issuer: TokenIssuer, store: PrincipalStore) -> TenantScopeGuard:
    return TenantScopeGuard(issuer, store)


@pytest.fixture
def auth_service(store: PrincipalStore, refresh_store: RefreshStore, issuer: TokenIssuer) -> AuthService:
    return AuthService(store, refresh_store, issuer)


@pytest.fixture
def principal_service(store: PrincipalStore, refresh_store: RefreshStore, policy: RolePolicy) -> PrincipalService:
    return PrincipalService(store, refresh_store, policy)


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module
# ---------------------------------------------------------------------------


def _patch_lifespan(store: PrincipalStore):
    """Replace the real lifespan so routes see an isolated in-memory store."""

    @asynccontextmanager
    async def test_lifespan(app):
        wire_auth(app, store)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, dict], None, None]:
    """Yield (client, ctx) for API integration tests.

    Tenant 1 is seeded with an active admin; tenant 2 with an active admin of
    its own. ctx holds their principals and Bearer headers.

    base_url uses "localhost" so TrustedHostMiddleware accepts the requests.
    """
    store = make_store("api")
    admin1 = add_principal(store, 1, "admin@one.test", role=Role.ADMIN)
    admin2 = add_principal(store, 2, "admin@two.test", role=Role.ADMIN)
    issuer = get_token_issuer()

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        ctx = {
            "store": store,
            "admin1": admin1,
            "admin2": admin2,
            "admin1_headers": {"Authorization": f"Bearer {issuer.issue_access_token(admin1)}"},
            "admin2_headers": {"Authorization": f"Bearer {issuer.issue_access_token(admin2)}"},
        }
        yield client, ctx

    store.close()
