"""
tests/conftest.py -- Shared test fixtures for tokenward.

This module provides:
  - key_material: one RSA keypair for the whole session (generation is slow)
  - store / service: a CredentialStore on a throwaway SQLite file and an
    AuthService wired to it with bcrypt cost 4
  - api_client: TestClient with a patched lifespan wired to an isolated store
  - echo router: GET /_echo records every call that reaches a route, so
    tests can prove that rejected requests never got that far

Design: SQLite *files* under tmp_path rather than :memory:. The service runs
store calls through asyncio.to_thread and TestClient runs the app in its own
thread; a plain :memory: database is per-connection and would show each
worker thread a blank schema.

bcrypt cost 4 keeps the suite fast. Production default stays 12 (Settings).
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi import APIRouter, Request
from fastapi.testclient import TestClient

from api.main import app
from auth.keys import generate_key_pair
from auth.models import KeyMaterial
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenIssuer

TEST_ISSUER = "tokenward-test"
TEST_ROUNDS = 4

# ---------------------------------------------------------------------------
# Echo route -- records every request that reaches a handler
# ---------------------------------------------------------------------------

echo_calls: list[int | None] = []
_echo_router = APIRouter()


@_echo_router.get("/_echo")
async def _echo(request: Request) -> dict:
    echo_calls.append(request.state.user_id)
    return {"user_id": request.state.user_id}


app.include_router(_echo_router)


# ---------------------------------------------------------------------------
# Keys, stores, services
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def key_material() -> KeyMaterial:
    return generate_key_pair()


@pytest.fixture
def store(tmp_path) -> Generator[CredentialStore, None, None]:
    s = CredentialStore(f"sqlite:///{tmp_path / 'auth.db'}")
    yield s
    s.close()


@pytest.fixture
def issuer(key_material: KeyMaterial) -> TokenIssuer:
    return TokenIssuer(key_material, issuer=TEST_ISSUER)


@pytest.fixture
def service(store: CredentialStore, issuer: TokenIssuer) -> AuthService:
    return AuthService(store=store, hasher=PasswordHasher(rounds=TEST_ROUNDS), issuer=issuer)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service into app.state so routes and the gate
    middleware see an isolated store instead of the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory, key_material: KeyMaterial) -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for HTTP integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan, so
    requests go through the real gate middleware, routes and exception
    handlers.
    """
    db = tmp_path_factory.mktemp("api") / "auth.db"
    service = AuthService(
        store=CredentialStore(f"sqlite:///{db}"),
        hasher=PasswordHasher(rounds=TEST_ROUNDS),
        issuer=TokenIssuer(key_material, issuer=TEST_ISSUER),
    )
    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    service.close()


@pytest.fixture
def echo() -> list[int | None]:
    """The echo route's call log, emptied for this test."""
    echo_calls.clear()
    return echo_calls
