"""
Shared fixtures for searchcredits integration tests.

Provides:
 - SearchServer wired to in-memory SQLite and the offline stub provider
 - A TestClient that runs the app lifespan, so storage is opened on the
   client's own event loop
 - Fixtures for registering accounts and building auth headers
"""

import pytest
from fastapi.testclient import TestClient

from searchcredits.provider import StubPropertyProvider
from searchcredits.server import SearchServer


# ── Constants ───────────────────────────────────────────────────────────────

ADMIN_KEY = "integration-admin-key"
JWT_SECRET = "integration-jwt-secret"

# Wide enough that a test never straddles a duplicate-search window
HASH_BUCKET_SEC = 1_000_000

NOT_FOUND_ADDRESS = "1 Nowhere Rd, Nowhere, ZZ"


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def provider():
    return StubPropertyProvider(not_found={NOT_FOUND_ADDRESS})


@pytest.fixture
def server(provider):
    return SearchServer(
        db_path=":memory:",
        provider=provider,
        hash_bucket_sec=HASH_BUCKET_SEC,
        admin_key=ADMIN_KEY,
        jwt_secret=JWT_SECRET,
    )


@pytest.fixture
def client(server):
    with TestClient(server.app) as c:
        yield c


@pytest.fixture
def register(client):
    """Factory: register an account and return its X-API-Key headers."""

    def _register(account_id: str) -> dict:
        resp = client.post("/api/auth/register", json={"account_id": account_id})
        assert resp.status_code == 200, resp.text
        return {"X-API-Key": resp.json()["api_key"]}

    return _register


@pytest.fixture
def alice(register):
    return register("alice")


@pytest.fixture
def admin():
    return {"X-API-Key": ADMIN_KEY}
