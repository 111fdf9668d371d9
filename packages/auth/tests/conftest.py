"""Test fixtures for the auth package.

Provides:
  - MockTransport for httpx (intercepts every request, replays canned responses)
  - MockRedis, an in-memory stand-in for the RedisAdapter
  - GoTrue response payloads shaped like a real Supabase project's
  - A GoTrueClient wired to both mocks
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import jwt as pyjwt
import pytest
from rentkenya_auth.gotrue import GoTrueClient
from rentkenya_auth.storage import SessionStorage

SUPABASE_URL = "https://rentkenya-test.supabase.co"
ANON_KEY = "anon-key-for-tests"
JWT_SECRET = "super-secret-jwt-token-for-testing-only"
USER_ID = "5d0c5e56-4f1c-4b7a-9a57-1f0f4b6f2c11"
EMAIL = "wanjiku@example.co.ke"


class MockTransport(httpx.AsyncBaseTransport):
    """Mock HTTP transport that returns preconfigured responses in order.

    Entries may be httpx.Response objects or exceptions to raise. When the
    list runs out, returns a 500.
    """

    def __init__(self, responses: list[httpx.Response | Exception] | None = None) -> None:
        self.responses = list(responses or [])
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return httpx.Response(500, json={"msg": "No more mock responses"})


class MockRedis:
    """In-memory key/value store mirroring RedisAdapter's async interface."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.calls: list[tuple[str, tuple]] = []

    async def get(self, key: str) -> str | None:
        self.calls.append(("get", (key,)))
        return self.store.get(key)

    async def set(self, key: str, value: str) -> None:
        self.calls.append(("set", (key, value)))
        self.store[key] = value

    async def delete(self, *keys: str) -> None:
        self.calls.append(("delete", keys))
        for key in keys:
            self.store.pop(key, None)


def _make_access_token(
    sub: str = USER_ID,
    email: str = EMAIL,
    exp: int | None = None,
    secret: str = JWT_SECRET,
) -> str:
    """Build a signed JWT with Supabase-shaped claims."""
    payload = {
        "sub": sub,
        "email": email,
        "role": "authenticated",
        "aud": "authenticated",
        "exp": exp or int(time.time()) + 3600,
    }
    return pyjwt.encode(payload, secret, algorithm="HS256")


def _session_payload(
    access_token: str = "access-token-1",
    refresh_token: str = "refresh-token-1",
    expires_in: int = 3600,
    user_id: str = USER_ID,
    email: str = EMAIL,
) -> dict[str, Any]:
    """A /token or auto-confirmed /signup response body."""
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": expires_in,
        "expires_at": int(time.time()) + expires_in,
        "refresh_token": refresh_token,
        "user": {"id": user_id, "email": email, "role": "authenticated", "aud": "authenticated"},
    }


def _install_transport(client: GoTrueClient, transport: MockTransport) -> None:
    """Point a GoTrueClient's HTTP client at a mock transport."""
    client._client = httpx.AsyncClient(
        transport=transport,
        base_url=f"{client.url}/auth/v1",
        headers={"apikey": client.anon_key, "Authorization": f"Bearer {client.anon_key}"},
    )


@pytest.fixture
def mock_redis() -> MockRedis:
    return MockRedis()


@pytest.fixture
def storage(mock_redis: MockRedis) -> SessionStorage:
    return SessionStorage(mock_redis, storage_key="test")


@pytest.fixture
def transport() -> MockTransport:
    return MockTransport()


@pytest.fixture
def gotrue(storage: SessionStorage, transport: MockTransport) -> GoTrueClient:
    """A GoTrueClient backed by MockRedis and MockTransport, recording events."""
    client = GoTrueClient(url=SUPABASE_URL, anon_key=ANON_KEY, storage=storage)
    _install_transport(client, transport)
    return client


@pytest.fixture
def events(gotrue: GoTrueClient) -> list[tuple[str, str | None]]:
    """Every (event, user_id) the client emits, in order."""
    seen: list[tuple[str, str | None]] = []
    gotrue.on_session_change(lambda event, session: seen.append(
        (str(event), session.user_id if session else None)
    ))
    return seen


@pytest.fixture
def make_access_token():
    """Factory for signed access tokens (see _make_access_token)."""
    return _make_access_token


@pytest.fixture
def session_payload():
    """Factory for GoTrue session response bodies (see _session_payload)."""
    return _session_payload


@pytest.fixture
def install_transport():
    """Function that points a GoTrueClient at a MockTransport."""
    return _install_transport
