"""Session persistence for the auth client.

The session survives process restarts the same way the browser SDK keeps it
in localStorage: serialized JSON under one key. The RedisAdapter normalizes
the two backing clients:
  - UPSTASH_REDIS_REST_URL set → Upstash SDK (staging/prod)
  - Otherwise → fakeredis (local dev and tests, in-process only)

Usage:
    storage = SessionStorage(get_client(), storage_key="default")
    await storage.save(session)
    session = await storage.load()
"""

from __future__ import annotations

import logging
import os
from typing import Any

from pydantic import ValidationError
from rentkenya_shared.auth_models import Session

from rentkenya_auth.keys import session_key

logger = logging.getLogger(__name__)


class RedisAdapter:
    """Unified async key/value interface over Upstash SDK or fakeredis."""

    def __init__(self, raw_client: Any) -> None:
        self._client = raw_client

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if value is None or isinstance(value, str):
            return value
        return value.decode()

    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def delete(self, *keys: str) -> None:
        await self._client.delete(*keys)


class SessionStorage:
    """Reads and writes the current session for one storage namespace."""

    def __init__(self, client: RedisAdapter, storage_key: str = "default") -> None:
        self._client = client
        self._key = session_key(storage_key)

    @property
    def key(self) -> str:
        return self._key

    async def load(self) -> Session | None:
        """Return the stored session, or None when absent or unreadable.

        A corrupt entry is deleted so the next load starts clean.
        """
        raw = await self._client.get(self._key)
        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable stored session '{self._key}': {e}")
            await self._client.delete(self._key)
            return None

    async def save(self, session: Session) -> None:
        await self._client.set(self._key, session.model_dump_json())

    async def clear(self) -> None:
        await self._client.delete(self._key)


# ============================================================================
# Singleton management
# ============================================================================

_client: RedisAdapter | None = None


def get_client() -> RedisAdapter:
    """Return a lazily-initialized RedisAdapter singleton.

    Environment detection:
      - UPSTASH_REDIS_REST_URL set → Upstash SDK
      - Otherwise → fakeredis (in-memory, no external dependency)
    """
    global _client
    if _client is not None:
        return _client

    if os.environ.get("UPSTASH_REDIS_REST_URL"):
        from upstash_redis.asyncio import Redis

        _client = RedisAdapter(Redis.from_env())
    else:
        from fakeredis.aioredis import FakeRedis

        _client = RedisAdapter(FakeRedis(decode_responses=True))

    return _client


def reset_client() -> None:
    """Reset the client singleton: used in tests to inject mocks."""
    global _client
    _client = None


def set_client(adapter: RedisAdapter) -> None:
    """Inject a client: used in tests."""
    global _client
    _client = adapter
