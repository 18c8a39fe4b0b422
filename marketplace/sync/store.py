"""Sync state stores: get/set by logical key.

The store is injected into the sync coordinator (and anything else that
reads sync state) rather than reached as a global, so tests run against
the in-memory store and production against Redis.

Key pattern (Redis): marketplace:sync:{key} -> JSON blob
"""

from __future__ import annotations

import json
import logging
from typing import Protocol

import redis.asyncio as redis

from marketplace.sync.models import SyncState

logger = logging.getLogger(__name__)

_KEY_PREFIX = "marketplace:sync"


class SyncStateStore(Protocol):
    async def get(self, key: str) -> SyncState: ...

    async def set(self, key: str, state: SyncState) -> None: ...


class InMemorySyncStateStore:
    """Dict-backed store. Missing keys read as a fresh idle state."""

    def __init__(self) -> None:
        self._states: dict[str, SyncState] = {}

    async def get(self, key: str) -> SyncState:
        return self._states.get(key) or SyncState()

    async def set(self, key: str, state: SyncState) -> None:
        self._states[key] = state


class RedisSyncStateStore:
    """Redis-backed store. Errors propagate: the sync caller must know."""

    def __init__(self, redis_url: str | None = None, client: redis.Redis | None = None):
        if client is None:
            client = redis.from_url(redis_url or "redis://localhost:6379/0", decode_responses=True)
        self._redis = client

    @staticmethod
    def _key(key: str) -> str:
        return f"{_KEY_PREFIX}:{key}"

    async def get(self, key: str) -> SyncState:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return SyncState()
        return SyncState.from_dict(json.loads(raw))

    async def aclose(self) -> None:
        await self._redis.aclose()

    async def set(self, key: str, state: SyncState) -> None:
        await self._redis.set(self._key(key), json.dumps(state.to_dict()))
        logger.debug("Sync state %s -> %s", key, state.status.value)
