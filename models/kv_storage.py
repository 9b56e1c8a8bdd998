"""
Key-value storage used by the rate cache and the token store.

RedisKeyValueStore is the production backend. MemoryKeyValueStore keeps the
same contract in-process (absolute expiry honoured on read) and backs the
development and testing configurations when no Redis URL is set.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, Optional, Protocol, Tuple

from redis.asyncio import Redis

from utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get_string(self, key: str) -> Optional[str]: ...

    async def set_string(self, key: str, value: str, expires_at: datetime) -> None: ...

    async def remove(self, key: str) -> None: ...


class RedisKeyValueStore:
    """
    Redis-backed store with an instance-wide key prefix.

    Flask runs each async view on a fresh event loop, so a connection is opened
    per operation instead of sharing a loop-bound pool across requests.
    """

    def __init__(
        self,
        url: str,
        prefix: str = "Currencies_",
        client_factory: Optional[Callable[[], Redis]] = None,
    ) -> None:
        if not url:
            raise ValueError("A Redis URL is required")
        self._prefix = prefix
        self._client_factory = client_factory or (lambda: Redis.from_url(url, decode_responses=True))

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Redis]:
        client = self._client_factory()
        try:
            yield client
        finally:
            await client.aclose()

    async def get_string(self, key: str) -> Optional[str]:
        async with self._connection() as client:
            return await client.get(self._key(key))

    async def set_string(self, key: str, value: str, expires_at: datetime) -> None:
        # PXAT gives Redis the same absolute expiry the caller computed.
        async with self._connection() as client:
            await client.set(self._key(key), value, pxat=int(expires_at.timestamp() * 1000))

    async def remove(self, key: str) -> None:
        async with self._connection() as client:
            await client.delete(self._key(key))


class MemoryKeyValueStore:
    """In-process store; entries past their absolute expiry read as absent."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self._data: Dict[str, Tuple[str, datetime]] = {}

    async def get_string(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock.utcnow():
            self._data.pop(key, None)
            return None
        return value

    async def set_string(self, key: str, value: str, expires_at: datetime) -> None:
        self._data[key] = (value, expires_at)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)
