"""
Cache-aside storage for upstream snapshots.

Keys are derived from the full upstream URL; values are serialized with the
marshmallow schema of the snapshot type and written with an absolute expiry
equal to the snapshot's own ``expires_at``.
"""
from __future__ import annotations

import enum
import hashlib
import json
import logging
from typing import Optional, Tuple

from marshmallow import Schema, ValidationError

from models.kv_storage import KeyValueStore
from models.rates import HasExpiry
from services.metrics import CACHE_LOOKUPS
from utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache:"


class CacheOutcome(str, enum.Enum):
    HIT = "hit"
    MISS = "miss"
    EXPIRED = "expired"


def cache_key(url: str) -> str:
    """Deterministic key for an absolute upstream URL."""
    return CACHE_PREFIX + hashlib.sha256(url.encode("utf-8")).hexdigest()


class CacheAsideFetcher:
    def __init__(self, kv: KeyValueStore, clock: Optional[Clock] = None) -> None:
        self._kv = kv
        self._clock = clock or SystemClock()

    async def lookup(self, url: str, schema: Schema) -> Tuple[CacheOutcome, Optional[HasExpiry]]:
        if not url or not url.strip():
            raise ValueError("url cannot be empty or whitespace.")

        key = cache_key(url)
        raw = await self._kv.get_string(key)
        if not raw:
            return self._record(CacheOutcome.MISS, key, url), None

        try:
            value = schema.load(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning("Unreadable cache entry at %s (%s), treating as miss", key, url)
            return self._record(CacheOutcome.MISS, key, url), None

        expires_at = getattr(value, "expires_at", None)
        if expires_at is None or expires_at < self._clock.utcnow():
            # left in place; the next set() overwrites it
            return self._record(CacheOutcome.EXPIRED, key, url), None

        return self._record(CacheOutcome.HIT, key, url), value

    async def get(self, url: str, schema: Schema) -> Optional[HasExpiry]:
        _, value = await self.lookup(url, schema)
        return value

    async def set(self, url: str, value: HasExpiry, schema: Schema) -> None:
        if not url or not url.strip():
            raise ValueError("url cannot be empty or whitespace.")
        if value is None or getattr(value, "expires_at", None) is None:
            raise ValueError("value must carry an expires_at timestamp")

        key = cache_key(url)
        logger.debug("Caching %s at %s", type(value).__name__, key)
        await self._kv.set_string(key, json.dumps(schema.dump(value)), value.expires_at)

    @staticmethod
    def _record(outcome: CacheOutcome, key: str, url: str) -> CacheOutcome:
        CACHE_LOOKUPS.labels(outcome=outcome.value).inc()
        logger.debug("Cache %s for key %s (%s)", outcome.value, key, url)
        return outcome
