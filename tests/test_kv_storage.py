from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from models.kv_storage import MemoryKeyValueStore, RedisKeyValueStore
from models.token import TokenKind
from models.token_store import TokenStore
from models.user_repository import InMemoryUserRepository


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def redis_store(redis_server):
    return RedisKeyValueStore(
        "redis://fake",
        client_factory=lambda: fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True),
    )


def test_redis_url_is_required():
    with pytest.raises(ValueError):
        RedisKeyValueStore("")


@pytest.mark.asyncio
async def test_redis_keys_are_prefixed(redis_store, redis_client):
    await redis_store.set_string("cache:abc", "value", datetime.now(timezone.utc) + timedelta(hours=1))

    assert await redis_client.get("Currencies_cache:abc") == "value"
    assert await redis_client.get("cache:abc") is None
    assert await redis_store.get_string("cache:abc") == "value"


@pytest.mark.asyncio
async def test_redis_expiry_is_absolute(redis_store, redis_client):
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=10)
    await redis_store.set_string("k", "v", expires_at)

    ttl_ms = await redis_client.pttl("Currencies_k")
    assert 0 < ttl_ms <= 10 * 60 * 1000
    assert ttl_ms > 9 * 60 * 1000


@pytest.mark.asyncio
async def test_redis_remove(redis_store, redis_client):
    await redis_store.set_string("k", "v", datetime.now(timezone.utc) + timedelta(minutes=1))
    await redis_store.remove("k")

    assert await redis_store.get_string("k") is None
    assert await redis_client.exists("Currencies_k") == 0


@pytest.mark.asyncio
async def test_custom_prefix(redis_server, redis_client):
    store = RedisKeyValueStore(
        "redis://fake",
        prefix="fx:",
        client_factory=lambda: fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True),
    )
    await store.set_string("k", "v", datetime.now(timezone.utc) + timedelta(minutes=1))
    assert await redis_client.get("fx:k") == "v"


@pytest.mark.asyncio
async def test_token_lifecycle_over_redis(redis_store, redis_client):
    store = TokenStore(redis_store, InMemoryUserRepository())
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=30)

    await store.store_token("admin", "raw-token", expires_at, TokenKind.ACCESS)
    assert (await store.validate_token("raw-token", TokenKind.ACCESS)).username == "admin"
    assert len(await redis_client.keys("Currencies_access_token*")) == 2

    await store.revoke_token("raw-token", TokenKind.ACCESS)
    assert await store.validate_token("raw-token", TokenKind.ACCESS) is None
    assert await redis_client.keys("Currencies_*") == []


@pytest.mark.asyncio
async def test_memory_store_honours_expiry(kv, clock):
    await kv.set_string("k", "v", clock.utcnow() + timedelta(seconds=5))
    assert await kv.get_string("k") == "v"
    clock.advance(seconds=5)
    assert await kv.get_string("k") is None
    assert isinstance(kv, MemoryKeyValueStore)
