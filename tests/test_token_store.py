import json
from datetime import timedelta

import pytest

from models.token import TokenKind
from utils.exceptions import OwnerResolutionError
from utils.security import hash_token


@pytest.mark.asyncio
async def test_store_then_validate_returns_owner(token_store, clock):
    await token_store.store_token("admin", "raw-token", clock.utcnow() + timedelta(minutes=30), TokenKind.ACCESS)

    user = await token_store.validate_token("raw-token", TokenKind.ACCESS)

    assert user is not None
    assert user.username == "admin"


@pytest.mark.asyncio
async def test_store_writes_record_and_reverse_index(token_store, kv, clock):
    await token_store.store_token("user", "raw-token", clock.utcnow() + timedelta(days=1), TokenKind.REFRESH)
    token_hash = hash_token("raw-token")

    assert set(kv.keys()) == {
        f"refresh_token:user:{token_hash}",
        f"refresh_token_to_user_map:{token_hash}",
    }
    assert await kv.get_string(f"refresh_token_to_user_map:{token_hash}") == "user"


@pytest.mark.asyncio
async def test_tampered_token_does_not_validate(token_store, clock):
    await token_store.store_token("admin", "raw-token", clock.utcnow() + timedelta(minutes=30), TokenKind.ACCESS)

    assert await token_store.validate_token("raw-tokeN", TokenKind.ACCESS) is None
    assert await token_store.validate_token("raw-token", TokenKind.REFRESH) is None


@pytest.mark.asyncio
async def test_expired_token_does_not_validate(token_store, clock):
    await token_store.store_token("admin", "raw-token", clock.utcnow() + timedelta(minutes=30), TokenKind.ACCESS)
    clock.advance(minutes=30)
    assert await token_store.validate_token("raw-token", TokenKind.ACCESS) is None


@pytest.mark.asyncio
async def test_revoke_twice_is_safe(token_store, kv, clock):
    await token_store.store_token("admin", "raw-token", clock.utcnow() + timedelta(minutes=30), TokenKind.ACCESS)

    await token_store.revoke_token("raw-token", TokenKind.ACCESS)
    assert await token_store.validate_token("raw-token", TokenKind.ACCESS) is None
    assert kv.keys() == []

    with pytest.raises(OwnerResolutionError):
        await token_store.revoke_token("raw-token", TokenKind.ACCESS)
    assert kv.keys() == []


@pytest.mark.asyncio
async def test_revoke_with_known_owner_skips_lookup(token_store, clock):
    await token_store.store_token("user", "raw-token", clock.utcnow() + timedelta(minutes=30), TokenKind.REFRESH)
    await token_store.revoke_token("raw-token", TokenKind.REFRESH, username="user")
    assert await token_store.get_user_by_token("raw-token", TokenKind.REFRESH) is None


@pytest.mark.asyncio
async def test_store_token_pair(token_store, token_factory, users):
    admin = users.get_user("admin")
    pair = token_factory.create_token_pair(admin)

    await token_store.store_token_pair(admin.username, pair)

    assert await token_store.validate_token(pair.access_token, TokenKind.ACCESS) == admin
    assert await token_store.validate_token(pair.refresh_token, TokenKind.REFRESH) == admin


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["", "   "])
async def test_blank_token_is_rejected(token_store, token):
    with pytest.raises(ValueError):
        await token_store.validate_token(token, TokenKind.ACCESS)


@pytest.mark.asyncio
async def test_revoke_with_wrong_owner_leaves_record_and_index(token_store, kv, clock):
    await token_store.store_token("admin", "raw-token", clock.utcnow() + timedelta(minutes=30), TokenKind.ACCESS)
    token_hash = hash_token("raw-token")

    with pytest.raises(OwnerResolutionError):
        await token_store.revoke_token("raw-token", TokenKind.ACCESS, username="user")

    assert set(kv.keys()) == {
        f"access_token:admin:{token_hash}",
        f"access_token_to_user_map:{token_hash}",
    }
    assert (await token_store.validate_token("raw-token", TokenKind.ACCESS)).username == "admin"


@pytest.mark.asyncio
async def test_revoke_with_owner_when_index_already_gone(token_store, kv, clock):
    await token_store.store_token("admin", "raw-token", clock.utcnow() + timedelta(minutes=30), TokenKind.ACCESS)
    await kv.remove(TokenKind.ACCESS.map_key(hash_token("raw-token")))

    await token_store.revoke_token("raw-token", TokenKind.ACCESS, username="admin")

    assert kv.keys() == []


@pytest.mark.asyncio
async def test_index_pointing_at_another_user_does_not_validate(token_store, kv, clock):
    expires_at = clock.utcnow() + timedelta(minutes=30)
    await token_store.store_token("admin", "raw-token", expires_at, TokenKind.ACCESS)
    await kv.set_string(TokenKind.ACCESS.map_key(hash_token("raw-token")), "user", expires_at)

    assert await token_store.get_user_by_token("raw-token", TokenKind.ACCESS) is None
    assert await token_store.validate_token("raw-token", TokenKind.ACCESS) is None


@pytest.mark.asyncio
async def test_record_with_mismatched_hash_does_not_validate(token_store, kv, clock):
    expires_at = clock.utcnow() + timedelta(minutes=30)
    await token_store.store_token("admin", "raw-token", expires_at, TokenKind.ACCESS)
    token_hash = hash_token("raw-token")
    await kv.set_string(
        TokenKind.ACCESS.record_key("admin", token_hash),
        json.dumps({"token": hash_token("other-token"), "username": "admin", "expires": expires_at.isoformat()}),
        expires_at,
    )

    assert await token_store.validate_token("raw-token", TokenKind.ACCESS) is None
