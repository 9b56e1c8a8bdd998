"""
Token store: issue, validate, rotate and revoke access/refresh tokens.

Layout in the key-value store (per token kind):
- ``{kind}:{username}:{hash}``  -> JSON token record {token, username, expires}
- ``{kind}_to_user_map:{hash}`` -> username (reverse index)

Raw tokens are never stored, only their hash. The record and the reverse
index are written and removed together with identical TTLs so an ownership
lookup is a single GET instead of a key scan.

Known limitation: the two writes are issued concurrently without a
transaction; if one fails the other is not rolled back.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from marshmallow import ValidationError

from models.kv_storage import KeyValueStore
from models.schemas.token import TokenRecordSchema
from models.token import TokenKind, TokenPair, TokenRecord
from models.user import User
from models.user_repository import UserRepository
from utils.clock import Clock, SystemClock
from utils.exceptions import OwnerResolutionError
from utils.security import hash_token

logger = logging.getLogger(__name__)

token_record_schema = TokenRecordSchema()


def _require(value: Optional[str], name: str) -> None:
    if value is None or not value.strip():
        raise ValueError(f"{name} cannot be empty or whitespace.")


class TokenStore:
    def __init__(
        self,
        kv: KeyValueStore,
        users: UserRepository,
        clock: Optional[Clock] = None,
    ) -> None:
        self._kv = kv
        self._users = users
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------ write

    async def store_token(
        self, username: str, raw_token: str, expires_at: datetime, kind: TokenKind
    ) -> TokenRecord:
        _require(username, "username")
        _require(raw_token, "token")

        token_hash = hash_token(raw_token)
        record = TokenRecord(token_hash=token_hash, username=username, expires_at=expires_at)
        payload = json.dumps(token_record_schema.dump(record))

        await asyncio.gather(
            self._kv.set_string(kind.record_key(username, token_hash), payload, expires_at),
            self._kv.set_string(kind.map_key(token_hash), username, expires_at),
        )
        logger.debug("Stored %s for user %s", kind.value, username)
        return record

    async def store_token_pair(self, username: str, pair: TokenPair) -> None:
        """Persist an access/refresh pair as one logical write."""
        await asyncio.gather(
            self.store_token(username, pair.access_token, pair.access_token_expires_at, TokenKind.ACCESS),
            self.store_token(username, pair.refresh_token, pair.refresh_token_expires_at, TokenKind.REFRESH),
        )

    # ------------------------------------------------------------------- read

    async def _load_record(self, kind: TokenKind, username: str, token_hash: str) -> Optional[TokenRecord]:
        raw = await self._kv.get_string(kind.record_key(username, token_hash))
        if not raw:
            return None
        try:
            record = token_record_schema.load(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning("Discarding unreadable %s record for %s", kind.value, username)
            return None
        if record.token_hash != token_hash or record.expires_at <= self._clock.utcnow():
            return None
        return record

    async def get_user_by_token(
        self, raw_token: str, kind: TokenKind, token_hash: Optional[str] = None
    ) -> Optional[User]:
        """Resolve the owner of a token through the reverse index."""
        _require(raw_token, "token")
        token_hash = token_hash or hash_token(raw_token)

        username = await self._kv.get_string(kind.map_key(token_hash))
        if not username:
            return None

        if await self._load_record(kind, username, token_hash) is None:
            return None
        return self._users.get_user(username)

    async def validate_token(self, raw_token: str, kind: TokenKind) -> Optional[User]:
        """
        Return the token's owner if the token is valid, else None.

        Re-reads the record under the resolved owner's namespace, so an index
        entry pointing at the wrong user never validates.
        """
        _require(raw_token, "token")
        token_hash = hash_token(raw_token)

        user = await self.get_user_by_token(raw_token, kind, token_hash)
        if user is None:
            return None
        if await self._load_record(kind, user.username, token_hash) is None:
            return None
        return user

    # ----------------------------------------------------------------- revoke

    async def revoke_token(
        self, raw_token: str, kind: TokenKind, username: Optional[str] = None
    ) -> None:
        _require(raw_token, "token")
        token_hash = hash_token(raw_token)

        if username is None or not username.strip():
            user = await self.get_user_by_token(raw_token, kind, token_hash)
            if user is None:
                raise OwnerResolutionError(f"Cannot find user for the given {kind.value} {token_hash}")
            username = user.username
        else:
            # the index key is global; never drop another user's entry
            indexed_owner = await self._kv.get_string(kind.map_key(token_hash))
            if indexed_owner is not None and indexed_owner != username:
                raise OwnerResolutionError(f"The given {kind.value} {token_hash} is not owned by {username}")

        await asyncio.gather(
            self._kv.remove(kind.record_key(username, token_hash)),
            self._kv.remove(kind.map_key(token_hash)),
        )
        logger.debug("Revoked %s for user %s", kind.value, username)
