"""
Token lifecycle types.

Access and refresh tokens share the same record shape and differ only in the
key namespace they are stored under.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class TokenKind(str, enum.Enum):
    ACCESS = "access_token"
    REFRESH = "refresh_token"

    @property
    def map_namespace(self) -> str:
        return f"{self.value}_to_user_map"

    def record_key(self, username: str, token_hash: str) -> str:
        return f"{self.value}:{username}:{token_hash}"

    def map_key(self, token_hash: str) -> str:
        return f"{self.map_namespace}:{token_hash}"


@dataclass(frozen=True)
class TokenRecord:
    token_hash: str
    username: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
