from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class User:
    id: int
    username: str
    # Plaintext placeholder: there is no password hashing in this gateway.
    password_hash: str
    role: str
