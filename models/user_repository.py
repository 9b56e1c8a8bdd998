from __future__ import annotations

from typing import Iterable, Optional, Protocol, Tuple

from models.user import User

# Static seed set; there is no user persistence in this service.
SEED_USERS: Tuple[User, ...] = (
    User(id=1, username="admin", password_hash="111", role="Admin"),
    User(id=2, username="user", password_hash="222", role="User"),
)


class UserRepository(Protocol):
    def get_user(self, username: str, password: Optional[str] = None) -> Optional[User]: ...


class InMemoryUserRepository:
    """
    Read-only user lookup over a small immutable list.

    Password comparison is plaintext. This is a placeholder trust model, not a
    production credential check.
    """

    def __init__(self, users: Iterable[User] = SEED_USERS) -> None:
        self._users = tuple(users)

    def get_user(self, username: str, password: Optional[str] = None) -> Optional[User]:
        for user in self._users:
            if user.username != username:
                continue
            if password is not None and user.password_hash != password:
                return None
            return user
        return None
