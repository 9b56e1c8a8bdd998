"""
security helpers:
- one-way token hashing for the token store
- JWT access token creation/verification via PyJWT
- opaque refresh token and JTI generation
"""
from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

import jwt

from models.token import TokenPair
from models.user import User
from utils.clock import Clock, SystemClock
from utils.exceptions import TokenInvalidError

logger = logging.getLogger(__name__)

ACCESS_EXPIRES_WARNING_THRESHOLD = timedelta(minutes=45)
REFRESH_EXPIRES_WARNING_THRESHOLD = timedelta(days=14)


def hash_token(token: str) -> str:
    """Base64-encoded SHA-256 digest of the raw token's UTF-8 bytes."""
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID).
    """
    return str(uuid.uuid4())


def generate_refresh_token() -> str:
    """64 random bytes, url-safe base64 without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(64)).decode("ascii").rstrip("=")


class TokenFactory:
    """
    Issues access/refresh token pairs.

    Access tokens are signed JWTs carrying the user's id, name and role;
    refresh tokens are opaque random strings only meaningful to the token store.
    """

    def __init__(self, config: Mapping[str, Any], clock: Optional[Clock] = None) -> None:
        self.secret = config.get("JWT_SECRET")
        self.algorithm = config.get("JWT_ALGORITHM", "HS256")
        self.issuer = config.get("JWT_ISSUER")
        self.audience = config.get("JWT_AUDIENCE")
        self.access_expires: timedelta = config["ACCESS_TOKEN_EXPIRES"]
        self.refresh_expires: timedelta = config["REFRESH_TOKEN_EXPIRES"]
        self._clock = clock or SystemClock()

        if not self.secret or not self.issuer or not self.audience:
            raise ValueError("JWT settings must include secret, issuer, and audience")

        if self.access_expires > ACCESS_EXPIRES_WARNING_THRESHOLD:
            logger.warning(
                "Access token expiration is set to %s, which is higher than the recommended "
                "threshold of %s. Consider decreasing the expiration time for better security.",
                self.access_expires, ACCESS_EXPIRES_WARNING_THRESHOLD,
            )
        if self.refresh_expires > REFRESH_EXPIRES_WARNING_THRESHOLD:
            logger.warning(
                "Refresh token expiration is set to %s, which is higher than the recommended "
                "threshold of %s. Consider decreasing the refresh expiration time for better security.",
                self.refresh_expires, REFRESH_EXPIRES_WARNING_THRESHOLD,
            )

    def _now(self) -> datetime:
        return self._clock.utcnow()

    def create_access_token(self, user: User, jti: Optional[str] = None) -> tuple[str, datetime]:
        now = self._now()
        exp = now + self.access_expires
        payload = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": str(user.id),
            "username": user.username,
            "role": user.role,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
            "type": "access",
            "jti": jti or generate_jti(),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm), exp

    def create_token_pair(self, user: User) -> TokenPair:
        access_token, access_exp = self.create_access_token(user)
        return TokenPair(
            access_token=access_token,
            refresh_token=generate_refresh_token(),
            access_token_expires_at=access_exp,
            refresh_token_expires_at=self._now() + self.refresh_expires,
        )

    def decode_access_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate an access JWT (signature, exp, iss, aud, type).
        Raises TokenInvalidError on any failure.
        """
        try:
            decoded = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                # expiry is checked against the injected clock below
                options={"verify_exp": False, "require": ["exp", "sub"]},
            )
        except jwt.InvalidTokenError as exc:
            raise TokenInvalidError(f"Invalid token: {exc}")

        if decoded["exp"] <= int(self._now().timestamp()):
            raise TokenInvalidError("Token expired")
        if decoded.get("type") != "access":
            raise TokenInvalidError("Wrong token type")
        return decoded


def read_unverified_subject(token: str) -> Optional[str]:
    """Best-effort `sub` claim for logging; never use for authorization."""
    try:
        return jwt.decode(token, options={"verify_signature": False}).get("sub")
    except jwt.InvalidTokenError:
        return None
