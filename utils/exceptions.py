"""
Gateway exception hierarchy.

Request validation failures use marshmallow's ValidationError (see
models/schemas/common.py); everything below is raised by the services and the
token store and mapped to the error envelope in api/errors.py.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional


class GatewayError(Exception):
    """Base class for all domain errors raised by the gateway."""


class UnsupportedSymbolError(GatewayError):
    def __init__(self, symbols: Iterable[str], unsupported: Iterable[str]):
        self.symbols = sorted(set(symbols))
        self.unsupported = sorted(set(unsupported))
        super().__init__(f"Symbols: [{','.join(self.unsupported)}] are not supported")


class InvalidProviderError(GatewayError):
    def __init__(self, name: str, available: Iterable[str]):
        self.name = name
        self.available = sorted(available)
        super().__init__(
            f"Invalid provider: {name}. Supported providers: {','.join(self.available)}"
        )


class ProviderResolutionError(GatewayError):
    """A provider name is registered but no instance is wired for it."""


class UpstreamServiceError(GatewayError):
    """The upstream rate service failed after the retry budget was spent."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidResponseError(UpstreamServiceError):
    """The upstream answered, but the payload is malformed or incomplete."""


class CircuitOpenError(GatewayError):
    def __init__(self, name: str, retry_after: Optional[datetime] = None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker for '{name}' is open")


class NoRateFoundError(GatewayError):
    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(f"No exchange rate found for {from_currency} to {to_currency}.")


class TokenInvalidError(GatewayError):
    """Token is missing, expired, revoked or does not match its stored hash."""


class OwnerResolutionError(GatewayError):
    """No owner could be resolved for a token that is being revoked."""
