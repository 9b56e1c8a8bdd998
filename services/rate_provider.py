"""
Currency rate providers.

A provider builds upstream URLs, validates its inputs and fetches through the
cache-aside layer; on a miss the call runs under the resilience pipeline.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Protocol, Sequence, runtime_checkable
from urllib.parse import quote

import httpx
from marshmallow import Schema, ValidationError

from models.rates import HistoricalSnapshot, RateSnapshot, with_expiry
from models.schemas.common import (
    round_currency,
    to_positive_decimal,
    validate_currency_code,
    validate_not_future,
    validate_symbols,
)
from models.schemas.rates import HistoricalSnapshotSchema, RateSnapshotSchema
from services.cache import CacheAsideFetcher
from services.http import HttpClientFactory
from services.metrics import CIRCUIT_OPEN_REJECTIONS, UPSTREAM_ERRORS
from services.resilience import ResiliencePipeline
from utils.clock import Clock, SystemClock
from utils.exceptions import (
    CircuitOpenError,
    InvalidResponseError,
    NoRateFoundError,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)

FRANKFURTER = "frankfurter"


@runtime_checkable
class CurrencyRateProvider(Protocol):
    """Capability shared by every registered rate provider."""

    name: str

    async def get_latest(
        self, base: Optional[str] = None, symbols: Optional[Sequence[str]] = None
    ) -> RateSnapshot: ...

    async def get_historical(
        self,
        start_date: date,
        end_date: Optional[date] = None,
        base: Optional[str] = None,
        symbols: Optional[Sequence[str]] = None,
    ) -> HistoricalSnapshot: ...

    async def convert(self, from_currency: str, to_currency: str, amount: Decimal) -> Decimal: ...


def build_query(base: Optional[str], symbols: Optional[Sequence[str]]) -> str:
    """
    `?base=..&symbols=..` with empty parts omitted.

    Symbols are joined first and encoded as one value, so commas become %2C.
    """
    query: List[str] = []
    if base:
        query.append(f"base={quote(base, safe='')}")
    if symbols:
        query.append(f"symbols={quote(','.join(symbols), safe='')}")
    return f"?{'&'.join(query)}" if query else ""


def _validate_base_and_symbols(base: Optional[str], symbols: Optional[Sequence[str]]) -> None:
    validate_currency_code(base, "base", "Base currency cannot be empty or whitespace.")
    validate_symbols(symbols)


class FrankfurterRateProvider:
    name = FRANKFURTER

    def __init__(
        self,
        *,
        base_url: str,
        cache: CacheAsideFetcher,
        pipeline: ResiliencePipeline,
        http_client_factory: HttpClientFactory,
        cache_latest: timedelta = timedelta(minutes=30),
        cache_historical: timedelta = timedelta(hours=24),
        clock: Optional[Clock] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self._cache = cache
        self._pipeline = pipeline
        self._client_factory = http_client_factory
        self._cache_latest = cache_latest
        self._cache_historical = cache_historical
        self._clock = clock or SystemClock()
        self._latest_schema = RateSnapshotSchema()
        self._historical_schema = HistoricalSnapshotSchema()

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        cache: CacheAsideFetcher,
        pipeline: ResiliencePipeline,
        http_client_factory: HttpClientFactory,
        clock: Optional[Clock] = None,
    ) -> "FrankfurterRateProvider":
        return cls(
            base_url=config["FRANKFURTER_BASE_URL"],
            cache=cache,
            pipeline=pipeline,
            http_client_factory=http_client_factory,
            cache_latest=timedelta(minutes=int(config["CACHE_LATEST_MINUTES"])),
            cache_historical=timedelta(hours=int(config["CACHE_HISTORICAL_HOURS"])),
            clock=clock,
        )

    async def get_latest(
        self, base: Optional[str] = None, symbols: Optional[Sequence[str]] = None
    ) -> RateSnapshot:
        _validate_base_and_symbols(base, symbols)

        path = f"/v1/latest{build_query(base, symbols)}"
        return await self._query_api(path, self._latest_schema, self._cache_latest)

    async def get_historical(
        self,
        start_date: date,
        end_date: Optional[date] = None,
        base: Optional[str] = None,
        symbols: Optional[Sequence[str]] = None,
    ) -> HistoricalSnapshot:
        _validate_base_and_symbols(base, symbols)
        validate_not_future(start_date, today=self._clock.utcnow().date())
        if end_date is not None and end_date < start_date:
            raise ValidationError("End date cannot be earlier than start date.", field_name="end_date")

        end = end_date.isoformat() if end_date else ""
        path = f"/v1/{start_date.isoformat()}..{end}{build_query(base, symbols)}"
        return await self._query_api(path, self._historical_schema, self._cache_historical)

    async def convert(self, from_currency: str, to_currency: str, amount: Decimal) -> Decimal:
        if from_currency is None or not from_currency.strip():
            raise ValidationError("Source currency cannot be empty or whitespace.", field_name="from")
        if to_currency is None or not to_currency.strip():
            raise ValidationError("Target currency cannot be empty or whitespace.", field_name="to")
        amount = to_positive_decimal(amount)

        snapshot = await self.get_latest(from_currency, [to_currency])
        rate = snapshot.rates.get(to_currency)
        if rate is None:
            rate = snapshot.rates.get(to_currency.upper())
        if rate is None:
            raise NoRateFoundError(from_currency, to_currency)

        return round_currency(amount * rate)

    async def _query_api(self, path: str, schema: Schema, ttl: timedelta):
        url = f"{self.base_url}{path}"
        cached = await self._cache.get(url, schema)
        if cached is not None:
            return cached

        logger.info("Fetching rates from %s", path)
        try:
            async with self._client_factory() as client:
                response = await self._pipeline.execute(lambda: client.get(path))
        except CircuitOpenError:
            CIRCUIT_OPEN_REJECTIONS.labels(provider=self.name).inc()
            raise
        except httpx.TransportError as exc:
            UPSTREAM_ERRORS.labels(provider=self.name).inc()
            logger.error("Exchange rate service unreachable at %s: %r", path, exc)
            raise UpstreamServiceError("Exchange rate service is unreachable.") from exc

        if not response.is_success:
            UPSTREAM_ERRORS.labels(provider=self.name).inc()
            raise UpstreamServiceError(
                f"Exchange rate service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = schema.load(response.json(parse_float=Decimal))
        except (ValueError, ValidationError) as exc:
            logger.debug("Failed to deserialize API response from %s: %s", path, response.text)
            raise InvalidResponseError("Invalid response from exchange rate service.") from exc

        data = with_expiry(data, self._clock.utcnow() + ttl)
        await self._cache.set(url, data, schema)
        return data
