import logging
from datetime import date, timedelta
from decimal import Decimal

import httpx
import pytest
from marshmallow import ValidationError

from models.schemas.rates import RateSnapshotSchema
from services.cache import CacheAsideFetcher
from services.http import build_http_client_factory
from services.rate_provider import FrankfurterRateProvider, build_query
from services.resilience import CircuitBreaker, ResiliencePipeline, RetryPolicy
from tests.conftest import FakeUpstream, historical_payload, latest_payload
from utils.exceptions import (
    CircuitOpenError,
    InvalidResponseError,
    NoRateFoundError,
    UpstreamServiceError,
)

BASE_URL = "https://frankfurter.test"


async def no_sleep(delay):
    return None


@pytest.fixture
def provider(kv, clock, upstream):
    breaker = CircuitBreaker("frankfurter", failures_before_breaking=5, clock=clock)
    return FrankfurterRateProvider(
        base_url=BASE_URL,
        cache=CacheAsideFetcher(kv, clock),
        pipeline=ResiliencePipeline(RetryPolicy(3, 2), breaker, sleep=no_sleep),
        http_client_factory=build_http_client_factory(BASE_URL, transport=upstream.transport),
        clock=clock,
    )


@pytest.mark.parametrize("base, symbols, expected", [
    (None, None, ""),
    ("EUR", None, "?base=EUR"),
    (None, ["USD"], "?symbols=USD"),
    ("EUR", ["USD", "GBP"], "?base=EUR&symbols=USD%2CGBP"),
    ("A B", ["C&D"], "?base=A%20B&symbols=C%26D"),
])
def test_build_query(base, symbols, expected):
    assert build_query(base, symbols) == expected


@pytest.mark.asyncio
async def test_get_latest_fetches_and_stamps_expiry(provider, upstream, clock):
    upstream.handler = lambda request: httpx.Response(200, json=latest_payload(rates={"USD": 1.08, "GBP": 0.85}))

    snapshot = await provider.get_latest("EUR", ["USD", "GBP"])

    assert snapshot.base == "EUR"
    assert snapshot.rates == {"USD": Decimal("1.08"), "GBP": Decimal("0.85")}
    assert snapshot.date == date(2024, 5, 31)
    assert snapshot.expires_at == clock.utcnow() + timedelta(minutes=30)

    request = upstream.requests[0]
    assert request.url.path == "/v1/latest"
    assert request.url.params["base"] == "EUR"
    assert request.url.params["symbols"] == "USD,GBP"


@pytest.mark.asyncio
async def test_second_call_is_served_from_cache(provider, upstream):
    upstream.handler = lambda request: httpx.Response(200, json=latest_payload())

    first = await provider.get_latest("EUR")
    second = await provider.get_latest("EUR")

    assert second == first
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_cache_expiry_triggers_a_new_fetch(provider, upstream, clock):
    upstream.handler = lambda request: httpx.Response(200, json=latest_payload())

    await provider.get_latest("EUR")
    clock.advance(minutes=31)
    await provider.get_latest("EUR")

    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_get_historical_builds_range_path(provider, upstream, clock):
    start = date(2024, 1, 1)
    upstream.handler = lambda request: httpx.Response(200, json=historical_payload(start, 3))

    snapshot = await provider.get_historical(start, date(2024, 1, 3), base="USD")

    assert upstream.requests[0].url.path == "/v1/2024-01-01..2024-01-03"
    assert [day for day, _ in snapshot.ordered_rates()] == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert snapshot.expires_at == clock.utcnow() + timedelta(hours=24)


@pytest.mark.asyncio
async def test_get_historical_without_end_date(provider, upstream):
    start = date(2024, 5, 1)
    upstream.handler = lambda request: httpx.Response(200, json=historical_payload(start, 2))

    await provider.get_historical(start)

    assert upstream.requests[0].url.path == "/v1/2024-05-01.."


@pytest.mark.asyncio
async def test_historical_rejects_future_start_and_inverted_range(provider, upstream):
    with pytest.raises(ValidationError):
        await provider.get_historical(date(2024, 6, 2))
    with pytest.raises(ValidationError):
        await provider.get_historical(date(2024, 2, 1), date(2024, 1, 1))
    assert upstream.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("base, symbols", [("  ", None), (None, ["USD", " "])])
async def test_blank_inputs_are_rejected_before_any_call(provider, upstream, base, symbols):
    with pytest.raises(ValidationError):
        await provider.get_latest(base, symbols)
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_convert_rounds_half_up_to_cents(provider, upstream):
    upstream.handler = lambda request: httpx.Response(200, json=latest_payload("USD", {"EUR": 0.85}))

    assert await provider.convert("USD", "EUR", Decimal("100")) == Decimal("85.00")


@pytest.mark.asyncio
async def test_convert_rounding_ties_go_up(provider, upstream):
    upstream.handler = lambda request: httpx.Response(200, json=latest_payload("USD", {"EUR": 0.125}))

    assert await provider.convert("USD", "EUR", Decimal("1")) == Decimal("0.13")


@pytest.mark.asyncio
async def test_convert_without_target_rate(provider, upstream):
    upstream.handler = lambda request: httpx.Response(200, json=latest_payload("USD", {"GBP": 0.79}))

    with pytest.raises(NoRateFoundError):
        await provider.convert("USD", "EUR", Decimal("10"))


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
async def test_convert_rejects_non_positive_amounts(provider, upstream, amount):
    with pytest.raises(ValidationError):
        await provider.convert("USD", "EUR", amount)
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_malformed_payload_raises_invalid_response(provider, upstream):
    upstream.handler = lambda request: httpx.Response(200, json={"base": "EUR", "rates": None})

    with pytest.raises(InvalidResponseError):
        await provider.get_latest("EUR")


@pytest.mark.asyncio
async def test_non_json_payload_raises_invalid_response(provider, upstream):
    upstream.handler = lambda request: httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(InvalidResponseError):
        await provider.get_latest("EUR")


@pytest.mark.asyncio
async def test_client_error_is_not_retried(provider, upstream):
    upstream.handler = lambda request: httpx.Response(422, json={"message": "bad base"})

    with pytest.raises(UpstreamServiceError) as exc:
        await provider.get_latest("XXX")
    assert exc.value.status_code == 422
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_surface_as_upstream_error(provider, upstream):
    upstream.handler = lambda request: httpx.Response(503)

    with pytest.raises(UpstreamServiceError):
        await provider.get_latest("EUR")
    assert len(upstream.requests) == 4


@pytest.mark.asyncio
async def test_transport_failures_surface_as_upstream_error(provider, upstream, caplog):
    def fail(request):
        raise httpx.ConnectError("refused", request=request)

    upstream.handler = fail
    with caplog.at_level(logging.ERROR, logger="services.rate_provider"):
        with pytest.raises(UpstreamServiceError) as exc:
            await provider.get_latest("EUR")

    assert str(exc.value) == "Exchange rate service is unreachable."
    assert "refused" in caplog.text


@pytest.mark.asyncio
async def test_open_circuit_fails_fast(provider, upstream):
    upstream.handler = lambda request: httpx.Response(500)
    with pytest.raises(UpstreamServiceError):
        await provider.get_latest("EUR")

    # 4 failed attempts so far; the fifth trips the breaker during the next call
    with pytest.raises(CircuitOpenError):
        await provider.get_latest("EUR")
    calls = len(upstream.requests)
    assert calls == 5

    with pytest.raises(CircuitOpenError):
        await provider.get_latest("GBP")
    assert len(upstream.requests) == calls


@pytest.mark.asyncio
async def test_cached_value_is_served_while_circuit_is_open(provider, upstream, kv, clock):
    upstream.handler = lambda request: httpx.Response(200, json=latest_payload())
    expected = await provider.get_latest("EUR")

    for _ in range(5):
        provider._pipeline.breaker.record_failure("HTTP 500")

    assert await provider.get_latest("EUR") == expected


@pytest.mark.asyncio
async def test_correlation_id_is_forwarded(kv, clock):
    upstream = FakeUpstream(lambda request: httpx.Response(200, json=latest_payload()))
    provider = FrankfurterRateProvider(
        base_url=BASE_URL,
        cache=CacheAsideFetcher(kv, clock),
        pipeline=ResiliencePipeline(RetryPolicy(0, 2), CircuitBreaker("f", clock=clock)),
        http_client_factory=build_http_client_factory(
            BASE_URL, correlation_id=lambda: "corr-123", transport=upstream.transport
        ),
        clock=clock,
    )

    await provider.get_latest()

    assert upstream.requests[0].headers["X-Correlation-ID"] == "corr-123"
    assert upstream.requests[0].url.query == b""


def test_snapshot_schema_ignores_unknown_fields():
    snapshot = RateSnapshotSchema().load({"amount": 1.0, "base": "EUR", "rates": {"USD": "1.1"}})
    assert snapshot.rates == {"USD": Decimal("1.1")}
