"""
Wiring of the long-lived gateway services.

One GatewayServices instance is built per Flask app and kept in
``app.extensions["fx_gateway"]``. Everything in it is safe to share across
requests: loop-bound resources (HTTP clients, Redis connections) are opened
per operation by the services themselves.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import httpx
from flask import current_app

from models.kv_storage import KeyValueStore, MemoryKeyValueStore, RedisKeyValueStore
from models.token_store import TokenStore
from models.user_repository import InMemoryUserRepository, UserRepository
from services.cache import CacheAsideFetcher
from services.http import build_http_client_factory
from services.provider_factory import ProviderFactory
from services.rate_provider import FRANKFURTER, FrankfurterRateProvider
from services.rates_service import RatesService
from services.resilience import ResiliencePipeline
from services.symbols import UnsupportedSymbolFilter
from utils.clock import Clock, SystemClock
from utils.security import TokenFactory

logger = logging.getLogger(__name__)

EXTENSION_KEY = "fx_gateway"


@dataclass
class GatewayServices:
    clock: Clock
    kv: KeyValueStore
    users: UserRepository
    token_store: TokenStore
    token_factory: TokenFactory
    pipeline: ResiliencePipeline
    cache: CacheAsideFetcher
    providers: ProviderFactory
    rates: RatesService


def build_services(
    config: Mapping[str, Any],
    *,
    clock: Optional[Clock] = None,
    kv: Optional[KeyValueStore] = None,
    users: Optional[UserRepository] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    correlation_id: Optional[Callable[[], Optional[str]]] = None,
) -> GatewayServices:
    clock = clock or SystemClock()
    if kv is None:
        if config.get("REDIS_URL"):
            kv = RedisKeyValueStore(config["REDIS_URL"], prefix=config.get("REDIS_KEY_PREFIX", ""))
        else:
            logger.warning("REDIS_URL is not set, using the in-process key-value store")
            kv = MemoryKeyValueStore(clock)
    users = users or InMemoryUserRepository()

    cache = CacheAsideFetcher(kv, clock)
    # one breaker per upstream, shared by every request
    pipeline = ResiliencePipeline.from_config(config, FRANKFURTER, clock)
    http_client_factory = build_http_client_factory(
        config["FRANKFURTER_BASE_URL"],
        timeout=float(config["UPSTREAM_TIMEOUT_SECONDS"]),
        correlation_id=correlation_id,
        transport=http_transport,
    )

    def frankfurter() -> FrankfurterRateProvider:
        return FrankfurterRateProvider.from_config(
            config,
            cache=cache,
            pipeline=pipeline,
            http_client_factory=http_client_factory,
            clock=clock,
        )

    providers = ProviderFactory({FRANKFURTER: frankfurter})
    symbol_filter = UnsupportedSymbolFilter(config.get("UNSUPPORTED_SYMBOLS"))

    return GatewayServices(
        clock=clock,
        kv=kv,
        users=users,
        token_store=TokenStore(kv, users, clock),
        token_factory=TokenFactory(config, clock),
        pipeline=pipeline,
        cache=cache,
        providers=providers,
        rates=RatesService.from_config(config, providers, symbol_filter),
    )


def current_services() -> GatewayServices:
    return current_app.extensions[EXTENSION_KEY]
