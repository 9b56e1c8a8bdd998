"""
Request-level rate operations shared by the HTTP views.

Resolves the provider, rejects denylisted symbols before anything goes
upstream, strips denylisted codes from what comes back and pages historical
series.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from models.rates import HistoricalSnapshot, RateSnapshot
from services.pagination import Page, paginate
from services.provider_factory import ProviderFactory
from services.rate_provider import CurrencyRateProvider
from services.symbols import UnsupportedSymbolFilter

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class HistoricalPage:
    base: str
    start_date: Optional[date]
    end_date: Optional[date]
    page: Page


class RatesService:
    def __init__(
        self,
        providers: ProviderFactory,
        symbol_filter: UnsupportedSymbolFilter,
        default_provider: str = "frankfurter",
        default_base: str = "EUR",
        default_page_size: int = 50,
    ) -> None:
        self.providers = providers
        self.symbol_filter = symbol_filter
        self.default_provider = default_provider
        self.default_base = default_base
        self.default_page_size = default_page_size

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        providers: ProviderFactory,
        symbol_filter: UnsupportedSymbolFilter,
    ) -> "RatesService":
        return cls(
            providers,
            symbol_filter,
            default_provider=config["DEFAULT_PROVIDER"],
            default_base=config["DEFAULT_BASE"],
            default_page_size=int(config["HISTORICAL_DEFAULT_PAGE_SIZE"]),
        )

    def _provider(self, name: Optional[str]) -> CurrencyRateProvider:
        return self.providers.create(name or self.default_provider)

    def _base(self, base: Optional[str]) -> str:
        return base.strip().upper() if base else self.default_base

    async def latest(
        self,
        base: Optional[str] = None,
        symbols: Optional[Sequence[str]] = None,
        provider: Optional[str] = None,
    ) -> RateSnapshot:
        self.symbol_filter.ensure_supported(symbols)
        snapshot = await self._provider(provider).get_latest(self._base(base), symbols)

        rates = dict(snapshot.rates)
        self.symbol_filter.strip(rates)
        return dataclasses.replace(snapshot, rates=rates)

    async def historical(
        self,
        start_date: date,
        end_date: Optional[date] = None,
        base: Optional[str] = None,
        symbols: Optional[Sequence[str]] = None,
        provider: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> HistoricalPage:
        self.symbol_filter.ensure_supported(symbols)
        snapshot: HistoricalSnapshot = await self._provider(provider).get_historical(
            start_date, end_date, self._base(base), symbols
        )

        ordered = []
        for day, rates in snapshot.ordered_rates():
            rates = dict(rates)
            self.symbol_filter.strip(rates)
            ordered.append((day, rates))

        return HistoricalPage(
            base=snapshot.base,
            start_date=snapshot.start_date,
            end_date=snapshot.end_date,
            page=paginate(ordered, page, page_size or self.default_page_size),
        )

    async def convert(
        self,
        from_currency: str,
        to_currency: str,
        amount: Decimal,
        provider: Optional[str] = None,
    ) -> Decimal:
        self.symbol_filter.ensure_supported([from_currency, to_currency])
        return await self._provider(provider).convert(from_currency, to_currency, amount)
