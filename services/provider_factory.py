"""
Provider registry.

Maps a case-insensitive provider name to either a ready provider instance or
a zero-argument factory building one. Factories run once; the instance is
reused for later lookups.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, FrozenSet, Mapping, Optional, Union

from services.rate_provider import CurrencyRateProvider
from utils.exceptions import InvalidProviderError, ProviderResolutionError

logger = logging.getLogger(__name__)

ProviderEntry = Union[CurrencyRateProvider, Callable[[], CurrencyRateProvider], None]


class ProviderFactory:
    def __init__(self, registry: Mapping[str, ProviderEntry]) -> None:
        self._registry: Dict[str, ProviderEntry] = {
            name.strip().lower(): entry for name, entry in registry.items()
        }
        self._instances: Dict[str, CurrencyRateProvider] = {}
        self._lock = threading.Lock()

    @property
    def available_providers(self) -> FrozenSet[str]:
        return frozenset(self._registry)

    def create(self, name: Optional[str]) -> CurrencyRateProvider:
        if name is None or not name.strip():
            raise ValueError("Provider name cannot be empty or whitespace.")

        key = name.strip().lower()
        if key not in self._registry:
            raise InvalidProviderError(name, self.available_providers)

        with self._lock:
            instance = self._instances.get(key)
            if instance is not None:
                return instance

            entry = self._registry[key]
            if entry is None:
                raise ProviderResolutionError(f"Provider '{key}' is registered but not configured.")
            if isinstance(entry, CurrencyRateProvider):
                instance = entry
            else:
                instance = entry()
                if instance is None:
                    raise ProviderResolutionError(f"Provider '{key}' factory returned nothing.")
                logger.debug("Built rate provider %s", key)

            self._instances[key] = instance
            return instance
