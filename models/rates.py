"""
Rate snapshots returned by rate providers.

Both snapshot types carry their own ``expires_at`` so the cache layer can
mirror the application-level expiry in the backing store's TTL.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Tuple, TypeVar, runtime_checkable


@runtime_checkable
class HasExpiry(Protocol):
    expires_at: Optional[datetime]


T = TypeVar("T", bound=HasExpiry)


def with_expiry(value: T, expires_at: datetime) -> T:
    """Return a copy of a snapshot stamped with a new expiry."""
    return dataclasses.replace(value, expires_at=expires_at)


@dataclass(frozen=True)
class RateSnapshot:
    base: str
    rates: Dict[str, Decimal]
    date: Optional[date] = None
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class HistoricalSnapshot:
    base: str
    # ISO date string -> {currency code -> rate}
    rates: Dict[str, Dict[str, Decimal]]
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    expires_at: Optional[datetime] = None

    def ordered_rates(self) -> List[Tuple[str, Dict[str, Decimal]]]:
        """Rates as (day, rates) pairs in ascending date order."""
        return sorted(self.rates.items(), key=lambda item: date.fromisoformat(item[0]))
