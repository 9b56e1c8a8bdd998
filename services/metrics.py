"""
Prometheus metrics for the rate pipeline.

CACHE_LOOKUPS is labelled by outcome (hit / miss / expired) so the three
cache results stay distinguishable even though miss and expired both return
nothing to the caller.
"""
from __future__ import annotations

from prometheus_client import Counter

CACHE_LOOKUPS = Counter(
    "fx_gateway_cache_lookups_total",
    "Rate cache lookups by outcome",
    ["outcome"],
)

UPSTREAM_ERRORS = Counter(
    "fx_gateway_upstream_errors_total",
    "Upstream rate API calls that failed after retries",
    ["provider"],
)

CIRCUIT_OPEN_REJECTIONS = Counter(
    "fx_gateway_circuit_open_total",
    "Upstream calls rejected because the circuit breaker was open",
    ["provider"],
)

__all__ = [
    "CACHE_LOOKUPS",
    "UPSTREAM_ERRORS",
    "CIRCUIT_OPEN_REJECTIONS",
]
