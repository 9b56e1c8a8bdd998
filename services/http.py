from __future__ import annotations

from typing import Callable, Optional

import httpx

CORRELATION_HEADER = "X-Correlation-ID"

HttpClientFactory = Callable[[], httpx.AsyncClient]


def build_http_client_factory(
    base_url: str,
    timeout: float = 10.0,
    correlation_id: Optional[Callable[[], Optional[str]]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> HttpClientFactory:
    """
    Return a factory of AsyncClients bound to the upstream base URL.

    When `correlation_id` is given, every outgoing request carries the id it
    returns in the X-Correlation-ID header.
    """

    async def _add_correlation_header(request: httpx.Request) -> None:
        value = correlation_id() if correlation_id else None
        if value and CORRELATION_HEADER not in request.headers:
            request.headers[CORRELATION_HEADER] = value

    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            event_hooks={"request": [_add_correlation_header]},
        )

    return factory
