from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import httpx
import pytest

from api import create_app
from api.config import TestingConfig
from models.kv_storage import MemoryKeyValueStore
from models.token_store import TokenStore
from models.user_repository import InMemoryUserRepository
from utils.security import TokenFactory

FROZEN_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = FROZEN_NOW) -> None:
        self.now = now

    def utcnow(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeUpstream:
    """Records every upstream request and answers with `handler`."""

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> None:
        self.requests: List[httpx.Request] = []
        self.handler = handler or (lambda request: httpx.Response(404, json={"message": "not found"}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def settings(**overrides):
    values = {k: getattr(TestingConfig, k) for k in dir(TestingConfig) if k.isupper()}
    values.update(overrides)
    return values


def latest_payload(base="EUR", rates=None):
    return {
        "amount": 1.0,
        "base": base,
        "date": "2024-05-31",
        "rates": rates or {"USD": 1.08, "GBP": 0.85, "TRY": 35.1, "PLN": 4.31},
    }


def historical_payload(start, days, base="EUR"):
    return {
        "amount": 1.0,
        "base": base,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=days - 1)).isoformat(),
        "rates": {
            (start + timedelta(days=i)).isoformat(): {"USD": 1.0 + i / 1000, "MXN": 18.5}
            for i in range(days)
        },
    }


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def kv(clock):
    return MemoryKeyValueStore(clock)


@pytest.fixture
def users():
    return InMemoryUserRepository()


@pytest.fixture
def token_store(kv, users, clock):
    return TokenStore(kv, users, clock)


@pytest.fixture
def token_factory(clock):
    return TokenFactory(settings(), clock)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def app(clock, kv, upstream):
    app = create_app("testing", clock=clock, kv=kv, http_transport=upstream.transport)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(username="admin", password="111"):
        resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp.get_json()

    return _login


@pytest.fixture
def auth_header(login):
    def _header(username="admin", password="111"):
        return {"Authorization": f"Bearer {login(username, password)['access_token']}"}

    return _header
