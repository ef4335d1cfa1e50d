"""
Pytest configuration and shared fixtures.
"""

from unittest.mock import AsyncMock

import pytest

from service_fiscal.app.auth.session_store import SessionStore
from service_fiscal.app.caching.request_cache import RequestCache


API_BASE = "http://api.test"
TOKEN = "token-abc"


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    """Isolated cache per test."""
    return RequestCache(clock=clock)


@pytest.fixture
def session():
    store = SessionStore()
    store.save_session(
        token=TOKEN,
        session_id="session-1",
        user={"uid": "uid-1", "email": "ana@fiscal.test", "name": "Ana Souza", "role": "Supervisor"},
    )
    return store


@pytest.fixture
def api_client():
    """API client double; every endpoint is an AsyncMock."""
    client = AsyncMock()
    client.base_url = API_BASE
    return client
