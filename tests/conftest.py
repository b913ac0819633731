from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

import stalecheck.workers.transport as transport_module
from stalecheck.main import app
from stalecheck.workers.rate_governor import reset_rate_governor


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that only records the requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture(autouse=True)
def _fresh_shared_state():
    """Never let the shared governor or HTTP client leak between tests."""
    reset_rate_governor()
    transport_module._http_client = None
    yield
    reset_rate_governor()
    transport_module._http_client = None


@pytest.fixture
def client():
    """TestClient with the shutdown hook mocked."""
    with patch(
        "stalecheck.main.close_http_client",
        new_callable=AsyncMock,
    ):
        with TestClient(app) as c:
            yield c
