from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from stalecheck.workers.rate_governor import RateGovernor
from stalecheck.workers.transport import (
    RateLimited,
    RetryingTransport,
    TransportExhausted,
    TransportFailure,
    get_http_client,
    close_http_client,
)

URL = "https://example.com/page"


def _transport(client, sleeps, *, max_attempts=3, base_delay_ms=1000, governor=None):
    return RetryingTransport(
        governor or RateGovernor(1000),
        max_attempts=max_attempts,
        base_delay_ms=base_delay_ms,
        client=client,
        sleep=sleeps,
    )


class TestRetryingTransport:
    @respx.mock
    async def test_success_returns_without_retrying(self, sleeps):
        route = respx.get(URL).mock(return_value=httpx.Response(200, text="ok"))
        async with httpx.AsyncClient() as client:
            text = await _transport(client, sleeps).fetch_text(URL)
        assert text == "ok"
        assert route.call_count == 1
        assert sleeps.calls == []

    @respx.mock
    async def test_recovers_after_transient_failures(self, sleeps):
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(500),
                httpx.ConnectError("refused"),
                httpx.Response(200, text="recovered"),
            ]
        )
        async with httpx.AsyncClient() as client:
            text = await _transport(client, sleeps).fetch_text(URL)
        assert text == "recovered"
        assert route.call_count == 3
        assert sleeps.calls == [1.0, 2.0]

    @respx.mock
    async def test_exhaustion_after_exactly_max_attempts(self, sleeps):
        route = respx.get(URL).mock(return_value=httpx.Response(503))
        async with httpx.AsyncClient() as client:
            with pytest.raises(TransportExhausted) as info:
                await _transport(client, sleeps, max_attempts=3).fetch_text(URL)
        assert route.call_count == 3
        assert info.value.attempts == 3
        assert isinstance(info.value.last_error, TransportFailure)
        assert info.value.last_error.status_code == 503
        assert info.value.__cause__ is info.value.last_error

    @respx.mock
    async def test_backoff_doubles_per_attempt(self, sleeps):
        respx.get(URL).mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as client:
            with pytest.raises(TransportExhausted):
                await _transport(client, sleeps, max_attempts=4, base_delay_ms=250).fetch_text(URL)
        assert sleeps.calls == [0.25, 0.5, 1.0]

    @respx.mock
    async def test_client_error_status_is_retried(self, sleeps):
        route = respx.get(URL).mock(
            side_effect=[httpx.Response(404), httpx.Response(200, text="ok")]
        )
        async with httpx.AsyncClient() as client:
            assert await _transport(client, sleeps).fetch_text(URL) == "ok"
        assert route.call_count == 2

    @respx.mock
    async def test_rate_limit_waits_for_retry_after_hint(self, sleeps):
        respx.get(URL).mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "7"}),
                httpx.Response(200, text="ok"),
            ]
        )
        async with httpx.AsyncClient() as client:
            assert await _transport(client, sleeps).fetch_text(URL) == "ok"
        assert sleeps.calls == [7.0]

    @respx.mock
    async def test_rate_limit_without_hint_waits_base_delay(self, sleeps):
        respx.get(URL).mock(
            side_effect=[httpx.Response(429), httpx.Response(200, text="ok")]
        )
        async with httpx.AsyncClient() as client:
            assert await _transport(client, sleeps).fetch_text(URL) == "ok"
        assert sleeps.calls == [1.0]

    @respx.mock
    async def test_non_numeric_retry_after_falls_back_to_base_delay(self, sleeps):
        respx.get(URL).mock(
            side_effect=[
                httpx.Response(
                    429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}
                ),
                httpx.Response(200, text="ok"),
            ]
        )
        async with httpx.AsyncClient() as client:
            assert await _transport(client, sleeps).fetch_text(URL) == "ok"
        assert sleeps.calls == [1.0]

    @respx.mock
    async def test_rate_limit_is_flat_but_uses_an_attempt(self, sleeps):
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(429),
                httpx.Response(500),
                httpx.Response(200, text="ok"),
            ]
        )
        async with httpx.AsyncClient() as client:
            assert await _transport(client, sleeps).fetch_text(URL) == "ok"
        assert route.call_count == 3
        # 429 on attempt 0 waits the flat base delay; the 500 on attempt 1
        # backs off by base * 2**1.
        assert sleeps.calls == [1.0, 2.0]

    @respx.mock
    async def test_persistent_rate_limit_surfaces_as_exhausted(self, sleeps):
        respx.get(URL).mock(return_value=httpx.Response(429))
        async with httpx.AsyncClient() as client:
            with pytest.raises(TransportExhausted) as info:
                await _transport(client, sleeps, max_attempts=2).fetch_text(URL)
        assert isinstance(info.value.last_error, RateLimited)

    @respx.mock
    async def test_every_attempt_is_admitted_by_the_governor(self, sleeps):
        governor = AsyncMock(spec=RateGovernor)
        respx.get(URL).mock(
            side_effect=[httpx.Response(500), httpx.Response(502), httpx.Response(200)]
        )
        async with httpx.AsyncClient() as client:
            await _transport(client, sleeps, governor=governor).fetch_text(URL)
        assert governor.admit.await_count == 3

    @respx.mock
    async def test_fetch_json_decodes_body(self, sleeps):
        respx.get(URL).mock(return_value=httpx.Response(200, json={"items": [[1, 2, 3]]}))
        async with httpx.AsyncClient() as client:
            data = await _transport(client, sleeps).fetch_json(URL)
        assert data == {"items": [[1, 2, 3]]}

    @respx.mock
    async def test_fetch_json_rejects_invalid_body_without_retry(self, sleeps):
        route = respx.get(URL).mock(return_value=httpx.Response(200, text="<html>"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(TransportFailure, match="Invalid JSON"):
                await _transport(client, sleeps).fetch_json(URL)
        assert route.call_count == 1

    @respx.mock
    async def test_non_request_httpx_errors_are_retried(self, sleeps):
        route = respx.get(URL).mock(
            side_effect=[httpx.InvalidURL("bad host"), httpx.Response(200, text="ok")]
        )
        async with httpx.AsyncClient() as client:
            assert await _transport(client, sleeps).fetch_text(URL) == "ok"
        assert route.call_count == 2
        assert sleeps.calls == [1.0]

    @respx.mock
    async def test_persistent_invalid_url_surfaces_as_exhausted(self, sleeps):
        respx.get(URL).mock(side_effect=httpx.InvalidURL("bad host"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(TransportExhausted) as info:
                await _transport(client, sleeps, max_attempts=2).fetch_text(URL)
        assert isinstance(info.value.last_error, TransportFailure)
        assert isinstance(info.value.last_error.__cause__, httpx.InvalidURL)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryingTransport(RateGovernor(1), max_attempts=0, base_delay_ms=0)


class TestHttpClientLifecycle:
    async def test_shared_client_is_reused_until_closed(self):
        first = get_http_client()
        assert get_http_client() is first
        await close_http_client()
        assert first.is_closed
        second = get_http_client()
        assert second is not first
        await close_http_client()
