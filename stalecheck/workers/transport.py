"""Rate-governed, retrying HTTP transport.

Every outbound request of the service goes through :class:`RetryingTransport`:
each attempt is admitted by the shared :class:`RateGovernor`, ``429``
responses wait for the server's ``Retry-After`` hint (or the base delay), and
other failures back off exponentially until the attempt budget runs out.

Calendar index queries, snapshot replays and live-page fetches all share one
httpx.AsyncClient, so connections to the archive are pooled across a whole
analysis run and across concurrent API requests.  ``get_http_client`` builds
it lazily from settings; ``close_http_client`` runs on application shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from stalecheck.core.config import settings
from stalecheck.workers.rate_governor import RateGovernor, get_rate_governor

logger = logging.getLogger(__name__)

# Module-level shared client
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Return the client shared by index, snapshot and live-page requests.

    Redirects are followed because archive replay URLs redirect to the
    nearest capture.
    """
    global _http_client  # noqa: PLW0603
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            follow_redirects=True,
            verify=settings.http_verify_ssl,
            headers={"User-Agent": "StalecheckBot/1.0"},
        )
    return _http_client


async def close_http_client() -> None:
    """Close the shared client; the next request through the transport reopens it."""
    global _http_client  # noqa: PLW0603
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
        _http_client = None
        logger.info("HTTP client closed.")


class TransportError(Exception):
    """Base class for everything the transport raises."""


class TransportFailure(TransportError):
    """A single attempt failed: network error or non-success status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimited(TransportFailure):
    """The server answered ``429``.  Handled inside the transport."""

    def __init__(self, url: str, retry_after: Optional[float] = None) -> None:
        super().__init__(f"Rate limited by {url}", status_code=429)
        self.retry_after = retry_after


class TransportExhausted(TransportError):
    """Every attempt for one logical request failed."""

    def __init__(
        self, url: str, attempts: int, last_error: Optional[BaseException]
    ) -> None:
        super().__init__(
            f"Failed to fetch {url} after {attempts} attempts: {last_error}"
        )
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Parse a numeric ``Retry-After`` header; HTTP-date values are ignored."""
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw.strip()))
    except ValueError:
        return None


class RetryingTransport:
    """Executes one logical request with admission control and retries.

    Attempt ``a`` (0-based) that fails with anything but a rate limit is
    followed by a ``base_delay * 2**a`` sleep.  A rate-limited attempt still
    uses up one attempt but sleeps the server hint (or the flat base delay)
    instead.  Nothing sleeps after the last attempt.
    """

    def __init__(
        self,
        governor: RateGovernor,
        *,
        max_attempts: int,
        base_delay_ms: int,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay_ms < 0:
            raise ValueError("base_delay_ms must not be negative")
        self._governor = governor
        self._max_attempts = max_attempts
        self._base_delay = base_delay_ms / 1000.0
        self._client = client
        self._sleep = sleep
        self._log = log or logger

    @classmethod
    def from_settings(cls) -> RetryingTransport:
        """Build a transport on the shared governor and HTTP client."""
        return cls(
            get_rate_governor(),
            max_attempts=settings.retry_attempts,
            base_delay_ms=settings.retry_delay_ms,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _http(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else get_http_client()

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    def _wait(self, retry_state: RetryCallState) -> float:
        """Seconds to sleep before the next attempt."""
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, RateLimited):
            if error.retry_after is not None:
                return error.retry_after
            return self._base_delay
        # attempt_number is 1-based; the first failure waits base * 2**0.
        return self._base_delay * 2 ** (retry_state.attempt_number - 1)

    def _log_attempt(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if error is not None:
            self._log.warning(
                "Attempt %d/%d failed: %s",
                retry_state.attempt_number,
                self._max_attempts,
                error,
            )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _attempt(self, request: httpx.Request) -> httpx.Response:
        """One admitted send; classifies the outcome."""
        await self._governor.admit()
        url = str(request.url)
        try:
            response = await self._http().send(request)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportFailure(f"Request error for '{url}': {exc}") from exc

        if response.status_code == 429:
            raise RateLimited(url, _retry_after_seconds(response))
        if not response.is_success:
            raise TransportFailure(
                f"HTTP {response.status_code} for '{url}'",
                status_code=response.status_code,
            )
        self._log.debug("GET %s -> %d", url, response.status_code)
        return response

    async def execute(self, request: httpx.Request) -> httpx.Response:
        """Send *request*, retrying until success or the attempt budget runs out.

        Raises:
            TransportExhausted: every attempt failed; ``last_error`` holds the
                final underlying failure.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(TransportFailure),
            sleep=self._sleep,
            after=self._log_attempt,
            before_sleep=before_sleep_log(self._log, logging.INFO),
            reraise=False,
        )
        try:
            return await retrying(self._attempt, request)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            self._log.error(
                "Giving up on %s after %d attempts.", request.url, self._max_attempts
            )
            raise TransportExhausted(
                str(request.url), self._max_attempts, last_error
            ) from last_error

    def _get(self, url: str) -> httpx.Request:
        """Build a GET request; a URL httpx cannot parse fails without retries."""
        try:
            return self._http().build_request("GET", url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportFailure(f"Invalid URL '{url}': {exc}") from exc

    async def fetch_text(self, url: str) -> str:
        response = await self.execute(self._get(url))
        return response.text

    async def fetch_json(self, url: str) -> Any:
        """GET *url* and decode the body as JSON.

        A body that is not JSON raises :class:`TransportFailure` without
        further retries.
        """
        response = await self.execute(self._get(url))
        try:
            return response.json()
        except ValueError as exc:
            raise TransportFailure(f"Invalid JSON from '{url}': {exc}") from exc
