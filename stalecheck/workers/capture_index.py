"""Resolving a URL's archived captures, year by year and day by day.

The index provider answers two questions: which days of a year have
captures (``list_by_year``) and which captures exist on one day
(``list_by_day``).  Both answers are lists of ``[code, status, count]``
rows.  :class:`CaptureIndexClient` turns those rows into :class:`Snapshot`
objects.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional, Protocol, Sequence
from urllib.parse import quote

from stalecheck.core.config import settings
from stalecheck.core.dates import (
    archive_timestamp,
    create_timestamp,
    format_identifier,
    parse_calendar_date,
)
from stalecheck.models.analysis.snapshot import CaptureCandidate, Snapshot
from stalecheck.workers.transport import RetryingTransport, TransportError

logger = logging.getLogger(__name__)

IndexRow = Sequence[Any]


class CaptureIndexProvider(Protocol):
    async def list_by_year(self, url: str, year: int) -> list[IndexRow]: ...

    async def list_by_day(self, url: str, day_identifier: str) -> list[IndexRow]: ...


class WaybackCalendarProvider:
    """Capture index backed by the Wayback Machine calendar endpoint."""

    def __init__(
        self, transport: RetryingTransport, base_url: Optional[str] = None
    ) -> None:
        self._transport = transport
        self._base_url = (base_url or settings.archive_base_url).rstrip("/")

    def _calendar_url(self, url: str, date: str, *, by_day: bool) -> str:
        query = f"url={quote(url, safe='')}&date={date}"
        if by_day:
            query += "&groupby=day"
        return f"{self._base_url}/__wb/calendarcaptures/2?{query}"

    async def _items(self, index_url: str) -> list[IndexRow]:
        data = await self._transport.fetch_json(index_url)
        if not isinstance(data, dict):
            return []
        return list(data.get("items") or [])

    async def list_by_year(self, url: str, year: int) -> list[IndexRow]:
        return await self._items(self._calendar_url(url, str(year), by_day=True))

    async def list_by_day(self, url: str, day_identifier: str) -> list[IndexRow]:
        return await self._items(self._calendar_url(url, day_identifier, by_day=False))


def _is_redirect(status: int) -> bool:
    return 300 <= status < 400


class CaptureIndexClient:
    """Lists snapshots of a URL from a :class:`CaptureIndexProvider`."""

    def __init__(
        self,
        provider: CaptureIndexProvider,
        *,
        archive_base_url: Optional[str] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._provider = provider
        self._base_url = (archive_base_url or settings.archive_base_url).rstrip("/")
        self._log = log or logger

    def snapshot_url(self, url: str, identifier: str, time_code: int) -> str:
        """Return the replay URL of the capture taken at *identifier*/*time_code*."""
        return f"{self._base_url}/web/{archive_timestamp(identifier, time_code)}/{url}"

    def _decode_day_rows(
        self, url: str, identifier: str, rows: list[IndexRow]
    ) -> list[Snapshot]:
        candidates = [
            CaptureCandidate(
                calendar_identifier=identifier,
                time_code=int(row[0]),
                status_code=int(row[1]),
            )
            for row in rows
        ]
        return [
            Snapshot(
                timestamp=create_timestamp(c.calendar_identifier, c.time_code),
                source_url=self.snapshot_url(url, c.calendar_identifier, c.time_code),
            )
            for c in candidates
            if c.status_code == 200
        ]

    async def list_day_captures(self, url: str, identifier: str) -> list[Snapshot]:
        """Return the successful captures of *url* on one day.

        A failing day query, or a listing with a row that cannot be decoded,
        counts as a day without captures.
        """
        try:
            rows = await self._provider.list_by_day(url, identifier)
            return self._decode_day_rows(url, identifier, rows)
        except TransportError as exc:
            self._log.error("Error fetching day captures for %s: %s", identifier, exc)
        except (ValueError, TypeError, IndexError) as exc:
            self._log.error("Malformed day listing for %s: %s", identifier, exc)
        return []

    def _decode_year_row(self, year: int, row: IndexRow) -> Optional[str]:
        """Return the day identifier of a usable year row, else ``None``.

        Raises ``ValueError``/``TypeError``/``IndexError`` for rows that
        cannot be decoded.
        """
        day_code, status, count = int(row[0]), int(row[1]), int(row[2])
        if _is_redirect(status) or count == 0:
            return None
        month, day = parse_calendar_date(day_code)
        identifier = format_identifier(year, month, day)
        create_timestamp(identifier, 0)  # rejects impossible dates such as 1332
        return identifier

    async def iter_year_captures(
        self, url: str, year: int
    ) -> AsyncIterator[tuple[str, list[Snapshot]]]:
        """Yield ``(identifier, snapshots)`` for each day of *year* with captures.

        Days are resolved lazily in the order the index lists them, so a
        consumer that stops early never triggers the remaining day queries.
        Rows that cannot be decoded are skipped.  Errors from the year query
        itself propagate.
        """
        rows = await self._provider.list_by_year(url, year)
        for row in rows:
            try:
                identifier = self._decode_year_row(year, row)
            except (ValueError, TypeError, IndexError) as exc:
                self._log.warning("Skipping malformed %d index row %r: %s", year, row, exc)
                continue
            if identifier is None:
                continue
            snapshots = await self.list_day_captures(url, identifier)
            if snapshots:
                yield identifier, snapshots

    async def list_year_captures(
        self, url: str, year: int, cap: int
    ) -> dict[str, list[Snapshot]]:
        """Collect up to *cap* days of captures for *year*, keyed by ``YYYYMMDD``."""
        captures: dict[str, list[Snapshot]] = {}
        if cap < 1:
            return captures
        async with aclosing(self.iter_year_captures(url, year)) as days:
            async for identifier, snapshots in days:
                captures[identifier] = snapshots
                if len(captures) >= cap:
                    break
        return captures
