from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from stalecheck.core.config import settings
from stalecheck.models.analysis.snapshot import AnalysisResult, Snapshot
from stalecheck.services.analysis.detection import detect, recommend_update
from stalecheck.workers.capture_index import (
    CaptureIndexClient,
    WaybackCalendarProvider,
)
from stalecheck.workers.content import (
    DiceSimilarity,
    HtmlTextExtractor,
    SimilarityOracle,
    TextExtractor,
)
from stalecheck.workers.transport import RetryingTransport, TransportError

logger = logging.getLogger(__name__)

#: Above this many requested capture days a run is likely to be slow.
LARGE_REQUEST_DAYS = 10


class InsufficientData(Exception):
    """No capture of the URL could be resolved in the requested year range."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryAnalysisService:
    """Compares a page with its archived history and decides if it is stale."""

    def __init__(
        self,
        transport: RetryingTransport,
        index: CaptureIndexClient,
        *,
        extractor: Optional[TextExtractor] = None,
        oracle: Optional[SimilarityOracle] = None,
        similarity_threshold: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._transport = transport
        self._index = index
        self._extractor = extractor or HtmlTextExtractor()
        self._oracle = oracle or DiceSimilarity()
        self._threshold = (
            settings.similarity_threshold
            if similarity_threshold is None
            else similarity_threshold
        )
        self._clock = clock
        self._log = log or logger

    @classmethod
    def from_settings(cls) -> HistoryAnalysisService:
        """Wire the service against the archive using the shared transport."""
        transport = RetryingTransport.from_settings()
        provider = WaybackCalendarProvider(transport)
        return cls(transport, CaptureIndexClient(provider))

    async def _fetch_content(self, url: str) -> str:
        html = await self._transport.fetch_text(url)
        return self._extractor.extract(html)

    async def collect_captures(
        self, url: str, year_range: int, max_yearly_captures: int
    ) -> list[Snapshot]:
        """Gather captures from this year back *year_range* years, oldest first.

        A year whose index query fails is logged and skipped.
        """
        current_year = self._clock().year
        captures: list[Snapshot] = []
        for year in range(current_year, current_year - year_range - 1, -1):
            self._log.info("Fetching captures for year %d...", year)
            try:
                by_day = await self._index.list_year_captures(
                    url, year, max_yearly_captures
                )
            except TransportError as exc:
                self._log.error("Error processing year %d: %s", year, exc)
                continue
            for snapshots in by_day.values():
                captures.extend(snapshots)
        captures.sort(key=lambda s: s.timestamp)
        return captures

    async def _score(self, snapshot: Snapshot, current: str) -> Snapshot:
        try:
            content = await self._fetch_content(snapshot.source_url)
        except TransportError as exc:
            self._log.warning(
                "Skipping snapshot %s: content unavailable (%s)",
                snapshot.source_url,
                exc,
            )
            return snapshot
        return snapshot.model_copy(
            update={
                "content": content,
                "similarity": self._oracle.score(current, content),
            }
        )

    async def analyze(
        self,
        url: str,
        year_range: Optional[int] = None,
        max_yearly_captures: Optional[int] = None,
    ) -> AnalysisResult:
        """Run the full history analysis for *url*.

        Raises:
            TransportError: the live page could not be fetched.
            InsufficientData: no captures were found in the year range.
        """
        if year_range is None:
            year_range = settings.default_year_range
        if max_yearly_captures is None:
            max_yearly_captures = settings.default_max_yearly_captures
        if year_range * max_yearly_captures > LARGE_REQUEST_DAYS:
            self._log.warning(
                "Requesting %d years x %d captures for %s; this may take a long "
                "time and could run into rate limiting.",
                year_range,
                max_yearly_captures,
                url,
            )

        started = time.monotonic()
        current = await self._fetch_content(url)
        captures = await self.collect_captures(url, year_range, max_yearly_captures)
        if not captures:
            raise InsufficientData(
                f"No captures found for {url} in the last {year_range} years"
            )

        analyzed = [await self._score(snapshot, current) for snapshot in captures]
        now = self._clock()
        detection = detect(analyzed, self._threshold, now=now)

        result = AnalysisResult(
            url=url,
            first_capture=captures[0].timestamp,
            last_capture=captures[-1].timestamp,
            total_captures=len(captures),
            similar_since=detection.similar_since,
            similarity_score=detection.average_similarity,
            significant_changes=detection.significant_changes,
            recommend_update=recommend_update(
                detection.similar_since, detection.average_similarity, now=now
            ),
        )
        self._log.info(
            "Analysed %s in %.1fs: %d captures, average similarity %.2f%%.",
            url,
            time.monotonic() - started,
            result.total_captures,
            result.similarity_score * 100,
        )
        return result

    async def analyze_batch(
        self,
        urls: Iterable[str],
        year_range: Optional[int] = None,
        max_yearly_captures: Optional[int] = None,
    ) -> tuple[dict[str, AnalysisResult], list[str]]:
        """Analyse *urls* one after another.

        Returns the results keyed by URL and the URLs that failed.  A failing
        URL is logged and does not stop the batch.
        """
        results: dict[str, AnalysisResult] = {}
        failed: list[str] = []
        for url in urls:
            try:
                results[url] = await self.analyze(url, year_range, max_yearly_captures)
            except (TransportError, InsufficientData) as exc:
                self._log.error("Error analyzing %s: %s", url, exc)
                failed.append(url)
            except Exception:
                self._log.exception("Unexpected error analyzing %s", url)
                failed.append(url)
        return results, failed
