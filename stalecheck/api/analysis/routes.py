from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from stalecheck.models.analysis.schemas import (
    AnalysisRequest,
    BatchAnalysisRequest,
    BatchAnalysisResponse,
)
from stalecheck.models.analysis.snapshot import AnalysisResult
from stalecheck.models.common import ErrorResponse
from stalecheck.services.analysis.service import (
    HistoryAnalysisService,
    InsufficientData,
)
from stalecheck.workers.transport import TransportError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def _get_service() -> HistoryAnalysisService:
    """FastAPI dependency that builds a ``HistoryAnalysisService`` per request.

    The transport underneath shares the process-wide rate governor and HTTP
    client, so concurrent requests draw from one request budget.
    """
    return HistoryAnalysisService.from_settings()


# ---------------------------------------------------------------------------
# POST /analysis
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=AnalysisResult,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Analyse the archived history of a URL",
)
async def post_analysis(
    request: AnalysisRequest,
    service: HistoryAnalysisService = Depends(_get_service),
) -> AnalysisResult:
    """Compare the live page with its archived captures.

    Blocks until the analysis completes; expect minutes, not seconds, with
    the default request budget.

    - **200** — analysis finished
    - **400** — the live page could not be fetched
    - **404** — no archived captures in the requested range
    - **422** — invalid request body
    - **500** — unexpected failure
    """
    url = str(request.url)
    try:
        return await service.analyze(
            url, request.year_range, request.max_yearly_captures
        )
    except InsufficientData as exc:
        logger.info("POST /analysis no captures for %s: %s", url, exc)
        raise HTTPException(status_code=404, detail=str(exc))
    except TransportError as exc:
        logger.warning("POST /analysis fetch error for %s: %s", url, exc)
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("POST /analysis failed for %s", url)
        raise HTTPException(status_code=500, detail=str(exc))


# ---------------------------------------------------------------------------
# POST /analysis/batch
# ---------------------------------------------------------------------------


@router.post(
    "/batch",
    response_model=BatchAnalysisResponse,
    summary="Analyse several URLs one after another",
)
async def post_batch_analysis(
    request: BatchAnalysisRequest,
    service: HistoryAnalysisService = Depends(_get_service),
) -> BatchAnalysisResponse:
    """Run the single-URL analysis for each URL in turn.

    URLs that fail are listed under ``failed``; the rest are returned under
    ``results`` keyed by URL.

    - **200** — batch finished (possibly with failures)
    - **422** — invalid request body
    - **500** — unexpected failure
    """
    urls = [str(url) for url in request.urls]
    try:
        results, failed = await service.analyze_batch(
            urls, request.year_range, request.max_yearly_captures
        )
    except Exception as exc:
        logger.exception("POST /analysis/batch failed")
        raise HTTPException(status_code=500, detail=str(exc))
    return BatchAnalysisResponse(results=results, failed=failed)
