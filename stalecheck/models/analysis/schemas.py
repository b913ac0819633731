from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, HttpUrl

from stalecheck.models.analysis.snapshot import AnalysisResult


class AnalysisRequest(BaseModel):
    """Request body for POST /analysis.

    Omitted ranges fall back to the configured defaults.
    """

    url: HttpUrl
    year_range: Optional[int] = Field(default=None, ge=0)
    max_yearly_captures: Optional[int] = Field(default=None, ge=1)


class BatchAnalysisRequest(BaseModel):
    """Request body for POST /analysis/batch."""

    urls: list[HttpUrl] = Field(min_length=1)
    year_range: Optional[int] = Field(default=None, ge=0)
    max_yearly_captures: Optional[int] = Field(default=None, ge=1)


class BatchAnalysisResponse(BaseModel):
    results: dict[str, AnalysisResult]
    failed: list[str]
