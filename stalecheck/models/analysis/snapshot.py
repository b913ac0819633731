from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CaptureCandidate(BaseModel):
    """One row of a day listing from the capture index.

    Lives only while a day is being resolved into snapshots.
    """

    model_config = ConfigDict(frozen=True)

    calendar_identifier: str
    time_code: int
    status_code: int


class Snapshot(BaseModel):
    """A historical capture of a URL.

    ``content`` and ``similarity`` stay ``None`` until the capture has been
    fetched and scored; use ``model_copy(update=...)`` to produce the scored
    version.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    source_url: str
    content: Optional[str] = None
    similarity: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SignificantChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: datetime
    other_date: datetime
    similarity_drop: float


class AnalysisResult(BaseModel):
    """Outcome of one history analysis run."""

    model_config = ConfigDict(frozen=True)

    url: str
    first_capture: datetime
    last_capture: datetime
    total_captures: int
    similar_since: Optional[datetime]
    similarity_score: float
    significant_changes: list[SignificantChange]
    recommend_update: bool
