"""Change detection over a time-ordered series of scored snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from stalecheck.core.dates import years_before
from stalecheck.models.analysis.snapshot import SignificantChange, Snapshot

#: Drop in similarity (absolute, not relative) between neighbouring scored
#: snapshots that counts as a significant change.
SIGNIFICANT_DROP = 0.15

#: Average similarity above which a long-unchanged site is flagged.
RECOMMEND_AVERAGE = 0.85

#: How long a site must have looked the same before it is flagged.
RECOMMEND_AGE_YEARS = 2


@dataclass(frozen=True)
class Detection:
    similar_since: Optional[datetime]
    significant_changes: list[SignificantChange] = field(default_factory=list)
    average_similarity: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def detect(
    snapshots: Sequence[Snapshot],
    similarity_threshold: float,
    now: Optional[datetime] = None,
) -> Detection:
    """Scan *snapshots* (oldest first) from the newest backwards.

    Every scored snapshot at or above *similarity_threshold* overwrites
    ``similar_since``, so the result is the oldest qualifying snapshot
    anywhere in the series, not the oldest one of an unbroken run from the
    newest end.  A significant change is recorded against the previously
    visited scored snapshot (or *now* for the newest one, compared to a
    perfect score).  Unscored snapshots are skipped by the scan but still
    count, as zero, towards the average.
    """
    previous_similarity = 1.0
    previous_timestamp = now or _utcnow()
    similar_since: Optional[datetime] = None
    changes: list[SignificantChange] = []

    for snapshot in reversed(snapshots):
        score = snapshot.similarity
        if score is None:
            continue
        drop = previous_similarity - score
        if drop > SIGNIFICANT_DROP:
            changes.append(
                SignificantChange(
                    date=snapshot.timestamp,
                    other_date=previous_timestamp,
                    similarity_drop=drop,
                )
            )
        # Last write wins: keep overwriting while walking back in time.
        if score >= similarity_threshold:
            similar_since = snapshot.timestamp
        previous_similarity = score
        previous_timestamp = snapshot.timestamp

    total = sum(s.similarity or 0.0 for s in snapshots)
    average = total / len(snapshots) if snapshots else 0.0
    return Detection(
        similar_since=similar_since,
        significant_changes=changes,
        average_similarity=average,
    )


def recommend_update(
    similar_since: Optional[datetime],
    average_similarity: float,
    now: Optional[datetime] = None,
) -> bool:
    """True when the site has looked the same for over two years."""
    if similar_since is None:
        return False
    cutoff = years_before(now or _utcnow(), RECOMMEND_AGE_YEARS)
    return similar_since < cutoff and average_similarity > RECOMMEND_AVERAGE
