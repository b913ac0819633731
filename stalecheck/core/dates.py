"""Conversions between the archive's compact date/time codes and datetimes.

The calendar index encodes a day within a year as an ``MMDD`` integer
(``704`` is July 4th) and a time of day as an ``HHMMSS`` integer
(``93000`` is 09:30:00).  Leading zeros are dropped on the wire, so every
decoder pads before slicing.  All datetimes are UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone


def parse_calendar_date(value: int) -> tuple[int, int]:
    """Decode an ``MMDD`` day code into ``(month, day)``."""
    text = f"{value:04d}"
    return int(text[:2]), int(text[2:])


def encode_calendar_date(month: int, day: int) -> int:
    """Inverse of :func:`parse_calendar_date`."""
    return month * 100 + day


def format_identifier(year: int, month: int, day: int) -> str:
    """Return the canonical ``YYYYMMDD`` day identifier."""
    return f"{year:04d}{month:02d}{day:02d}"


def format_time_code(time_code: int) -> str:
    """Zero-pad an ``HHMMSS`` time code to six digits."""
    return f"{time_code:06d}"


def archive_timestamp(identifier: str, time_code: int) -> str:
    """Return the 14-digit archive timestamp (``YYYYMMDDHHMMSS``)."""
    return f"{identifier}{format_time_code(time_code)}"


def create_timestamp(identifier: str, time_code: int) -> datetime:
    """Compose a day identifier and a time code into a UTC datetime.

    Raises ``ValueError`` if the identifier is not eight digits or the
    components do not form a valid calendar instant.
    """
    if len(identifier) != 8 or not identifier.isdigit():
        raise ValueError(f"Invalid day identifier: {identifier!r}")
    clock = format_time_code(time_code)
    return datetime(
        int(identifier[:4]),
        int(identifier[4:6]),
        int(identifier[6:]),
        int(clock[:2]),
        int(clock[2:4]),
        int(clock[4:]),
        tzinfo=timezone.utc,
    )


def years_before(moment: datetime, years: int) -> datetime:
    """Shift *moment* back by whole calendar years (Feb 29 maps to Feb 28)."""
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        return moment.replace(year=moment.year - years, day=28)
