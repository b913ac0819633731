from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stalecheck.core.dates import (
    archive_timestamp,
    create_timestamp,
    encode_calendar_date,
    format_identifier,
    parse_calendar_date,
    years_before,
)


class TestCalendarCodes:
    @pytest.mark.parametrize(
        "code, expected",
        [(101, (1, 1)), (704, (7, 4)), (1231, (12, 31)), (229, (2, 29))],
    )
    def test_parse_pads_missing_leading_zero(self, code, expected):
        assert parse_calendar_date(code) == expected

    @pytest.mark.parametrize("month, day", [(1, 1), (2, 28), (9, 30), (12, 31)])
    def test_encode_then_parse_recovers_month_and_day(self, month, day):
        assert parse_calendar_date(encode_calendar_date(month, day)) == (month, day)

    def test_format_identifier_zero_pads(self):
        assert format_identifier(2021, 3, 7) == "20210307"


class TestTimestamps:
    def test_create_timestamp_recovers_components(self):
        identifier = format_identifier(2019, 11, 5)
        ts = create_timestamp(identifier, 93007)
        assert ts == datetime(2019, 11, 5, 9, 30, 7, tzinfo=timezone.utc)

    def test_midnight_time_code(self):
        ts = create_timestamp("20200101", 0)
        assert (ts.hour, ts.minute, ts.second) == (0, 0, 0)

    def test_archive_timestamp_pads_time(self):
        assert archive_timestamp("20200101", 5) == "20200101000005"

    @pytest.mark.parametrize("identifier", ["2020011", "2020-1-1", "20201340"])
    def test_invalid_identifier_raises(self, identifier):
        with pytest.raises(ValueError):
            create_timestamp(identifier, 0)

    def test_years_before_handles_leap_day(self):
        leap = datetime(2028, 2, 29, tzinfo=timezone.utc)
        assert years_before(leap, 2) == datetime(2026, 2, 28, tzinfo=timezone.utc)
