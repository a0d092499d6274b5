"""Tests for upcoming/past classification."""
from datetime import datetime, timezone

import pytest

from medbook.temporal import is_upcoming, parse_instant, parse_time


class TestParseInstant:
    """Combining date and time strings."""

    def test_combines_date_and_time(self):
        assert parse_instant("2025-03-10", "09:00") == datetime(2025, 3, 10, 9, 0)

    def test_accepts_seconds(self):
        assert parse_instant("2025-03-10", "09:00:30") == datetime(2025, 3, 10, 9, 0)

    def test_tolerates_whitespace(self):
        assert parse_instant(" 2025-03-10 ", " 09:00") == datetime(2025, 3, 10, 9, 0)

    @pytest.mark.parametrize("date,time", [
        (None, "09:00"),
        ("2025-03-10", None),
        ("", ""),
        ("10/03/2025", "09:00"),
        ("2025-02-30", "09:00"),
        ("2025-03-10", "25:00"),
        ("2025-03-10", "9am"),
    ])
    def test_missing_or_malformed_returns_none(self, date, time):
        assert parse_instant(date, time) is None

    def test_parse_time_truncates_seconds(self):
        assert parse_time("14:30:59") == "14:30"


class TestIsUpcoming:
    """Classification against an explicit 'now'."""

    def test_future_appointment_is_upcoming(self, make_appointment, now):
        appointment = make_appointment(date="2025-03-10", time="09:00")
        assert is_upcoming(appointment, now) is True

    def test_past_appointment_is_not_upcoming(self, make_appointment, now):
        appointment = make_appointment(date="2025-02-10", time="09:00")
        assert is_upcoming(appointment, now) is False

    def test_exactly_now_counts_as_upcoming(self, make_appointment):
        appointment = make_appointment(date="2025-03-01", time="12:00")
        assert is_upcoming(appointment, datetime(2025, 3, 1, 12, 0)) is True

    def test_one_minute_late_is_past(self, make_appointment):
        appointment = make_appointment(date="2025-03-01", time="12:00")
        assert is_upcoming(appointment, datetime(2025, 3, 1, 12, 1)) is False

    @pytest.mark.parametrize("overrides", [
        {"date": None},
        {"time": None},
        {"date": None, "time": None},
        {"date": "not-a-date"},
        {"time": "noon"},
    ])
    def test_fails_closed_without_valid_instant(self, make_appointment, overrides):
        appointment = make_appointment(**overrides)
        # Far-past "now": a valid instant would certainly be upcoming
        assert is_upcoming(appointment, datetime(1970, 1, 1)) is False

    def test_aware_now_is_compared_as_local_wall_clock(self, make_appointment):
        appointment = make_appointment(date="2999-01-01", time="00:00")
        assert is_upcoming(appointment, datetime.now(timezone.utc)) is True
