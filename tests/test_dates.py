"""
Tests for calendar helpers (parsing, week of month, job plan week, horizons)
"""

import sys
from datetime import date, datetime
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rota_engine.dates import (
    add_days,
    date_range,
    dates_between,
    day_of_week,
    format_date,
    is_weekday,
    job_plan_week,
    month_horizon,
    parse_date,
    validate_range,
    week_of_month,
)
from rota_engine.errors import ValidationError


class TestParsing:

    def test_parse_iso_string(self):
        assert parse_date("2024-03-01") == date(2024, 3, 1)

    def test_parse_datetime_and_date(self):
        assert parse_date(datetime(2024, 3, 1, 14, 30)) == date(2024, 3, 1)
        assert parse_date(date(2024, 3, 1)) == date(2024, 3, 1)

    def test_parse_timestamp_string_uses_date_part(self):
        assert parse_date("2024-03-01T09:00:00Z") == date(2024, 3, 1)

    @pytest.mark.parametrize("value", ["2024-13-01", "01/03/2024", "", None, 20240301])
    def test_parse_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_date(value)

    def test_format_date(self):
        assert format_date(date(2024, 3, 1)) == "2024-03-01"

    def test_validate_range_rejects_inverted(self):
        with pytest.raises(ValidationError):
            validate_range("2024-03-10", "2024-03-01")

    def test_validate_range_single_day(self):
        assert validate_range("2024-03-01", date(2024, 3, 1)) == (date(2024, 3, 1), date(2024, 3, 1))


class TestWeekdays:

    def test_day_of_week_monday_is_one(self):
        assert day_of_week(date(2024, 3, 4)) == 1
        assert day_of_week(date(2024, 3, 3)) == 7

    def test_is_weekday(self):
        assert is_weekday(date(2024, 3, 8))          # Friday
        assert not is_weekday(date(2024, 3, 9))      # Saturday
        assert not is_weekday(date(2024, 3, 10))     # Sunday

    def test_add_days_crosses_month(self):
        assert add_days(date(2024, 2, 28), 2) == date(2024, 3, 1)
        assert add_days(date(2024, 3, 1), -1) == date(2024, 2, 29)


class TestWeekOfMonth:
    """Weeks start on Sunday; the 1st is always week 1."""

    def test_month_starting_friday(self):
        # March 2024 starts on a Friday
        assert week_of_month(date(2024, 3, 1)) == 1
        assert week_of_month(date(2024, 3, 2)) == 1
        assert week_of_month(date(2024, 3, 3)) == 2
        assert week_of_month(date(2024, 3, 31)) == 6

    def test_month_starting_sunday(self):
        # September 2024 starts on a Sunday
        assert week_of_month(date(2024, 9, 1)) == 1
        assert week_of_month(date(2024, 9, 7)) == 1
        assert week_of_month(date(2024, 9, 8)) == 2

    def test_job_plan_week_clamped_to_five(self):
        assert job_plan_week(date(2024, 3, 31)) == 5
        assert job_plan_week(date(2024, 6, 30)) == 5
        assert job_plan_week(date(2024, 3, 1)) == 1


class TestRanges:

    def test_date_range_inclusive(self):
        days = dates_between(date(2024, 3, 1), date(2024, 3, 3))
        assert days == [date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)]

    def test_date_range_empty_when_inverted(self):
        assert list(date_range(date(2024, 3, 2), date(2024, 3, 1))) == []

    def test_month_horizon_crosses_year(self):
        assert month_horizon(date(2024, 11, 15), 4) == (date(2024, 11, 1), date(2025, 2, 28))

    def test_month_horizon_single_month(self):
        assert month_horizon(date(2024, 2, 10), 1) == (date(2024, 2, 1), date(2024, 2, 29))
