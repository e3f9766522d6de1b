from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.errors import ValidationError  # noqa: E402
from utils.date_utils import (  # noqa: E402
    days_in_month,
    format_date,
    format_month_label,
    is_valid_date_string,
    month_key,
    month_start_offset,
    parse_date_string,
    parse_month_key,
    shift_month,
    today_for_tz,
    weekday_labels,
)


def test_format_date_zero_pads_fields():
    assert format_date(date(2025, 3, 7)) == "2025-03-07"
    assert format_date(date(999, 1, 1)) == "0999-01-01"


def test_formatted_dates_are_always_valid_keys():
    current = date(2023, 12, 25)
    for _ in range(500):
        assert is_valid_date_string(format_date(current))
        current += timedelta(days=1)


@pytest.mark.parametrize(
    "value",
    ["2025-02-30", "2025-13-01", "2025-00-10", "2023-02-29", "2025-1-01", " 2025-01-01", "2025/01/01", "bad-date", "", None, 20250101],
)
def test_is_valid_date_string_rejects_malformed_and_impossible_dates(value):
    assert is_valid_date_string(value) is False


def test_is_valid_date_string_accepts_leap_day():
    assert is_valid_date_string("2024-02-29") is True


def test_parse_date_string_raises_validation_error():
    assert parse_date_string("2025-10-06") == date(2025, 10, 6)
    with pytest.raises(ValidationError):
        parse_date_string("2025-02-30")


@pytest.mark.parametrize("value", ["٢٠٢٥-١٠-٠٩", "２０２５-１０-０９"])
def test_non_ascii_digits_are_not_date_keys(value):
    assert is_valid_date_string(value) is False
    with pytest.raises(ValidationError):
        parse_date_string(value)


def test_trailing_newline_is_not_a_date_key():
    assert is_valid_date_string("2025-10-09\n") is False
    # user input is trimmed before validation
    assert parse_date_string(" 2025-10-09\n") == date(2025, 10, 9)


def test_parse_month_key_rejects_non_ascii_digits():
    with pytest.raises(ValidationError):
        parse_month_key("２０２５-１０")


def test_days_in_month_covers_whole_month_in_order():
    days = days_in_month(date(2024, 2, 17))
    assert len(days) == 29
    assert days[0] == date(2024, 2, 1)
    assert days[-1] == date(2024, 2, 29)
    assert days == sorted(days)
    assert days_in_month(date(2025, 10, 31)) == days_in_month(date(2025, 10, 1))


def test_month_start_offset_is_monday_first():
    assert month_start_offset(date(2025, 9, 15)) == 0  # 2025-09-01 is a Monday
    assert month_start_offset(date(2025, 6, 3)) == 6  # 2025-06-01 is a Sunday


def test_shift_month_crosses_year_boundaries():
    assert shift_month(date(2025, 1, 31), -1) == date(2024, 12, 1)
    assert shift_month(date(2025, 12, 5), 1) == date(2026, 1, 1)
    assert shift_month(date(2025, 3, 1), 0) == date(2025, 3, 1)


def test_month_key_round_trip_and_validation():
    assert month_key(date(2025, 10, 6)) == "2025-10"
    assert parse_month_key("2025-10") == date(2025, 10, 1)
    with pytest.raises(ValidationError):
        parse_month_key("2025-13")
    with pytest.raises(ValidationError):
        parse_month_key("October")


def test_weekday_labels_start_on_monday():
    labels = weekday_labels()
    assert labels == ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def test_weekday_labels_rejects_unknown_locale():
    with pytest.raises(ValidationError):
        weekday_labels("xx_NOT_A_LOCALE")


def test_format_month_label_defaults_to_system_locale():
    assert format_month_label(date(2025, 10, 6)) == "October 2025"


def test_today_for_tz_falls_back_for_unknown_zone():
    assert isinstance(today_for_tz("Not/AZone"), date)
    assert isinstance(today_for_tz(None), date)
