"""Tests for day-key helpers."""

from datetime import date, datetime, timezone

import pytest

from coachkit.utils.day_key import (
    MAX_DAY_KEYS,
    add_days_to_day_key,
    day_key_diff,
    day_keys_inclusive,
    format_utc_day_key,
    get_local_day_key,
    get_today_day_key,
    is_day_key,
    parse_day_key,
    parse_day_key_to_utc_date,
    start_of_week_day_key,
    to_athlete_local_day_key,
)


class TestIsDayKey:
    def test_accepts_iso_date(self):
        assert is_day_key("2024-06-10")

    def test_rejects_other_shapes(self):
        assert not is_day_key("2024-6-10")
        assert not is_day_key("2024-06-10T00:00:00Z")
        assert not is_day_key(None)
        assert not is_day_key(20240610)


class TestGetLocalDayKey:
    def test_day_key_passes_through(self):
        assert get_local_day_key("2024-06-10", "America/New_York") == "2024-06-10"

    def test_utc_instant_rolls_forward_in_brisbane(self):
        instant = datetime(2024, 6, 9, 15, 30, tzinfo=timezone.utc)
        assert get_local_day_key(instant, "Australia/Brisbane") == "2024-06-10"

    def test_iso_string_with_z(self):
        assert get_local_day_key("2024-06-10T02:00:00Z", "America/Los_Angeles") == "2024-06-09"

    def test_naive_datetime_is_treated_as_utc(self):
        assert get_local_day_key(datetime(2024, 6, 9, 23, 0), "UTC") == "2024-06-09"

    def test_unparseable_string_falls_back_to_date_part(self):
        assert get_local_day_key("garbageTjunk", "UTC") == "garbage"

    def test_date_object(self):
        assert get_local_day_key(date(2024, 1, 2)) == "2024-01-02"


class TestDayKeyArithmetic:
    def test_add_days_crosses_month(self):
        assert add_days_to_day_key("2024-02-28", 2) == "2024-03-01"

    def test_add_negative_days(self):
        assert add_days_to_day_key("2024-01-01", -1) == "2023-12-31"

    def test_diff(self):
        assert day_key_diff("2024-06-10", "2024-06-12") == 2
        assert day_key_diff("2024-06-12", "2024-06-10") == -2

    def test_start_of_week_is_monday(self):
        assert start_of_week_day_key("2024-06-16") == "2024-06-10"
        assert start_of_week_day_key("2024-06-10") == "2024-06-10"

    def test_parse_rejects_impossible_date(self):
        with pytest.raises(ValueError, match="Invalid day key"):
            parse_day_key("2024-02-30")

    def test_format_utc_day_key(self):
        instant = datetime(2024, 6, 10, 1, 0, tzinfo=timezone.utc)
        assert format_utc_day_key(instant) == "2024-06-10"


class TestDayKeysInclusive:
    def test_inclusive_range(self):
        assert day_keys_inclusive("2024-06-10", "2024-06-12") == ["2024-06-10", "2024-06-11", "2024-06-12"]

    def test_empty_when_reversed(self):
        assert day_keys_inclusive("2024-06-12", "2024-06-10") == []

    def test_capped(self):
        keys = day_keys_inclusive("2020-01-01", "2025-01-01")
        assert len(keys) == MAX_DAY_KEYS


def test_today_day_key_uses_timezone():
    now = datetime(2024, 6, 10, 20, 0, tzinfo=timezone.utc)
    assert get_today_day_key("Australia/Brisbane", now=now) == "2024-06-11"
    assert get_today_day_key("UTC", now=now) == "2024-06-10"


def test_parse_day_key_to_utc_date():
    assert parse_day_key_to_utc_date("2024-06-10") == datetime(2024, 6, 10, tzinfo=timezone.utc)
    with pytest.raises(ValueError, match="Invalid day key"):
        parse_day_key_to_utc_date("10/06/2024")


def test_to_athlete_local_day_key():
    instant = datetime(2024, 6, 10, 15, 30, tzinfo=timezone.utc)
    assert to_athlete_local_day_key(instant, "Australia/Brisbane") == "2024-06-11"
    assert to_athlete_local_day_key(instant, "America/New_York") == "2024-06-10"
