"""Tests for standup date helpers."""

from datetime import date, datetime, timezone

from standup_window import format_date_only, get_previous_standup_date, parse_date_only, parse_timestamp


class TestParseDateOnly:
    def test_iso_string(self):
        assert parse_date_only("2026-02-16") == date(2026, 2, 16)

    def test_timestamp_string(self):
        assert parse_date_only("2026-02-16T23:59:00Z") == date(2026, 2, 16)

    def test_datetime_and_date(self):
        assert parse_date_only(datetime(2026, 2, 16, 8, 30)) == date(2026, 2, 16)
        assert parse_date_only(date(2026, 2, 16)) == date(2026, 2, 16)

    def test_invalid(self):
        assert parse_date_only("not-a-date") is None
        assert parse_date_only("2026-13-01") is None
        assert parse_date_only("") is None
        assert parse_date_only(None) is None

    def test_format(self):
        assert format_date_only(date(2026, 2, 6)) == "2026-02-06"


class TestParseTimestamp:
    def test_offset_converted_to_utc(self):
        parsed = parse_timestamp("2026-02-17T18:00:00+09:00")
        assert parsed == datetime(2026, 2, 17, 9, 0, tzinfo=timezone.utc)
        assert parsed.isoformat() == "2026-02-17T09:00:00+00:00"

    def test_zulu_and_naive_are_utc(self):
        assert parse_timestamp("2026-02-17T09:00:00Z") == datetime(2026, 2, 17, 9, 0, tzinfo=timezone.utc)
        assert parse_timestamp("2026-02-17 09:00:00") == datetime(2026, 2, 17, 9, 0, tzinfo=timezone.utc)

    def test_date_only_is_midnight(self):
        assert parse_timestamp("2026-02-17") == datetime(2026, 2, 17, tzinfo=timezone.utc)
        assert parse_timestamp(date(2026, 2, 17)) == datetime(2026, 2, 17, tzinfo=timezone.utc)

    def test_invalid(self):
        assert parse_timestamp("next week") is None
        assert parse_timestamp("2026-02-30T10:00:00") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None


class TestPreviousStandupDate:
    def test_monday_skips_weekend(self):
        assert get_previous_standup_date(date(2026, 2, 16), skip_weekends=True) == date(2026, 2, 13)

    def test_monday_without_skip(self):
        assert get_previous_standup_date(date(2026, 2, 16), skip_weekends=False) == date(2026, 2, 15)

    def test_midweek(self):
        assert get_previous_standup_date(date(2026, 2, 18), skip_weekends=True) == date(2026, 2, 17)
