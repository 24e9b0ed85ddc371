"""
Tests for datetime utilities.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from shared.utils.datetime_utils import ensure_utc, get_utc_now, parse_datetime, parse_utc


class TestGetUtcNow:
    """Tests for get_utc_now."""

    def test_returns_datetime_with_utc_timezone(self):
        """Test that get_utc_now returns datetime with UTC timezone."""
        now = get_utc_now()
        assert isinstance(now, datetime)
        assert now.tzinfo == UTC

    def test_returns_current_time(self):
        """Test that get_utc_now returns current time."""
        before = datetime.now(UTC)
        now = get_utc_now()
        after = datetime.now(UTC)
        assert before <= now <= after


class TestParseDatetime:
    """Tests for parse_datetime."""

    def test_parse_iso_format(self):
        """Test parsing ISO format."""
        result = parse_datetime("2024-01-15T14:30:45")
        assert result.year == 2024
        assert result.month == 1
        assert result.day == 15
        assert result.hour == 14
        assert result.minute == 30
        assert result.second == 45

    def test_parse_zulu_suffix(self):
        """Test that a trailing Z is read as UTC."""
        result = parse_datetime("2024-01-15T14:30:45Z")
        assert result.utcoffset() == timedelta(0)

    def test_parse_nanosecond_fraction(self):
        """Test that fractions beyond microseconds are truncated."""
        result = parse_datetime("2024-01-15T14:30:45.123456789Z")
        assert result.microsecond == 123456
        assert result.utcoffset() == timedelta(0)

    def test_parse_common_format(self):
        """Test parsing common format."""
        result = parse_datetime("2024/01/15 14:30:45")
        assert result.year == 2024
        assert result.hour == 14

    def test_parse_custom_format(self):
        """Test parsing with custom format."""
        result = parse_datetime("15/01/2024", "%d/%m/%Y")
        assert result.year == 2024
        assert result.month == 1
        assert result.day == 15

    def test_invalid_datetime_raises_error(self):
        """Test that invalid datetime raises ValueError."""
        with pytest.raises(ValueError):
            parse_datetime("invalid")


class TestEnsureUtc:
    """Tests for ensure_utc."""

    def test_naive_datetime_assumes_utc(self):
        """Test that naive datetime is assumed to be UTC."""
        dt = datetime(2024, 1, 15, 14, 30, 45)
        result = ensure_utc(dt)
        assert result.tzinfo == UTC
        assert result.year == 2024

    def test_utc_datetime_unchanged(self):
        """Test that UTC datetime is unchanged."""
        dt = datetime(2024, 1, 15, 14, 30, 45, tzinfo=UTC)
        result = ensure_utc(dt)
        assert result == dt

    def test_non_utc_datetime_converted(self):
        """Test that non-UTC datetime is converted."""
        tz = timezone(timedelta(hours=5))
        dt = datetime(2024, 1, 15, 14, 30, 45, tzinfo=tz)
        result = ensure_utc(dt)
        assert result.tzinfo == UTC
        assert result.hour == 9


class TestParseUtc:
    """Tests for parse_utc."""

    def test_parse_offset_string(self):
        """Test that offsets are normalized to UTC."""
        result = parse_utc("2024-01-15T14:30:45+02:00")
        assert result.tzinfo == UTC
        assert result.hour == 12

    def test_parse_naive_string(self):
        """Test that naive strings are assumed UTC."""
        result = parse_utc("2024-01-15T14:30:45")
        assert result == datetime(2024, 1, 15, 14, 30, 45, tzinfo=UTC)

    def test_accepts_datetime(self):
        """Test that datetimes pass through ensure_utc."""
        dt = datetime(2024, 1, 15, 14, 30, 45)
        assert parse_utc(dt) == datetime(2024, 1, 15, 14, 30, 45, tzinfo=UTC)
