"""
Tests for timestamp utilities.
"""

from datetime import datetime, timedelta, timezone

import pytest

from querynorm.domain.utils.timestamps import (
    ensure_utc,
    parse_timestamp,
    resolve_time_range,
)

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_parse_timestamp_iso8601_with_z():
    """Test parsing ISO8601 timestamp with Z suffix."""
    result = parse_timestamp("2025-10-15T12:00:00Z")
    assert result == datetime(2025, 10, 15, 12, 0, 0, tzinfo=timezone.utc)


def test_parse_timestamp_iso8601_without_timezone():
    """Test parsing ISO8601 timestamp without timezone (defaults to UTC)."""
    result = parse_timestamp("2025-10-15T12:00:00")
    assert result is not None
    assert result.tzinfo == timezone.utc


def test_parse_timestamp_unix_seconds_and_milliseconds():
    # October 15, 2023 16:00:00 UTC
    expected = datetime(2023, 10, 15, 16, 0, 0, tzinfo=timezone.utc)
    assert parse_timestamp(1697385600) == expected
    assert parse_timestamp(1697385600000) == expected
    assert parse_timestamp("1697385600000") == expected


def test_parse_timestamp_naive_datetime_is_utc():
    result = parse_timestamp(datetime(2025, 1, 1))
    assert result == datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "expr, delta",
    [
        ("now", timedelta(0)),
        ("now-5m", timedelta(minutes=5)),
        ("now-6h", timedelta(hours=6)),
        ("now-2d", timedelta(days=2)),
        ("now-1w", timedelta(weeks=1)),
        ("now-1y", timedelta(days=365)),
        ("NOW - 30s", timedelta(seconds=30)),
    ],
)
def test_parse_relative_expressions(expr, delta):
    assert parse_timestamp(expr, now=NOW) == NOW - delta


def test_parse_timestamp_invalid_values():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("invalid") is None
    assert parse_timestamp("now+1d", now=NOW) is None
    assert parse_timestamp("2025-13-45T99:99:99Z") is None
    assert parse_timestamp(True) is None
    # Very large number that causes OverflowError/ValueError
    assert parse_timestamp(999999999999999) is None


def test_resolve_time_range():
    start, end = resolve_time_range("now-7d", "now", now=NOW)
    assert end - start == timedelta(days=7)
    assert end == NOW


def test_resolve_time_range_rejects_bad_bounds():
    with pytest.raises(ValueError, match="start"):
        resolve_time_range("yesterday", "now", now=NOW)
    with pytest.raises(ValueError, match="end"):
        resolve_time_range("now-1d", None, now=NOW)


def test_ensure_utc():
    naive = datetime(2025, 6, 1, 10, 0, 0)
    assert ensure_utc(naive) == datetime(2025, 6, 1, 10, 0, 0, tzinfo=timezone.utc)
    offset = datetime(2025, 6, 1, 10, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert ensure_utc(offset) is offset


def test_resolve_time_range_with_naive_reference():
    start, end = resolve_time_range("now-1h", "now", now=datetime(2025, 6, 1, 12))
    assert start == NOW - timedelta(hours=1)
    assert end == NOW
    assert start.tzinfo is not None
