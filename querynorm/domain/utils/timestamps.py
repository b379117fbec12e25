"""
Time range parsing.

Query time ranges reach the service as ISO8601 strings, Unix timestamps
(seconds or milliseconds) or relative expressions such as ``"now-6h"``.
Relative expressions are evaluated against an explicit reference instant.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Threshold: values at or above this are Unix milliseconds, below are seconds
_UNIX_MS_THRESHOLD = 10_000_000_000

_RELATIVE_RE = re.compile(r"^now(?:\s*-\s*(?P<amount>\d+)\s*(?P<unit>[smhdwy]))?$")
_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
    "y": 365 * 86400,
}

TimestampInput = Union[str, int, float, datetime, None]


def utc_now() -> datetime:
    """Current instant in UTC; the one place the service reads the clock."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware values are returned unchanged."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def parse_timestamp(
    value: TimestampInput, now: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Parse a timestamp from the formats accepted in query time ranges.

    Supports:
    - ``datetime`` instances (naive values are taken as UTC)
    - ISO8601 strings (with or without 'Z' suffix)
    - Unix timestamps in seconds (< 10000000000) or milliseconds
    - ``"now"`` and ``"now-<n><unit>"`` with unit in s, m, h, d, w, y

    Parameters
    ----------
    value : str, int, float, datetime, or None
        The timestamp to parse
    now : datetime, optional
        Reference instant for relative expressions; defaults to ``utc_now()``

    Returns
    -------
    datetime or None
        Timezone-aware datetime, or None if parsing fails

    Examples
    --------
    >>> parse_timestamp("2025-10-15T12:00:00Z")
    datetime.datetime(2025, 10, 15, 12, 0, tzinfo=datetime.timezone.utc)
    >>> parse_timestamp(1697385600000)
    datetime.datetime(2023, 10, 15, 16, 0, tzinfo=datetime.timezone.utc)
    >>> ref = datetime(2025, 1, 2, tzinfo=timezone.utc)
    >>> parse_timestamp("now-1d", now=ref)
    datetime.datetime(2025, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _parse_unix_timestamp(value)
    if isinstance(value, str):
        text = value.strip()
        relative = _RELATIVE_RE.match(text.lower())
        if relative:
            return _parse_relative(relative, ensure_utc(now) if now else utc_now())
        if text.isdigit():
            return _parse_unix_timestamp(int(text))
        return _parse_iso8601(text)
    return None


def _parse_relative(match: "re.Match[str]", now: datetime) -> datetime:
    amount = match.group("amount")
    if amount is None:
        return now
    seconds = int(amount) * _UNIT_SECONDS[match.group("unit")]
    return now - timedelta(seconds=seconds)


def _parse_iso8601(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        logger.warning(
            "timestamps.parse_iso8601_failed",
            extra={"value": value, "error": "invalid format"},
        )
        return None


def _parse_unix_timestamp(value: Union[int, float]) -> Optional[datetime]:
    try:
        if value >= _UNIX_MS_THRESHOLD:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (ValueError, TypeError, OSError, OverflowError):
        logger.warning(
            "timestamps.parse_unix_failed",
            extra={"value": value, "error": "invalid timestamp"},
        )
        return None


def resolve_time_range(
    start: TimestampInput,
    end: TimestampInput,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Parse both ends of a query time range.

    Raises
    ------
    ValueError
        If either bound is missing or cannot be parsed.
    """
    now = ensure_utc(now) if now else utc_now()
    parsed_start = parse_timestamp(start, now=now)
    parsed_end = parse_timestamp(end, now=now)
    if parsed_start is None:
        raise ValueError(f"invalid time range start: {start!r}")
    if parsed_end is None:
        raise ValueError(f"invalid time range end: {end!r}")
    return parsed_start, parsed_end
