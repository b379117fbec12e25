"""
Sampling period resolution.

Turns the period requested by a query (an explicit number of seconds, the
symbolic ``"auto"``, or nothing at all) into a concrete period in seconds.

``"auto"`` combines two lookups:

- a range tier that keeps the number of datapoints per series under
  ``MAX_DATAPOINTS`` for the requested window, and
- an age floor reflecting the remote service's retention policy: fine
  grained samples expire as data ages, so windows that start far in the past
  can only be served at coarser periods.

The result is the larger of the two. Nothing here reads the clock; callers
pass the reference instant explicitly.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple, Union

from ..errors import ErrorCode, ParseError

AUTO_PERIOD = "auto"
DEFAULT_PERIOD_SECONDS = 300
MAX_DATAPOINTS = 2000

# Periods the remote service serves for standard-resolution metrics.
SUPPORTED_PERIODS: Tuple[int, ...] = (60, 300, 900, 3600, 21600, 86400)

# (age of window start, coarsest period still retained) ordered oldest first.
# 1-minute data is kept 15 days, 5-minute data 63 days, 1-hour data 455 days.
RETENTION_FLOORS: Tuple[Tuple[timedelta, int], ...] = (
    (timedelta(days=455), 21600),
    (timedelta(days=63), 3600),
    (timedelta(days=15), 300),
)

_INTEGER_RE = re.compile(r"^[+-]?\d+$")


class PeriodKind(str, Enum):
    """Variants of a requested period."""

    AUTO = "auto"
    EXPLICIT = "explicit"
    UNSET = "unset"


@dataclass(frozen=True)
class PeriodRequest:
    """Requested period decoded once at the parse boundary.

    Attributes
    ----------
    kind : PeriodKind
        ``AUTO``, ``EXPLICIT`` or ``UNSET``.
    seconds : int or None
        The requested period; set only for ``EXPLICIT``.
    """

    kind: PeriodKind
    seconds: Optional[int] = None

    @classmethod
    def auto(cls) -> "PeriodRequest":
        return cls(PeriodKind.AUTO)

    @classmethod
    def unset(cls) -> "PeriodRequest":
        return cls(PeriodKind.UNSET)

    @classmethod
    def explicit(cls, seconds: int) -> "PeriodRequest":
        return cls(PeriodKind.EXPLICIT, seconds)

    @classmethod
    def parse(
        cls, value: Union[str, int, None], field: str = "period"
    ) -> "PeriodRequest":
        """
        Decode a raw period field.

        Parameters
        ----------
        value : str, int, or None
            Raw value: ``None``/``""`` (unset), ``"auto"``, a base-10 integer
            string, or an integer.
        field : str
            Field name reported in errors.

        Returns
        -------
        PeriodRequest

        Raises
        ------
        ParseError
            If the value is neither empty, ``"auto"`` nor a positive integer.

        Examples
        --------
        >>> PeriodRequest.parse("auto").kind
        <PeriodKind.AUTO: 'auto'>
        >>> PeriodRequest.parse("600").seconds
        600
        >>> PeriodRequest.parse("").kind
        <PeriodKind.UNSET: 'unset'>
        """
        if value is None:
            return cls.unset()
        if isinstance(value, bool):
            raise ParseError(
                ErrorCode.INVALID_PERIOD,
                f"period must be a number of seconds or 'auto', got {value!r}",
                field=field,
            )
        if isinstance(value, int):
            seconds = value
        elif isinstance(value, str):
            text = value.strip()
            if not text:
                return cls.unset()
            if text.lower() == AUTO_PERIOD:
                return cls.auto()
            if not _INTEGER_RE.match(text):
                raise ParseError(
                    ErrorCode.INVALID_PERIOD,
                    f"period must be a number of seconds or 'auto', got {value!r}",
                    field=field,
                )
            seconds = int(text, 10)
        else:
            raise ParseError(
                ErrorCode.INVALID_PERIOD,
                f"period must be a string or integer, got {type(value).__name__}",
                field=field,
            )
        if seconds <= 0:
            raise ParseError(
                ErrorCode.INVALID_PERIOD,
                f"period must be positive, got {seconds}",
                field=field,
            )
        return cls.explicit(seconds)


def range_tier(start: datetime, end: datetime) -> int:
    """
    Smallest supported period keeping the window under ``MAX_DATAPOINTS``.

    Non-decreasing in the window length. Empty or inverted windows resolve to
    the finest period.

    Examples
    --------
    >>> from datetime import datetime, timedelta
    >>> t = datetime(2025, 1, 1)
    >>> range_tier(t - timedelta(days=1), t)
    60
    >>> range_tier(t - timedelta(days=7), t)
    900
    """
    span = (end - start).total_seconds()
    datapoints = math.ceil(span / MAX_DATAPOINTS)
    for period in SUPPORTED_PERIODS:
        if datapoints <= period:
            return period
    return SUPPORTED_PERIODS[-1]


def age_floor(start: datetime, now: datetime) -> int:
    """
    Finest period still retained for data starting at ``start``.

    Returns the finest supported period when the window is young enough for
    full-resolution data, so the floor never raises the range tier then.
    """
    age = now - start
    for threshold, floor in RETENTION_FLOORS:
        if age > threshold:
            return floor
    return SUPPORTED_PERIODS[0]


def resolve_period(
    requested: Union[PeriodRequest, str, int, None],
    start: datetime,
    end: datetime,
    now: datetime,
    *,
    prefix_matching: bool = False,
) -> int:
    """
    Resolve a requested period into seconds.

    Parameters
    ----------
    requested : PeriodRequest, str, int, or None
        Requested period; raw values are decoded with ``PeriodRequest.parse``.
    start, end : datetime
        Query time range.
    now : datetime
        Reference instant used to compute the age of the window.
    prefix_matching : bool
        Annotation prefix-matching mode, where an unset period means "any
        period" (0) instead of the default.

    Returns
    -------
    int
        Explicit periods unchanged; ``DEFAULT_PERIOD_SECONDS`` (or 0 in
        prefix-matching mode) when unset; otherwise
        ``max(range_tier, age_floor)``.

    Examples
    --------
    >>> from datetime import datetime, timedelta
    >>> now = datetime(2025, 1, 1)
    >>> resolve_period("auto", now - timedelta(days=2), now, now)
    300
    >>> resolve_period("900", now - timedelta(days=700), now, now)
    900
    """
    if not isinstance(requested, PeriodRequest):
        requested = PeriodRequest.parse(requested)

    if requested.kind is PeriodKind.EXPLICIT:
        return int(requested.seconds or 0)
    if requested.kind is PeriodKind.UNSET:
        return 0 if prefix_matching else DEFAULT_PERIOD_SECONDS

    return max(range_tier(start, end), age_floor(start, now))
