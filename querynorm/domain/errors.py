"""Error taxonomy for query normalization.

Every error raised here is a deterministic function of its input: nothing in
the normalization core performs I/O, so callers surface these errors to the
user immediately instead of retrying.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence


class ErrorCode(str, Enum):
    """Machine-readable classification of query errors."""

    MALFORMED_QUERY = "malformed_query"
    INVALID_DIMENSION_VALUE = "invalid_dimension_value"
    INVALID_PERIOD = "invalid_period"
    INVALID_STATISTIC = "invalid_statistic"
    INVALID_ID = "invalid_id"
    MISSING_FIELDS = "missing_fields"


class QueryError(ValueError):
    """Base class for query normalization errors."""

    code: ErrorCode = ErrorCode.MALFORMED_QUERY

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class ParseError(QueryError):
    """Raised when a raw query document has a malformed shape.

    Attributes
    ----------
    code: ErrorCode
        Which parse rule was violated (e.g. ``invalid_period``).
    field: str | None
        Name of the offending input field (``period``, ``dimensions.Host``).
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message, field=field)
        self.code = code


class ValidationError(QueryError):
    """Raised when a query is well-formed but lacks a required combination.

    Used by annotation queries that are not in prefix-matching mode, which
    need region, namespace, metric name and statistic to address an alarm.
    """

    code = ErrorCode.MISSING_FIELDS

    def __init__(self, missing_fields: Sequence[str]) -> None:
        self.missing_fields: List[str] = list(missing_fields)
        super().__init__(
            "invalid annotations query: missing " + ", ".join(self.missing_fields),
            field=self.missing_fields[0] if self.missing_fields else None,
        )
