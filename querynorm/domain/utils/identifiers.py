"""
Query identifier rules.

The remote metrics API requires every query in a request to carry an
identifier that starts with a letter, continues with letters, digits or
underscores, and fits within a maximum length.
"""

import re
import uuid
from typing import Optional

METRIC_DATA_ID_MAX_LENGTH = 255
QUERY_ID_PREFIX = "query"

_METRIC_DATA_ID_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def is_valid_metric_data_id(
    value: Optional[str], max_length: int = METRIC_DATA_ID_MAX_LENGTH
) -> bool:
    """
    Check whether ``value`` satisfies the identifier-safety pattern.

    Examples
    --------
    >>> is_valid_metric_data_id("queryA")
    True
    >>> is_valid_metric_data_id("$$")
    False
    >>> is_valid_metric_data_id("1abc")
    False
    """
    if not value or len(value) > max_length:
        return False
    return _METRIC_DATA_ID_RE.match(value) is not None


def generate_metric_data_id() -> str:
    """Return a fresh random identifier (128 random bits, 37 characters)."""
    return QUERY_ID_PREFIX + uuid.uuid4().hex


def derive_query_id(
    ref_id: Optional[str], max_length: int = METRIC_DATA_ID_MAX_LENGTH
) -> str:
    """
    Derive an identifier for a query that has no explicit id.

    ``"query" + ref_id`` when ``ref_id`` itself is a valid identifier and the
    prefixed form still fits ``max_length``; a generated one otherwise.

    Examples
    --------
    >>> derive_query_id("ref1")
    'queryref1'
    """
    if is_valid_metric_data_id(ref_id, max_length - len(QUERY_ID_PREFIX)):
        return QUERY_ID_PREFIX + str(ref_id)
    return generate_metric_data_id()
