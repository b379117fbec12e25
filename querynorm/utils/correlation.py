"""Per-request correlation ids for log records.

The HTTP middleware stores the request's ``x-correlation-id`` (or a fresh
one) in a ContextVar so that normalization and collaborator calls made while
serving the request can tag their log records with the same ``req_id``.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar

CORRELATION_HEADER = "x-correlation-id"

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    """Return a fresh correlation id."""
    return uuid.uuid4().hex


def set_request_id(request_id: str) -> None:
    """Set the current request correlation id."""
    _request_id_var.set(request_id)


def get_request_id() -> str:
    """Return the current request correlation id, or empty string."""
    return _request_id_var.get()
