"""
Tests for partial results handling utilities.
"""

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from querynorm.domain.errors import ErrorCode, ParseError
from querynorm.utils.partial_results import (
    FailureInfo,
    PartialResult,
    failure_from_exception,
    format_failure_summary,
    gather_partial,
)


@pytest.mark.asyncio
async def test_gather_partial_all_succeed():
    """Test gathering when all operations succeed."""

    async def success_op(value):
        await asyncio.sleep(0.01)
        return value

    operations = {
        "A": success_op("result1"),
        "B": success_op("result2"),
        "C": success_op("result3"),
    }

    result = await gather_partial(operations, "fetch")

    assert not result.has_failures
    assert result.success_rate == 1.0
    assert result.successes == {"A": "result1", "B": "result2", "C": "result3"}


@pytest.mark.asyncio
async def test_gather_partial_some_fail():
    """Test gathering when some operations fail."""

    async def success_op(value):
        return value

    async def fail_op(msg):
        raise ValueError(msg)

    operations = {
        "A": success_op("result1"),
        "B": fail_op("error in B"),
        "C": success_op("result3"),
        "D": fail_op("error in D"),
    }

    result = await gather_partial(operations, "fetch")

    assert result.has_failures
    assert result.success_rate == 0.5
    assert list(result.successes) == ["A", "C"]
    assert {f.identifier for f in result.failures} == {"B", "D"}
    assert all(f.error_type == "parse_error" for f in result.failures)


@pytest.mark.asyncio
async def test_gather_partial_empty_operations():
    result = await gather_partial({}, "fetch")
    assert result.successes == {}
    assert result.failures == []


@pytest.mark.asyncio
async def test_gather_partial_classifies_http_errors():
    """Test that different HTTP errors are classified correctly."""

    async def timeout_error():
        raise httpx.TimeoutException("timeout")

    async def server_error():
        response = MagicMock()
        response.status_code = 503
        raise httpx.HTTPStatusError(
            "server error", request=MagicMock(), response=response
        )

    async def not_found():
        response = MagicMock()
        response.status_code = 404
        raise httpx.HTTPStatusError("not found", request=MagicMock(), response=response)

    async def rate_limit():
        response = MagicMock()
        response.status_code = 429
        raise httpx.HTTPStatusError(
            "rate limit", request=MagicMock(), response=response
        )

    operations = {
        "timeout": timeout_error(),
        "server": server_error(),
        "notfound": not_found(),
        "ratelimit": rate_limit(),
    }

    result = await gather_partial(operations, "fetch")

    assert result.successes == {}
    failures_by_id = {f.identifier: f for f in result.failures}

    assert failures_by_id["timeout"].error_type == "timeout"
    assert failures_by_id["timeout"].retryable is True
    assert failures_by_id["server"].error_type == "server_error"
    assert failures_by_id["server"].retryable is True
    assert failures_by_id["notfound"].error_type == "not_found"
    assert failures_by_id["notfound"].retryable is False
    assert failures_by_id["ratelimit"].error_type == "rate_limit"
    assert failures_by_id["ratelimit"].retryable is True


def test_query_errors_are_never_retryable():
    exc = ParseError(ErrorCode.INVALID_PERIOD, "bad period", field="period")
    failure = failure_from_exception("A", exc)
    assert failure.error_type == "invalid_period"
    assert failure.retryable is False
    assert failure.field == "period"
    assert failure.to_dict() == {
        "refId": "A",
        "error": "bad period",
        "errorType": "invalid_period",
        "retryable": False,
        "field": "period",
    }


def test_format_failure_summary_no_failures():
    result = PartialResult(successes={"A": 1, "B": 2, "C": 3})
    summary = format_failure_summary(result, "query")
    assert "All 3 query(s) succeeded" in summary


def test_format_failure_summary_with_failures():
    """Test formatting summary with failures."""
    result = PartialResult(
        successes={"A": 1, "B": 2},
        failures=[
            FailureInfo("id1", "error1", "timeout", retryable=True),
            FailureInfo("id2", "error2", "timeout", retryable=True),
            FailureInfo("id3", "error3", "invalid_period", retryable=False),
        ],
    )
    summary = format_failure_summary(result, "query")

    assert "2 succeeded, 3 failed" in summary
    assert "40.0% success rate" in summary
    assert "2 timeout (retryable)" in summary
    assert "1 invalid_period (not retryable)" in summary
    assert "id1" in summary


def test_format_failure_summary_many_failures():
    """Test formatting summary with many failures (truncation)."""
    failures = [
        FailureInfo(f"id{i}", f"error{i}", "server_error", retryable=True)
        for i in range(10)
    ]
    summary = format_failure_summary(PartialResult(failures=failures))

    assert "id0" in summary
    assert "id2" in summary
    assert "... and 7 more" in summary


def test_partial_result_properties():
    """Test PartialResult computed properties."""
    empty = PartialResult()
    assert empty.success_rate == 0.0
    assert not empty.has_failures

    mixed = PartialResult(
        successes={"A": 1},
        failures=[FailureInfo("B", "e", "parse_error")],
    )
    assert mixed.success_rate == 0.5
    assert mixed.has_failures
