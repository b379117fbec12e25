"""
Partial results handling for batches where some queries fail.

A batch of queries is normalized and executed query by query: one malformed
or failing query is recorded as a failure while its siblings still produce
results.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional

import httpx

from ..domain.errors import QueryError

logger = logging.getLogger(__name__)


@dataclass
class FailureInfo:
    """
    Information about a failed operation.

    Attributes
    ----------
    identifier : str
        Identifier of the failed item (the query refId)
    error : str
        Error message
    error_type : str
        Type of error (e.g., "invalid_period", "timeout", "server_error")
    retryable : bool
        Whether the operation might succeed if retried
    field : str or None
        Offending input field for query errors
    """

    identifier: str
    error: str
    error_type: str
    retryable: bool = False
    field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refId": self.identifier,
            "error": self.error,
            "errorType": self.error_type,
            "retryable": self.retryable,
            "field": self.field,
        }


@dataclass
class PartialResult:
    """
    Result container for batches that may partially fail.

    Attributes
    ----------
    successes : Dict[str, Any]
        Successful results keyed by identifier, in submission order
    failures : List[FailureInfo]
        Information about failed items
    """

    successes: Dict[str, Any] = field(default_factory=dict)
    failures: List[FailureInfo] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Calculate success rate (0.0-1.0)."""
        total = len(self.successes) + len(self.failures)
        if total == 0:
            return 0.0
        return len(self.successes) / total

    @property
    def has_failures(self) -> bool:
        """Check if any operations failed."""
        return len(self.failures) > 0

    def record_failure(self, identifier: str, exc: BaseException) -> FailureInfo:
        """Classify ``exc`` and record it as the failure of ``identifier``."""
        failure = failure_from_exception(identifier, exc)
        self.failures.append(failure)
        return failure


def failure_from_exception(identifier: str, exc: BaseException) -> FailureInfo:
    """Build a ``FailureInfo`` from an exception raised for ``identifier``."""
    error_type = _classify_error(exc)
    return FailureInfo(
        identifier=identifier,
        error=str(exc),
        error_type=error_type,
        retryable=_is_retryable(error_type),
        field=exc.field if isinstance(exc, QueryError) else None,
    )


async def gather_partial(
    operations: Dict[str, Awaitable[Any]],
    operation_type: str = "operation",
) -> PartialResult:
    """
    Execute multiple async operations and collect partial results.

    Continues execution even if some operations fail, returning all
    successful results along with failure information.

    Parameters
    ----------
    operations : Dict[str, Awaitable]
        Mapping from identifier (refId) to the async operation
    operation_type : str
        Human-readable type of operation (for logging)

    Returns
    -------
    PartialResult
        Container with successes and failures
    """
    results = PartialResult()
    if not operations:
        return results

    identifiers = list(operations)
    completed = await asyncio.gather(
        *operations.values(), return_exceptions=True
    )

    for identifier, outcome in zip(identifiers, completed):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            failure = results.record_failure(identifier, outcome)
            logger.warning(
                f"partial_results.{operation_type}.failed",
                extra={
                    "identifier": identifier,
                    "error_type": failure.error_type,
                    "retryable": failure.retryable,
                    "error": failure.error,
                },
            )
        else:
            results.successes[identifier] = outcome

    logger.info(
        f"partial_results.{operation_type}.complete",
        extra={
            "total": len(operations),
            "successes": len(results.successes),
            "failures": len(results.failures),
            "success_rate": results.success_rate,
        },
    )

    return results


def _classify_error(exc: BaseException) -> str:
    """Classify exception into error type."""
    if isinstance(exc, QueryError):
        return exc.code.value
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status >= 500:
            return "server_error"
        if status == 429:
            return "rate_limit"
        if status in (401, 403):
            return "auth_error"
        if status == 404:
            return "not_found"
        return "http_error"
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return "timeout"
    if isinstance(exc, httpx.ConnectError):
        return "connection_error"
    if isinstance(exc, ValueError):
        return "parse_error"
    if isinstance(exc, KeyError):
        return "missing_field"
    return "unknown_error"


def _is_retryable(error_type: str) -> bool:
    """Determine if an error type is retryable."""
    retryable_types = {
        "timeout",
        "connection_error",
        "server_error",
        "rate_limit",
    }
    return error_type in retryable_types


def format_failure_summary(
    result: PartialResult, operation_type: str = "query"
) -> str:
    """
    Format a human-readable summary of partial result failures.

    Parameters
    ----------
    result : PartialResult
        The partial result to summarize
    operation_type : str
        Type of operation (for messaging)

    Returns
    -------
    str
        Formatted summary string
    """
    if not result.has_failures:
        return f"All {len(result.successes)} {operation_type}(s) succeeded."

    lines = [
        f"Partial results: {len(result.successes)} succeeded, "
        f"{len(result.failures)} failed ({result.success_rate:.1%} success rate)",
    ]

    failures_by_type: Dict[str, List[FailureInfo]] = {}
    for failure in result.failures:
        failures_by_type.setdefault(failure.error_type, []).append(failure)

    for error_type, failures in failures_by_type.items():
        retry_note = " (retryable)" if failures[0].retryable else " (not retryable)"
        lines.append(f"  - {len(failures)} {error_type}{retry_note}")

        identifiers = [f.identifier for f in failures[:3]]
        if len(failures) > 3:
            identifiers.append(f"... and {len(failures) - 3} more")
        lines.append(f"    Affected: {', '.join(identifiers)}")

    return "\n".join(lines)
