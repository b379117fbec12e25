"""Query normalization shared by the HTTP transport, CLI and execution service.

Raw query documents come in several historical shapes (legacy scalar
dimensions, a plural ``statistics`` list, string periods including
``"auto"``, PascalCase keys). This module centralizes the rules that turn one
of them into a canonical ``ResolvedQuery`` or ``AnnotationQuery`` so every
entry point applies identical semantics:

- Dimensions: scalar values wrapped into one-element lists, keys sorted
- Statistic: legacy ``statistics`` collapses to its first element
- Period: ``"auto"``/unset resolved from the time range, explicit kept
- Identifier: explicit id kept, else ``"query" + refId`` or a random id
- Modes: editor and API mode derived from the expression fields
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from ..domain.errors import ErrorCode, ParseError, QueryError, ValidationError
from ..domain.models import (
    AnnotationQuery,
    MetricEditorMode,
    MetricQueryType,
    RawQueryDocument,
    ResolvedQuery,
)
from ..domain.utils.identifiers import (
    METRIC_DATA_ID_MAX_LENGTH,
    derive_query_id,
    is_valid_metric_data_id,
)
from ..domain.utils.labels import migrate_legacy_query
from ..domain.utils.period import PeriodKind, PeriodRequest, resolve_period
from ..domain.utils.timestamps import ensure_utc, utc_now
from ..utils.partial_results import PartialResult

logger = logging.getLogger(__name__)

RawQuery = Union[Mapping[str, Any], RawQueryDocument]

_REF_ID_KEYS = ("refId", "RefId", "ref_id")


def parse_raw_query(raw: RawQuery) -> RawQueryDocument:
    """Validate the loose shape of a raw query document.

    Raises
    ------
    ParseError
        With code ``malformed_query`` naming the first offending field.
    """
    if isinstance(raw, RawQueryDocument):
        return raw
    if not isinstance(raw, Mapping):
        raise ParseError(
            ErrorCode.MALFORMED_QUERY,
            f"query must be a JSON object, got {type(raw).__name__}",
        )
    try:
        return RawQueryDocument.model_validate(dict(raw))
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ParseError(
            ErrorCode.MALFORMED_QUERY,
            f"{field or 'query'}: {first.get('msg', 'invalid value')}",
            field=field,
        ) from exc


def normalize_dimensions(
    dimensions: Optional[Mapping[str, Any]],
) -> Dict[str, List[str]]:
    """Normalize dimension values to lists of strings with sorted keys.

    Legacy documents store a single string per dimension; current documents
    store a list. Any other value is rejected. Idempotent on already
    normalized input.
    """
    normalized: Dict[str, List[str]] = {}
    for key in sorted(dimensions or {}):
        value = dimensions[key]  # type: ignore[index]
        if isinstance(value, str):
            normalized[key] = [value]
        elif isinstance(value, (list, tuple)) and all(
            isinstance(item, str) for item in value
        ):
            normalized[key] = list(value)
        else:
            raise ParseError(
                ErrorCode.INVALID_DIMENSION_VALUE,
                f"dimension {key!r} must be a string or a list of strings, "
                f"got {type(value).__name__}",
                field=f"dimensions.{key}",
            )
    return normalized


def normalize_statistic(doc: RawQueryDocument) -> str:
    """Return the single statistic of a query.

    The current ``statistic`` field wins; otherwise the first entry of the
    legacy ``statistics`` list is used and the rest are dropped.
    """
    if doc.statistic:
        return doc.statistic
    if doc.statistics is None:
        return doc.statistic or ""
    if not doc.statistics:
        raise ParseError(
            ErrorCode.INVALID_STATISTIC,
            "legacy statistics list is empty",
            field="statistics",
        )
    if len(doc.statistics) > 1:
        logger.info(
            "normalize.statistics_collapsed",
            extra={"kept": doc.statistics[0], "dropped": doc.statistics[1:]},
        )
    return doc.statistics[0]


def resolve_modes(doc: RawQueryDocument) -> Tuple[MetricQueryType, MetricEditorMode]:
    """Derive query type and editor mode from the expression fields."""
    if doc.sql_expression:
        return MetricQueryType.QUERY, MetricEditorMode.RAW
    query_type = doc.metric_query_type or MetricQueryType.SEARCH
    if doc.expression:
        return query_type, MetricEditorMode.RAW
    return query_type, MetricEditorMode.BUILDER


def resolve_query_id(
    explicit_id: Optional[str],
    ref_id: Optional[str],
    max_length: int = METRIC_DATA_ID_MAX_LENGTH,
) -> str:
    """Keep a valid explicit id; otherwise derive one from ``ref_id``."""
    if explicit_id:
        if not is_valid_metric_data_id(explicit_id, max_length):
            raise ParseError(
                ErrorCode.INVALID_ID,
                f"id {explicit_id!r} must start with a letter, contain only "
                f"letters, digits or underscores and be at most {max_length} "
                "characters",
                field="id",
            )
        return explicit_id
    return derive_query_id(ref_id, max_length)


def normalize_query(
    raw: RawQuery,
    ref_id: Optional[str],
    start: datetime,
    end: datetime,
    *,
    now: Optional[datetime] = None,
    max_id_length: int = METRIC_DATA_ID_MAX_LENGTH,
) -> ResolvedQuery:
    """Normalize one raw metric query document into a ``ResolvedQuery``.

    Parameters
    ----------
    raw: Mapping | RawQueryDocument
        Raw query document in any supported shape.
    ref_id: str | None
        Correlation key; falls back to the document's own ``refId``.
    start, end: datetime
        Query time range, used to resolve ``"auto"`` periods.
    now: datetime | None
        Reference instant for the age of the time range. Defaults to the
        current UTC time.
    max_id_length: int
        Maximum identifier length accepted by the remote API.

    Raises
    ------
    ParseError
        On the first malformed field; no partial result is returned.
    """
    doc = parse_raw_query(raw)
    ref_id = ref_id if ref_id is not None else (doc.ref_id or "")

    dimensions = normalize_dimensions(doc.dimensions)
    statistic = normalize_statistic(doc)

    requested = PeriodRequest.parse(doc.period)
    if requested.kind is PeriodKind.UNSET:
        requested = PeriodRequest.auto()
    period = resolve_period(
        requested,
        ensure_utc(start),
        ensure_utc(end),
        ensure_utc(now) if now else utc_now(),
    )

    query_id = resolve_query_id(doc.id, ref_id, max_id_length)
    query_type, editor_mode = resolve_modes(doc)

    resolved = ResolvedQuery(
        ref_id=ref_id,
        id=query_id,
        region=doc.region or "",
        namespace=doc.namespace or "",
        metric_name=doc.metric_name or "",
        dimensions=dimensions,
        statistic=statistic,
        period=period,
        expression=doc.expression or "",
        sql_expression=doc.sql_expression or "",
        metric_query_type=query_type,
        metric_editor_mode=editor_mode,
        alias=doc.alias or "",
        label=doc.label or "",
        return_data=not doc.hide,
    )
    logger.debug(
        "normalize.query",
        extra={
            "ref_id": resolved.ref_id,
            "id": resolved.id,
            "period": resolved.period,
            "api_mode": resolved.api_mode.value,
        },
    )
    return resolved


def _ref_id_of(raw: Any) -> str:
    if isinstance(raw, RawQueryDocument):
        return raw.ref_id or ""
    if isinstance(raw, Mapping):
        for key in _REF_ID_KEYS:
            value = raw.get(key)
            if isinstance(value, str) and value:
                return value
    return ""


def normalize_batch(
    queries: Iterable[RawQuery],
    start: datetime,
    end: datetime,
    *,
    now: Optional[datetime] = None,
    dynamic_labels_enabled: bool = False,
    max_id_length: int = METRIC_DATA_ID_MAX_LENGTH,
) -> PartialResult:
    """Normalize a batch of raw queries independently.

    Each document is optionally passed through the alias to label migration
    and then normalized. A failing document is recorded as a failure keyed by
    its refId (or its position when it has none) and does not affect its
    siblings.

    Returns
    -------
    PartialResult
        ``successes`` maps refId to ``ResolvedQuery`` in input order.
    """
    start, end = ensure_utc(start), ensure_utc(end)
    now = ensure_utc(now) if now else utc_now()
    result = PartialResult()
    seen: Set[str] = set()

    for index, raw in enumerate(queries):
        ref_id = _ref_id_of(raw)
        identifier = ref_id or f"#{index}"
        try:
            if identifier in seen:
                raise ParseError(
                    ErrorCode.MALFORMED_QUERY,
                    f"duplicate refId {ref_id!r}",
                    field="refId",
                )
            seen.add(identifier)
            doc: RawQuery = raw
            if isinstance(raw, Mapping):
                doc = dict(raw)
                migrate_legacy_query(doc, dynamic_labels_enabled)
            result.successes[identifier] = normalize_query(
                doc,
                ref_id,
                start,
                end,
                now=now,
                max_id_length=max_id_length,
            )
        except QueryError as exc:
            failure = result.record_failure(identifier, exc)
            logger.warning(
                "normalize.query_failed",
                extra={
                    "ref_id": identifier,
                    "error_type": failure.error_type,
                    "field": failure.field,
                    "error": failure.error,
                },
            )

    logger.info(
        "normalize.batch_complete",
        extra={
            "successes": len(result.successes),
            "failures": len(result.failures),
        },
    )
    return result


def normalize_annotation_query(
    raw: RawQuery,
    ref_id: Optional[str],
    start: datetime,
    end: datetime,
    *,
    now: Optional[datetime] = None,
) -> AnnotationQuery:
    """Normalize an alarm annotation query.

    An unset period means "any period" (0) in prefix-matching mode and the
    default period otherwise; ``"auto"`` is treated as unset because alarms
    are matched on their configured period.

    Raises
    ------
    ParseError
        On malformed fields.
    ValidationError
        When a query not in prefix-matching mode lacks region, namespace,
        metric name or statistic.
    """
    doc = parse_raw_query(raw)
    ref_id = ref_id if ref_id is not None else (doc.ref_id or "")
    dimensions = normalize_dimensions(doc.dimensions)
    statistic = normalize_statistic(doc)

    requested = PeriodRequest.parse(doc.period)
    if requested.kind is PeriodKind.AUTO:
        requested = PeriodRequest.unset()
    period = resolve_period(
        requested,
        ensure_utc(start),
        ensure_utc(end),
        ensure_utc(now) if now else utc_now(),
        prefix_matching=doc.prefix_matching,
    )

    query = AnnotationQuery(
        ref_id=ref_id,
        region=doc.region or "",
        namespace=doc.namespace or "",
        metric_name=doc.metric_name or "",
        dimensions=dimensions,
        statistic=statistic,
        period=period,
        prefix_matching=doc.prefix_matching,
        action_prefix=doc.action_prefix or "",
        alarm_name_prefix=doc.alarm_name_prefix or "",
    )

    if not query.prefix_matching:
        required = (
            ("region", query.region),
            ("namespace", query.namespace),
            ("metricName", query.metric_name),
            ("statistic", query.statistic),
        )
        missing = [name for name, value in required if not value]
        if missing:
            raise ValidationError(missing)
    return query
