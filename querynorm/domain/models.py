"""Canonical query model used by the normalizer and its collaborators.

Raw query documents arrive in several historical shapes. ``RawQueryDocument``
accepts all of them at the parse boundary; everything downstream works with
the canonical ``ResolvedQuery`` and ``AnnotationQuery`` models only. Alarm and
annotation models mirror the records returned by the remote alarm service.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel, to_pascal

from .utils.timestamps import ensure_utc

# Timestamps without a zone are taken as UTC.
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class MetricQueryType(str, Enum):
    """How the query addresses metrics (builder search or SQL query)."""

    SEARCH = "search"
    QUERY = "query"


class MetricEditorMode(str, Enum):
    """Which editor produced the query."""

    BUILDER = "builder"
    RAW = "raw"


class ApiMode(str, Enum):
    """Remote API mode derived from the expression fields of a query."""

    METRIC_STAT = "MetricStat"
    MATH_EXPRESSION = "MathExpression"
    SQL_EXPRESSION = "SqlExpression"


_LEGACY_QUERY_TYPES = {0: MetricQueryType.SEARCH, 1: MetricQueryType.QUERY}
_LEGACY_EDITOR_MODES = {0: MetricEditorMode.BUILDER, 1: MetricEditorMode.RAW}


def _accepts(name: str, default: Any = None) -> Any:
    """Field accepting the camelCase, legacy PascalCase and snake_case keys."""
    names = dict.fromkeys((to_camel(name), to_pascal(name), name))
    return Field(default, validation_alias=AliasChoices(*names))


class RawQueryDocument(BaseModel):
    """Loosely typed query document as sent by clients.

    Field names are accepted in their current camelCase form, the legacy
    PascalCase form stored by old dashboards, and snake_case. ``dimensions``
    and ``period`` are kept untyped here; the normalizer decodes them into
    their canonical shapes and reports precise errors.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    ref_id: Optional[str] = _accepts("ref_id")
    region: Optional[str] = _accepts("region")
    namespace: Optional[str] = _accepts("namespace")
    metric_name: Optional[str] = _accepts("metric_name")
    id: Optional[str] = _accepts("id")
    expression: Optional[str] = _accepts("expression")
    sql_expression: Optional[str] = _accepts("sql_expression")
    dimensions: Optional[Dict[str, Any]] = _accepts("dimensions")
    statistic: Optional[str] = _accepts("statistic")
    statistics: Optional[List[str]] = _accepts("statistics")  # legacy
    period: Any = _accepts("period")
    hide: Optional[bool] = _accepts("hide")
    alias: Optional[str] = _accepts("alias")
    label: Optional[str] = _accepts("label")
    metric_query_type: Optional[MetricQueryType] = _accepts("metric_query_type")
    metric_editor_mode: Optional[MetricEditorMode] = _accepts("metric_editor_mode")

    # Annotation queries
    prefix_matching: bool = _accepts("prefix_matching", False)
    action_prefix: Optional[str] = _accepts("action_prefix")
    alarm_name_prefix: Optional[str] = _accepts("alarm_name_prefix")

    @field_validator("metric_query_type", mode="before")
    @classmethod
    def _coerce_query_type(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            if value not in _LEGACY_QUERY_TYPES:
                raise ValueError(f"unknown metric query type {value}")
            return _LEGACY_QUERY_TYPES[value]
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("metric_editor_mode", mode="before")
    @classmethod
    def _coerce_editor_mode(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            if value not in _LEGACY_EDITOR_MODES:
                raise ValueError(f"unknown metric editor mode {value}")
            return _LEGACY_EDITOR_MODES[value]
        if isinstance(value, str):
            return value.strip().lower() or None
        return value


class ResolvedQuery(BaseModel):
    """Canonical, execution-ready representation of one metric query.

    Attributes
    ----------
    ref_id: str
        Caller-supplied correlation key.
    id: str
        Execution-scope identifier satisfying the identifier-safety pattern.
    dimensions: Dict[str, List[str]]
        Dimension filters; values are always lists, keys sorted.
    period: int
        Concrete sampling period in seconds (never ``"auto"``).
    alias: str
        Legacy alias template, preserved verbatim.
    label: str
        Dynamic label template (caller-supplied or migrated from alias).
    return_data: bool
        Whether the series appears in final output or is only an operand of
        another expression.
    """

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    ref_id: str
    id: str
    region: str = ""
    namespace: str = ""
    metric_name: str = ""
    dimensions: Dict[str, List[str]] = Field(default_factory=dict)
    statistic: str = ""
    period: int = Field(..., gt=0)
    expression: str = ""
    sql_expression: str = ""
    metric_query_type: MetricQueryType = MetricQueryType.SEARCH
    metric_editor_mode: MetricEditorMode = MetricEditorMode.BUILDER
    alias: str = ""
    label: str = ""
    return_data: bool = True

    @computed_field(alias="apiMode")  # type: ignore[prop-decorator]
    @property
    def api_mode(self) -> ApiMode:
        """Remote API mode; a pure function of the expression fields."""
        if self.sql_expression:
            return ApiMode.SQL_EXPRESSION
        if self.expression:
            return ApiMode.MATH_EXPRESSION
        return ApiMode.METRIC_STAT


class AnnotationQuery(BaseModel):
    """Normalized alarm annotation query."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    ref_id: str = ""
    region: str = ""
    namespace: str = ""
    metric_name: str = ""
    dimensions: Dict[str, List[str]] = Field(default_factory=dict)
    statistic: str = ""
    period: int = Field(0, ge=0)
    prefix_matching: bool = False
    action_prefix: str = ""
    alarm_name_prefix: str = ""


class AlarmRecord(BaseModel):
    """Alarm metadata as returned by the alarm service. Never mutated."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    alarm_name: str
    namespace: str = ""
    metric_name: str = ""
    dimensions: Dict[str, str] = Field(default_factory=dict)
    statistic: str = ""
    period: int = 0
    alarm_actions: List[str] = Field(default_factory=list)


class AlarmFilter(BaseModel):
    """Criteria passed to ``AlarmLister.list_alarms``.

    Prefix criteria (``action_prefix``/``alarm_name_prefix``) are used when
    ``prefix_matching`` is set; metric criteria otherwise.
    """

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    prefix_matching: bool = False
    action_prefix: str = ""
    alarm_name_prefix: str = ""
    namespace: str = ""
    metric_name: str = ""
    dimensions: Dict[str, List[str]] = Field(default_factory=dict)
    statistic: str = ""
    period: int = 0
    max_records: int = Field(100, ge=1)


class AlarmHistoryItem(BaseModel):
    """One state-change entry from an alarm's history."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    timestamp: UtcDatetime
    alarm_name: str
    history_type: str = ""
    summary: str = ""


class AnnotationEvent(BaseModel):
    """Annotation derived from a single alarm history item."""

    model_config = ConfigDict(frozen=True)

    title: str
    time: datetime
    tags: str = ""
    text: str = ""


class AnnotationFrame(BaseModel):
    """Minimal column-oriented table of annotation events."""

    name: str
    columns: Dict[str, List[Any]] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)


class MetricSample(BaseModel):
    """Single timestamped value returned by a time-series fetcher."""

    model_config = ConfigDict(frozen=True)

    timestamp: UtcDatetime
    value: float


class TimeSeriesResult(BaseModel):
    """Samples fetched for one normalized query."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: ResolvedQuery
    samples: List[MetricSample] = Field(default_factory=list)
