"""Request/response models for the HTTP transport."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..domain.models import AnnotationFrame, ResolvedQuery, TimeSeriesResult
from ..utils.partial_results import FailureInfo

TimeBound = Union[str, int, float]


class TimeRangeRequest(BaseModel):
    """Common ``from``/``to`` fields.

    Bounds accept ISO8601 strings, Unix seconds or milliseconds, and
    relative expressions such as ``"now-6h"``.
    """

    model_config = ConfigDict(populate_by_name=True)

    start: TimeBound = Field("now-6h", alias="from", description="Range start")
    end: TimeBound = Field("now", alias="to", description="Range end")


class NormalizeRequest(TimeRangeRequest):
    """Batch of raw query documents to normalize."""

    queries: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Raw query documents in any supported shape.",
    )


class QueryFailure(BaseModel):
    """One query that could not be normalized or fetched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ref_id: str
    error: str
    error_type: str
    retryable: bool = False
    field: Optional[str] = None

    @classmethod
    def from_failure(cls, failure: FailureInfo) -> "QueryFailure":
        return cls.model_validate(failure.to_dict())


class NormalizeResponse(BaseModel):
    """Normalized queries in input order plus per-query failures."""

    queries: List[ResolvedQuery] = Field(default_factory=list)
    errors: List[QueryFailure] = Field(default_factory=list)


class MigrateRequest(BaseModel):
    """Batch of raw query documents to pass through label migration."""

    queries: List[Dict[str, Any]] = Field(default_factory=list)


class MigrateResponse(BaseModel):
    queries: List[Dict[str, Any]] = Field(default_factory=list)
    dynamic_labels_enabled: bool = Field(
        False, serialization_alias="dynamicLabelsEnabled"
    )


class QueryRequest(NormalizeRequest):
    """Batch of raw queries to normalize and execute."""

    source_id: Optional[str] = Field(
        None,
        alias="sourceId",
        description="Logical source identifier. Defaults to the configured one.",
    )


class QueryResponse(BaseModel):
    """Per-refId samples plus per-refId failures."""

    results: Dict[str, TimeSeriesResult] = Field(default_factory=dict)
    errors: List[QueryFailure] = Field(default_factory=list)


class AnnotationRequest(TimeRangeRequest):
    """One alarm annotation query."""

    query: Dict[str, Any] = Field(..., description="Raw annotation query")
    ref_id: Optional[str] = Field(None, alias="refId")
    source_id: Optional[str] = Field(None, alias="sourceId")


class AnnotationResponse(BaseModel):
    frame: AnnotationFrame
