"""Query execution service.

``QueryService`` ties normalization to the registered metrics sources: it
normalizes batches of raw queries, fetches their samples, and turns alarm
history into annotation events. It owns no transport; the HTTP layer and the
CLI both call into it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Sequence,
    Tuple,
)

from ..adapters import MetricsSourceAdapter, get_adapter, get_available_source_ids
from ..config.models import EnvSettings
from ..domain.models import (
    AlarmFilter,
    AnnotationEvent,
    AnnotationFrame,
    AnnotationQuery,
    ResolvedQuery,
    TimeSeriesResult,
)
from ..domain.utils.alarms import match_alarms
from ..domain.utils.labels import migrate_legacy_queries
from ..domain.utils.timestamps import ensure_utc
from ..utils.partial_results import PartialResult, gather_partial
from .normalize import RawQuery, normalize_annotation_query, normalize_batch

logger = logging.getLogger(__name__)

ANNOTATION_COLUMNS = ("time", "title", "tags", "text")


class SourceNotFoundError(LookupError):
    """No registered source matches the requested (or default) source id."""

    def __init__(self, source_id: Optional[str], available: Sequence[str]) -> None:
        self.source_id = source_id
        self.available = list(available)
        if source_id:
            message = f"Source ID '{source_id}' not found"
        elif self.available:
            message = (
                "Multiple sources configured; pass source_id or set "
                "QUERYNORM_DEFAULT_SOURCE_ID"
            )
        else:
            message = "No metrics source configured"
        super().__init__(message)


class QueryService:
    """Async service executing normalized queries against metrics sources."""

    def __init__(
        self,
        settings: Optional[EnvSettings] = None,
        *,
        dynamic_labels_enabled: bool = False,
    ) -> None:
        """Create a stopped service.

        Dynamic label migration is enabled when either the environment
        setting or ``dynamic_labels_enabled`` (from the config file) is set.
        """
        self._settings = settings or EnvSettings()
        self._started: bool = False
        self.dynamic_labels_enabled = (
            self._settings.DYNAMIC_LABELS_ENABLED or dynamic_labels_enabled
        )

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the service. Idempotent."""
        if self._started:
            logger.debug("service.start no-op: already started")
            return
        self._started = True
        logger.info(
            "service.started",
            extra={"dynamic_labels_enabled": self.dynamic_labels_enabled},
        )

    async def stop(self) -> None:
        """Stop the service. Idempotent."""
        if not self._started:
            logger.debug("service.stop no-op: not started")
            return
        self._started = False
        logger.info("service.stopped")

    def resolve_source(
        self, source_id: Optional[str] = None
    ) -> Tuple[str, MetricsSourceAdapter]:
        """Return the source to use for a request.

        Order: explicit ``source_id``, then ``DEFAULT_SOURCE_ID``, then the
        only registered source.

        Raises
        ------
        SourceNotFoundError
            When no source can be selected.
        """
        available = get_available_source_ids()
        selected = source_id or self._settings.DEFAULT_SOURCE_ID
        if not selected and len(available) == 1:
            selected = available[0]
        if not selected:
            raise SourceNotFoundError(None, available)
        try:
            return selected, get_adapter(selected)
        except KeyError as exc:
            raise SourceNotFoundError(selected, available) from exc

    def migrate(
        self, queries: Iterable[Mapping[str, Any]]
    ) -> List[MutableMapping[str, Any]]:
        """Return copies of ``queries`` with legacy aliases migrated."""
        copies: List[MutableMapping[str, Any]] = [dict(query) for query in queries]
        return migrate_legacy_queries(copies, self.dynamic_labels_enabled)

    def normalize(
        self,
        queries: Iterable[RawQuery],
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
    ) -> PartialResult:
        """Normalize a batch; failures are isolated per refId."""
        return normalize_batch(
            queries,
            start,
            end,
            now=now,
            dynamic_labels_enabled=self.dynamic_labels_enabled,
            max_id_length=self._settings.MAX_QUERY_ID_LENGTH,
        )

    async def execute_time_series(
        self,
        queries: Iterable[RawQuery],
        start: datetime,
        end: datetime,
        source_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PartialResult:
        """Normalize a batch and fetch the samples of every valid query.

        Returns
        -------
        PartialResult
            ``successes`` maps refId to ``TimeSeriesResult``; ``failures``
            holds both normalization and fetch failures.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        normalized = self.normalize(queries, start, end, now=now)
        if not normalized.successes:
            return normalized
        _, adapter = self.resolve_source(source_id)

        async def _fetch(query: ResolvedQuery) -> TimeSeriesResult:
            samples = await adapter.fetch(query, query.region)
            in_range = [s for s in samples if start <= s.timestamp <= end]
            return TimeSeriesResult(query=query, samples=in_range)

        fetched = await gather_partial(
            {
                ref_id: _fetch(query)
                for ref_id, query in normalized.successes.items()
            },
            operation_type="fetch",
        )
        fetched.failures = normalized.failures + fetched.failures
        return fetched

    async def list_alarm_names(
        self, query: AnnotationQuery, adapter: MetricsSourceAdapter
    ) -> List[str]:
        """Select the alarms whose history feeds an annotation query."""
        max_records = self._settings.ANNOTATION_MAX_RECORDS
        if query.prefix_matching:
            candidates = await adapter.list_alarms(
                AlarmFilter(
                    prefix_matching=True,
                    action_prefix=query.action_prefix,
                    alarm_name_prefix=query.alarm_name_prefix,
                    max_records=max_records,
                )
            )
            return match_alarms(
                candidates,
                namespace=query.namespace,
                metric_name=query.metric_name,
                dimensions=query.dimensions,
                statistic=query.statistic,
                period=query.period,
            )

        alarms = await adapter.list_alarms(
            AlarmFilter(
                namespace=query.namespace,
                metric_name=query.metric_name,
                dimensions=query.dimensions,
                statistic=query.statistic,
                period=query.period,
                max_records=max_records,
            )
        )
        return [alarm.alarm_name for alarm in alarms]

    async def execute_annotations(
        self,
        raw: RawQuery,
        ref_id: Optional[str],
        start: datetime,
        end: datetime,
        source_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[AnnotationEvent]:
        """Turn the history of the matching alarms into annotation events.

        Events are ordered alarm by alarm, each alarm's history in the order
        the source returned it.

        Raises
        ------
        ParseError, ValidationError
            When the annotation query is malformed or incomplete.
        SourceNotFoundError
            When no source can be selected.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        query = normalize_annotation_query(raw, ref_id, start, end, now=now)
        _, adapter = self.resolve_source(source_id)
        alarm_names = await self.list_alarm_names(query, adapter)

        max_records = self._settings.ANNOTATION_MAX_RECORDS
        histories = await asyncio.gather(
            *(
                adapter.history(name, start, end, max_records=max_records)
                for name in alarm_names
            )
        )
        events = [
            AnnotationEvent(
                title=item.alarm_name,
                time=item.timestamp,
                tags=item.history_type,
                text=item.summary,
            )
            for items in histories
            for item in items
        ]
        logger.info(
            "annotations.executed",
            extra={
                "ref_id": query.ref_id,
                "prefix_matching": query.prefix_matching,
                "alarms": len(alarm_names),
                "events": len(events),
            },
        )
        return events


def annotations_to_frame(
    events: Sequence[AnnotationEvent], ref_id: str
) -> AnnotationFrame:
    """Lay annotation events out as a column-oriented frame."""
    columns: Dict[str, List[Any]] = {name: [] for name in ANNOTATION_COLUMNS}
    for event in events:
        columns["time"].append(event.time)
        columns["title"].append(event.title)
        columns["tags"].append(event.tags)
        columns["text"].append(event.text)
    return AnnotationFrame(
        name=ref_id, columns=columns, meta={"rowCount": len(events)}
    )
