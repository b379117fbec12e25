"""Fixture-backed metrics source.

Serves alarms, alarm history and samples from memory. Used for local
development and tests in place of a remote metrics API. The fixture file is
JSON with three optional keys::

    {
      "alarms": [{"alarmName": "...", "namespace": "...", "metricName": "...",
                  "dimensions": {"InstanceId": "i-1"}, "statistic": "Average",
                  "period": 300, "alarmActions": ["arn:..."]}],
      "history": [{"alarmName": "...", "timestamp": "2024-01-01T00:00:00Z",
                   "historyType": "StateUpdate", "summary": "..."}],
      "series": [{"region": "us-east-1", "namespace": "...",
                  "metricName": "...", "samples": [{"timestamp": "...",
                  "value": 1.0}]}]
    }
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..config.models import load_json_file
from ..domain.models import (
    AlarmFilter,
    AlarmHistoryItem,
    AlarmRecord,
    MetricSample,
    ResolvedQuery,
)
from ..domain.utils.alarms import match_alarms

logger = logging.getLogger(__name__)


class SeriesFixture(BaseModel):
    """Samples of one metric in one region."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    region: str = ""
    namespace: str = ""
    metric_name: str = ""
    samples: List[MetricSample] = Field(default_factory=list)


class SourceFixture(BaseModel):
    """Contents of an in-memory source fixture file."""

    alarms: List[AlarmRecord] = Field(default_factory=list)
    history: List[AlarmHistoryItem] = Field(default_factory=list)
    series: List[SeriesFixture] = Field(default_factory=list)


class InMemoryAdapter:
    """Implements ``TimeSeriesFetcher`` and ``AlarmLister`` over fixtures."""

    def __init__(
        self,
        alarms: Optional[Sequence[AlarmRecord]] = None,
        history: Optional[Sequence[AlarmHistoryItem]] = None,
        series: Optional[Sequence[SeriesFixture]] = None,
    ) -> None:
        self.alarms: List[AlarmRecord] = list(alarms or [])
        self.history_items: List[AlarmHistoryItem] = list(history or [])
        self.series: List[SeriesFixture] = list(series or [])
        self.calls: List[Dict[str, Any]] = []

    @classmethod
    def from_file(cls, path: Path) -> "InMemoryAdapter":
        """Build an adapter from a JSON fixture file."""
        fixture = SourceFixture.model_validate(load_json_file(path))
        logger.info(
            "in_memory.fixture_loaded",
            extra={
                "path": str(path),
                "alarms": len(fixture.alarms),
                "history": len(fixture.history),
                "series": len(fixture.series),
            },
        )
        return cls(fixture.alarms, fixture.history, fixture.series)

    async def fetch(self, query: ResolvedQuery, region: str) -> List[MetricSample]:
        self.calls.append({"op": "fetch", "id": query.id, "region": region})
        samples: List[MetricSample] = []
        for series in self.series:
            if (
                series.region == region
                and series.namespace == query.namespace
                and series.metric_name == query.metric_name
            ):
                samples.extend(series.samples)
        return sorted(samples, key=lambda sample: sample.timestamp)

    async def list_alarms(self, alarm_filter: AlarmFilter) -> List[AlarmRecord]:
        self.calls.append({"op": "list_alarms", "filter": alarm_filter})
        if alarm_filter.prefix_matching:
            selected = [
                alarm
                for alarm in self.alarms
                if alarm.alarm_name.startswith(alarm_filter.alarm_name_prefix)
                and (
                    not alarm_filter.action_prefix
                    or any(
                        action.startswith(alarm_filter.action_prefix)
                        for action in alarm.alarm_actions
                    )
                )
            ]
        else:
            names = set(
                match_alarms(
                    self.alarms,
                    namespace=alarm_filter.namespace,
                    metric_name=alarm_filter.metric_name,
                    dimensions=alarm_filter.dimensions,
                    statistic=alarm_filter.statistic,
                    period=alarm_filter.period,
                )
            )
            selected = [alarm for alarm in self.alarms if alarm.alarm_name in names]
        return selected[: alarm_filter.max_records]

    async def history(
        self,
        alarm_name: str,
        start: datetime,
        end: datetime,
        max_records: int = 100,
    ) -> List[AlarmHistoryItem]:
        self.calls.append({"op": "history", "alarm_name": alarm_name})
        items = [
            item
            for item in self.history_items
            if item.alarm_name == alarm_name and start <= item.timestamp <= end
        ]
        return items[:max_records]
