"""Metrics source interfaces and registry."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Protocol

from ..domain.models import (
    AlarmFilter,
    AlarmHistoryItem,
    AlarmRecord,
    MetricSample,
    ResolvedQuery,
)


class TimeSeriesFetcher(Protocol):
    """Fetches datapoints for one normalized query."""

    async def fetch(self, query: ResolvedQuery, region: str) -> List[MetricSample]:
        """Return the samples of ``query`` in ``region``."""
        raise NotImplementedError


class AlarmLister(Protocol):
    """Lists alarms and their state-change history."""

    async def list_alarms(self, alarm_filter: AlarmFilter) -> List[AlarmRecord]:
        """Return at most ``alarm_filter.max_records`` alarms.

        In prefix mode only the prefix criteria are applied; otherwise the
        metric criteria select the alarms watching that metric.
        """
        raise NotImplementedError

    async def history(
        self,
        alarm_name: str,
        start: datetime,
        end: datetime,
        max_records: int = 100,
    ) -> List[AlarmHistoryItem]:
        """Return history items of ``alarm_name`` within ``[start, end]``."""
        raise NotImplementedError


class MetricsSourceAdapter(TimeSeriesFetcher, AlarmLister, Protocol):
    """A source serving both time series and alarms."""


_adapters: Dict[str, MetricsSourceAdapter] = {}


def register_adapter(source_id: str, adapter: MetricsSourceAdapter) -> None:
    """Register an adapter instance under a logical `source_id`."""
    _adapters[source_id] = adapter


def get_adapter(source_id: str) -> MetricsSourceAdapter:
    """Retrieve a registered adapter by `source_id`."""
    return _adapters[source_id]


def get_available_source_ids() -> list[str]:
    """Get list of registered adapter source_ids."""
    return list(_adapters.keys())


def log_adapter_status() -> None:
    """Log which sources are registered and what works without them."""
    logger = logging.getLogger(__name__)

    if not _adapters:
        logger.warning(
            "No metrics sources configured. Only normalization is available.\n"
            "  - Normalize and migrate endpoints: available\n"
            "  - Query and annotation endpoints: require a source; set "
            "QUERYNORM_CONFIG to a config file declaring one"
        )
    else:
        logger.info(
            "Metrics sources configured: %s",
            ", ".join(
                f"'{source_id}' ({type(adapter).__name__})"
                for source_id, adapter in _adapters.items()
            ),
        )


def reset_adapters() -> None:
    """Test-only helper to clear registered adapters."""
    _adapters.clear()
