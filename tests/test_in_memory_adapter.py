"""Tests for the fixture-backed metrics source."""

import json
from datetime import datetime, timezone

import pytest

from querynorm.adapters import (
    get_adapter,
    get_available_source_ids,
    log_adapter_status,
    register_adapter,
    reset_adapters,
)
from querynorm.adapters.in_memory import InMemoryAdapter
from querynorm.domain.models import AlarmFilter, ResolvedQuery

FIXTURE = {
    "alarms": [
        {
            "alarmName": "api-5xx",
            "namespace": "AWS/ApiGateway",
            "metricName": "5XXError",
            "dimensions": {"ApiName": "shop"},
            "statistic": "Sum",
            "period": 60,
            "alarmActions": ["arn:aws:sns:eu-west-1:1:oncall"],
        },
        {"alarmName": "api-latency", "statistic": "p99", "period": 300},
    ],
    "history": [
        {
            "alarmName": "api-5xx",
            "timestamp": "2025-06-01T10:00:00Z",
            "historyType": "StateUpdate",
            "summary": "Alarm updated from OK to ALARM",
        }
    ],
    "series": [
        {
            "region": "eu-west-1",
            "namespace": "AWS/ApiGateway",
            "metricName": "5XXError",
            "samples": [
                {"timestamp": "2025-06-01T10:05:00Z", "value": 3},
                {"timestamp": "2025-06-01T10:00:00Z", "value": 1},
            ],
        }
    ],
}


@pytest.fixture
def adapter(tmp_path):
    path = tmp_path / "fixture.json"
    path.write_text(json.dumps(FIXTURE))
    return InMemoryAdapter.from_file(path)


@pytest.mark.asyncio
async def test_from_file_loads_records(adapter):
    assert [a.alarm_name for a in adapter.alarms] == ["api-5xx", "api-latency"]
    assert adapter.alarms[0].alarm_actions == ["arn:aws:sns:eu-west-1:1:oncall"]

    query = ResolvedQuery(
        ref_id="A",
        id="queryA",
        region="eu-west-1",
        namespace="AWS/ApiGateway",
        metric_name="5XXError",
        statistic="Sum",
        period=60,
    )
    samples = await adapter.fetch(query, "eu-west-1")
    assert [s.value for s in samples] == [1.0, 3.0]
    assert await adapter.fetch(query, "us-east-1") == []


@pytest.mark.asyncio
async def test_list_alarms_prefix_and_metric_modes(adapter):
    by_prefix = await adapter.list_alarms(
        AlarmFilter(prefix_matching=True, alarm_name_prefix="api-")
    )
    assert [a.alarm_name for a in by_prefix] == ["api-5xx", "api-latency"]

    by_action = await adapter.list_alarms(
        AlarmFilter(prefix_matching=True, action_prefix="arn:aws:sns:eu-west-1")
    )
    assert [a.alarm_name for a in by_action] == ["api-5xx"]

    by_metric = await adapter.list_alarms(
        AlarmFilter(namespace="AWS/ApiGateway", metric_name="5XXError", statistic="Sum")
    )
    assert [a.alarm_name for a in by_metric] == ["api-5xx"]

    limited = await adapter.list_alarms(
        AlarmFilter(prefix_matching=True, max_records=1)
    )
    assert len(limited) == 1


@pytest.mark.asyncio
async def test_history_window(adapter):
    start = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
    end = datetime(2025, 6, 1, 11, 0, tzinfo=timezone.utc)
    items = await adapter.history("api-5xx", start, end)
    assert [i.history_type for i in items] == ["StateUpdate"]
    assert await adapter.history("api-5xx", end, end) == []
    assert await adapter.history("api-latency", start, end) == []


def test_registry_round_trip(caplog):
    adapter = InMemoryAdapter()
    register_adapter("dev", adapter)
    assert get_adapter("dev") is adapter
    assert get_available_source_ids() == ["dev"]
    with caplog.at_level("INFO"):
        log_adapter_status()
    assert "'dev' (InMemoryAdapter)" in caplog.text

    reset_adapters()
    assert get_available_source_ids() == []
    with pytest.raises(KeyError):
        get_adapter("dev")


def test_log_adapter_status_without_sources(caplog):
    with caplog.at_level("WARNING"):
        log_adapter_status()
    assert "No metrics sources configured" in caplog.text
