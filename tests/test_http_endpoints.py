"""Test HTTP endpoint functionality."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from querynorm.adapters import get_available_source_ids, register_adapter
from querynorm.adapters.in_memory import InMemoryAdapter
from querynorm.domain.models import AlarmHistoryItem, AlarmRecord
from querynorm.server.http import create_app

RECENT = datetime.now(timezone.utc) - timedelta(hours=1)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app with lifespan events."""
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def source():
    adapter = InMemoryAdapter(
        alarms=[
            AlarmRecord(
                alarm_name="cpu-high",
                namespace="AWS/EC2",
                metric_name="CPUUtilization",
                dimensions={"InstanceId": "i-1"},
                statistic="Average",
                period=300,
            )
        ],
        history=[
            AlarmHistoryItem(
                alarm_name="cpu-high",
                timestamp=RECENT,
                history_type="StateUpdate",
                summary="OK to ALARM",
            )
        ],
    )
    register_adapter("fixtures", adapter)
    return adapter


def test_health_and_ready(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/ready").json() == {"status": "ready"}


def test_capabilities(client, source):
    body = client.get("/capabilities").json()
    assert body["sources"] == ["fixtures"]
    assert body["features"] == {"dynamic_labels": False}
    assert body["supported_periods"] == [60, 300, 900, 3600, 21600, 86400]
    assert "/api/queries/normalize" in body["endpoints"]


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"x-correlation-id": "abc123"})
    assert response.headers["x-correlation-id"] == "abc123"
    generated = client.get("/health").headers["x-correlation-id"]
    assert generated and generated != "abc123"


def test_normalize_partial_success(client):
    response = client.post(
        "/api/queries/normalize",
        json={
            "from": "now-7d",
            "to": "now",
            "queries": [
                {"refId": "A", "period": "abc"},
                {
                    "refId": "B",
                    "namespace": "AWS/EC2",
                    "metricName": "CPUUtilization",
                    "dimensions": {"InstanceId": "i-1"},
                    "statistics": ["Average"],
                },
            ],
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert [q["refId"] for q in body["queries"]] == ["B"]
    query = body["queries"][0]
    assert query["id"] == "queryB"
    assert query["period"] == 900
    assert query["dimensions"] == {"InstanceId": ["i-1"]}
    assert query["statistic"] == "Average"
    assert query["apiMode"] == "MetricStat"
    assert query["returnData"] is True
    assert body["errors"] == [
        {
            "refId": "A",
            "error": body["errors"][0]["error"],
            "errorType": "invalid_period",
            "retryable": False,
            "field": "period",
        }
    ]


def test_normalize_rejects_bad_time_range(client):
    response = client.post(
        "/api/queries/normalize", json={"from": "yesterday", "queries": []}
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error_type"] == "invalid_time_range"


def test_normalize_rejects_non_list_body(client):
    response = client.post("/api/queries/normalize", json={"queries": "nope"})
    assert response.status_code == 400
    assert response.json()["detail"]["error_type"] == "validation_error"


def test_migrate_endpoint_with_feature_enabled(monkeypatch):
    monkeypatch.setenv("QUERYNORM_DYNAMIC_LABELS_ENABLED", "true")
    with TestClient(create_app()) as client:
        response = client.post(
            "/api/queries/migrate",
            json={"queries": [{"refId": "A", "alias": "{{metric}} {{InstanceId}}"}]},
        )
    body = response.json()
    assert body["dynamicLabelsEnabled"] is True
    assert body["queries"][0]["label"] == (
        "${PROP('MetricName')} ${PROP('Dim.InstanceId')}"
    )
    assert body["queries"][0]["alias"] == "{{metric}} {{InstanceId}}"


def test_migrate_endpoint_disabled_is_noop(client):
    response = client.post(
        "/api/queries/migrate", json={"queries": [{"alias": "{{metric}}"}]}
    )
    assert response.json()["queries"] == [{"alias": "{{metric}}"}]


def test_query_unknown_source(client, source):
    response = client.post(
        "/api/query", json={"sourceId": "nope", "queries": [{"refId": "A"}]}
    )
    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["error_type"] == "unknown_source_id"
    assert detail["available_options"] == ["fixtures"]


def test_query_returns_results_and_errors(client, source):
    response = client.post(
        "/api/query",
        json={"queries": [{"refId": "A"}, {"refId": "B", "dimensions": {"x": 1}}]},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["results"]["A"]["query"]["id"] == "queryA"
    assert body["results"]["A"]["samples"] == []
    assert body["errors"][0]["refId"] == "B"
    assert body["errors"][0]["errorType"] == "invalid_dimension_value"


def test_annotations_frame(client, source):
    response = client.post(
        "/api/annotations",
        json={
            "from": "now-6h",
            "to": "now",
            "refId": "A",
            "query": {
                "region": "us-east-1",
                "namespace": "AWS/EC2",
                "metricName": "CPUUtilization",
                "statistic": "Average",
                "dimensions": {"InstanceId": "i-1"},
            },
        },
    )
    assert response.status_code == 200
    frame = response.json()["frame"]
    assert frame["name"] == "A"
    assert frame["columns"]["title"] == ["cpu-high"]
    assert frame["columns"]["tags"] == ["StateUpdate"]
    assert frame["columns"]["text"] == ["OK to ALARM"]
    assert frame["meta"] == {"rowCount": 1}


def test_annotations_validation_error(client, source):
    response = client.post(
        "/api/annotations", json={"query": {"refId": "A", "region": "us-east-1"}}
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error_type"] == "missing_fields"
    assert "namespace" in detail["detail"]


def test_annotations_parse_error(client, source):
    response = client.post(
        "/api/annotations",
        json={"query": {"prefixMatching": True, "period": "often"}},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error_type"] == "invalid_period"


def test_annotations_without_sources(client):
    response = client.post(
        "/api/annotations",
        json={"query": {"prefixMatching": True, "alarmNamePrefix": "cpu"}},
    )
    assert response.status_code == 404
    assert response.json()["detail"]["available_options"] is None


def test_sources_registered_from_config(tmp_path, monkeypatch):
    fixture = tmp_path / "fixture.json"
    fixture.write_text(json.dumps({"alarms": [{"alarmName": "a"}]}))
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps(
            {
                "sources": {
                    "dev": {"type": "in-memory", "fixture": "fixture.json"},
                    "remote": {"type": "cloud"},
                },
                "features": {"dynamic_labels": True},
            }
        )
    )
    monkeypatch.setenv("QUERYNORM_CONFIG", str(config))
    with TestClient(create_app()) as client:
        body = client.get("/capabilities").json()
    assert body["sources"] == ["dev"]
    assert body["features"] == {"dynamic_labels": True}
    assert get_available_source_ids() == ["dev"]
