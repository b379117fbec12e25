"""Tests for alarm matching."""

from querynorm.domain.models import AlarmRecord
from querynorm.domain.utils.alarms import dimensions_match, match_alarms


def _alarm(name, **kwargs):
    defaults = {
        "namespace": "AWS/EC2",
        "metric_name": "CPUUtilization",
        "dimensions": {"InstanceId": "i-1"},
        "statistic": "Average",
        "period": 300,
    }
    defaults.update(kwargs)
    return AlarmRecord(alarm_name=name, **defaults)


def test_cardinality_mismatch_excludes_alarm():
    alarm = _alarm("two-dims", dimensions={"A": "1", "B": "2"})
    assert match_alarms([alarm], dimensions={"A": ["1"]}, statistic="Average") == []


def test_dimension_values_are_not_compared():
    alarm = _alarm("cpu", dimensions={"InstanceId": "i-1"})
    names = match_alarms(
        [alarm], dimensions={"InstanceId": ["i-999"]}, statistic="Average"
    )
    assert names == ["cpu"]


def test_missing_key_excludes_alarm():
    assert not dimensions_match({"A": "1"}, {"B": ["1"]})


def test_empty_filter_dimensions_match_everything():
    assert dimensions_match({"A": "1", "B": "2"}, {})
    assert dimensions_match({}, None)


def test_namespace_and_metric_only_compared_when_set():
    alarms = [
        _alarm("ec2"),
        _alarm("rds", namespace="AWS/RDS", metric_name="FreeableMemory"),
    ]
    assert match_alarms(alarms, statistic="Average") == ["ec2", "rds"]
    assert match_alarms(alarms, namespace="AWS/RDS", statistic="Average") == ["rds"]
    assert match_alarms(
        alarms, metric_name="CPUUtilization", statistic="Average"
    ) == ["ec2"]


def test_statistic_always_compared():
    alarm = _alarm("avg", statistic="Average")
    assert match_alarms([alarm]) == []
    assert match_alarms([alarm], statistic="Maximum") == []
    assert match_alarms([alarm], statistic="Average") == ["avg"]


def test_period_compared_only_when_non_zero():
    alarms = [_alarm("five", period=300), _alarm("one", period=60)]
    assert match_alarms(alarms, statistic="Average", period=0) == ["five", "one"]
    assert match_alarms(alarms, statistic="Average", period=60) == ["one"]


def test_candidate_order_preserved_and_input_untouched():
    alarms = [_alarm(name) for name in ("c", "a", "b")]
    before = [a.model_dump() for a in alarms]
    assert match_alarms(alarms, statistic="Average") == ["c", "a", "b"]
    assert [a.model_dump() for a in alarms] == before
