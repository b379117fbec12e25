"""
Alarm matching for annotation queries.

Narrows a broad alarm listing (for example the page returned by a name-prefix
search) down to the alarms watching one metric series.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional

from ..models import AlarmRecord

logger = logging.getLogger(__name__)


def dimensions_match(
    alarm_dimensions: Mapping[str, str], dimensions: Optional[Mapping[str, Any]]
) -> bool:
    """
    Weak dimension-set comparison.

    With no filter dimensions every alarm matches. Otherwise the alarm must
    have exactly as many dimensions as the filter and carry every filter key.
    Dimension values are not compared.

    Examples
    --------
    >>> dimensions_match({"A": "1", "B": "2"}, {"A": ["1"]})
    False
    >>> dimensions_match({"A": "1"}, {"A": ["other"]})
    True
    """
    if not dimensions:
        return True
    if len(alarm_dimensions) != len(dimensions):
        return False
    return all(key in alarm_dimensions for key in dimensions)


def match_alarms(
    candidates: Iterable[AlarmRecord],
    namespace: str = "",
    metric_name: str = "",
    dimensions: Optional[Mapping[str, Any]] = None,
    statistic: str = "",
    period: int = 0,
) -> List[str]:
    """
    Return names of the candidate alarms matching the filter.

    Parameters
    ----------
    candidates : Iterable[AlarmRecord]
        Alarms to filter; never mutated.
    namespace, metric_name : str
        Compared only when non-empty.
    dimensions : Mapping[str, Any], optional
        Filter dimensions; see ``dimensions_match``.
    statistic : str
        Always compared, including when empty.
    period : int
        Compared only when non-zero.

    Returns
    -------
    List[str]
        Alarm names in candidate order.
    """
    names: List[str] = []
    for alarm in candidates:
        if namespace and alarm.namespace != namespace:
            continue
        if metric_name and alarm.metric_name != metric_name:
            continue
        if not dimensions_match(alarm.dimensions, dimensions):
            continue
        if alarm.statistic != statistic:
            continue
        if period and alarm.period != period:
            continue
        names.append(alarm.alarm_name)

    logger.debug(
        "alarms.matched",
        extra={"matched": len(names), "namespace": namespace, "metric": metric_name},
    )
    return names
