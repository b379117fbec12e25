"""
Pure building blocks of query normalization.

None of these modules perform I/O or read the clock; every function is a
deterministic function of its arguments.

Modules
-------
period
    Period decoding (``PeriodRequest``) and ``"auto"`` period resolution from
    the time range and the age of the data
identifiers
    Identifier-safety pattern and query id derivation
labels
    Legacy alias to dynamic label migration
alarms
    Alarm matching against partial filter criteria
timestamps
    Time range parsing (ISO8601, Unix seconds/milliseconds, ``now-6h``)
"""

__all__ = []
