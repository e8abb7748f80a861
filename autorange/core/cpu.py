from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence, Tuple

from .series import BoundedSeries, utc_now_ts


def cpu_percent(
    total_usage: float,
    prev_total_usage: float,
    system_usage: float,
    prev_system_usage: float,
    online_cpus: int,
) -> float:
    """Share of the machine used between two cumulative snapshots, in percent.

    Returns NaN when the system counter did not advance.
    """
    delta_system = float(system_usage) - float(prev_system_usage)
    if delta_system <= 0:
        return math.nan
    delta_usage = float(total_usage) - float(prev_total_usage)
    return (delta_usage / delta_system) * float(online_cpus) * 100.0


def average_float(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    kept = [v for v in values if not math.isnan(v)]
    if not kept:
        return math.nan
    return sum(kept) / len(kept)


def cpu_usage_to_config(usage: str) -> Tuple[str, str]:
    """Convert a CPU percentage into a cpuset string and its core count.

    >>> cpu_usage_to_config("150.5")
    ('0,1', '2')
    """
    try:
        value = float(usage)
    except (TypeError, ValueError):
        return "", ""
    if math.isnan(value) or value <= 0:
        return "", ""

    n = 1 + int(value / 100)
    return ",".join(str(i) for i in range(n)), str(n)


@dataclass
class CpuPredictedValues:
    percent: BoundedSeries[float]
    usage: BoundedSeries[float]

    @classmethod
    def create(cls, capacity: int) -> "CpuPredictedValues":
        return cls(percent=BoundedSeries(capacity), usage=BoundedSeries(capacity))


@dataclass
class CpuTimeSeries:
    percent: BoundedSeries[float]
    usage: BoundedSeries[float]
    predicted: CpuPredictedValues
    started: float = field(default_factory=utc_now_ts)
    prediction_done: bool = True

    @classmethod
    def create(cls, capacity: int) -> "CpuTimeSeries":
        return cls(
            percent=BoundedSeries(capacity),
            usage=BoundedSeries(capacity),
            predicted=CpuPredictedValues.create(capacity),
        )
