from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from .series import BoundedSeries, utc_now_ts


MIN_THRESHOLD = 10
MAX_AMPLITUDE_FOR_CONVERGENCE = 2


def _trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def percent(value: int) -> int:
    """One percent of `value`, truncated."""
    return _trunc_div(value, 100)


def percentage_between(this: int, that: int) -> int:
    """Relative change from `this` to `that` in whole percent."""
    if this == 0:
        return 0
    return int((that - this) / this * 100)


def lowest_of(values: Sequence[int]) -> int:
    if len(values) == 0:
        return 1
    return min(values)


def highest_of(values: Sequence[int]) -> int:
    if len(values) == 0:
        return 0
    return max(values)


def average(values: Sequence[int]) -> int:
    if len(values) == 0:
        return 0
    return sum(values) // len(values)


def amplitude(highest: int, lowest: int) -> int:
    return highest // (lowest or 1)


def get_extreme_values(usage: int, lowest: int, highest: int) -> Tuple[int, int]:
    if usage < lowest:
        lowest = usage
    elif usage > highest:
        highest = usage
    return lowest, highest


def process_memory_stats(usage: int, min_: int, max_: int, threshold: int) -> Tuple[int, int]:
    """Move the (min, max) bracket toward `usage`.

    The bracket grows by the relative distance to the usage when usage breaks
    above it, and is rebuilt just above the usage when usage drops below it.
    `threshold` is the safety margin in percent.
    """
    threshold = max(threshold, MIN_THRESHOLD)
    spread = percent(max_ - min_)

    if usage > (min_ + spread) * threshold:
        distance = percentage_between(min_, usage)
        min_ += distance * percent(min_)
        max_ = min_ + threshold * percent(min_)
    elif usage < (min_ - spread) * threshold:
        min_ = usage + threshold * percent(usage)
        max_ = min_ + threshold * percent(min_)

    return min_, max_


def generate_memory_weight(values: Iterable[int], reference: Sequence[int]) -> List[float]:
    """Weight each value by its distance to the highest reference value.

    Weights lie in (0, 1]; generation stops at the first zero entry.
    """
    weights: List[float] = []
    highest = highest_of(reference)
    if highest == 0:
        return weights

    for number in values:
        if number == 0:
            break
        distance = highest // number
        weights.append(1.0 if distance == 0 else 1.0 / distance)
    return weights


def weighted_average(values: Sequence[int], weights: Sequence[float]) -> int:
    if len(values) == 0 or len(weights) == 0:
        return 0
    total = 0
    for number, weight in zip(values, weights):
        total += int(number / weight)
    return total // len(values)


def check_memory_end_condition(len_serie: int, limit: int, medium_amplitude: int) -> bool:
    return len_serie >= limit or (
        len_serie > limit // 2 and medium_amplitude <= MAX_AMPLITUDE_FOR_CONVERGENCE
    )


def bias_toward(avg: int, extreme: int) -> int:
    """Shift `avg` by its relative distance to `extreme`, never below zero."""
    return max(0, avg + percent(avg) * percentage_between(avg, extreme))


@dataclass
class MemoryPredictedValues:
    min: BoundedSeries[int]
    max: BoundedSeries[int]
    threshold: BoundedSeries[int]

    @classmethod
    def create(cls, capacity: int) -> "MemoryPredictedValues":
        return cls(
            min=BoundedSeries(capacity),
            max=BoundedSeries(capacity),
            threshold=BoundedSeries(capacity),
        )


@dataclass
class MemoryTimeSeries:
    min: BoundedSeries[int]
    max: BoundedSeries[int]
    usage: BoundedSeries[int]
    highest: BoundedSeries[int]
    lowest: BoundedSeries[int]
    amplitude: BoundedSeries[int]
    predicted: MemoryPredictedValues
    started: float = field(default_factory=utc_now_ts)
    prediction_done: bool = True

    @classmethod
    def create(cls, capacity: int) -> "MemoryTimeSeries":
        return cls(
            min=BoundedSeries(capacity),
            max=BoundedSeries(capacity),
            usage=BoundedSeries(capacity),
            highest=BoundedSeries(capacity),
            lowest=BoundedSeries(capacity),
            amplitude=BoundedSeries(capacity),
            predicted=MemoryPredictedValues.create(capacity),
        )
