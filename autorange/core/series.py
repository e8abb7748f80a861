from __future__ import annotations

from datetime import datetime, timezone
from typing import Generic, List, MutableSequence, TypeVar


T = TypeVar("T")


def utc_now_ts() -> float:
    return datetime.now(timezone.utc).timestamp()


def push(series: MutableSequence[T], value: T, capacity: int) -> MutableSequence[T]:
    """Append `value`, dropping the oldest entry once `capacity` is reached.

    A capacity of zero never stores anything.
    """
    if capacity == 0:
        return series
    if len(series) >= capacity:
        del series[0]
    series.append(value)
    return series


class BoundedSeries(Generic[T]):
    """Fixed-capacity FIFO window over appended values."""

    def __init__(self, capacity: int) -> None:
        self._capacity: int = capacity
        self._values: List[T] = []

    def append(self, value: T) -> None:
        push(self._values, value, self._capacity)

    def values(self) -> List[T]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"BoundedSeries(capacity={self._capacity}, values={self._values!r})"
