from __future__ import annotations

from dataclasses import dataclass

from .cpu import CpuTimeSeries
from .memory import MemoryTimeSeries


@dataclass
class Observer:
    """Time series for one watched workload.

    Both prediction flags start latched; the watcher clears the flag of each
    category it activates.
    """

    memory: MemoryTimeSeries
    cpu: CpuTimeSeries
    capacity: int

    @classmethod
    def create(cls, capacity: int) -> "Observer":
        return cls(
            memory=MemoryTimeSeries.create(capacity),
            cpu=CpuTimeSeries.create(capacity),
            capacity=capacity,
        )

    @property
    def converged(self) -> bool:
        return self.memory.prediction_done and self.cpu.prediction_done
