from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .categories import CPU_AR, MEMORY_AR, AutoRangeConfig, copy_config


@dataclass
class StatsSample:
    """One usage snapshot of a workload, cumulative counters included."""

    memory_usage: int
    cpu_total_usage: int
    system_cpu_usage: int
    online_cpus: int
    memory_max_usage: int = 0
    id: str = ""
    name: str = ""
    read: Optional[str] = None
    autorange: AutoRangeConfig = field(default_factory=dict)

    @classmethod
    def from_docker(cls, payload: Mapping[str, Any]) -> "StatsSample":
        """Build a sample from a Docker Engine ``/containers/{id}/stats`` frame."""
        memory = payload.get("memory_stats") or {}
        cpu = payload.get("cpu_stats") or {}
        cpu_usage = cpu.get("cpu_usage") or {}
        online = cpu.get("online_cpus") or len(cpu_usage.get("percpu_usage") or []) or 1
        return cls(
            memory_usage=int(memory.get("usage") or 0),
            memory_max_usage=int(memory.get("max_usage") or 0),
            cpu_total_usage=int(cpu_usage.get("total_usage") or 0),
            system_cpu_usage=int(cpu.get("system_cpu_usage") or 0),
            online_cpus=int(online),
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or "").lstrip("/"),
            read=payload.get("read"),
        )

    def augmented(self, config: Mapping[str, Mapping[str, str]]) -> "StatsSample":
        return dataclasses.replace(self, autorange=copy_config(config))

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def format_autorange(sample: StatsSample) -> str:
    """Render the derived values the way ``docker stats --format AutoRange`` does."""
    memory = sample.autorange.get(MEMORY_AR, {})
    cpu = sample.autorange.get(CPU_AR, {})
    parts = [sample.name or sample.id[:12] or "-"]
    if memory:
        parts.append(
            "mem min={} max={} opti={}% usage={}".format(
                memory.get("sugmin") or memory.get("nmin", "-"),
                memory.get("sugmax") or memory.get("nmax", "-"),
                memory.get("opti", "-"),
                memory.get("usage", sample.memory_usage),
            )
        )
    if cpu:
        parts.append(
            "cpu percent={} usage={} cpus={}".format(
                cpu.get("percentOpti", "-"),
                cpu.get("usageOpti", "-"),
                cpu.get("numCPU", "-"),
            )
        )
    return "  ".join(parts)
