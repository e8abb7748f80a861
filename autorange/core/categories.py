"""AutoRange configuration categories.

At the boundary the configuration is a two-level string map, e.g.::

    {"memory": {"min": "110000", "max": "120000", "threshold%": "10"},
     "cpu%": {"min": "60", "max": "70"}}

The presence of a category activates that resource kind. Input categories
are converted once into typed baseline records; the engine writes its
results into the ``memoryAR`` and ``cpuAR`` output categories.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional


AutoRangeConfig = Dict[str, Dict[str, str]]

MEMORY = "memory"
CPU = "cpu%"
MEMORY_AR = "memoryAR"
CPU_AR = "cpuAR"

DEFAULT_MEMORY_MIN = 10_000
DEFAULT_MEMORY_MAX = 20_000
DEFAULT_THRESHOLD = 30


def parse_int(value: Optional[str]) -> int:
    """Parse a decimal string, falling back to 0 for anything malformed."""
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def is_activated(config: Mapping[str, Mapping[str, str]], category: str) -> bool:
    return category in config


def copy_config(config: Mapping[str, Mapping[str, str]]) -> AutoRangeConfig:
    return {key: dict(values) for key, values in config.items()}


def normalize(raw: Mapping[str, object]) -> AutoRangeConfig:
    """Coerce a loosely typed mapping (e.g. parsed YAML) into the string map.

    ``None`` categories (``memory:`` with no keys) are kept as activated and
    empty.
    """
    config: AutoRangeConfig = {}
    for category, values in raw.items():
        if values is None:
            config[str(category)] = {}
        elif isinstance(values, Mapping):
            config[str(category)] = {str(k): "" if v is None else str(v) for k, v in values.items()}
    return config


@dataclass(frozen=True)
class MemoryBaseline:
    min: int
    max: int
    threshold: int
    # True when min/max came from the configuration rather than defaults
    configured: bool

    @classmethod
    def from_config(cls, config: Mapping[str, Mapping[str, str]]) -> Optional["MemoryBaseline"]:
        if not is_activated(config, MEMORY):
            return None
        values = config[MEMORY]
        raw_min = parse_int(values.get("min"))
        raw_max = parse_int(values.get("max"))
        threshold = parse_int(values.get("threshold%", values.get("threshold")))
        return cls(
            min=max(raw_min, DEFAULT_MEMORY_MIN),
            max=max(raw_max, DEFAULT_MEMORY_MAX),
            threshold=threshold or DEFAULT_THRESHOLD,
            configured=raw_min > 0 or raw_max > 0,
        )


@dataclass(frozen=True)
class CpuBaseline:
    min: int
    max: int

    @classmethod
    def from_config(cls, config: Mapping[str, Mapping[str, str]]) -> Optional["CpuBaseline"]:
        if not is_activated(config, CPU):
            return None
        values = config[CPU]
        return cls(min=parse_int(values.get("min")), max=parse_int(values.get("max")))

    @property
    def has_range(self) -> bool:
        return self.min != 0 and self.max != 0

    def midpoint_per_core(self, online_cpus: int) -> int:
        return ((self.min + self.max) // 2) // max(online_cpus, 1)
