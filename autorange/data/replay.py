from __future__ import annotations

import json
import logging
from dataclasses import MISSING, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from ..core.categories import AutoRangeConfig
from ..core.limits import LimitApplier, ResourceUpdate
from ..core.sample import StatsSample
from ..core.watcher import DEFAULT_LIMIT, Watcher, Workload
from ..errors import ConfigError


logger = logging.getLogger(__name__)

_SAMPLE_FIELDS = {f.name for f in fields(StatsSample)}
_REQUIRED_FIELDS = {
    f.name for f in fields(StatsSample) if f.default is MISSING and f.default_factory is MISSING
}


@dataclass
class ReplayResult:
    """Outcome of feeding a recorded stream through a watcher.

    Replaying lets an operator see which limits autorange would settle on
    for a recorded workload without touching the workload itself.
    """

    ticks: int
    converged: bool
    applied: bool
    config: AutoRangeConfig
    update: Optional[ResourceUpdate] = None
    outputs: List[StatsSample] = field(default_factory=list)


def parse_sample(payload: Mapping[str, Any]) -> StatsSample:
    """Accept either a Docker stats frame or a flat StatsSample record.

    Raises ValueError for records that are neither.
    """
    if not isinstance(payload, Mapping):
        raise ValueError(f"expected an object, got {type(payload).__name__}")
    if "memory_stats" in payload or "cpu_stats" in payload:
        return StatsSample.from_docker(payload)
    known = {k: v for k, v in payload.items() if k in _SAMPLE_FIELDS}
    missing = sorted(_REQUIRED_FIELDS - set(known))
    if missing:
        raise ValueError("missing fields: " + ", ".join(missing))
    return StatsSample(**known)


def load_samples(path: Path) -> Iterator[StatsSample]:
    """Read samples from a JSON-lines recording."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Recording not found: {path}")
    with open(path, "r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except ValueError as exc:
                raise ConfigError(f"{path}:{lineno}: invalid JSON: {exc}") from exc
            try:
                sample = parse_sample(payload)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{path}:{lineno}: invalid sample: {exc}") from exc
            yield sample


class ReplayRunner:
    """Drive a watcher tick by tick over recorded samples with a dry-run commit."""

    def __init__(self, config: Mapping[str, Mapping[str, str]], limit: int = DEFAULT_LIMIT) -> None:
        self.config = config
        self.limit = limit
        self.update: Optional[ResourceUpdate] = None

    def _record(self, target_id: str, update: ResourceUpdate) -> None:
        logger.info("dry-run update", extra={"target": target_id, "update": update.to_docker()})
        self.update = update

    def run(self, samples: Iterable[StatsSample], workload: Optional[Workload] = None) -> ReplayResult:
        workload = workload or Workload(id="replay", name="replay")
        watcher = Watcher(
            workload,
            self.config,
            LimitApplier(self._record, max_attempts=1, retry_interval_sec=0),
            health_check=lambda _id: True,
            limit=self.limit,
            tick_rate_sec=0,
        )

        ticks = 0
        outputs: List[StatsSample] = []
        for sample in samples:
            ticks += 1
            if not watcher.tick(sample):
                break
            published = watcher.take()
            if published is not None:
                outputs.append(published)

        return ReplayResult(
            ticks=ticks,
            converged=watcher.observer.converged and watcher.started,
            applied=watcher.finished,
            config=watcher.config,
            update=self.update,
            outputs=outputs,
        )


def summarize(result: ReplayResult) -> Dict[str, Any]:
    return {
        "ticks": result.ticks,
        "converged": result.converged,
        "applied": result.applied,
        "autorange": result.config,
        "update": result.update.to_docker() if result.update else None,
    }
