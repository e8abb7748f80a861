from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, MutableMapping, Optional

from ..utils.retry import fixed_backoff, with_retries
from .categories import CPU_AR, MEMORY_AR, parse_int
from .cpu import cpu_usage_to_config
from .memory import MIN_THRESHOLD, highest_of, lowest_of, percent
from .observer import Observer


KIB = 1024
MIB = 1024 * KIB

# The engine refuses memory limits below this value
MIN_ALLOWED_MEMORY_LIMIT = 5 * MIB
MEMORY_LIMIT_MARGIN = MIB
MEMORY_RESERVATION_MARGIN = 5 * MIB

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_RETRY_INTERVAL_SEC = 30.0


logger = logging.getLogger(__name__)


@dataclass
class ResourceUpdate:
    memory: Optional[int] = None
    memory_reservation: Optional[int] = None
    memory_swap: Optional[int] = None
    cpuset_cpus: Optional[str] = None
    cpu_realtime_runtime: Optional[int] = None

    def is_empty(self) -> bool:
        return all(value is None for value in vars(self).values())

    def to_docker(self) -> Dict[str, Any]:
        """Body of a Docker Engine ``/containers/{id}/update`` request."""
        names = {
            "memory": "Memory",
            "memory_reservation": "MemoryReservation",
            "memory_swap": "MemorySwap",
            "cpuset_cpus": "CpusetCpus",
            "cpu_realtime_runtime": "CPURealtimeRuntime",
        }
        return {names[key]: value for key, value in vars(self).items() if value is not None}


UpdateResources = Callable[[str, ResourceUpdate], None]


def memory_limits(sug_min: int, sug_max: int, threshold: int, lowest: int, highest: int) -> tuple[int, int]:
    """Return the final (limit, reservation) pair in bytes.

    One last pass with the highest usage smooths the suggested maximum; the
    reservation sits between the suggested minimum and the lowest usage.
    """
    threshold = max(threshold, MIN_THRESHOLD)

    limit = sug_max + percent(highest) * (threshold * 2)
    if limit < MIN_ALLOWED_MEMORY_LIMIT:
        limit = MIN_ALLOWED_MEMORY_LIMIT + MEMORY_LIMIT_MARGIN

    reservation = (sug_min + lowest) // 2
    if reservation < MIN_ALLOWED_MEMORY_LIMIT:
        reservation = MIN_ALLOWED_MEMORY_LIMIT + MEMORY_RESERVATION_MARGIN

    if reservation > limit:
        limit, reservation = reservation, limit
    return limit, reservation


def build_update(
    config: MutableMapping[str, Dict[str, str]],
    observer: Optional[Observer] = None,
) -> ResourceUpdate:
    """Turn the derived configuration into a resource update.

    The suggested values are written back into the configuration
    (``sugmin``/``sugmax``, ``numCPU``).
    """
    update = ResourceUpdate()

    if MEMORY_AR in config:
        derived = config[MEMORY_AR]
        sug_min = parse_int(derived.get("nmin"))
        sug_max = parse_int(derived.get("nmax"))
        threshold = parse_int(derived.get("opti"))

        if observer is not None:
            lowest = lowest_of(observer.memory.lowest.values())
            highest = highest_of(observer.memory.highest.values())
        else:
            lowest, highest = sug_min, sug_max

        update.memory, update.memory_reservation = memory_limits(
            sug_min, sug_max, threshold, lowest, highest
        )
        update.memory_swap = -1
        derived["sugmin"] = str(update.memory_reservation)
        derived["sugmax"] = str(update.memory)

    if CPU_AR in config:
        derived = config[CPU_AR]
        update.cpu_realtime_runtime = parse_int(derived.get("usageOpti"))
        cpuset, count = cpu_usage_to_config(derived.get("percentOpti", ""))
        update.cpuset_cpus = cpuset or None
        derived["numCPU"] = count

    return update


class LimitApplier:
    """Commit computed limits through the resource-update primitive."""

    def __init__(
        self,
        update_resources: UpdateResources,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_interval_sec: float = DEFAULT_RETRY_INTERVAL_SEC,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        self.update_resources = update_resources
        self.max_attempts = max_attempts
        self.retry_interval_sec = retry_interval_sec
        self._sleep = sleep

    def apply(
        self,
        target_id: str,
        config: MutableMapping[str, Dict[str, str]],
        observer: Optional[Observer] = None,
        sleep: Callable[[float], object] | None = None,
    ) -> bool:
        """Apply the limits derived from `config`; True once the update succeeds."""
        update = build_update(config, observer)
        if update.is_empty():
            logger.info("no limits to apply", extra={"target": target_id})
            return True

        def on_retry(attempt: int, exc: Exception, delay: float) -> None:
            logger.error(
                "limit update failed (attempt %d/%d): %s; retrying in %.0fs",
                attempt,
                self.max_attempts,
                exc,
                delay,
                extra={"target": target_id},
            )

        try:
            with_retries(
                lambda: self.update_resources(target_id, update),
                max_attempts=self.max_attempts,
                backoff=fixed_backoff(self.retry_interval_sec),
                sleep=sleep or self._sleep or time.sleep,
                on_retry=on_retry,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "failed to update workload with new limits after %d attempts: %s",
                self.max_attempts,
                exc,
                extra={"target": target_id},
            )
            return False

        logger.info("limits applied", extra={"target": target_id, "update": update.to_docker()})
        return True
