from __future__ import annotations

import logging
from typing import Iterable, Iterator, Mapping, Optional

from ..config import AppConfig
from ..core.limits import LimitApplier
from ..core.sample import StatsSample
from ..core.watcher import Watcher, Workload
from .docker_client import DockerClient
from .registry import WatcherFactory, WatcherRegistry


logger = logging.getLogger(__name__)


def make_watcher_factory(config: AppConfig, client: DockerClient) -> WatcherFactory:
    runtime = config.runtime

    def factory(workload: Workload, autorange: Mapping[str, Mapping[str, str]]) -> Watcher:
        applier = LimitApplier(
            client.update_container,
            max_attempts=runtime.apply_max_attempts,
            retry_interval_sec=runtime.apply_retry_interval_sec,
        )
        return Watcher(
            workload,
            autorange,
            applier,
            client.is_running,
            limit=runtime.series_limit,
            tick_rate_sec=runtime.tick_rate_sec,
            poll_interval_sec=runtime.poll_interval_sec,
        )

    return factory


class StatsSession:
    """Relay one consumer's stats stream through a watcher.

    Each frame is offered to the watcher without blocking and the latest
    augmented frame is taken back, also without blocking. When the watcher
    published nothing new the previous augmented frame is repeated. Closing
    the session pauses the watcher until another stream resumes it.
    """

    def __init__(self, watcher: Optional[Watcher]) -> None:
        self.watcher = watcher
        self._last: Optional[StatsSample] = None

    def relay(self, sample: StatsSample) -> StatsSample:
        watcher = self.watcher
        if watcher is None:
            return sample
        if watcher.finished:
            return sample.augmented(watcher.config)
        if watcher.terminated:
            return sample

        if self._last is None:
            self._last = sample
        watcher.offer(sample)
        update = watcher.take()
        if update is not None:
            self._last = update
        return self._last

    def stream(self, samples: Iterable[StatsSample]) -> Iterator[StatsSample]:
        try:
            for sample in samples:
                yield self.relay(sample)
        finally:
            self.close()

    def close(self) -> None:
        watcher = self.watcher
        if watcher is not None and not watcher.finished and not watcher.terminated:
            watcher.pause()


def watch_container(
    client: DockerClient,
    registry: WatcherRegistry,
    container_id: str,
    fallback: Optional[Mapping[str, Mapping[str, str]]] = None,
) -> Iterator[StatsSample]:
    """Stream stats for a container, running autorange when it is configured.

    The service's autorange block wins; `fallback` is used for containers
    that are not part of a configured service.
    """
    workload, autorange = client.discover_autorange(container_id)
    if autorange is None and fallback:
        autorange = {k: dict(v) for k, v in fallback.items()}

    watcher = None
    if autorange is not None:
        watcher = registry.attach(workload, autorange)
    else:
        logger.info("no autorange configuration, streaming raw stats", extra={"container": workload.name})

    session = StatsSession(watcher)
    yield from session.stream(client.stats(workload.id))
