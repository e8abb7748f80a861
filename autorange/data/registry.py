from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Mapping, Optional

from ..core.watcher import Watcher, Workload


WatcherFactory = Callable[[Workload, Mapping[str, Mapping[str, str]]], Watcher]

logger = logging.getLogger(__name__)


class WatcherRegistry:
    """Keyed watchers shared by every stats stream of the process.

    A running watcher is keyed by its workload id. Once it has applied its
    limits it is re-keyed by service name, so that a replacement workload of
    the same service gets the committed limits without a new observation.
    """

    def __init__(self, factory: WatcherFactory) -> None:
        self._factory = factory
        self._lock = threading.RLock()
        self._watchers: Dict[str, Watcher] = {}

    def get(self, key: str) -> Optional[Watcher]:
        with self._lock:
            return self._watchers.get(key)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._watchers)

    def attach(self, workload: Workload, config: Mapping[str, Mapping[str, str]]) -> Watcher:
        """Return the watcher for `workload`, creating or resuming it as needed."""
        retarget: Optional[Watcher] = None
        with self._lock:
            service_watcher = self._watchers.get(workload.service_name) if workload.service_name else None
            if service_watcher is not None:
                if service_watcher.workload.id != workload.id:
                    retarget = service_watcher
                watcher = service_watcher
            else:
                watcher = self._watchers.get(workload.id)
                if watcher is None:
                    watcher = self._factory(workload, config)
                    self._watchers[workload.id] = watcher
                    watcher.start(on_exit=self._release)
                elif not watcher.finished:
                    watcher.resume()

        # Applying may retry for a while; do it outside the lock
        if retarget is not None:
            retarget.retarget(workload)
        return watcher

    def _release(self, watcher: Watcher) -> None:
        workload = watcher.workload
        with self._lock:
            if self._watchers.get(workload.id) is watcher:
                del self._watchers[workload.id]
            if watcher.finished and workload.service_name:
                self._watchers[workload.service_name] = watcher
        logger.debug(
            "watcher released",
            extra={"container": workload.name or workload.id, "finished": watcher.finished},
        )

    def stop_all(self) -> None:
        with self._lock:
            watchers = list(self._watchers.values())
        for watcher in watchers:
            watcher.stop()
