from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, Optional, Tuple
from urllib.parse import quote

import requests
import requests_unixsocket

from ..config import AppConfig
from ..core.categories import AutoRangeConfig, normalize
from ..core.limits import ResourceUpdate
from ..core.sample import StatsSample
from ..core.watcher import Workload
from ..errors import ConfigError, DockerAPIError
from ..utils.retry import exponential, with_retries


SERVICE_ID_LABEL = "com.docker.swarm.service.id"
SERVICE_NAME_LABEL = "com.docker.swarm.service.name"

UNIX_PREFIX = "unix://"
UNIX_SCHEME = "http+unix://"

logger = logging.getLogger(__name__)


def base_url_from_host(docker_host: str) -> str:
    """Map a ``DOCKER_HOST`` value to an HTTP base URL.

    ``unix:///var/run/docker.sock`` becomes an ``http+unix://`` URL with the
    socket path percent-encoded, as requests-unixsocket expects.
    """
    host = docker_host.strip().rstrip("/")
    if host.startswith(UNIX_PREFIX):
        socket_path = host[len(UNIX_PREFIX):]
        if not socket_path:
            raise ConfigError(f"DOCKER_HOST {docker_host!r} names no socket path")
        return UNIX_SCHEME + quote(socket_path, safe="")
    if host.startswith("tcp://"):
        return "http://" + host[len("tcp://"):]
    if host.startswith(("http://", "https://")):
        return host
    raise ConfigError(f"Unsupported DOCKER_HOST {docker_host!r}; use unix:///path/to/docker.sock or tcp://host:port")


def service_display_name(service_name: str) -> str:
    """Strip the trailing ``_<suffix>`` that stack deploys append."""
    head, sep, _ = service_name.rpartition("_")
    return head if sep else service_name


class DockerClient:
    """Minimal Docker Engine API client.

    Covers what autorange needs: container inspect (health and labels),
    service inspect (autorange configuration), the stats stream and the
    resource update call.
    """

    def __init__(
        self,
        base_url: str,
        api_version: str = "1.41",
        timeout: float = 10,
        max_retries: int = 5,
        backoff_base_sec: float = 0.5,
        backoff_cap_sec: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self.max_retries = max_retries
        self._backoff = exponential(backoff_base_sec, backoff_cap_sec)
        if session is None:
            session = requests_unixsocket.Session() if self.base_url.startswith(UNIX_SCHEME) else requests.Session()
        self.session = session
        self.session.headers.update({"Accept": "application/json", "User-Agent": "autorange/0.1"})

    @classmethod
    def from_config(cls, config: AppConfig) -> "DockerClient":
        return cls(
            base_url_from_host(config.env.DOCKER_HOST),
            api_version=config.env.DOCKER_API_VERSION,
            timeout=config.runtime.network_timeout_sec,
            max_retries=config.runtime.max_retries,
            backoff_base_sec=config.runtime.backoff_base_sec,
            backoff_cap_sec=config.runtime.backoff_cap_sec,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}/v{self.api_version}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            resp = self.session.request(method, self._url(path), **kwargs)
        except requests.RequestException as exc:
            raise DockerAPIError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            try:
                message = resp.json().get("message", resp.text)
            except ValueError:
                message = resp.text
            raise DockerAPIError(f"{method} {path}: {message}", status_code=resp.status_code)
        return resp

    def _fetch_json(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        # A 2xx with an unreadable body is treated like a transient server error
        resp = self._request("GET", path, **kwargs)
        try:
            body = resp.json()
        except ValueError as exc:
            raise DockerAPIError(f"GET {path}: invalid JSON body: {exc}") from exc
        if not isinstance(body, dict):
            raise DockerAPIError(f"GET {path}: expected a JSON object")
        return body

    def _get_json(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        return with_retries(
            lambda: self._fetch_json(path, **kwargs),
            max_attempts=self.max_retries,
            backoff=self._backoff,
            jitter_fraction=0.1,
            retry_on=(DockerAPIError,),
            give_up=_is_client_error,
        )

    # ───────────────────────────── containers ─────────────────────────────
    def inspect_container(self, container_id: str) -> Dict[str, Any]:
        return self._get_json(f"/containers/{container_id}/json")

    def is_running(self, container_id: str) -> bool:
        """Health query: True while the container is running and not dead."""
        try:
            state = self.inspect_container(container_id).get("State") or {}
        except DockerAPIError as exc:
            logger.warning("health check failed: %s", exc, extra={"container": container_id})
            return False
        return bool(state.get("Running")) and not bool(state.get("Dead"))

    def update_container(self, container_id: str, update: ResourceUpdate) -> None:
        """Resource-update primitive; raises DockerAPIError on failure."""
        resp = self._request("POST", f"/containers/{container_id}/update", json=update.to_docker())
        try:
            body = resp.json() or {}
        except ValueError:
            body = {}
        for warning in body.get("Warnings") or []:
            logger.warning("update warning: %s", warning, extra={"container": container_id})

    def stats(self, container_id: str, stream: bool = True) -> Iterator[StatsSample]:
        """Yield samples from the container stats endpoint."""
        resp = self._request(
            "GET",
            f"/containers/{container_id}/stats",
            params={"stream": "true" if stream else "false"},
            stream=stream,
            timeout=None if stream else self.timeout,
        )
        with resp:
            for line in resp.iter_lines():
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except ValueError:
                    logger.warning("skipping malformed stats frame", extra={"container": container_id})
                    continue
                yield StatsSample.from_docker(payload)

    # ───────────────────────────── services ─────────────────────────────
    def inspect_service(self, service_id: str) -> Dict[str, Any]:
        return self._get_json(f"/services/{service_id}")

    def workload(self, container_id: str) -> Tuple[Workload, Dict[str, str]]:
        info = self.inspect_container(container_id)
        labels = (info.get("Config") or {}).get("Labels") or {}
        service_name = labels.get(SERVICE_NAME_LABEL, "")
        workload = Workload(
            id=info.get("Id", container_id),
            name=str(info.get("Name", "")).lstrip("/"),
            service_name=service_display_name(service_name) if service_name else "",
        )
        return workload, labels

    def discover_autorange(self, container_id: str) -> Tuple[Workload, Optional[AutoRangeConfig]]:
        """Find the autorange configuration of the service owning a container.

        Returns the workload and ``None`` when the container is not part of a
        swarm service or the service declares no autorange block.
        """
        workload, labels = self.workload(container_id)
        service_id = labels.get(SERVICE_ID_LABEL)
        if not service_id or not labels.get(SERVICE_NAME_LABEL):
            return workload, None

        spec = self.inspect_service(service_id).get("Spec") or {}
        raw = spec.get("AutoRange")
        if raw is None:
            return workload, None
        return workload, normalize(raw)


def _is_client_error(exc: Exception) -> bool:
    # 404 and other client errors will not change on retry
    return isinstance(exc, DockerAPIError) and exc.status_code is not None and exc.status_code < 500
