from __future__ import annotations


class AutoRangeError(Exception):
    """Base class for autorange errors."""


class ConfigError(AutoRangeError):
    """Raised when a configuration file cannot be loaded or validated."""


class DockerAPIError(AutoRangeError):
    """Raised when the Docker Engine API rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
