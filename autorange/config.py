from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.categories import AutoRangeConfig, normalize
from .errors import ConfigError


class RuntimeConfig(BaseModel):
    series_limit: int = Field(10, ge=0, description="Capacity of every time series and window length in ticks")
    tick_rate_sec: float = Field(1.0, ge=0, description="Delay between two watcher ticks")
    poll_interval_sec: float = Field(0.1, gt=0, description="How often a waiting watcher checks for pause/stop")
    apply_max_attempts: int = Field(10, ge=1, description="Attempts to commit the computed limits")
    apply_retry_interval_sec: float = Field(30.0, ge=0, description="Delay between two commit attempts")
    network_timeout_sec: int = 10
    max_retries: int = 5
    backoff_base_sec: float = 0.5
    backoff_cap_sec: float = 10.0
    autorange: AutoRangeConfig = Field(
        default_factory=dict, description="Fallback autorange configuration when discovery finds none"
    )

    @field_validator("autorange", mode="before")
    @classmethod
    def _coerce_autorange(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return {}
        if isinstance(v, dict):
            return normalize(v)
        return v


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Docker Engine API
    DOCKER_HOST: str = "unix:///var/run/docker.sock"
    DOCKER_API_VERSION: str = "1.41"
    LOG_LEVEL: str = "INFO"


class AppConfig(BaseModel):
    env: EnvSettings
    runtime: RuntimeConfig

    @field_validator("env", mode="before")
    @classmethod
    def _coerce_env(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, dict):
            return EnvSettings(**v)
        return v

    @staticmethod
    def load(config_path: Optional[Path] = None) -> "AppConfig":
        env = EnvSettings()  # loads from environment and .env

        runtime = RuntimeConfig()
        if config_path is None:
            default_path = Path("config.yaml")
            config_path = default_path if default_path.exists() else None

        if config_path is not None:
            raw = _read_yaml(Path(config_path))
            try:
                runtime = RuntimeConfig(**raw)
            except ValidationError as ve:
                raise ConfigError(f"Invalid {config_path}: {ve}") from ve

        return AppConfig(env=env, runtime=runtime)


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    return raw


def load_autorange(path: Path) -> AutoRangeConfig:
    """Load an autorange block from a YAML file.

    The file may hold the block under an ``autorange`` key, as in a compose
    file, or the categories at the top level.
    """
    raw = _read_yaml(Path(path))
    block = raw.get("autorange", raw)
    if block is None:
        return {}
    if not isinstance(block, dict):
        raise ConfigError(f"Expected a mapping for autorange in {path}")
    return normalize(block)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load merged configuration from environment and optional YAML."""

    return AppConfig.load(config_path)
