from __future__ import annotations

from pathlib import Path

import pytest

from autorange.config import RuntimeConfig, load_autorange, load_config
from autorange.errors import ConfigError


def test_defaults() -> None:
    runtime = RuntimeConfig()
    assert runtime.series_limit == 10
    assert runtime.apply_max_attempts == 10
    assert runtime.apply_retry_interval_sec == 30.0
    assert runtime.autorange == {}


def test_load_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "series_limit: 5\n"
        "tick_rate_sec: 0.5\n"
        "autorange:\n"
        "  memory:\n"
        "    threshold%: 10\n"
        "  cpu%:\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.runtime.series_limit == 5
    assert cfg.runtime.tick_rate_sec == 0.5
    assert cfg.runtime.autorange == {"memory": {"threshold%": "10"}, "cpu%": {}}


def test_invalid_values_raise_config_error(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("series_limit: -1\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_or_malformed_files(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nope.yaml")

    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_autorange_nested_or_top_level(tmp_path: Path) -> None:
    nested = tmp_path / "compose.yaml"
    nested.write_text("autorange:\n  memory:\n    min: 110000\n    max: 120000\n", encoding="utf-8")
    assert load_autorange(nested) == {"memory": {"min": "110000", "max": "120000"}}

    flat = tmp_path / "flat.yaml"
    flat.write_text("cpu%:\n  min: 60\n  max: 70\n", encoding="utf-8")
    assert load_autorange(flat) == {"cpu%": {"min": "60", "max": "70"}}

    broken = tmp_path / "broken.yaml"
    broken.write_text("autorange: [1, 2]\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_autorange(broken)
