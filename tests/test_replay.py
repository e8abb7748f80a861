from __future__ import annotations

import json
from pathlib import Path

import pytest

from autorange.core.limits import MIB
from autorange.data.replay import ReplayRunner, load_samples, parse_sample, summarize
from autorange.errors import ConfigError


def write_recording(path: Path, records) -> Path:
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n", encoding="utf-8")
    return path


def test_parse_sample_accepts_both_shapes() -> None:
    docker = parse_sample({
        "name": "/web_1",
        "memory_stats": {"usage": 1234},
        "cpu_stats": {"cpu_usage": {"total_usage": 5}, "system_cpu_usage": 10, "online_cpus": 4},
    })
    assert docker.memory_usage == 1234
    assert docker.online_cpus == 4
    assert docker.name == "web_1"

    flat = parse_sample({
        "memory_usage": 42,
        "cpu_total_usage": 1,
        "system_cpu_usage": 2,
        "online_cpus": 1,
        "unrelated": True,
    })
    assert flat.memory_usage == 42


def test_replay_converges_on_a_recording(tmp_path: Path) -> None:
    record = {"memory_usage": 50_000, "cpu_total_usage": 0, "system_cpu_usage": 0, "online_cpus": 1}
    path = write_recording(tmp_path / "web.jsonl", [record] * 100)

    result = ReplayRunner({"memory": {"threshold%": "10"}}, limit=10).run(load_samples(path))

    assert result.ticks == 61
    assert result.converged
    assert result.applied
    assert result.update is not None
    assert result.update.memory == 10 * MIB
    assert len(result.outputs) == 60

    summary = summarize(result)
    assert summary["update"]["MemoryReservation"] == 6 * MIB
    assert summary["autorange"]["memoryAR"]["sugmax"] == str(10 * MIB)


def test_replay_reports_short_recordings(tmp_path: Path) -> None:
    record = {"memory_usage": 50_000, "cpu_total_usage": 0, "system_cpu_usage": 0, "online_cpus": 1}
    path = write_recording(tmp_path / "short.jsonl", [record] * 5)

    result = ReplayRunner({"memory": {}}).run(load_samples(path))

    assert result.ticks == 5
    assert not result.converged
    assert not result.applied
    assert summarize(result)["update"] is None


def test_load_samples_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        list(load_samples(tmp_path / "missing.jsonl"))

    bad = tmp_path / "bad.jsonl"
    bad.write_text('{"memory_usage": 1, "cpu_total_usage": 0, "system_cpu_usage": 0, "online_cpus": 1}\n{oops\n')
    with pytest.raises(ConfigError, match="bad.jsonl:2"):
        list(load_samples(bad))


def test_load_samples_rejects_incomplete_records(tmp_path: Path) -> None:
    partial = tmp_path / "partial.jsonl"
    partial.write_text('{"memory_usage": 5}\n', encoding="utf-8")
    with pytest.raises(ConfigError, match=r"partial.jsonl:1: invalid sample: missing fields: cpu_total_usage"):
        list(load_samples(partial))

    scalar = tmp_path / "scalar.jsonl"
    scalar.write_text("5\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="scalar.jsonl:1"):
        list(load_samples(scalar))
