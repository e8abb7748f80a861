from __future__ import annotations

import time
from typing import Dict, List, Tuple

from autorange.core.categories import CPU_AR, MEMORY_AR
from autorange.core.limits import MIB, LimitApplier, ResourceUpdate
from autorange.core.sample import StatsSample
from autorange.core.watcher import Watcher, Workload


class Recorder:
    def __init__(self, failures: int = 0) -> None:
        self.calls: List[Tuple[str, ResourceUpdate]] = []
        self.failures = failures

    def __call__(self, target: str, update: ResourceUpdate) -> None:
        self.calls.append((target, update))
        if len(self.calls) <= self.failures:
            raise RuntimeError("engine unavailable")


def make_watcher(
    config: Dict[str, Dict[str, str]],
    recorder: Recorder,
    limit: int = 10,
    healthy: bool = True,
    max_attempts: int = 10,
) -> Watcher:
    applier = LimitApplier(recorder, max_attempts=max_attempts, retry_interval_sec=0)
    return Watcher(
        Workload(id="c1", name="web_1", service_name="web"),
        config,
        applier,
        health_check=lambda _id: healthy,
        limit=limit,
        tick_rate_sec=0,
        poll_interval_sec=0.01,
    )


def memory_sample(usage: int) -> StatsSample:
    return StatsSample(memory_usage=usage, cpu_total_usage=0, system_cpu_usage=0, online_cpus=1)


def cpu_sample(step: int, usage: int = 50_000) -> StatsSample:
    return StatsSample(
        memory_usage=usage,
        cpu_total_usage=50 * step,
        system_cpu_usage=500 * step,
        online_cpus=2,
    )


def run_until_done(watcher: Watcher, samples) -> int:
    ticks = 0
    for sample in samples:
        ticks += 1
        if not watcher.tick(sample):
            return ticks
    return ticks


def test_constant_memory_usage_converges_and_applies_once() -> None:
    recorder = Recorder()
    watcher = make_watcher({"memory": {"threshold%": "10"}}, recorder)

    ticks = run_until_done(watcher, (memory_sample(50_000) for _ in range(200)))

    # six windows of ten samples with an amplitude of one, then the apply tick
    assert ticks == 61
    assert watcher.finished
    assert watcher.config[MEMORY_AR]["nmin"] == "50550"
    assert watcher.config[MEMORY_AR]["nmax"] == "50717"
    assert watcher.config[MEMORY_AR]["opti"] == "1"
    assert len(recorder.calls) == 1
    target, update = recorder.calls[0]
    assert target == "c1"
    assert update.memory == 10 * MIB
    assert update.memory_reservation == 6 * MIB
    assert update.memory_swap == -1


def test_outputs_carry_the_derived_configuration() -> None:
    watcher = make_watcher({"memory": {}}, Recorder())
    assert watcher.take() is None

    assert watcher.tick(memory_sample(50_000))
    published = watcher.take()
    assert published is not None
    assert MEMORY_AR in published.autorange
    assert "memory" in published.autorange
    # only one slot: a second publish without a read is dropped
    watcher.tick(memory_sample(50_000))
    watcher.tick(memory_sample(50_000))
    assert watcher.take() is not None
    assert watcher.take() is None


def test_unhealthy_workload_is_never_limited() -> None:
    recorder = Recorder()
    watcher = make_watcher({"memory": {}}, recorder, healthy=False)

    assert not watcher.tick(memory_sample(50_000))
    assert not watcher.started
    assert not watcher.finished
    assert recorder.calls == []


def test_failed_apply_leaves_watcher_unfinished() -> None:
    recorder = Recorder(failures=100)
    watcher = make_watcher({"memory": {}}, recorder, limit=2, max_attempts=3)

    run_until_done(watcher, (memory_sample(50_000) for _ in range(50)))

    assert len(recorder.calls) == 3
    assert not watcher.finished
    assert watcher.observer.converged


def test_cpu_percent_converges() -> None:
    recorder = Recorder()
    watcher = make_watcher({"cpu%": {}}, recorder, limit=3)

    # first sample only seeds the previous counters
    ticks = run_until_done(watcher, (cpu_sample(step) for step in range(1, 100)))

    assert ticks == 11
    assert watcher.config[CPU_AR]["percentOpti"] == "20.000"
    assert watcher.config[CPU_AR]["usageOpti"] == "50"
    assert watcher.config[CPU_AR]["numCPU"] == "1"
    _, update = recorder.calls[0]
    assert update.cpuset_cpus == "0"
    assert update.cpu_realtime_runtime == 50
    assert update.memory is None


def test_cpu_range_seeds_midpoint_per_core() -> None:
    watcher = make_watcher({"cpu%": {"min": "60", "max": "70"}}, Recorder())
    watcher.tick(cpu_sample(1))
    assert watcher.observer.cpu.percent.values() == [32.0]


def test_converged_category_is_latched() -> None:
    recorder = Recorder()
    watcher = make_watcher({"memory": {}, "cpu%": {}}, recorder, limit=3)

    for step in range(1, 7):
        assert watcher.tick(cpu_sample(step))
    assert watcher.observer.memory.prediction_done
    assert not watcher.observer.converged
    frozen = dict(watcher.config[MEMORY_AR])
    usage_points = len(watcher.observer.memory.usage)

    for step in range(7, 11):
        assert watcher.tick(cpu_sample(step, usage=900_000))
    assert watcher.config[MEMORY_AR] == frozen
    assert len(watcher.observer.memory.usage) == usage_points
    assert watcher.observer.converged
    assert recorder.calls == []

    assert not watcher.tick(cpu_sample(11))
    assert len(recorder.calls) == 1


def test_pause_and_resume_match_an_uninterrupted_run() -> None:
    reference = make_watcher({"memory": {"threshold%": "10"}}, Recorder())
    run_until_done(reference, (memory_sample(50_000 + (i % 4) * 1000) for i in range(200)))

    exited: List[Watcher] = []
    recorder = Recorder()
    watcher = make_watcher({"memory": {"threshold%": "10"}}, recorder)
    watcher.start(on_exit=exited.append)

    for i in range(200):
        # state of the previous tick, which has fully published
        done = watcher.started and watcher.observer.converged
        assert watcher.offer(memory_sample(50_000 + (i % 4) * 1000))
        if done:
            break
        watcher.output.get(timeout=2)
        if i == 20:
            watcher.pause()
            time.sleep(0.05)
            assert watcher.paused
            watcher.resume()

    watcher.join(timeout=2)
    assert not watcher.is_alive()
    assert watcher.terminated
    assert exited == [watcher]
    assert watcher.finished
    assert watcher.config == reference.config
    assert len(recorder.calls) == 1


def test_stop_ends_an_idle_loop() -> None:
    exited: List[Watcher] = []
    watcher = make_watcher({"memory": {}}, Recorder())
    watcher.start(on_exit=exited.append)
    assert watcher.is_alive()

    watcher.stop()

    assert not watcher.is_alive()
    assert watcher.terminated
    assert exited == [watcher]


def test_input_mailbox_keeps_the_pending_sample() -> None:
    watcher = make_watcher({"memory": {}}, Recorder())
    first, second = memory_sample(1), memory_sample(2)

    assert watcher.offer(first)
    assert not watcher.offer(second)
    assert watcher.input.get_nowait() is first
    assert watcher.input.empty()


def test_first_sample_restarts_peak_usage() -> None:
    watcher = make_watcher({"memory": {}}, Recorder())
    first = StatsSample(
        memory_usage=50_000, cpu_total_usage=0, system_cpu_usage=0, online_cpus=1, memory_max_usage=900_000
    )
    watcher.tick(first)
    published = watcher.take()
    assert published is not None
    assert published.memory_max_usage == 50_000

    later = StatsSample(
        memory_usage=40_000, cpu_total_usage=0, system_cpu_usage=0, online_cpus=1, memory_max_usage=900_000
    )
    watcher.tick(later)
    published = watcher.take()
    assert published is not None
    assert published.memory_max_usage == 900_000
