from __future__ import annotations

import dataclasses
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .categories import (
    CPU,
    CPU_AR,
    DEFAULT_MEMORY_MAX,
    DEFAULT_MEMORY_MIN,
    DEFAULT_THRESHOLD,
    MEMORY,
    MEMORY_AR,
    CpuBaseline,
    MemoryBaseline,
    copy_config,
)
from .cpu import average_float, cpu_percent
from .limits import LimitApplier
from .memory import (
    amplitude,
    average,
    bias_toward,
    check_memory_end_condition,
    generate_memory_weight,
    get_extreme_values,
    percent,
    process_memory_stats,
    weighted_average,
)
from .observer import Observer
from .sample import StatsSample
from .series import utc_now_ts


DEFAULT_LIMIT = 10

HealthCheck = Callable[[str], bool]

logger = logging.getLogger(__name__)


@dataclass
class Workload:
    id: str
    name: str = ""
    service_name: str = ""


class Watcher:
    """Drive the sampling, prediction and limit application of one workload.

    Samples are offered through a single-slot mailbox and augmented copies
    are published through another; both drop values when full. The loop runs
    once per tick, waits for a sample, checks the workload health and feeds
    the active predictors. Once every activated category has converged the
    limits are applied and the loop ends.
    """

    def __init__(
        self,
        workload: Workload,
        config: Mapping[str, Mapping[str, str]],
        applier: LimitApplier,
        health_check: HealthCheck,
        limit: int = DEFAULT_LIMIT,
        tick_rate_sec: float = 1.0,
        poll_interval_sec: float = 0.1,
    ) -> None:
        self.workload = workload
        self.config = copy_config(config)
        self.applier = applier
        self.health_check = health_check
        self.limit = limit
        self.tick_rate_sec = tick_rate_sec
        self.poll_interval_sec = poll_interval_sec
        self.observer = Observer.create(limit)

        self.input: "queue.Queue[StatsSample]" = queue.Queue(maxsize=1)
        self.output: "queue.Queue[StatsSample]" = queue.Queue(maxsize=1)

        self.started = False
        self.finished = False
        self.terminated = False

        self._stop = threading.Event()
        self._resumed = threading.Event()
        self._resumed.set()
        self._thread: Optional[threading.Thread] = None
        self._on_exit: Optional[Callable[["Watcher"], None]] = None

        self._memory = MemoryBaseline.from_config(self.config)
        self._cpu = CpuBaseline.from_config(self.config)
        if self._memory is not None:
            self.config[MEMORY_AR] = {}
            self._min, self._max, self._threshold = self._memory.min, self._memory.max, self._memory.threshold
        else:
            self._min, self._max, self._threshold = 0, 0, 0
        if self._cpu is not None:
            self.config[CPU_AR] = {}

        self._lowest = 0
        self._highest = 0
        self._memory_turn = 0
        self._cpu_turn = 0
        self._prev_cpu: Optional[tuple[int, int]] = None

    # ───────────────────────────── mailboxes ─────────────────────────────
    def offer(self, sample: StatsSample) -> bool:
        """Hand a sample to the loop; dropped if the previous one is pending."""
        try:
            self.input.put_nowait(sample)
        except queue.Full:
            return False
        return True

    def take(self) -> Optional[StatsSample]:
        """Latest augmented sample, or None if nothing new was published."""
        try:
            return self.output.get_nowait()
        except queue.Empty:
            return None

    def _publish(self, sample: StatsSample) -> None:
        try:
            self.output.put_nowait(sample)
        except queue.Full:
            # consumer is not reading; keep the loop moving
            return

    # ───────────────────────────── lifecycle ─────────────────────────────
    def start(self, on_exit: Optional[Callable[["Watcher"], None]] = None) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._on_exit = on_exit
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run, name=f"Watcher-{self.workload.name or self.workload.id}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Shut the loop down, e.g. when the process exits."""
        self._stop.set()
        self._resumed.set()
        if self._thread:
            self._thread.join(timeout=5)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    def run(self) -> None:
        logger.info("workload started with activated autorange", extra=self._log_context())
        try:
            while not self._stop.is_set():
                if self._stop.wait(timeout=self.tick_rate_sec):
                    break
                sample = self._next_sample()
                if sample is None:
                    continue
                if not self.tick(sample):
                    break
        finally:
            self.terminated = True
            if self._on_exit is not None:
                self._on_exit(self)

    def _next_sample(self) -> Optional[StatsSample]:
        """Block until a sample arrives; None when paused or stopping.

        A pause is only noticed here, between ticks. The loop holds until
        resumed and then starts a fresh tick.
        """
        while not self._stop.is_set():
            if self.paused:
                logger.info("autorange paused", extra=self._log_context())
                self._resumed.wait()
                logger.info("autorange resumed", extra=self._log_context())
                return None
            try:
                return self.input.get(timeout=self.poll_interval_sec)
            except queue.Empty:
                continue
        return None

    # ───────────────────────────── tick ─────────────────────────────
    def tick(self, sample: StatsSample) -> bool:
        """Process one sample. Returns False once the watcher is done."""
        # No predictions from a workload that is not running
        if not self.health_check(self.workload.id):
            logger.info("workload exited, removing autorange", extra=self._log_context())
            return False

        if not self.started:
            # Peak usage restarts with the observation
            sample = dataclasses.replace(sample, memory_max_usage=sample.memory_usage)
            self._start_routine(sample)
        elif self.observer.converged and not self.finished:
            self.finished = self.applier.apply(
                self.workload.id, self.config, self.observer, sleep=self._stop.wait
            )
            if self.finished:
                logger.info("workload now has limits applied", extra=self._log_context())
            return False

        for category in list(self.config):
            if category == MEMORY and not self.observer.memory.prediction_done:
                self._memory_tick(sample.memory_usage)
            elif category == CPU and not self.observer.cpu.prediction_done:
                self._cpu_tick(sample)

        self._publish(sample.augmented(self.config))
        return True

    def _start_routine(self, sample: StatsSample) -> None:
        usage = sample.memory_usage
        self._lowest = usage
        now = utc_now_ts()

        if self._memory is not None:
            if not self._memory.configured:
                self._min = max(usage, DEFAULT_MEMORY_MIN)
                threshold = self._threshold or DEFAULT_THRESHOLD
                self._max = max(self._min + threshold * percent(self._min), DEFAULT_MEMORY_MAX)
            self.observer.memory.started = now
            self.observer.memory.prediction_done = False

        if self._cpu is not None:
            if self._cpu.has_range:
                self.observer.cpu.percent.append(float(self._cpu.midpoint_per_core(sample.online_cpus)))
            self.observer.cpu.started = now
            self.observer.cpu.prediction_done = False

        self.started = True

    def _memory_tick(self, usage: int) -> None:
        ts = self.observer.memory

        # The bracket follows usage; extremes feed the weighting
        self._min, self._max = process_memory_stats(usage, self._min, self._max, self._threshold)
        self._lowest, self._highest = get_extreme_values(usage, self._lowest, self._highest)

        ts.min.append(self._min)
        ts.max.append(self._max)
        ts.usage.append(usage)

        self._memory_turn += 1
        if self._memory_turn < self.limit:
            return
        self._memory_turn = 0
        self._close_memory_window(usage)

    def _close_memory_window(self, usage: int) -> None:
        ts = self.observer.memory
        predicted = ts.predicted

        ts.highest.append(self._highest)
        ts.lowest.append(self._lowest)
        ts.amplitude.append(amplitude(self._highest, self._lowest))

        predicted.min.append(bias_toward(average(ts.min.values()), self._lowest))
        predicted.max.append(bias_toward(average(ts.max.values()), self._highest))

        self._highest, self._lowest = 0, usage

        medium_amplitude = average(ts.amplitude.values())
        predicted.threshold.append(medium_amplitude)
        thresholds = predicted.threshold.values()
        self._threshold = weighted_average(thresholds, generate_memory_weight(thresholds, thresholds))

        ts.prediction_done = check_memory_end_condition(len(predicted.min), self.limit, medium_amplitude)

        mins, maxs = predicted.min.values(), predicted.max.values()
        av_min = weighted_average(mins, generate_memory_weight(mins, ts.lowest.values()))
        av_max = weighted_average(maxs, generate_memory_weight(maxs, ts.highest.values()))

        derived = self.config[MEMORY_AR]
        derived["nmin"] = str(av_min + percent(av_min) * self._threshold)
        derived["nmax"] = str(av_max + percent(av_max) * self._threshold)
        derived["opti"] = str(self._threshold)
        derived["usage"] = str(usage)
        logger.debug("memory window closed", extra={**self._log_context(), "memoryAR": dict(derived)})

    def _cpu_tick(self, sample: StatsSample) -> None:
        if self._prev_cpu is None:
            self._prev_cpu = (sample.cpu_total_usage, sample.system_cpu_usage)
            return

        ts = self.observer.cpu
        prev_total, prev_system = self._prev_cpu
        value = cpu_percent(
            sample.cpu_total_usage, prev_total, sample.system_cpu_usage, prev_system, sample.online_cpus
        )
        ts.percent.append(value)
        ts.usage.append(float(sample.cpu_total_usage - prev_total))
        self._prev_cpu = (sample.cpu_total_usage, sample.system_cpu_usage)

        self._cpu_turn += 1
        if self._cpu_turn < self.limit:
            return
        self._cpu_turn = 0

        ts.predicted.percent.append(average_float(ts.percent.values()))
        ts.predicted.usage.append(average_float(ts.usage.values()))
        if len(ts.predicted.percent) >= self.limit:
            best_percent = average_float(ts.predicted.percent.values())
            best_usage = average_float(ts.predicted.usage.values())
            derived = self.config[CPU_AR]
            derived["percentOpti"] = f"{best_percent:.3f}"
            derived["usageOpti"] = f"{best_usage:.0f}"
            ts.prediction_done = True

    # ───────────────────────────── re-application ─────────────────────────────
    def retarget(self, workload: Workload) -> bool:
        """Apply the committed limits to a replacement workload of the same service."""
        self.workload = workload
        logger.info("re-applying limits to new workload", extra=self._log_context())
        return self.applier.apply(workload.id, self.config, self.observer)

    def _log_context(self) -> dict:
        return {
            "container": self.workload.name or self.workload.id,
            "service": self.workload.service_name,
        }
