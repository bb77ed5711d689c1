"""Per-host polling loop for hoststat."""

import threading
import time
from collections import deque
from queue import Queue

import structlog

from hoststat.config import SamplerConfig
from hoststat.counters import CounterSource, PsutilCounterSource
from hoststat.errors import SamplerError
from hoststat.models import HostSample, SystemCpuInfo
from hoststat.samplers import (
    CpuDeltaSampler,
    LoadAverageSampler,
    MemorySampler,
    ProcessTreeBuilder,
    initialize,
)

log = structlog.get_logger()


class SystemMonitor:
    """
    Samples one host on a fixed interval.

    Runs in a separate daemon thread and pushes a HostSample per cycle to a
    thread-safe Queue. All samplers for the host are called from that one
    thread, so the CPU baseline is never updated concurrently. A failing
    sampler only empties its own field of the cycle's HostSample, except
    the load average, which reads as zeros.
    """

    def __init__(
        self,
        update_queue: Queue[HostSample],
        source: CounterSource | None = None,
        config: SamplerConfig | None = None,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Reads the host facts and takes the first CPU sample, which only
        establishes the baseline for the next one.

        Args:
            update_queue: Thread-safe queue to push samples to.
            source: Counter source for the host. Defaults to the local host.
            config: Poll rate, retry budget and history size.

        Raises:
            CounterUnavailable: If the host facts cannot be read.
        """
        self._queue = update_queue
        self._config = config or SamplerConfig()
        self._poll_rate = max(0.1, self._config.poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cpu_history: deque[SystemCpuInfo] = deque(maxlen=self._config.history_size)

        source = source if source is not None else PsutilCounterSource()
        self.facts = initialize(source)
        self._load = LoadAverageSampler(source)
        self._processes = ProcessTreeBuilder(source, self.facts)
        self._memory = MemorySampler(source, self.facts, self._config.swap_retry)
        self._cpu = CpuDeltaSampler(source)

        try:
            self._cpu.sample()
        except SamplerError as e:
            log.warning("cpu_baseline_failed", error=str(e))

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()
        log.info("monitor_started", poll_rate=self._poll_rate)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            log.info("monitor_stopped")

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.collect())
            except Exception:
                # Keep the loop alive; the next cycle starts from scratch
                log.exception("sample_cycle_failed")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

    def collect(self) -> HostSample:
        """Run every sampler once and return the results of this cycle."""
        sample = HostSample(captured_at=time.time())

        try:
            sample.cpu = self._cpu.sample()
            self._cpu_history.append(sample.cpu)
        except SamplerError as e:
            sample.errors.append(e)

        try:
            sample.memory = self._memory.sample()
        except SamplerError as e:
            sample.errors.append(e)

        count = self._config.load_average_count
        try:
            sample.load_average = self._load.sample(count)
        except SamplerError as e:
            sample.load_average = LoadAverageSampler.zeros(count)
            sample.errors.append(e)

        try:
            sample.processes = self._processes.build_snapshot()
        except SamplerError as e:
            sample.errors.append(e)

        if sample.errors:
            log.warning(
                "sample_incomplete",
                failed=len(sample.errors),
                errors=[str(e) for e in sample.errors],
            )
        return sample

    def get_cpu_history(self) -> list[SystemCpuInfo]:
        """Get the recent CPU samples, oldest first."""
        return list(self._cpu_history)
