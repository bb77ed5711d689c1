"""Host and process samplers.

Each sampler turns raw kernel counters from a CounterSource into values that
can be compared from one monitoring cycle to the next:

- initialize(): static host facts, called once at startup
- LoadAverageSampler: fixed-point load averages to floats
- ProcessTreeBuilder: one snapshot of the whole process table
- MemorySampler: memory and swap usage
- CpuDeltaSampler: CPU utilization since the previous call

Samplers are not thread-safe. Call them from one thread per host.
"""

import structlog

from hoststat.config import RetryPolicy
from hoststat.counters import LOAD_AVERAGE_SCALE, ZOMBIE_STATE, CounterSource
from hoststat.errors import CounterUnavailable
from hoststat.models import (
    HostFacts,
    PreviousCpuSample,
    ProcessRecord,
    ProcessSnapshotEntry,
    ProcessStatus,
    SwapDevice,
    SystemCpuInfo,
    SystemMemoryInfo,
)
from hoststat.retry import ConfigurationChanged, retry_on_change

log = structlog.get_logger()

# Seconds of CPU time to the unit of ProcessSnapshotEntry.cpu_time_centiseconds
CPU_TIME_SCALE = 10

# CPU percentages are reported in tenths of a percent
PERCENT_SCALE = 1000

MAX_LOAD_AVERAGES = 3


def _pages_to_kb(pages: int, page_size: int) -> int:
    return pages * page_size // 1024


def _share(delta: int, total_delta: int) -> int:
    """Return delta as tenths of a percent of total_delta, within 0..1000."""
    if delta <= 0:
        return 0
    return min(PERCENT_SCALE, int(PERCENT_SCALE * delta / total_delta))


def initialize(source: CounterSource) -> HostFacts:
    """Capture the static facts later conversions depend on.

    Must run once before any sampler, and not concurrently with them.

    Raises:
        CounterUnavailable: If total memory, page size or CPU count cannot
            be read.
    """
    try:
        mem = source.memory()
        page_size = source.page_size()
        cpu_count = source.online_cpus()
    except CounterUnavailable as e:
        log.error("host_initialize_failed", query=e.query, error=e.message)
        raise

    facts = HostFacts(
        page_size=page_size,
        total_memory_kb=_pages_to_kb(mem.real_total, page_size),
        cpu_count=cpu_count,
    )
    log.info(
        "host_initialized",
        page_size=facts.page_size,
        total_memory_kb=facts.total_memory_kb,
        cpu_count=facts.cpu_count,
    )
    return facts


class LoadAverageSampler:
    """Reads the 1, 5 and 15 minute load averages."""

    def __init__(self, source: CounterSource) -> None:
        self._source = source

    @staticmethod
    def zeros(count: int = MAX_LOAD_AVERAGES) -> list[float]:
        """Value reported for a cycle whose sample failed.

        sample() raises instead of returning this, so the caller still sees
        the failure. SystemMonitor substitutes it in the cycle's HostSample.
        """
        return [0.0] * count

    def sample(self, count: int = MAX_LOAD_AVERAGES) -> list[float]:
        """
        Return ``count`` load averages, most recent interval first.

        Only the requested slots of the kernel's load average array are read.

        Args:
            count: Number of averages wanted, 1 to 3.

        Raises:
            ValueError: If count is out of range.
            CounterUnavailable: If the load counters cannot be read, or hold
                fewer than ``count`` values.
        """
        if not 1 <= count <= MAX_LOAD_AVERAGES:
            raise ValueError(f"count must be between 1 and {MAX_LOAD_AVERAGES}, got {count}")

        try:
            cpu = self._source.cpu()
            if len(cpu.loadavg) < count:
                raise CounterUnavailable(
                    "cpu", f"{len(cpu.loadavg)} load averages reported, {count} requested"
                )
        except CounterUnavailable as e:
            log.error("load_average_failed", query=e.query, error=e.message)
            raise

        return [cpu.loadavg[i] / LOAD_AVERAGE_SCALE for i in range(count)]


class ProcessTreeBuilder:
    """Builds a snapshot of every process on the host.

    The process table is read in two steps: its size is discovered first,
    then at most that many entries are fetched. Processes started between
    the two steps are missing from the snapshot; they show up in the next
    one.
    """

    def __init__(self, source: CounterSource, facts: HostFacts) -> None:
        self._source = source
        self._facts = facts

    def build_snapshot(self) -> list[ProcessSnapshotEntry]:
        """
        Return one entry per process, in the order the kernel listed them.

        A process whose usage cannot be read is still included, with zero
        usage and the PARTIAL status bit.

        Raises:
            CounterUnavailable: If the process table cannot be read.
        """
        try:
            treesize = self._source.count_processes()
        except CounterUnavailable as e:
            log.error("process_discovery_failed", query=e.query, error=e.message)
            raise

        if treesize <= 0:
            return []

        try:
            records = self._source.list_processes(treesize)
        except CounterUnavailable as e:
            log.error("process_enumeration_failed", query=e.query, error=e.message)
            raise

        return [self._entry(record) for record in records[:treesize]]

    def _entry(self, record: ProcessRecord) -> ProcessSnapshotEntry:
        if record.state == ZOMBIE_STATE:
            # A zombie has no usage left to query
            return ProcessSnapshotEntry(
                pid=record.pid,
                ppid=record.ppid,
                start_time=record.start_time,
                cpu_time_centiseconds=0,
                memory_kb=0,
                status=ProcessStatus.ZOMBIE,
            )

        try:
            usage = self._source.process_usage(record)
        except CounterUnavailable as e:
            log.debug("process_usage_unavailable", pid=record.pid, error=e.message)
            return ProcessSnapshotEntry(
                pid=record.pid,
                ppid=record.ppid,
                start_time=record.start_time,
                cpu_time_centiseconds=0,
                memory_kb=0,
                status=ProcessStatus.PARTIAL,
            )

        resident_pages = usage.data_resident_pages + usage.text_resident_pages
        return ProcessSnapshotEntry(
            pid=record.pid,
            ppid=record.ppid,
            start_time=record.start_time,
            cpu_time_centiseconds=CPU_TIME_SCALE * (usage.user_time + usage.system_time),
            memory_kb=_pages_to_kb(resident_pages, self._facts.page_size),
        )


class MemorySampler:
    """Samples memory and swap usage.

    The swap device table is read with a count followed by a list. If a
    device is added in between, the list comes back longer than the count
    and the read is retried, up to ``retry.max_attempts`` times.
    """

    def __init__(
        self,
        source: CounterSource,
        facts: HostFacts,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._source = source
        self._facts = facts
        self._retry = retry or RetryPolicy()

    def sample(self) -> SystemMemoryInfo:
        """
        Return current memory and swap usage.

        Raises:
            CounterUnavailable: If memory or swap counters cannot be read.
            TransientRaceExceeded: If the swap table changed on every attempt.
        """
        try:
            mem = self._source.memory()
        except CounterUnavailable as e:
            log.error("memory_sample_failed", query=e.query, error=e.message)
            raise

        page_size = self._facts.page_size
        used_pages = mem.real_total - mem.real_free - mem.cached
        devices = retry_on_change(self._read_swap_table, self._retry, what="swap device table")

        total = 0
        used = 0
        for device in devices:
            # Page counts are unreliable while a device is being removed
            if device.in_transition:
                continue
            total += device.pages
            used += device.pages - device.free_pages

        return SystemMemoryInfo(
            total_memory_kb=self._facts.total_memory_kb,
            used_memory_kb=_pages_to_kb(used_pages, page_size),
            total_swap_kb=_pages_to_kb(total, page_size),
            used_swap_kb=_pages_to_kb(used, page_size),
        )

    def _read_swap_table(self) -> list[SwapDevice]:
        try:
            count = self._source.swap_device_count()
        except CounterUnavailable as e:
            log.error("swap_count_failed", query=e.query, error=e.message)
            raise

        if count == 0:
            log.debug("no_swap_configured")
            return []

        # One spare slot: a device added after the count still fits
        try:
            devices = self._source.swap_devices(count + 1)
        except CounterUnavailable as e:
            log.error("swap_list_failed", query=e.query, error=e.message)
            raise

        if len(devices) > count:
            raise ConfigurationChanged(f"expected {count} swap devices, listed {len(devices)}")
        return devices


class CpuDeltaSampler:
    """Computes CPU utilization between consecutive calls.

    Tick counters are divided by the core count before the delta is taken.
    A category whose per-core value went backwards, as after a change in
    core count or a reset of that counter alone, reports zero, and no
    category exceeds 100%. The first call has nothing to compare against
    and reports zeros.
    """

    def __init__(self, source: CounterSource, previous: PreviousCpuSample | None = None) -> None:
        self._source = source
        self.previous = previous if previous is not None else PreviousCpuSample()

    def sample(self) -> SystemCpuInfo:
        """
        Return user, system and wait utilization since the previous call.

        Raises:
            CounterUnavailable: If CPU counters cannot be read. The baseline
                is left untouched.
        """
        try:
            cpu = self._source.cpu()
        except CounterUnavailable as e:
            log.error("cpu_sample_failed", query=e.query, error=e.message)
            raise

        if cpu.ncpus < 1:
            log.error("cpu_sample_failed", query="cpu", error=f"invalid core count {cpu.ncpus}")
            raise CounterUnavailable("cpu", f"invalid core count {cpu.ncpus}")

        user = cpu.user // cpu.ncpus
        system = cpu.system // cpu.ncpus
        wait = cpu.wait // cpu.ncpus
        idle = cpu.idle // cpu.ncpus
        total = user + system + wait + idle

        prev = self.previous
        total_delta = total - prev.total
        result = SystemCpuInfo(user=0, system=0, wait=0)

        if prev.initialized:
            if total_delta > 0:
                result = SystemCpuInfo(
                    user=_share(user - prev.user, total_delta),
                    system=_share(system - prev.system, total_delta),
                    wait=_share(wait - prev.wait, total_delta),
                )
            else:
                log.debug("cpu_counters_stalled", total_delta=total_delta)

        prev.user = user
        prev.system = system
        prev.wait = wait
        prev.total = total
        prev.initialized = True

        return result
