"""Data models for hoststat."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntFlag

from hoststat.errors import SamplerError


class ProcessStatus(IntFlag):
    """Status bits attached to a process snapshot entry."""

    NONE = 0
    ZOMBIE = 1
    PARTIAL = 2  # usage query failed, usage fields left at zero


class SwapFlags(IntFlag):
    """Transitional states of a swap device."""

    NONE = 0
    DELETING = 1
    PENDING_DELETE = 2


@dataclass(slots=True, frozen=True)
class HostFacts:
    """Static facts about the host, captured once at startup."""

    page_size: int  # Bytes
    total_memory_kb: int
    cpu_count: int


@dataclass(slots=True, frozen=True)
class ProcessSnapshotEntry:
    """Immutable snapshot of a single process."""

    pid: int
    ppid: int
    start_time: float
    cpu_time_centiseconds: float  # seconds * 10, cumulative
    memory_kb: int  # Resident
    status: ProcessStatus = ProcessStatus.NONE

    @property
    def is_zombie(self) -> bool:
        """Check if the process is a zombie."""
        return bool(self.status & ProcessStatus.ZOMBIE)


@dataclass(slots=True, frozen=True)
class SystemMemoryInfo:
    """Host memory and swap usage."""

    total_memory_kb: int
    used_memory_kb: int
    total_swap_kb: int
    used_swap_kb: int

    @property
    def memory_percent(self) -> float:
        """Get used memory as a percentage of total memory."""
        if self.total_memory_kb <= 0:
            return 0.0
        return 100.0 * self.used_memory_kb / self.total_memory_kb

    @property
    def swap_percent(self) -> float:
        """Get used swap as a percentage of total swap."""
        if self.total_swap_kb <= 0:
            return 0.0
        return 100.0 * self.used_swap_kb / self.total_swap_kb


@dataclass(slots=True, frozen=True)
class SystemCpuInfo:
    """
    Host CPU utilization over the last sampling interval.

    Values are tenths of a percent: 1000 means 100.0%.
    """

    user: int
    system: int
    wait: int

    @property
    def user_percent(self) -> float:
        """Get user time in percent."""
        return self.user / 10

    @property
    def system_percent(self) -> float:
        """Get system time in percent."""
        return self.system / 10

    @property
    def wait_percent(self) -> float:
        """Get I/O wait time in percent."""
        return self.wait / 10


@dataclass(slots=True)
class PreviousCpuSample:
    """
    Baseline for CPU delta computation.

    Holds the last observed per-core tick totals. One instance per monitored
    host; it must not be shared between concurrently running samplers.
    """

    user: int = 0
    system: int = 0
    wait: int = 0
    total: int = 0
    initialized: bool = False


# Raw counter records, as returned by a CounterSource.


@dataclass(slots=True, frozen=True)
class MemoryCounters:
    """Physical memory counters, in pages."""

    real_total: int
    real_free: int
    cached: int


@dataclass(slots=True, frozen=True)
class CpuCounters:
    """CPU ticks aggregated over all cores, plus fixed-point load averages."""

    user: int
    system: int
    wait: int
    idle: int
    ncpus: int
    loadavg: Sequence[int] = (0, 0, 0)


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """One entry of the kernel process table."""

    pid: int
    ppid: int
    start_time: float
    state: str  # 'running', 'sleeping', 'zombie', etc.


@dataclass(slots=True, frozen=True)
class ProcessUsage:
    """Resource usage of a live process."""

    data_resident_pages: int
    text_resident_pages: int
    user_time: float  # Seconds
    system_time: float  # Seconds


@dataclass(slots=True, frozen=True)
class SwapDevice:
    """One configured swap device."""

    path: str
    pages: int
    free_pages: int
    flags: SwapFlags = SwapFlags.NONE

    @property
    def in_transition(self) -> bool:
        """Check if the device is being or about to be removed."""
        return bool(self.flags & (SwapFlags.DELETING | SwapFlags.PENDING_DELETE))


@dataclass(slots=True)
class HostSample:
    """Everything collected from one host in one monitoring cycle.

    A field is None when its sampler failed during the cycle, except
    load_average, which holds zeros. The failure is listed in ``errors``.
    """

    captured_at: float
    cpu: SystemCpuInfo | None = None
    memory: SystemMemoryInfo | None = None
    load_average: list[float] | None = None
    processes: list[ProcessSnapshotEntry] | None = None
    errors: list[SamplerError] = field(default_factory=list)
