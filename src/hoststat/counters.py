"""Kernel counter access.

A CounterSource is everything the samplers know about the host. The shipped
implementation reads counters through psutil; tests substitute scripted
sources.
"""

import abc
import mmap

import psutil

from hoststat.errors import CounterUnavailable
from hoststat.models import (
    CpuCounters,
    MemoryCounters,
    ProcessRecord,
    ProcessUsage,
    SwapDevice,
)

# Kernel fixed-point load averages carry this many fractional bits
LOAD_AVERAGE_SHIFT = 16
LOAD_AVERAGE_SCALE = 1 << LOAD_AVERAGE_SHIFT

# CPU time is reported to samplers in ticks of this frequency
TICKS_PER_SECOND = 100

ZOMBIE_STATE = psutil.STATUS_ZOMBIE


class CounterSource(abc.ABC):
    """Read access to the host's kernel counters.

    Every method raises CounterUnavailable when the underlying query fails.
    """

    @abc.abstractmethod
    def page_size(self) -> int:
        """Return the kernel page size in bytes."""

    @abc.abstractmethod
    def online_cpus(self) -> int:
        """Return the number of online CPUs."""

    @abc.abstractmethod
    def memory(self) -> MemoryCounters:
        """Return physical memory counters in pages."""

    @abc.abstractmethod
    def cpu(self) -> CpuCounters:
        """Return aggregate CPU ticks, core count and load averages."""

    @abc.abstractmethod
    def swap_device_count(self) -> int:
        """Return the number of configured swap devices."""

    @abc.abstractmethod
    def swap_devices(self, capacity: int) -> list[SwapDevice]:
        """List swap devices.

        ``capacity`` is the table size the caller expects to need. The
        returned list may be longer if devices were added since the count.
        """

    @abc.abstractmethod
    def count_processes(self) -> int:
        """Return the current size of the process table."""

    @abc.abstractmethod
    def list_processes(self, limit: int) -> list[ProcessRecord]:
        """Return at most ``limit`` process table entries, in kernel order."""

    @abc.abstractmethod
    def process_usage(self, record: ProcessRecord) -> ProcessUsage:
        """Return resource usage of a live (non-zombie) process."""


class PsutilCounterSource(CounterSource):
    """CounterSource backed by psutil for the current host.

    psutil reports bytes and float seconds; this class converts them back to
    the page, tick and fixed-point units the samplers work in.
    """

    def __init__(self) -> None:
        self._page_size = mmap.PAGESIZE

    def page_size(self) -> int:
        return self._page_size

    def online_cpus(self) -> int:
        count = psutil.cpu_count(logical=True)
        if not count:
            raise CounterUnavailable("cpu_count", "online CPU count is undetermined")
        return count

    def memory(self) -> MemoryCounters:
        try:
            vm = psutil.virtual_memory()
        except (psutil.Error, OSError) as e:
            raise CounterUnavailable("virtual_memory", str(e)) from e

        page = self._page_size
        return MemoryCounters(
            real_total=vm.total // page,
            real_free=vm.free // page,
            # Only some platforms report a page cache
            cached=getattr(vm, "cached", 0) // page,
        )

    def cpu(self) -> CpuCounters:
        try:
            times = psutil.cpu_times()
            ncpus = psutil.cpu_count(logical=True)
            loadavg = psutil.getloadavg()
        except (psutil.Error, OSError) as e:
            raise CounterUnavailable("cpu_times", str(e)) from e
        if not ncpus:
            raise CounterUnavailable("cpu_times", "online CPU count is undetermined")

        def ticks(seconds: float) -> int:
            return int(seconds * TICKS_PER_SECOND)

        return CpuCounters(
            user=ticks(times.user + getattr(times, "nice", 0.0)),
            system=ticks(times.system),
            wait=ticks(getattr(times, "iowait", 0.0)),
            idle=ticks(times.idle),
            ncpus=ncpus,
            loadavg=tuple(int(value * LOAD_AVERAGE_SCALE) for value in loadavg),
        )

    def _swap(self) -> SwapDevice | None:
        try:
            swap = psutil.swap_memory()
        except (psutil.Error, OSError) as e:
            raise CounterUnavailable("swap_memory", str(e)) from e
        if swap.total <= 0:
            return None
        page = self._page_size
        # psutil only exposes the sum over all devices
        return SwapDevice(path="*", pages=swap.total // page, free_pages=swap.free // page)

    def swap_device_count(self) -> int:
        return 0 if self._swap() is None else 1

    def swap_devices(self, capacity: int) -> list[SwapDevice]:
        device = self._swap()
        return [] if device is None else [device]

    def count_processes(self) -> int:
        try:
            return len(psutil.pids())
        except (psutil.Error, OSError) as e:
            raise CounterUnavailable("process_count", str(e)) from e

    def list_processes(self, limit: int) -> list[ProcessRecord]:
        records: list[ProcessRecord] = []
        try:
            for proc in psutil.process_iter(attrs=["pid", "ppid", "create_time", "status"]):
                if len(records) >= limit:
                    break
                info = proc.info
                records.append(
                    ProcessRecord(
                        pid=info["pid"],
                        ppid=info.get("ppid") or 0,
                        start_time=info.get("create_time") or 0.0,
                        state=info.get("status") or "?",
                    )
                )
        except (psutil.Error, OSError) as e:
            raise CounterUnavailable("process_list", str(e)) from e
        return records

    def process_usage(self, record: ProcessRecord) -> ProcessUsage:
        try:
            proc = psutil.Process(record.pid)
            with proc.oneshot():
                mem = proc.memory_info()
                times = proc.cpu_times()
        except (psutil.Error, OSError) as e:
            raise CounterUnavailable("process_usage", f"pid {record.pid}: {e}") from e

        page = self._page_size
        # Not every platform splits out the resident text segment
        text = min(getattr(mem, "text", 0), mem.rss)
        return ProcessUsage(
            data_resident_pages=(mem.rss - text) // page,
            text_resident_pages=text // page,
            user_time=times.user,
            system_time=times.system,
        )
