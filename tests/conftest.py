"""Shared test fixtures for hoststat."""

from collections.abc import Sequence

import pytest

from hoststat.counters import CounterSource
from hoststat.errors import CounterUnavailable
from hoststat.models import (
    CpuCounters,
    HostFacts,
    MemoryCounters,
    ProcessRecord,
    ProcessUsage,
    SwapDevice,
)

PAGE_SIZE = 4096


class FakeCounterSource(CounterSource):
    """Scripted CounterSource.

    Tests set the counter attributes directly. Method names listed in
    ``failing`` raise CounterUnavailable. Every call is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.page = PAGE_SIZE
        self.cpus = 2
        self.memory_counters = MemoryCounters(real_total=262144, real_free=65536, cached=32768)
        self.cpu_counters = CpuCounters(
            user=1000, system=500, wait=100, idle=8400, ncpus=2, loadavg=(65536, 32768, 16384)
        )
        self.swap_count = 0
        self.swap_table: list[SwapDevice] = []
        self.swap_counts: list[int] = []  # consumed first, then swap_count
        self.swap_tables: list[list[SwapDevice]] = []  # consumed first, then swap_table
        self.processes: list[ProcessRecord] = []
        self.process_count: int | None = None  # None means len(processes)
        self.usage: dict[int, ProcessUsage] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise CounterUnavailable(name, "simulated failure")

    def page_size(self) -> int:
        self._call("page_size")
        return self.page

    def online_cpus(self) -> int:
        self._call("online_cpus")
        return self.cpus

    def memory(self) -> MemoryCounters:
        self._call("memory")
        return self.memory_counters

    def cpu(self) -> CpuCounters:
        self._call("cpu")
        return self.cpu_counters

    def swap_device_count(self) -> int:
        self._call("swap_device_count")
        if self.swap_counts:
            return self.swap_counts.pop(0)
        return self.swap_count

    def swap_devices(self, capacity: int) -> list[SwapDevice]:
        self._call("swap_devices")
        if self.swap_tables:
            return self.swap_tables.pop(0)
        return list(self.swap_table)

    def count_processes(self) -> int:
        self._call("count_processes")
        if self.process_count is not None:
            return self.process_count
        return len(self.processes)

    def list_processes(self, limit: int) -> list[ProcessRecord]:
        self._call("list_processes")
        return self.processes[:limit]

    def process_usage(self, record: ProcessRecord) -> ProcessUsage:
        self._call(f"process_usage:{record.pid}")
        if "process_usage" in self.failing or record.pid not in self.usage:
            raise CounterUnavailable("process_usage", f"pid {record.pid}: no such process")
        return self.usage[record.pid]


class GuardedLoadAverage(Sequence):
    """Load average array that fails if a slot beyond ``readable`` is read."""

    def __init__(self, values: tuple[int, int, int], readable: int) -> None:
        self._values = values
        self._readable = readable

    def __len__(self) -> int:
        return len(self._values)

    def __getitem__(self, index):
        if isinstance(index, slice) or index >= self._readable:
            raise AssertionError(f"load average slot {index} was read")
        return self._values[index]


@pytest.fixture
def source() -> FakeCounterSource:
    """A scripted counter source with a 2-CPU, 1GB host and no swap."""
    return FakeCounterSource()


@pytest.fixture
def facts() -> HostFacts:
    """Host facts matching the default FakeCounterSource."""
    return HostFacts(page_size=PAGE_SIZE, total_memory_kb=1048576, cpu_count=2)


def cpu_counters(
    user: int, system: int, wait: int, idle: int, ncpus: int = 2
) -> CpuCounters:
    """Create CpuCounters with a default load average."""
    return CpuCounters(user=user, system=system, wait=wait, idle=idle, ncpus=ncpus)
