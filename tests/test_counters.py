"""Tests for the psutil-backed counter source."""

import os
from unittest.mock import patch

import psutil
import pytest

from hoststat.counters import LOAD_AVERAGE_SCALE, PsutilCounterSource
from hoststat.errors import CounterUnavailable
from hoststat.models import ProcessRecord


@pytest.fixture
def psutil_source() -> PsutilCounterSource:
    return PsutilCounterSource()


class TestPsutilCounterSource:
    """Tests against the local host."""

    def test_page_size(self, psutil_source):
        """Test page size is a positive power of two."""
        size = psutil_source.page_size()

        assert size > 0
        assert size & (size - 1) == 0

    def test_memory(self, psutil_source):
        """Test memory counters are consistent."""
        mem = psutil_source.memory()

        assert mem.real_total > 0
        assert 0 <= mem.real_free <= mem.real_total
        assert mem.cached >= 0

    def test_cpu(self, psutil_source):
        """Test CPU counters carry ticks, a core count and load averages."""
        cpu = psutil_source.cpu()

        assert cpu.ncpus >= 1
        assert cpu.user + cpu.system + cpu.wait + cpu.idle > 0
        assert len(cpu.loadavg) == 3
        assert all(isinstance(value, int) for value in cpu.loadavg)

    def test_load_average_round_trip(self, psutil_source):
        """Test fixed-point load averages decode close to psutil's values."""
        with patch("psutil.getloadavg", return_value=(1.25, 0.5, 0.0)):
            cpu = psutil_source.cpu()

        assert [value / LOAD_AVERAGE_SCALE for value in cpu.loadavg] == [1.25, 0.5, 0.0]

    def test_swap_devices_match_count(self, psutil_source):
        """Test the swap list never exceeds the swap count."""
        count = psutil_source.swap_device_count()

        assert len(psutil_source.swap_devices(count + 1)) == count

    def test_lists_own_process(self, psutil_source):
        """Test the process list includes the test runner."""
        count = psutil_source.count_processes()
        records = psutil_source.list_processes(count + 100)

        assert count > 0
        assert os.getpid() in {record.pid for record in records}

    def test_list_respects_limit(self, psutil_source):
        """Test no more than ``limit`` records are returned."""
        assert len(psutil_source.list_processes(1)) == 1

    def test_own_process_usage(self, psutil_source):
        """Test usage of the current process is readable."""
        record = ProcessRecord(pid=os.getpid(), ppid=os.getppid(), start_time=0.0, state="running")

        usage = psutil_source.process_usage(record)

        assert usage.data_resident_pages + usage.text_resident_pages > 0
        assert usage.user_time >= 0
        assert usage.system_time >= 0

    def test_vanished_process_usage(self, psutil_source):
        """Test a missing process is reported as CounterUnavailable."""
        record = ProcessRecord(pid=os.getpid(), ppid=0, start_time=0.0, state="running")

        with patch("psutil.Process", side_effect=psutil.NoSuchProcess(record.pid)):
            with pytest.raises(CounterUnavailable) as excinfo:
                psutil_source.process_usage(record)

        assert excinfo.value.query == "process_usage"

    def test_memory_error_translated(self, psutil_source):
        """Test psutil errors become CounterUnavailable."""
        with patch("psutil.virtual_memory", side_effect=OSError("boom")):
            with pytest.raises(CounterUnavailable) as excinfo:
                psutil_source.memory()

        assert "boom" in str(excinfo.value)
