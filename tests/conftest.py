"""Shared fixtures: a scriptable MetricsSource and a clock for deterministic cycles."""

import pytest

from systempulse.builder import SnapshotBuilder
from systempulse.counters import CounterStore
from systempulse.models import (
    BatteryStatus,
    CpuTicks,
    NetworkTotals,
    ProcessCommand,
    ProcessInfo,
)
from systempulse.probes import Sampler


class FakeMetricsSource:
    """MetricsSource with settable readings and per-method fault injection."""

    def __init__(self) -> None:
        self.ticks = CpuTicks(user=10, system=5, idle=85, nice=0)
        self.gpu = 12.5
        self.mem = (4 * 1024**3, 16 * 1024**3)
        self.net = NetworkTotals(bytes_in=1000, bytes_out=500)
        self.batt: BatteryStatus | None = BatteryStatus(percent=80, charging=True)
        self.load = (1.5, 1.0, 0.5)
        self.boot = 1_000.0
        self.procs = [
            ProcessInfo(pid=10, name="idle", cpu_percent=0.1, memory_percent=0.2),
            ProcessInfo(pid=11, name="busy", cpu_percent=90.0, memory_percent=5.0),
            ProcessInfo(pid=12, name="medium", cpu_percent=30.0, memory_percent=1.0),
        ]
        self.commands = [
            ProcessCommand(pid=200, cpu_percent=4.0, rss_bytes=200 * 1024**2, command="/usr/local/bin/claude"),
            ProcessCommand(pid=201, cpu_percent=1.0, rss_bytes=10 * 1024**2, command="/usr/bin/vim notes.txt"),
        ]
        self.failing: set[str] = set()

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def cpu_ticks(self) -> CpuTicks:
        self._check("cpu_ticks")
        return self.ticks

    def gpu_usage(self) -> float:
        self._check("gpu_usage")
        return self.gpu

    def memory(self) -> tuple[int, int]:
        self._check("memory")
        return self.mem

    def network_totals(self) -> NetworkTotals:
        self._check("network_totals")
        return self.net

    def battery(self) -> BatteryStatus | None:
        self._check("battery")
        return self.batt

    def load_average(self) -> tuple[float, float, float]:
        self._check("load_average")
        return self.load

    def boot_time(self) -> float:
        self._check("boot_time")
        return self.boot

    def processes(self) -> list[ProcessInfo]:
        self._check("processes")
        return list(self.procs)

    def command_lines(self) -> list[ProcessCommand]:
        self._check("command_lines")
        return list(self.commands)


class FakeClock:
    """Callable clock advanced by hand."""

    def __init__(self, start: float = 10_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def source() -> FakeMetricsSource:
    return FakeMetricsSource()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sampler(source):
    sampler = Sampler(source, top_process_count=2, probe_timeout=2.0)
    yield sampler
    sampler.close()


@pytest.fixture
def builder(sampler, clock) -> SnapshotBuilder:
    return SnapshotBuilder(sampler, CounterStore(), clock=clock)
