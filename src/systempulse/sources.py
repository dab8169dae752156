"""OS metric sources.

``MetricsSource`` is the capability interface the sampler depends on: one
method per probe family. ``PsutilMetricsSource`` is the portable
implementation backed by psutil, with a macOS-only GPU reading via ``ioreg``.
"""

import os
import re
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

import psutil

from systempulse.log import get_logger
from systempulse.models import (
    BatteryStatus,
    CpuTicks,
    NetworkTotals,
    ProcessCommand,
    ProcessInfo,
)

logger = get_logger("sources")

DEFAULT_INTERFACE_PATTERN = r"^(en|eth|wl|ww)"

_GPU_UTILISATION = re.compile(
    r'"(?:Device Utilization %|GPU Activity\(%\))"\s*=\s*(\d+(?:\.\d+)?)'
)


class ProbeError(RuntimeError):
    """Raised when an OS metric source cannot produce a reading."""


@runtime_checkable
class MetricsSource(Protocol):
    """Raw OS readings, one method per probe family."""

    def cpu_ticks(self) -> CpuTicks:
        """Cumulative user/system/idle/nice CPU time since boot."""

    def gpu_usage(self) -> float:
        """Instantaneous GPU utilisation percentage."""

    def memory(self) -> tuple[int, int]:
        """(used_bytes, total_bytes) of physical memory."""

    def network_totals(self) -> NetworkTotals:
        """Cumulative bytes in/out summed across physical interfaces."""

    def battery(self) -> BatteryStatus | None:
        """Battery reading, or None when the host has no battery."""

    def load_average(self) -> tuple[float, float, float]:
        """1, 5 and 15 minute load averages."""

    def boot_time(self) -> float:
        """Boot time as a Unix timestamp."""

    def processes(self) -> Sequence[ProcessInfo]:
        """Process table rows (pid, name, %cpu, %mem), in no particular order."""

    def command_lines(self) -> Sequence[ProcessCommand]:
        """Process table rows with full command lines."""


class PsutilMetricsSource:
    """
    MetricsSource backed by psutil.

    The process table is scanned at most once per ``table_max_age`` seconds and
    shared between ``processes()`` and ``command_lines()``. psutil derives
    per-process CPU% from the time since the previous scan of the same
    process, so two back-to-back scans in one cycle would report near-zero
    values for the second one.
    """

    _TABLE_ATTRS = ["pid", "name", "cpu_percent", "memory_percent", "memory_info", "cmdline"]

    def __init__(
        self,
        interface_pattern: str = DEFAULT_INTERFACE_PATTERN,
        command_timeout: float = 1.0,
        table_max_age: float = 0.5,
    ) -> None:
        """
        Initialize the PsutilMetricsSource.

        Args:
            interface_pattern: Regex matching physical network interface names.
            command_timeout: Upper bound (seconds) for external commands.
            table_max_age: How long a process table scan is reused (seconds).
        """
        self._interface_re = re.compile(interface_pattern)
        self._command_timeout = command_timeout
        self._table_max_age = table_max_age
        self._table_lock = threading.Lock()
        self._table: list[dict] | None = None
        self._table_at = 0.0

    def cpu_ticks(self) -> CpuTicks:
        times = psutil.cpu_times()
        return CpuTicks(
            user=times.user,
            system=times.system,
            idle=times.idle,
            nice=getattr(times, "nice", 0.0),  # absent on Windows
        )

    def gpu_usage(self) -> float:
        """Read GPU utilisation from the IOAccelerator registry on macOS; 0 elsewhere."""
        if sys.platform != "darwin":
            return 0.0

        try:
            result = subprocess.run(
                ["ioreg", "-r", "-d", "1", "-w", "0", "-c", "IOAccelerator"],
                capture_output=True,
                text=True,
                check=True,
                timeout=self._command_timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ProbeError(f"ioreg failed: {exc}") from exc

        match = _GPU_UTILISATION.search(result.stdout)
        return float(match.group(1)) if match else 0.0

    def memory(self) -> tuple[int, int]:
        mem = psutil.virtual_memory()
        if hasattr(mem, "wired"):
            # macOS: psutil exposes active and wired pages but not compressed ones
            used = mem.active + mem.wired
        else:
            used = mem.used
        return used, mem.total

    def network_totals(self) -> NetworkTotals:
        bytes_in = 0
        bytes_out = 0
        for name, counters in psutil.net_io_counters(pernic=True).items():
            if not self._interface_re.search(name):
                continue
            bytes_in += counters.bytes_recv
            bytes_out += counters.bytes_sent
        return NetworkTotals(bytes_in=bytes_in, bytes_out=bytes_out)

    def battery(self) -> BatteryStatus | None:
        sensors_battery = getattr(psutil, "sensors_battery", None)
        if sensors_battery is None:
            return None
        reading = sensors_battery()
        if reading is None:
            return None
        percent = min(100, max(0, int(round(reading.percent))))
        return BatteryStatus(percent=percent, charging=bool(reading.power_plugged))

    def load_average(self) -> tuple[float, float, float]:
        one, five, fifteen = psutil.getloadavg()
        return (one, five, fifteen)

    def boot_time(self) -> float:
        return psutil.boot_time()

    def processes(self) -> list[ProcessInfo]:
        return [
            ProcessInfo(
                pid=info["pid"],
                name=info.get("name") or "",
                cpu_percent=info.get("cpu_percent") or 0.0,
                memory_percent=info.get("memory_percent") or 0.0,
            )
            for info in self._process_table()
        ]

    def command_lines(self) -> list[ProcessCommand]:
        rows: list[ProcessCommand] = []
        for info in self._process_table():
            cmdline = info.get("cmdline") or []
            mem_info = info.get("memory_info")
            rows.append(
                ProcessCommand(
                    pid=info["pid"],
                    cpu_percent=info.get("cpu_percent") or 0.0,
                    rss_bytes=mem_info.rss if mem_info else 0,
                    command=" ".join(cmdline) if cmdline else info.get("name") or "",
                )
            )
        return rows

    def _process_table(self) -> list[dict]:
        """
        Scan the process table, reusing a recent scan when there is one.

        Handles AccessDenied and ZombieProcess errors by skipping the process.
        """
        with self._table_lock:
            now = time.monotonic()
            if self._table is not None and now - self._table_at < self._table_max_age:
                return self._table

            table: list[dict] = []
            for proc in psutil.process_iter(attrs=self._TABLE_ATTRS):
                try:
                    info = proc.info
                    if info.get("pid") is None:
                        continue
                    table.append(info)
                except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                    # Processes that died mid-scan or that we may not inspect
                    continue

            self._table = table
            self._table_at = now
            return table


def terminate_processes(matches: Callable[[str], bool]) -> list[int]:
    """
    Send SIGTERM to every process whose full command line ``matches``.

    The calling process is never signalled. Processes that exit or refuse the
    signal are skipped. Returns the pids that were signalled.
    """
    own_pid = os.getpid()
    terminated: list[int] = []
    for proc in psutil.process_iter(attrs=["pid", "cmdline"]):
        try:
            info = proc.info
            cmdline = info.get("cmdline")
            if info["pid"] == own_pid or not cmdline or not matches(" ".join(cmdline)):
                continue
            proc.terminate()
            terminated.append(info["pid"])
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    logger.info("processes_terminated", count=len(terminated))
    return terminated
