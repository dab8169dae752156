"""Sampler: independent probes, one per metric family, run concurrently.

Every probe has a fallback value. A probe that raises or does not finish in
time contributes its fallback instead, so one failing metric source never
blocks or corrupts the readings of the others.
"""

import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from systempulse.log import get_logger
from systempulse.models import (
    BatteryStatus,
    CpuTicks,
    McpServer,
    NetworkTotals,
    ProcessInfo,
    SessionInfo,
    UsageStats,
)
from systempulse.sessions import find_sessions
from systempulse.sources import MetricsSource
from systempulse.usage import load_mcp_servers, load_usage_stats

logger = get_logger("sampler")


@dataclass(slots=True, frozen=True)
class Probe:
    """A named reading with the value to use when the reading fails."""

    name: str
    read: Callable[[], Any]
    fallback: Any


@dataclass(slots=True, frozen=True)
class Readings:
    """
    Raw probe outputs for one cycle.

    ``cpu_ticks`` and ``network`` are None when their probe failed; the
    snapshot builder decides what that means for the stored baselines.
    """

    cpu_ticks: CpuTicks | None = None
    gpu_percent: float = 0.0
    memory: tuple[int, int] = (0, 0)
    network: NetworkTotals | None = None
    battery: BatteryStatus | None = None
    load_average: tuple[float, float, float] = (0.0, 0.0, 0.0)
    boot_time: float | None = None
    processes: tuple[ProcessInfo, ...] = ()
    sessions: tuple[SessionInfo, ...] = ()
    usage: UsageStats = field(default_factory=UsageStats.empty)
    mcp_servers: tuple[McpServer, ...] = ()
    failed: frozenset[str] = frozenset()


def top_processes(processes: Iterable[ProcessInfo], count: int) -> tuple[ProcessInfo, ...]:
    """The ``count`` busiest processes, cpu-descending."""
    ranked = sorted(processes, key=lambda p: p.cpu_percent, reverse=True)
    return tuple(ranked[:count])


class Sampler:
    """Runs every probe for one cycle on a worker pool."""

    def __init__(
        self,
        source: MetricsSource,
        *,
        top_process_count: int = 8,
        usage_log_path: Path | None = None,
        mcp_config_paths: Sequence[Path] = (),
        probe_timeout: float = 1.5,
        today: Callable[[], date] = date.today,
    ) -> None:
        """
        Initialize the Sampler.

        Args:
            source: Where raw OS readings come from.
            top_process_count: How many processes to keep, busiest first.
            usage_log_path: Assistant usage log; None disables the usage probe.
            mcp_config_paths: Config files to scan for MCP servers.
            probe_timeout: Upper bound (seconds) a cycle waits for its probes.
            today: Returns the local date used to find today's usage entry.
        """
        self._source = source
        self._top_process_count = top_process_count
        self._usage_log_path = usage_log_path
        self._mcp_config_paths = tuple(mcp_config_paths)
        self._probe_timeout = probe_timeout
        self._today = today
        self._probes = self._build_probes()
        self._pool_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._in_flight: dict[str, Future] = {}

    @property
    def probe_names(self) -> list[str]:
        return [probe.name for probe in self._probes]

    def _build_probes(self) -> list[Probe]:
        source = self._source
        probes = [
            Probe("cpu", source.cpu_ticks, None),
            Probe("gpu", source.gpu_usage, 0.0),
            Probe("memory", source.memory, (0, 0)),
            Probe("network", source.network_totals, None),
            Probe("battery", source.battery, None),
            Probe("load_average", lambda: tuple(source.load_average()), (0.0, 0.0, 0.0)),
            Probe("uptime", source.boot_time, None),
            Probe(
                "processes",
                lambda: top_processes(source.processes(), self._top_process_count),
                (),
            ),
            Probe("sessions", lambda: find_sessions(source.command_lines()), ()),
            Probe("mcp_servers", lambda: load_mcp_servers(self._mcp_config_paths), ()),
        ]
        if self._usage_log_path is not None:
            probes.append(
                Probe(
                    "usage",
                    lambda: load_usage_stats(self._usage_log_path, self._today()),
                    UsageStats.empty(),
                )
            )
        return probes

    def _pool(self) -> ThreadPoolExecutor:
        """The worker pool, created on first use and again after ``close()``."""
        with self._pool_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=len(self._probes),
                    thread_name_prefix="probe",
                )
            return self._executor

    def sample(self) -> Readings:
        """
        Run all probes concurrently and collect their results.

        A probe still running from an earlier cycle is not submitted again;
        it contributes its fallback until it finishes, so a hung probe holds
        at most one worker.
        """
        executor = self._pool()
        values: dict[str, Any] = {}
        failed: set[str] = set()
        futures: dict[str, Future] = {}
        for probe in self._probes:
            previous = self._in_flight.get(probe.name)
            if previous is not None and not previous.done():
                failed.add(probe.name)
                values[probe.name] = probe.fallback
                logger.debug("probe_still_running", probe=probe.name)
                continue
            futures[probe.name] = self._in_flight[probe.name] = executor.submit(probe.read)
        deadline = time.monotonic() + self._probe_timeout

        for probe in self._probes:
            future = futures.get(probe.name)
            if future is None:
                continue
            try:
                values[probe.name] = future.result(timeout=max(0.0, deadline - time.monotonic()))
            except FutureTimeout:
                failed.add(probe.name)
                values[probe.name] = probe.fallback
                logger.debug("probe_timeout", probe=probe.name, timeout=self._probe_timeout)
            except Exception as exc:
                failed.add(probe.name)
                values[probe.name] = probe.fallback
                logger.debug("probe_failed", probe=probe.name, error=repr(exc))

        return Readings(
            cpu_ticks=values["cpu"],
            gpu_percent=values["gpu"],
            memory=values["memory"],
            network=values["network"],
            battery=values["battery"],
            load_average=values["load_average"],
            boot_time=values["uptime"],
            processes=values["processes"],
            sessions=values["sessions"],
            usage=values.get("usage", UsageStats.empty()),
            mcp_servers=values["mcp_servers"],
            failed=frozenset(failed),
        )

    def close(self, wait: bool = False) -> None:
        """
        Shut down the worker pool, dropping probes that have not started.

        The next ``sample()`` starts a fresh pool, so a closed sampler can be
        reused.
        """
        with self._pool_lock:
            executor, self._executor = self._executor, None
            self._in_flight.clear()
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=True)
