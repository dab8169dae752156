"""Snapshot Builder: one sampling pass reconciled against the Counter Store."""

import time
from collections.abc import Callable
from enum import Enum

from systempulse.counters import CounterStore
from systempulse.log import get_logger
from systempulse.models import RawCounters, Snapshot
from systempulse.probes import Readings, Sampler
from systempulse.rates import byte_rate, clamp_percent, cpu_usage_percent, percent_of, uptime_seconds

logger = get_logger("builder")


class CyclePhase(Enum):
    """Where the builder is in a sampling cycle."""

    IDLE = "idle"
    SAMPLING = "sampling"
    RECONCILING = "reconciling"
    PUBLISHED = "published"


class SnapshotBuilder:
    """
    Turns probe readings into an immutable Snapshot.

    Each ``build()`` samples every probe, derives CPU usage and network rates
    from the previous counters, and commits the new counters. Counters are
    committed only after the Snapshot has been fully built.
    """

    def __init__(
        self,
        sampler: Sampler,
        counters: CounterStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sampler = sampler
        self._counters = counters if counters is not None else CounterStore()
        self._clock = clock
        self._phase = CyclePhase.IDLE

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    @property
    def counters(self) -> CounterStore:
        return self._counters

    def build(self) -> Snapshot:
        """Run one cycle. Raises only on errors outside the probes; counters are then untouched."""
        try:
            self._phase = CyclePhase.SAMPLING
            now = self._clock()
            readings = self._sampler.sample()

            self._phase = CyclePhase.RECONCILING
            previous = self._counters.read()
            snapshot, committed = self.reconcile(readings, previous, now)
            self._counters.commit(committed)

            self._phase = CyclePhase.PUBLISHED
            if readings.failed:
                logger.debug("cycle_degraded", failed=sorted(readings.failed))
            return snapshot
        finally:
            self._phase = CyclePhase.IDLE

    @staticmethod
    def reconcile(
        readings: Readings,
        previous: RawCounters,
        now: float,
    ) -> tuple[Snapshot, RawCounters]:
        """
        Combine one cycle's readings with the previous counters.

        Returns the Snapshot and the counters to commit. A failed CPU probe
        keeps the previous CPU baseline. A failed network probe clears the
        network baseline, so the next good reading counts as a first sample
        instead of a delta spanning two intervals.
        """
        if readings.cpu_ticks is not None:
            baseline = previous.cpu_ticks if previous.cpu_sampled_at is not None else None
            cpu_percent = cpu_usage_percent(baseline, readings.cpu_ticks)
            cpu_ticks = readings.cpu_ticks
            cpu_sampled_at = now
        else:
            cpu_percent = 0.0
            cpu_ticks = previous.cpu_ticks
            cpu_sampled_at = previous.cpu_sampled_at

        if readings.network is not None:
            if previous.network_sampled_at is not None:
                elapsed = now - previous.network_sampled_at
                rate_in = byte_rate(previous.network_bytes_in, readings.network.bytes_in, elapsed)
                rate_out = byte_rate(previous.network_bytes_out, readings.network.bytes_out, elapsed)
            else:
                rate_in = rate_out = 0.0
            bytes_in = readings.network.bytes_in
            bytes_out = readings.network.bytes_out
            network_sampled_at: float | None = now
        else:
            rate_in = rate_out = 0.0
            bytes_in = bytes_out = 0
            network_sampled_at = None

        used, total = readings.memory
        uptime = uptime_seconds(now, readings.boot_time) if readings.boot_time else 0.0

        snapshot = Snapshot(
            timestamp=now,
            cpu_usage_percent=cpu_percent,
            gpu_usage_percent=clamp_percent(readings.gpu_percent),
            memory_used_bytes=used,
            memory_total_bytes=total,
            memory_usage_percent=percent_of(used, total),
            network_in_bytes_per_sec=rate_in,
            network_out_bytes_per_sec=rate_out,
            load_average=readings.load_average,
            battery=readings.battery,
            uptime_seconds=uptime,
            top_processes=readings.processes,
            sessions=readings.sessions,
            usage=readings.usage,
            mcp_servers=readings.mcp_servers,
        )
        committed = RawCounters(
            network_bytes_in=bytes_in,
            network_bytes_out=bytes_out,
            cpu_ticks=cpu_ticks,
            network_sampled_at=network_sampled_at,
            cpu_sampled_at=cpu_sampled_at,
        )
        return snapshot, committed

    def close(self) -> None:
        """Release the sampler's worker pool."""
        self._sampler.close()
