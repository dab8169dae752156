"""Scheduling engine for systempulse."""

import threading
import time
from collections.abc import Callable
from queue import Queue

from systempulse.builder import SnapshotBuilder
from systempulse.config import PulseSettings
from systempulse.counters import CounterStore
from systempulse.history import HistoryRing
from systempulse.log import get_logger
from systempulse.models import Snapshot
from systempulse.probes import Sampler
from systempulse.sources import MetricsSource, PsutilMetricsSource

logger = get_logger("monitor")

Subscriber = Callable[[Snapshot], None]


class SystemMonitor:
    """
    System monitor that builds a Snapshot on a fixed interval.

    Runs in a separate daemon thread and publishes each Snapshot to
    subscribers, the history ring and (optionally) a thread-safe Queue.
    Only one cycle is ever in flight: a tick that arrives while a cycle is
    still running is skipped rather than queued.
    """

    def __init__(
        self,
        builder: SnapshotBuilder,
        poll_rate: float = 2.0,
        history: HistoryRing | None = None,
        update_queue: Queue[Snapshot] | None = None,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            builder: Produces one Snapshot per cycle.
            poll_rate: How often to sample the system (in seconds). Default 2.0s.
            history: Ring the snapshots are appended to. A 30-entry ring by default.
            update_queue: Optional thread-safe queue to push snapshots to.
        """
        self._builder = builder
        self._poll_rate = max(0.1, poll_rate)
        self._history = history if history is not None else HistoryRing()
        self._queue = update_queue
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cycle_lock = threading.Lock()
        self._subscribers_lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._latest: Snapshot | None = None
        self._skipped_cycles = 0
        self._failed_cycles = 0

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

    @property
    def history(self) -> HistoryRing:
        return self._history

    @property
    def latest(self) -> Snapshot | None:
        """The most recently published snapshot."""
        return self._latest

    @property
    def skipped_cycles(self) -> int:
        """Ticks dropped because a cycle was already in flight."""
        return self._skipped_cycles

    @property
    def failed_cycles(self) -> int:
        """Cycles discarded because the snapshot could not be built."""
        return self._failed_cycles

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for every published snapshot.

        Callbacks run on the monitor thread. Returns a function that removes
        the subscription.
        """
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

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
        logger.info("monitor_started", poll_rate=self._poll_rate)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread and release the probe workers.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._builder.close()
        logger.info("monitor_stopped", skipped_cycles=self._skipped_cycles)

    def refresh(self) -> Snapshot | None:
        """
        Run one cycle now.

        Returns the published Snapshot, or None if another cycle was already
        in flight (the request is coalesced into it) or the cycle failed.
        """
        if not self._cycle_lock.acquire(blocking=False):
            self._skipped_cycles += 1
            logger.debug("cycle_skipped", reason="in_flight")
            return None
        try:
            try:
                snapshot = self._builder.build()
            except Exception:
                # Discard the cycle; the previous snapshot stays current
                self._failed_cycles += 1
                logger.exception("cycle_failed")
                return None
            self._publish(snapshot)
            return snapshot
        finally:
            self._cycle_lock.release()

    def _publish(self, snapshot: Snapshot) -> None:
        self._latest = snapshot
        self._history.append(snapshot)
        if self._queue is not None:
            self._queue.put(snapshot)

        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("subscriber_failed", subscriber=repr(callback))

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            self.refresh()

            next_tick += self._poll_rate
            now = time.monotonic()
            if now > next_tick:
                # The cycle overran; coalesce the missed ticks instead of
                # running them back to back.
                missed = int((now - next_tick) // self._poll_rate) + 1
                self._skipped_cycles += missed
                next_tick += missed * self._poll_rate
                logger.debug("cycle_overrun", missed_ticks=missed)

            # Wait until the next tick or until stop is requested
            self._stop_event.wait(timeout=max(0.0, next_tick - now))


def create_monitor(
    settings: PulseSettings,
    source: MetricsSource | None = None,
    update_queue: Queue[Snapshot] | None = None,
) -> SystemMonitor:
    """Wire a SystemMonitor from settings, using psutil unless a source is given."""
    if source is None:
        source = PsutilMetricsSource(
            interface_pattern=settings.interface_pattern,
            command_timeout=settings.command_timeout,
        )
    sampler = Sampler(
        source,
        top_process_count=settings.top_process_count,
        usage_log_path=settings.usage_log_path,
        mcp_config_paths=settings.mcp_config_paths,
        probe_timeout=settings.probe_timeout,
    )
    return SystemMonitor(
        SnapshotBuilder(sampler, CounterStore()),
        poll_rate=settings.poll_interval,
        history=HistoryRing(settings.history_capacity),
        update_queue=update_queue,
    )
