"""Tests for the SystemMonitor class."""

import threading
from queue import Queue

import pytest

from systempulse.builder import SnapshotBuilder
from systempulse.config import load_settings
from systempulse.counters import CounterStore
from systempulse.history import HistoryRing
from systempulse.models import Snapshot
from systempulse.monitor import SystemMonitor, create_monitor
from systempulse.probes import Sampler


@pytest.fixture
def monitor(builder):
    monitor = SystemMonitor(builder, poll_rate=0.1)
    yield monitor
    monitor.stop()


class BlockingBuilder:
    """Builder whose build() waits until released, to hold a cycle in flight."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self.builds = 0

    def build(self) -> Snapshot:
        self.builds += 1
        self.entered.set()
        self.release.wait(5.0)
        return Snapshot(timestamp=float(self.builds))

    def close(self) -> None:
        self.release.set()


class TestSystemMonitor:
    """Tests for SystemMonitor class."""

    def test_monitor_creation(self, builder):
        """Test SystemMonitor can be instantiated."""
        monitor = SystemMonitor(builder)

        assert monitor.poll_rate == 2.0
        assert not monitor.is_running
        assert monitor.latest is None
        assert monitor.history.capacity == 30

    def test_poll_rate_minimum(self, monitor):
        """Test poll rate has a minimum value."""
        monitor.poll_rate = 0.01  # Very small value
        assert monitor.poll_rate >= 0.1  # Should be clamped to minimum

    def test_monitor_start_stop(self, monitor):
        """Test SystemMonitor can be started and stopped."""
        assert not monitor.is_running

        monitor.start()
        assert monitor.is_running

        monitor.stop()
        assert not monitor.is_running

    def test_monitor_start_idempotent(self, monitor):
        """Test starting an already running monitor is safe."""
        monitor.start()
        thread1 = monitor._thread

        monitor.start()  # Should not create a new thread
        thread2 = monitor._thread

        assert thread1 is thread2

    def test_daemon_thread(self, monitor):
        """Test monitor thread is a daemon thread."""
        monitor.start()

        assert monitor._thread is not None
        assert monitor._thread.daemon is True
        assert monitor._thread.name == "SystemMonitor"

    def test_monitor_publishes_to_queue(self, builder):
        """Snapshots are pushed to the update queue from the background thread."""
        queue: Queue[Snapshot] = Queue()
        monitor = SystemMonitor(builder, poll_rate=0.1, update_queue=queue)
        monitor.start()

        try:
            snapshot1 = queue.get(timeout=2.0)
            snapshot2 = queue.get(timeout=2.0)
            assert isinstance(snapshot1, Snapshot)
            assert isinstance(snapshot2, Snapshot)
        finally:
            monitor.stop()


class TestPublishing:
    """Subscribers and history."""

    def test_refresh_publishes_to_subscribers_and_history(self, monitor):
        received = []
        monitor.subscribe(received.append)

        snapshot = monitor.refresh()

        assert received == [snapshot]
        assert monitor.latest is snapshot
        assert monitor.history.latest() is snapshot

    def test_unsubscribe(self, monitor):
        received = []
        unsubscribe = monitor.subscribe(received.append)
        unsubscribe()
        unsubscribe()  # Safe to call twice

        monitor.refresh()

        assert received == []

    def test_failing_subscriber_does_not_block_others(self, monitor):
        received = []

        def broken(snapshot):
            raise ValueError("render error")

        monitor.subscribe(broken)
        monitor.subscribe(received.append)

        snapshot = monitor.refresh()

        assert received == [snapshot]

    def test_history_is_bounded(self, builder):
        monitor = SystemMonitor(builder, history=HistoryRing(capacity=3))
        for _ in range(5):
            monitor.refresh()

        assert len(monitor.history) == 3

    def test_failed_cycle_keeps_previous_snapshot(self, builder):
        monitor = SystemMonitor(builder)
        first = monitor.refresh()

        def explode():
            raise RuntimeError("unexpected")

        builder.build = explode

        assert monitor.refresh() is None
        assert monitor.latest is first
        assert monitor.failed_cycles == 1
        assert len(monitor.history) == 1


class TestCoalescing:
    """Only one cycle is ever in flight."""

    def test_overlapping_refresh_is_skipped(self):
        builder = BlockingBuilder()
        monitor = SystemMonitor(builder)

        worker = threading.Thread(target=monitor.refresh)
        worker.start()
        assert builder.entered.wait(2.0)

        # A second request while the first cycle runs is dropped, not queued
        assert monitor.refresh() is None
        assert monitor.skipped_cycles == 1

        builder.release.set()
        worker.join(timeout=2.0)

        assert builder.builds == 1
        assert monitor.latest is not None

    def test_slow_cycle_coalesces_missed_ticks(self):
        builder = BlockingBuilder()
        monitor = SystemMonitor(builder, poll_rate=0.1)
        monitor.start()

        try:
            assert builder.entered.wait(2.0)
            # Hold the first cycle across several intervals
            threading.Event().wait(0.45)
            builder.release.set()
            threading.Event().wait(0.05)

            assert monitor.skipped_cycles >= 3
            # Missed ticks were skipped, not replayed back to back
            assert builder.builds <= 2
        finally:
            monitor.stop()


class TestCreateMonitor:
    """Wiring from settings."""

    def test_create_monitor_uses_settings(self, source, tmp_path):
        settings = load_settings(
            poll_interval=0.5,
            history_capacity=12,
            usage_log_path=tmp_path / "stats-cache.json",
            mcp_config_paths=[],
        )
        monitor = create_monitor(settings, source=source)

        try:
            assert monitor.poll_rate == 0.5
            assert monitor.history.capacity == 12
            snapshot = monitor.refresh()
            assert snapshot.gpu_usage_percent == pytest.approx(12.5)
            assert snapshot.usage.today is None
        finally:
            monitor.stop()

    def test_psutil_monitor_collects_data(self, tmp_path):
        """End to end against the real host."""
        settings = load_settings(usage_log_path=tmp_path / "none.json", mcp_config_paths=[])
        monitor = create_monitor(settings)

        try:
            first = monitor.refresh()
            second = monitor.refresh()

            assert first.memory_total_bytes > 0
            assert 0.0 <= second.cpu_usage_percent <= 100.0
            assert second.network_in_bytes_per_sec >= 0.0
            assert len(second.top_processes) <= 8
        finally:
            monitor.stop()


def test_monitor_restarts_after_stop(source, clock):
    queue: Queue[Snapshot] = Queue()
    sampler = Sampler(source)
    monitor = SystemMonitor(
        SnapshotBuilder(sampler, CounterStore(), clock=clock),
        poll_rate=0.1,
        update_queue=queue,
    )

    try:
        monitor.start()
        assert queue.get(timeout=2.0) is not None
        monitor.stop()
        while not queue.empty():
            queue.get_nowait()

        monitor.start()
        first = queue.get(timeout=2.0)
        second = queue.get(timeout=2.0)

        assert first.memory_total_bytes == source.mem[1]
        assert second.memory_total_bytes == source.mem[1]
        assert monitor.failed_cycles == 0
    finally:
        monitor.stop()
