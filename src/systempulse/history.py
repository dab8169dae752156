"""History Ring: bounded FIFO of recent snapshots for graphs."""

import threading
from collections import deque
from enum import Enum

from systempulse.models import Snapshot


class Metric(Enum):
    """Metrics with a time series in the history ring."""

    CPU = "cpu"
    GPU = "gpu"
    MEMORY = "memory"
    NETWORK_IN = "network_in"
    NETWORK_OUT = "network_out"


_EXTRACTORS = {
    Metric.CPU: lambda s: s.cpu_usage_percent,
    Metric.GPU: lambda s: s.gpu_usage_percent,
    Metric.MEMORY: lambda s: s.memory_usage_percent,
    Metric.NETWORK_IN: lambda s: s.network_in_bytes_per_sec,
    Metric.NETWORK_OUT: lambda s: s.network_out_bytes_per_sec,
}


class HistoryRing:
    """
    Keeps the most recent ``capacity`` snapshots, oldest evicted first.

    Written by the monitor thread and read by the UI, so access is guarded
    by a lock.
    """

    def __init__(self, capacity: int = 30) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._lock = threading.Lock()
        self._snapshots: deque[Snapshot] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._snapshots.maxlen or 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def append(self, snapshot: Snapshot) -> None:
        """Add a snapshot, dropping the oldest one when full."""
        with self._lock:
            self._snapshots.append(snapshot)

    def snapshots(self) -> list[Snapshot]:
        """Retained snapshots, oldest first."""
        with self._lock:
            return list(self._snapshots)

    def latest(self) -> Snapshot | None:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def series(self, metric: Metric) -> list[float]:
        """Values of one metric across the retained snapshots, oldest first."""
        extract = _EXTRACTORS[metric]
        with self._lock:
            return [extract(snapshot) for snapshot in self._snapshots]

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()
