"""Counter Store: previous-cycle cumulative readings used for delta math."""

import threading

from systempulse.models import RawCounters


class CounterStore:
    """
    Holds the last committed RawCounters.

    No validation happens here; delta math and clamping live in the
    snapshot builder.
    """

    def __init__(self, initial: RawCounters | None = None) -> None:
        self._lock = threading.Lock()
        self._counters = initial if initial is not None else RawCounters()

    def read(self) -> RawCounters:
        """Return the last committed counters (all zeros before the first commit)."""
        with self._lock:
            return self._counters

    def commit(self, new: RawCounters) -> None:
        """Replace the stored counters."""
        with self._lock:
            self._counters = new

    def reset(self) -> None:
        """Drop all baselines so the next cycle is treated as a first sample."""
        self.commit(RawCounters())
