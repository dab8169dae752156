"""Rate and percentage math for turning cumulative counters into display values."""

from systempulse.models import CpuTicks


def clamp_percent(value: float) -> float:
    """Clamp a percentage into [0, 100]."""
    return min(100.0, max(0.0, value))


def percent_of(used: float, total: float) -> float:
    """used/total as a percentage, 0 when total is 0."""
    if total <= 0:
        return 0.0
    return clamp_percent(used / total * 100.0)


def cpu_usage_percent(previous: CpuTicks | None, current: CpuTicks) -> float:
    """
    CPU usage over the interval between two cumulative tick readings.

    busy = userΔ + systemΔ + niceΔ, total = busy + idleΔ. A missing previous
    reading (first sample) gives 0. Negative deltas (wraparound) contribute 0.
    """
    if previous is None:
        return 0.0

    user = max(0.0, current.user - previous.user)
    system = max(0.0, current.system - previous.system)
    idle = max(0.0, current.idle - previous.idle)
    nice = max(0.0, current.nice - previous.nice)

    busy = user + system + nice
    total = busy + idle
    if total <= 0:
        return 0.0
    return clamp_percent(busy / total * 100.0)


def byte_rate(previous: int | None, current: int, elapsed_seconds: float) -> float:
    """
    Bytes per second between two cumulative counter readings.

    Returns 0 on the first sample, on a counter reset (current < previous),
    and when no time has elapsed. Never negative.
    """
    if previous is None or elapsed_seconds <= 0 or current < previous:
        return 0.0
    return max(0.0, (current - previous) / elapsed_seconds)


def uptime_seconds(now: float, boot_time: float) -> float:
    """Seconds since boot, never negative."""
    return max(0.0, now - boot_time)
