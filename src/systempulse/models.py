"""Data models for systempulse."""

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class CpuTicks:
    """Cumulative CPU time counters since boot."""

    user: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    nice: float = 0.0


@dataclass(slots=True, frozen=True)
class RawCounters:
    """
    Previous-cycle cumulative readings needed to compute deltas.

    A ``*_sampled_at`` of None means there is no baseline yet, so the next
    reading of that family is treated as a first sample.
    """

    network_bytes_in: int = 0
    network_bytes_out: int = 0
    cpu_ticks: CpuTicks = field(default_factory=CpuTicks)
    network_sampled_at: float | None = None
    cpu_sampled_at: float | None = None


@dataclass(slots=True, frozen=True)
class NetworkTotals:
    """Cumulative received/transmitted bytes across physical interfaces."""

    bytes_in: int
    bytes_out: int


@dataclass(slots=True, frozen=True)
class BatteryStatus:
    """Battery reading. Absence of a battery is represented by None, not by this."""

    percent: int
    charging: bool


@dataclass(slots=True, frozen=True)
class ProcessInfo:
    """Point-in-time view of a single process."""

    pid: int
    name: str
    cpu_percent: float
    memory_percent: float


@dataclass(slots=True, frozen=True)
class ProcessCommand:
    """A process table row with its full command line."""

    pid: int
    cpu_percent: float
    rss_bytes: int
    command: str


@dataclass(slots=True, frozen=True)
class SessionInfo:
    """A running assistant CLI session."""

    pid: int
    cpu_percent: float
    memory_mb: float


@dataclass(slots=True, frozen=True)
class DailyUsage:
    """Assistant usage for a single day.

    ``estimated_cost_usd`` is a heuristic (fixed 30/70 input/output split with
    flat per-model pricing), not a metered billing figure.
    """

    message_count: int
    session_count: int
    tool_call_count: int
    token_count: int
    estimated_cost_usd: float


@dataclass(slots=True, frozen=True)
class DailyActivity:
    """One day of the weekly trend."""

    date: str  # yyyy-mm-dd
    message_count: int
    token_count: int


@dataclass(slots=True, frozen=True)
class UsageStats:
    """
    Usage log summary. ``today`` is None when the log has no entry for today.

    ``log_dir_present`` is False when the directory that should hold the log
    does not exist, meaning the assistant has never run on this host.
    """

    today: DailyUsage | None
    weekly: tuple[DailyActivity, ...] = ()
    log_dir_present: bool = True

    @classmethod
    def empty(cls, log_dir_present: bool = True) -> "UsageStats":
        """Usage stats for a missing or unreadable log."""
        return cls(today=None, weekly=(), log_dir_present=log_dir_present)

    @property
    def has_data_today(self) -> bool:
        return self.today is not None


@dataclass(slots=True, frozen=True)
class McpServer:
    """An MCP server entry found in the assistant's configuration."""

    name: str
    source: str  # path of the config file it came from


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Immutable set of metric readings for a single sampling cycle."""

    timestamp: float
    cpu_usage_percent: float = 0.0
    gpu_usage_percent: float = 0.0
    memory_used_bytes: int = 0
    memory_total_bytes: int = 0
    memory_usage_percent: float = 0.0
    network_in_bytes_per_sec: float = 0.0
    network_out_bytes_per_sec: float = 0.0
    load_average: tuple[float, float, float] = (0.0, 0.0, 0.0)
    battery: BatteryStatus | None = None
    uptime_seconds: float = 0.0
    top_processes: tuple[ProcessInfo, ...] = ()
    sessions: tuple[SessionInfo, ...] = ()
    usage: UsageStats = field(default_factory=UsageStats.empty)
    mcp_servers: tuple[McpServer, ...] = ()

    @property
    def battery_percent(self) -> int | None:
        return self.battery.percent if self.battery is not None else None

    @property
    def battery_charging(self) -> bool:
        return self.battery is not None and self.battery.charging

    @property
    def session_memory_mb(self) -> float:
        """Total resident memory of all assistant sessions."""
        return sum(session.memory_mb for session in self.sessions)
