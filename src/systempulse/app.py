"""systempulse - Main Textual application."""

from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Sparkline, Static

from systempulse.config import PulseSettings, load_settings
from systempulse.history import HistoryRing, Metric
from systempulse.log import configure_logging, get_logger
from systempulse.models import ProcessInfo, Snapshot, UsageStats
from systempulse.monitor import SystemMonitor, create_monitor
from systempulse.sessions import is_language_server
from systempulse.sources import terminate_processes

logger = get_logger("app")


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    NAME = "name"


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_rate(bytes_per_sec: float) -> str:
    """Format a byte rate as a human-readable string."""
    return f"{format_bytes(bytes_per_sec).strip()}/s"


def format_uptime(uptime: float) -> str:
    days = int(uptime // 86400)
    hours = int((uptime % 86400) // 3600)
    minutes = int((uptime % 3600) // 60)
    seconds = int(uptime % 60)
    if days > 0:
        return f"{days} days, {hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def render_bar(percent: float, color: str, width: int = 20) -> str:
    """Render a percentage as a fixed-width Rich markup bar."""
    bar_len = min(int(percent / (100 / width)), width)
    return f"[{color}]█[/{color}]" * bar_len + "[dim]░[/dim]" * (width - bar_len)


class HeaderStats(Static):
    """Header widget showing CPU, memory, network and power statistics."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._snapshot: Snapshot | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_mem_info(), id="mem-info"),
        )

    def update_stats(self, snapshot: Snapshot) -> None:
        """Update the statistics from a snapshot."""
        self._snapshot = snapshot
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        try:
            cpu_info = self.query_one("#cpu-info", Static)
            mem_info = self.query_one("#mem-info", Static)
            cpu_info.update(self._get_cpu_info())
            mem_info.update(self._get_mem_info())
        except Exception:
            pass  # Widget not mounted yet

    def _get_cpu_info(self) -> str:
        """Get CPU, GPU and network display."""
        snapshot = self._snapshot
        if snapshot is None:
            return "Loading CPU info..."
        cpu_bar = render_bar(snapshot.cpu_usage_percent, "green")
        gpu_bar = render_bar(snapshot.gpu_usage_percent, "magenta")
        load = snapshot.load_average
        # Use escaped brackets for the bar containers
        return (
            f"CPU\\[{cpu_bar}] {snapshot.cpu_usage_percent:5.1f}%\n"
            f"GPU\\[{gpu_bar}] {snapshot.gpu_usage_percent:5.1f}%\n"
            f"Net ↓ {format_rate(snapshot.network_in_bytes_per_sec)}"
            f"  ↑ {format_rate(snapshot.network_out_bytes_per_sec)}\n"
            f"Load average: {load[0]:.2f} {load[1]:.2f} {load[2]:.2f}"
        )

    def _get_mem_info(self) -> str:
        """Get memory, battery and uptime display."""
        snapshot = self._snapshot
        if snapshot is None or snapshot.memory_total_bytes == 0:
            return "Loading memory info..."

        mem_bar = render_bar(snapshot.memory_usage_percent, "cyan")
        mem_used_gb = snapshot.memory_used_bytes / (1024**3)
        mem_total_gb = snapshot.memory_total_bytes / (1024**3)

        if snapshot.battery is None:
            battery = "Battery: none"
        else:
            state = " (charging)" if snapshot.battery.charging else ""
            battery = f"Battery: {snapshot.battery.percent}%{state}"

        return (
            f"Mem\\[{mem_bar}] {mem_used_gb:.1f}G/{mem_total_gb:.1f}G\n"
            f"{battery}\n"
            f"Uptime: {format_uptime(snapshot.uptime_seconds)}"
        )


class HistoryGraphs(Container):
    """Sparklines of recent CPU usage and inbound network rate."""

    DEFAULT_CSS = """
    HistoryGraphs {
        height: auto;
        layout: horizontal;
    }

    HistoryGraphs Sparkline {
        width: 1fr;
        height: 2;
        margin: 0 1;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the graphs."""
        yield Sparkline([], id="cpu-history")
        yield Sparkline([], id="net-history")

    def update_history(self, history: HistoryRing) -> None:
        """Redraw the graphs from the history ring."""
        try:
            self.query_one("#cpu-history", Sparkline).data = history.series(Metric.CPU)
            self.query_one("#net-history", Sparkline).data = history.series(Metric.NETWORK_IN)
        except Exception:
            pass  # Widget not mounted yet


class AssistantPanel(Static):
    """Assistant session and usage summary."""

    DEFAULT_CSS = """
    AssistantPanel {
        height: auto;
        padding: 0 1;
        border: solid $secondary;
    }
    """

    def update_assistant(self, snapshot: Snapshot) -> None:
        """Render sessions, today's usage and the weekly trend."""
        self.update(self.render_summary(snapshot))

    @staticmethod
    def render_summary(snapshot: Snapshot) -> str:
        lines = [
            f"Sessions: {len(snapshot.sessions)}"
            f"  ({snapshot.session_memory_mb:.0f} MB)"
        ]
        lines.append(AssistantPanel._render_usage(snapshot.usage))
        if snapshot.mcp_servers:
            names = ", ".join(server.name for server in snapshot.mcp_servers)
            lines.append(f"MCP servers: {names}")
        return "\n".join(lines)

    @staticmethod
    def _render_usage(usage: UsageStats) -> str:
        if not usage.log_dir_present:
            return "Today: assistant data directory not found"
        if usage.today is None:
            today = "Today: no activity recorded"
        else:
            t = usage.today
            today = (
                f"Today: {t.message_count} msgs, {t.session_count} sessions, "
                f"{t.tool_call_count} tool calls, {t.token_count:,} tokens, "
                f"~${t.estimated_cost_usd:.2f} (estimate)"
            )
        if not usage.weekly:
            return today
        trend = "  ".join(f"{day.date[5:]}:{day.message_count}" for day in usage.weekly)
        return f"{today}\nWeek: {trend}"


class ProcessTable(Container):
    """Container for the top process table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True  # Default: descending for CPU

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        next_index = (current_index + 1) % len(keys)
        self._sort_key = keys[next_index]
        # Set sort order based on key
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.MEM)
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("Name", key="name")

    def update_processes(self, processes: tuple[ProcessInfo, ...]) -> None:
        """
        Replace the table rows with the latest top processes.

        The top list is short, so rows are rebuilt rather than patched.
        """
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for proc in self._sort_processes(processes):
            table.add_row(
                str(proc.pid),
                f"{proc.cpu_percent:5.1f}",
                f"{proc.memory_percent:5.1f}",
                proc.name[:40],
                key=str(proc.pid),
            )

    def _sort_processes(self, processes: tuple[ProcessInfo, ...]) -> list[ProcessInfo]:
        """Sort processes based on the current sort key."""
        key_func = {
            SortKey.CPU: lambda p: p.cpu_percent,
            SortKey.MEM: lambda p: p.memory_percent,
            SortKey.PID: lambda p: p.pid,
            SortKey.NAME: lambda p: p.name.lower(),
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)


class PulseApp(App):
    """Main systempulse application."""

    TITLE = "systempulse"
    SUB_TITLE = "Host Metrics Dashboard"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #mem-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("r", "refresh", "Refresh"),
        ("k", "kill_language_servers", "Kill LSPs"),
    ]

    def __init__(
        self,
        settings: PulseSettings | None = None,
        monitor: SystemMonitor | None = None,
    ) -> None:
        """Initialize the PulseApp."""
        super().__init__()
        self._settings = settings if settings is not None else load_settings()
        self._update_queue: Queue[Snapshot] = Queue()
        self._monitor = monitor if monitor is not None else create_monitor(self._settings)
        self._unsubscribe = self._monitor.subscribe(self._update_queue.put)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield HistoryGraphs()
        yield AssistantPanel("Waiting for assistant data...", id="assistant")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the system monitor when the app is mounted."""
        self._monitor.start()
        # Set up a timer to poll the queue for updates
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Check the queue for new snapshots and refresh the UI."""
        # Drain the queue; only the most recent snapshot is rendered
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: Snapshot) -> None:
        """Update the UI with the new snapshot."""
        try:
            self.query_one("#header-stats", HeaderStats).update_stats(snapshot)
            self.query_one(HistoryGraphs).update_history(self._monitor.history)
            self.query_one("#assistant", AssistantPanel).update_assistant(snapshot)
            self.query_one(ProcessTable).update_processes(snapshot.top_processes)
        except Exception:
            # The dashboard must keep running even if one widget fails to render
            logger.exception("render_failed")

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        process_table = self.query_one(ProcessTable)
        new_sort_key = process_table.cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")
        if self._monitor.latest is not None:
            process_table.update_processes(self._monitor.latest.top_processes)

    def action_refresh(self) -> None:
        """Sample immediately, off the UI thread."""
        self.run_worker(self._monitor.refresh, thread=True, exclusive=True, group="refresh")

    def action_kill_language_servers(self) -> None:
        """Terminate stray editor language servers, off the UI thread."""
        self.run_worker(self._kill_language_servers, thread=True, group="quick-actions")

    def _kill_language_servers(self) -> None:
        terminated = terminate_processes(is_language_server)
        self.call_from_thread(self.notify, f"Terminated {len(terminated)} language servers")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._unsubscribe()
        self._monitor.stop()
        self.exit()


def main() -> None:
    """Entry point for the systempulse application."""
    settings = load_settings()
    configure_logging(settings)
    app = PulseApp(settings)
    app.run()


if __name__ == "__main__":
    main()
