"""hostpulse - Textual dashboard fed by the sampling engine."""

import logging
import os
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Static

from hostpulse.config import SamplerConfig
from hostpulse.models import ProcessRow, Snapshot
from hostpulse.monitor import SampleScheduler

logger = logging.getLogger(__name__)


def format_percent(value: float | None) -> str:
    """Format a utilization percentage; None means no instrumentation."""
    if value is None:
        return "N/A"
    return f"{value:.1f} %"


def format_memory(snapshot: Snapshot) -> str:
    """Memory line as ``pct %  (used / total GB)``."""
    if snapshot.memory_total_gb <= 0:
        return "-- % (-- / -- GB)"
    return (
        f"{snapshot.memory_percent:.1f} %  "
        f"({snapshot.memory_used_gb:.1f} / {snapshot.memory_total_gb:.1f} GB)"
    )


def format_ping(snapshot: Snapshot) -> str:
    if snapshot.ping_average_ms is None:
        return "timeout" if snapshot.ping_timed_out else "-- ms (avg)"
    return f"{snapshot.ping_average_ms:.0f} ms (avg)"


def format_temperatures(cpu: float | None, gpu: float | None) -> str:
    cpu_text = f"{cpu:.0f}" if cpu is not None else "--"
    gpu_text = f"{gpu:.0f}" if gpu is not None else "--"
    return f"CPU: {cpu_text} °C / GPU: {gpu_text} °C"


def gauge(percent: float | None, color: str, width: int = 20) -> str:
    """Rich-markup bar for a 0-100 value."""
    filled = 0 if percent is None else min(width, max(0, int(percent / (100 / width))))
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (width - filled)


class HeaderStats(Static):
    """Header widget showing host-wide metrics."""

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
            Static(self._get_usage_info(), id="usage-info"),
            Static(self._get_env_info(), id="env-info"),
        )

    def update_stats(self, snapshot: Snapshot) -> None:
        """Update the statistics from a snapshot."""
        self._snapshot = snapshot
        if not self.is_mounted:
            return
        self.query_one("#usage-info", Static).update(self._get_usage_info())
        self.query_one("#env-info", Static).update(self._get_env_info())

    def _get_usage_info(self) -> str:
        snap = self._snapshot
        if snap is None:
            return "CPU  -- %\nMem  -- % (-- / -- GB)\nGPU  -- %"
        # Escaped brackets around the bars
        return (
            f"CPU \\[{gauge(snap.cpu_percent, 'green')}] {format_percent(snap.cpu_percent)}\n"
            f"Mem \\[{gauge(snap.memory_percent, 'cyan')}] {format_memory(snap)}\n"
            f"GPU \\[{gauge(snap.gpu_percent, 'magenta')}] {format_percent(snap.gpu_percent)}"
        )

    def _get_env_info(self) -> str:
        snap = self._snapshot
        if snap is None:
            return "Ping: -- ms (avg)\nCPU: -- °C / GPU: -- °C"
        return (
            f"Ping: {format_ping(snap)}\n"
            f"{format_temperatures(snap.cpu_temperature_c, snap.gpu_temperature_c)}"
        )


class ProcessTable(Container):
    """Container for the top-process table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("Name", key="name", width=28)
        table.add_column("PID", key="pid", width=8)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM MB", key="mem", width=10)
        table.add_column("GPU%", key="gpu", width=8)

    def update_processes(self, rows: tuple[ProcessRow, ...]) -> None:
        """
        Replace the table contents with the ranked rows.

        The ranking already fixes the order, so the table is rebuilt rather
        than patched cell by cell.
        """
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for row in rows:
            table.add_row(
                row.name[:28],
                str(row.pid),
                f"{row.cpu_percent:5.1f}",
                f"{row.memory_mb:8.1f}",
                f"{row.gpu_percent:5.1f}",
                key=str(row.pid),
            )


class HostPulseApp(App):
    """Main hostpulse application."""

    TITLE = "hostpulse"
    SUB_TITLE = "Host Metrics"

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

    #usage-info {
        width: 2fr;
        padding-right: 2;
    }

    #env-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(self, config: SamplerConfig | None = None, **sources) -> None:
        """
        Initialize the HostPulseApp.

        Args:
            config: Sampler settings.
            **sources: OS adapters forwarded to SampleScheduler.
        """
        super().__init__()
        self._update_queue: Queue[Snapshot] = Queue()
        self._scheduler = SampleScheduler(self._update_queue.put, config, **sources)

    @property
    def update_queue(self) -> Queue[Snapshot]:
        return self._update_queue

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the scheduler when the app is mounted."""
        self._scheduler.start()
        # The scheduler publishes from its own thread; drain on the UI side
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Apply the most recent snapshot, if any arrived."""
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
        self.query_one("#header-stats", HeaderStats).update_stats(snapshot)
        self.query_one(ProcessTable).update_processes(snapshot.top_processes)

    def on_unmount(self) -> None:
        self._scheduler.close()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._scheduler.stop()
        self.exit()


def configure_logging() -> None:
    """Send log records to the textual devtools console."""
    level_name = os.environ.get("HOSTPULSE_LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, handlers=[TextualHandler()])


def main() -> None:
    """Entry point for the hostpulse dashboard."""
    configure_logging()
    config = SamplerConfig.from_env()
    logger.debug("Starting hostpulse with %s", config)
    app = HostPulseApp(config=config)
    app.run()


if __name__ == "__main__":
    main()
