"""deepsight - Textual dashboard fed by the streaming client."""

import time
from enum import Enum

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Sparkline, Static

from deepsight.client import ConnectionState, StreamClient, SubscriberState
from deepsight.config import Settings
from deepsight.formatting import (
    format_bytes,
    format_rate,
    format_remaining,
    format_temperature,
    format_uptime,
    usage_bar,
)
from deepsight.models import DynamicReport, StaticSnapshot, TopProcess

STATUS_COLORS = {"Good": "green", "Fair": "yellow", "Critical": "red"}


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    USER = "user"


def describe_connection(state: SubscriberState) -> str:
    """One-line connection summary, e.g. '[red]Error[/red]: refused'."""
    if state.state is ConnectionState.CONNECTED:
        return "[green]● Online[/green]"
    if state.state is ConnectionState.CONNECTING:
        return "[yellow]● Connecting...[/yellow]"
    if state.state is ConnectionState.ERRORED:
        return f"[red]● Connection failed[/red]: {state.last_error or 'unknown error'}"
    return "[red]● Disconnected[/red]"


def describe_host(snapshot: StaticSnapshot | None) -> str:
    if snapshot is None:
        return "Waiting for host info..."
    cpu = snapshot.cpu
    return (
        f"{snapshot.os_info.hostname} • {snapshot.os_info.distro} {snapshot.os_info.release} • "
        f"{cpu.manufacturer} {cpu.brand} ({cpu.cores} threads)"
    ).strip()


class StatusBar(Static):
    """Top bar with host, connection state and last update time."""

    DEFAULT_CSS = """
    StatusBar {
        height: 3;
        padding: 0 1;
        background: $surface;
    }
    """

    def update_status(self, state: SubscriberState) -> None:
        if state.last_updated is None:
            updated = "never"
        else:
            updated = time.strftime("%H:%M:%S", time.localtime(state.last_updated))
        self.update(
            f"{describe_host(state.static)}\n"
            f"{describe_connection(state)}    Last update: {updated}"
        )


class HealthPanel(Static):
    """Health score, status and suggestions."""

    DEFAULT_CSS = """
    HealthPanel {
        width: 1fr;
        height: auto;
        min-height: 8;
        padding: 1;
        border: solid $primary;
    }
    """

    def update_health(self, report: DynamicReport) -> None:
        health = report.health
        color = STATUS_COLORS.get(health.status, "white")
        lines = [
            f"Health: [{color}]{health.score} ({health.status})[/{color}]",
            f"Temperature: {format_temperature(health.temperature)}",
            "",
        ]
        lines.extend(f"• {s}" for s in health.suggestions)
        self.update("\n".join(lines))


class PerformancePanel(Static):
    """CPU, memory, storage, network and power figures."""

    DEFAULT_CSS = """
    PerformancePanel {
        width: 2fr;
        height: auto;
        min-height: 8;
        padding: 1;
        border: solid $primary;
    }
    """

    def update_performance(self, report: DynamicReport) -> None:
        self.update("\n".join([self._cpu_lines(report), self._resource_lines(report)]))

    def _cpu_lines(self, report: DynamicReport) -> str:
        perf = report.performance
        lines = [f"CPU   {usage_bar(perf.cpu_load)} {perf.cpu_load:5.1f}%"]
        for i, usage in enumerate(perf.cpu_cores):
            lines.append(f"CPU{i:<2} {usage_bar(usage)} {usage:5.1f}%")
        return "\n".join(lines)

    def _resource_lines(self, report: DynamicReport) -> str:
        perf = report.performance
        storage = report.storage
        speed = report.network_speed
        power = report.power
        used_memory = perf.memory_total - perf.memory_available
        lines = [
            f"Mem   {usage_bar(perf.memory_used_percent, color='cyan')} "
            f"{format_bytes(used_memory)}/{format_bytes(perf.memory_total)}",
            f"Disk  {usage_bar(storage.percent_used, color='yellow')} "
            f"{format_bytes(storage.used)}/{format_bytes(storage.total)}",
            f"Net   ↓ {format_rate(speed.rx_sec)}  ↑ {format_rate(speed.tx_sec)}",
            f"Clock {speed.cpu_speed:.2f} GHz    Uptime: {format_uptime(perf.uptime)}",
        ]
        if power.has_battery:
            charging = "charging" if power.is_charging else "on battery"
            lines.append(
                f"Battery {power.percent:.0f}% ({charging}, {format_remaining(power.time_remaining)})"
            )
        return "\n".join(lines)


class HistoryPanel(Container):
    """CPU, memory and temperature sparklines over the rolling history."""

    DEFAULT_CSS = """
    HistoryPanel {
        height: 9;
        border: solid $primary;
    }
    HistoryPanel .history-row {
        height: 2;
    }
    HistoryPanel .history-name {
        width: 6;
    }
    """

    SERIES = (("cpu", "CPU"), ("mem", "MEM"), ("temp", "TEMP"))

    def compose(self) -> ComposeResult:
        yield Static("History", id="history-label")
        for name, title in self.SERIES:
            with Horizontal(classes="history-row"):
                yield Static(title, classes="history-name")
                yield Sparkline([], id=f"{name}-history")

    def update_history(self, state: SubscriberState) -> None:
        for name, _ in self.SERIES:
            self.query_one(f"#{name}-history", Sparkline).data = state.history.series(name)
        label = f"History ({len(state.history)}/{state.history.capacity} samples)"
        self.query_one("#history-label", Static).update(label)


class ProcessTable(Container):
    """Container for the top-process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._processes: tuple[TopProcess, ...] = ()
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key, re-sort the rows and return the key."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.MEM)
        self.update_processes(self._processes)
        return self._sort_key

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        table.add_column("PID", key="pid", width=8)
        table.add_column("USER", key="user", width=12)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("Name", key="name")

    def update_processes(self, processes: tuple[TopProcess, ...]) -> None:
        """Replace the rows with the given processes in the current sort order."""
        self._processes = processes
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for proc in self._sort_processes(processes):
            table.add_row(
                str(proc.pid),
                proc.user[:12],
                f"{proc.cpu:5.1f}",
                f"{proc.mem:5.1f}",
                proc.name[:50],
                key=str(proc.pid),
            )

    def _sort_processes(self, processes: tuple[TopProcess, ...]) -> list[TopProcess]:
        key_func = {
            SortKey.CPU: lambda p: p.cpu,
            SortKey.MEM: lambda p: p.mem,
            SortKey.PID: lambda p: p.pid,
            SortKey.USER: lambda p: p.user.lower(),
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)


class DeepSightApp(App):
    """Main deepsight dashboard."""

    TITLE = "deepsight"
    SUB_TITLE = "Live System Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #panels {
        height: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "reconnect", "Reconnect"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(self, settings: Settings | None = None, client: StreamClient | None = None) -> None:
        """
        Initialize the DeepSightApp.

        Args:
            settings: Server URL, history size and reconnect policy.
            client: Pre-built streaming client; built from settings when omitted.
        """
        super().__init__()
        self._settings = settings or Settings()
        if client is None:
            client = StreamClient(
                SubscriberState(self._settings.history_size),
                self._settings.server_url,
                reconnect_delay=self._settings.reconnect_delay,
                reconnect_delay_max=self._settings.reconnect_delay_max,
                reconnect_attempts=self._settings.reconnect_attempts,
                connect_timeout=self._settings.connect_timeout,
            )
        self._client = client
        self._state = client.state
        self._dirty = True
        self._unsubscribe = self._state.subscribe(self._mark_dirty)

    def compose(self) -> ComposeResult:
        yield StatusBar(id="status-bar")
        yield Horizontal(
            HealthPanel("Waiting for data...", id="health"),
            PerformancePanel("Waiting for data...", id="performance"),
            id="panels",
        )
        yield HistoryPanel(id="history")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start streaming and refresh the widgets twice a second."""
        self._client.start()
        self.set_interval(0.5, self._check_for_updates)
        self._check_for_updates()

    async def on_unmount(self) -> None:
        self._unsubscribe()
        await self._client.stop()

    def _mark_dirty(self, state: SubscriberState) -> None:
        self._dirty = True

    def _check_for_updates(self) -> None:
        """Redraw only when the subscriber state changed since the last redraw."""
        if not self._dirty:
            return
        self._dirty = False
        try:
            self._update_ui()
        except NoMatches:
            # Screen is being torn down
            self._dirty = True

    def _update_ui(self) -> None:
        self.query_one("#status-bar", StatusBar).update_status(self._state)
        report = self._state.latest
        if report is None:
            return
        self.query_one("#health", HealthPanel).update_health(report)
        self.query_one("#performance", PerformancePanel).update_performance(report)
        self.query_one("#history", HistoryPanel).update_history(self._state)
        self.query_one(ProcessTable).update_processes(report.processes)

    def action_sort(self) -> None:
        """Cycle the process table sort key."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    async def action_reconnect(self) -> None:
        await self._client.reconnect()
        self.notify("Reconnecting...")

    async def action_quit(self) -> None:
        """Stop streaming and exit."""
        await self._client.stop()
        self.exit()
