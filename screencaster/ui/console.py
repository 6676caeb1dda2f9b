"""Rich console output for the command line interface."""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from pubsub import pub
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models.capture import StartReport, TeardownReport
from ..models.events import MergeStep, ProgressEvent, ProgressKind
from ..models.recording_info import RecordingInfo, format_file_size
from ..models.session import SessionState, SessionStatus
from ..processing.progress import DEFAULT_TOPIC

logger = logging.getLogger(__name__)

PERCENT_STEP = 10.0

STATE_STYLES = {
    SessionState.IDLE: "dim",
    SessionState.RECORDING: "bold red",
    SessionState.PAUSED: "bold yellow",
    SessionState.PROCESSING: "bold cyan",
    SessionState.COMPLETED: "bold green",
    SessionState.FAILED: "bold red",
}


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def render_status(status: SessionStatus) -> Panel:
    """Panel with the session state and a row per capture source."""
    header = Text()
    header.append("State: ")
    header.append(status.state.value, style=STATE_STYLES[status.state])
    if status.state in (SessionState.RECORDING, SessionState.PAUSED):
        header.append(f"   Part: {status.current_part}")
        header.append(f"   Duration: {format_duration(status.duration_seconds)}")

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("Source")
    table.add_column("PID", justify="right")
    table.add_column("Alive")
    table.add_column("File", overflow="fold")

    for kind, source in status.sources.items():
        alive = Text("yes", style="green") if source.alive else Text("no", style="dim")
        if kind in status.crashed_sources:
            alive = Text("crashed", style="bold red")
        table.add_row(kind.value, str(source.pid or "-"), alive, source.file or "-")

    if status.output_dir:
        table.caption = f"Output: {status.output_dir}"

    body = Table.grid()
    body.add_row(header)
    if status.sources:
        body.add_row(table)
    return Panel(body, title="screencaster", border_style="blue")


def print_status(console: Console, status: SessionStatus) -> None:
    console.print(render_status(status))
    if status.crashed_sources:
        names = ", ".join(kind.value for kind in status.crashed_sources)
        console.print(f"[yellow]Warning:[/yellow] capture process exited unexpectedly: {names}")


def print_warnings(console: Console, warnings: Iterable[Exception], label: str = "Warning") -> None:
    for warning in warnings:
        console.print(f"[yellow]{label}:[/yellow] {escape(str(warning))}")


def print_start_report(console: Console, report: StartReport, resumed: bool = False) -> None:
    """Started sources, then errors and warnings about the ones that did not."""
    verb = "Resumed" if resumed else "Started"
    names = ", ".join(kind.value for kind in report.started_kinds)
    console.print(f"[green]{verb} recording[/green] ({names})")
    print_warnings(console, report.errors, label="Error")
    print_warnings(console, report.warnings)


def print_teardown_report(console: Console, report: TeardownReport) -> None:
    print_warnings(console, report.warnings)


def print_recordings(console: Console, recordings: List[RecordingInfo]) -> None:
    """Table of the recordings found in the output directory."""
    if not recordings:
        console.print("No recordings found")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Parts", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Folder", overflow="fold")

    for info in recordings:
        files = info.files
        parts = str(sum(len(paths) for paths in files.parts.values())) if files.has_parts() else "-"
        table.add_row(
            f"{info.metadata.number:03d}",
            escape(info.metadata.title),
            info.status.value,
            parts,
            format_file_size(files.total_size),
            files.folder_path,
        )
    console.print(table)


class ProgressPrinter:
    """Prints merge progress events published on the relay's pub/sub topic."""

    def __init__(self, console: Console, topic: str = DEFAULT_TOPIC, header: Optional[str] = None):
        """Initialize the printer.

        Args:
            console: Console the lines go to
            topic: pub/sub topic the relay dispatches on
            header: Line printed once, right before the first progress line
        """
        self.console = console
        self.topic = topic
        self.header = header
        self._header_printed = False
        self._lock = threading.Lock()
        self._subscribed = False
        self._last_percent: Dict[MergeStep, float] = {}

    def subscribe(self) -> None:
        if not self._subscribed:
            pub.subscribe(self.on_event, self.topic)
            self._subscribed = True

    def unsubscribe(self) -> None:
        if self._subscribed:
            pub.unsubscribe(self.on_event, self.topic)
            self._subscribed = False

    def on_event(self, event: ProgressEvent) -> None:
        """Listener for one progress event; percent lines every 10% at most."""
        if event.kind is ProgressKind.PROGRESS and event.percent is not None:
            last = self._last_percent.get(event.step, -PERCENT_STEP)
            if event.percent < last + PERCENT_STEP:
                return
            self._last_percent[event.step] = event.percent

        line = format_progress_event(event)
        if line is None:
            return
        with self._lock:
            if self.header and not self._header_printed:
                self.console.print(self.header)
                self._header_printed = True
            self.console.print(line, highlight=False)


def format_progress_event(event: ProgressEvent) -> Optional[str]:
    label = event.step.label
    if event.kind is ProgressKind.STARTED:
        return f"  [dim][....][/dim] {label}"
    if event.kind is ProgressKind.PROGRESS:
        if event.percent is None:
            return None
        return f"  [dim][{event.percent:3.0f}%][/dim] {label}"
    if event.kind is ProgressKind.COMPLETED:
        return f"  [green][DONE][/green] {label}"
    if event.kind is ProgressKind.SKIPPED:
        reason = f": {escape(event.error)}" if event.error else ""
        return f"  [yellow][SKIP][/yellow] {label}{reason}"
    return f"  [red][FAIL][/red] {label}: {escape(str(event.error))}"
