"""Terminal rendering of the log sink and status bar."""

from __future__ import annotations

import traceback

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from visualcortex.models import LogCategory, LogEntry


def format_entry(entry: LogEntry) -> Text:
    """Render one log entry as a styled line."""
    line = Text()
    line.append(f"[{entry.timestamp.strftime('%H:%M:%S')}] ", style="dim")

    if entry.category is LogCategory.VISUAL:
        line.append("› ", style="magenta")
        line.append(entry.message, style="bold white")
    elif entry.category is LogCategory.BRIDGE:
        line.append("SYNC ", style="reverse cyan")
        line.append(entry.message, style="italic cyan")
    elif entry.category is LogCategory.ERROR:
        line.append(f"[ERR] {entry.message}", style="bold magenta")
    elif entry.category is LogCategory.SUCCESS:
        line.append(f"● {entry.message}", style="bold green")
    else:
        line.append(entry.message, style="grey62")

    return line


def format_status(status: dict) -> Text:
    """Render the status bar from ``VisualCortexApp.get_status()``."""
    bridge = status["bridge"]
    voice = status["voice"]
    vision_active = bridge["vision"] == "active"
    voice_connected = voice["status"] == "connected"

    line = Text()
    line.append(f"VISION: {'ACTIVE' if vision_active else 'OFFLINE'}", style="green" if vision_active else "grey50")
    line.append(" | ", style="grey35")
    line.append(f"VOICE: {voice['status'].upper()}", style="blue" if voice_connected else "grey50")
    line.append(" | ", style="grey35")
    line.append(f"LATENCY: {bridge['interval_ms']}ms", style="grey50")
    line.append(" | ", style="grey35")
    line.append(f"events: {status['events']}", style="grey50")
    if status.get("mock_mode"):
        line.append("  [mock]", style="yellow")
    return line


class LogConsole:
    """Prints log entries as they are appended.

    Subscribe an instance to a ``LogSink``; it is called once per entry in
    insertion order.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def __call__(self, entry: LogEntry) -> None:
        self.console.print(format_entry(entry))

    def status(self, status: dict) -> None:
        self.console.print(format_status(status))

    def fatal(self, error: BaseException) -> None:
        """Render an unrecoverable error."""
        trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        body = Text()
        body.append("Error Trace:\n", style="bold red")
        body.append(f"{error!r}\n\n", style="red")
        body.append(trace, style="dark_red")
        self.console.print(
            Panel(body, title="[bold red]FATAL EXCEPTION[/]", border_style="red", expand=False)
        )
