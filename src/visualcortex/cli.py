"""Visual Cortex CLI."""

from __future__ import annotations

import asyncio
import json
import queue
import sys
import threading
from pathlib import Path
from typing import Optional, TextIO

import typer
from rich.console import Console
from rich.table import Table

from visualcortex import __version__
from visualcortex.app import VisualCortexApp
from visualcortex.common.credentials import CredentialStore
from visualcortex.config import Config, load_config
from visualcortex.errors import ConfigError
from visualcortex.console import LogConsole

app = typer.Typer(
    name="visualcortex",
    help="Webcam vision loop bridged into a real-time voice agent",
    no_args_is_help=True,
)
console = Console()

HELP_TEXT = (
    "[bold]Commands:[/] [cyan]v[/] toggle vision  [cyan]c[/] connect/disconnect voice  "
    "[cyan]s[/] status  [cyan]q[/] quit"
)

# Seconds between checks for a typed command
COMMAND_POLL_INTERVAL = 0.05


def mask(value: str | None) -> str:
    """Mask a secret for display."""
    if not value:
        return "[dim]not set[/]"
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"


def prompt_credentials(cfg: Config) -> Config:
    """Ask for the vision API key and agent id, then cache them locally."""
    console.print("[bold]Authentication[/] - credentials are stored in " f"[cyan]{cfg.credentials_path}[/]")
    api_key = typer.prompt("Gemini API key", default=cfg.vision.api_key or "", hide_input=True, show_default=False)
    agent_id = typer.prompt("Agent ID (optional)", default=cfg.voice.agent_id or "", show_default=False)

    stored = CredentialStore(cfg.credentials_path).save(api_key, agent_id)
    cfg.vision.api_key = stored.api_key
    cfg.voice.agent_id = stored.agent_id
    return cfg


class CommandReader:
    """Reads stdin lines on one daemon thread for the whole process.

    Session commands and the restart prompt both take lines from here, so a
    restarted session never competes with a leftover reader for input.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream if stream is not None else sys.stdin
        self._lines: queue.Queue[str | None] = queue.Queue()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._read, name="command-reader", daemon=True)
        self._thread.start()

    def _read(self) -> None:
        for line in self.stream:
            self._lines.put(line.strip())
        # None marks end of input
        self._lines.put(None)

    def readline(self) -> str | None:
        """Block for the next line. None once input has ended."""
        line = self._lines.get()
        if line is None:
            self._lines.put(None)
        return line

    async def next_command(self) -> str:
        """Wait for the next command without tying up an executor thread."""
        while True:
            try:
                line = self._lines.get_nowait()
            except queue.Empty:
                await asyncio.sleep(COMMAND_POLL_INTERVAL)
                continue
            if line is None:
                self._lines.put(None)
                return "q"
            return line.lower()

    def confirm(self, text: str, default: bool = True) -> bool:
        """Ask a yes/no question answered on the next input line."""
        console.print(f"{text} [{'Y/n' if default else 'y/N'}]: ", end="", markup=False)
        answer = self.readline()
        if answer is None:
            return False
        answer = answer.strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")


async def run_session(cfg: Config, commands: CommandReader, connect_voice: bool = False) -> None:
    """Run the interactive session until the user quits."""
    cortex = VisualCortexApp(cfg)
    view = LogConsole(console)
    unsubscribe = cortex.log.subscribe(view)

    try:
        async with cortex:
            await cortex.start_vision()
            if connect_voice:
                await cortex.connect_voice()

            console.print(HELP_TEXT)
            while True:
                command = await commands.next_command()
                if command == "q":
                    break
                elif command == "v":
                    await cortex.toggle_vision()
                elif command == "c":
                    await cortex.toggle_voice()
                elif command == "s":
                    view.status(cortex.get_status())
                else:
                    console.print(HELP_TEXT)
    finally:
        unsubscribe()


@app.command()
def run(
    mock: bool = typer.Option(False, "--mock", help="Use mock camera, analyzer and voice agent"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to a config YAML file"),
    voice: bool = typer.Option(False, "--voice", help="Connect the voice agent on start"),
):
    """Run the vision loop with a live log console."""
    cfg = load_config(config_path)
    if mock:
        cfg.mock_mode = True
    if not cfg.mock_mode and not cfg.vision.api_key:
        try:
            cfg = prompt_credentials(cfg)
        except ConfigError as e:
            console.print(f"[red]Error:[/] {e}")
            raise typer.Exit(1)

    # Started after the credential prompt, which reads stdin itself
    commands = CommandReader()
    commands.start()

    while True:
        try:
            asyncio.run(run_session(cfg, commands, connect_voice=voice))
            return

        except KeyboardInterrupt:
            console.print("\n[dim]Interrupted.[/]")
            return
        except (typer.Exit, typer.Abort):
            raise
        except Exception as e:
            LogConsole(console).fatal(e)
            if not commands.confirm("Restart Visual Cortex?", default=True):
                raise typer.Exit(1)


# Credential commands
keys_cmd = typer.Typer(help="Manage cached credentials")
app.add_typer(keys_cmd, name="keys")


@keys_cmd.command("set")
def keys_set(
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Gemini API key"),
    agent_id: Optional[str] = typer.Option(None, "--agent-id", help="Voice agent ID"),
):
    """Store credentials (prompts for any not given)."""
    cfg = load_config(use_credential_store=False)
    store = CredentialStore(cfg.credentials_path)

    if api_key is None:
        api_key = typer.prompt("Gemini API key", hide_input=True)
    if agent_id is None:
        agent_id = typer.prompt("Agent ID (optional)", default="", show_default=False)

    try:
        store.save(api_key, agent_id)
    except ConfigError as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Saved[/] credentials to {store.path}")


@keys_cmd.command("show")
def keys_show():
    """Show cached credentials (masked)."""
    cfg = load_config(use_credential_store=False)
    stored = CredentialStore(cfg.credentials_path).load()

    table = Table(title="Credentials")
    table.add_column("Key", style="cyan")
    table.add_column("Stored")
    table.add_column("Effective")

    effective = load_config()
    table.add_row("GEMINI_API_KEY", mask(stored.api_key), mask(effective.vision.api_key))
    table.add_row("AGENT_ID", stored.agent_id or "[dim]not set[/]", effective.voice.agent_id or "[dim]not set[/]")
    console.print(table)


@keys_cmd.command("clear")
def keys_clear():
    """Delete cached credentials."""
    cfg = load_config(use_credential_store=False)
    if CredentialStore(cfg.credentials_path).clear():
        console.print("[green]Cleared[/] cached credentials")
    else:
        console.print("[dim]No cached credentials[/]")


@app.command()
def config(json_output: bool = typer.Option(False, "--json", help="Print as JSON")):
    """Show configuration."""
    cfg = load_config()

    if json_output:
        data = cfg.model_dump(mode="json")
        data["vision"]["api_key"] = "***" if cfg.vision.api_key else None
        data["voice"]["api_key"] = "***" if cfg.voice.api_key else None
        print(json.dumps(data, indent=2))
        return

    console.print("[bold]Configuration[/]")
    console.print(f"  Mode: {cfg.app.mode}")
    console.print(f"  Log level: {cfg.app.log_level}")
    console.print(f"  Mock Mode: {cfg.mock_mode}")
    console.print("\n[bold]Camera[/]")
    console.print(f"  Device: {cfg.camera.device_index}")
    console.print(f"  Capture: {cfg.camera.capture_width}x{cfg.camera.capture_height}")
    console.print("\n[bold]Vision[/]")
    console.print(f"  Provider: {cfg.vision.provider}")
    console.print(f"  API key: {mask(cfg.vision.api_key)}")
    console.print("\n[bold]Voice[/]")
    console.print(f"  Provider: {cfg.voice.provider}")
    console.print(f"  Agent ID: {cfg.voice.agent_id or '[dim]not set[/]'}")


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold]Visual Cortex[/] v{__version__}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
