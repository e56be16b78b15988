"""
CLI interface for remindr.

Usage:
    remindr on                 start recording shell history
    remindr off                stop recording
    remindr status             daemon state and the last few commands
    remindr search "git"       search recorded commands
    remindr record -- make     record one command (for shell hooks)
    remindr hook bash          print the prompt hook for ~/.bashrc
    remindr integration disable  pause recording from the prompt hook
"""

import json
import os
import shutil
import sys
from pathlib import Path
from typing import NoReturn, Optional

import typer
from typing_extensions import Annotated

from .config import RemindrConfig, get_state_dir, load_or_create_config
from .daemon import DaemonController
from .dedup import Deduplicator
from .errors import RemindrError, log_exception
from .event_store import EventStore
from .integration import SUPPORTED_SHELLS, hook_script, is_enabled, set_enabled
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import Event, local_time

# Number of commands shown by `status`, and by `search` without a keyword
STATUS_LIMIT = 5
SEARCH_FALLBACK_LIMIT = 10


# Configure quiet mode by default
# Set REMINDR_VERBOSE=1 to enable debug mode via environment
if os.environ.get("REMINDR_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"remindr {version('remindr')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_home_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _home_callback(value: Optional[Path]):
    global _home_override
    _home_override = value


def _get_state_dir() -> Path:
    return _home_override if _home_override is not None else get_state_dir()


app = typer.Typer(
    name="remindr",
    help="Record your shell history as searchable events.",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode=None,
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    home: Annotated[Optional[Path], typer.Option(
        "--home", "-H",
        envvar="REMINDR_HOME",
        help="Path to the state directory (default: ~/.remindr/)",
        callback=_home_callback,
        is_eager=True,
    )] = None,
):
    """Record your shell history as searchable events."""
    # If no subcommand provided, show status
    if ctx.invoked_subcommand is None:
        status(limit=STATUS_LIMIT)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _fail(exc: Exception, context: str) -> NoReturn:
    """Report a failure: short message to the user, traceback to the error log."""
    log_path = log_exception(exc, context=context)
    typer.echo(f"Error: {exc}", err=True)
    typer.echo(f"Details logged to {log_path}", err=True)
    raise typer.Exit(1)


def _load_config() -> RemindrConfig:
    state_dir = _get_state_dir()
    try:
        return load_or_create_config(state_dir)
    except (OSError, ValueError) as e:
        _fail(e, "remindr config")


def _open_store(config: RemindrConfig) -> EventStore:
    """Open and migrate the event store."""
    store = EventStore(config.db_path, pool_size=config.pool_size)
    try:
        store.migrate()
    except RemindrError:
        store.close()
        raise
    return store


def _controller(config: RemindrConfig, store: EventStore) -> DaemonController:
    return DaemonController(
        config.path,
        store,
        startup_grace=config.daemon.startup_grace,
        stop_timeout=config.daemon.stop_timeout,
    )


def _output_width() -> int:
    """Terminal width for command truncation. Use generous default when not a TTY."""
    if not sys.stdout.isatty():
        return 200
    return shutil.get_terminal_size((80, 24)).columns


def _format_event_line(event: Event, width: int) -> str:
    """One display line: local time, command, category."""
    prefix = f"{local_time(event.timestamp)} | "
    suffix = f"  [{event.category}]" if event.category else ""
    room = max(width - len(prefix) - len(suffix), 10)
    text = event.text
    if len(text) > room:
        text = text[:room - 3] + "..."
    return f"{prefix}{text}{suffix}"


def _format_events(events: list[Event], empty_message: str) -> str:
    if not events:
        return empty_message
    width = _output_width()
    return "\n".join(_format_event_line(e, width) for e in events)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command("on")
def on():
    """Start the daemon to begin recording commands."""
    config = _load_config()
    try:
        store = _open_store(config)
        try:
            pid = _controller(config, store).start()
        finally:
            store.close()
    except RemindrError as e:
        _fail(e, "remindr on")

    if _get_json_output():
        typer.echo(json.dumps({"started": pid is not None, "pid": pid}))
    elif pid is None:
        typer.echo("remindr is already running")
    else:
        typer.echo(f"remindr daemon started (pid {pid})")


@app.command("off")
def off():
    """Stop the daemon and cease recording commands."""
    config = _load_config()
    try:
        store = _open_store(config)
        try:
            pid = _controller(config, store).stop()
        finally:
            store.close()
    except RemindrError as e:
        _fail(e, "remindr off")

    if _get_json_output():
        typer.echo(json.dumps({"stopped": pid is not None, "pid": pid}))
    elif pid is None:
        typer.echo("remindr is not running")
    else:
        typer.echo(f"remindr daemon stopped (pid {pid})")


@app.command("status")
def status(
    limit: Annotated[int, typer.Option(
        "--limit", "-n",
        help="Number of recent commands to show"
    )] = STATUS_LIMIT,
):
    """Display the daemon status and the last commands."""
    config = _load_config()
    try:
        store = _open_store(config)
        try:
            controller = _controller(config, store)
            running = controller.reconcile()
            pid = controller.read_pid() if running else None
            events = store.recent(limit)
        finally:
            store.close()
    except RemindrError as e:
        _fail(e, "remindr status")

    if _get_json_output():
        typer.echo(json.dumps({
            "running": running,
            "pid": pid,
            "recent": [e.to_dict() for e in events],
        }, indent=2))
        return

    state = f"ON (pid {pid})" if running else "OFF"
    typer.echo(f"Daemon status: {state}")
    typer.echo("Last commands:")
    typer.echo(_format_events(events, "No commands recorded yet"))


@app.command("search")
def search(
    keyword: Annotated[str, typer.Argument(
        help="Search keyword (empty shows the most recent commands)"
    )] = "",
):
    """Search recorded commands."""
    config = _load_config()
    try:
        store = _open_store(config)
        try:
            if keyword.strip():
                events = store.search(keyword)
            else:
                events = store.recent(SEARCH_FALLBACK_LIMIT)
        finally:
            store.close()
    except RemindrError as e:
        _fail(e, "remindr search")

    if _get_json_output():
        typer.echo(json.dumps([e.to_dict() for e in events], indent=2))
        return

    if keyword.strip():
        typer.echo(f"Search results for: {keyword}")
    else:
        typer.echo("Showing most recent commands")
    typer.echo(_format_events(events, "No matching commands found"))


@app.command("record")
def record(
    command: Annotated[Optional[list[str]], typer.Argument(
        help="Command to record (default: $REMINDR_LAST_CMD)"
    )] = None,
):
    """Record one command directly, for use from a shell hook."""
    from .watcher import Watcher

    text = " ".join(command) if command else os.environ.get("REMINDR_LAST_CMD", "")
    config = _load_config()
    if not is_enabled(config.integration_status_path):
        if _get_json_output():
            typer.echo(json.dumps({"recorded": False, "id": None}))
        return

    try:
        store = _open_store(config)
        try:
            # Same filtering as the daemon, minus the file tailing
            watcher = Watcher(None, Deduplicator(config.last_line_path), store)
            event_id = watcher.process_line(text)
        finally:
            store.close()
    except RemindrError as e:
        _fail(e, "remindr record")

    if _get_json_output():
        typer.echo(json.dumps({"recorded": event_id is not None, "id": event_id}))


def _detect_shell() -> str:
    """Shell name from $SHELL, falling back to bash."""
    name = Path(os.environ.get("SHELL", "")).name
    return name if name in SUPPORTED_SHELLS else "bash"


@app.command("hook")
def hook(
    shell: Annotated[Optional[str], typer.Argument(
        help="bash or zsh (default: from $SHELL)"
    )] = None,
):
    """Print the prompt hook that records each command as it runs."""
    try:
        typer.echo(hook_script(shell or _detect_shell()), nl=False)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Shell integration switch
# -----------------------------------------------------------------------------

integration_app = typer.Typer(
    name="integration",
    help="Turn recording from the shell prompt hook on or off.",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode=None,
)
app.add_typer(integration_app)


def _report_integration(enabled: bool) -> None:
    if _get_json_output():
        typer.echo(json.dumps({"enabled": enabled}))
    else:
        typer.echo(f"Shell integration {'enabled' if enabled else 'disabled'}")


@integration_app.callback(invoke_without_command=True)
def integration_callback(ctx: typer.Context):
    """Turn recording from the shell prompt hook on or off."""
    if ctx.invoked_subcommand is None:
        integration_status()


@integration_app.command("enable")
def integration_enable():
    """Record commands from the prompt hook."""
    config = _load_config()
    set_enabled(config.integration_status_path, True)
    _report_integration(True)


@integration_app.command("disable")
def integration_disable():
    """Stop recording from the prompt hook (the daemon is unaffected)."""
    config = _load_config()
    set_enabled(config.integration_status_path, False)
    _report_integration(False)


@integration_app.command("toggle")
def integration_toggle():
    """Flip the prompt hook between enabled and disabled."""
    config = _load_config()
    enabled = not is_enabled(config.integration_status_path)
    set_enabled(config.integration_status_path, enabled)
    _report_integration(enabled)


@integration_app.command("status")
def integration_status():
    """Show whether the prompt hook records, plus daemon state."""
    config = _load_config()
    enabled = is_enabled(config.integration_status_path)
    try:
        store = _open_store(config)
        try:
            running = _controller(config, store).reconcile()
            events = store.recent(1)
        finally:
            store.close()
    except RemindrError as e:
        _fail(e, "remindr integration status")

    last = events[0].text if events else None
    if _get_json_output():
        typer.echo(json.dumps({
            "enabled": enabled,
            "daemon_running": running,
            "last_command": last,
        }))
        return

    typer.echo(f"Shell integration: {'enabled' if enabled else 'disabled'}")
    typer.echo(f"Daemon status: {'ON' if running else 'OFF'}")
    typer.echo(f"Last command: {last if last is not None else '(none)'}")


@app.command("config")
def config_cmd():
    """Show the effective configuration."""
    config = _load_config()
    result = {
        "file": str(config.config_path),
        "home": str(config.path),
        "history": str(config.resolved_history_path()),
        "database": str(config.db_path),
        "pid_file": str(config.pid_path),
        "poll_interval": config.daemon.poll_interval,
        "error_backoff": config.daemon.error_backoff,
        "pool_size": config.pool_size,
    }
    if _get_json_output():
        typer.echo(json.dumps(result, indent=2))
    else:
        width = max(len(k) for k in result)
        for key, value in result.items():
            typer.echo(f"{key.ljust(width)}  {value}")


@app.command("daemon", hidden=True)
def daemon_cmd():
    """Run the watcher in the foreground (used internally by `on`)."""
    from .watcher import run_daemon

    config = _load_config()
    try:
        code = run_daemon(config)
    except RemindrError as e:
        _fail(e, "remindr daemon")
    raise typer.Exit(code)


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        log_path = log_exception(e, context="remindr CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
