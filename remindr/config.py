"""
Configuration management for remindr.

The configuration is stored as a TOML file in the state directory
(~/.remindr by default). It names the history file to watch and the
daemon's timing and pool parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "remindr.toml"
CONFIG_VERSION = 1

# Fixed file names inside the state directory
PID_FILENAME = "remindr.pid"
DB_FILENAME = "history.db"
STDOUT_FILENAME = "remindr.out"
STDERR_FILENAME = "remindr.err"
LAST_LINE_FILENAME = "last_command.txt"
LOCK_FILENAME = "remindr.lock"
SPAWN_LOCK_FILENAME = "remindr.spawn.lock"
INTEGRATION_FILENAME = "integration_status"
LOG_DIRNAME = "logs"


def get_state_dir() -> Path:
    """State directory: REMINDR_HOME if set, else ~/.remindr."""
    home = os.environ.get("REMINDR_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".remindr"


def detect_history_path(shell: Optional[str] = None) -> Path:
    """
    Pick the interactive history file for the user's shell.

    REMINDR_HISTFILE wins when set. Otherwise the shell name from $SHELL
    selects zsh, bash or fish history, falling back to bash.
    """
    override = os.environ.get("REMINDR_HISTFILE")
    if override:
        return Path(override).expanduser()

    if shell is None:
        shell = os.environ.get("SHELL", "/bin/bash")
    home = Path.home()
    if "zsh" in shell:
        return home / ".zsh_history"
    if "bash" in shell:
        return home / ".bash_history"
    if "fish" in shell:
        return home / ".local" / "share" / "fish" / "fish_history"
    return home / ".bash_history"


@dataclass
class DaemonSettings:
    """Timing parameters for the background watcher."""
    poll_interval: float = 1.0
    error_backoff: float = 5.0
    startup_grace: float = 0.5
    stop_timeout: float = 5.0


@dataclass
class RemindrConfig:
    """Complete configuration for one state directory."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    history_path: Optional[Path] = None
    daemon: DaemonSettings = field(default_factory=DaemonSettings)
    pool_size: int = 10

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def pid_path(self) -> Path:
        return self.path / PID_FILENAME

    @property
    def db_path(self) -> Path:
        return self.path / DB_FILENAME

    @property
    def lock_path(self) -> Path:
        """Held by the running daemon for its whole lifetime."""
        return self.path / LOCK_FILENAME

    @property
    def integration_status_path(self) -> Path:
        return self.path / INTEGRATION_FILENAME

    @property
    def last_line_path(self) -> Path:
        return self.path / LAST_LINE_FILENAME

    @property
    def log_dir(self) -> Path:
        return self.path / LOG_DIRNAME

    def resolved_history_path(self) -> Path:
        """Configured history file, or the one detected for the current shell."""
        if self.history_path is not None:
            return self.history_path
        return detect_history_path()


def load_config(state_dir: Path) -> RemindrConfig:
    """
    Load configuration from a state directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = state_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    version = data.get("remindr", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    history = data.get("history", {})
    history_path = history.get("path")

    daemon_section = data.get("daemon", {})
    defaults = DaemonSettings()
    daemon = DaemonSettings(
        poll_interval=float(daemon_section.get("poll_interval", defaults.poll_interval)),
        error_backoff=float(daemon_section.get("error_backoff", defaults.error_backoff)),
        startup_grace=float(daemon_section.get("startup_grace", defaults.startup_grace)),
        stop_timeout=float(daemon_section.get("stop_timeout", defaults.stop_timeout)),
    )
    if daemon.poll_interval <= 0:
        raise ValueError("daemon.poll_interval must be positive")

    pool_size = int(data.get("store", {}).get("pool_size", 10))
    if pool_size < 1:
        raise ValueError("store.pool_size must be at least 1")

    return RemindrConfig(
        path=state_dir,
        version=version,
        created=data.get("remindr", {}).get("created", ""),
        history_path=Path(history_path).expanduser() if history_path else None,
        daemon=daemon,
        pool_size=pool_size,
    )


def save_config(config: RemindrConfig) -> None:
    """
    Save configuration to the state directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "remindr": {
            "version": config.version,
            "created": config.created,
        },
        "daemon": {
            "poll_interval": config.daemon.poll_interval,
            "error_backoff": config.daemon.error_backoff,
            "startup_grace": config.daemon.startup_grace,
            "stop_timeout": config.daemon.stop_timeout,
        },
        "store": {
            "pool_size": config.pool_size,
        },
    }
    # TOML has no null: omit the path to keep shell detection
    if config.history_path is not None:
        data["history"] = {"path": str(config.history_path)}

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(state_dir: Optional[Path] = None) -> RemindrConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    if state_dir is None:
        state_dir = get_state_dir()
    config_path = state_dir / CONFIG_FILENAME

    if config_path.exists():
        return load_config(state_dir)
    else:
        config = RemindrConfig(path=state_dir)
        save_config(config)
        return config
