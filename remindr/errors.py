"""
Error types and error logging for remindr.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class RemindrError(Exception):
    """Base class for remindr failures reported to the user."""


class StorageError(RemindrError):
    """Schema, I/O or query failure in the event store."""


class LivenessCheckError(RemindrError):
    """The OS could not be asked whether the daemon process exists.

    Callers must not read this as "stopped": liveness is unknown.
    """


class PidFileError(RemindrError):
    """The PID file exists but does not hold a process id."""


class SpawnError(RemindrError):
    """The background daemon could not be started."""


class SignalError(RemindrError):
    """The termination request could not be delivered to the daemon."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting REMINDR_HOME."""
    home = os.environ.get("REMINDR_HOME")
    if home:
        return Path(home) / "remindr-errors.log"
    return Path.home() / ".remindr" / "remindr-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
