"""
remindr

Records the commands you type into your shell as searchable events.

A background daemon tails the shell's history file, drops noise and
consecutive repeats, classifies each command and appends it to a local
SQLite store. The CLI queries the same store.

CLI Usage:
    remindr on                 start the daemon
    remindr off                stop it
    remindr status             daemon state and the last five commands
    remindr search docker      find recorded commands
    eval "$(remindr hook)"     record each command from the shell prompt

State:
    ~/.remindr/ holds the database, PID file, config and logs.
    Override with REMINDR_HOME.

Environment Variables:
    REMINDR_HOME      - Override the state directory
    REMINDR_HISTFILE  - History file to watch (default: detected from $SHELL)
    REMINDR_VERBOSE   - Set to 1 for debug logging
"""

from .classifier import Classification, classify
from .daemon import DaemonController, DaemonState
from .event_store import EventStore
from .types import Event

__version__ = "0.1.0"
__all__ = [
    "Classification",
    "DaemonController",
    "DaemonState",
    "Event",
    "EventStore",
    "classify",
]
