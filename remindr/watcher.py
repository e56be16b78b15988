"""
The daemon's main loop.

Pulls new lines from the history file, drops the ones the deduplicator
rejects, classifies the rest and appends them to the event store, in
file order, until shutdown is requested.

Shutdown arrives as SIGTERM from `remindr off` (or SIGINT in the
foreground). The handler only flips a ShutdownSignal; the loop checks it
between polls and while sleeping, then closes the history file and the
store's connections before the process exits.
"""

import logging
import os
import re
import signal
import time
from typing import Callable, Optional

from .classifier import Classification, classify
from .config import RemindrConfig
from .daemon import read_pid_file, write_pid_file
from .dedup import Deduplicator
from .errors import LivenessCheckError, PidFileError, StorageError
from .event_store import EventStore
from .lock import ProcessLock
from .logging_config import configure_ops_log
from .tailer import DEFAULT_ERROR_BACKOFF, DEFAULT_POLL_INTERVAL, FileTailer

logger = logging.getLogger(__name__)

# Longest a pending shutdown request can go unnoticed while waiting
_WAIT_SLICE = 0.1

# zsh EXTENDED_HISTORY: ": <start>:<elapsed>;<command>"
_ZSH_EXTENDED_RE = re.compile(r"^: \d+:\d+;(.*)$")
# fish history is YAML-ish: "- cmd: <command>" followed by indented metadata
_FISH_CMD_RE = re.compile(r"^- cmd: (.*)$")
_FISH_META_RE = re.compile(r"^\s+(when|paths):")


class ShutdownSignal:
    """Cancellation flag shared by the signal handler and the loop.

    Recording the request is the only thing done in signal context; wait()
    sleeps in short slices and rechecks it.
    """

    def __init__(self):
        self._requested = False
        self.signum: Optional[int] = None

    @property
    def requested(self) -> bool:
        return self._requested

    def request(self, signum: Optional[int] = None) -> None:
        self.signum = signum
        self._requested = True

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; return early once requested."""
        deadline = time.monotonic() + timeout
        while not self._requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(_WAIT_SLICE, remaining))
        return self._requested


def install_signal_handlers(shutdown: ShutdownSignal) -> None:
    """Route SIGTERM and SIGINT to the shutdown signal."""

    def handle_signal(signum, frame):
        shutdown.request(signum)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)


def parse_history_line(raw: str) -> str:
    """
    Extract the command from one history file line.

    zsh extended-history and fish records carry metadata around the
    command; bash history (and anything unrecognised) is the command
    itself. fish metadata lines come back empty.
    """
    m = _ZSH_EXTENDED_RE.match(raw)
    if m:
        return m.group(1)
    m = _FISH_CMD_RE.match(raw)
    if m:
        return m.group(1)
    if _FISH_META_RE.match(raw):
        return ""
    return raw


class Watcher:
    """Turns history lines into stored events."""

    def __init__(
        self,
        tailer: Optional[FileTailer],
        dedup: Deduplicator,
        store: EventStore,
        classify: Callable[[str], Optional[Classification]] = classify,
    ):
        self.tailer = tailer
        self.dedup = dedup
        self.store = store
        self.classify = classify

    def process_line(self, line: str) -> Optional[int]:
        """
        Record one history line if it is worth recording.

        Returns:
            The new event id, or None if the line was filtered out
        """
        command = parse_history_line(line).strip()
        if not self.dedup.accept(command):
            return None

        result = self.classify(command)
        if result is None:
            event_id = self.store.append(command)
        else:
            event_id = self.store.append(
                command,
                category=result.category,
                tags=result.tags,
                context=result.context,
            )
        logger.debug("Recorded command %d: %s", event_id, command)
        return event_id

    def run(
        self,
        shutdown: ShutdownSignal,
        interval: float = DEFAULT_POLL_INTERVAL,
        error_backoff: float = DEFAULT_ERROR_BACKOFF,
    ) -> int:
        """
        Record lines until shutdown is requested.

        A failed store write is logged and the loop moves on to the next
        line.

        Returns:
            Number of events recorded
        """
        logger.info("Watching %s", self.tailer.path)
        recorded = 0
        for line in self.tailer.follow(shutdown, interval, error_backoff):
            try:
                if self.process_line(line) is not None:
                    recorded += 1
            except StorageError:
                logger.exception("Failed to record command")
        logger.info("Watcher stopped after recording %d commands", recorded)
        return recorded


def _claim_pid_file(config: RemindrConfig, own_pid: int) -> None:
    """Point the PID file at this process unless it already does."""
    try:
        current = read_pid_file(config.pid_path)
    except (PidFileError, LivenessCheckError) as e:
        logger.warning("Replacing unreadable PID file: %s", e)
        current = None
    if current != own_pid:
        write_pid_file(config.pid_path, own_pid)


def _release_pid_file(config: RemindrConfig, own_pid: int) -> None:
    """Remove the PID file if it still names this process."""
    try:
        if read_pid_file(config.pid_path) == own_pid:
            config.pid_path.unlink(missing_ok=True)
    except (PidFileError, LivenessCheckError, OSError) as e:
        logger.warning("Cannot release PID file %s: %s", config.pid_path, e)


def run_daemon(config: RemindrConfig, shutdown: Optional[ShutdownSignal] = None) -> int:
    """
    Daemon entry point: watch history until told to stop.

    Exits at once, with status 0, when another daemon holds the lifetime
    lock for this state directory.

    Args:
        config: Configuration for the state directory
        shutdown: Pre-made shutdown signal (signal handlers are installed
            only when this is None)

    Returns:
        Process exit status
    """
    ops_handler = configure_ops_log(config.log_dir)
    own_pid = os.getpid()
    daemon_lock = ProcessLock(config.lock_path)
    try:
        if not daemon_lock.acquire(blocking=False):
            logger.info("Daemon: another daemon already holds %s, exiting (pid=%d)",
                        config.lock_path, own_pid)
            return 0

        try:
            logger.info("Daemon started (pid=%d)", own_pid)
            if shutdown is None:
                shutdown = ShutdownSignal()
                install_signal_handlers(shutdown)
            # Holding the lock makes this process the daemon, whatever the file said
            _claim_pid_file(config, own_pid)

            store = EventStore(config.db_path, pool_size=config.pool_size)
            try:
                store.migrate()
                tailer = FileTailer(config.resolved_history_path())
                dedup = Deduplicator(config.last_line_path)
                watcher = Watcher(tailer, dedup, store)
                try:
                    watcher.run(
                        shutdown,
                        interval=config.daemon.poll_interval,
                        error_backoff=config.daemon.error_backoff,
                    )
                finally:
                    tailer.close()
            finally:
                store.close()
                _release_pid_file(config, own_pid)
                if shutdown.signum is not None:
                    logger.info("Received signal %d", shutdown.signum)
                logger.info("Daemon shutting down")
        finally:
            daemon_lock.release()
        return 0
    finally:
        logging.getLogger("remindr").removeHandler(ops_handler)
        ops_handler.close()
