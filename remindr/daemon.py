"""
Single-instance lifecycle for the background watcher.

Two files in the state directory keep one watcher per user. The daemon
holds an exclusive lock on `remindr.lock` for its whole lifetime and
exits at once if it cannot get it. The PID file names that process so it
can be found and signalled. Liveness always comes from the OS (via a
ProcessInspector); the status flag in the event store is advisory and
is kept in line with the OS whenever a check finds the two disagree.

A PID file naming a process that no longer exists, or a process started
after the PID file was written (the pid was reused), is stale. Any check
that finds one removes it, clears the stored flag, and reports the
daemon as stopped. A PID file that does not contain a number is a
corruption error, never read as "stopped".
"""

import enum
import logging
import os
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from .config import LOCK_FILENAME, PID_FILENAME, SPAWN_LOCK_FILENAME, STDERR_FILENAME, STDOUT_FILENAME
from .errors import LivenessCheckError, PidFileError, SignalError, SpawnError, StorageError
from .event_store import EventStore
from .lock import ProcessLock
from .process import ProcessInspector, get_inspector

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_GRACE = 0.5
DEFAULT_STOP_TIMEOUT = 5.0

# Extra wait for a concurrent start() to finish, beyond its startup grace
SPAWN_LOCK_WAIT = 10.0

# Clock tolerance when comparing process start time to the PID file mtime
PID_REUSE_SLACK = 2.0


class DaemonState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STALE = "stale"     # PID file present, process gone


def default_daemon_command(state_dir: Path) -> list[str]:
    """Command line that runs the watcher loop in the foreground."""
    # Use sys.executable to ensure we use the same Python
    return [
        sys.executable, "-m", "remindr.cli",
        "--home", str(state_dir),
        "daemon",
    ]


def read_pid_file(pid_path: Path) -> Optional[int]:
    """
    Read a PID file.

    Returns:
        The pid, or None if the file does not exist

    Raises:
        PidFileError: if the file holds anything but a positive integer
        LivenessCheckError: if the file exists but cannot be read
    """
    try:
        content = pid_path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise LivenessCheckError(f"Cannot read PID file {pid_path}: {e}") from e

    text = content.strip()
    if not text.isdigit() or int(text) <= 0:
        raise PidFileError(
            f"PID file {pid_path} is corrupt (contains {text[:40]!r}); "
            "remove it if no remindr daemon is running"
        )
    return int(text)


def write_pid_file(pid_path: Path, pid: int) -> None:
    """Write the PID file atomically (temp file + rename)."""
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = pid_path.with_name(pid_path.name + ".tmp")
    tmp_path.write_text(f"{pid}\n")
    os.replace(tmp_path, pid_path)


class DaemonController:
    """
    Start, stop and query the background watcher.

    The controller does not run the watcher itself; it spawns a detached
    process (by default `python -m remindr.cli daemon`) and talks to it
    only through the PID file and OS signals.
    """

    def __init__(
        self,
        state_dir: Path,
        store: Optional[EventStore] = None,
        *,
        inspector: Optional[ProcessInspector] = None,
        command: Optional[Sequence[str]] = None,
        startup_grace: float = DEFAULT_STARTUP_GRACE,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
    ):
        """
        Args:
            state_dir: Directory holding the PID file and daemon output
            store: Event store whose status flag mirrors liveness, if any
            inspector: OS process inspector (platform default if None)
            command: Command line to spawn (default_daemon_command if None)
            startup_grace: Seconds the child must survive before it counts
                as started
            stop_timeout: Seconds stop() waits for the process to exit
        """
        self.state_dir = state_dir
        self.store = store
        self.inspector = inspector if inspector is not None else get_inspector()
        self.command = list(command) if command is not None else default_daemon_command(state_dir)
        self.startup_grace = startup_grace
        self.stop_timeout = stop_timeout
        self._child: Optional[subprocess.Popen] = None

    @property
    def pid_path(self) -> Path:
        return self.state_dir / PID_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.state_dir / LOCK_FILENAME

    @property
    def spawn_lock_path(self) -> Path:
        return self.state_dir / SPAWN_LOCK_FILENAME

    @property
    def stdout_path(self) -> Path:
        return self.state_dir / STDOUT_FILENAME

    @property
    def stderr_path(self) -> Path:
        return self.state_dir / STDERR_FILENAME

    # -------------------------------------------------------------------------
    # Liveness
    # -------------------------------------------------------------------------

    def read_pid(self) -> Optional[int]:
        """Pid recorded in the PID file, or None if there is no PID file."""
        return read_pid_file(self.pid_path)

    def daemon_lock_held(self) -> bool:
        """Whether some process holds the daemon's lifetime lock."""
        return ProcessLock(self.lock_path).is_locked()

    def _pid_alive(self, pid: int) -> bool:
        try:
            if not self.inspector.exists(pid):
                return False
            started = self.inspector.create_time(pid)
        except OSError as e:
            raise LivenessCheckError(f"Cannot check whether pid {pid} is running: {e}") from e

        if started is None:
            return True
        try:
            written = self.pid_path.stat().st_mtime
        except FileNotFoundError:
            return True
        if started > written + PID_REUSE_SLACK:
            # The PID file predates this process, so the pid was reused
            logger.warning("pid %d was started after %s was written; not the daemon", pid, self.pid_path)
            return False
        return True

    def state(self) -> DaemonState:
        """Inspect the PID file and the OS without changing anything."""
        pid = self.read_pid()
        if pid is None:
            return DaemonState.STOPPED
        if self._pid_alive(pid):
            return DaemonState.RUNNING
        return DaemonState.STALE

    def is_running(self) -> bool:
        """
        Whether the daemon process currently exists.

        A stale PID file is cleaned up on the way.

        Raises:
            PidFileError: PID file content is not a pid
            LivenessCheckError: the OS could not be asked
        """
        pid = self.read_pid()
        if pid is None:
            return False
        if self._pid_alive(pid):
            return True
        self._clear_stale(pid)
        return False

    def _clear_stale(self, pid: int) -> None:
        logger.warning("Removing stale PID file %s (pid %s is not running)", self.pid_path, pid)
        try:
            self.pid_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Cannot remove stale PID file %s: %s", self.pid_path, e)
        self._set_flag(False, strict=False)

    def _set_flag(self, active: bool, strict: bool = True) -> None:
        if self.store is None:
            return
        try:
            self.store.set_status(active)
        except StorageError:
            if strict:
                raise
            logger.warning("Cannot update stored daemon status", exc_info=True)

    def reconcile(self) -> bool:
        """
        Make the stored status flag agree with the OS.

        Returns:
            True if the daemon is running
        """
        running = self.is_running()
        if self.store is not None and self.store.get_status() != running:
            logger.info("Stored daemon status out of date, setting it to %s", running)
            self.store.set_status(running)
        return running

    # -------------------------------------------------------------------------
    # Start / stop
    # -------------------------------------------------------------------------

    def start(self) -> Optional[int]:
        """
        Spawn the daemon unless one is already running.

        Concurrent calls are serialized by the spawn lock, so exactly one
        of them launches a daemon and the others return None. The PID
        file is written only after the child has survived the startup
        grace period, so a failed spawn never leaves one behind.

        Returns:
            The new daemon's pid, or None if one was already running

        Raises:
            SpawnError: the process could not be started or died at once
        """
        self.state_dir.mkdir(parents=True, exist_ok=True)
        spawn_lock = ProcessLock(self.spawn_lock_path)
        if not spawn_lock.acquire(timeout=self.startup_grace + SPAWN_LOCK_WAIT):
            raise SpawnError(f"Timed out waiting for another start to finish ({self.spawn_lock_path})")
        try:
            return self._start_locked()
        finally:
            spawn_lock.release()

    def _start_locked(self) -> Optional[int]:
        if self.is_running():
            logger.info("Daemon is already running (pid %s)", self.read_pid())
            return None
        if self.daemon_lock_held():
            logger.info("Daemon lock %s is held by a running daemon", self.lock_path)
            return None

        logger.info("Starting daemon: %s", " ".join(self.command))

        stdout_fd = stderr_fd = None
        try:
            try:
                stdout_fd = open(self.stdout_path, "wb")
                stderr_fd = open(self.stderr_path, "wb")
            except OSError as e:
                raise SpawnError(f"Cannot create daemon output files in {self.state_dir}: {e}") from e

            kwargs: dict = {
                "stdin": subprocess.DEVNULL,
                "stdout": stdout_fd,
                "stderr": stderr_fd,
                "cwd": str(self.state_dir),
            }
            if sys.platform != "win32":
                # Unix: start new session to fully detach
                kwargs["start_new_session"] = True
            else:
                # Windows: use CREATE_NEW_PROCESS_GROUP
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

            try:
                child = subprocess.Popen(self.command, **kwargs)
            except OSError as e:
                raise SpawnError(f"Failed to start daemon process: {e}") from e
        finally:
            # Close parent's copy of the output fds (child inherited them)
            if stdout_fd:
                stdout_fd.close()
            if stderr_fd:
                stderr_fd.close()

        try:
            returncode = child.wait(timeout=self.startup_grace)
        except subprocess.TimeoutExpired:
            returncode = None
        if returncode is not None:
            # A daemon that found the lifetime lock taken exits cleanly
            if returncode == 0 and self.daemon_lock_held():
                logger.info("Daemon exited because another one holds %s", self.lock_path)
                return None
            raise SpawnError(
                f"Daemon exited immediately with status {returncode}; "
                f"see {self.stderr_path}"
            )

        write_pid_file(self.pid_path, child.pid)
        self._child = child
        self._set_flag(True)
        logger.info("Daemon started (pid=%d)", child.pid)
        return child.pid

    def stop(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Ask the running daemon to exit and wait for it.

        Returns:
            The pid that was stopped, or None if nothing was running

        Raises:
            SignalError: the termination request could not be delivered,
                or the process was still alive when the timeout ran out;
                the PID file is left in place either way
        """
        if not self.is_running():
            logger.info("Daemon is not running")
            return None

        pid = self.read_pid()
        timeout = self.stop_timeout if timeout is None else timeout
        logger.info("Stopping daemon (pid=%d)", pid)
        try:
            self.inspector.terminate(pid)
        except ProcessLookupError:
            logger.info("Daemon (pid=%d) exited before it was signalled", pid)
        except OSError as e:
            raise SignalError(f"Failed to send termination signal to pid {pid}: {e}") from e
        else:
            if not self._wait_for_exit(pid, timeout):
                raise SignalError(
                    f"Daemon (pid {pid}) still running {timeout:.1f}s after termination "
                    f"request; PID file {self.pid_path} kept"
                )

        if self.daemon_lock_held():
            raise SignalError(
                f"Daemon (pid {pid}) is gone but {self.lock_path} is still held "
                "by another process"
            )

        self.pid_path.unlink(missing_ok=True)
        self._set_flag(False)
        logger.info("Daemon stopped")
        return pid

    def _wait_for_exit(self, pid: int, timeout: float) -> bool:
        """Wait up to `timeout` seconds for pid to exit; True if it did."""
        if self._child is not None and self._child.pid == pid:
            # Our own child: wait() also reaps it
            try:
                self._child.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                pass
            else:
                self._child = None
                return True
        else:
            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline:
                if not self.inspector.exists(pid):
                    return True
                time.sleep(0.1)
            if not self.inspector.exists(pid):
                return True
        logger.warning("Daemon (pid=%d) still running %.1fs after termination request", pid, timeout)
        return False
