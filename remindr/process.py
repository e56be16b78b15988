"""
OS process inspection behind one small interface.

The daemon controller asks three questions: does a process with this pid
exist, when was it started, and please ask it to terminate. Each
platform answers them its own way; get_inspector() picks the right one.

exists() and terminate() follow os.kill conventions for failures:
ProcessLookupError when the process is gone, PermissionError when it
exists but belongs to someone else, OSError for anything else.
"""

import errno
import os
import signal
import sys
from typing import Optional, Protocol

import psutil


class ProcessInspector(Protocol):
    """Liveness check, start time and graceful termination for a pid."""

    def exists(self, pid: int) -> bool:
        ...

    def create_time(self, pid: int) -> Optional[float]:
        """Process start time (epoch seconds), or None if unknown."""
        ...

    def terminate(self, pid: int) -> None:
        ...


def _create_time(pid: int) -> Optional[float]:
    try:
        return psutil.Process(pid).create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


class PosixProcessInspector:
    """Signal-based inspector for Linux, macOS and other Unixes."""

    def exists(self, pid: int) -> bool:
        """Check with signal 0, which checks existence without delivering anything.

        A zombie (exited, not yet reaped by its parent) answers signal 0
        but is not running, so it counts as gone.
        """
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by another user
            return True
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True

    def create_time(self, pid: int) -> Optional[float]:
        return _create_time(pid)

    def terminate(self, pid: int) -> None:
        """Send SIGTERM."""
        if pid <= 0:
            raise ProcessLookupError(errno.ESRCH, f"Invalid pid {pid}")
        os.kill(pid, signal.SIGTERM)


class WindowsProcessInspector:
    """psutil-based inspector; Windows has no existence-only signal."""

    def exists(self, pid: int) -> bool:
        if pid <= 0:
            return False
        return psutil.pid_exists(pid)

    def create_time(self, pid: int) -> Optional[float]:
        return _create_time(pid)

    def terminate(self, pid: int) -> None:
        try:
            psutil.Process(pid).terminate()
        except psutil.NoSuchProcess as e:
            raise ProcessLookupError(errno.ESRCH, f"No process with pid {pid}") from e
        except psutil.AccessDenied as e:
            raise PermissionError(errno.EPERM, f"Access denied to pid {pid}") from e


def get_inspector() -> ProcessInspector:
    """Inspector for the running platform."""
    if sys.platform == "win32":
        return WindowsProcessInspector()
    return PosixProcessInspector()
