"""
Exclusive file locks between remindr processes.

The daemon holds one for its whole lifetime; `remindr on` holds another
around check-spawn-record so two overlapping starts cannot both launch a
daemon. The OS drops the lock when the holder exits, however it exits.

Locks are taken on separate open file descriptions, so two ProcessLock
objects in the same process exclude each other too.
"""

import os
import sys
import time
from pathlib import Path
from typing import Optional

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl


def _try_lock(fd: int) -> bool:
    try:
        if sys.platform == "win32":
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except (BlockingIOError, PermissionError):
        return False
    except OSError as e:
        # msvcrt reports contention as a generic OSError (EACCES/EDEADLK)
        if sys.platform == "win32":
            return False
        raise
    return True


def _unlock(fd: int) -> None:
    if sys.platform == "win32":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


class ProcessLock:
    """Exclusive lock on a file, usable across processes and threads."""

    def __init__(self, path: Path):
        self.path = path
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        """Whether this object currently holds the lock."""
        return self._fd is not None

    def acquire(self, blocking: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Take the lock.

        Args:
            blocking: Wait for the lock instead of failing at once
            timeout: Longest wait in seconds when blocking (None: forever)

        Returns:
            True if the lock is now held, False if another holder has it
        """
        if self._fd is not None:
            raise RuntimeError(f"Lock {self.path} is already held by this object")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            while not _try_lock(fd):
                if not blocking or (deadline is not None and time.monotonic() >= deadline):
                    os.close(fd)
                    return False
                time.sleep(0.05)
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd
        return True

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            _unlock(fd)
        finally:
            os.close(fd)

    def is_locked(self) -> bool:
        """Whether some holder (possibly this object) has the lock right now."""
        if self._fd is not None:
            return True
        if not self.path.exists():
            return False
        other = ProcessLock(self.path)
        if other.acquire(blocking=False):
            other.release()
            return False
        return True

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
