"""
Incremental reader for a growing history file.

Only bytes appended after open() are delivered, one complete line at a
time. A trailing line without its newline is held back until a later
poll completes it.

Truncation (the file got shorter) and rotation (the path now names a
different file) reset the cursor to byte 0. Content present in the new
file at that point is delivered, so a rotation can re-deliver lines:
delivery is at-least-once across rotations, exactly-once otherwise.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Iterator, Optional

if TYPE_CHECKING:
    from .watcher import ShutdownSignal

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_ERROR_BACKOFF = 5.0


@dataclass
class TailCursor:
    """Read position within the history file."""
    offset: int = 0      # bytes consumed, always at a line boundary
    last_size: int = 0   # file length seen by the previous poll


class FileTailer:
    """Tails one file by byte offset, surviving truncation and rotation."""

    def __init__(self, path: Path, encoding: str = "utf-8"):
        self.path = path
        self.encoding = encoding
        self.cursor = TailCursor()
        self._file: Optional[IO[bytes]] = None
        self._identity: Optional[tuple[int, int]] = None

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def _open_file(self) -> os.stat_result:
        f = open(self.path, "rb")
        try:
            st = os.fstat(f.fileno())
        except OSError:
            f.close()
            raise
        self.close()
        self._file = f
        self._identity = (st.st_dev, st.st_ino)
        return st

    def open(self) -> None:
        """
        Open the file and position the cursor at its current end.

        History already in the file is not replayed.

        Raises:
            FileNotFoundError: if the file does not exist
            OSError: if it cannot be opened or inspected
        """
        st = self._open_file()
        self.cursor = TailCursor(offset=st.st_size, last_size=st.st_size)
        logger.debug("Tailing %s from byte %d", self.path, st.st_size)

    def poll(self) -> list[str]:
        """
        Return the complete lines appended since the previous poll.

        Raises:
            OSError: if the file cannot be inspected or read; the cursor
                is left unchanged so the next poll retries
        """
        if self._file is None:
            raise ValueError("FileTailer.poll() called before open()")

        st = os.stat(self.path)
        if (st.st_dev, st.st_ino) != self._identity:
            logger.info("History file %s was replaced, reading from start", self.path)
            st = self._open_file()
            self.cursor = TailCursor()

        current = st.st_size
        if current < self.cursor.last_size:
            logger.info(
                "History file %s shrank (%d -> %d bytes), reading from start",
                self.path, self.cursor.last_size, current,
            )
            self.cursor = TailCursor()

        if current <= self.cursor.last_size:
            return []

        self._file.seek(self.cursor.offset)
        data = self._file.read(current - self.cursor.offset)
        self.cursor.last_size = current

        end = data.rfind(b"\n")
        if end < 0:
            return []
        self.cursor.offset += end + 1

        return [
            raw.rstrip(b"\r").decode(self.encoding, errors="replace")
            for raw in data[:end].split(b"\n")
        ]

    def follow(
        self,
        shutdown: "ShutdownSignal",
        interval: float = DEFAULT_POLL_INTERVAL,
        error_backoff: float = DEFAULT_ERROR_BACKOFF,
    ) -> Iterator[str]:
        """
        Yield lines forever, polling every `interval` seconds.

        Open/read failures are logged and retried after `error_backoff`
        seconds instead of ending the iteration. Ends once shutdown has
        been requested.
        """
        while not shutdown.requested:
            try:
                if not self.is_open:
                    self.open()
                lines = self.poll()
            except OSError as e:
                logger.warning(
                    "Cannot read history file %s: %s (retrying in %.0fs)",
                    self.path, e, error_backoff,
                )
                shutdown.wait(error_backoff)
                continue

            yield from lines
            shutdown.wait(interval)

    def close(self) -> None:
        """Release the file handle."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self):
        if not self.is_open:
            self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
