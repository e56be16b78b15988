"""
Suppression of lines that should not become events.

Holds the most recently accepted line so an identical line submitted
right after it (a shell re-writing its history, a hook firing twice) is
dropped. Also filters shell no-ops and remindr's own invocations.

The last accepted line can be mirrored to a marker file so it survives
daemon restarts. Losing it only risks one duplicate after a restart, so
marker I/O failures are logged and otherwise ignored.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

# Exact commands that are never worth recording
NOOP_COMMANDS = frozenset({"exit", "logout", "clear"})

# Substrings identifying remindr's own invocations (avoid self-recording)
SELF_MARKERS = ("remindr",)


def is_recordable(line: str, self_markers: Iterable[str] = SELF_MARKERS) -> bool:
    """Whether a trimmed line is worth recording at all."""
    if not line:
        return False
    if line in NOOP_COMMANDS:
        return False
    if line.startswith("#"):
        return False
    return not any(marker in line for marker in self_markers)


class Deduplicator:
    """Single-slot cache of the last accepted line."""

    def __init__(
        self,
        marker_path: Optional[Path] = None,
        self_markers: Iterable[str] = SELF_MARKERS,
    ):
        """
        Args:
            marker_path: File mirroring the last accepted line, or None
                to keep it in memory only
            self_markers: Substrings that identify remindr's own commands
        """
        self._marker_path = marker_path
        self._self_markers = tuple(self_markers)
        self._last: Optional[str] = self._load()

    def _load(self) -> Optional[str]:
        if self._marker_path is None:
            return None
        try:
            text = self._marker_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read last-command marker %s: %s", self._marker_path, e)
            return None
        return text or None

    def _save(self, line: str) -> None:
        if self._marker_path is None:
            return
        try:
            self._marker_path.parent.mkdir(parents=True, exist_ok=True)
            self._marker_path.write_text(line, encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot write last-command marker %s: %s", self._marker_path, e)

    @property
    def last(self) -> Optional[str]:
        """The most recently accepted line."""
        return self._last

    def accept(self, line: str) -> bool:
        """
        Decide whether a line becomes an event.

        Returns False for blank lines, no-ops, comments, remindr's own
        commands, and a repeat of the last accepted line. Otherwise the
        (trimmed) line becomes the new last accepted line.
        """
        text = line.strip()
        if not is_recordable(text, self._self_markers):
            return False
        if text == self._last:
            logger.debug("Suppressed repeat: %s", text)
            return False
        self._last = text
        self._save(text)
        return True

    def reset(self) -> None:
        """Forget the last accepted line (and its marker)."""
        self._last = None
        if self._marker_path is not None:
            try:
                self._marker_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Cannot remove last-command marker %s: %s", self._marker_path, e)
