"""
Data types for recorded shell commands.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


# Fixed-width RFC3339 UTC format: lexical order matches chronological order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_utc_timestamp(dt: datetime) -> str:
    """Format a datetime for storage.

    Naive datetimes are assumed to already be UTC. This is the single
    source of truth for stored timestamp formatting.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Handles the canonical format as well as other RFC3339 variants
    ('+00:00' suffix, no fractional seconds, no suffix at all).
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_time(dt: datetime) -> str:
    """Short local-timezone display form (YYYY-MM-DD HH:MM:SS)."""
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class Event:
    """
    A recorded command.

    `id` is assigned by the store on insert and is None before that.
    `timestamp` is the capture time, not the time the shell ran the command.
    `category`, `tags` and `context` are filled by the classifier when a
    rule matches and may stay unset forever.
    """
    text: str
    timestamp: datetime = field(default_factory=utc_now)
    id: Optional[int] = None
    category: Optional[str] = None
    tags: Optional[str] = None
    context: Optional[str] = None

    def to_dict(self) -> dict:
        """JSON-friendly representation."""
        return {
            "id": self.id,
            "timestamp": format_utc_timestamp(self.timestamp),
            "text": self.text,
            "category": self.category,
            "tags": self.tags,
            "context": self.context,
        }
