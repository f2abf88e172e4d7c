"""
Activity log for resource manager changes.
Created: 2026-02-14

Append-only text log, one line per change:

    2026-02-14T10:00:00+00:00 [neo] BOOKED: Resource: GPU-A from ... to ...

The dashboard's activity panel tails this file.
"""

import logging
import re
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from edith.resources.models import now_iso

logger = logging.getLogger(__name__)

_LINE_PATTERN = re.compile(
    r"^(?P<timestamp>\S+) \[(?P<actor>[^\]]*)\] (?P<action>[A-Z_]+): (?P<description>.*)$"
)


@dataclass
class ActivityEntry:
    """A single activity log line."""

    timestamp: str
    actor: str
    action: str  # CREATED, BOOKED, COST_RECORDED, QUOTA_SET, ...
    description: str

    def to_line(self) -> str:
        return f"{self.timestamp} [{self.actor}] {self.action}: {self.description}"

    @classmethod
    def from_line(cls, line: str) -> "ActivityEntry | None":
        match = _LINE_PATTERN.match(line.rstrip("\n"))
        if not match:
            return None
        return cls(**match.groupdict())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ActivityLog:
    """
    Append-only activity logger.
    Writes to <data_dir>/logs/activity.log, or keeps entries in memory
    only when no path is given.
    """

    def __init__(self, log_path: Path | None = None, keep: int = 200):
        self.log_path = log_path
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        self._recent: deque[ActivityEntry] = deque(maxlen=keep)
        self._callbacks: list[Callable[[ActivityEntry], None]] = []

    def on_log(self, callback: Callable[[ActivityEntry], None]) -> None:
        """Register a callback to be called after each entry is written."""
        self._callbacks.append(callback)

    def log(self, actor: str, action: str, description: str) -> ActivityEntry:
        """Append an entry."""
        entry = ActivityEntry(
            timestamp=now_iso(),
            actor=actor or "system",
            action=action,
            description=description.replace("\n", " "),
        )
        self._recent.append(entry)

        if self.log_path is not None:
            try:
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(entry.to_line() + "\n")
            except OSError as e:
                # The change itself is already persisted; losing the log line is not fatal
                logger.error(f"Failed to write activity log: {e} | {entry.to_line()}")

        for cb in self._callbacks:
            try:
                cb(entry)
            except Exception:
                logger.warning("Activity callback failed", exc_info=True)
        return entry

    def tail(self, limit: int = 50) -> list[ActivityEntry]:
        """Most recent entries, newest last."""
        if self.log_path is None or not self.log_path.exists():
            return list(self._recent)[-limit:]

        try:
            with open(self.log_path, encoding="utf-8") as f:
                lines = deque(f, maxlen=limit)
        except OSError as e:
            logger.error(f"Failed to read activity log: {e}")
            return list(self._recent)[-limit:]

        entries = [ActivityEntry.from_line(line) for line in lines]
        return [e for e in entries if e is not None]
