"""Durable tracker state for the meeting scanner.

Persists the scanner's dedup/tracking data to a single JSON file so a
restarted daemon neither re-warns for a meeting it already announced nor
forgets to expire a warning it left on the lamp.

- File locking for cross-process safety (fcntl.flock)
- Atomic replace: write to a temp file, then rename over the target
- No partial updates: every save writes the complete snapshot

A missing or corrupt file loads as an empty snapshot. That is the normal
first-run condition, not an error.
"""

import fcntl
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from lamp_monitor.errors import StateStoreError

logger = logging.getLogger(__name__)


@dataclass
class TrackerSnapshot:
    """Persisted projection of the meeting scanner's live state.

    Attributes:
        warned_ids: Meeting ids a warning has been issued for
        meeting_start_times: Start time per warned meeting still awaiting expiry
        in_warning_state: Whether the lamp currently shows the warning
    """

    warned_ids: set[str] = field(default_factory=set)
    meeting_start_times: dict[str, datetime] = field(default_factory=dict)
    in_warning_state: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible data (start times as epoch seconds)."""
        return {
            "warned_meeting_ids": sorted(self.warned_ids),
            "meeting_start_times": {
                meeting_id: start.timestamp() for meeting_id, start in sorted(self.meeting_start_times.items())
            },
            "in_warning_state": self.in_warning_state,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackerSnapshot":
        """Parse serialized data.

        Raises:
            ValueError, TypeError: data doesn't have the expected shape
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")

        warned = data.get("warned_meeting_ids", [])
        starts = data.get("meeting_start_times", {})
        in_warning = data.get("in_warning_state", False)
        if not isinstance(warned, list) or not isinstance(starts, dict) or not isinstance(in_warning, bool):
            raise TypeError("invalid field types in tracker state")

        return cls(
            warned_ids={str(meeting_id) for meeting_id in warned},
            meeting_start_times={
                str(meeting_id): datetime.fromtimestamp(float(ts), tz=timezone.utc)
                for meeting_id, ts in starts.items()
            },
            in_warning_state=in_warning,
        )


class StateStore:
    """Load/save a TrackerSnapshot at a fixed file location.

    Args:
        file_path: Path of the JSON state file
    """

    _file_label = "state file"

    def __init__(self, file_path: Path):
        self._file_path = Path(file_path)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def load(self) -> TrackerSnapshot:
        """Load the last saved snapshot.

        Returns:
            The snapshot, or an empty one if the file is missing or unreadable
        """
        with self._lock:
            if not self._file_path.exists():
                logger.debug(f"No previous {self._file_label} found at {self._file_path}")
                return TrackerSnapshot()

            try:
                with open(self._file_path, encoding="utf-8") as f:
                    fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                    try:
                        data = json.load(f)
                    finally:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                snapshot = TrackerSnapshot.from_dict(data)
            except (OSError, OverflowError, ValueError, TypeError) as e:
                logger.warning(f"Failed to load {self._file_label}, starting fresh: {e}")
                return TrackerSnapshot()

            logger.debug(
                f"State loaded: {len(snapshot.warned_ids)} warned meetings, "
                f"in_warning_state={snapshot.in_warning_state}"
            )
            return snapshot

    def save(self, snapshot: TrackerSnapshot) -> None:
        """Write the complete snapshot.

        Raises:
            StateStoreError: the file could not be written
        """
        with self._lock:
            tmp_path = self._file_path.with_suffix(".tmp")
            try:
                self._file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                    try:
                        json.dump(snapshot.to_dict(), f, indent=2)
                        f.write("\n")
                        f.flush()
                        os.fsync(f.fileno())
                    finally:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                os.replace(tmp_path, self._file_path)
            except OSError as e:
                raise StateStoreError(f"Failed to write {self._file_label} {self._file_path}: {e}") from e

            logger.debug("State saved")

    def try_save(self, snapshot: TrackerSnapshot) -> bool:
        """Save, logging instead of raising on failure.

        The in-memory tracker stays authoritative; the next successful save
        restores durability.

        Returns:
            True if the snapshot was written
        """
        try:
            self.save(snapshot)
            return True
        except StateStoreError as e:
            logger.warning(str(e))
            return False
