"""Sync state persistence layer.

Two plain text files in the state directory carry discovery state from one
workflow run to the next:

* ``.synced-commit-sha`` -- last commit whose changes reached the server;
  an incremental scan diffs from here.
* ``.synced-timestamp`` -- ISO 8601 time of the last successful sync,
  used by the minimum-interval guard.

Both are written atomically (temp file + ``os.replace()``).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from ..file_handler import write_file

logger = logging.getLogger(__name__)

SYNCED_COMMIT_FILE = ".synced-commit-sha"
SYNCED_TIMESTAMP_FILE = ".synced-timestamp"


class SyncState:
    """Load and save the synced commit and timestamp.

    Args:
        state_dir: Directory holding the state files (the job's working
            directory by default, which the runner keeps between runs on
            self-hosted machines).
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    @property
    def commit_path(self) -> Path:
        return self._state_dir / SYNCED_COMMIT_FILE

    @property
    def timestamp_path(self) -> Path:
        return self._state_dir / SYNCED_TIMESTAMP_FILE

    def get_synced_commit(self) -> str:
        """Last synced commit id, or ``""`` before the first sync."""
        if not self.commit_path.exists():
            return ""
        return self.commit_path.read_text(encoding="utf-8").strip()

    def save_synced_commit(self, commit: str) -> None:
        """Persist *commit* and stamp the sync time; blank ids are ignored."""
        if not commit.strip():
            logger.warning("Not saving a blank synced commit")
            return
        write_file(self.commit_path, commit.strip())
        logger.info("Synced commit saved: %s", commit)
        self.save_synced_timestamp()

    def get_synced_timestamp(self) -> float:
        """Epoch milliseconds of the last sync, or 0 before the first sync."""
        if not self.timestamp_path.exists():
            return 0
        raw = self.timestamp_path.read_text(encoding="utf-8").strip()
        try:
            return datetime.fromisoformat(raw).timestamp() * 1000
        except ValueError:
            logger.warning("Ignoring malformed sync timestamp %r", raw)
            return 0

    def save_synced_timestamp(self, now: datetime | None = None) -> None:
        stamp = (now or datetime.now(timezone.utc)).isoformat()
        write_file(self.timestamp_path, stamp)

    def minutes_since_last_sync(self, now: datetime | None = None) -> float | None:
        """Elapsed minutes since the last sync, ``None`` before the first sync."""
        last = self.get_synced_timestamp()
        if not last:
            return None
        current = (now or datetime.now(timezone.utc)).timestamp() * 1000
        return (current - last) / 60000
