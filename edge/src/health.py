"""
Health file writer for the edge daemon.

Writes a JSON health file with four fields:
- last_poll_ts: ISO timestamp of the most recent poll attempt.
- last_flush_ts: ISO timestamp of the most recent clean flush.
- pending_count: Records waiting in the submission queue.
- failed_count: Records waiting for manual resolution.

The file is rewritten on every state change, giving Docker HEALTHCHECK or
monitoring a simple liveness signal.

CHANGELOG:
- 2026-10-16: Track pending/failed counts and flushes (STORY-010)
- 2026-02-14: Initial creation (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes edge health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_poll_ts: str | None = None
        self._last_flush_ts: str | None = None
        self._pending_count: int = 0
        self._failed_count: int = 0

    def record_poll(self) -> None:
        """Record a poll event and write health file."""
        self._last_poll_ts = datetime.now(tz=UTC).isoformat()
        self._write()

    def record_flush(self) -> None:
        """Record a clean flush and write health file."""
        self._last_flush_ts = datetime.now(tz=UTC).isoformat()
        self._write()

    def set_queue_counts(self, *, pending: int, failed: int) -> None:
        """Update queue counters and write health file."""
        self._pending_count = pending
        self._failed_count = failed
        self._write()

    def _write(self) -> None:
        data = {
            "last_poll_ts": self._last_poll_ts,
            "last_flush_ts": self._last_flush_ts,
            "pending_count": self._pending_count,
            "failed_count": self._failed_count,
        }
        # Replace atomically so readers never see a half-written file.
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data))
        tmp.replace(self.path)
