"""
Durable append-only log of confirmed energy readings.

The log is the single source of truth for reading history. Appends are
idempotent on the uniqueness key ``(captured_at, metric_kind, source)``:
appending a reading that is already stored raises
:class:`~edge.src.errors.DuplicateReading`, which callers treat as success.

Two implementations share the :class:`AppendLog` protocol:

- :class:`SqliteAppendLog` (this module): a local log in a SQLite file.
- :class:`~edge.src.remote.RemoteAppendLog`: writes through to the ledger
  service over HTTPS.

Operations:
- append(reading): INSERT unless the key exists.
- latest(metric_kind): newest reading of a kind, or None.
- readings(...): history in captured_at order.
- count(): number of stored readings.

CHANGELOG:
- 2026-10-14: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Protocol

import aiosqlite

from edge.src.errors import DuplicateReading
from edge.src.models import MetricKind, Reading, ReadingSource, format_ts, parse_ts

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS readings (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    captured_at TEXT NOT NULL,
    metric_kind TEXT NOT NULL,
    source TEXT NOT NULL,
    value TEXT NOT NULL,
    appended_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    UNIQUE (captured_at, metric_kind, source)
);
"""

_CREATE_INDEX_SQL = """\
CREATE INDEX IF NOT EXISTS readings_kind_ts
ON readings (metric_kind, captured_at);
"""

_INSERT_SQL = """\
INSERT INTO readings (captured_at, metric_kind, source, value)
VALUES (?, ?, ?, ?)
ON CONFLICT (captured_at, metric_kind, source) DO NOTHING;
"""

# Manual corrections win over automatic readings taken at the same instant.
_LATEST_SQL = """\
SELECT captured_at, metric_kind, source, value
FROM readings
WHERE metric_kind = ?
ORDER BY captured_at DESC,
         CASE source WHEN 'manual' THEN 0 ELSE 1 END ASC,
         seq DESC
LIMIT 1;
"""

_COUNT_SQL = "SELECT COUNT(*) FROM readings;"


class AppendLog(Protocol):
    """Contract shared by every durable log the queue can flush into."""

    async def append(self, reading: Reading) -> None:
        """Append *reading*, raising DuplicateReading if its key exists."""
        ...

    async def latest(self, metric_kind: MetricKind) -> Reading | None:
        """Return the newest reading of *metric_kind*, or None."""
        ...


def _row_to_reading(row: tuple[str, str, str, str]) -> Reading:
    captured_at, metric_kind, source, value = row
    return Reading(
        captured_at=parse_ts(captured_at),
        metric_kind=MetricKind(metric_kind),
        source=ReadingSource(source),
        value=Decimal(value),
    )


class SqliteAppendLog:
    """Local durable append log backed by a SQLite database file.

    Uses WAL journal mode with one writer connection and one reader
    connection, so queries never wait on an in-progress append and only
    ever see committed rows. Appends are serialized with an asyncio lock.

    Args:
        path: Filesystem path for the SQLite database file.

    Usage::

        async with SqliteAppendLog(path="/data/log.db") as log:
            await log.append(reading)
            newest = await log.latest(MetricKind.PRODUCTION)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._writer: aiosqlite.Connection | None = None
        self._reader: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> None:
        """Open both connections and create the schema if needed."""
        self._writer = await aiosqlite.connect(str(self._path))
        await self._writer.execute("PRAGMA journal_mode=WAL;")
        await self._writer.execute(_CREATE_TABLE_SQL)
        await self._writer.execute(_CREATE_INDEX_SQL)
        await self._writer.commit()
        self._reader = await aiosqlite.connect(str(self._path))

    async def close(self) -> None:
        """Close both connections."""
        for conn in (self._reader, self._writer):
            if conn is not None:
                await conn.close()
        self._reader = None
        self._writer = None

    async def __aenter__(self) -> SqliteAppendLog:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def append(self, reading: Reading) -> None:
        """Append a reading to the log.

        Args:
            reading: The reading to store.

        Raises:
            DuplicateReading: A reading with the same key is already stored.
                The log is unchanged.
        """
        assert self._writer is not None, "Log not opened. Call open() or use async with."
        captured_at, metric_kind, source = reading.key
        async with self._write_lock:
            cursor = await self._writer.execute(
                _INSERT_SQL, (captured_at, metric_kind, source, str(reading.value))
            )
            inserted = cursor.rowcount
            await self._writer.commit()
        if inserted == 0:
            raise DuplicateReading(reading.key)
        logger.debug("Appended %s reading at %s", metric_kind, captured_at)

    async def latest(self, metric_kind: MetricKind) -> Reading | None:
        """Return the most recent reading of *metric_kind*, or None."""
        assert self._reader is not None, "Log not opened. Call open() or use async with."
        cursor = await self._reader.execute(_LATEST_SQL, (MetricKind(metric_kind).value,))
        row = await cursor.fetchone()
        return _row_to_reading(row) if row is not None else None

    async def readings(
        self,
        metric_kind: MetricKind | None = None,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[Reading]:
        """Return stored readings ordered by captured_at ascending.

        Args:
            metric_kind: Restrict to one kind, or None for all kinds.
            since: Inclusive lower bound on captured_at.
            until: Exclusive upper bound on captured_at.
            limit: Maximum number of readings to return.

        Returns:
            List of readings; ties on captured_at keep append order.
        """
        assert self._reader is not None, "Log not opened. Call open() or use async with."
        clauses: list[str] = []
        params: list[object] = []
        if metric_kind is not None:
            clauses.append("metric_kind = ?")
            params.append(MetricKind(metric_kind).value)
        if since is not None:
            clauses.append("captured_at >= ?")
            params.append(format_ts(since))
        if until is not None:
            clauses.append("captured_at < ?")
            params.append(format_ts(until))

        sql = "SELECT captured_at, metric_kind, source, value FROM readings"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY captured_at ASC, seq ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        cursor = await self._reader.execute(sql, params)
        rows = await cursor.fetchall()
        return [_row_to_reading(row) for row in rows]

    async def count(self) -> int:
        """Return the number of stored readings."""
        assert self._reader is not None, "Log not opened. Call open() or use async with."
        cursor = await self._reader.execute(_COUNT_SQL)
        row = await cursor.fetchone()
        return row[0]
