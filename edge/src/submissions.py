"""
Durable pending-submission queue for readings awaiting delivery.

Readings are written to the queue (and committed) before any delivery
attempt, and their submission records are only deleted once the durable log
has confirmed them. The queue survives process restarts because it is
backed by a SQLite database file on disk in WAL mode, which also lets the
operator CLI enqueue manual corrections while the daemon is running.

Delivery is exactly-once in effect, not in transport: a flush that crashes
after the log accepted a reading but before the queue dropped it will
re-deliver that reading, and the log answers with DuplicateReading, which
confirms the record.

Operations:
- enqueue(reading): persist a pending submission record.
- flush(log): deliver pending records oldest first.
- pending() / failed() / count(status): inspect records.
- latest_pending(metric_kind): newest undelivered reading of a kind.
- retry(record_id) / discard(record_id): manual resolution of failed records.

CHANGELOG:
- 2026-10-19: Unexpected append errors count as transient failures (STORY-016)
- 2026-10-15: Per-record flush with attempt bookkeeping, replaces peek/ack (STORY-005)
- 2026-02-14: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import aiosqlite

from edge.src.errors import (
    DeliveryPermanentFailure,
    DeliveryTransientFailure,
    DuplicateReading,
)
from edge.src.log import AppendLog
from edge.src.models import (
    MetricKind,
    Reading,
    ReadingSource,
    SubmissionRecord,
    SubmissionStatus,
    format_ts,
    parse_ts,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_ATTEMPT_TIMEOUT_S = 15.0
_INITIAL_BACKOFF_S = 1.0
_DEFAULT_MAX_BACKOFF_S = 300.0

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    captured_at TEXT NOT NULL,
    metric_kind TEXT NOT NULL,
    source TEXT NOT NULL,
    value TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    attempt_count INTEGER NOT NULL DEFAULT 0,
    attempt_limit INTEGER NOT NULL,
    last_attempt_at TEXT,
    last_error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (captured_at, metric_kind, source)
);
"""

_INSERT_SQL = """\
INSERT INTO submissions (captured_at, metric_kind, source, value, attempt_limit)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT (captured_at, metric_kind, source) DO NOTHING;
"""

_COLUMNS = (
    "id, captured_at, metric_kind, source, value, status, "
    "attempt_count, attempt_limit, last_attempt_at, last_error"
)

_SELECT_BY_KEY_SQL = f"""\
SELECT {_COLUMNS} FROM submissions
WHERE captured_at = ? AND metric_kind = ? AND source = ?;
"""

_SELECT_BY_ID_SQL = f"SELECT {_COLUMNS} FROM submissions WHERE id = ?;"

_SELECT_BY_STATUS_SQL = f"""\
SELECT {_COLUMNS} FROM submissions
WHERE status = ?
ORDER BY captured_at ASC, id ASC;
"""

_LATEST_PENDING_SQL = f"""\
SELECT {_COLUMNS} FROM submissions
WHERE status = 'pending' AND metric_kind = ?
ORDER BY captured_at DESC,
         CASE source WHEN 'manual' THEN 0 ELSE 1 END ASC,
         id DESC
LIMIT 1;
"""

_RECORD_ATTEMPT_SQL = """\
UPDATE submissions
SET attempt_count = attempt_count + 1, last_attempt_at = ?
WHERE id = ?;
"""

_RECORD_ERROR_SQL = "UPDATE submissions SET last_error = ? WHERE id = ?;"

_MARK_FAILED_SQL = """\
UPDATE submissions SET status = 'failed', last_error = ? WHERE id = ?;
"""

_RETRY_SQL = """\
UPDATE submissions
SET status = 'pending', attempt_limit = attempt_count + ?
WHERE id = ? AND status = 'failed';
"""

_DELETE_SQL = "DELETE FROM submissions WHERE id = ?;"

_DISCARD_SQL = "DELETE FROM submissions WHERE id = ? AND status = 'failed';"


FailedCallback = Callable[[SubmissionRecord], Awaitable[None] | None]


@dataclass
class FlushResult:
    """Outcome of a single :meth:`SubmissionQueue.flush` pass.

    Attributes:
        attempted: Records for which a delivery attempt was made.
        delivered: Records confirmed by the log (including duplicates).
        duplicates: Subset of *delivered* the log already held.
        failed: Records marked failed during this pass.
        interrupted: True if the pass stopped on a transient failure.
    """

    attempted: int = 0
    delivered: int = 0
    duplicates: int = 0
    failed: list[SubmissionRecord] = field(default_factory=list)
    interrupted: bool = False

    @property
    def ok(self) -> bool:
        """True when the pass finished without a transient failure."""
        return not self.interrupted


def _row_to_record(row: tuple) -> SubmissionRecord:
    (
        record_id,
        captured_at,
        metric_kind,
        source,
        value,
        status,
        attempt_count,
        _attempt_limit,
        last_attempt_at,
        last_error,
    ) = row
    return SubmissionRecord(
        id=record_id,
        reading=Reading(
            captured_at=parse_ts(captured_at),
            metric_kind=MetricKind(metric_kind),
            source=ReadingSource(source),
            value=Decimal(value),
        ),
        status=SubmissionStatus(status),
        attempt_count=attempt_count,
        last_attempt_at=parse_ts(last_attempt_at) if last_attempt_at else None,
        last_error=last_error,
    )


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, DeliveryTransientFailure):
        return str(exc)
    if isinstance(exc, TimeoutError):
        return str(exc) or "delivery attempt timed out"
    return f"unexpected {type(exc).__name__}: {exc}"


class SubmissionQueue:
    """Durable local queue of readings awaiting confirmed delivery.

    Only one :meth:`flush` runs at a time per queue instance. Enqueues may
    interleave with a running flush; records created after the flush took
    its snapshot wait for the next pass.

    Args:
        path: Filesystem path for the SQLite database file.
        max_attempts: Delivery attempts allowed before a record is marked
            failed.
        attempt_timeout_s: Upper bound for a single delivery attempt. A
            timeout counts as a transient failure.
        max_backoff_s: Cap for :attr:`current_backoff`.
        on_failed: Optional callback (sync or async) invoked with each
            record that is marked failed.
        clock: Returns the current time; injectable for tests.

    Usage::

        async with SubmissionQueue(path="/data/queue.db") as queue:
            await queue.enqueue(reading)
            result = await queue.flush(log)
    """

    def __init__(
        self,
        path: str | Path,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        attempt_timeout_s: float = DEFAULT_ATTEMPT_TIMEOUT_S,
        max_backoff_s: float = _DEFAULT_MAX_BACKOFF_S,
        on_failed: FailedCallback | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._path = Path(path)
        self._max_attempts = max_attempts
        self._attempt_timeout_s = attempt_timeout_s
        self._max_backoff_s = max_backoff_s
        self._on_failed = on_failed
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._db: aiosqlite.Connection | None = None
        self._flush_lock = asyncio.Lock()
        self._current_backoff = _INITIAL_BACKOFF_S

    async def open(self) -> None:
        """Open the SQLite connection and initialize the schema."""
        self._db = await aiosqlite.connect(str(self._path))
        # WAL lets the CLI enqueue while the daemon flushes.
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_CREATE_TABLE_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the underlying SQLite connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SubmissionQueue:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    @property
    def current_backoff(self) -> float:
        """Seconds to wait before the next flush.

        Starts at 1s, doubles after each pass that ends in a transient
        failure (capped at ``max_backoff_s``) and resets after a clean pass.
        """
        return self._current_backoff

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def enqueue(self, reading: Reading) -> SubmissionRecord:
        """Persist *reading* as a pending submission record.

        The record is committed to disk before this method returns. If a
        record with the same key is already queued, that record is returned
        unchanged and no second record is created.

        Args:
            reading: The reading to deliver.

        Returns:
            The submission record owning *reading*.
        """
        db = self._require_db()
        captured_at, metric_kind, source = reading.key
        cursor = await db.execute(
            _INSERT_SQL,
            (captured_at, metric_kind, source, str(reading.value), self._max_attempts),
        )
        inserted = cursor.rowcount
        await db.commit()
        if inserted == 0:
            logger.info(
                "Reading %s already queued, keeping existing record", reading.key
            )
        cursor = await db.execute(_SELECT_BY_KEY_SQL, reading.key)
        row = await cursor.fetchone()
        return _row_to_record(row)

    async def flush(self, log: AppendLog) -> FlushResult:
        """Deliver pending records to *log*, oldest captured_at first.

        For each record the attempt is counted (and committed) before the
        append is issued. Outcomes:

        - appended, or rejected as a duplicate: the record is confirmed and
          removed from the queue.
        - transient failure, timeout or an unexpected error: the record
          stays pending and the pass stops, unless the record has used up
          its attempts, in which case it is marked failed and the pass
          continues.
        - permanent failure: the record is marked failed and the pass
          continues.

        Args:
            log: Durable log to deliver into.

        Returns:
            A :class:`FlushResult`. Flushing an empty queue returns a result
            with zero attempts and ``ok`` set.
        """
        db = self._require_db()
        async with self._flush_lock:
            result = FlushResult()
            records = await self._select(SubmissionStatus.PENDING)
            if not records:
                logger.debug("Queue empty, nothing to flush")
                self._reset_backoff()
                return result

            for record in records:
                attempted_at = self._clock()
                await db.execute(_RECORD_ATTEMPT_SQL, (format_ts(attempted_at), record.id))
                await db.commit()
                attempts = record.attempt_count + 1
                result.attempted += 1

                try:
                    await asyncio.wait_for(
                        log.append(record.reading), timeout=self._attempt_timeout_s
                    )
                except DuplicateReading:
                    result.duplicates += 1
                    await self._confirm(record.id)
                    result.delivered += 1
                    logger.info(
                        "Reading %s already in log, confirmed", record.reading.key
                    )
                except DeliveryPermanentFailure as exc:
                    failed = await self._mark_failed(record.id, str(exc))
                    result.failed.append(failed)
                except Exception as exc:
                    reason = _failure_reason(exc)
                    if not isinstance(exc, (DeliveryTransientFailure, TimeoutError)):
                        logger.exception(
                            "Unexpected error delivering %s", record.reading.key
                        )
                    if attempts >= await self._attempt_limit(record.id):
                        failed = await self._mark_failed(
                            record.id,
                            f"gave up after {attempts} attempts: {reason}",
                        )
                        result.failed.append(failed)
                        continue
                    await db.execute(_RECORD_ERROR_SQL, (reason, record.id))
                    await db.commit()
                    logger.warning(
                        "Delivery of %s failed (attempt %d): %s",
                        record.reading.key,
                        attempts,
                        reason,
                    )
                    result.interrupted = True
                    break
                else:
                    await self._confirm(record.id)
                    result.delivered += 1

            if result.interrupted:
                self._increase_backoff()
            else:
                self._reset_backoff()

        logger.info(
            "Flush delivered %d/%d records (%d duplicates, %d failed)",
            result.delivered,
            result.attempted,
            result.duplicates,
            len(result.failed),
        )
        for failed in result.failed:
            await self._surface(failed)
        return result

    async def pending(self) -> list[SubmissionRecord]:
        """Return pending records, oldest captured_at first."""
        return await self._select(SubmissionStatus.PENDING)

    async def failed(self) -> list[SubmissionRecord]:
        """Return records awaiting manual resolution, oldest first."""
        return await self._select(SubmissionStatus.FAILED)

    async def get(self, record_id: int) -> SubmissionRecord | None:
        """Return the record with *record_id*, or None if it is gone."""
        cursor = await self._require_db().execute(_SELECT_BY_ID_SQL, (record_id,))
        row = await cursor.fetchone()
        return _row_to_record(row) if row is not None else None

    async def count(self, status: SubmissionStatus | None = None) -> int:
        """Return the number of queued records, optionally by status."""
        db = self._require_db()
        if status is None:
            cursor = await db.execute("SELECT COUNT(*) FROM submissions;")
        else:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM submissions WHERE status = ?;",
                (SubmissionStatus(status).value,),
            )
        row = await cursor.fetchone()
        return row[0]

    async def latest_pending(self, metric_kind: MetricKind) -> Reading | None:
        """Return the newest not-yet-delivered reading of *metric_kind*."""
        cursor = await self._require_db().execute(
            _LATEST_PENDING_SQL, (MetricKind(metric_kind).value,)
        )
        row = await cursor.fetchone()
        return _row_to_record(row).reading if row is not None else None

    async def retry(self, record_id: int) -> bool:
        """Return a failed record to pending with a fresh attempt budget.

        The attempt count is kept; the record may be attempted another
        ``max_attempts`` times.

        Returns:
            True if a failed record was requeued, False otherwise.
        """
        db = self._require_db()
        cursor = await db.execute(_RETRY_SQL, (self._max_attempts, record_id))
        changed = cursor.rowcount
        await db.commit()
        if changed:
            logger.info("Record %d requeued for delivery", record_id)
        return bool(changed)

    async def discard(self, record_id: int) -> bool:
        """Drop a failed record once it has been resolved manually.

        Returns:
            True if a failed record was removed, False otherwise.
        """
        db = self._require_db()
        cursor = await db.execute(_DISCARD_SQL, (record_id,))
        changed = cursor.rowcount
        await db.commit()
        if changed:
            logger.warning("Failed record %d discarded by operator", record_id)
        return bool(changed)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Queue not opened. Call open() or use async with."
        return self._db

    async def _select(self, status: SubmissionStatus) -> list[SubmissionRecord]:
        cursor = await self._require_db().execute(_SELECT_BY_STATUS_SQL, (status.value,))
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def _attempt_limit(self, record_id: int) -> int:
        cursor = await self._require_db().execute(
            "SELECT attempt_limit FROM submissions WHERE id = ?;", (record_id,)
        )
        row = await cursor.fetchone()
        return row[0]

    async def _confirm(self, record_id: int) -> None:
        db = self._require_db()
        await db.execute(_DELETE_SQL, (record_id,))
        await db.commit()

    async def _mark_failed(self, record_id: int, reason: str) -> SubmissionRecord:
        db = self._require_db()
        await db.execute(_MARK_FAILED_SQL, (reason, record_id))
        await db.commit()
        record = await self.get(record_id)
        assert record is not None
        logger.error("Record %d marked failed: %s", record_id, reason)
        return record

    async def _surface(self, record: SubmissionRecord) -> None:
        if self._on_failed is None:
            return
        try:
            outcome = self._on_failed(record)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.error("on_failed callback raised for record %d", record.id, exc_info=True)

    def _increase_backoff(self) -> None:
        """Double the backoff delay, capped at max_backoff_s."""
        self._current_backoff = min(self._current_backoff * 2, self._max_backoff_s)

    def _reset_backoff(self) -> None:
        self._current_backoff = _INITIAL_BACKOFF_S
