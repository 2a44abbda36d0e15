"""
Consumer-facing submission client.

Answers "what is the latest reading?" by arbitrating between the durable log
(confirmed, synced) and the pending-submission queue (captured but not yet
delivered), and accepts manual corrections, which travel the same
enqueue/flush path as polled readings.

Reads are plain queries against the log and the queue; nothing is cached.

CHANGELOG:
- 2026-10-19: Manual beats automatic on same-instant ties (STORY-016)
- 2026-10-16: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from edge.src.errors import DeliveryPermanentFailure, DeliveryTransientFailure
from edge.src.log import AppendLog
from edge.src.models import MetricKind, Reading, ReadingSource, SubmissionRecord
from edge.src.submissions import SubmissionQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LatestReading:
    """The newest known reading of a kind and whether it is synced.

    Attributes:
        reading: The reading itself.
        synced: True if it came from the durable log, False if it is still
            waiting in the queue.
    """

    reading: Reading
    synced: bool


def _precedence(reading: Reading) -> tuple[datetime, bool]:
    return (reading.captured_at, reading.source == ReadingSource.MANUAL)


class SubmissionClient:
    """Read latest state and submit manual corrections.

    Args:
        log: The durable log (local or remote).
        queue: The pending-submission queue feeding *log*.
    """

    def __init__(self, log: AppendLog, queue: SubmissionQueue) -> None:
        self._log = log
        self._queue = queue

    async def latest(self, metric_kind: MetricKind) -> LatestReading | None:
        """Return the newest known reading of *metric_kind*.

        Compares the log's latest reading with the newest pending one and
        returns whichever was captured later. At the same instant a manual
        reading beats an automatic one, as it does inside the log; a
        remaining tie goes to the log. When the log cannot be queried, the
        queue alone answers.

        Returns:
            A :class:`LatestReading`, or None when neither holds a reading.
        """
        kind = MetricKind(metric_kind)
        try:
            confirmed = await self._log.latest(kind)
        except (DeliveryTransientFailure, DeliveryPermanentFailure):
            logger.warning("Log unavailable, answering latest(%s) from queue", kind, exc_info=True)
            confirmed = None
        pending = await self._queue.latest_pending(kind)

        if pending is not None and (
            confirmed is None or _precedence(pending) > _precedence(confirmed)
        ):
            return LatestReading(reading=pending, synced=False)
        if confirmed is not None:
            return LatestReading(reading=confirmed, synced=True)
        return None

    async def submit_correction(
        self,
        metric_kind: MetricKind,
        value: Decimal | float | str,
        captured_at: datetime | None = None,
    ) -> SubmissionRecord:
        """Enqueue a manually entered reading.

        Args:
            metric_kind: Kind being corrected.
            value: Corrected value in kWh.
            captured_at: Instant the correction applies to; defaults to now.

        Returns:
            The submission record created (or already holding this key).
        """
        reading = Reading(
            captured_at=captured_at or datetime.now(tz=UTC),
            metric_kind=MetricKind(metric_kind),
            value=Decimal(str(value)),
            source=ReadingSource.MANUAL,
        )
        record = await self._queue.enqueue(reading)
        logger.info(
            "Manual %s correction queued as record %d", reading.metric_kind, record.id
        )
        return record
