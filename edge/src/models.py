"""
Pydantic models for energy readings and their submission records.

A Reading is an immutable, timestamped energy measurement. A
SubmissionRecord wraps a Reading with the delivery bookkeeping owned by the
pending-submission queue until the durable log confirms it.

Timestamps are persisted as fixed-width UTC text (see :func:`format_ts`) so
that SQLite text ordering matches chronological ordering.

CHANGELOG:
- 2026-10-19: Values must fit the ledger NUMERIC(14, 3) column (STORY-016)
- 2026-10-14: Replace SungrowSample with Reading / SubmissionRecord (STORY-002)
- 2026-02-14: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import AwareDatetime, BaseModel, ConfigDict, field_validator

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Ledger column is NUMERIC(14, 3).
VALUE_QUANTUM = Decimal("0.001")
VALUE_LIMIT = Decimal(10) ** 11


class MetricKind(StrEnum):
    """Kind of energy measurement carried by a reading."""

    PRODUCTION = "production"
    CONSUMPTION = "consumption"
    LIFETIME_TOTAL = "lifetime_total"


class ReadingSource(StrEnum):
    """Where a reading came from."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class SubmissionStatus(StrEnum):
    """Delivery state of a submission record."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def format_ts(ts: datetime) -> str:
    """Render an aware datetime as fixed-width UTC text.

    Args:
        ts: Timezone-aware datetime.

    Returns:
        String such as ``2026-02-14T10:00:00.000000Z``.
    """
    return ts.astimezone(UTC).strftime(_TS_FORMAT)


def parse_ts(raw: str) -> datetime:
    """Inverse of :func:`format_ts`."""
    return datetime.strptime(raw, _TS_FORMAT).replace(tzinfo=UTC)


def check_value(v: Decimal) -> Decimal:
    """Return *v* if the ledger can store it exactly, else raise ValueError.

    The value must be finite, below 10**11 in magnitude and carry at most
    three decimal places.
    """
    if not v.is_finite():
        raise ValueError("value must be a finite number")
    if abs(v) >= VALUE_LIMIT:
        raise ValueError(f"value must be below {VALUE_LIMIT:,.0f} in magnitude")
    if v != v.quantize(VALUE_QUANTUM):
        raise ValueError("value must have at most 3 decimal places")
    return v


class Reading(BaseModel):
    """A single timestamped energy measurement.

    Readings are frozen once created. Two readings describe the same
    logical measurement when their :attr:`key` is equal; the value is not
    part of the key, so a retried submission with a drifted value is still
    recognised as a duplicate.

    Attributes:
        captured_at: When the measurement was taken (timezone-aware).
        metric_kind: Production, consumption or lifetime total.
        value: Energy in kWh.
        source: ``automatic`` for polled readings, ``manual`` for
            operator corrections.
    """

    model_config = ConfigDict(frozen=True)

    captured_at: AwareDatetime
    metric_kind: MetricKind
    value: Decimal
    source: ReadingSource = ReadingSource.AUTOMATIC

    @field_validator("captured_at")
    @classmethod
    def _normalize_to_utc(cls, v: datetime) -> datetime:
        """Store every timestamp in UTC."""
        return v.astimezone(UTC)

    @field_validator("value")
    @classmethod
    def _value_must_fit_ledger(cls, v: Decimal) -> Decimal:
        return check_value(v)

    @property
    def key(self) -> tuple[str, str, str]:
        """Uniqueness key ``(captured_at, metric_kind, source)``."""
        return (format_ts(self.captured_at), self.metric_kind.value, self.source.value)


class SubmissionRecord(BaseModel):
    """A reading plus the delivery state tracked by the queue.

    Attributes:
        id: Queue row id.
        reading: The reading being delivered.
        status: Current submission status.
        attempt_count: Delivery attempts made so far. Never decreases.
        last_attempt_at: Time of the most recent attempt, if any.
        last_error: Message of the most recent delivery failure, if any.
    """

    id: int
    reading: Reading
    status: SubmissionStatus = SubmissionStatus.PENDING
    attempt_count: int = 0
    last_attempt_at: datetime | None = None
    last_error: str | None = None
