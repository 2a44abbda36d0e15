"""
SQLAlchemy ORM models for the ledger database.

Defines the Reading model: the append-only log of confirmed energy readings
per site. The composite primary key (site_id, captured_at, metric_kind,
source) is the uniqueness key that makes appends idempotent.

CHANGELOG:
- 2026-10-15: Replace SungrowSample with per-site Reading log (STORY-013)
- 2026-02-14: Initial creation (STORY-008)

TODO:
- None
"""

import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Numeric, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

METRIC_KINDS = ("production", "consumption", "lifetime_total")
SOURCES = ("automatic", "manual")


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ledger ORM models."""

    pass


class Reading(Base):
    """A confirmed energy reading in a site's ledger.

    Attributes:
        site_id: Solar installation the reading belongs to.
        captured_at: When the reading was taken (UTC).
        metric_kind: ``production``, ``consumption`` or ``lifetime_total``.
        source: ``automatic`` or ``manual``.
        value: Energy in kWh.
        received_at: When the ledger accepted the reading.
    """

    __tablename__ = "readings"
    __table_args__ = (
        CheckConstraint(
            f"metric_kind IN {METRIC_KINDS!r}",
            name="readings_metric_kind_check",
        ),
        CheckConstraint(f"source IN {SOURCES!r}", name="readings_source_check"),
    )

    site_id: Mapped[str] = mapped_column(Text, primary_key=True)
    captured_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), primary_key=True
    )
    metric_kind: Mapped[str] = mapped_column(Text, primary_key=True)
    source: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    received_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"Reading(site_id={self.site_id!r}, captured_at={self.captured_at!r}, "
            f"metric_kind={self.metric_kind!r}, source={self.source!r}, "
            f"value={self.value!r})"
        )
