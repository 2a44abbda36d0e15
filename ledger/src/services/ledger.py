"""
Ledger service: idempotent appends and ordered reads of energy readings.

Appends use INSERT ... ON CONFLICT (site_id, captured_at, metric_kind,
source) DO NOTHING, so re-delivered readings are silently skipped and the
returned count only covers rows actually inserted. Reads are plain queries
over the readings table; nothing is cached.

CHANGELOG:
- 2026-10-15: Append/latest/list over the readings log (STORY-013)
- 2026-02-14: Initial creation (STORY-010)

TODO:
- None
"""

import logging
from datetime import datetime

from sqlalchemy import case, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.src.db.models import Reading

logger = logging.getLogger(__name__)


async def append_readings(
    db: AsyncSession,
    site_id: str,
    readings: list[dict],
) -> int:
    """Append a batch of readings to a site's ledger.

    Args:
        db: Async SQLAlchemy session.
        site_id: The authenticated site.
        readings: Dicts with captured_at, metric_kind, source and value.

    Returns:
        int: Number of rows actually inserted; duplicates are not counted.
    """
    if not readings:
        return 0

    rows = [{**reading, "site_id": site_id} for reading in readings]
    stmt = (
        pg_insert(Reading)
        .values(rows)
        .on_conflict_do_nothing(
            index_elements=["site_id", "captured_at", "metric_kind", "source"]
        )
    )
    result = await db.execute(stmt)
    await db.commit()

    inserted = result.rowcount
    logger.info(
        "Appended %d/%d readings for site %s",
        inserted,
        len(rows),
        site_id,
    )
    return inserted


async def latest_reading(
    db: AsyncSession,
    site_id: str,
    metric_kind: str,
) -> Reading | None:
    """Return the newest reading of *metric_kind* for a site.

    A manual reading wins over an automatic one captured at the same
    instant.
    """
    stmt = (
        select(Reading)
        .where(Reading.site_id == site_id, Reading.metric_kind == metric_kind)
        .order_by(
            Reading.captured_at.desc(),
            case((Reading.source == "manual", 0), else_=1),
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_readings(
    db: AsyncSession,
    site_id: str,
    *,
    metric_kind: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 1000,
) -> list[Reading]:
    """Return a site's readings in captured_at order.

    Args:
        db: Async SQLAlchemy session.
        site_id: Site to read.
        metric_kind: Optional kind filter.
        start: Inclusive lower bound on captured_at.
        end: Exclusive upper bound on captured_at.
        limit: Maximum rows returned.
    """
    stmt = select(Reading).where(Reading.site_id == site_id)
    if metric_kind is not None:
        stmt = stmt.where(Reading.metric_kind == metric_kind)
    if start is not None:
        stmt = stmt.where(Reading.captured_at >= start)
    if end is not None:
        stmt = stmt.where(Reading.captured_at < end)
    stmt = stmt.order_by(
        Reading.captured_at.asc(), Reading.metric_kind.asc(), Reading.source.asc()
    ).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())
