"""
Reading endpoints: idempotent append and ordered reads of a site's ledger.

- POST /v1/readings: append a batch; duplicates are skipped and only new
  rows are counted in ``inserted``.
- GET /v1/readings/latest: newest reading of one metric kind.
- GET /v1/readings: history in captured_at order.

Every route resolves the caller's site from the bearer token; a token can
only read and write its own site.

CHANGELOG:
- 2026-10-19: Reject values the value column would round or overflow (STORY-016)
- 2026-10-15: Replace sample ingest/realtime routes with readings (STORY-013)
- 2026-02-14: Initial creation (STORY-010)

TODO:
- None
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import AwareDatetime, BaseModel, ConfigDict, ValidationError, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.src.api.deps import get_db
from ledger.src.services.ledger import append_readings, latest_reading, list_readings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["readings"])

MetricKindLiteral = Literal["production", "consumption", "lifetime_total"]
SourceLiteral = Literal["automatic", "manual"]

# readings.value is NUMERIC(14, 3)
_VALUE_QUANTUM = Decimal("0.001")
_VALUE_LIMIT = Decimal(10) ** 11


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ReadingIn(BaseModel):
    """Single reading submitted by an edge device."""

    captured_at: AwareDatetime
    metric_kind: MetricKindLiteral
    source: SourceLiteral = "automatic"
    value: Decimal

    @field_validator("value")
    @classmethod
    def _fits_column(cls, v: Decimal) -> Decimal:
        """Reject values NUMERIC(14, 3) would round or overflow."""
        if not v.is_finite():
            raise ValueError("value must be a finite number")
        if abs(v) >= _VALUE_LIMIT:
            raise ValueError("value must be below 1e11 in magnitude")
        if v != v.quantize(_VALUE_QUANTUM):
            raise ValueError("value must have at most 3 decimal places")
        return v


class AppendPayload(BaseModel):
    """Batch payload for POST /v1/readings."""

    readings: list[ReadingIn]


class AppendResponse(BaseModel):
    """Counts for an append request.

    Attributes:
        received: Readings in the request.
        inserted: Readings newly stored; the rest were already present.
    """

    received: int
    inserted: int


class ReadingOut(BaseModel):
    """A reading as stored in the ledger."""

    model_config = ConfigDict(from_attributes=True)

    site_id: str
    captured_at: datetime
    metric_kind: str
    source: str
    value: Decimal


class ReadingsResponse(BaseModel):
    """History response."""

    site_id: str
    readings: list[ReadingOut]


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def _get_site_id(request: Request) -> str:
    """Resolve the authenticated site via SiteAuth on app.state."""
    return await request.app.state.auth.verify(request)


async def _read_limited_body(request: Request, max_request_bytes: int) -> bytes:
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            declared = int(content_length)
        except ValueError:
            raise HTTPException(
                status_code=400, detail="Invalid Content-Length header."
            ) from None
        if declared > max_request_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Request body exceeds limit of {max_request_bytes} bytes.",
            )

    body = await request.body()
    if len(body) > max_request_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Request body exceeds limit of {max_request_bytes} bytes.",
        )
    return body


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/readings", response_model=AppendResponse)
async def append(
    request: Request,
    site_id: Annotated[str, Depends(_get_site_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AppendResponse:
    """Append a batch of readings to the caller's ledger.

    Raises:
        HTTPException: 413 if the body or batch exceeds configured limits.
    """
    config = request.app.state.config
    body = await _read_limited_body(request, int(config["MAX_REQUEST_BYTES"]))

    try:
        payload = AppendPayload.model_validate_json(body)
    except ValidationError as exc:
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors(include_url=False, include_context=False)},
        )

    received = len(payload.readings)
    if received == 0:
        return AppendResponse(received=0, inserted=0)

    max_readings = int(config["MAX_READINGS_PER_REQUEST"])
    if received > max_readings:
        raise HTTPException(
            status_code=413,
            detail=f"Batch size {received} exceeds limit of {max_readings}. "
            "Split into smaller batches.",
        )

    inserted = await append_readings(
        db, site_id, [reading.model_dump() for reading in payload.readings]
    )
    return AppendResponse(received=received, inserted=inserted)


@router.get("/readings/latest", response_model=ReadingOut)
async def latest(
    metric_kind: Annotated[MetricKindLiteral, Query()],
    site_id: Annotated[str, Depends(_get_site_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReadingOut:
    """Return the newest reading of *metric_kind*.

    Raises:
        HTTPException: 404 if the site has no reading of that kind.
    """
    reading = await latest_reading(db, site_id, metric_kind)
    if reading is None:
        raise HTTPException(
            status_code=404,
            detail=f"No {metric_kind} reading for site '{site_id}'.",
        )
    return ReadingOut.model_validate(reading)


@router.get("/readings", response_model=ReadingsResponse)
async def history(
    request: Request,
    site_id: Annotated[str, Depends(_get_site_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    metric_kind: Annotated[MetricKindLiteral | None, Query()] = None,
    start: Annotated[AwareDatetime | None, Query()] = None,
    end: Annotated[AwareDatetime | None, Query()] = None,
    limit: Annotated[int, Query(ge=1)] = 1000,
) -> ReadingsResponse:
    """Return readings in captured_at order.

    Raises:
        HTTPException: 400 if start is not before end, or the limit exceeds
            MAX_READINGS_PER_REQUEST.
    """
    if start is not None and end is not None and start >= end:
        raise HTTPException(status_code=400, detail="start must be before end.")
    max_readings = int(request.app.state.config["MAX_READINGS_PER_REQUEST"])
    if limit > max_readings:
        raise HTTPException(
            status_code=400, detail=f"limit must be <= {max_readings}."
        )

    rows = await list_readings(
        db, site_id, metric_kind=metric_kind, start=start, end=end, limit=limit
    )
    return ReadingsResponse(
        site_id=site_id,
        readings=[ReadingOut.model_validate(row) for row in rows],
    )
