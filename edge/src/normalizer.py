"""
Pure normalizer that turns raw Modbus register words into energy Readings.

Takes the ``dict[str, list[int]]`` produced by the poller (register name ->
16-bit words), applies type conversion, scaling and range validation, and
builds up to three automatic readings:

- production: daily PV generation.
- lifetime_total: cumulative PV generation.
- consumption: direct PV consumption + battery discharge + grid import,
  i.e. everything the house drew today. Battery discharge is treated as 0
  when the inverter has no battery group.

A metric whose registers are missing or out of range is skipped with a
warning; the remaining metrics are still returned.

This is a pure function: no I/O, no clock. The capture timestamp is passed
in by the caller.

CHANGELOG:
- 2026-10-14: Produce Readings per metric kind instead of one sample (STORY-004)
- 2026-02-14: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from edge.src.models import MetricKind, Reading, ReadingSource
from edge.src.registers import ALL_REGISTERS, RegisterDef

logger = logging.getLogger(__name__)

_QUANTUM = Decimal("0.1")


def _convert_u16(raw: int) -> int:
    return raw & 0xFFFF


def _convert_s16(raw: int) -> int:
    val = raw & 0xFFFF
    if val >= 0x8000:
        val -= 0x10000
    return val


def _convert_u32(hi: int, lo: int) -> int:
    return ((hi & 0xFFFF) << 16) | (lo & 0xFFFF)


def _convert_s32(hi: int, lo: int) -> int:
    val = _convert_u32(hi, lo)
    if val >= 0x80000000:
        val -= 0x100000000
    return val


def _extract_value(reg_def: RegisterDef, raw: dict[str, list[int]]) -> Decimal | None:
    """Extract, type-convert, scale and range-check one register.

    Returns:
        The scaled value as a Decimal rounded to 0.1 kWh, or None when the
        register is missing, short, or out of range.
    """
    name = reg_def.name
    words = raw.get(name)
    if words is None:
        logger.warning("Register '%s': missing from raw data", name)
        return None
    if len(words) < reg_def.word_count:
        logger.warning(
            "Register '%s': expected %d words for %s, got %d",
            name,
            reg_def.word_count,
            reg_def.reg_type,
            len(words),
        )
        return None

    if reg_def.reg_type == "U32":
        raw_int = _convert_u32(words[0], words[1])
    elif reg_def.reg_type == "S32":
        raw_int = _convert_s32(words[0], words[1])
    elif reg_def.reg_type == "S16":
        raw_int = _convert_s16(words[0])
    else:
        raw_int = _convert_u16(words[0])

    scaled = raw_int * reg_def.scale
    if reg_def.valid_range is not None:
        lo, hi = reg_def.valid_range
        if not (lo <= scaled <= hi):
            logger.warning(
                "Register '%s': scaled value %.4g (raw words=%s) outside valid range (%s, %s)",
                name,
                scaled,
                words,
                lo,
                hi,
            )
            return None

    return Decimal(str(scaled)).quantize(_QUANTUM)


def _register(name: str, raw: dict[str, list[int]]) -> Decimal | None:
    return _extract_value(ALL_REGISTERS[name], raw)


def normalize(raw: dict[str, list[int]], *, captured_at: datetime) -> list[Reading]:
    """Convert raw register words into automatic energy readings.

    Args:
        raw: Register name -> raw 16-bit words, as returned by the poller.
        captured_at: Timestamp for every reading produced.

    Returns:
        Readings for each metric that could be decoded, in the order
        production, consumption, lifetime_total. Empty when nothing decodes.
    """
    values: dict[MetricKind, Decimal | None] = {
        MetricKind.PRODUCTION: _register("daily_pv_generation", raw),
        MetricKind.CONSUMPTION: _consumption(raw),
        MetricKind.LIFETIME_TOTAL: _register("total_pv_generation", raw),
    }

    readings = []
    for kind, value in values.items():
        if value is None:
            logger.warning("Skipping %s reading: registers unavailable", kind)
            continue
        readings.append(
            Reading(
                captured_at=captured_at,
                metric_kind=kind,
                value=value,
                source=ReadingSource.AUTOMATIC,
            )
        )
    return readings


def _consumption(raw: dict[str, list[int]]) -> Decimal | None:
    direct = _register("daily_direct_consumption", raw)
    imported = _register("daily_import_energy", raw)
    if direct is None or imported is None:
        return None
    # Inverters without a battery do not expose the discharge counter.
    discharge = Decimal("0.0")
    if "daily_battery_discharge" in raw:
        value = _register("daily_battery_discharge", raw)
        if value is None:
            return None
        discharge = value
    return direct + discharge + imported
