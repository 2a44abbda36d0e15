"""
Reading source adapter: async Modbus TCP poller for a Sungrow inverter.

Connects to the WiNet-S Modbus TCP dongle, reads every register group in
:mod:`edge.src.registers` with a configurable inter-group delay, and returns
normalized :class:`~edge.src.models.Reading` objects.

The dongle is only intermittently reachable. A poll that cannot connect, or
that fails to read a required group, raises
:class:`~edge.src.errors.SourceUnavailable`; the caller logs it and tries
again on the next cycle. Consecutive failures add an exponentially growing
delay before the next attempt.

CHANGELOG:
- 2026-10-14: Raise SourceUnavailable and return Readings (STORY-004)
- 2026-02-14: Allow polling to continue when optional groups are unsupported
- 2026-02-14: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from pymodbus.client import AsyncModbusTcpClient

from edge.src.errors import SourceUnavailable
from edge.src.models import Reading
from edge.src.normalizer import normalize
from edge.src.registers import ALL_GROUPS, RegisterGroup

logger = logging.getLogger(__name__)

BASE_BACKOFF_S: float = 1.0
"""Initial backoff delay in seconds after the first failure."""

MAX_BACKOFF_S: float = 60.0
"""Cap for the exponential backoff delay."""

MODBUS_TIMEOUT_S: float = 10.0
"""Timeout per Modbus TCP request in seconds."""


class ReadingSourceAdapter(Protocol):
    """Anything that can produce a batch of readings on demand."""

    async def read(self) -> list[Reading]:
        """Return the current readings, or raise SourceUnavailable."""
        ...


class ModbusReadingSource:
    """Polls a Sungrow inverter and yields automatic readings.

    Args:
        host: WiNet-S dongle IP address or hostname.
        port: Modbus TCP port (default 502).
        slave_id: Modbus slave / unit ID (default 1).
        inter_register_delay_ms: Milliseconds between group reads.
        clock: Returns the capture time; injectable for tests.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 502,
        slave_id: int = 1,
        inter_register_delay_ms: int = 20,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._slave_id = slave_id
        self._inter_register_delay_ms = inter_register_delay_ms
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._consecutive_failures: int = 0

    @property
    def consecutive_failures(self) -> int:
        """Number of polls that failed in a row."""
        return self._consecutive_failures

    async def read(self) -> list[Reading]:
        """Poll the inverter once and normalize the result.

        Sleeps for the current backoff first when previous polls failed.

        Returns:
            Readings that decoded successfully (possibly empty).

        Raises:
            SourceUnavailable: The dongle could not be reached or a required
                register group could not be read.
        """
        if self._consecutive_failures > 0:
            delay = min(
                BASE_BACKOFF_S * (2 ** (self._consecutive_failures - 1)),
                MAX_BACKOFF_S,
            )
            logger.warning(
                "Backoff: sleeping %.1fs before retry (consecutive failures: %d)",
                delay,
                self._consecutive_failures,
            )
            await asyncio.sleep(delay)

        client = AsyncModbusTcpClient(
            self._host,
            port=self._port,
            timeout=MODBUS_TIMEOUT_S,
        )
        try:
            raw = await _do_poll(
                client,
                slave_id=self._slave_id,
                inter_register_delay_ms=self._inter_register_delay_ms,
            )
        except SourceUnavailable:
            self._consecutive_failures += 1
            raise
        except Exception as exc:
            self._consecutive_failures += 1
            raise SourceUnavailable(
                f"Modbus poll to {self._host}:{self._port} failed: {exc!r}"
            ) from exc
        finally:
            client.close()

        self._consecutive_failures = 0
        return normalize(raw, captured_at=self._clock())


async def _do_poll(
    client: AsyncModbusTcpClient,
    *,
    slave_id: int,
    inter_register_delay_ms: int,
) -> dict[str, list[int]]:
    """Connect and read every register group.

    Returns:
        Register name -> raw words for every group that was read.

    Raises:
        SourceUnavailable: Connection failed or a required group errored.
    """
    ok = await client.connect()
    if not ok:
        raise SourceUnavailable("Failed to connect to Modbus device")

    delay_s = inter_register_delay_ms / 1000.0
    result: dict[str, list[int]] = {}

    for idx, group in enumerate(ALL_GROUPS):
        if idx > 0 and delay_s > 0:
            await asyncio.sleep(delay_s)

        response = await client.read_input_registers(
            group.start_address,
            count=group.count,
            device_id=slave_id,
        )

        if response.isError():
            if group.optional:
                logger.warning(
                    "Modbus error reading optional group '%s' (address=%d), continuing",
                    group.group_name,
                    group.start_address,
                )
                continue
            raise SourceUnavailable(
                f"Modbus error reading group '{group.group_name}' "
                f"(address={group.start_address}, count={group.count})"
            )

        _extract_register_values(group, response.registers, result)

    return result


def _extract_register_values(
    group: RegisterGroup,
    raw_words: list[int],
    out: dict[str, list[int]],
) -> None:
    """Slice group-level raw words into per-register word lists."""
    for reg in group.registers:
        offset = reg.address - group.start_address
        out[reg.name] = raw_words[offset : offset + reg.word_count]
