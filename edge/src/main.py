"""
Edge daemon main loop for the solar reading sync pipeline.

Runs two concurrent asyncio loops:
1. **Poll loop**: asks the reading source for the current readings and
   enqueues each one into the pending-submission queue.
2. **Flush loop**: flushes the queue into the durable log (local SQLite or
   the remote ledger). After a pass that ended in a transient failure the
   loop waits for the queue's backoff instead of the regular interval.

Both loops are resilient: an exception in one iteration is logged and does
not crash the loop or affect the other loop. SIGTERM/SIGINT set a shared
asyncio.Event; both loops finish their current iteration and one final
flush is attempted before exiting.

CHANGELOG:
- 2026-10-16: Poll readings into SubmissionQueue, flush into AppendLog (STORY-011)
- 2026-02-14: Replace inline health writer with HealthWriter (STORY-015)
- 2026-02-14: Initial creation (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from edge.src.errors import SourceUnavailable
from edge.src.health import HealthWriter
from edge.src.models import SubmissionRecord, SubmissionStatus

if TYPE_CHECKING:
    from edge.src.config import EdgeSettings, SyncSettings
    from edge.src.log import AppendLog
    from edge.src.poller import ReadingSourceAdapter
    from edge.src.submissions import FlushResult, SubmissionQueue

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class _JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on stderr for the root logger."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


def log_config_summary(settings: EdgeSettings) -> None:
    """Log a config summary at startup, masking the ledger token."""
    logger.info(
        "Edge daemon starting with config: "
        "sungrow_host=%s, sungrow_port=%s, sungrow_slave_id=%s, "
        "poll_interval_s=%s, flush_interval_s=%s, max_attempts=%s, "
        "attempt_timeout_s=%s, queue_path=%s, log=%s, ledger_token_masked=%s",
        settings.sungrow_host,
        settings.sungrow_port,
        settings.sungrow_slave_id,
        settings.poll_interval_s,
        settings.flush_interval_s,
        settings.max_attempts,
        settings.attempt_timeout_s,
        settings.queue_path,
        settings.ledger_base_url or settings.log_path,
        _masked_token(settings.ledger_token),
    )


# ---------------------------------------------------------------------------
# Single-iteration functions
# ---------------------------------------------------------------------------


async def _update_health(queue: SubmissionQueue, health: HealthWriter | None) -> None:
    if health is None:
        return
    try:
        health.set_queue_counts(
            pending=await queue.count(SubmissionStatus.PENDING),
            failed=await queue.count(SubmissionStatus.FAILED),
        )
    except Exception:
        logger.warning("Failed to write health file", exc_info=True)


async def _poll_once(
    *,
    source: ReadingSourceAdapter,
    queue: SubmissionQueue,
    health: HealthWriter | None,
) -> int:
    """Read the source once and enqueue every reading.

    Never raises; an unavailable source is logged as a warning.

    Returns:
        Number of readings enqueued.
    """
    enqueued = 0
    try:
        readings = await source.read()
        for reading in readings:
            await queue.enqueue(reading)
            enqueued += 1
        if enqueued:
            logger.info("Poll success: enqueued %d readings", enqueued)
        else:
            logger.warning("Source returned no decodable readings")
    except SourceUnavailable as exc:
        logger.warning("Reading source unavailable: %s", exc)
    except Exception:
        logger.error("Poll cycle error", exc_info=True)

    if health is not None:
        health.record_poll()
    await _update_health(queue, health)
    return enqueued


async def _flush_once(
    *,
    queue: SubmissionQueue,
    log: AppendLog,
    health: HealthWriter | None = None,
) -> FlushResult | None:
    """Flush the queue once. Never raises.

    Returns:
        The flush result, or None if the flush itself errored.
    """
    try:
        result = await queue.flush(log)
    except Exception:
        logger.error("Flush cycle error", exc_info=True)
        return None

    if result.ok and health is not None:
        health.record_flush()
    await _update_health(queue, health)
    return result


def _log_failed_record(record: SubmissionRecord) -> None:
    """Surface a record that needs manual resolution."""
    logger.error(
        "Submission record %d needs manual resolution (%s %s at %s): %s",
        record.id,
        record.reading.source,
        record.reading.metric_kind,
        record.reading.captured_at.isoformat(),
        record.last_error,
    )


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _wait(shutdown_event: asyncio.Event, timeout: float) -> None:
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(shutdown_event.wait(), timeout=timeout)


async def _poll_loop(
    *,
    source: ReadingSourceAdapter,
    queue: SubmissionQueue,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None,
) -> None:
    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    while not shutdown_event.is_set():
        await _poll_once(source=source, queue=queue, health=health)
        await _wait(shutdown_event, poll_interval_s)
    logger.info("Poll loop stopped")


async def _flush_loop(
    *,
    queue: SubmissionQueue,
    log: AppendLog,
    flush_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Flush until shutdown, backing off after transient failures."""
    logger.info("Flush loop started (interval=%ss)", flush_interval_s)
    while not shutdown_event.is_set():
        result = await _flush_once(queue=queue, log=log, health=health)
        if result is not None and result.ok:
            delay = flush_interval_s
        else:
            delay = queue.current_backoff
            logger.info("Next flush in %.1fs (backoff)", delay)
        await _wait(shutdown_event, delay)
    logger.info("Flush loop stopped")


async def run_loops(
    *,
    source: ReadingSourceAdapter,
    queue: SubmissionQueue,
    log: AppendLog,
    poll_interval_s: float,
    flush_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Run poll and flush loops concurrently until shutdown.

    When the shutdown_event is set, both loops finish their current
    iteration, then a final flush is attempted before returning.
    """
    logger.info("Starting concurrent poll and flush loops")

    await asyncio.gather(
        _poll_loop(
            source=source,
            queue=queue,
            poll_interval_s=poll_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        ),
        _flush_loop(
            queue=queue,
            log=log,
            flush_interval_s=flush_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        ),
    )

    logger.info("Attempting final flush before exit")
    await _flush_once(queue=queue, log=log, health=health)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def open_log(
    settings: SyncSettings, stack: contextlib.AsyncExitStack
) -> AppendLog:
    """Build the durable log selected by *settings*.

    The local SQLite log is opened on *stack* so it is closed with it.
    """
    from edge.src.log import SqliteAppendLog
    from edge.src.remote import RemoteAppendLog

    if settings.uses_remote_ledger:
        return RemoteAppendLog(
            settings.ledger_base_url,
            settings.ledger_token,
            timeout_s=settings.attempt_timeout_s,
        )
    return await stack.enter_async_context(SqliteAppendLog(settings.log_path))


async def async_main() -> None:
    """Async entrypoint: load config, build components, run loops."""
    configure_logging()

    from edge.src.config import EdgeSettings
    from edge.src.poller import ModbusReadingSource
    from edge.src.submissions import SubmissionQueue

    settings = EdgeSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: _handle_signal(shutdown_event))

    source = ModbusReadingSource(
        host=settings.sungrow_host,
        port=settings.sungrow_port,
        slave_id=settings.sungrow_slave_id,
        inter_register_delay_ms=settings.inter_register_delay_ms,
    )
    health = HealthWriter(settings.health_path)

    async with contextlib.AsyncExitStack() as stack:
        queue = await stack.enter_async_context(
            SubmissionQueue(
                settings.queue_path,
                max_attempts=settings.max_attempts,
                attempt_timeout_s=settings.attempt_timeout_s,
                max_backoff_s=settings.max_backoff_s,
                on_failed=_log_failed_record,
            )
        )
        log = await open_log(settings, stack)
        await run_loops(
            source=source,
            queue=queue,
            log=log,
            poll_interval_s=settings.poll_interval_s,
            flush_interval_s=settings.flush_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the edge daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
