"""
Operator CLI for the edge queue: manual corrections and failed records.

Works against the same queue and log files as the running daemon (SQLite
WAL allows both processes to use them at once) and reads its configuration
from the same environment / .env file. Inverter settings are not needed.

Usage:
    solar-edge correct production 12.4 --at 2026-10-18T18:00:00+02:00
    solar-edge latest consumption
    solar-edge failed
    solar-edge retry 42
    solar-edge discard 42
    solar-edge flush

CHANGELOG:
- 2026-10-19: Load queue/ledger settings only (STORY-016)
- 2026-10-17: Initial creation (STORY-012)
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation

from edge.src.client import SubmissionClient
from edge.src.config import SyncSettings
from edge.src.main import open_log
from edge.src.models import MetricKind, check_value
from edge.src.submissions import SubmissionQueue

logger = logging.getLogger(__name__)


def _decimal(raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}") from None
    try:
        return check_value(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{exc}: {raw!r}") from None


def _aware_datetime(raw: str) -> datetime:
    try:
        ts = datetime.fromisoformat(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO timestamp: {raw!r}") from None
    if ts.tzinfo is None:
        raise argparse.ArgumentTypeError("timestamp needs a UTC offset, e.g. +00:00")
    return ts


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="solar-edge",
        description="Inspect and correct the edge reading queue.",
    )
    sub = p.add_subparsers(dest="command", required=True)

    correct = sub.add_parser("correct", help="Queue a manual reading")
    correct.add_argument("kind", type=MetricKind, choices=list(MetricKind))
    correct.add_argument("value", type=_decimal, help="Value in kWh")
    correct.add_argument(
        "--at",
        type=_aware_datetime,
        default=None,
        help="ISO timestamp the correction applies to (default: now)",
    )

    latest = sub.add_parser("latest", help="Show the newest known reading")
    latest.add_argument("kind", type=MetricKind, choices=list(MetricKind))

    sub.add_parser("failed", help="List records needing manual resolution")

    retry = sub.add_parser("retry", help="Requeue a failed record")
    retry.add_argument("record_id", type=int)

    discard = sub.add_parser("discard", help="Drop a failed record")
    discard.add_argument("record_id", type=int)

    sub.add_parser("flush", help="Flush the queue once and report")
    return p.parse_args(argv)


async def run(args: argparse.Namespace, settings: SyncSettings) -> int:
    """Execute one CLI command. Returns the process exit code."""
    async with contextlib.AsyncExitStack() as stack:
        queue = await stack.enter_async_context(
            SubmissionQueue(
                settings.queue_path,
                max_attempts=settings.max_attempts,
                attempt_timeout_s=settings.attempt_timeout_s,
            )
        )

        if args.command == "failed":
            records = await queue.failed()
            for record in records:
                reading = record.reading
                print(
                    f"{record.id}\t{reading.captured_at.isoformat()}\t{reading.metric_kind}"
                    f"\t{reading.source}\t{reading.value}\t"
                    f"attempts={record.attempt_count}\t{record.last_error or ''}"
                )
            if not records:
                print("no failed records")
            return 0
        if args.command == "retry":
            if await queue.retry(args.record_id):
                print(f"record {args.record_id} requeued")
                return 0
            print(f"no failed record {args.record_id}", file=sys.stderr)
            return 1
        if args.command == "discard":
            if await queue.discard(args.record_id):
                print(f"record {args.record_id} discarded")
                return 0
            print(f"no failed record {args.record_id}", file=sys.stderr)
            return 1

        log = await open_log(settings, stack)
        client = SubmissionClient(log, queue)

        if args.command == "correct":
            record = await client.submit_correction(args.kind, args.value, args.at)
            print(f"queued as record {record.id} ({record.status})")
            return 0
        if args.command == "latest":
            latest = await client.latest(args.kind)
            if latest is None:
                print(f"no {args.kind} reading yet")
                return 1
            state = "synced" if latest.synced else "pending"
            print(
                f"{latest.reading.captured_at.isoformat()}\t{latest.reading.value} kWh"
                f"\t{latest.reading.source}\t{state}"
            )
            return 0
        if args.command == "flush":
            result = await queue.flush(log)
            print(
                f"delivered={result.delivered} attempted={result.attempted} "
                f"duplicates={result.duplicates} failed={len(result.failed)} "
                f"complete={result.ok}"
            )
            return 0 if result.ok else 2

    raise AssertionError(f"unhandled command {args.command!r}")


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.WARNING)
    args = parse_args(argv)
    sys.exit(asyncio.run(run(args, SyncSettings())))


if __name__ == "__main__":
    main()
