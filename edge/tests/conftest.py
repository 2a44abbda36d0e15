"""
Shared test fixtures for edge daemon tests.

Cleans every edge environment variable before each test and provides
fixtures for settings and opened queue/log instances.

CHANGELOG:
- 2026-10-16: Queue and log fixtures (STORY-005)
- 2026-02-14: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from edge.src.log import SqliteAppendLog
from edge.src.submissions import SubmissionQueue

_ALL_EDGE_ENV_VARS = (
    "SUNGROW_HOST",
    "SUNGROW_PORT",
    "SUNGROW_SLAVE_ID",
    "POLL_INTERVAL_S",
    "INTER_REGISTER_DELAY_MS",
    "LEDGER_BASE_URL",
    "LEDGER_TOKEN",
    "FLUSH_INTERVAL_S",
    "MAX_ATTEMPTS",
    "ATTEMPT_TIMEOUT_S",
    "MAX_BACKOFF_S",
    "QUEUE_PATH",
    "LOG_PATH",
    "HEALTH_PATH",
)


@pytest.fixture(autouse=True)
def _clean_edge_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all edge env vars and run from tmp_path so no .env is loaded."""
    for var in _ALL_EDGE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set every EdgeSettings variable; returns the values for assertions."""
    env = {
        "SUNGROW_HOST": "192.168.1.100",
        "SUNGROW_PORT": "502",
        "SUNGROW_SLAVE_ID": "1",
        "POLL_INTERVAL_S": "30",
        "INTER_REGISTER_DELAY_MS": "20",
        "LEDGER_BASE_URL": "https://ledger.example.com",
        "LEDGER_TOKEN": "test-site-token",
        "FLUSH_INTERVAL_S": "15",
        "MAX_ATTEMPTS": "5",
        "ATTEMPT_TIMEOUT_S": "7.5",
        "MAX_BACKOFF_S": "120",
        "QUEUE_PATH": "/tmp/test-queue.db",
        "LOG_PATH": "/tmp/test-log.db",
        "HEALTH_PATH": "/tmp/test-health.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required variable; everything else uses defaults."""
    env = {"SUNGROW_HOST": "10.0.0.50"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest_asyncio.fixture()
async def log(tmp_path: Path) -> AsyncIterator[SqliteAppendLog]:
    """An opened local append log in tmp_path."""
    async with SqliteAppendLog(tmp_path / "log.db") as opened:
        yield opened


@pytest_asyncio.fixture()
async def queue(tmp_path: Path) -> AsyncIterator[SubmissionQueue]:
    """An opened submission queue with a small attempt budget."""
    async with SubmissionQueue(
        tmp_path / "queue.db", max_attempts=3, attempt_timeout_s=1.0
    ) as opened:
        yield opened
