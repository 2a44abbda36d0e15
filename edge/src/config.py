"""
Edge daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded IPs, URLs, or credentials.

When ``LEDGER_BASE_URL`` is unset the daemon keeps its durable log locally
at ``LOG_PATH``; otherwise readings are written through to the ledger.

``SyncSettings`` holds what the queue and the log need, so the operator
CLI can run on a host without inverter variables. ``EdgeSettings`` adds
the inverter and polling settings the daemon needs.

CHANGELOG:
- 2026-10-19: Split queue/ledger settings out for the operator CLI (STORY-016)
- 2026-10-15: Ledger, queue and retry settings (STORY-008)
- 2026-02-14: Initial creation (STORY-001)

TODO:
- None
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class SyncSettings(BaseSettings):
    """Queue and durable log configuration.

    Attributes:
        ledger_base_url: Ledger service base URL (HTTPS). Empty selects the
            local log.
        ledger_token: Per-site bearer token for the ledger.
        flush_interval_s: Seconds between flushes when the last one was clean.
        max_attempts: Delivery attempts before a record is marked failed.
        attempt_timeout_s: Timeout for a single delivery attempt.
        max_backoff_s: Upper bound for the flush backoff.
        queue_path: SQLite file for the pending-submission queue.
        log_path: SQLite file for the local durable log.
    """

    ledger_base_url: str = ""
    ledger_token: str = ""
    flush_interval_s: int = 10
    max_attempts: int = 10
    attempt_timeout_s: float = 15.0
    max_backoff_s: float = 300.0
    queue_path: str = "/data/queue.db"
    log_path: str = "/data/log.db"

    @property
    def uses_remote_ledger(self) -> bool:
        """True when readings are written through to the ledger service."""
        return bool(self.ledger_base_url)

    @field_validator("ledger_base_url")
    @classmethod
    def ledger_base_url_must_be_https(cls, v: str) -> str:
        """Reject plain-HTTP ledger URLs at startup."""
        if v and not v.startswith("https://"):
            raise ValueError(f"LEDGER_BASE_URL must use HTTPS (got: '{v[:20]}...')")
        return v

    @model_validator(mode="after")
    def _token_required_for_ledger(self) -> "SyncSettings":
        if self.ledger_base_url and not self.ledger_token:
            raise ValueError("LEDGER_TOKEN is required when LEDGER_BASE_URL is set")
        return self

    @field_validator("max_attempts")
    @classmethod
    def max_attempts_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_ATTEMPTS must be >= 1")
        return v

    @field_validator("attempt_timeout_s", "max_backoff_s")
    @classmethod
    def durations_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and backoff caps must be > 0")
        return v

    @field_validator("flush_interval_s")
    @classmethod
    def flush_interval_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("FLUSH_INTERVAL_S must be >= 1")
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


class EdgeSettings(SyncSettings):
    """Edge daemon configuration.

    Attributes:
        sungrow_host: WiNet-S IP address / hostname on the local LAN.
        sungrow_port: Modbus TCP port (default 502).
        sungrow_slave_id: Modbus slave / unit ID (default 1).
        poll_interval_s: Seconds between poll cycles (min 5).
        inter_register_delay_ms: Milliseconds between register group reads.
        health_path: JSON health file path.
    """

    sungrow_host: str
    sungrow_port: int = 502
    sungrow_slave_id: int = 1
    poll_interval_s: int = 60
    inter_register_delay_ms: int = 20
    health_path: str = "/data/health.json"

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_respect_winet_s(cls, v: int) -> int:
        """Minimum 5-second interval to avoid overloading the WiNet-S dongle."""
        if v < 5:
            raise ValueError("POLL_INTERVAL_S must be >= 5 (WiNet-S stability)")
        return v

    @field_validator("sungrow_port")
    @classmethod
    def sungrow_port_must_be_valid(cls, v: int) -> int:
        """Validate Modbus TCP port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("SUNGROW_PORT must be between 1 and 65535")
        return v

    @field_validator("sungrow_slave_id")
    @classmethod
    def sungrow_slave_id_must_be_valid(cls, v: int) -> int:
        """Validate Modbus slave ID is in valid range (1-247)."""
        if v < 1 or v > 247:
            raise ValueError("SUNGROW_SLAVE_ID must be between 1 and 247")
        return v

    @field_validator("inter_register_delay_ms")
    @classmethod
    def inter_register_delay_must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("INTER_REGISTER_DELAY_MS must be >= 0")
        return v
