"""
FastAPI application entry point for the ledger API.

The ledger is the remote durable append log that edge devices flush their
readings into. Environment variables are validated at startup and
SITE_TOKENS are parsed into a SiteAuth instance stored on app.state for
route handlers.

CHANGELOG:
- 2026-10-15: Serve readings router, drop cache and series (STORY-013)
- 2026-02-14: Add health endpoint (STORY-015)
- 2026-02-14: Initial creation (STORY-007)
"""

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ledger.src.api.readings import router as readings_router
from ledger.src.auth.bearer import SiteAuth, parse_site_tokens
from ledger.src.db.session import dispose_engine

logger = logging.getLogger(__name__)


def _load_env_config() -> dict[str, str]:
    """Load and validate environment variables at startup.

    Returns:
        dict: Mapping of config key to value, defaults filled in.

    Raises:
        RuntimeError: If a required variable is missing or a limit is not a
            positive integer.
    """
    required = ["DATABASE_URL", "SITE_TOKENS"]
    config: dict[str, str] = {}
    missing: list[str] = []

    for key in required:
        value = os.environ.get(key)
        if not value:
            missing.append(key)
        else:
            config[key] = value

    if missing:
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    config["MAX_READINGS_PER_REQUEST"] = os.environ.get(
        "MAX_READINGS_PER_REQUEST", "1000"
    )
    config["MAX_REQUEST_BYTES"] = os.environ.get("MAX_REQUEST_BYTES", "1048576")

    for key in ("MAX_READINGS_PER_REQUEST", "MAX_REQUEST_BYTES"):
        if not config[key].isdigit() or int(config[key]) < 1:
            raise RuntimeError(f"{key} must be a positive integer")

    return config


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Validate configuration on startup and release the engine on shutdown."""
    config = _load_env_config()
    app.state.config = config

    token_map = parse_site_tokens(config["SITE_TOKENS"])
    if not token_map:
        raise RuntimeError(
            "SITE_TOKENS parsed but contains no valid token:site_id entries"
        )
    app.state.auth = SiteAuth(token_map)
    logger.info("Parsed %d site token(s) from SITE_TOKENS", len(token_map))

    logger.info("Environment validated, ledger API ready")
    yield
    await dispose_engine()
    logger.info("Ledger API shutting down")


app = FastAPI(
    title="Solar Reading Ledger API",
    description="Durable append-only log of solar energy readings.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(readings_router)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    """Unauthenticated liveness probe for Docker HEALTHCHECK."""
    return {"status": "ok"}
