"""
Bearer token authentication for the ledger API.

Each token is scoped to exactly one site. Tokens come from the SITE_TOKENS
environment variable and are kept only as SHA-256 digests; incoming tokens
are hashed and compared with secrets.compare_digest so lookups take the
same time whether or not a prefix matches.

CHANGELOG:
- 2026-10-15: Site-scoped tokens stored as digests (STORY-014)
- 2026-02-14: Initial creation (STORY-009)

TODO:
- None
"""

import hashlib
import logging
import secrets

from fastapi import HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)


def _digest(token: str) -> bytes:
    return hashlib.sha256(token.encode("utf-8")).digest()


def parse_site_tokens(raw: str) -> dict[str, str]:
    """Parse SITE_TOKENS into a token-to-site mapping.

    Format: ``"token1:site1,token2:site2"``. Entries without a colon, or with
    an empty token or site, are skipped with a warning.

    Args:
        raw: The raw comma-separated ``token:site_id`` string.

    Returns:
        dict[str, str]: Mapping of token -> site_id.
    """
    token_map: dict[str, str] = {}
    if not raw or not raw.strip():
        return token_map

    for idx, entry in enumerate(raw.split(",")):
        token, sep, site_id = entry.strip().partition(":")
        token, site_id = token.strip(), site_id.strip()
        if not sep or not token or not site_id:
            logger.warning("Skipping malformed SITE_TOKENS entry at position %d", idx)
            continue
        token_map[token] = site_id
    return token_map


class SiteAuth:
    """FastAPI dependency resolving a bearer token to its site_id.

    Args:
        token_map: Mapping of token -> site_id. Only digests are retained.
    """

    def __init__(self, token_map: dict[str, str]) -> None:
        self._sites = [(_digest(token), site) for token, site in token_map.items()]
        self.scheme = HTTPBearer(auto_error=False)

    def __len__(self) -> int:
        return len(self._sites)

    def site_for(self, token: str) -> str | None:
        """Return the site_id for *token*, or None if it is unknown."""
        if not token:
            return None
        candidate = _digest(token)
        match: str | None = None
        # Compare against every entry so timing does not reveal the position.
        for digest, site_id in self._sites:
            if secrets.compare_digest(candidate, digest):
                match = site_id
        return match

    async def verify(self, request: Request) -> str:
        """Validate the Authorization header and return the site_id.

        Raises:
            HTTPException: 401 if the token is missing or unknown.
        """
        credentials: HTTPAuthorizationCredentials | None = await self.scheme(request)
        if credentials is None:
            raise HTTPException(
                status_code=401,
                detail="Missing authorization credentials.",
                headers={"WWW-Authenticate": "Bearer"},
            )

        site_id = self.site_for(credentials.credentials)
        if site_id is None:
            raise HTTPException(
                status_code=401,
                detail="Invalid or expired token.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return site_id
