"""
Authentication package.

CHANGELOG:
- 2026-10-15: Export SiteAuth and parse_site_tokens (STORY-014)
- 2026-02-14: Initial creation (STORY-007)
"""

from ledger.src.auth.bearer import SiteAuth, parse_site_tokens

__all__ = ["SiteAuth", "parse_site_tokens"]
