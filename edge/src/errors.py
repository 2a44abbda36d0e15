"""
Error kinds raised by the edge ingestion pipeline.

None of these are fatal to the daemon. Source and transient delivery errors
degrade to "retry later"; permanent delivery errors surface the affected
submission record for manual resolution; duplicate readings are treated as
success by every caller.

CHANGELOG:
- 2026-10-14: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all edge ingestion errors."""


class SourceUnavailable(SyncError):
    """The local reading source could not be reached or read."""


class DeliveryTransientFailure(SyncError):
    """The durable log is unreachable or rejected the reading transiently."""


class DeliveryPermanentFailure(SyncError):
    """Delivery will not succeed by retrying.

    Raised by a log that rejects a reading outright, and recorded by the
    queue once a record exhausts its attempt budget.
    """


class DuplicateReading(SyncError):
    """The log already holds a reading with the same uniqueness key.

    Callers treat this as a successful append.
    """

    def __init__(self, key: tuple[str, str, str]) -> None:
        super().__init__(f"Reading already stored: {key}")
        self.key = key
