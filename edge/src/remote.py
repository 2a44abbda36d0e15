"""
HTTPS client for the remote ledger, exposed as an append log.

Implements the :class:`~edge.src.log.AppendLog` protocol by writing through
to the ledger service: ``append`` POSTs a single reading to
``{ledger_base_url}/v1/readings`` and ``latest`` GETs
``/v1/readings/latest``. Responses are mapped onto the edge error kinds so
the submission queue can treat a remote ledger exactly like a local log.

Response mapping for append:
- 200 with ``inserted >= 1``: appended.
- 200 with ``inserted == 0``, or 409: DuplicateReading.
- 408, 429, 5xx, timeouts and connection errors: DeliveryTransientFailure.
- 200 with a body that is not the expected JSON (a proxy or captive
  portal page): DeliveryTransientFailure.
- any other status: DeliveryPermanentFailure.

HTTPS is required at construction and TLS verification is always on.

CHANGELOG:
- 2026-10-19: Unreadable 200 bodies are transient failures (STORY-016)
- 2026-10-15: Per-reading append/latest against the ledger API (STORY-007)
- 2026-02-14: Initial creation as batch uploader (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import logging

import httpx

from edge.src.errors import (
    DeliveryPermanentFailure,
    DeliveryTransientFailure,
    DuplicateReading,
)
from edge.src.models import MetricKind, Reading

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_S = 10.0
_RETRYABLE_STATUS = frozenset({408, 425, 429})


class RemoteAppendLog:
    """Durable append log backed by the remote ledger service.

    Args:
        ledger_base_url: Base URL of the ledger service. Must start with
            ``https://``.
        token: Per-site bearer token for ledger authentication.
        timeout_s: Timeout applied to connect, read and write of each
            request.
        transport: Optional httpx transport (used by tests).

    Raises:
        ValueError: If *ledger_base_url* does not start with ``https://``.

    Usage::

        log = RemoteAppendLog(
            ledger_base_url="https://ledger.example.com",
            token="tok-123",
        )
        await queue.flush(log)
    """

    def __init__(
        self,
        ledger_base_url: str,
        token: str,
        *,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not ledger_base_url.lower().startswith("https://"):
            raise ValueError(
                f"Ledger base URL must use HTTPS (got: '{ledger_base_url}')."
            )
        self._base_url = ledger_base_url.rstrip("/")
        self._token = token
        self._timeout = httpx.Timeout(timeout_s)
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def append(self, reading: Reading) -> None:
        """POST *reading* to the ledger.

        Raises:
            DuplicateReading: The ledger already holds this key.
            DeliveryTransientFailure: The ledger is unreachable, timed out,
                or answered with a retryable status.
            DeliveryPermanentFailure: The ledger rejected the reading.
        """
        body = {"readings": [reading.model_dump(mode="json")]}
        response = await self._request("POST", "/v1/readings", json=body)

        if response.status_code == 200:
            try:
                inserted = int(response.json()["inserted"])
            except (ValueError, TypeError, KeyError) as exc:
                raise DeliveryTransientFailure(
                    f"unreadable ledger response: {response.text[:200]!r}"
                ) from exc
            if inserted == 0:
                raise DuplicateReading(reading.key)
            logger.debug("Ledger accepted reading %s", reading.key)
            return
        if response.status_code == 409:
            raise DuplicateReading(reading.key)
        self._raise_for_status(response)

    async def latest(self, metric_kind: MetricKind) -> Reading | None:
        """Return the ledger's newest reading of *metric_kind*, or None.

        Raises:
            DeliveryTransientFailure: The ledger could not be queried.
            DeliveryPermanentFailure: The ledger rejected the query.
        """
        response = await self._request(
            "GET",
            "/v1/readings/latest",
            params={"metric_kind": MetricKind(metric_kind).value},
        )
        if response.status_code == 404:
            return None
        if response.status_code == 200:
            try:
                return Reading.model_validate(response.json())
            except ValueError as exc:
                raise DeliveryTransientFailure(
                    f"unreadable ledger response: {response.text[:200]!r}"
                ) from exc
        self._raise_for_status(response)
        return None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                verify=True,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                return await client.request(
                    method,
                    f"{self._base_url}{path}",
                    headers={"Authorization": f"Bearer {self._token}"},
                    **kwargs,  # type: ignore[arg-type]
                )
        except httpx.TransportError as exc:
            logger.warning("Ledger %s %s failed (network error): %s", method, path, exc)
            raise DeliveryTransientFailure(f"ledger unreachable: {exc!r}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status >= 500 or status in _RETRYABLE_STATUS:
            raise DeliveryTransientFailure(f"ledger answered HTTP {status}")
        raise DeliveryPermanentFailure(
            f"ledger rejected request with HTTP {status}: {response.text[:200]}"
        )
