"""
Tests for the /v1/readings endpoints.

Validates payload acceptance, site scoping from the bearer token,
idempotent counting of inserted rows, batch and body size limits,
validation errors, latest-reading lookup and history queries.

CHANGELOG:
- 2026-10-19: Values must fit NUMERIC(14, 3) (STORY-016)
- 2026-10-16: Replace ingest/realtime tests with readings tests (STORY-013)
- 2026-02-14: Initial creation with TDD tests (STORY-010)

TODO:
- None
"""

import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.dialects import postgresql

from ledger.src.db.models import Reading

AUTH_HEADER = {"Authorization": "Bearer test-token-abc"}
SITE_ID = "site-001"
READINGS_URL = "/v1/readings"
LATEST_URL = "/v1/readings/latest"


def _reading(
    captured_at: str = "2026-02-14T10:05:00Z",
    metric_kind: str = "production",
    **overrides: object,
) -> dict:
    reading = {"captured_at": captured_at, "metric_kind": metric_kind, "value": "5.2"}
    reading.update(overrides)
    return reading


def _mock_execute_result(rowcount: int) -> MagicMock:
    result = MagicMock()
    result.rowcount = rowcount
    return result


def _orm_reading(
    minute: int = 5,
    source: str = "automatic",
    value: str = "5.200",
) -> Reading:
    return Reading(
        site_id=SITE_ID,
        captured_at=datetime.datetime(2026, 2, 14, 10, minute, tzinfo=datetime.UTC),
        metric_kind="production",
        source=source,
        value=Decimal(value),
    )


# ---------------------------------------------------------------------------
# POST /v1/readings
# ---------------------------------------------------------------------------


class TestAppend:
    """Appends report how many readings were new."""

    def test_new_readings_counted(
        self, db_client: TestClient, mock_db_session: AsyncMock
    ) -> None:
        mock_db_session.execute = AsyncMock(return_value=_mock_execute_result(2))
        payload = {"readings": [_reading(), _reading(metric_kind="consumption")]}

        response = db_client.post(READINGS_URL, json=payload, headers=AUTH_HEADER)

        assert response.status_code == 200
        assert response.json() == {"received": 2, "inserted": 2}
        mock_db_session.commit.assert_awaited_once()

    def test_duplicate_reports_zero_inserted(
        self, db_client: TestClient, mock_db_session: AsyncMock
    ) -> None:
        mock_db_session.execute = AsyncMock(return_value=_mock_execute_result(0))

        response = db_client.post(
            READINGS_URL, json={"readings": [_reading()]}, headers=AUTH_HEADER
        )

        assert response.status_code == 200
        assert response.json() == {"received": 1, "inserted": 0}

    def test_rows_scoped_to_token_site(self, db_client: TestClient) -> None:
        with patch(
            "ledger.src.api.readings.append_readings",
            new_callable=AsyncMock,
            return_value=1,
        ) as mock_append:
            db_client.post(
                READINGS_URL,
                json={"readings": [_reading(site_id="site-999")]},
                headers=AUTH_HEADER,
            )

        _, site_id, rows = mock_append.await_args.args
        assert site_id == SITE_ID
        assert rows == [
            {
                "captured_at": datetime.datetime(2026, 2, 14, 10, 5, tzinfo=datetime.UTC),
                "metric_kind": "production",
                "source": "automatic",
                "value": Decimal("5.2"),
            }
        ]

    def test_empty_batch_skips_database(
        self, db_client: TestClient, mock_db_session: AsyncMock
    ) -> None:
        response = db_client.post(READINGS_URL, json={"readings": []}, headers=AUTH_HEADER)

        assert response.status_code == 200
        assert response.json() == {"received": 0, "inserted": 0}
        mock_db_session.execute.assert_not_awaited()


class TestAppendValidation:
    """Invalid payloads are rejected with 422 before touching the database."""

    def _post(self, db_client: TestClient, body: object) -> object:
        return db_client.post(READINGS_URL, json=body, headers=AUTH_HEADER)

    def test_naive_timestamp_rejected(
        self, db_client: TestClient, mock_db_session: AsyncMock
    ) -> None:
        response = self._post(
            db_client, {"readings": [_reading(captured_at="2026-02-14T10:05:00")]}
        )

        assert response.status_code == 422
        mock_db_session.execute.assert_not_awaited()

    def test_unknown_metric_kind_rejected(self, db_client: TestClient) -> None:
        response = self._post(db_client, {"readings": [_reading(metric_kind="voltage")]})

        assert response.status_code == 422

    def test_unknown_source_rejected(self, db_client: TestClient) -> None:
        response = self._post(db_client, {"readings": [_reading(source="guess")]})

        assert response.status_code == 422

    def test_non_finite_value_rejected(self, db_client: TestClient) -> None:
        response = self._post(db_client, {"readings": [_reading(value="NaN")]})

        assert response.status_code == 422

    @pytest.mark.parametrize(
        ("value", "message"),
        [
            ("5.12345", "3 decimal places"),
            ("1e15", "magnitude"),
            ("-100000000000", "magnitude"),
        ],
    )
    def test_value_not_fitting_column_rejected(
        self,
        db_client: TestClient,
        mock_db_session: AsyncMock,
        value: str,
        message: str,
    ) -> None:
        response = self._post(db_client, {"readings": [_reading(value=value)]})

        assert response.status_code == 422
        assert message in response.json()["detail"][0]["msg"]
        mock_db_session.execute.assert_not_awaited()

    def test_value_at_column_limits_accepted(
        self, db_client: TestClient, mock_db_session: AsyncMock
    ) -> None:
        mock_db_session.execute = AsyncMock(return_value=_mock_execute_result(2))
        payload = {
            "readings": [
                _reading(value="99999999999.999"),
                _reading(metric_kind="consumption", value="5.2000"),
            ]
        }

        response = self._post(db_client, payload)

        assert response.status_code == 200
        assert response.json() == {"received": 2, "inserted": 2}

    def test_malformed_json_rejected(self, db_client: TestClient) -> None:
        response = db_client.post(
            READINGS_URL,
            content=b"{not json",
            headers={**AUTH_HEADER, "Content-Type": "application/json"},
        )

        assert response.status_code == 422

    def test_missing_readings_key_rejected(self, db_client: TestClient) -> None:
        response = self._post(db_client, {"samples": []})

        assert response.status_code == 422
        assert response.json()["detail"][0]["loc"] == ["readings"]


class TestAppendLimits:
    """Batch and body size limits return 413."""

    def test_batch_over_limit(
        self, db_client: TestClient, mock_db_session: AsyncMock
    ) -> None:
        db_client.app.state.config["MAX_READINGS_PER_REQUEST"] = "2"
        payload = {
            "readings": [
                _reading(captured_at=f"2026-02-14T10:0{minute}:00Z") for minute in range(3)
            ]
        }

        response = db_client.post(READINGS_URL, json=payload, headers=AUTH_HEADER)

        assert response.status_code == 413
        assert "Split into smaller batches" in response.json()["detail"]
        mock_db_session.execute.assert_not_awaited()

    def test_body_over_limit(self, db_client: TestClient) -> None:
        db_client.app.state.config["MAX_REQUEST_BYTES"] = "50"

        response = db_client.post(
            READINGS_URL, json={"readings": [_reading()]}, headers=AUTH_HEADER
        )

        assert response.status_code == 413

    def test_invalid_content_length(self, db_client: TestClient) -> None:
        response = db_client.post(
            READINGS_URL,
            content=b'{"readings": []}',
            headers={**AUTH_HEADER, "Content-Length": "abc"},
        )

        assert response.status_code == 400


class TestAuth:
    """Every readings route requires a known bearer token."""

    def test_missing_token(self, db_client: TestClient) -> None:
        response = db_client.post(READINGS_URL, json={"readings": [_reading()]})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_unknown_token(self, db_client: TestClient) -> None:
        response = db_client.get(
            LATEST_URL,
            params={"metric_kind": "production"},
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == 401


# ---------------------------------------------------------------------------
# GET /v1/readings/latest
# ---------------------------------------------------------------------------


class TestLatest:
    def test_returns_latest_reading(
        self, db_client: TestClient, mock_db_session: AsyncMock
    ) -> None:
        result = MagicMock()
        result.scalar_one_or_none.return_value = _orm_reading(source="manual")
        mock_db_session.execute = AsyncMock(return_value=result)

        response = db_client.get(
            LATEST_URL, params={"metric_kind": "production"}, headers=AUTH_HEADER
        )

        assert response.status_code == 200
        data = response.json()
        assert data["site_id"] == SITE_ID
        assert data["metric_kind"] == "production"
        assert data["source"] == "manual"
        assert Decimal(data["value"]) == Decimal("5.2")
        assert data["captured_at"].startswith("2026-02-14T10:05:00")

    def test_not_found(self, db_client: TestClient, mock_db_session: AsyncMock) -> None:
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db_session.execute = AsyncMock(return_value=result)

        response = db_client.get(
            LATEST_URL, params={"metric_kind": "consumption"}, headers=AUTH_HEADER
        )

        assert response.status_code == 404

    def test_metric_kind_required(self, db_client: TestClient) -> None:
        response = db_client.get(LATEST_URL, headers=AUTH_HEADER)

        assert response.status_code == 422


# ---------------------------------------------------------------------------
# GET /v1/readings
# ---------------------------------------------------------------------------


class TestHistory:
    def test_returns_rows_in_order(
        self, db_client: TestClient, mock_db_session: AsyncMock
    ) -> None:
        result = MagicMock()
        result.scalars.return_value.all.return_value = [
            _orm_reading(minute=0, value="5.0"),
            _orm_reading(minute=5, value="5.2"),
        ]
        mock_db_session.execute = AsyncMock(return_value=result)

        response = db_client.get(
            READINGS_URL, params={"metric_kind": "production"}, headers=AUTH_HEADER
        )

        assert response.status_code == 200
        data = response.json()
        assert data["site_id"] == SITE_ID
        assert [Decimal(r["value"]) for r in data["readings"]] == [
            Decimal("5.0"),
            Decimal("5.2"),
        ]

    def test_start_must_precede_end(self, db_client: TestClient) -> None:
        response = db_client.get(
            READINGS_URL,
            params={"start": "2026-02-14T11:00:00Z", "end": "2026-02-14T10:00:00Z"},
            headers=AUTH_HEADER,
        )

        assert response.status_code == 400

    def test_limit_above_maximum(self, db_client: TestClient) -> None:
        response = db_client.get(
            READINGS_URL, params={"limit": 5000}, headers=AUTH_HEADER
        )

        assert response.status_code == 400

    def test_zero_limit_rejected(self, db_client: TestClient) -> None:
        response = db_client.get(READINGS_URL, params={"limit": 0}, headers=AUTH_HEADER)

        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Service layer
# ---------------------------------------------------------------------------


class TestAppendStatement:
    """append_readings issues an idempotent INSERT."""

    @pytest.mark.asyncio
    async def test_uses_on_conflict_do_nothing(self, mock_db_session: AsyncMock) -> None:
        from ledger.src.services.ledger import append_readings

        mock_db_session.execute = AsyncMock(return_value=_mock_execute_result(1))

        inserted = await append_readings(
            mock_db_session,
            SITE_ID,
            [
                {
                    "captured_at": datetime.datetime(2026, 2, 14, 10, 5, tzinfo=datetime.UTC),
                    "metric_kind": "production",
                    "source": "automatic",
                    "value": Decimal("5.2"),
                }
            ],
        )

        stmt = mock_db_session.execute.await_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert inserted == 1
        assert "ON CONFLICT (site_id, captured_at, metric_kind, source) DO NOTHING" in sql
