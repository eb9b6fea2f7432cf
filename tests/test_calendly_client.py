"""Tests for the CalendlyClient service."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from coda.services.cache import LRUCache
from coda.services.calendly_client import (
    INITIAL_BACKOFF_SECONDS,
    MAX_RETRIES,
    CalendlyAPIError,
    CalendlyClient,
)

USER_DATA = {"resource": {"uri": "https://api.calendly.com/users/TESTUSER123"}}
EVENT_TYPE = "https://api.calendly.com/event_types/LESSON"


# ── Construction ─────────────────────────────────────────────────────


class TestConstruction:
    def test_missing_token_is_an_error(self):
        with patch("coda.services.calendly_client.CALENDLY_API_TOKEN", None):
            with pytest.raises(CalendlyAPIError, match="not configured"):
                CalendlyClient()

    def test_sends_bearer_token(self):
        client = CalendlyClient(token="test-token")
        assert client._client.headers["Authorization"] == "Bearer test-token"


# ── Tests: get_current_user_uri ──────────────────────────────────────


class TestGetCurrentUserUri:
    def test_returns_user_uri(self, mock_calendly_response):
        client = CalendlyClient(token="test-token")
        with patch.object(client._client, "request", return_value=mock_calendly_response(USER_DATA)):
            assert client.get_current_user_uri() == "https://api.calendly.com/users/TESTUSER123"

    def test_caches_user_uri(self, mock_calendly_response):
        client = CalendlyClient(token="test-token")
        with patch.object(client._client, "request", return_value=mock_calendly_response(USER_DATA)) as mock_req:
            client.get_current_user_uri()
            client.get_current_user_uri()
            assert mock_req.call_count == 1


# ── Tests: get_event_types ───────────────────────────────────────────


class TestGetEventTypes:
    def test_lists_active_event_types_once(self, mock_calendly_response):
        client = CalendlyClient(token="test-token")
        client._user_uri = "https://api.calendly.com/users/TEST"
        data = {"collection": [{"uri": EVENT_TYPE, "duration": 30}]}

        with patch.object(client._client, "request", return_value=mock_calendly_response(data)) as mock_req:
            assert client.get_event_types() == data["collection"]
            assert client.get_event_types() == data["collection"]
            assert mock_req.call_count == 1
            params = mock_req.call_args[1]["params"]
            assert params == {"user": "https://api.calendly.com/users/TEST", "active": "true"}


# ── Tests: get_available_times ───────────────────────────────────────


class TestGetAvailableTimes:
    def test_returns_slots(self, mock_calendly_response):
        client = CalendlyClient(token="test-token")
        slots_data = {
            "collection": [
                {"start_time": "2026-03-02T10:00:00Z", "status": "available"},
                {"start_time": "2026-03-02T11:00:00Z", "status": "unavailable"},
            ]
        }
        with patch.object(client._client, "request", return_value=mock_calendly_response(slots_data)):
            slots = client.get_available_times(EVENT_TYPE, "2026-03-02T00:00:00Z", "2026-03-02T23:59:59Z")
        assert len(slots) == 2

    def test_same_window_is_served_from_cache(self, mock_calendly_response):
        client = CalendlyClient(token="test-token", cache=LRUCache())
        with patch.object(
            client._client, "request", return_value=mock_calendly_response({"collection": []}),
        ) as mock_req:
            client.get_available_times(EVENT_TYPE, "a", "b")
            client.get_available_times(EVENT_TYPE, "a", "b")
            client.get_available_times(EVENT_TYPE, "a", "c")
            assert mock_req.call_count == 2


# ── Tests: retry logic ───────────────────────────────────────────────


class TestRetryLogic:
    @patch("coda.services.calendly_client.time.sleep")
    def test_retries_on_timeout(self, mock_sleep, mock_calendly_response):
        client = CalendlyClient(token="test-token")
        with patch.object(
            client._client,
            "request",
            side_effect=[httpx.TimeoutException("timeout"), mock_calendly_response(USER_DATA)],
        ):
            assert client.get_current_user_uri().endswith("TESTUSER123")
            mock_sleep.assert_called_once_with(INITIAL_BACKOFF_SECONDS)

    @patch("coda.services.calendly_client.time.sleep")
    def test_retries_on_500_error(self, mock_sleep, mock_calendly_response):
        client = CalendlyClient(token="test-token")
        with patch.object(
            client._client,
            "request",
            side_effect=[
                mock_calendly_response({"error": "Internal Server Error"}, 500),
                mock_calendly_response(USER_DATA),
            ],
        ):
            assert client.get_current_user_uri().endswith("TESTUSER123")

    @patch("coda.services.calendly_client.time.sleep")
    def test_does_not_retry_on_400_error(self, mock_sleep, mock_calendly_response):
        client = CalendlyClient(token="test-token")
        with patch.object(
            client._client, "request", return_value=mock_calendly_response({"error": "Bad"}, 400),
        ):
            with pytest.raises(CalendlyAPIError) as exc_info:
                client.get_current_user_uri()
        assert exc_info.value.status_code == 400
        mock_sleep.assert_not_called()

    @patch("coda.services.calendly_client.time.sleep")
    def test_raises_after_max_retries(self, mock_sleep):
        client = CalendlyClient(token="test-token")
        with patch.object(client._client, "request", side_effect=httpx.TimeoutException("timeout")):
            with pytest.raises(CalendlyAPIError) as exc_info:
                client.get_current_user_uri()
        assert "after" in str(exc_info.value).lower()
        # Sleeps only between attempts
        assert mock_sleep.call_count == MAX_RETRIES - 1

    @patch("coda.services.calendly_client.metrics")
    def test_records_metrics(self, mock_metrics, mock_calendly_response):
        client = CalendlyClient(token="test-token")
        with patch.object(client._client, "request", return_value=mock_calendly_response(USER_DATA)):
            client.get_current_user_uri()
        service, operation = mock_metrics.record_success.call_args[0][:2]
        assert service == "calendly"
        assert operation == "GET /users/me"
