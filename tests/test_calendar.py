"""Tests for availability summaries and the check_availability tool."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from coda.engine.dispatcher import ToolErr, ToolOk
from coda.services.calendar import (
    AvailabilityService,
    CalendarUnavailable,
    format_time,
    merge_ranges,
)
from coda.services.calendly_client import CalendlyAPIError
from coda.tools.calendar import CheckAvailabilityArgs, check_availability

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)  # Sunday


def _slot(iso: str, status: str = "available") -> dict:
    return {"start_time": iso, "status": status}


def _client(slots: list[dict], duration: int = 30) -> MagicMock:
    client = MagicMock()
    client.get_event_types.return_value = [
        {"uri": "https://api.calendly.com/event_types/LESSON", "duration": duration},
    ]
    client.get_available_times.return_value = slots
    return client


def _service(client) -> AvailabilityService:
    return AvailabilityService(lambda: client, timezone="UTC", clock=lambda: NOW)


class TestHelpers:
    @pytest.mark.parametrize(
        ("hour", "minute", "expected"),
        [(9, 0, "9 AM"), (12, 30, "12:30 PM"), (0, 0, "12 AM"), (18, 0, "6 PM")],
    )
    def test_format_time(self, hour, minute, expected):
        assert format_time(datetime(2026, 3, 2, hour, minute)) == expected

    def test_merge_ranges_joins_back_to_back_slots(self):
        starts = [datetime(2026, 3, 2, h, m) for h, m in [(9, 0), (9, 30), (11, 0)]]
        ranges = merge_ranges(starts, timedelta(minutes=30))
        assert ranges == [
            (datetime(2026, 3, 2, 9, 0), datetime(2026, 3, 2, 10, 0)),
            (datetime(2026, 3, 2, 11, 0), datetime(2026, 3, 2, 11, 30)),
        ]


class TestSummarize:
    def test_groups_by_day(self):
        client = _client([
            _slot("2026-03-02T09:00:00Z"),
            _slot("2026-03-02T12:00:00Z"),
            _slot("2026-03-03T15:00:00Z"),
            _slot("2026-03-03T16:00:00Z", status="unavailable"),
        ])
        text = _service(client).summarize(7)

        assert text.startswith("Available times in the next 7 days:")
        assert (
            "**Monday, March 2:** some slots between 9 AM and 9:30 AM, or between 12 PM and 12:30 PM"
            in text
        )
        assert "**Tuesday, March 3:** some slots between 3 PM and 3:30 PM\n" in text
        assert "Final confirmation" in text

    def test_back_to_back_slots_form_one_range(self):
        client = _client([
            _slot("2026-03-02T09:00:00Z"),
            _slot("2026-03-02T09:30:00Z"),
            _slot("2026-03-02T10:00:00Z"),
            _slot("2026-03-02T14:00:00Z"),
        ])
        text = _service(client).summarize(7)
        assert "**Monday, March 2:** some slots between 9 AM and 10:30 AM, or between 2 PM and 2:30 PM" in text

    def test_no_slots(self):
        text = _service(_client([])).summarize(5)
        assert text == "No available slots found in the next 5 days."

    def test_long_windows_are_split_into_weeks(self):
        client = _client([])
        _service(client).summarize(14)
        assert client.get_available_times.call_count == 2
        first, second = client.get_available_times.call_args_list
        assert first[0][2] == second[0][1]  # contiguous windows

    def test_days_ahead_is_clamped(self):
        client = _client([])
        assert "next 14 days" in _service(client).summarize(60)
        assert "next 1 days" in _service(client).summarize(0)

    def test_calendly_failure_becomes_calendar_unavailable(self):
        client = MagicMock()
        client.get_event_types.side_effect = CalendlyAPIError("Server error 503")
        with pytest.raises(CalendarUnavailable, match="503"):
            _service(client).summarize()

    def test_unconfigured_calendly(self):
        def _factory():
            raise CalendlyAPIError("Calendly is not configured")

        service = AvailabilityService(_factory, timezone="UTC", clock=lambda: NOW)
        with pytest.raises(CalendarUnavailable, match="not configured"):
            service.summarize()

    def test_no_event_types(self):
        client = MagicMock()
        client.get_event_types.return_value = []
        with pytest.raises(CalendarUnavailable):
            _service(client).summarize()


class TestCheckAvailabilityTool:
    def test_success(self):
        with patch("coda.tools.calendar.availability") as mock_service:
            mock_service.summarize.return_value = "Available times in the next 3 days:"
            result = check_availability(CheckAvailabilityArgs(days_ahead=3), [])
        assert isinstance(result, ToolOk)
        mock_service.summarize.assert_called_once_with(3)

    def test_unavailable_calendar_is_a_tool_error(self):
        with patch("coda.tools.calendar.availability") as mock_service:
            mock_service.summarize.side_effect = CalendarUnavailable("down")
            result = check_availability(CheckAvailabilityArgs(), [])
        assert result == ToolErr("calendar_unavailable", "down")

    def test_default_is_a_week(self):
        assert CheckAvailabilityArgs().days_ahead == 7

    def test_out_of_range_is_rejected_by_schema(self):
        with pytest.raises(ValueError):
            CheckAvailabilityArgs(days_ahead=30)
