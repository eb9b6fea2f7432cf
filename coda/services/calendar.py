"""Lesson availability summaries for the assistant.

Turns Calendly's raw available slots into a short, human-readable summary
grouped by day, e.g.::

    Available times in the next 7 days:

    **Monday, March 2:** some slots between 9 AM and 12:30 PM
    **Tuesday, March 3:** some slots between 3 PM and 4 PM, or between 5 PM and 6 PM

Back-to-back slots are merged into one range per free stretch.  The wording always says "some slots between" so a range is never read as
one continuous free block.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from coda.config import STUDIO_TIMEZONE, TEACHER_NAME
from coda.services.calendly_client import (
    MAX_AVAILABILITY_WINDOW_DAYS,
    CalendlyAPIError,
    CalendlyClient,
    get_calendly_client,
)

logger = logging.getLogger(__name__)

DEFAULT_DAYS_AHEAD = 7
MAX_DAYS_AHEAD = 14
DEFAULT_SLOT_MINUTES = 30


class CalendarUnavailable(Exception):
    """Raised when availability cannot be determined (unconfigured or failing)."""


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _iso_z(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_time(dt: datetime) -> str:
    """'9 AM', '12:30 PM': minutes only when non-zero."""
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    if dt.minute:
        return f"{hour}:{dt.minute:02d} {suffix}"
    return f"{hour} {suffix}"


def merge_ranges(
    starts: list[datetime],
    slot: timedelta,
) -> list[tuple[datetime, datetime]]:
    """Collapse back-to-back slot start times into ``(start, end)`` ranges."""
    ranges: list[tuple[datetime, datetime]] = []
    for start in sorted(starts):
        end = start + slot
        if ranges and ranges[-1][1] >= start:
            ranges[-1] = (ranges[-1][0], max(ranges[-1][1], end))
        else:
            ranges.append((start, end))
    return ranges


class AvailabilityService:
    """Summarises free lesson slots for the next few days."""

    def __init__(
        self,
        client_factory: Callable[[], CalendlyClient] = get_calendly_client,
        *,
        timezone: str = STUDIO_TIMEZONE,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._client_factory = client_factory
        self._tz = ZoneInfo(timezone)
        self._clock = clock

    def summarize(self, days_ahead: int = DEFAULT_DAYS_AHEAD) -> str:
        """Return a day-by-day summary, or raise ``CalendarUnavailable``."""
        days_ahead = max(1, min(days_ahead, MAX_DAYS_AHEAD))
        try:
            client = self._client_factory()
            event_types = client.get_event_types()
            if not event_types:
                raise CalendarUnavailable("No active lesson event type is configured in Calendly.")
            event_type = event_types[0]
            slot = timedelta(minutes=int(event_type.get("duration") or DEFAULT_SLOT_MINUTES))

            # Calendly wants a start time strictly in the future
            window_start = self._clock() + timedelta(minutes=1)
            horizon = window_start + timedelta(days=days_ahead)
            slots: list[dict] = []
            while window_start < horizon:
                window_end = min(window_start + timedelta(days=MAX_AVAILABILITY_WINDOW_DAYS), horizon)
                slots.extend(
                    client.get_available_times(event_type["uri"], _iso_z(window_start), _iso_z(window_end))
                )
                window_start = window_end
        except CalendlyAPIError as exc:
            logger.error("Availability lookup failed: %s", exc)
            raise CalendarUnavailable(str(exc)) from exc

        starts = [
            _parse_iso(s["start_time"]).astimezone(self._tz)
            for s in slots
            if s.get("status") == "available"
        ]
        if not starts:
            return f"No available slots found in the next {days_ahead} days."

        by_day: dict[str, list[datetime]] = {}
        for start in sorted(starts):
            day_label = f"{start.strftime('%A, %B')} {start.day}"
            by_day.setdefault(day_label, []).append(start)

        lines = [f"Available times in the next {days_ahead} days:", ""]
        for day_label, day_starts in by_day.items():
            spans = ", or ".join(
                f"between {format_time(start)} and {format_time(end)}"
                for start, end in merge_ranges(day_starts, slot)
            )
            lines.append(f"**{day_label}:** some slots {spans}")
        lines.append("")
        lines.append(
            f"Note: Final confirmation is always done by {TEACHER_NAME} based on "
            "location and lesson length (30-60 minutes)."
        )
        return "\n".join(lines)
