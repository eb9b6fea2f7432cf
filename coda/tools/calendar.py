"""Lesson availability tool backed by Calendly."""

from __future__ import annotations

from langchain_core.messages import AnyMessage
from pydantic import BaseModel, Field

from coda.engine.dispatcher import ToolErr, ToolOk, ToolSpec
from coda.services.calendar import (
    DEFAULT_DAYS_AHEAD,
    MAX_DAYS_AHEAD,
    AvailabilityService,
    CalendarUnavailable,
)

availability = AvailabilityService()


class CheckAvailabilityArgs(BaseModel):
    days_ahead: int = Field(
        default=DEFAULT_DAYS_AHEAD,
        ge=1,
        le=MAX_DAYS_AHEAD,
        description="How many days ahead to look, starting today.",
    )


def check_availability(args: CheckAvailabilityArgs, transcript: list[AnyMessage]) -> ToolOk | ToolErr:
    try:
        return ToolOk(availability.summarize(args.days_ahead))
    except CalendarUnavailable as exc:
        return ToolErr("calendar_unavailable", str(exc))


CALENDAR_TOOLS = [
    ToolSpec(
        name="check_availability",
        description=(
            "Check which days and times have free lesson slots over the coming days. "
            "Use this when the user asks when lessons are available or wants to book. "
            "Times are approximate ranges; the teacher confirms the final slot."
        ),
        args_schema=CheckAvailabilityArgs,
        handler=check_availability,
    ),
]
