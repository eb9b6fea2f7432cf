"""Pydantic schemas for the FastAPI endpoints.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Chat ─────────────────────────────────────────────────────────────


class ChatRequest(_CamelModel):
    """Incoming chat message from the widget."""

    message: str = Field(..., min_length=1, max_length=2000, description="The user's message")
    conversation_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=100,
        description="Conversation to continue; a new one is started when omitted",
    )


class ChatResponse(_CamelModel):
    """The assistant's reply."""

    text: str = Field(..., description="The assistant's response message")
    conversation_id: str
    messages_remaining: int
    attachments: list[dict[str, Any]] = Field(default_factory=list)


class ClearResponse(BaseModel):
    success: bool = True


# ── Sessions ─────────────────────────────────────────────────────────


class SessionCreated(_CamelModel):
    token: str
    expires_at: datetime
    messages_remaining: int
    max_messages: int


class SessionStatus(_CamelModel):
    valid: bool
    messages_remaining: int
    expires_at: datetime


class SessionInfo(_CamelModel):
    max_messages: int
    expiry_hours: int
    max_sessions_per_origin_per_day: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "coda-assistant"
