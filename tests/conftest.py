"""Shared test fixtures for the Coda test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("AI_API_KEY", "test-ai-key-123")
    os.environ.setdefault("CALENDLY_API_TOKEN", "test-calendly-token-456")
    os.environ["METRICS_ENABLED"] = "false"


# ── Time ─────────────────────────────────────────────────────────────


class FakeClock:
    """Mutable clock: call it for the current time, ``advance`` to move it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Model ────────────────────────────────────────────────────────────


def model_reply(content: str = "", *calls):
    """Build a ``ModelReply``; each call is ``(name, args)`` or ``(name, args, id)``."""
    from coda.engine.dispatcher import ToolCall
    from coda.engine.provider import ModelReply

    tool_calls = []
    for i, call in enumerate(calls):
        name, args = call[0], call[1]
        call_id = call[2] if len(call) > 2 else f"call_{name}_{i}"
        tool_calls.append(ToolCall(name=name, arguments=args, call_id=call_id))
    return ModelReply(content=content, tool_calls=tool_calls)


class ScriptedProvider:
    """Stands in for ``ChatModelProvider``.

    ``replies`` are consumed in order; the last one repeats once the script
    runs out.  An ``Exception`` instance in the script is raised instead of
    returned.  ``stream`` yields ``chunks``.
    """

    def __init__(self, replies=None, chunks=None) -> None:
        self.replies = list(replies or [model_reply("Hello!")])
        self.chunks = list(chunks or ["Hel", "lo!"])
        self.calls: list[dict] = []
        self.stream_calls: list[list] = []

    async def complete(self, system_prompt, turns, tool_schemas):
        self.calls.append({"system": system_prompt, "turns": list(turns), "tools": tool_schemas})
        item = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def stream(self, system_prompt, turns):
        self.stream_calls.append(list(turns))
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


# ── HTTP collaborators ───────────────────────────────────────────────


@pytest.fixture
def mock_calendly_response():
    """Factory fixture for creating mock Calendly API responses."""

    def _make(data: dict, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make
