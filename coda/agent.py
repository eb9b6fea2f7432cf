"""Assembly of the Coda chat engine.

Architecture:
  ``ChatService`` admits each message (session token → per-conversation
  guard → message quota) and hands it to ``AgentLoop``, which alternates
  model calls with tool dispatch until the model answers in plain text or
  the iteration cap is reached::

    user message → model ─(tool calls?)→ tools → model → … → reply
                         └(text only)──────────────────────→ reply

  Memory:
    Conversations live in an in-process ``TranscriptStore`` keyed by
    conversation id and trimmed to the last ``MAX_HISTORY_TURNS`` turns
    after every exchange, without ever splitting a tool call from its
    result.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel

from coda.config import (
    AI_API_KEY,
    AI_MODEL,
    AI_PROVIDER,
    MAX_HISTORY_TURNS,
    MAX_MESSAGES_PER_SESSION,
    MAX_SESSIONS_PER_ORIGIN_PER_DAY,
    MAX_TOOL_ITERATIONS,
    SESSION_TTL_HOURS,
)
from coda.engine.dispatcher import ToolRegistry
from coda.engine.guard import ConcurrencyGuard
from coda.engine.loop import AgentLoop
from coda.engine.provider import ChatModelProvider
from coda.engine.quota import QuotaLedger, QuotaLimits
from coda.engine.service import ChatService
from coda.engine.transcript import TranscriptStore
from coda.prompts import get_system_prompt
from coda.tools.calendar import CALENDAR_TOOLS
from coda.tools.knowledge import KNOWLEDGE_TOOLS
from coda.tools.ui import UI_TOOLS

logger = logging.getLogger(__name__)


# ── All tools the agent can use ──────────────────────────────────────

ALL_TOOLS = [*KNOWLEDGE_TOOLS, *CALENDAR_TOOLS, *UI_TOOLS]


def build_tool_registry() -> ToolRegistry:
    return ToolRegistry(ALL_TOOLS)


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm() -> BaseChatModel:
    """Build the chat model for the configured provider."""
    if AI_PROVIDER == "openai":
        from langchain_openai import ChatOpenAI  # noqa: PLC0415 — optional provider

        return ChatOpenAI(
            model=AI_MODEL,
            api_key=AI_API_KEY,
            temperature=0.7,
            max_tokens=1024,
        )
    return ChatAnthropic(
        model=AI_MODEL,
        api_key=AI_API_KEY,
        temperature=0.7,
        max_tokens=1024,
    )


# ── Service assembly ─────────────────────────────────────────────────


def create_chat_service(
    llm: BaseChatModel | None = None,
    *,
    ledger: QuotaLedger | None = None,
    registry: ToolRegistry | None = None,
) -> ChatService:
    """Wire ledger, guard, transcripts and loop from configuration.

    ``llm``, ``ledger`` and ``registry`` can be injected (tests, CLI);
    otherwise they are built from ``coda.config``.
    """
    ledger = ledger or QuotaLedger(QuotaLimits(
        max_messages=MAX_MESSAGES_PER_SESSION,
        ttl=timedelta(hours=SESSION_TTL_HOURS),
        origin_daily_cap=MAX_SESSIONS_PER_ORIGIN_PER_DAY,
    ))
    registry = registry or build_tool_registry()
    loop = AgentLoop(
        ChatModelProvider(llm or _build_llm()),
        registry,
        TranscriptStore(),
        system_prompt=get_system_prompt,
        max_iterations=MAX_TOOL_ITERATIONS,
        max_turns=MAX_HISTORY_TURNS,
    )
    logger.debug(
        "Chat service ready: provider=%s model=%s tools=%d max_iterations=%d",
        AI_PROVIDER, AI_MODEL, len(registry), MAX_TOOL_ITERATIONS,
    )
    return ChatService(ledger, ConcurrencyGuard(), loop)
