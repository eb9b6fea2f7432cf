"""Language-model provider adapter.

Wraps a LangChain chat model behind the two calls the agent loop needs:

* ``complete``: one non-streamed call with tool schemas bound; returns the
  reply text and any tool calls the model issued.
* ``stream``: one streamed call without tools; yields text chunks.

Any failure talking to the model surfaces as ``ProviderError`` so the loop
has exactly one error type to abort on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AnyMessage, SystemMessage

from coda.engine.dispatcher import ToolCall
from coda.services.metrics import metrics

logger = logging.getLogger(__name__)

# Anthropic rejects empty assistant text blocks in history
_EMPTY_ASSISTANT_PLACEHOLDER = "(no response)"


class ProviderError(Exception):
    """Raised when the language model cannot be reached or answers garbage."""


@dataclass
class ModelReply:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    message: AIMessage | None = None


def content_text(content: Any) -> str:
    """Flatten message content (plain string or content blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


def _provider_messages(system_prompt: str, turns: list[AnyMessage]) -> list[AnyMessage]:
    messages: list[AnyMessage] = [SystemMessage(content=system_prompt)]
    for turn in turns:
        if isinstance(turn, AIMessage) and not turn.tool_calls and not content_text(turn.content):
            turn = AIMessage(content=_EMPTY_ASSISTANT_PLACEHOLDER)
        messages.append(turn)
    return messages


class ChatModelProvider:
    """Adapter over any LangChain ``BaseChatModel`` that supports tool calling."""

    def __init__(self, llm: BaseChatModel, *, name: str = "llm") -> None:
        self._llm = llm
        self._name = name

    async def complete(
        self,
        system_prompt: str,
        turns: list[AnyMessage],
        tool_schemas: list[dict[str, Any]],
    ) -> ModelReply:
        """Run one model call and parse its tool calls."""
        model = self._llm.bind_tools(tool_schemas) if tool_schemas else self._llm
        t0 = time.perf_counter()
        try:
            response = await model.ainvoke(_provider_messages(system_prompt, turns))
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(self._name, "complete", error_type=type(exc).__name__, latency_ms=elapsed)
            raise ProviderError(f"Model call failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        if not isinstance(response, AIMessage):
            metrics.record_failure(self._name, "complete", error_type="malformed_response", latency_ms=elapsed)
            raise ProviderError(f"Unexpected model response type: {type(response).__name__}")

        metrics.record_success(self._name, "complete", latency_ms=elapsed)
        if response.invalid_tool_calls:
            logger.warning(
                "Model produced %d unparseable tool call(s); ignoring them",
                len(response.invalid_tool_calls),
            )
            response = AIMessage(content=response.content, tool_calls=response.tool_calls)

        calls = [
            ToolCall(name=tc["name"], arguments=tc.get("args") or {}, call_id=tc["id"])
            for tc in response.tool_calls
        ]
        logger.debug("Model replied in %.0fms with %d tool call(s)", elapsed, len(calls))
        return ModelReply(content=content_text(response.content), tool_calls=calls, message=response)

    async def stream(self, system_prompt: str, turns: list[AnyMessage]) -> AsyncIterator[str]:
        """Stream the reply text chunk by chunk (no tools bound)."""
        t0 = time.perf_counter()
        try:
            async for chunk in self._llm.astream(_provider_messages(system_prompt, turns)):
                text = content_text(chunk.content)
                if text:
                    yield text
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(self._name, "stream", error_type=type(exc).__name__, latency_ms=elapsed)
            raise ProviderError(f"Streaming model call failed: {exc}") from exc
        metrics.record_success(self._name, "stream", latency_ms=(time.perf_counter() - t0) * 1000)
