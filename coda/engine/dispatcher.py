"""Tool registry and dispatcher.

Every tool the model can call is registered here as a ``ToolSpec``: a name,
a description, a pydantic model describing its arguments, and a handler.
Handlers receive the validated arguments plus the transcript so far and
return either ``ToolOk`` or ``ToolErr``.

``ToolRegistry.dispatch`` is total: unknown tools, arguments that fail the
schema, ``ToolErr`` results and handler exceptions all come back as a
``ToolResult`` whose text explains the failure.  The model can then react
conversationally instead of the whole exchange aborting.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Union

from langchain_core.messages import AnyMessage
from pydantic import BaseModel, ValidationError

from coda.services.metrics import metrics

logger = logging.getLogger(__name__)


# ── Value types ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class ToolCall:
    """A model-issued request to run one tool."""

    name: str
    arguments: dict[str, Any]
    call_id: str


@dataclass(frozen=True)
class ToolOk:
    text: str
    attachment: dict[str, Any] | None = None


@dataclass(frozen=True)
class ToolErr:
    """A handled failure.  ``kind`` is a short machine-readable category."""

    kind: str
    detail: str


ToolOutcome = Union[ToolOk, ToolErr]
ToolHandler = Callable[[Any, list[AnyMessage]], Union[ToolOutcome, Awaitable[ToolOutcome]]]


@dataclass(frozen=True)
class ToolResult:
    """What the dispatcher hands back to the agent loop."""

    call_id: str
    name: str
    text: str
    attachment: dict[str, Any] | None = None
    ok: bool = True


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_schema: type[BaseModel]
    handler: ToolHandler = field(repr=False)

    @property
    def schema(self) -> dict[str, Any]:
        """OpenAI-style function schema for ``bind_tools``."""
        parameters = self.args_schema.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


# ── Fallback wording ─────────────────────────────────────────────────

_FALLBACKS = {
    "unknown_tool": "The tool '{name}' does not exist. Answer without it.",
    "invalid_arguments": (
        "The tool '{name}' was called with invalid arguments ({detail}). "
        "Ask the user for the missing details or try again with corrected arguments."
    ),
}
_DEFAULT_FALLBACK = (
    "The tool '{name}' could not complete the request ({detail}). "
    "Let the user know politely and suggest contacting the studio directly."
)


def fallback_text(name: str, kind: str, detail: str) -> str:
    return _FALLBACKS.get(kind, _DEFAULT_FALLBACK).format(name=name, detail=detail)


def _summarize_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


# ── Registry ─────────────────────────────────────────────────────────


class ToolRegistry:
    """Maps tool names to specs and runs them."""

    def __init__(self, tools: list[ToolSpec] | None = None) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for spec in tools or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    @property
    def schemas(self) -> list[dict[str, Any]]:
        return [spec.schema for spec in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    async def dispatch(self, call: ToolCall, transcript: list[AnyMessage]) -> ToolResult:
        """Run *call* and normalise whatever happens into a ``ToolResult``."""
        spec = self._tools.get(call.name)
        if spec is None:
            logger.warning("Model requested unknown tool %r", call.name)
            return self._failed(call, ToolErr("unknown_tool", call.name))

        try:
            arguments = spec.args_schema.model_validate(call.arguments or {})
        except ValidationError as exc:
            detail = _summarize_validation_error(exc)
            logger.info("Invalid arguments for %s: %s", call.name, detail)
            return self._failed(call, ToolErr("invalid_arguments", detail))

        t0 = time.perf_counter()
        try:
            if inspect.iscoroutinefunction(spec.handler):
                outcome = await spec.handler(arguments, transcript)
            else:
                # Sync handlers may block on I/O (SMTP, Calendly)
                outcome = await asyncio.to_thread(spec.handler, arguments, transcript)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure("tool", call.name, error_type=type(exc).__name__, latency_ms=elapsed)
            logger.exception("Tool %s raised", call.name)
            return self._failed(call, ToolErr("handler_error", str(exc) or type(exc).__name__))

        elapsed = (time.perf_counter() - t0) * 1000
        if isinstance(outcome, ToolErr):
            metrics.record_failure("tool", call.name, error_type=outcome.kind, latency_ms=elapsed)
            logger.info("Tool %s failed (%s): %s", call.name, outcome.kind, outcome.detail)
            return self._failed(call, outcome)

        metrics.record_success("tool", call.name, latency_ms=elapsed)
        logger.debug("Tool %s succeeded in %.0fms", call.name, elapsed)
        return ToolResult(
            call_id=call.call_id,
            name=call.name,
            text=outcome.text,
            attachment=outcome.attachment,
        )

    @staticmethod
    def _failed(call: ToolCall, err: ToolErr) -> ToolResult:
        return ToolResult(
            call_id=call.call_id,
            name=call.name,
            text=fallback_text(call.name, err.kind, err.detail),
            ok=False,
        )
