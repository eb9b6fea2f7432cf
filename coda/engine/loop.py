"""The agent loop: one user message in, one assistant reply out.

The control flow is a small explicit state machine::

    AWAITING_USER → MODEL_CALL → (DISPATCH → MODEL_CALL)* → FINALIZE
                                          ↘ STREAMING → FINALIZE  (stream mode)

``transition(state, event)`` is pure: it returns the next state and the
effects the driver must perform.  ``AgentLoop`` is the driver that performs
those effects against the provider, the tool registry and the transcript
store.  Keeping the two apart lets the tests walk the machine with canned
events and no model at all.

Iteration bound: at most ``max_iterations`` model calls resolve tools.  If
the model still asks for tools on the last allowed call, the loop stops and
treats that reply's text (possibly empty) as the final answer; the pending
tool calls are dropped rather than left unanswered in the transcript.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field, replace
from typing import Any, Union

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, ToolMessage

from coda.engine.dispatcher import ToolCall, ToolRegistry
from coda.engine.provider import ChatModelProvider, ModelReply
from coda.engine.transcript import DEFAULT_MAX_TURNS, TranscriptStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5


# ── State ────────────────────────────────────────────────────────────


class Phase(enum.Enum):
    AWAITING_USER = "awaiting_user"
    MODEL_CALL = "model_call"
    DISPATCH = "dispatch"
    STREAMING = "streaming"
    FINALIZE = "finalize"


@dataclass(frozen=True)
class LoopState:
    phase: Phase = Phase.AWAITING_USER
    model_calls: int = 0
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    stream_final: bool = False


# ── Events ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class UserMessage:
    text: str


@dataclass(frozen=True)
class ModelReplied:
    reply: ModelReply


@dataclass(frozen=True)
class ToolsResolved:
    pass


@dataclass(frozen=True)
class StreamCompleted:
    content: str


Event = Union[UserMessage, ModelReplied, ToolsResolved, StreamCompleted]


# ── Effects ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AppendTurn:
    turn: AnyMessage


@dataclass(frozen=True)
class CallModel:
    pass


@dataclass(frozen=True)
class DispatchTools:
    calls: tuple[ToolCall, ...]


@dataclass(frozen=True)
class StreamFinal:
    pass


@dataclass(frozen=True)
class Finish:
    content: str


Effect = Union[AppendTurn, CallModel, DispatchTools, StreamFinal, Finish]


class InvalidTransition(Exception):
    """An event arrived in a phase that cannot accept it (a driver bug)."""


def _tool_request_turn(reply: ModelReply) -> AIMessage:
    if reply.message is not None:
        return reply.message
    return AIMessage(
        content=reply.content,
        tool_calls=[
            {"name": c.name, "args": c.arguments, "id": c.call_id, "type": "tool_call"}
            for c in reply.tool_calls
        ],
    )


def transition(state: LoopState, event: Event) -> tuple[LoopState, list[Effect]]:
    """Advance the loop by one event.  Pure: no I/O, no mutation."""
    if state.phase is Phase.AWAITING_USER and isinstance(event, UserMessage):
        return (
            replace(state, phase=Phase.MODEL_CALL, model_calls=state.model_calls + 1),
            [AppendTurn(HumanMessage(content=event.text)), CallModel()],
        )

    if state.phase is Phase.MODEL_CALL and isinstance(event, ModelReplied):
        reply = event.reply
        if reply.tool_calls and state.model_calls < state.max_iterations:
            return (
                replace(state, phase=Phase.DISPATCH),
                [AppendTurn(_tool_request_turn(reply)), DispatchTools(tuple(reply.tool_calls))],
            )
        if reply.tool_calls:
            logger.warning(
                "Iteration cap (%d) reached with %d tool call(s) pending; finishing",
                state.max_iterations, len(reply.tool_calls),
            )
        if state.stream_final:
            return replace(state, phase=Phase.STREAMING), [StreamFinal()]
        return (
            replace(state, phase=Phase.FINALIZE),
            [AppendTurn(AIMessage(content=reply.content)), Finish(reply.content)],
        )

    if state.phase is Phase.DISPATCH and isinstance(event, ToolsResolved):
        return (
            replace(state, phase=Phase.MODEL_CALL, model_calls=state.model_calls + 1),
            [CallModel()],
        )

    if state.phase is Phase.STREAMING and isinstance(event, StreamCompleted):
        return (
            replace(state, phase=Phase.FINALIZE),
            [AppendTurn(AIMessage(content=event.content)), Finish(event.content)],
        )

    raise InvalidTransition(f"{type(event).__name__} not valid in phase {state.phase.value}")


# ── Driver ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass
class AgentReply:
    text: str
    attachments: list[dict[str, Any]] = field(default_factory=list)


class AgentLoop:
    """Performs the effects ``transition`` asks for."""

    def __init__(
        self,
        provider: ChatModelProvider,
        registry: ToolRegistry,
        transcripts: TranscriptStore,
        *,
        system_prompt: Callable[[], str],
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_turns: int = DEFAULT_MAX_TURNS,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._transcripts = transcripts
        self._system_prompt = system_prompt
        self._max_iterations = max_iterations
        self._max_turns = max_turns

    @property
    def transcripts(self) -> TranscriptStore:
        return self._transcripts

    async def run(self, conversation_id: str, message: str) -> AgentReply:
        """Process one user message and return the final reply."""
        events = self._drive(conversation_id, message, streaming=False)
        try:
            async for event in events:
                if isinstance(event, AgentReply):
                    return event
        finally:
            await events.aclose()
        raise InvalidTransition("Loop ended without a reply")

    def stream(self, conversation_id: str, message: str) -> AsyncIterator[TextDelta | AgentReply]:
        """Like ``run`` but streams the final model call as ``TextDelta``s,
        ending with the complete ``AgentReply``."""
        return self._drive(conversation_id, message, streaming=True)

    async def _drive(
        self,
        conversation_id: str,
        message: str,
        *,
        streaming: bool,
    ) -> AsyncIterator[TextDelta | AgentReply]:
        state = LoopState(max_iterations=self._max_iterations, stream_final=streaming)
        attachments: list[dict[str, Any]] = []
        prompt = self._system_prompt()

        try:
            state, effects = transition(state, UserMessage(message))
            while True:
                event: Event | None = None
                for effect in effects:
                    if isinstance(effect, AppendTurn):
                        self._transcripts.append(conversation_id, effect.turn)
                    elif isinstance(effect, CallModel):
                        logger.debug(
                            "Conversation %s: model call %d/%d",
                            conversation_id, state.model_calls, state.max_iterations,
                        )
                        reply = await self._provider.complete(
                            prompt, self._transcripts.get(conversation_id), self._registry.schemas,
                        )
                        event = ModelReplied(reply)
                    elif isinstance(effect, DispatchTools):
                        for call in effect.calls:
                            result = await self._registry.dispatch(
                                call, self._transcripts.get(conversation_id),
                            )
                            self._transcripts.append(
                                conversation_id,
                                ToolMessage(content=result.text, tool_call_id=call.call_id, name=call.name),
                            )
                            if result.attachment is not None:
                                attachments.append(result.attachment)
                        event = ToolsResolved()
                    elif isinstance(effect, StreamFinal):
                        chunks: list[str] = []
                        async for text in self._provider.stream(
                            prompt, self._transcripts.get(conversation_id),
                        ):
                            chunks.append(text)
                            yield TextDelta(text)
                        event = StreamCompleted("".join(chunks))
                    elif isinstance(effect, Finish):
                        self._transcripts.trim(conversation_id, self._max_turns)
                        logger.info(
                            "Conversation %s finished after %d model call(s), %d attachment(s)",
                            conversation_id, state.model_calls, len(attachments),
                        )
                        yield AgentReply(text=effect.content, attachments=attachments)
                        return
                if event is None:
                    raise InvalidTransition(f"No event produced in phase {state.phase.value}")
                state, effects = transition(state, event)
        except BaseException:
            # Failed or cancelled exchange: keep whatever completed, minus an
            # unanswered tool request
            self._transcripts.trim(conversation_id, self._max_turns)
            raise
