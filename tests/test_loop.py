"""Tests for the agent loop state machine and its driver.

Covers:
  - Pure transitions (no model, no tools)
  - Iteration bound and forced termination
  - Tool failures surfacing as text, not errors
  - Streaming of the final answer
"""

from __future__ import annotations

import pytest
from conftest import ScriptedProvider, model_reply
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from pydantic import BaseModel

from coda.engine.dispatcher import ToolErr, ToolOk, ToolRegistry, ToolSpec
from coda.engine.loop import (
    AgentLoop,
    AgentReply,
    AppendTurn,
    CallModel,
    DispatchTools,
    Finish,
    InvalidTransition,
    LoopState,
    ModelReplied,
    Phase,
    StreamCompleted,
    StreamFinal,
    TextDelta,
    ToolsResolved,
    UserMessage,
    transition,
)
from coda.engine.provider import ProviderError
from coda.engine.transcript import TranscriptStore

# ── Helpers ──────────────────────────────────────────────────────────


class QueryArgs(BaseModel):
    query: str = "x"


def _lookup(args: QueryArgs, transcript) -> ToolOk:
    return ToolOk(f"found: {args.query}")


def _widget(args: QueryArgs, transcript) -> ToolOk:
    return ToolOk("Here you go:", attachment={"type": "resource", "resource": {"kind": "pricing-table"}})


def _broken(args: QueryArgs, transcript) -> ToolErr:
    return ToolErr("calendar_unavailable", "Calendly is down")


def _registry() -> ToolRegistry:
    return ToolRegistry([
        ToolSpec("lookup", "look things up", QueryArgs, _lookup),
        ToolSpec("widget", "show a widget", QueryArgs, _widget),
        ToolSpec("broken", "always fails", QueryArgs, _broken),
    ])


def _loop(provider, transcripts=None, **kwargs) -> AgentLoop:
    return AgentLoop(
        provider,
        _registry(),
        transcripts or TranscriptStore(),
        system_prompt=lambda: "You are a test assistant.",
        **kwargs,
    )


# ── Pure transitions ─────────────────────────────────────────────────


class TestTransition:
    def test_user_message_appends_and_calls_model(self):
        state, effects = transition(LoopState(), UserMessage("hi"))
        assert state.phase is Phase.MODEL_CALL
        assert state.model_calls == 1
        assert isinstance(effects[0], AppendTurn)
        assert isinstance(effects[0].turn, HumanMessage)
        assert isinstance(effects[1], CallModel)

    def test_text_reply_finishes(self):
        state = LoopState(phase=Phase.MODEL_CALL, model_calls=1)
        state, effects = transition(state, ModelReplied(model_reply("Hello")))
        assert state.phase is Phase.FINALIZE
        assert isinstance(effects[0].turn, AIMessage)
        assert effects[-1] == Finish("Hello")

    def test_tool_reply_dispatches(self):
        state = LoopState(phase=Phase.MODEL_CALL, model_calls=1)
        reply = model_reply("", ("lookup", {"query": "price"}, "c1"))
        state, effects = transition(state, ModelReplied(reply))
        assert state.phase is Phase.DISPATCH
        assert effects[0].turn.tool_calls[0]["id"] == "c1"
        assert isinstance(effects[1], DispatchTools)
        assert effects[1].calls[0].name == "lookup"

    def test_tools_resolved_calls_model_again(self):
        state = LoopState(phase=Phase.DISPATCH, model_calls=1)
        state, effects = transition(state, ToolsResolved())
        assert state.phase is Phase.MODEL_CALL
        assert state.model_calls == 2
        assert effects == [CallModel()]

    def test_tool_reply_at_cap_force_finishes_without_tool_calls(self):
        state = LoopState(phase=Phase.MODEL_CALL, model_calls=5, max_iterations=5)
        reply = model_reply("partial", ("lookup", {}, "c9"))
        state, effects = transition(state, ModelReplied(reply))
        assert state.phase is Phase.FINALIZE
        final_turn = effects[0].turn
        assert isinstance(final_turn, AIMessage)
        assert final_turn.tool_calls == []
        assert effects[-1] == Finish("partial")

    def test_stream_mode_streams_the_final_answer(self):
        state = LoopState(phase=Phase.MODEL_CALL, model_calls=1, stream_final=True)
        state, effects = transition(state, ModelReplied(model_reply("ignored")))
        assert state.phase is Phase.STREAMING
        assert effects == [StreamFinal()]

        state, effects = transition(state, StreamCompleted("streamed"))
        assert state.phase is Phase.FINALIZE
        assert effects[0].turn.content == "streamed"
        assert effects[-1] == Finish("streamed")

    def test_out_of_order_event_is_rejected(self):
        with pytest.raises(InvalidTransition):
            transition(LoopState(), ToolsResolved())
        with pytest.raises(InvalidTransition):
            transition(LoopState(phase=Phase.FINALIZE), UserMessage("again"))

    def test_transition_is_pure(self):
        state = LoopState()
        transition(state, UserMessage("hi"))
        assert state.phase is Phase.AWAITING_USER
        assert state.model_calls == 0


# ── Driver: plain replies ────────────────────────────────────────────


class TestAgentLoopRun:
    @pytest.mark.asyncio
    async def test_plain_answer(self):
        provider = ScriptedProvider([model_reply("Lessons are €30.")])
        loop = _loop(provider)
        reply = await loop.run("c1", "How much?")

        assert reply == AgentReply(text="Lessons are €30.", attachments=[])
        turns = loop.transcripts.get("c1")
        assert [type(t) for t in turns] == [HumanMessage, AIMessage]
        assert len(provider.calls) == 1
        assert provider.calls[0]["system"] == "You are a test assistant."
        assert {s["function"]["name"] for s in provider.calls[0]["tools"]} == {"lookup", "widget", "broken"}

    @pytest.mark.asyncio
    async def test_tool_round_trip(self):
        provider = ScriptedProvider([
            model_reply("", ("lookup", {"query": "pricing"}, "c1")),
            model_reply("It costs €30."),
        ])
        loop = _loop(provider)
        reply = await loop.run("conv", "Price?")

        assert reply.text == "It costs €30."
        turns = loop.transcripts.get("conv")
        assert [type(t) for t in turns] == [HumanMessage, AIMessage, ToolMessage, AIMessage]
        assert turns[2].tool_call_id == "c1"
        assert turns[2].content == "found: pricing"
        # Second model call saw the tool result
        assert isinstance(provider.calls[1]["turns"][-1], ToolMessage)

    @pytest.mark.asyncio
    async def test_one_tool_turn_per_call_in_order(self):
        provider = ScriptedProvider([
            model_reply("", ("lookup", {"query": "a"}, "c1"), ("lookup", {"query": "b"}, "c2")),
            model_reply("done"),
        ])
        loop = _loop(provider)
        await loop.run("conv", "two things")
        tool_turns = [t for t in loop.transcripts.get("conv") if isinstance(t, ToolMessage)]
        assert [t.tool_call_id for t in tool_turns] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_attachments_are_collected(self):
        provider = ScriptedProvider([
            model_reply("", ("widget", {}, "c1")),
            model_reply("Here are the prices."),
        ])
        reply = await _loop(provider).run("conv", "prices")
        assert reply.attachments == [{"type": "resource", "resource": {"kind": "pricing-table"}}]

    @pytest.mark.asyncio
    async def test_endless_tool_requests_stop_after_exactly_five_calls(self):
        provider = ScriptedProvider([model_reply("still looking", ("lookup", {}))])
        loop = _loop(provider)
        reply = await loop.run("conv", "loop forever")

        assert len(provider.calls) == 5
        assert reply.text == "still looking"
        turns = loop.transcripts.get("conv")
        assert isinstance(turns[-1], AIMessage)
        assert turns[-1].tool_calls == []
        assert sum(isinstance(t, ToolMessage) for t in turns) == 4

    @pytest.mark.asyncio
    async def test_forced_stop_with_empty_content(self):
        provider = ScriptedProvider([model_reply("", ("lookup", {}))])
        reply = await _loop(provider, max_iterations=2).run("conv", "hi")
        assert len(provider.calls) == 2
        assert reply.text == ""

    @pytest.mark.asyncio
    async def test_failing_tool_becomes_text_and_the_exchange_completes(self):
        provider = ScriptedProvider([
            model_reply("", ("broken", {}, "c1")),
            model_reply("Sorry, the calendar is unavailable right now."),
        ])
        loop = _loop(provider)
        reply = await loop.run("conv", "When are you free?")

        assert reply.text == "Sorry, the calendar is unavailable right now."
        tool_turn = loop.transcripts.get("conv")[2]
        assert isinstance(tool_turn, ToolMessage)
        assert "Calendly is down" in tool_turn.content

    @pytest.mark.asyncio
    async def test_unknown_tool_does_not_abort(self):
        provider = ScriptedProvider([
            model_reply("", ("no_such_tool", {}, "c1")),
            model_reply("Let me answer directly."),
        ])
        reply = await _loop(provider).run("conv", "hi")
        assert reply.text == "Let me answer directly."

    @pytest.mark.asyncio
    async def test_provider_error_propagates_and_keeps_user_turn(self):
        provider = ScriptedProvider([ProviderError("model down")])
        loop = _loop(provider)
        with pytest.raises(ProviderError):
            await loop.run("conv", "hi")
        turns = loop.transcripts.get("conv")
        assert [type(t) for t in turns] == [HumanMessage]

    @pytest.mark.asyncio
    async def test_provider_error_mid_exchange_leaves_transcript_well_formed(self):
        provider = ScriptedProvider([
            model_reply("", ("lookup", {}, "c1")),
            ProviderError("model down"),
        ])
        loop = _loop(provider)
        with pytest.raises(ProviderError):
            await loop.run("conv", "hi")
        turns = loop.transcripts.get("conv")
        assert [type(t) for t in turns] == [HumanMessage, AIMessage, ToolMessage]

    @pytest.mark.asyncio
    async def test_history_is_trimmed_after_each_exchange(self):
        provider = ScriptedProvider([model_reply("ok")])
        loop = _loop(provider, max_turns=4)
        for i in range(5):
            await loop.run("conv", f"message {i}")
        turns = loop.transcripts.get("conv")
        assert len(turns) == 4
        assert turns[0].content == "message 3"

    @pytest.mark.asyncio
    async def test_conversations_are_isolated(self):
        provider = ScriptedProvider([model_reply("ok")])
        loop = _loop(provider)
        await loop.run("a", "first")
        await loop.run("b", "second")
        assert len(loop.transcripts.get("a")) == 2
        assert provider.calls[1]["turns"] == [HumanMessage(content="second")]


# ── Driver: streaming ────────────────────────────────────────────────


class TestAgentLoopStream:
    @pytest.mark.asyncio
    async def test_streams_deltas_then_reply(self):
        provider = ScriptedProvider([model_reply("draft")], chunks=["Hel", "lo", "!"])
        loop = _loop(provider)
        events = [e async for e in loop.stream("conv", "hi")]

        assert events[:3] == [TextDelta("Hel"), TextDelta("lo"), TextDelta("!")]
        assert events[-1] == AgentReply(text="Hello!", attachments=[])
        assert loop.transcripts.get("conv")[-1].content == "Hello!"

    @pytest.mark.asyncio
    async def test_tools_resolve_before_streaming(self):
        provider = ScriptedProvider(
            [model_reply("", ("widget", {}, "c1")), model_reply("draft")],
            chunks=["Prices below."],
        )
        loop = _loop(provider)
        events = [e async for e in loop.stream("conv", "prices")]

        assert len(provider.calls) == 2
        assert len(provider.stream_calls) == 1
        assert isinstance(provider.stream_calls[0][-1], ToolMessage)
        assert events[-1].attachments[0]["resource"]["kind"] == "pricing-table"

    @pytest.mark.asyncio
    async def test_stream_after_iteration_cap_makes_one_extra_call(self):
        provider = ScriptedProvider([model_reply("", ("lookup", {}))], chunks=["Giving up."])
        loop = _loop(provider)
        events = [e async for e in loop.stream("conv", "loop")]

        assert len(provider.calls) == 5
        assert len(provider.stream_calls) == 1
        assert events[-1].text == "Giving up."
        assert loop.transcripts.get("conv")[-1].tool_calls == []

    @pytest.mark.asyncio
    async def test_stream_failure_propagates(self):
        provider = ScriptedProvider([model_reply("draft")], chunks=["partial", ProviderError("cut off")])
        loop = _loop(provider)
        with pytest.raises(ProviderError):
            async for _ in loop.stream("conv", "hi"):
                pass
        # Nothing half-streamed is committed
        assert [type(t) for t in loop.transcripts.get("conv")] == [HumanMessage]
