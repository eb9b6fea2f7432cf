"""In-memory conversation transcripts with tool-pair-aware trimming.

Turns are LangChain message objects:

* ``HumanMessage``: a user turn
* ``AIMessage``: an assistant turn, optionally carrying ``tool_calls``
* ``ToolMessage``: a tool result answering one ``tool_call_id``

A plain fixed-window trim can cut between an assistant's tool request and
its answers, which model providers reject on the next call.  ``trim`` slices
the window and then repairs the cut edge so that every tool turn left in
the transcript still follows the assistant turn that requested it.  An
exchange interrupted mid-dispatch leaves the same problem at the other end,
so ``trim`` also removes a trailing request whose answers never arrived.
"""

from __future__ import annotations

import logging
import threading

from langchain_core.messages import AIMessage, AnyMessage, ToolMessage

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 20


def _answers_follow(turns: list[AnyMessage]) -> bool:
    """True if ``turns[0]``'s tool calls are all answered by the contiguous
    tool turns directly after it."""
    expected = {call["id"] for call in turns[0].tool_calls}
    answered: set[str] = set()
    for turn in turns[1:]:
        if not isinstance(turn, ToolMessage):
            break
        answered.add(turn.tool_call_id)
    return expected <= answered


def repair_window(turns: list[AnyMessage]) -> list[AnyMessage]:
    """Drop leading turns until the window starts on a self-contained turn.

    A leading tool turn has lost its assistant, so it goes.  A leading
    assistant turn whose tool calls are not all answered right after it goes
    too, which may expose further orphaned tool turns; the loop keeps going
    until the head is clean or nothing is left.
    """
    window = list(turns)
    while window:
        head = window[0]
        if isinstance(head, ToolMessage):
            window.pop(0)
            continue
        if isinstance(head, AIMessage) and head.tool_calls and not _answers_follow(window):
            window.pop(0)
            continue
        break
    return window


def drop_unanswered_tail(turns: list[AnyMessage]) -> list[AnyMessage]:
    """Cut an interrupted tool round off the end of the window.

    If the last assistant turn that asked for tools is followed only by tool
    turns and some of its calls never got an answer, that request and its
    partial answers are removed.
    """
    for index in range(len(turns) - 1, -1, -1):
        turn = turns[index]
        if isinstance(turn, ToolMessage):
            continue
        if isinstance(turn, AIMessage) and turn.tool_calls and not _answers_follow(turns[index:]):
            return list(turns[:index])
        break
    return list(turns)


class TranscriptStore:
    """Ordered turn sequences keyed by conversation id."""

    def __init__(self) -> None:
        self._transcripts: dict[str, list[AnyMessage]] = {}
        self._lock = threading.Lock()

    def append(self, conversation_id: str, turn: AnyMessage) -> None:
        with self._lock:
            self._transcripts.setdefault(conversation_id, []).append(turn)

    def get(self, conversation_id: str) -> list[AnyMessage]:
        """Return a copy of the transcript (empty if unknown)."""
        with self._lock:
            return list(self._transcripts.get(conversation_id, []))

    def trim(self, conversation_id: str, max_turns: int = DEFAULT_MAX_TURNS) -> int:
        """Keep the most recent *max_turns* turns, then repair both edges.

        ``max_turns <= 0`` empties the transcript.  Returns the number of
        turns dropped.
        """
        with self._lock:
            turns = self._transcripts.get(conversation_id)
            if not turns:
                return 0
            window = turns[max(len(turns) - max_turns, 0):] if max_turns > 0 else []
            repaired = drop_unanswered_tail(repair_window(window))
            dropped = len(turns) - len(repaired)
            self._transcripts[conversation_id] = repaired

        if dropped:
            logger.debug(
                "Trimmed %d turn(s) from conversation %s (kept %d)",
                dropped, conversation_id, len(repaired),
            )
        return dropped

    def clear(self, conversation_id: str) -> bool:
        """Drop the transcript entirely.  Returns ``True`` if it existed."""
        with self._lock:
            return self._transcripts.pop(conversation_id, None) is not None

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._transcripts

    def __len__(self) -> int:
        return len(self._transcripts)
