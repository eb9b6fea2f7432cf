"""Chat request orchestration.

``ChatService`` is the single entry point the HTTP layer (and the CLI) talk
to.  For every inbound message it:

1. validates the session token,
2. takes the per-conversation guard (rejecting, never queueing),
3. consumes one message from the session's allowance,
4. runs the agent loop,
5. releases the guard.

Admission failures are raised as ``ChatRejected`` subclasses carrying the
HTTP status the routes should answer with.  They are raised here, before the
agent loop starts, and never from inside it.

Quota is consumed before the first model call and is not refunded if the
model call fails: a failed attempt costs the same as a successful one.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from coda.engine.guard import ConcurrencyGuard
from coda.engine.loop import AgentLoop, AgentReply, TextDelta
from coda.engine.quota import QuotaLedger
from coda.services.metrics import metrics

logger = logging.getLogger(__name__)


# ── Rejections ───────────────────────────────────────────────────────


class ChatRejected(Exception):
    """Base class for requests turned away before the agent loop runs."""

    status_code = 400
    reason = "rejected"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class SessionInvalid(ChatRejected):
    status_code = 401
    reason = "session_invalid"


class QuotaExhausted(ChatRejected):
    status_code = 403
    reason = "quota_exhausted"


class ConversationBusy(ChatRejected):
    status_code = 429
    reason = "conversation_busy"


# ── Results ──────────────────────────────────────────────────────────


@dataclass
class ChatOutcome:
    text: str
    conversation_id: str
    messages_remaining: int
    attachments: list[dict[str, Any]] = field(default_factory=list)


_STREAM_END = object()


class ChatStream:
    """An admitted streaming exchange.

    The exchange runs in its own task and pushes events onto a queue.  A
    client that stops reading only stops draining the queue; the exchange
    still completes and commits its transcript.
    """

    def __init__(self, conversation_id: str, queue: asyncio.Queue, task: asyncio.Task) -> None:
        self.conversation_id = conversation_id
        self._queue = queue
        self._task = task

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._events()

    async def _events(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is _STREAM_END:
                return
            yield item

    async def wait(self) -> None:
        """Wait for the underlying exchange to finish."""
        await self._task


class ChatService:
    """Guard → quota → agent loop → release, for plain and streamed replies."""

    def __init__(
        self,
        ledger: QuotaLedger,
        guard: ConcurrencyGuard,
        loop: AgentLoop,
    ) -> None:
        self._ledger = ledger
        self._guard = guard
        self._loop = loop
        self._background: set[asyncio.Task] = set()

    @property
    def ledger(self) -> QuotaLedger:
        return self._ledger

    # ── Admission ────────────────────────────────────────────────────

    def _admit(self, token: str | None, conversation_id: str) -> None:
        """Validate, lock and charge.  On success the guard is held."""
        if not token or self._ledger.validate(token) is None:
            metrics.record_rejection(SessionInvalid.reason)
            raise SessionInvalid("Session token is missing, unknown or expired.")

        if not self._guard.try_acquire(conversation_id):
            metrics.record_rejection(ConversationBusy.reason)
            raise ConversationBusy(
                "A message for this conversation is already being processed. "
                "Please wait for the reply and try again."
            )

        if not self._ledger.decrement_message(token):
            self._guard.release(conversation_id)
            metrics.record_rejection(QuotaExhausted.reason)
            raise QuotaExhausted(
                "You've used all the messages for this session. "
                "Please start a new session to keep chatting."
            )

    def _remaining(self, token: str) -> int:
        session = self._ledger.validate(token)
        return session.messages_remaining if session is not None else 0

    # ── Plain replies ────────────────────────────────────────────────

    async def chat(
        self,
        token: str | None,
        message: str,
        conversation_id: str | None = None,
    ) -> ChatOutcome:
        conversation_id = conversation_id or str(uuid.uuid4())
        self._admit(token, conversation_id)
        try:
            reply = await self._loop.run(conversation_id, message)
        finally:
            self._guard.release(conversation_id)

        return ChatOutcome(
            text=reply.text,
            conversation_id=conversation_id,
            messages_remaining=self._remaining(token),
            attachments=reply.attachments,
        )

    # ── Streamed replies ─────────────────────────────────────────────

    def open_stream(
        self,
        token: str | None,
        message: str,
        conversation_id: str | None = None,
    ) -> ChatStream:
        """Admit the request now, run the exchange in the background."""
        conversation_id = conversation_id or str(uuid.uuid4())
        self._admit(token, conversation_id)

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._run_stream(token, message, conversation_id, queue))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return ChatStream(conversation_id, queue, task)

    async def _run_stream(
        self,
        token: str,
        message: str,
        conversation_id: str,
        queue: asyncio.Queue,
    ) -> None:
        try:
            async for event in self._loop.stream(conversation_id, message):
                if isinstance(event, TextDelta):
                    queue.put_nowait({"contentDelta": event.text})
                elif isinstance(event, AgentReply):
                    queue.put_nowait({
                        "done": True,
                        "conversationId": conversation_id,
                        "messagesRemaining": self._remaining(token),
                        "attachments": event.attachments,
                    })
        except Exception:
            logger.exception("Streaming exchange failed for conversation %s", conversation_id)
            queue.put_nowait({"error": "Failed to process chat message"})
        finally:
            self._guard.release(conversation_id)
            queue.put_nowait(_STREAM_END)

    # ── Transcript management ────────────────────────────────────────

    def clear(self, conversation_id: str) -> bool:
        """Drop a conversation's transcript unless an exchange is in flight."""
        if not self._guard.try_acquire(conversation_id):
            raise ConversationBusy("Cannot clear a conversation while a reply is in progress.")
        try:
            return self._loop.transcripts.clear(conversation_id)
        finally:
            self._guard.release(conversation_id)
