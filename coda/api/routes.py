"""FastAPI route definitions for the chat API."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import StreamingResponse

from coda.api.schemas import ChatRequest, ChatResponse, ClearResponse, HealthResponse
from coda.engine.provider import ProviderError
from coda.engine.service import ChatRejected, ChatService, ChatStream

logger = logging.getLogger(__name__)

router = APIRouter()


def get_chat_service(request: Request) -> ChatService:
    """Retrieve the chat service from app state.

    The service is built once during the FastAPI lifespan (see
    ``server.py``); until then every request gets a 503.
    """
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return service


def _rejected(exc: ChatRejected) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    http_request: Request,
    x_session_token: str | None = Header(default=None),
):
    """Send a message to the assistant and get the full reply.

    ``conversationId`` keeps context across requests; omit it to start a
    new conversation and reuse the id returned in the response.
    """
    service = get_chat_service(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        outcome = await service.chat(x_session_token, body.message, body.conversation_id)
    except ChatRejected as exc:
        logger.info("[%s] Chat rejected: %s", request_id, exc.reason)
        raise _rejected(exc) from exc
    except ProviderError as exc:
        # Full traceback server-side only; the client gets a generic message
        logger.exception("[%s] Model provider failed", request_id)
        raise HTTPException(
            status_code=500,
            detail="Failed to process chat message. Please try again.",
        ) from exc

    return ChatResponse(
        text=outcome.text,
        conversation_id=outcome.conversation_id,
        messages_remaining=outcome.messages_remaining,
        attachments=outcome.attachments,
    )


async def _sse(stream: ChatStream) -> AsyncIterator[str]:
    async for event in stream:
        yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@router.post("/chat/stream")
async def chat_stream(
    body: ChatRequest,
    http_request: Request,
    x_session_token: str | None = Header(default=None),
):
    """Same as ``/chat`` but streams the reply as server-sent events.

    Admission errors (401/403/429) are returned as ordinary HTTP errors
    before any event is sent.
    """
    service = get_chat_service(http_request)
    try:
        stream = service.open_stream(x_session_token, body.message, body.conversation_id)
    except ChatRejected as exc:
        raise _rejected(exc) from exc

    return StreamingResponse(
        _sse(stream),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.delete("/chat/{conversation_id}", response_model=ClearResponse)
async def clear_conversation(conversation_id: str, http_request: Request):
    """Forget a conversation's history."""
    service = get_chat_service(http_request)
    try:
        service.clear(conversation_id)
    except ChatRejected as exc:
        raise _rejected(exc) from exc
    return ClearResponse()
