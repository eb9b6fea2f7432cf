"""Session endpoints: mint, validate and describe quota-limited sessions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from coda.api.routes import get_chat_service
from coda.api.schemas import SessionCreated, SessionInfo, SessionStatus
from coda.engine.quota import QuotaExceeded
from coda.services.metrics import metrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session")


def _origin(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/create", response_model=SessionCreated)
async def create_session(request: Request):
    """Create a session for the caller's origin, subject to the daily cap."""
    ledger = get_chat_service(request).ledger
    result = ledger.create_session(_origin(request))

    if isinstance(result, QuotaExceeded):
        metrics.record_rejection("origin_throttled")
        return JSONResponse(
            status_code=429,
            content={
                "error": "Daily session limit reached",
                "message": result.message,
                "retryAfter": result.retry_after.isoformat(),
            },
        )

    return SessionCreated(
        token=result.token,
        expires_at=result.expires_at,
        messages_remaining=result.messages_remaining,
        max_messages=ledger.limits.max_messages,
    )


@router.get("/validate", response_model=SessionStatus)
async def validate_session(
    request: Request,
    x_session_token: str | None = Header(default=None),
):
    if not x_session_token:
        return JSONResponse(status_code=401, content={"error": "No session token provided", "valid": False})

    session = get_chat_service(request).ledger.validate(x_session_token)
    if session is None:
        return JSONResponse(status_code=401, content={"error": "Session not found or expired", "valid": False})

    return SessionStatus(
        valid=True,
        messages_remaining=session.messages_remaining,
        expires_at=session.expires_at,
    )


@router.get("/info", response_model=SessionInfo)
async def session_info(request: Request):
    """Public limits, so the widget can explain them up front."""
    limits = get_chat_service(request).ledger.limits
    return SessionInfo(
        max_messages=limits.max_messages,
        expiry_hours=int(limits.ttl.total_seconds() // 3600),
        max_sessions_per_origin_per_day=limits.origin_daily_cap,
    )
