"""FastAPI server for the Coda assistant.

Run with:
    uvicorn coda.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from coda.agent import create_chat_service
from coda.api.routes import router
from coda.api.session_routes import router as session_router
from coda.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT, SESSION_SWEEP_INTERVAL_SECONDS
from coda.engine.quota import QuotaLedger
from coda.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


async def _sweep_periodically(ledger: QuotaLedger, interval: float) -> None:
    """Evict expired sessions in the background.  Validation never depends
    on this having run."""
    while True:
        await asyncio.sleep(interval)
        ledger.sweep()


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the chat service once and store it in app state."""
    logger.info("Building chat service…")
    service = create_chat_service()
    application.state.chat_service = service
    sweeper = asyncio.create_task(
        _sweep_periodically(service.ledger, SESSION_SWEEP_INTERVAL_SECONDS),
    )
    logger.info("Assistant ready.")
    yield
    sweeper.cancel()
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Coda Assistant",
    description=(
        "Conversational assistant for a piano teaching studio: answers questions, "
        "checks lesson availability and relays booking requests."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the chat widget) ───────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header and used as a
    prefix in the route log lines.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")
app.include_router(session_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Coda Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting Coda API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "coda.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
