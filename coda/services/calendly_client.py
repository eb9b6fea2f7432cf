"""Read-only Calendly v2 client used to look up free lesson slots.

Only three endpoints are touched: ``/users/me``, ``/event_types`` and
``/event_type_available_times``.  Lessons themselves are never booked
through Calendly; the teacher confirms each one after the booking inquiry
email arrives.

Reference: https://developer.calendly.com/api-docs/
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import httpx

from coda.config import CALENDLY_API_TOKEN, CALENDLY_BASE_URL
from coda.services.cache import LRUCache
from coda.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retries ──────────────────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0

# ── Caching ──────────────────────────────────────────────────────────
EVENT_TYPES_KEY = "event_types"
AVAILABILITY_KEY_PREFIX = "available_times:"
EVENT_TYPES_TTL_SECONDS = 3600.0
AVAILABILITY_TTL_SECONDS = 120.0

# Calendly rejects availability windows longer than 7 days
MAX_AVAILABILITY_WINDOW_DAYS = 7


class CalendlyAPIError(Exception):
    """A Calendly call that failed for good (4xx, or retries used up)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def _backoff(attempt: int) -> float:
    """Delay before retrying after the 1-based *attempt*: 1s, 2s, 4s, …"""
    return INITIAL_BACKOFF_SECONDS * 2 ** (attempt - 1)


def _check_status(response: httpx.Response) -> None:
    if response.status_code >= 500:
        raise CalendlyAPIError(
            f"Server error {response.status_code}: {response.text}",
            status_code=response.status_code,
        )
    if response.status_code >= 400:
        raise CalendlyAPIError(
            f"Client error {response.status_code}: {response.text}",
            status_code=response.status_code,
        )


class CalendlyClient:
    """Authenticated Calendly session with retries and a short-lived cache."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        *,
        cache: LRUCache | None = None,
    ):
        token = token or CALENDLY_API_TOKEN
        if not token:
            raise CalendlyAPIError("Calendly is not configured (CALENDLY_API_TOKEN is unset).")
        self._client = httpx.Client(
            base_url=base_url or CALENDLY_BASE_URL,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        self._cache = cache or LRUCache()
        self._user_uri: str | None = None

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET *path*, retrying timeouts, connection errors and 5xx answers.

        4xx answers are raised straight away.
        """
        operation = f"GET {path}"
        failure: Exception | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            started = time.perf_counter()
            try:
                response = self._client.request("GET", path, params=params)
                _check_status(response)
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                failure = exc
                metrics.record_failure("calendly", operation, error_type=type(exc).__name__)
            except CalendlyAPIError as exc:
                metrics.record_failure("calendly", operation, error_type=f"http_{exc.status_code}")
                if exc.status_code < 500:
                    raise
                failure = exc
            else:
                metrics.record_success(
                    "calendly", operation, latency_ms=(time.perf_counter() - started) * 1000,
                )
                return response.json()

            if attempt < MAX_RETRIES:
                logger.warning(
                    "Calendly %s attempt %d/%d failed (%s); retrying in %.1fs",
                    path, attempt, MAX_RETRIES, failure, _backoff(attempt),
                )
                time.sleep(_backoff(attempt))

        raise CalendlyAPIError(f"Calendly {operation} failed after {MAX_RETRIES} attempts: {failure}")

    def _collection(self, key: str, ttl: float, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """The ``collection`` list of a GET response, served from cache when fresh."""
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        items = self._get(path, params).get("collection", [])
        self._cache.put(key, items, ttl=ttl)
        return items

    # ── Endpoints ────────────────────────────────────────────────────

    def get_current_user_uri(self) -> str:
        """URI of the account the token belongs to, looked up once."""
        if self._user_uri is None:
            self._user_uri = self._get("/users/me")["resource"]["uri"]
        return self._user_uri

    def get_event_types(self) -> list[dict[str, Any]]:
        """Active event types (lesson kinds) for the account."""
        return self._collection(
            EVENT_TYPES_KEY,
            EVENT_TYPES_TTL_SECONDS,
            "/event_types",
            {"user": self.get_current_user_uri(), "active": "true"},
        )

    def get_available_times(
        self,
        event_type_uri: str,
        start_time: str,
        end_time: str,
    ) -> list[dict[str, Any]]:
        """Bookable slots of *event_type_uri* between two ISO-8601 UTC instants.

        The window may span at most ``MAX_AVAILABILITY_WINDOW_DAYS``.  Results
        are cached briefly so repeated availability questions in one
        conversation stay cheap.
        """
        return self._collection(
            f"{AVAILABILITY_KEY_PREFIX}{event_type_uri}|{start_time}|{end_time}",
            AVAILABILITY_TTL_SECONDS,
            "/event_type_available_times",
            {"event_type": event_type_uri, "start_time": start_time, "end_time": end_time},
        )


# ── Shared instance ──────────────────────────────────────────────────
_shared: CalendlyClient | None = None
_shared_lock = threading.Lock()


def get_calendly_client() -> CalendlyClient:
    """Process-wide client, created on first use.

    Raises ``CalendlyAPIError`` while Calendly is not configured, so the
    availability tool can report it instead of failing at import.
    """
    global _shared
    if _shared is None:
        with _shared_lock:
            if _shared is None:
                _shared = CalendlyClient()
    return _shared
