"""Quota ledger: chat sessions and per-origin session-creation throttling.

Sessions are short-lived identities handed to anonymous chat clients.  Each
one carries a fixed message allowance and a fixed lifetime; each network
origin may only mint a few sessions per rolling day.

Everything lives in process memory.  Expired entries are evicted lazily on
access, and ``sweep()`` is a memory-bound optimisation run periodically by
the server; correctness never depends on it having run.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 25
DEFAULT_TTL = timedelta(hours=24)
DEFAULT_ORIGIN_DAILY_CAP = 3
ORIGIN_WINDOW = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Session:
    """A rate-limited, time-bounded identity issued to one chat client."""

    token: str
    created_at: datetime
    expires_at: datetime
    messages_remaining: int
    origin_ip: str

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now


@dataclass
class OriginThrottle:
    count: int
    reset_at: datetime


@dataclass(frozen=True)
class QuotaExceeded:
    """Returned (not raised) when an origin has used up its daily sessions."""

    origin_ip: str
    retry_after: datetime
    message: str


@dataclass(frozen=True)
class QuotaLimits:
    max_messages: int = DEFAULT_MAX_MESSAGES
    ttl: timedelta = DEFAULT_TTL
    origin_daily_cap: int = DEFAULT_ORIGIN_DAILY_CAP


class QuotaLedger:
    """Tracks sessions and origin throttle records.

    The clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(
        self,
        limits: QuotaLimits | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._limits = limits or QuotaLimits()
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._origins: dict[str, OriginThrottle] = {}
        self._lock = threading.Lock()

    @property
    def limits(self) -> QuotaLimits:
        return self._limits

    # ── Session creation ─────────────────────────────────────────────

    def create_session(self, origin_ip: str) -> Session | QuotaExceeded:
        """Mint a new session for *origin_ip* unless its daily cap is used up."""
        now = self._clock()
        with self._lock:
            record = self._origins.get(origin_ip)
            if record is not None and record.reset_at < now:
                # Window elapsed: the origin starts over
                del self._origins[origin_ip]
                record = None

            if record is not None and record.count >= self._limits.origin_daily_cap:
                hours_left = max(1, math.ceil((record.reset_at - now).total_seconds() / 3600))
                logger.warning(
                    "Origin %s reached daily session cap (%d)", origin_ip, record.count,
                )
                return QuotaExceeded(
                    origin_ip=origin_ip,
                    retry_after=record.reset_at,
                    message=(
                        "You've created the maximum number of sessions for today. "
                        f"Please try again in {hours_left} hour{'s' if hours_left > 1 else ''}."
                    ),
                )

            session = Session(
                token=str(uuid.uuid4()),
                created_at=now,
                expires_at=now + self._limits.ttl,
                messages_remaining=self._limits.max_messages,
                origin_ip=origin_ip,
            )
            self._sessions[session.token] = session

            if record is None:
                self._origins[origin_ip] = OriginThrottle(count=1, reset_at=now + ORIGIN_WINDOW)
            else:
                record.count += 1

        logger.info("New session created for origin %s", origin_ip)
        return session

    # ── Session access ───────────────────────────────────────────────

    def _live_session(self, token: str, now: datetime) -> Session | None:
        """Return the session for *token*, evicting it if expired.  Lock held."""
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.is_expired(now):
            del self._sessions[token]
            logger.debug("Session %s… expired, evicted on access", token[:8])
            return None
        return session

    def validate(self, token: str) -> Session | None:
        """Return the live session for *token*, or ``None`` if absent/expired."""
        now = self._clock()
        with self._lock:
            return self._live_session(token, now)

    def decrement_message(self, token: str) -> bool:
        """Consume one message from the session's allowance.

        Returns ``False`` when the session is absent, expired, or already at
        zero.  The allowance never goes negative.
        """
        now = self._clock()
        with self._lock:
            session = self._live_session(token, now)
            if session is None or session.messages_remaining <= 0:
                return False
            session.messages_remaining -= 1
            return True

    # ── Housekeeping ─────────────────────────────────────────────────

    def sweep(self) -> int:
        """Evict expired sessions and throttle records.  Returns count removed."""
        now = self._clock()
        with self._lock:
            expired_tokens = [t for t, s in self._sessions.items() if s.is_expired(now)]
            for token in expired_tokens:
                del self._sessions[token]
            expired_origins = [ip for ip, r in self._origins.items() if r.reset_at < now]
            for ip in expired_origins:
                del self._origins[ip]

        removed = len(expired_tokens) + len(expired_origins)
        if removed:
            logger.info(
                "Sweep evicted %d session(s) and %d origin record(s)",
                len(expired_tokens), len(expired_origins),
            )
        return removed

    @property
    def session_count(self) -> int:
        return len(self._sessions)
