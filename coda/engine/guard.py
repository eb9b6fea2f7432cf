"""Per-conversation mutex: at most one in-flight exchange per key.

A failed ``try_acquire`` means the caller must reject the request right away
instead of queueing it behind a slow model call.
"""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class ConcurrencyGuard:
    """Non-blocking set of held keys."""

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._held:
                logger.debug("Guard: %s already in flight", key)
                return False
            self._held.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._held.discard(key)

    def is_held(self, key: str) -> bool:
        with self._lock:
            return key in self._held
