"""
Fixed-window request counters per client IP and action.

Counters live in the shared key-value store. The read-modify-write is not
atomic across processes, so concurrent bursts can slip a request or two past
the limit.
"""

import hashlib
import logging
from dataclasses import dataclass

from amadeus_client import RateLimited
from cache import KeyValueStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit_"


@dataclass(frozen=True)
class Limit:
    """Requests allowed per window."""
    requests: int
    window_seconds: int


# Per-action defaults used by the request handlers.
SEARCH_LOCATIONS = Limit(20, 60)
SEARCH_FLIGHTS = Limit(5, 60)
SEARCH_HOTEL_LOCATIONS = Limit(20, 60)
SEARCH_HOTELS = Limit(5, 60)


class RateLimiter:
    """Advisory per-client, per-action limiter."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(client_key: str, action: str) -> str:
        return KEY_PREFIX + hashlib.md5(f"{client_key}{action}".encode()).hexdigest()

    def allow(self, client_key: str, action: str, limit: int, window_seconds: int) -> bool:
        """
        Count one request and say whether it may proceed.

        The first request opens a window of window_seconds. Requests are
        permitted while fewer than `limit` have been counted in that window.
        The window is never extended by later requests.
        """
        key = self._key(client_key, action)
        now = self.store.clock()
        counter = self.store.get(key)

        if not counter or now >= counter.get("window_expires_at", 0):
            self.store.set(key, {"count": 1, "window_expires_at": now + window_seconds}, window_seconds)
            return True

        count = max(0, int(counter.get("count", 0)))
        if count >= limit:
            logger.info(f"Rate limit hit for action {action} ({count}/{limit})")
            return False

        remaining = counter["window_expires_at"] - now
        self.store.set(key, {"count": count + 1, "window_expires_at": counter["window_expires_at"]}, remaining)
        return True

    def enforce(self, client_key: str, action: str, limit: Limit, message: str = None):
        """Like allow(), but raise RateLimited on denial."""
        if not self.allow(client_key, action, limit.requests, limit.window_seconds):
            raise RateLimited(message) if message else RateLimited()
