"""
auth/ratelimit.py -- Fixed-window request counter for authentication endpoints.

Each identity (client address, usually combined with the route path) owns a
window {count, reset_at}:

    now > reset_at        -> new window: count = 1, reset_at = now + window
    otherwise             -> count += 1
    count > max_requests  -> RateLimitExceeded(retry_after = ceil(reset_at - now))

The read-modify-write happens inside KeyValueStore.update(), which is atomic
per key, so two concurrent requests from one client cannot both observe the
same count.

This limiter sits in front of login, registration, password reset and OTP
endpoints with a deliberately small budget. Everything else is covered by the
looser app-wide slowapi limit in api/limiter.py.

State is only as shared as the store: with MemoryStore each worker process
counts separately, so N workers allow up to N * max_requests per window.
Use the SQLite store backend when running several workers on one host.
"""

from __future__ import annotations

import math

from core.clock import Clock, system_clock
from core.errors import RateLimitExceeded
from kvstore.store import KeyValueStore


class FixedWindowRateLimiter:
    def __init__(
        self,
        store: KeyValueStore,
        max_requests: int,
        window_seconds: float,
        clock: Clock = system_clock,
    ) -> None:
        if max_requests < 1 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self._store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock

    def hit(self, identity: str) -> int:
        """Count one request for identity. Returns the requests left in the window.

        Raises RateLimitExceeded once the window's budget is spent.
        """
        now = self._clock()

        def _bump(current):
            if current is None or now > current["reset_at"]:
                reset_at = now + self.window_seconds
                return {"count": 1, "reset_at": reset_at}, reset_at
            return {"count": current["count"] + 1, "reset_at": current["reset_at"]}, current["reset_at"]

        window = self._store.update(identity, _bump)
        if window["count"] > self.max_requests:
            retry_after = max(1, math.ceil(window["reset_at"] - now))
            raise RateLimitExceeded(retry_after=retry_after)
        return self.max_requests - window["count"]

    def sweep(self) -> int:
        """Drop windows that have already closed."""
        return self._store.sweep(self._clock())

    def reset(self) -> None:
        self._store.clear()
