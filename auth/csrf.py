"""
auth/csrf.py -- Per-session anti-forgery tokens.

The session identifier is the bearer token the client authenticates with.
It is hashed before being used as a store key so raw bearer tokens never sit
in the CSRF store (which may be a shared SQLite file).

One active token per session: issue() replaces whatever was stored before,
so only the most recently issued token passes check(). Tokens do not expire
on their own; they live as long as the store keeps them.

Capacity bound: once the store holds more than `capacity` sessions, the
oldest half (by first insertion) is evicted. This is coarse -- it is not true
LRU, a busy old session can be evicted before an idle new one -- and an
evicted client simply fetches a fresh token from GET /csrf-token.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from kvstore.store import KeyValueStore

logger = logging.getLogger("parkingpilot.auth.csrf")


def session_key(session_id: str) -> str:
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


class CSRFService:
    def __init__(self, store: KeyValueStore, capacity: int = 1000) -> None:
        self._store = store
        self.capacity = capacity

    def issue(self, session_id: str) -> str:
        token = secrets.token_hex(32)
        self._store.set(session_key(session_id), {"token": token})
        if len(self._store) > self.capacity:
            evicted = self._store.evict_oldest(self.capacity // 2)
            logger.info("CSRF store over capacity; evicted %d sessions", evicted)
        return token

    def check(self, session_id: str | None, supplied: str | None) -> bool:
        if not session_id or not supplied:
            return False
        entry = self._store.get(session_key(session_id))
        if entry is None:
            return False
        return hmac.compare_digest(entry["token"].encode("utf-8"), supplied.encode("utf-8"))
