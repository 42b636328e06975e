"""kvstore/ -- Expiring key/value stores for short-lived security state.

One-time codes, CSRF tokens and rate-limit counters live behind the
KeyValueStore interface so the backend can be swapped (process memory or a
shared SQLite file) without touching the services that use it.

Layer rule: kvstore/ imports only stdlib. It does NOT import from api/, auth/,
or notify/.
"""

from kvstore.store import KeyValueStore, MemoryStore, SQLiteStore

__all__ = ["KeyValueStore", "MemoryStore", "SQLiteStore"]
