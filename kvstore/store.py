"""
kvstore/store.py -- Expiring key/value stores (memory and SQLite backends).

The services in auth/ keep three kinds of short-lived state: one-time codes,
CSRF tokens and rate-limit counters. They all need the same handful of
operations, so they share one interface:

    store = MemoryStore()
    store.set("email:a@x.com", {"code": "123456"}, expires_at=now + 600)
    store.get("email:a@x.com")          # {"code": "123456", ...} or None
    store.update("ip:1.2.3.4", mutate)  # atomic read-modify-write of one key
    store.sweep(now)                    # delete entries with expires_at < now
    store.evict_oldest(500)             # drop the 500 oldest keys

get() deliberately does NOT hide expired entries. Callers own their expiry
semantics -- e.g. the OTP service must tell "expired" apart from "never
requested", so it needs to see the stale entry before deleting it. sweep() is
the only place that removes entries on time alone.

Values are JSON-compatible dicts. Insertion order is preserved: overwriting
an existing key keeps its position, and evict_oldest() removes from the front.

Backends:
  MemoryStore -- dict + lock. Process-local; the default.
  SQLiteStore -- one table keyed by (namespace, key) in a WAL-mode SQLite file.
                 Several worker processes on the same host see the same
                 state, which the in-memory backend cannot offer.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Optional

Value = dict[str, Any]
# mutate(current) -> (new_value, expires_at)
Mutator = Callable[[Optional[Value]], "tuple[Value, Optional[float]]"]


class KeyValueStore:
    """Interface shared by every backend."""

    def get(self, key: str) -> Optional[Value]:
        raise NotImplementedError

    def set(self, key: str, value: Value, expires_at: Optional[float] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def update(self, key: str, mutate: Mutator) -> Value:
        """Apply mutate() to the current value of key and store the result atomically."""
        raise NotImplementedError

    def sweep(self, now: float) -> int:
        """Delete every entry whose expires_at is before now. Returns rows removed."""
        raise NotImplementedError

    def evict_oldest(self, count: int) -> int:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemoryStore(KeyValueStore):
    def __init__(self, namespace: str = "default") -> None:
        self.namespace = namespace
        self._entries: dict[str, tuple[Value, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Value]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        return {**value, "expires_at": expires_at}

    def set(self, key: str, value: Value, expires_at: Optional[float] = None) -> None:
        with self._lock:
            self._entries[key] = (_strip(value), expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def update(self, key: str, mutate: Mutator) -> Value:
        with self._lock:
            entry = self._entries.get(key)
            current = {**entry[0], "expires_at": entry[1]} if entry is not None else None
            value, expires_at = mutate(current)
            value = _strip(value)
            self._entries[key] = (value, expires_at)
        return {**value, "expires_at": expires_at}

    def sweep(self, now: float) -> int:
        with self._lock:
            stale = [k for k, (_, exp) in self._entries.items() if exp is not None and exp < now]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def evict_oldest(self, count: int) -> int:
        with self._lock:
            victims = list(self._entries)[:count]
            for key in victims:
                del self._entries[key]
        return len(victims)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_DDL = """
CREATE TABLE IF NOT EXISTS kv_entries (
    namespace   TEXT NOT NULL,
    key         TEXT NOT NULL,
    value       TEXT NOT NULL,
    expires_at  REAL,
    PRIMARY KEY (namespace, key)
);
"""


class SQLiteStore(KeyValueStore):
    """Store backed by a shared SQLite file.

    The connection runs in autocommit mode; update() opens an explicit
    BEGIN IMMEDIATE transaction so the read and the write of one key are
    atomic across processes, not just across threads.
    """

    def __init__(self, db_path: Path | str, namespace: str = "default") -> None:
        self.namespace = namespace
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False, isolation_level=None, timeout=10)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)

    def get(self, key: str) -> Optional[Value]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value, expires_at FROM kv_entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
        if row is None:
            return None
        return {**json.loads(row[0]), "expires_at": row[1]}

    def set(self, key: str, value: Value, expires_at: Optional[float] = None) -> None:
        with self._lock:
            self._upsert(key, _strip(value), expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM kv_entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
        return cursor.rowcount > 0

    def update(self, key: str, mutate: Mutator) -> Value:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    "SELECT value, expires_at FROM kv_entries WHERE namespace = ? AND key = ?",
                    (self.namespace, key),
                ).fetchone()
                current = {**json.loads(row[0]), "expires_at": row[1]} if row is not None else None
                value, expires_at = mutate(current)
                value = _strip(value)
                self._upsert(key, value, expires_at)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
        return {**value, "expires_at": expires_at}

    def sweep(self, now: float) -> int:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM kv_entries WHERE namespace = ? AND expires_at IS NOT NULL AND expires_at < ?",
                (self.namespace, now),
            )
        return cursor.rowcount

    def evict_oldest(self, count: int) -> int:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM kv_entries WHERE rowid IN ("
                "SELECT rowid FROM kv_entries WHERE namespace = ? ORDER BY rowid LIMIT ?)",
                (self.namespace, count),
            )
        return cursor.rowcount

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv_entries WHERE namespace = ?", (self.namespace,))

    def __len__(self) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM kv_entries WHERE namespace = ?", (self.namespace,)
            ).fetchone()
        return row[0] if row else 0

    def close(self) -> None:
        self._conn.close()

    def _upsert(self, key: str, value: Value, expires_at: Optional[float]) -> None:
        # ON CONFLICT ... DO UPDATE keeps the original rowid, so an overwritten
        # key keeps its place in insertion order (matches MemoryStore).
        self._conn.execute(
            "INSERT INTO kv_entries (namespace, key, value, expires_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(namespace, key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at",
            (self.namespace, key, json.dumps(value), expires_at),
        )


def _strip(value: Value) -> Value:
    # expires_at is reported by get() but stored in its own column/slot.
    return {k: v for k, v in value.items() if k != "expires_at"}
