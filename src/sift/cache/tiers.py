"""Cache tier backends.

  HotTier      process-local dict, short fixed TTL
  SharedTier   SQLite ``cache_entries`` table, TTL capped (6 h by default)
  DurableTier  SQLite ``properties`` key/value store, no TTL cap, per-value size limit

All tiers store JSON text; (de)serialization happens in CacheLayer.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

# Practical per-value limit of the durable property store.
DURABLE_MAX_VALUE_BYTES = 9 * 1024


class HotTier:
    """In-process map of key → (json_text, expires_at).

    Expired entries are dropped on every write.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            text, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return text

    def put(self, key: str, text: str, ttl_seconds: float) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries[key] = (text, now + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys_with_prefix(self, prefix: str) -> list[str]:
        with self._lock:
            now = self._clock()
            return [k for k, (_, exp) in self._entries.items() if k.startswith(prefix) and exp > now]

    def delete_prefix(self, prefix: str) -> int:
        """Drop every entry under *prefix*; returns how many of them were live."""
        with self._lock:
            live = len(self.keys_with_prefix(prefix))
            for k in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[k]
            return live

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_expired(self._clock())

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for _, exp in self._entries.values() if exp > now)


class SharedTier:
    """Shared cache in the ``cache_entries`` table with a hard TTL cap."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        max_ttl_seconds: int = 6 * 60 * 60,
        clock: Clock = time.time,
    ) -> None:
        self._conn = conn
        self.max_ttl_seconds = max_ttl_seconds
        self._clock = clock

    def get(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        if row["expires_at"] <= self._clock():
            self.delete(key)
            return None
        return row["value"]

    def put(self, key: str, text: str, ttl_seconds: float) -> None:
        ttl = min(ttl_seconds, self.max_ttl_seconds)
        self._conn.execute(
            """
            INSERT INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at
            """,
            (key, text, self._clock() + ttl),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        self._conn.commit()

    def keys_with_prefix(self, prefix: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT key FROM cache_entries WHERE substr(key, 1, ?) = ? AND expires_at > ?",
            (len(prefix), prefix, self._clock()),
        ).fetchall()
        return [r["key"] for r in rows]

    def delete_prefix(self, prefix: str) -> int:
        cur = self._conn.execute(
            "DELETE FROM cache_entries WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
        )
        self._conn.commit()
        return cur.rowcount

    def purge_expired(self) -> int:
        cur = self._conn.execute(
            "DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),)
        )
        self._conn.commit()
        return cur.rowcount

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]


class DurableTier:
    """Durable key/value store in the ``properties`` table.

    Holds raw text; expiry lives inside the JSON envelope written by CacheLayer.
    """

    def __init__(self, conn: sqlite3.Connection, max_value_bytes: int = DURABLE_MAX_VALUE_BYTES) -> None:
        self._conn = conn
        self.max_value_bytes = max_value_bytes

    def get(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM properties WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def put(self, key: str, text: str) -> bool:
        """Store *text* under *key*. Returns False if it exceeds the size limit."""
        if len(text.encode("utf-8")) > self.max_value_bytes:
            logger.warning(
                "Durable cache value for %s exceeds %d bytes; not stored", key, self.max_value_bytes
            )
            return False
        self._conn.execute(
            """
            INSERT INTO properties (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, text),
        )
        self._conn.commit()
        return True

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM properties WHERE key = ?", (key,))
        self._conn.commit()

    def keys_with_prefix(self, prefix: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT key FROM properties WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
        ).fetchall()
        return [r["key"] for r in rows]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM properties").fetchone()[0]

    def delete_prefix(self, prefix: str) -> int:
        cur = self._conn.execute(
            "DELETE FROM properties WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
        )
        self._conn.commit()
        return cur.rowcount
