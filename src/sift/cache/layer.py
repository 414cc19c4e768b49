"""Three-tier cache: hot (process) → shared (SQLite, ≤ 6 h) → durable (properties).

Reads check tiers fastest first and backfill the faster tiers on a slower-tier
hit. Writes always go to hot and shared; entries whose TTL exceeds the shared
cap are also written to the durable tier inside a ``{value, expires_at}``
envelope.

One CacheLayer is built per process by SiftService and passed to every
component that caches.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from enum import Enum
from typing import Any, Callable

from sift.cache.tiers import Clock, DurableTier, HotTier, SharedTier

logger = logging.getLogger(__name__)


class CacheScope(str, Enum):
    """Key partitions. Entries in one scope are never visible from another."""

    USER = "user"
    SCRIPT = "script"
    DOCUMENT = "document"


def scoped_key(scope: CacheScope | str, key: str) -> str:
    """Return the physical key for *key* in *scope*.

    Raises:
        ValueError: If *scope* is not a CacheScope value.
    """
    return f"{CacheScope(scope).value}:{key}"


class CacheLayer:
    """Tiered cache with TTL semantics.

    Args:
        conn: Connection holding the ``cache_entries`` and ``properties`` tables.
        hot_ttl_seconds: Fixed lifetime of hot-tier entries.
        shared_max_ttl_seconds: TTL cap of the shared tier; longer TTLs also
            write to the durable tier.
        max_ttl_seconds: Global TTL clamp.
        clock: Time source (seconds since epoch); injectable for tests.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        hot_ttl_seconds: int = 60,
        shared_max_ttl_seconds: int = 6 * 60 * 60,
        max_ttl_seconds: int = 7 * 24 * 60 * 60,
        clock: Clock = time.time,
    ) -> None:
        self.hot_ttl_seconds = hot_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        self._clock = clock
        self.hot = HotTier(clock)
        self.shared = SharedTier(conn, shared_max_ttl_seconds, clock)
        self.durable = DurableTier(conn)
        self._lock = threading.RLock()
        self._stats = {"hot_hits": 0, "shared_hits": 0, "durable_hits": 0, "misses": 0}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str, scope: CacheScope | str = CacheScope.SCRIPT) -> Any:
        """Return the cached value for *key* in *scope*, or None."""
        full_key = scoped_key(scope, key)

        text = self.hot.get(full_key)
        if text is not None:
            self._stats["hot_hits"] += 1
            return json.loads(text)

        with self._lock:
            try:
                text = self.shared.get(full_key)
            except sqlite3.Error as exc:
                logger.warning("Shared cache read failed for %s: %s", full_key, exc)
                text = None
            if text is not None:
                try:
                    value = json.loads(text)
                except ValueError:
                    logger.warning("Dropping undecodable shared cache entry %s", full_key)
                    self.shared.delete(full_key)
                else:
                    self.hot.put(full_key, text, self.hot_ttl_seconds)
                    self._stats["shared_hits"] += 1
                    return value

            value, remaining = self._read_durable(full_key)
            if remaining is None:
                self._stats["misses"] += 1
                return None

            text = json.dumps(value, ensure_ascii=False)
            self.hot.put(full_key, text, self.hot_ttl_seconds)
            try:
                self.shared.put(full_key, text, remaining)
            except sqlite3.Error as exc:
                logger.warning("Shared cache backfill failed for %s: %s", full_key, exc)
            self._stats["durable_hits"] += 1
            return value

    def _read_durable(self, full_key: str) -> tuple[Any, float | None]:
        """Return (value, remaining_ttl) from the durable tier; remaining is None on miss."""
        try:
            raw = self.durable.get(full_key)
        except sqlite3.Error as exc:
            logger.warning("Durable cache read failed for %s: %s", full_key, exc)
            return None, None
        if raw is None:
            return None, None

        try:
            envelope = json.loads(raw)
            expires_at = float(envelope["expires_at"])
            value = envelope["value"]
        except (ValueError, TypeError, KeyError):
            logger.warning("Corrupt durable cache entry %s removed", full_key)
            self.durable.delete(full_key)
            return None, None

        remaining = expires_at - self._clock()
        if remaining <= 0:
            self.durable.delete(full_key)
            return None, None
        return value, remaining

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        scope: CacheScope | str = CacheScope.SCRIPT,
    ) -> bool:
        """Store *value* (JSON-serializable) under *key* for *ttl_seconds*.

        Returns False if nothing could be stored.
        """
        full_key = scoped_key(scope, key)
        if value is None:
            return False
        ttl = max(0.0, min(float(ttl_seconds), float(self.max_ttl_seconds)))
        if ttl == 0:
            return False

        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.warning("Value for %s is not cacheable: %s", full_key, exc)
            return False

        self.hot.put(full_key, text, min(ttl, self.hot_ttl_seconds))
        with self._lock:
            try:
                self.shared.put(full_key, text, ttl)
                if ttl > self.shared.max_ttl_seconds:
                    envelope = json.dumps(
                        {"value": value, "expires_at": self._clock() + ttl}, ensure_ascii=False
                    )
                    self.durable.put(full_key, envelope)
            except sqlite3.Error as exc:
                logger.warning("Cache write failed for %s: %s", full_key, exc)
        return True

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl_seconds: float,
        scope: CacheScope | str = CacheScope.SCRIPT,
    ) -> Any:
        """Return the cached value, or compute, cache and return it."""
        value = self.get(key, scope)
        if value is None:
            value = compute()
            if value is not None:
                self.set(key, value, ttl_seconds, scope)
        return value

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def remove(self, key: str, scope: CacheScope | str = CacheScope.SCRIPT) -> None:
        full_key = scoped_key(scope, key)
        self.hot.delete(full_key)
        with self._lock:
            try:
                self.shared.delete(full_key)
                self.durable.delete(full_key)
            except sqlite3.Error as exc:
                logger.warning("Cache remove failed for %s: %s", full_key, exc)

    def remove_by_prefix(self, prefix: str, scope: CacheScope | str = CacheScope.SCRIPT) -> int:
        """Remove every entry whose key starts with *prefix* in *scope*, in all tiers.

        Returns:
            Number of distinct keys removed.
        """
        full_prefix = scoped_key(scope, prefix)
        with self._lock:
            removed = set(self.hot.keys_with_prefix(full_prefix))
            self.hot.delete_prefix(full_prefix)
            for tier in (self.shared, self.durable):
                try:
                    removed.update(tier.keys_with_prefix(full_prefix))
                    tier.delete_prefix(full_prefix)
                except sqlite3.Error as exc:
                    logger.warning("Cache prefix removal failed for %s: %s", full_prefix, exc)
        return len(removed)

    def clear(self, scope: CacheScope | str = CacheScope.SCRIPT) -> int:
        """Remove all entries in *scope*."""
        return self.remove_by_prefix("", scope)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        """Hit/miss counters and per-tier entry counts (expired entries are purged first)."""
        result = dict(self._stats)
        self.hot.purge_expired()
        result["hot_entries"] = len(self.hot)
        try:
            with self._lock:
                self.shared.purge_expired()
                result["shared_entries"] = self.shared.count()
                result["durable_entries"] = self.durable.count()
        except sqlite3.Error as exc:
            logger.warning("Cache stats unavailable: %s", exc)
        return result
