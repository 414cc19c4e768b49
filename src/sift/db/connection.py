"""SQLite connection layer."""

from __future__ import annotations

import sqlite3
from pathlib import Path

# Seconds a writer waits on a locked database before raising
_BUSY_TIMEOUT = 30.0


class Database:
    """Per-project SQLite file holding documents, chunk shards, logs and cache tiers.

    Every connection runs in WAL mode so the background embedding thread and
    the log handler can write while searches read.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open a connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a new connection shareable across the retrieval worker threads."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=_BUSY_TIMEOUT)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def size_bytes(self) -> int:
        """On-disk size of the database including its write-ahead log."""
        total = 0
        for path in (self.db_path, self.db_path.with_name(self.db_path.name + "-wal")):
            if path.exists():
                total += path.stat().st_size
        return total

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
