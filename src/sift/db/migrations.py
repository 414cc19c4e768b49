"""Forward-only migration runner for Sift's database schema.

Chunk and embedding shard tables (chunks_*, embeddings_*) are NOT
migration-managed; see sift.db.shards.ensure_shard_tables().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    id              TEXT PRIMARY KEY,
    title           TEXT NOT NULL DEFAULT '',
    content         TEXT NOT NULL DEFAULT '',
    category        TEXT NOT NULL DEFAULT 'general',
    language        TEXT NOT NULL DEFAULT 'ja',
    path            TEXT NOT NULL DEFAULT '',
    format          TEXT NOT NULL DEFAULT 'text',
    metadata        TEXT NOT NULL DEFAULT '{}',
    last_updated    DATETIME NOT NULL DEFAULT (datetime('now')),
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS index_mapping (
    sheet_name      TEXT PRIMARY KEY,
    category        TEXT NOT NULL,
    type            TEXT NOT NULL,
    shard_number    INTEGER NOT NULL DEFAULT 1,
    row_count       INTEGER NOT NULL DEFAULT 0,
    last_updated    DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS templates (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    type            TEXT NOT NULL DEFAULT 'standard',
    content         TEXT NOT NULL,
    language        TEXT NOT NULL DEFAULT 'ja',
    category        TEXT NOT NULL DEFAULT '',
    metadata        TEXT NOT NULL DEFAULT '{}',
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS help_pairs (
    ja_document_id  TEXT NOT NULL,
    en_document_id  TEXT NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (ja_document_id, en_document_id)
);

CREATE TABLE IF NOT EXISTS logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    level           TEXT NOT NULL,
    severity        TEXT NOT NULL,
    logger          TEXT NOT NULL,
    message         TEXT NOT NULL,
    context         TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS cache_entries (
    key             TEXT PRIMARY KEY,
    value           TEXT NOT NULL,
    expires_at      REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS properties (
    key             TEXT PRIMARY KEY,
    value           TEXT NOT NULL
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
