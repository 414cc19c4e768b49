"""Per-category shard table management.

Chunks and embeddings live in paired tables ``chunks_{slug}_{n}`` /
``embeddings_{slug}_{n}``; every shard is registered in ``index_mapping`` so
readers discover shards without scanning sqlite_master.
"""

from __future__ import annotations

import hashlib
import re
import sqlite3

from sift.errors import StorageError

CHUNKS = "chunks"
EMBEDDINGS = "embeddings"


def category_to_slug(category: str) -> str:
    """Convert a category name to a valid table name fragment.

    A category that is not already its own slug gets a short hash suffix, so
    names differing only in case or punctuation never share shard tables.

    Examples:
        "billing"       -> "billing"
        "Billing"       -> "billing_<8 hex chars>"
        "Ad Campaigns"  -> "ad_campaigns_<8 hex chars>"
        "請求"          -> "c_<8 hex chars>"
    """
    base = re.sub(r"[^a-z0-9]+", "_", category.lower()).strip("_")
    if base == category:
        return base
    digest = hashlib.sha1(category.encode("utf-8")).hexdigest()[:8]
    return f"{base}_{digest}" if base else f"c_{digest}"


def shard_table_name(kind: str, slug: str, number: int) -> str:
    """Return the table name for shard *number* of *kind* (chunks | embeddings)."""
    if kind not in (CHUNKS, EMBEDDINGS):
        raise ValueError(f"Unknown shard kind: {kind!r}")
    return f"{kind}_{slug}_{number}"


def ensure_shard_tables(conn: sqlite3.Connection, category: str, number: int) -> tuple[str, str]:
    """Create the chunk/embedding table pair for *category* shard *number*.

    Registers both tables in ``index_mapping``. Idempotent.

    Raises:
        StorageError: The table names are registered to a different category.

    Returns:
        (chunks_table, embeddings_table)
    """
    if number < 1:
        raise ValueError(f"shard number must be >= 1, got {number}")
    slug = category_to_slug(category)
    if not re.fullmatch(r"[a-z0-9_]+", slug):
        raise ValueError(f"Invalid category slug '{slug}'")

    chunks_table = shard_table_name(CHUNKS, slug, number)
    embeddings_table = shard_table_name(EMBEDDINGS, slug, number)

    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {chunks_table} (
            id          TEXT PRIMARY KEY,
            document_id TEXT NOT NULL,
            category    TEXT NOT NULL,
            content     TEXT NOT NULL,
            metadata    TEXT NOT NULL DEFAULT '{{}}',
            created_at  DATETIME NOT NULL DEFAULT (datetime('now')),
            updated_at  DATETIME NOT NULL DEFAULT (datetime('now'))
        )
        """
    )
    conn.execute(
        f"CREATE INDEX IF NOT EXISTS idx_{chunks_table}_doc ON {chunks_table}(document_id)"
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {embeddings_table} (
            chunk_id      TEXT NOT NULL,
            document_id   TEXT NOT NULL,
            category      TEXT NOT NULL,
            vector        TEXT NOT NULL,
            model_version TEXT NOT NULL,
            created_at    DATETIME NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (chunk_id, model_version)
        )
        """
    )
    for kind, table in ((CHUNKS, chunks_table), (EMBEDDINGS, embeddings_table)):
        conn.execute(
            """
            INSERT OR IGNORE INTO index_mapping (sheet_name, category, type, shard_number, row_count)
            VALUES (?, ?, ?, ?, 0)
            """,
            (table, category, kind, number),
        )
        owner = conn.execute(
            "SELECT category FROM index_mapping WHERE sheet_name = ?", (table,)
        ).fetchone()
        if owner["category"] != category:
            conn.rollback()
            raise StorageError(
                f"Shard {table} already belongs to category '{owner['category']}', not '{category}'",
                code="shard_conflict",
            )
    conn.commit()
    return chunks_table, embeddings_table


def paired_embeddings_table(chunks_table: str) -> str:
    """Return the embeddings table paired with *chunks_table*."""
    if not chunks_table.startswith(f"{CHUNKS}_"):
        raise ValueError(f"Not a chunk shard: {chunks_table!r}")
    return EMBEDDINGS + chunks_table[len(CHUNKS):]
