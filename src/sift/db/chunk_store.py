"""Sharded chunk/embedding storage with linear-scan retrieval.

Chunks of one category are spread over ``chunks_{slug}_{n}`` tables capped at
``max_rows_per_shard`` rows each; the paired ``embeddings_{slug}_{n}`` table
holds compressed vectors for the chunks of that shard. Shards are discovered
through ``index_mapping``.

Retrieval is a brute-force scan per shard: no ANN index, no inverted index.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from sift.cache import CacheLayer, CacheScope
from sift.db.codec import compress_and_encode_array, decode_and_decompress_array
from sift.db.models import Chunk, Embedding, ShardInfo
from sift.db.shards import CHUNKS, ensure_shard_tables, paired_embeddings_table
from sift.errors import StorageError
from sift.text.scoring import calculate_keyword_match_score, match_keywords
from sift.text.vector_math import cosine_similarity

logger = logging.getLogger(__name__)

_TABLE_RE = re.compile(r"[a-z0-9_]+")


@dataclass
class ScoredChunk:
    """A chunk with its per-method retrieval score."""

    chunk: Chunk
    score: float
    matched_keywords: list[str] = field(default_factory=list)
    shard: str = ""


def _table_name(shard: ShardInfo | str) -> str:
    name = shard.sheet_name if isinstance(shard, ShardInfo) else shard
    if not _TABLE_RE.fullmatch(name):
        raise StorageError(f"Invalid shard table name {name!r}")
    return name


def _language_ok(chunk: Chunk, language: str | None) -> bool:
    """Rows without a language tag pass every language filter."""
    if not language:
        return True
    tagged = chunk.language
    return tagged is None or tagged == language


class ChunkStore:
    """Read/write access to the sharded chunk and embedding tables.

    Args:
        conn: Open connection with the Sift schema initialised.
        cache: Cache for chunk/document location lookups (DOCUMENT scope).
            Without one, every lookup scans the shard tables.
        max_rows_per_shard: Row cap per chunk table before a new shard opens.
        location_ttl_seconds: TTL of cached location lookups.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        cache: CacheLayer | None = None,
        *,
        max_rows_per_shard: int = 5000,
        location_ttl_seconds: int = 3600,
    ) -> None:
        if max_rows_per_shard < 1:
            raise ValueError("max_rows_per_shard must be >= 1")
        self._conn = conn
        self._cache = cache
        self.max_rows_per_shard = max_rows_per_shard
        self.location_ttl_seconds = location_ttl_seconds

    # ------------------------------------------------------------------
    # Shard discovery
    # ------------------------------------------------------------------

    def get_chunk_shards(self, category: str | None = None) -> list[ShardInfo]:
        """Return chunk shards, optionally restricted to *category*.

        No category returns every chunk shard.
        """
        sql = (
            "SELECT sheet_name, category, type, shard_number, row_count, last_updated "
            "FROM index_mapping WHERE type = ?"
        )
        params: list = [CHUNKS]
        if category:
            sql += " AND category = ?"
            params.append(category)
        sql += " ORDER BY category, shard_number"
        return [_row_to_shard(r) for r in self._conn.execute(sql, params).fetchall()]

    def list_categories(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT category FROM index_mapping WHERE type = ? ORDER BY category",
            (CHUNKS,),
        ).fetchall()
        return [r["category"] for r in rows]

    def row_counts(self) -> dict[str, int]:
        """Return {table_name: row_count} for every registered shard table."""
        rows = self._conn.execute(
            "SELECT sheet_name, row_count FROM index_mapping ORDER BY sheet_name"
        ).fetchall()
        return {r["sheet_name"]: r["row_count"] for r in rows}

    def _writable_shard(self, category: str) -> tuple[str, int]:
        """Return (chunks_table, free_rows) for the newest shard of *category*."""
        row = self._conn.execute(
            """
            SELECT sheet_name, shard_number, row_count FROM index_mapping
            WHERE type = ? AND category = ? ORDER BY shard_number DESC LIMIT 1
            """,
            (CHUNKS, category),
        ).fetchone()
        if row is None:
            table, _ = ensure_shard_tables(self._conn, category, 1)
            return table, self.max_rows_per_shard
        if row["row_count"] >= self.max_rows_per_shard:
            table, _ = ensure_shard_tables(self._conn, category, row["shard_number"] + 1)
            logger.info("Opened shard %s for category %r", table, category)
            return table, self.max_rows_per_shard
        return row["sheet_name"], self.max_rows_per_shard - row["row_count"]

    def _refresh_row_count(self, table: str) -> None:
        self._conn.execute(
            f"""
            UPDATE index_mapping
            SET row_count = (SELECT COUNT(*) FROM {table}), last_updated = datetime('now')
            WHERE sheet_name = ?
            """,  # noqa: S608
            (table,),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Write *chunks* into their category's shards, opening new shards as needed.

        Rows with an existing id in the target shard are replaced. A failing
        row is logged and skipped; the others are still written.

        Returns:
            Number of rows written.
        """
        by_category: dict[str, list[Chunk]] = defaultdict(list)
        for chunk in chunks:
            if not chunk.content.strip():
                logger.warning("Skipping empty chunk %s", chunk.id)
                continue
            by_category[chunk.category].append(chunk)

        saved = 0
        for category, pending in by_category.items():
            while pending:
                table, free = self._writable_shard(category)
                batch, pending = pending[:free], pending[free:]
                for chunk in batch:
                    try:
                        self._conn.execute(
                            f"""
                            INSERT INTO {table} (id, document_id, category, content, metadata)
                            VALUES (?, ?, ?, ?, ?)
                            ON CONFLICT(id) DO UPDATE SET
                                content    = excluded.content,
                                metadata   = excluded.metadata,
                                updated_at = datetime('now')
                            """,  # noqa: S608
                            (
                                chunk.id,
                                chunk.document_id,
                                chunk.category,
                                chunk.content,
                                json.dumps(chunk.metadata, ensure_ascii=False),
                            ),
                        )
                        saved += 1
                    except sqlite3.Error as exc:
                        logger.error("Failed to save chunk %s into %s: %s", chunk.id, table, exc)
                self._conn.commit()
                self._refresh_row_count(table)

        self._forget_locations(chunks)
        return saved

    def save_embeddings(self, embeddings: Iterable[Embedding]) -> int:
        """Write compressed embeddings next to their chunks.

        One row per (chunk_id, model_version); a rewrite replaces the vector.
        Embeddings whose chunk cannot be located are logged and skipped.

        Returns:
            Number of rows written.
        """
        touched: set[str] = set()
        saved = 0
        for emb in embeddings:
            chunks_table = self.locate_chunk(emb.chunk_id)
            if chunks_table is None:
                logger.warning("No shard holds chunk %s; embedding dropped", emb.chunk_id)
                continue
            table = paired_embeddings_table(chunks_table)
            try:
                self._conn.execute(
                    f"""
                    INSERT OR REPLACE INTO {table}
                        (chunk_id, document_id, category, vector, model_version)
                    VALUES (?, ?, ?, ?, ?)
                    """,  # noqa: S608
                    (
                        emb.chunk_id,
                        emb.document_id,
                        emb.category,
                        compress_and_encode_array(emb.vector),
                        emb.model_version,
                    ),
                )
                saved += 1
                touched.add(table)
            except sqlite3.Error as exc:
                logger.error("Failed to save embedding for %s: %s", emb.chunk_id, exc)
        self._conn.commit()
        for table in touched:
            self._refresh_row_count(table)
        return saved

    def delete_document_chunks(self, document_id: str) -> int:
        """Delete every chunk and embedding row of *document_id*.

        Returns:
            Number of chunk rows deleted.
        """
        deleted = 0
        for table in self._scan_document_shards(document_id):
            emb_table = paired_embeddings_table(table)
            cur = self._conn.execute(
                f"DELETE FROM {table} WHERE document_id = ?", (document_id,)  # noqa: S608
            )
            deleted += cur.rowcount
            self._conn.execute(
                f"DELETE FROM {emb_table} WHERE document_id = ?", (document_id,)  # noqa: S608
            )
            self._conn.commit()
            self._refresh_row_count(table)
            self._refresh_row_count(emb_table)

        if self._cache is not None:
            self._cache.remove(f"document_shards:{document_id}", CacheScope.DOCUMENT)
            self._cache.remove_by_prefix(f"chunk_shard:{document_id}_chunk_", CacheScope.DOCUMENT)
        return deleted

    def _forget_locations(self, chunks: Sequence[Chunk]) -> None:
        if self._cache is None:
            return
        for document_id in {c.document_id for c in chunks}:
            self._cache.remove(f"document_shards:{document_id}", CacheScope.DOCUMENT)
        for chunk in chunks:
            self._cache.remove(f"chunk_shard:{chunk.id}", CacheScope.DOCUMENT)

    # ------------------------------------------------------------------
    # Location lookups
    # ------------------------------------------------------------------

    def locate_chunk(self, chunk_id: str) -> str | None:
        """Return the chunk table holding *chunk_id*, or None."""
        if self._cache is None:
            return self._scan_chunk_shard(chunk_id)
        return self._cache.get_or_compute(
            f"chunk_shard:{chunk_id}",
            lambda: self._scan_chunk_shard(chunk_id),
            self.location_ttl_seconds,
            CacheScope.DOCUMENT,
        )

    def locate_document(self, document_id: str) -> list[str]:
        """Return the chunk tables holding rows of *document_id*."""
        if self._cache is None:
            return self._scan_document_shards(document_id)
        found = self._cache.get_or_compute(
            f"document_shards:{document_id}",
            lambda: self._scan_document_shards(document_id) or None,
            self.location_ttl_seconds,
            CacheScope.DOCUMENT,
        )
        return found or []

    def _scan_chunk_shard(self, chunk_id: str) -> str | None:
        for shard in self.get_chunk_shards():
            table = _table_name(shard)
            row = self._conn.execute(
                f"SELECT 1 FROM {table} WHERE id = ?", (chunk_id,)  # noqa: S608
            ).fetchone()
            if row is not None:
                return table
        return None

    def _scan_document_shards(self, document_id: str) -> list[str]:
        tables = []
        for shard in self.get_chunk_shards():
            table = _table_name(shard)
            row = self._conn.execute(
                f"SELECT 1 FROM {table} WHERE document_id = ? LIMIT 1",  # noqa: S608
                (document_id,),
            ).fetchone()
            if row is not None:
                tables.append(table)
        return tables

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        table = self.locate_chunk(chunk_id)
        if table is None:
            return None
        row = self._conn.execute(
            f"SELECT * FROM {table} WHERE id = ?", (chunk_id,)  # noqa: S608
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks_by_document(self, document_id: str) -> list[Chunk]:
        """Return the chunks of *document_id* in insertion order."""
        chunks: list[Chunk] = []
        for table in self.locate_document(document_id):
            rows = self._conn.execute(
                f"SELECT * FROM {table} WHERE document_id = ? ORDER BY rowid",  # noqa: S608
                (document_id,),
            ).fetchall()
            chunks.extend(_row_to_chunk(r) for r in rows)
        return chunks

    def get_embeddings(
        self,
        shard: ShardInfo | str,
        chunk_ids: Sequence[str],
        model_version: str | None = None,
    ) -> dict[str, list[float]]:
        """Batch-load decoded vectors for *chunk_ids* from the shard's embedding table.

        Without *model_version*, the most recently written vector per chunk wins.
        Corrupt payloads are logged and left out.
        """
        if not chunk_ids:
            return {}
        table = paired_embeddings_table(_table_name(shard))
        placeholders = ",".join("?" * len(chunk_ids))
        sql = (
            f"SELECT chunk_id, vector FROM {table} "  # noqa: S608
            f"WHERE chunk_id IN ({placeholders})"
        )
        params: list = list(chunk_ids)
        if model_version is not None:
            sql += " AND model_version = ?"
            params.append(model_version)
        sql += " ORDER BY created_at, rowid"

        vectors: dict[str, list[float]] = {}
        for row in self._conn.execute(sql, params).fetchall():
            try:
                vectors[row["chunk_id"]] = decode_and_decompress_array(row["vector"])
            except StorageError as exc:
                logger.warning("Skipping embedding for %s: %s", row["chunk_id"], exc)
        return vectors

    # ------------------------------------------------------------------
    # Retrieval scans
    # ------------------------------------------------------------------

    def find_similar_chunks_in_shard(
        self,
        shard: ShardInfo | str,
        query_vector: Sequence[float],
        language: str | None = None,
        limit: int = 10,
        model_version: str | None = None,
    ) -> list[ScoredChunk]:
        """Cosine-similarity scan of one shard.

        Collects up to *limit* rows passing the language filter (storage
        order), fetches their embeddings in one query, scores them, drops
        zero scores and returns the best *limit* in descending order.
        """
        if not query_vector or limit <= 0:
            return []
        table = _table_name(shard)

        candidates: list[Chunk] = []
        for row in self._conn.execute(f"SELECT * FROM {table} ORDER BY rowid"):  # noqa: S608
            chunk = _row_to_chunk(row)
            if not _language_ok(chunk, language):
                continue
            candidates.append(chunk)
            if len(candidates) >= limit:
                break

        vectors = self.get_embeddings(table, [c.id for c in candidates], model_version)
        scored: list[ScoredChunk] = []
        for chunk in candidates:
            vector = vectors.get(chunk.id)
            if vector is None:
                continue
            score = cosine_similarity(query_vector, vector)
            if score > 0:
                scored.append(ScoredChunk(chunk=chunk, score=score, shard=table))

        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[:limit]

    def find_keyword_matches_in_shard(
        self,
        shard: ShardInfo | str,
        keywords: Sequence[str],
        language: str | None = None,
        limit: int = 10,
    ) -> list[ScoredChunk]:
        """Substring scan of one shard.

        A row matches when its lowercased content contains any keyword.
        """
        terms = [k.lower() for k in keywords if k and k.strip()]
        if not terms or limit <= 0:
            return []
        table = _table_name(shard)

        scored: list[ScoredChunk] = []
        for row in self._conn.execute(f"SELECT * FROM {table} ORDER BY rowid"):  # noqa: S608
            matched = match_keywords(row["content"], terms)
            if not matched:
                continue
            chunk = _row_to_chunk(row)
            if not _language_ok(chunk, language):
                continue
            score = calculate_keyword_match_score(chunk.content, matched)
            scored.append(ScoredChunk(chunk=chunk, score=score, matched_keywords=matched, shard=table))

        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[:limit]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    try:
        metadata = json.loads(row["metadata"] or "{}")
    except ValueError:
        logger.warning("Chunk %s has unreadable metadata", row["id"])
        metadata = {}
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        category=row["category"],
        content=row["content"],
        metadata=metadata,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_shard(row: sqlite3.Row) -> ShardInfo:
    return ShardInfo(
        category=row["category"],
        type=row["type"],
        sheet_name=row["sheet_name"],
        shard_number=row["shard_number"],
        row_count=row["row_count"],
        last_updated=row["last_updated"],
    )
