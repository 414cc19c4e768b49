"""Repository for documents, templates, bilingual help pairs and logs.

Chunk and embedding rows live in sharded tables and are handled by
sift.db.chunk_store.ChunkStore.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Iterable

from sift.db.models import Document, HelpPair, Template


class DocumentRepository:
    """Data access layer for the non-sharded Sift tables.

    Wraps an open sqlite3.Connection; every write commits immediately. The
    connection is owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def save_document(self, document: Document) -> None:
        """Insert or replace *document* by id. created_at is preserved on update."""
        self._conn.execute(
            """
            INSERT INTO documents (id, title, content, category, language, path, format, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title        = excluded.title,
                content      = excluded.content,
                category     = excluded.category,
                language     = excluded.language,
                path         = excluded.path,
                format       = excluded.format,
                metadata     = excluded.metadata,
                last_updated = datetime('now')
            """,
            (
                document.id,
                document.title,
                document.content,
                document.category,
                document.language,
                document.path,
                document.format,
                json.dumps(document.metadata, ensure_ascii=False),
            ),
        )
        self._conn.commit()

    def get_document(self, document_id: str) -> Document | None:
        """Return a document by id, or None if not found."""
        row = self._conn.execute(
            "SELECT * FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None

    def get_documents(self, document_ids: Iterable[str]) -> dict[str, Document]:
        """Batch-load documents. Missing ids are absent from the result.

        Args:
            document_ids: Ids to load (duplicates are ignored).

        Returns:
            {document_id: Document}
        """
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        rows = self._conn.execute(
            f"SELECT * FROM documents WHERE id IN ({placeholders})", ids  # noqa: S608
        ).fetchall()
        return {r["id"]: _row_to_document(r) for r in rows}

    def list_documents(self, category: str | None = None) -> list[Document]:
        """Return documents ordered by creation time, optionally filtered by category."""
        if category is None:
            rows = self._conn.execute("SELECT * FROM documents ORDER BY created_at, id").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM documents WHERE category = ? ORDER BY created_at, id", (category,)
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def list_categories(self) -> list[str]:
        """Return distinct document categories, sorted."""
        rows = self._conn.execute(
            "SELECT DISTINCT category FROM documents ORDER BY category"
        ).fetchall()
        return [r["category"] for r in rows]

    def delete_document(self, document_id: str) -> None:
        """Delete a document row. Does not cascade to chunk shards."""
        self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        self._conn.commit()

    def count_documents(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def save_template(self, template: Template) -> None:
        """Insert or replace a template by id."""
        self._conn.execute(
            """
            INSERT INTO templates (id, name, type, content, language, category, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name       = excluded.name,
                type       = excluded.type,
                content    = excluded.content,
                language   = excluded.language,
                category   = excluded.category,
                metadata   = excluded.metadata,
                updated_at = datetime('now')
            """,
            (
                template.id,
                template.name,
                template.type,
                template.content,
                template.language,
                template.category,
                json.dumps(template.metadata, ensure_ascii=False),
            ),
        )
        self._conn.commit()

    def get_template(self, template_id: str) -> Template | None:
        row = self._conn.execute(
            "SELECT * FROM templates WHERE id = ?", (template_id,)
        ).fetchone()
        return _row_to_template(row) if row else None

    def list_templates(
        self, type: str | None = None, language: str | None = None
    ) -> list[Template]:
        """Return templates ordered by id, optionally filtered by type and language."""
        sql = "SELECT * FROM templates"
        clauses: list[str] = []
        params: list[str] = []
        if type is not None:
            clauses.append("type = ?")
            params.append(type)
        if language is not None:
            clauses.append("language = ?")
            params.append(language)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id"
        return [_row_to_template(r) for r in self._conn.execute(sql, params).fetchall()]

    def delete_template(self, template_id: str) -> None:
        self._conn.execute("DELETE FROM templates WHERE id = ?", (template_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Bilingual help pairs
    # ------------------------------------------------------------------

    def add_help_pair(self, ja_document_id: str, en_document_id: str) -> None:
        """Link a Japanese document to its English counterpart. Idempotent."""
        self._conn.execute(
            "INSERT OR IGNORE INTO help_pairs (ja_document_id, en_document_id) VALUES (?, ?)",
            (ja_document_id, en_document_id),
        )
        self._conn.commit()

    def get_counterpart_id(self, document_id: str) -> str | None:
        """Return the id of the other-language document paired with *document_id*."""
        row = self._conn.execute(
            """
            SELECT en_document_id AS other FROM help_pairs WHERE ja_document_id = ?
            UNION ALL
            SELECT ja_document_id AS other FROM help_pairs WHERE en_document_id = ?
            LIMIT 1
            """,
            (document_id, document_id),
        ).fetchone()
        return row["other"] if row else None

    def list_help_pairs(self) -> list[HelpPair]:
        rows = self._conn.execute(
            "SELECT ja_document_id, en_document_id, created_at FROM help_pairs ORDER BY created_at"
        ).fetchall()
        return [
            HelpPair(
                ja_document_id=r["ja_document_id"],
                en_document_id=r["en_document_id"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def recent_logs(self, limit: int = 50) -> list[dict]:
        """Return the newest log rows first."""
        rows = self._conn.execute(
            "SELECT * FROM logs ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [
            {
                "created_at": r["created_at"],
                "level": r["level"],
                "severity": r["severity"],
                "logger": r["logger"],
                "message": r["message"],
                "context": json.loads(r["context"] or "{}"),
            }
            for r in rows
        ]

    def count_logs(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM logs").fetchone()[0]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        category=row["category"],
        language=row["language"],
        path=row["path"],
        format=row["format"],
        metadata=json.loads(row["metadata"] or "{}"),
        last_updated=row["last_updated"],
        created_at=row["created_at"],
    )


def _row_to_template(row: sqlite3.Row) -> Template:
    return Template(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        content=row["content"],
        language=row["language"],
        category=row["category"],
        metadata=json.loads(row["metadata"] or "{}"),
    )
