"""Tests for the forward-only migration runner and schema initialization."""

from __future__ import annotations

import pytest

from sift.db.connection import Database
from sift.db.migrations import MIGRATIONS, run_migrations
from sift.db.schema import initialize


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone() is not None


def _columns(conn, table: str) -> set[str]:
    return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


@pytest.mark.parametrize(
    "table",
    ["documents", "index_mapping", "templates", "help_pairs", "logs", "cache_entries", "properties"],
)
def test_initialize_creates_table(tmp_db, table):
    assert _table_exists(tmp_db, table)


def test_index_mapping_columns(tmp_db):
    assert _columns(tmp_db, "index_mapping") == {
        "sheet_name",
        "category",
        "type",
        "shard_number",
        "row_count",
        "last_updated",
    }


def test_shard_tables_not_created_by_migrations(tmp_db):
    rows = tmp_db.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name LIKE 'chunks_%'"
    ).fetchall()
    assert rows == []


def test_initialize_preserves_data(tmp_path):
    with Database(tmp_path / "x.db") as conn:
        initialize(conn)
        conn.execute("INSERT INTO documents (id, title) VALUES ('d1', 'Doc')")
        conn.commit()
        initialize(conn)
        assert conn.execute("SELECT title FROM documents").fetchone()[0] == "Doc"
