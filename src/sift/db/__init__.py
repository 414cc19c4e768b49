"""Sift database layer."""

from sift.db.chunk_store import ChunkStore, ScoredChunk
from sift.db.codec import compress_and_encode_array, decode_and_decompress_array
from sift.db.connection import Database
from sift.db.migrations import MIGRATIONS, run_migrations
from sift.db.repository import DocumentRepository
from sift.db.schema import initialize
from sift.db.shards import category_to_slug, ensure_shard_tables, shard_table_name

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ChunkStore",
    "ScoredChunk",
    "DocumentRepository",
    "compress_and_encode_array",
    "decode_and_decompress_array",
    "category_to_slug",
    "ensure_shard_tables",
    "shard_table_name",
]
