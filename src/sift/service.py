"""SiftService: composition root wiring storage, cache, retrieval and synthesis.

One service per project directory. The cache layer is constructed here once
and injected into every component that needs it.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sift.cache import CacheLayer
from sift.config import SiftConfig, load_config
from sift.db.chunk_store import ChunkStore
from sift.db.connection import Database
from sift.db.repository import DocumentRepository
from sift.db.schema import initialize
from sift.errors import ErrorHandler, Severity
from sift.generate.selection import TemplateCatalog
from sift.ingest.embedding_writer import EmbeddingWriter
from sift.ingest.pipeline import IngestPipeline, document_id_for
from sift.observability import SqliteLogHandler, alert_notifier
from sift.rag.llm_client import ModelClient
from sift.rag.retriever import RetrievalEngine
from sift.rag.synthesizer import ResponseSynthesizer
from sift.text.expander import QueryExpander
from sift.text.normalizer import TextNormalizer

logger = logging.getLogger(__name__)

DB_FILENAME = ".sift.db"


class SiftService:
    """All Sift components for one project.

    Args:
        root: Project directory; ingested file ids are relative to it.
        config: Loaded configuration (defaults to ``load_config(root)``).
        db_path: SQLite file (default ``<root>/.sift.db``).
        model: Model client; built from the config when omitted.
        persist_logs: Mirror WARNING+ log records into the ``logs`` table.
    """

    def __init__(
        self,
        root: Path,
        config: SiftConfig | None = None,
        *,
        db_path: Path | None = None,
        model: ModelClient | None = None,
        persist_logs: bool = False,
    ) -> None:
        self.started_at = time.time()
        self.root = Path(root)
        self.config = config or load_config(self.root)
        self.db_path = Path(db_path) if db_path else self.root / DB_FILENAME
        self._db = Database(self.db_path)
        self.conn = self._db.connect()
        initialize(self.conn)

        cfg = self.config
        self.cache = CacheLayer(
            self.conn,
            hot_ttl_seconds=cfg.cache.hot_ttl_seconds,
            shared_max_ttl_seconds=cfg.cache.shared_max_ttl_seconds,
            max_ttl_seconds=cfg.cache.max_ttl_seconds,
        )
        self.repository = DocumentRepository(self.conn)
        self.chunk_store = ChunkStore(
            self.conn,
            self.cache,
            max_rows_per_shard=cfg.storage.max_rows_per_shard,
            location_ttl_seconds=cfg.cache.location_ttl_seconds,
        )
        self.model = model or ModelClient(cfg.embedding, cfg.generation)
        self.normalizer = TextNormalizer(
            cfg.language.default,
            cfg.language.supported,
            detector=self.model.detect_language if cfg.language.detect_with_model else None,
        )
        self.expander = QueryExpander(cfg.synonyms)
        self.errors = ErrorHandler(
            max_retries=cfg.errors.max_retries,
            backoff_base=cfg.errors.backoff_base,
            notifier=alert_notifier(cfg.errors.alert),
        )

        self.retriever = RetrievalEngine(
            self.chunk_store,
            self.repository,
            self.normalizer,
            self.expander,
            embed_query=self.model.embed_query,
            cache=self.cache,
            config=cfg.search,
            model_version=cfg.embedding.model,
        )
        self.catalog = TemplateCatalog(
            self.repository, self.cache, ttl_seconds=cfg.cache.template_ttl_seconds
        )
        self.synthesizer = ResponseSynthesizer(
            self.catalog,
            self.normalizer,
            self.expander,
            model=self.model,
            config=cfg.generation,
            list_categories=self.repository.list_categories,
        )
        self.pipeline = IngestPipeline(
            self.root,
            self.repository,
            self.chunk_store,
            self.normalizer,
            chunking=cfg.chunking,
            embedding_writer=EmbeddingWriter(self.chunk_store, self.model, cfg.embedding),
            writer_factory=self._worker_writer,
            cache=self.cache,
        )
        self.errors.register_retry_handler("process_document", self._retry_process_document)
        self.errors.register_restore_handler("process_document", self._restore_process_document)

        self._log_conn = None
        self._log_handler: SqliteLogHandler | None = None
        if persist_logs:
            self._log_conn = self._db.connect()
            self._log_handler = SqliteLogHandler(self._log_conn, max_rows=cfg.storage.log_max_rows)
            logging.getLogger("sift").addHandler(self._log_handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._log_handler is not None:
            logging.getLogger("sift").removeHandler(self._log_handler)
            self._log_handler = None
        if self._log_conn is not None:
            self._log_conn.close()
            self._log_conn = None
        self.conn.close()

    def __enter__(self) -> SiftService:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @contextmanager
    def _worker_writer(self) -> Iterator[EmbeddingWriter]:
        """Embedding writer on a dedicated connection for background threads."""
        conn = self._db.connect()
        try:
            store = ChunkStore(conn, max_rows_per_shard=self.config.storage.max_rows_per_shard)
            yield EmbeddingWriter(store, self.model, self.config.embedding)
        finally:
            conn.close()

    def _retry_process_document(self, context: dict[str, Any]) -> Any:
        return self.pipeline.process_document(context["file_id"], **context.get("options", {}))

    def _restore_process_document(self, context: dict[str, Any]) -> Any:
        """Drop everything stored for the document, then rebuild it from the source file."""
        rel = self.pipeline.resolve(context["file_id"]).relative_to(self.root.resolve()).as_posix()
        document_id = document_id_for(rel)
        removed = self.chunk_store.delete_document_chunks(document_id)
        logger.warning("Restoring %s from %s (%d chunk row(s) dropped)", document_id, rel, removed)
        return self.pipeline.process_document(context["file_id"], **context.get("options", {}))

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self, detailed: bool = False) -> dict[str, Any]:
        """Component status booleans; *detailed* adds row counts and resource usage."""
        components = {
            "database": self._check(self._database_ok, Severity.CRITICAL),
            "cache": self._check(self._cache_roundtrip),
            "templates": self._check(lambda: bool(self.catalog.list_templates())),
            "model_configured": bool(self.config.embedding.model and self.config.generation.model),
        }
        data: dict[str, Any] = {
            "status": "ok" if all(components.values()) else "degraded",
            "components": components,
        }
        if detailed:
            data["counts"] = {
                "documents": self._safe(self.repository.count_documents, 0),
                "chunks_by_shard": self._safe(self.chunk_store.row_counts, {}),
                "logs": self._safe(self.repository.count_logs, 0),
            }
            data["cache"] = self._safe(self.cache.stats, {})
            data["resources"] = self._resources()
        return data

    def _database_ok(self) -> bool:
        return self.conn.execute("SELECT 1").fetchone() is not None

    def _cache_roundtrip(self) -> bool:
        key = "health:roundtrip"
        self.cache.set(key, True, 5)
        ok = self.cache.get(key) is True
        self.cache.remove(key)
        return ok

    def _check(self, check, severity: Severity = Severity.LOW) -> bool:
        try:
            return bool(check())
        except Exception as exc:
            self.errors.handle(exc, operation="health_check", severity=severity)
            return False

    @staticmethod
    def _safe(fn, default):
        try:
            return fn()
        except Exception as exc:
            logger.warning("Health detail unavailable: %s", exc)
            return default

    def _resources(self) -> dict[str, Any]:
        return {
            "db_size_mb": round(self._db.size_bytes() / (1024 * 1024), 3),
            "uptime_seconds": int(time.time() - self.started_at),
            "pid": os.getpid(),
            "cpu_count": os.cpu_count(),
        }
