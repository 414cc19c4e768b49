"""Document ingestion: extract → save document → chunk → save chunks → embed.

Re-ingesting a file replaces its document row, chunks and embeddings.
Chunk writes are not transactional with the document write: a partial
failure leaves the document saved and is reported as a short chunk count.
Embedding generation runs inline (``wait=True``) or on a daemon thread
that opens its own storage handle.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from sift.cache import CacheLayer, CacheScope
from sift.config import ChunkingCfg
from sift.db.chunk_store import ChunkStore
from sift.db.models import Chunk, Document
from sift.db.repository import DocumentRepository
from sift.errors import NotFoundError, ValidationError
from sift.ingest.base import BaseChunker
from sift.ingest.embedding_writer import EmbeddingReport, EmbeddingWriter
from sift.ingest.extractors import SUPPORTED_EXTENSIONS, extract
from sift.ingest.markdown import MarkdownChunker
from sift.ingest.plaintext import PlainTextChunker
from sift.text.normalizer import TextNormalizer

logger = logging.getLogger(__name__)

WriterFactory = Callable[[], AbstractContextManager[EmbeddingWriter]]


@dataclass
class IngestReport:
    document_id: str
    title: str
    category: str
    language: str
    chunk_count: int = 0
    saved_chunks: int = 0
    embedding_status: str = "skipped"  # skipped | scheduled | completed | partial | failed
    embeddings_written: int = 0
    thread: threading.Thread | None = field(default=None, repr=False)

    @property
    def partial(self) -> bool:
        return self.saved_chunks < self.chunk_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "title": self.title,
            "category": self.category,
            "language": self.language,
            "chunk_count": self.chunk_count,
            "saved_chunks": self.saved_chunks,
            "embedding_status": self.embedding_status,
            "embeddings_written": self.embeddings_written,
        }


def document_id_for(file_id: str) -> str:
    """Derive a stable document id from a file identifier (relative path)."""
    normalized = file_id.replace("\\", "/").strip("/")
    slug = re.sub(r"[^A-Za-z0-9]+", "_", normalized).strip("_").lower()
    if slug and normalized.isascii():
        return slug
    digest = hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:12]
    return f"{slug}_{digest}" if slug else f"doc_{digest}"


class IngestPipeline:
    """Turns files under *root* into stored documents, chunks and embeddings.

    Args:
        root: Directory that ``file_id`` values are resolved against.
        repository: Document table access.
        chunk_store: Chunk shard storage.
        normalizer: Language detection when no language is given.
        chunking: Chunk size / overlap.
        embedding_writer: Writer used for inline embedding (``wait=True``).
        writer_factory: Context manager yielding a writer with its own
            connection, used by the background embedding thread.
        cache: Search results are invalidated after every ingest.
    """

    def __init__(
        self,
        root: Path,
        repository: DocumentRepository,
        chunk_store: ChunkStore,
        normalizer: TextNormalizer,
        chunking: ChunkingCfg | None = None,
        embedding_writer: EmbeddingWriter | None = None,
        writer_factory: WriterFactory | None = None,
        cache: CacheLayer | None = None,
    ) -> None:
        self.root = Path(root)
        self._repo = repository
        self._store = chunk_store
        self._normalizer = normalizer
        self._chunking = chunking or ChunkingCfg()
        self._writer = embedding_writer
        self._writer_factory = writer_factory
        self._cache = cache

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, file_id: str) -> Path:
        """Resolve *file_id* inside the root directory.

        Raises:
            ValidationError: If the path escapes the root directory.
            NotFoundError: If the file does not exist.
        """
        root = self.root.resolve()
        path = (root / file_id).resolve()
        if root != path and root not in path.parents:
            raise ValidationError(f"file_id '{file_id}' is outside the document root")
        if not path.is_file():
            raise NotFoundError(f"Document file '{file_id}' not found")
        return path

    def process_document(
        self,
        file_id: str,
        *,
        language: str | None = None,
        category: str | None = None,
        generate_embeddings: bool = True,
        wait: bool = False,
        pair_with: str | None = None,
    ) -> IngestReport:
        """Ingest one file.

        Args:
            file_id: Path relative to the root directory.
            language: Document language; detected from the text when omitted.
            category: Document category; defaults to the parent directory name.
            generate_embeddings: Embed the new chunks.
            wait: Embed inline instead of on a background thread.
            pair_with: Id of the other-language version of this document.
        """
        path = self.resolve(file_id)
        extracted = extract(path)
        if not extracted.content.strip():
            raise ValidationError(f"Document '{file_id}' contains no extractable text")

        rel = path.relative_to(self.root.resolve()).as_posix()
        if language is None:
            language = self._normalizer.detect_language(extracted.content[:1000]).language
        if not category:
            category = path.parent.name if path.parent != self.root.resolve() else "general"

        document = Document(
            id=document_id_for(rel),
            title=extracted.title,
            content=extracted.content,
            category=category,
            language=language,
            path=rel,
            format=extracted.format,
            metadata={"source": rel},
        )
        self._repo.save_document(document)

        removed = self._store.delete_document_chunks(document.id)
        if removed:
            logger.info("Replacing %d existing chunk(s) of %s", removed, document.id)

        chunks = self._chunker_for(document.format).chunk(document)
        saved = self._store.save_chunks(chunks)
        report = IngestReport(
            document_id=document.id,
            title=document.title,
            category=category,
            language=language,
            chunk_count=len(chunks),
            saved_chunks=saved,
        )
        if report.partial:
            logger.warning(
                "Partial ingest of %s: %d of %d chunk(s) saved", document.id, saved, len(chunks)
            )

        if pair_with:
            self._link_pair(document, pair_with)

        if self._cache is not None:
            self._cache.remove_by_prefix("search:", CacheScope.SCRIPT)

        if generate_embeddings and chunks:
            self._embed(chunks, report, wait)
        logger.info("Ingested %s (%s, %s): %d chunk(s)", rel, category, language, saved)
        return report

    def ingest_directory(self, directory: Path | None = None, **kwargs: Any) -> list[IngestReport]:
        """Ingest every supported file below *directory* (default: root)."""
        base = Path(directory) if directory else self.root
        reports: list[IngestReport] = []
        for path in sorted(p for p in base.rglob("*") if p.suffix.lower() in SUPPORTED_EXTENSIONS):
            file_id = path.resolve().relative_to(self.root.resolve()).as_posix()
            reports.append(self.process_document(file_id, **kwargs))
        return reports

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _chunker_for(self, fmt: str) -> BaseChunker:
        cls = MarkdownChunker if fmt in ("markdown", "html") else PlainTextChunker
        return cls(chunk_size=self._chunking.chunk_size, overlap=self._chunking.overlap)

    def _link_pair(self, document: Document, other_id: str) -> None:
        other = self._repo.get_document(other_id)
        if other is None:
            raise NotFoundError(f"Paired document '{other_id}' not found")
        if document.language == "ja":
            self._repo.add_help_pair(document.id, other.id)
        else:
            self._repo.add_help_pair(other.id, document.id)

    def _embed(self, chunks: list[Chunk], report: IngestReport, wait: bool) -> None:
        if wait:
            if self._writer is None:
                logger.warning("No embedding writer configured; embeddings skipped")
                return
            _apply(report, self._writer.write(chunks))
            return

        if self._writer_factory is None:
            logger.warning("No background embedding writer configured; embeddings skipped")
            return

        def run() -> None:
            try:
                with self._writer_factory() as writer:  # type: ignore[misc]
                    _apply(report, writer.write(chunks))
            except Exception as exc:
                report.embedding_status = "failed"
                logger.error("Background embedding of %s failed: %s", report.document_id, exc)

        thread = threading.Thread(target=run, name=f"sift-embed-{report.document_id}", daemon=True)
        report.embedding_status = "scheduled"
        report.thread = thread
        thread.start()


def _apply(report: IngestReport, result: EmbeddingReport) -> None:
    report.embeddings_written = result.written
    if result.complete:
        report.embedding_status = "completed"
    elif result.written:
        report.embedding_status = "partial"
    else:
        report.embedding_status = "failed"
