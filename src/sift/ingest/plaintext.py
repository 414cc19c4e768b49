"""Plain text chunker: fixed window with overlap."""

from __future__ import annotations

from sift.db.models import Chunk, Document
from sift.ingest.base import BaseChunker


class PlainTextChunker(BaseChunker):
    """Split plain text into fixed-size windows with overlap (default 512 tokens / 10 %)."""

    def chunk(self, document: Document) -> list[Chunk]:
        if not document.content.strip():
            return []
        segments = self._split_fixed_window(document.content, document.language)
        return self._make_chunks(document, segments)
