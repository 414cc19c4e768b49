"""Base chunker interface for Sift documents."""

from __future__ import annotations

from abc import ABC, abstractmethod

from sift.db.models import Chunk, Document

# Characters per model token, by language (matches estimate_token_count).
_CHARS_PER_TOKEN: dict[str, int] = {"ja": 2}
_DEFAULT_CHARS_PER_TOKEN = 4


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses implement ``chunk()`` and may use ``_split_fixed_window()``
    and ``_make_chunks()`` for the fixed-window path.

    Window sizes are in tokens and converted to characters per language:
    2 characters per token for Japanese, 4 otherwise.
    """

    def __init__(self, chunk_size: int = 512, overlap: float = 0.10) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @abstractmethod
    def chunk(self, document: Document) -> list[Chunk]:
        """Split *document*'s content into ordered Chunk objects."""

    @staticmethod
    def chars_per_token(language: str) -> int:
        return _CHARS_PER_TOKEN.get(language, _DEFAULT_CHARS_PER_TOKEN)

    def count_tokens(self, text: str, language: str = "en") -> int:
        return max(1, len(text) // self.chars_per_token(language))

    def _split_fixed_window(self, text: str, language: str = "en") -> list[str]:
        """Split *text* into fixed-window segments with overlap.

        Segments are stripped; empty segments are omitted.
        """
        if not text.strip():
            return []

        char_size = self.chunk_size * self.chars_per_token(language)
        overlap_chars = int(char_size * self.overlap)
        step = max(1, char_size - overlap_chars)

        segments: list[str] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + char_size, length)
            segment = text[pos:end].strip()
            if segment:
                segments.append(segment)
            if end >= length:
                break
            pos += step

        return segments

    def _make_chunks(self, document: Document, texts: list[str]) -> list[Chunk]:
        """Convert *texts* into Chunks with ids ``{document_id}_chunk_{i}``."""
        return [
            Chunk(
                id=Chunk.make_id(document.id, i),
                document_id=document.id,
                category=document.category,
                content=t,
                metadata={
                    "language": document.language,
                    "title": document.title,
                    "chunk_index": i,
                    "path": document.path,
                },
            )
            for i, t in enumerate(x for x in texts if x.strip())
        ]
