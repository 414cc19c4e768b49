"""Markdown chunker: heading-aware splits with fixed-window fallback."""

from __future__ import annotations

import re

from sift.db.models import Chunk, Document
from sift.ingest.base import BaseChunker

# H1, H2, H3 headings at the start of a line.
_HEADING_RE = re.compile(r"^#{1,3} .+", re.MULTILINE)


class MarkdownChunker(BaseChunker):
    """Split Markdown on H1/H2/H3 heading boundaries.

    Each heading plus its body is one section; text before the first heading
    is its own section. Sections over ``chunk_size`` tokens are split with the
    fixed window. Documents without headings use the fixed window throughout.
    """

    def chunk(self, document: Document) -> list[Chunk]:
        content, language = document.content, document.language
        if not content.strip():
            return []

        sections = self._split_on_headings(content)
        if not sections:
            return self._make_chunks(document, self._split_fixed_window(content, language))

        texts: list[str] = []
        for section in sections:
            if self.count_tokens(section, language) <= self.chunk_size:
                texts.append(section)
            else:
                texts.extend(self._split_fixed_window(section, language))
        return self._make_chunks(document, texts)

    @staticmethod
    def _split_on_headings(content: str) -> list[str]:
        matches = list(_HEADING_RE.finditer(content))
        if not matches:
            return []

        sections: list[str] = []
        preamble = content[: matches[0].start()].strip()
        if preamble:
            sections.append(preamble)

        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
            section = content[match.start() : end].strip()
            if section:
                sections.append(section)
        return sections
