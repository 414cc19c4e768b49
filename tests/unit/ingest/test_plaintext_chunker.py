"""Tests for the plain text chunker."""

from __future__ import annotations

import pytest

from sift.db.models import Document
from sift.ingest.plaintext import PlainTextChunker


def _doc(content: str, language: str = "en") -> Document:
    return Document(id="guide", title="Guide", content=content, category="billing", language=language, path="billing/guide.txt")


def test_short_text_is_one_chunk():
    chunks = PlainTextChunker().chunk(_doc("How to change the budget."))
    assert len(chunks) == 1
    chunk = chunks[0]
    assert chunk.id == "guide_chunk_0"
    assert chunk.document_id == "guide"
    assert chunk.category == "billing"
    assert chunk.metadata == {"language": "en", "title": "Guide", "chunk_index": 0, "path": "billing/guide.txt"}


def test_empty_text_yields_nothing():
    assert PlainTextChunker().chunk(_doc("   \n ")) == []


def test_fixed_window_with_overlap():
    # 10 tokens * 4 chars = 40-char windows, 4-char overlap
    text = "".join(chr(ord("a") + i % 26) for i in range(100))
    chunks = PlainTextChunker(chunk_size=10, overlap=0.1).chunk(_doc(text))
    assert [len(c.content) for c in chunks] == [40, 40, 28]
    assert chunks[0].content[-4:] == chunks[1].content[:4]
    assert [c.id for c in chunks] == ["guide_chunk_0", "guide_chunk_1", "guide_chunk_2"]


def test_japanese_uses_two_chars_per_token():
    text = "予算" * 50  # 100 chars
    chunks = PlainTextChunker(chunk_size=10, overlap=0.0).chunk(_doc(text, language="ja"))
    assert [len(c.content) for c in chunks] == [20] * 5
    assert chunks[0].metadata["language"] == "ja"


@pytest.mark.parametrize("kwargs", [{"chunk_size": 0}, {"overlap": 1.0}, {"overlap": -0.1}])
def test_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        PlainTextChunker(**kwargs)
