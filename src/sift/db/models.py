"""Domain models for the Sift database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Document:
    id: str
    title: str
    content: str
    category: str = "general"
    language: str = "ja"
    path: str = ""
    format: str = "text"
    metadata: dict[str, Any] = field(default_factory=dict)
    last_updated: str | None = None
    created_at: str | None = None


@dataclass
class Chunk:
    """A bounded slice of a document's text; the unit of embedding and retrieval.

    ``id`` encodes ``{document_id}_chunk_{index}``.
    """

    id: str
    document_id: str
    category: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None

    @staticmethod
    def make_id(document_id: str, index: int) -> str:
        return f"{document_id}_chunk_{index}"

    @property
    def language(self) -> str | None:
        return self.metadata.get("language")


@dataclass
class Embedding:
    chunk_id: str
    document_id: str
    category: str
    vector: list[float]
    model_version: str
    created_at: str | None = None


@dataclass
class Template:
    """A response template; ``content`` holds the template DSL source."""

    id: str
    name: str
    type: str
    content: str
    language: str = "ja"
    category: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def categories(self) -> list[str]:
        """Template categories (comma-separated in storage)."""
        return [c.strip() for c in self.category.split(",") if c.strip()]


@dataclass
class ShardInfo:
    """One row of index_mapping: a physical chunk or embedding table."""

    category: str
    type: str  # chunks | embeddings
    sheet_name: str
    shard_number: int = 1
    row_count: int = 0
    last_updated: str | None = None


@dataclass
class HelpPair:
    ja_document_id: str
    en_document_id: str
    created_at: str | None = None
