"""Sift ingest pipeline: text extraction, chunkers, embedding writer."""

from sift.ingest.base import BaseChunker
from sift.ingest.embedding_writer import EmbeddingReport, EmbeddingWriter
from sift.ingest.extractors import SUPPORTED_EXTENSIONS, ExtractedText, extract
from sift.ingest.markdown import MarkdownChunker
from sift.ingest.pipeline import IngestPipeline, IngestReport, document_id_for
from sift.ingest.plaintext import PlainTextChunker

__all__ = [
    "BaseChunker",
    "EmbeddingReport",
    "EmbeddingWriter",
    "ExtractedText",
    "IngestPipeline",
    "IngestReport",
    "MarkdownChunker",
    "PlainTextChunker",
    "SUPPORTED_EXTENSIONS",
    "document_id_for",
    "extract",
]
