"""Embedding writer: batched, rate-limited embedding generation for stored chunks.

Batches of ``embedding.batch_size`` texts are sent one at a time with a fixed
``embedding.batch_delay_seconds`` pause in between to stay under the
provider's quota. Transient provider errors are retried inside the LiteLLM
call (``num_retries``); a batch that still fails is logged and skipped so the
rest of the document is embedded.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from sift.config import EmbeddingCfg
from sift.db.chunk_store import ChunkStore
from sift.db.models import Chunk, Embedding
from sift.rag.llm_client import ModelClient

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingReport:
    requested: int = 0
    written: int = 0
    failed_batches: list[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.written == self.requested


class EmbeddingWriter:
    """Embed chunks and persist the vectors next to them.

    Args:
        chunk_store: Destination for the embeddings.
        model: Model client used for embedding calls.
        config: Batch size and inter-batch delay.
        sleep: Pause function (injectable for tests).
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        model: ModelClient,
        config: EmbeddingCfg | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = chunk_store
        self._model = model
        self._config = config or EmbeddingCfg()
        self._sleep = sleep

    def write(self, chunks: Sequence[Chunk]) -> EmbeddingReport:
        """Embed *chunks* and store the vectors under the model's name."""
        report = EmbeddingReport(requested=len(chunks))
        size = max(1, self._config.batch_size)

        for batch_no, start in enumerate(range(0, len(chunks), size)):
            if start:
                self._sleep(self._config.batch_delay_seconds)
            batch = list(chunks[start : start + size])
            try:
                vectors = self._model.embed_texts([c.content for c in batch])
            except Exception as exc:
                logger.error("Embedding batch %d failed (%d chunks): %s", batch_no, len(batch), exc)
                report.failed_batches.append(batch_no)
                continue

            if len(vectors) != len(batch):
                logger.error(
                    "Embedding batch %d returned %d vectors for %d chunks", batch_no, len(vectors), len(batch)
                )
                report.failed_batches.append(batch_no)
                continue

            report.written += self._store.save_embeddings(
                Embedding(
                    chunk_id=chunk.id,
                    document_id=chunk.document_id,
                    category=chunk.category,
                    vector=list(vector),
                    model_version=self._config.model,
                )
                for chunk, vector in zip(batch, vectors)
            )

        logger.info("Embedded %d/%d chunk(s)", report.written, report.requested)
        return report
