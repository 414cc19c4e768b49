"""Hybrid retriever: semantic (cosine) + keyword (substring) search, weighted fusion.

Pipeline per query:
  1. Cache check (SCRIPT scope, keyed on the normalized query + options)
  2. Language resolution (explicit or detected)
  3. Preprocessing + synonym expansion
  4. Semantic and keyword scans over the category's shards, run concurrently,
     each over-fetching min(limit * 2, candidate_cap) candidates
  5. Fusion:
       w_s' = w_s / (w_s + w_k)     w_k' = w_k / (w_s + w_k)
       combined = semantic * w_s' + keyword * w_k'   (missing side = 0)
     sorted by (-combined, chunk_id)
  6. Truncate to limit, enrich with document metadata + snippet
  7. Cache write (600 s)
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Sequence

from sift.cache import CacheLayer, CacheScope
from sift.config import SearchCfg
from sift.db.chunk_store import ChunkStore, ScoredChunk
from sift.db.models import ShardInfo
from sift.db.repository import DocumentRepository
from sift.errors import user_message
from sift.text.expander import QueryExpander
from sift.text.normalizer import TextNormalizer
from sift.text.scoring import extract_snippet

logger = logging.getLogger(__name__)

_DEFAULT_WEIGHTS = (0.7, 0.3)


@dataclass
class SearchOptions:
    """Per-query search options. ``None`` fields fall back to SearchCfg."""

    category: str | None = None
    language: str | None = None
    limit: int | None = None
    expand_query: bool = True
    semantic_weight: float | None = None
    keyword_weight: float | None = None
    use_cache: bool = True


@dataclass
class SearchResult:
    chunk_id: str
    document_id: str
    category: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    score: float = 0.0
    semantic_score: float = 0.0
    keyword_score: float = 0.0
    matched_keywords: list[str] = field(default_factory=list)
    title: str = ""
    path: str = ""
    format: str = ""
    language: str = ""
    snippet: str = ""
    relevance_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchResult:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class SearchResponse:
    """Result set of one search call."""

    success: bool
    query: str
    processed_query: str = ""
    language: str = ""
    expanded_terms: list[str] = field(default_factory=list)
    results: list[SearchResult] = field(default_factory=list)
    semantic_count: int = 0
    keyword_count: int = 0
    total_ms: int = 0
    cache_hit: bool = False
    error: str | None = None
    result_id: str | None = None

    @property
    def total_count(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "query": self.query,
            "processed_query": self.processed_query,
            "language": self.language,
            "expanded_terms": list(self.expanded_terms),
            "results": [r.to_dict() for r in self.results],
            "meta": {
                "total_count": self.total_count,
                "semantic_count": self.semantic_count,
                "keyword_count": self.keyword_count,
                "timing": {"total_ms": self.total_ms},
                "cache_hit": self.cache_hit,
            },
        }
        if self.result_id:
            data["result_id"] = self.result_id
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchResponse:
        meta = data.get("meta") or {}
        return cls(
            success=bool(data.get("success", False)),
            query=data.get("query", ""),
            processed_query=data.get("processed_query", ""),
            language=data.get("language", ""),
            expanded_terms=list(data.get("expanded_terms") or []),
            results=[SearchResult.from_dict(r) for r in data.get("results") or []],
            semantic_count=int(meta.get("semantic_count", 0)),
            keyword_count=int(meta.get("keyword_count", 0)),
            total_ms=int((meta.get("timing") or {}).get("total_ms", 0)),
            cache_hit=bool(meta.get("cache_hit", False)),
            error=data.get("error"),
            result_id=data.get("result_id"),
        )


# ------------------------------------------------------------------
# Fusion
# ------------------------------------------------------------------


def normalize_weights(semantic_weight: float, keyword_weight: float) -> tuple[float, float]:
    """Scale the two weights to sum to 1. Non-positive totals use 0.7 / 0.3."""
    ws = max(0.0, float(semantic_weight))
    wk = max(0.0, float(keyword_weight))
    total = ws + wk
    if total <= 0:
        return _DEFAULT_WEIGHTS
    return ws / total, wk / total


def combine_and_rank_results(
    semantic: Sequence[ScoredChunk],
    keyword: Sequence[ScoredChunk],
    semantic_weight: float = 0.7,
    keyword_weight: float = 0.3,
) -> list[SearchResult]:
    """Fuse semantic and keyword hits into one list, best first.

    A chunk found by only one method keeps that method's weighted score.
    Ties are ordered by chunk_id.
    """
    ws, wk = normalize_weights(semantic_weight, keyword_weight)

    fused: dict[str, SearchResult] = {}
    for hit in semantic:
        current = fused.get(hit.chunk.id)
        if current is None or hit.score > current.semantic_score:
            fused[hit.chunk.id] = _to_result(hit)
            fused[hit.chunk.id].semantic_score = hit.score

    for hit in keyword:
        result = fused.get(hit.chunk.id)
        if result is None:
            result = fused[hit.chunk.id] = _to_result(hit)
        if hit.score >= result.keyword_score:
            result.keyword_score = hit.score
            result.matched_keywords = list(hit.matched_keywords)

    for result in fused.values():
        result.score = result.semantic_score * ws + result.keyword_score * wk
        result.relevance_score = result.score

    return sorted(fused.values(), key=lambda r: (-r.score, r.chunk_id))


def _to_result(hit: ScoredChunk) -> SearchResult:
    chunk = hit.chunk
    return SearchResult(
        chunk_id=chunk.id,
        document_id=chunk.document_id,
        category=chunk.category,
        content=chunk.content,
        metadata=dict(chunk.metadata),
    )


# ------------------------------------------------------------------
# Engine
# ------------------------------------------------------------------


class RetrievalEngine:
    """Runs hybrid search over the chunk store.

    Args:
        chunk_store: Sharded chunk/embedding storage.
        documents: Document metadata for result enrichment.
        normalizer: Language detection and preprocessing.
        expander: Synonym expansion.
        embed_query: text → vector. When it fails, semantic search yields nothing.
        cache: Result cache; None disables caching.
        config: Search settings.
        model_version: Embedding model whose vectors are scored (None = newest).
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        documents: DocumentRepository,
        normalizer: TextNormalizer,
        expander: QueryExpander,
        embed_query: Callable[[str], list[float]] | None = None,
        cache: CacheLayer | None = None,
        config: SearchCfg | None = None,
        model_version: str | None = None,
    ) -> None:
        self._store = chunk_store
        self._documents = documents
        self._normalizer = normalizer
        self._expander = expander
        self._embed_query = embed_query
        self._cache = cache
        self.config = config or SearchCfg()
        self.model_version = model_version

    def search(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """Run a hybrid search. Never raises; failures return success=False."""
        started = time.perf_counter()
        options = options or SearchOptions()
        language = options.language or self._normalizer.default_language

        try:
            if not query or not query.strip():
                return SearchResponse(
                    success=False, query=query or "", error="Query must not be empty."
                )

            limit = options.limit or self.config.default_limit or 10
            semantic_weight = _or_default(options.semantic_weight, self.config.semantic_weight)
            keyword_weight = _or_default(options.keyword_weight, self.config.keyword_weight)

            cache_key = self._cache_key(query, options, limit, semantic_weight, keyword_weight)
            if options.use_cache and self._cache is not None:
                cached = self._cache.get(cache_key, CacheScope.SCRIPT)
                if cached is not None:
                    response = SearchResponse.from_dict(cached)
                    response.cache_hit = True
                    logger.debug("Search cache hit for %r", query)
                    return response

            if not options.language:
                language = self._normalizer.detect_language(query).language

            if options.expand_query:
                processed_query = self._normalizer.preprocess(query, language)
                expanded_terms = self._expander.expand(processed_query, language)
            else:
                processed_query = query.strip()
                expanded_terms = []

            keywords = self.query_keywords(processed_query, language, expanded_terms)
            shards = self._store.get_chunk_shards(options.category)
            fetch = min(limit * 2, self.config.candidate_cap)

            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sift-search") as pool:
                semantic_future = pool.submit(
                    self._semantic_search, processed_query, shards, options.language, fetch
                )
                keyword_future = pool.submit(
                    self._keyword_search, keywords, shards, options.language, fetch
                )
                semantic = _result_or_empty(semantic_future, "semantic")
                keyword = _result_or_empty(keyword_future, "keyword")

            fused = combine_and_rank_results(semantic, keyword, semantic_weight, keyword_weight)
            results = self._enrich(fused[:limit], keywords)

            response = SearchResponse(
                success=True,
                query=query,
                processed_query=processed_query,
                language=language,
                expanded_terms=expanded_terms,
                results=results,
                semantic_count=len(semantic),
                keyword_count=len(keyword),
                total_ms=_elapsed_ms(started),
            )
            if options.use_cache and self._cache is not None:
                self._cache.set(
                    cache_key, response.to_dict(), self.config.cache_ttl_seconds, CacheScope.SCRIPT
                )
            logger.info(
                "Search %r (%s): %d result(s) in %d ms", query, language, len(results), response.total_ms
            )
            return response

        except Exception as exc:
            logger.error("Search failed for %r: %s", query, exc, exc_info=True)
            return SearchResponse(
                success=False,
                query=query or "",
                language=language,
                total_ms=_elapsed_ms(started),
                error=user_message(exc, language).message,
            )

    # ------------------------------------------------------------------
    # Retrieval channels
    # ------------------------------------------------------------------

    def query_keywords(self, processed_query: str, language: str, expanded_terms: Sequence[str]) -> list[str]:
        """Lowercased query tokens longer than one character plus expansion terms, deduplicated."""
        tokens = [t.lower() for t in self._normalizer.tokenize(processed_query, language)]
        keywords = [t for t in tokens if len(t) > 1 and t.strip()]
        keywords.extend(t.lower() for t in expanded_terms if t and t.strip())
        return list(dict.fromkeys(keywords))

    def _semantic_search(
        self, processed_query: str, shards: list[ShardInfo], language: str | None, limit: int
    ) -> list[ScoredChunk]:
        if self._embed_query is None or not shards:
            return []
        try:
            query_vector = self._embed_query(processed_query)
        except Exception as exc:
            logger.warning("Query embedding failed; semantic search skipped: %s", exc)
            return []

        hits: list[ScoredChunk] = []
        for shard in shards:
            try:
                hits.extend(
                    self._store.find_similar_chunks_in_shard(
                        shard, query_vector, language=language, limit=limit, model_version=self.model_version
                    )
                )
            except Exception as exc:
                logger.warning("Semantic scan of %s failed: %s", shard.sheet_name, exc)
        hits.sort(key=lambda h: (-h.score, h.chunk.id))
        return hits[:limit]

    def _keyword_search(
        self, keywords: list[str], shards: list[ShardInfo], language: str | None, limit: int
    ) -> list[ScoredChunk]:
        if not keywords or not shards:
            return []
        hits: list[ScoredChunk] = []
        for shard in shards:
            try:
                hits.extend(
                    self._store.find_keyword_matches_in_shard(
                        shard, keywords, language=language, limit=limit
                    )
                )
            except Exception as exc:
                logger.warning("Keyword scan of %s failed: %s", shard.sheet_name, exc)
        hits.sort(key=lambda h: (-h.score, h.chunk.id))
        return hits[:limit]

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def _enrich(self, results: list[SearchResult], keywords: list[str]) -> list[SearchResult]:
        try:
            documents = self._documents.get_documents(r.document_id for r in results)
        except Exception as exc:
            logger.warning("Document metadata unavailable for enrichment: %s", exc)
            documents = {}

        for result in results:
            doc = documents.get(result.document_id)
            if doc is not None:
                result.title = doc.title
                result.path = doc.path
                result.format = doc.format
                result.language = doc.language
                result.category = doc.category or result.category
            else:
                result.title = str(result.metadata.get("title", ""))
                result.language = str(result.metadata.get("language", ""))
            result.snippet = extract_snippet(result.content, keywords)
            result.relevance_score = result.score
        return results

    # ------------------------------------------------------------------
    # Stored result sets
    # ------------------------------------------------------------------

    def remember(self, response: SearchResponse) -> str | None:
        """Store the full *response* and return its result_id (None without a cache)."""
        if self._cache is None:
            return None
        result_id = uuid.uuid4().hex
        response.result_id = result_id
        self._cache.set(
            f"search_results:{result_id}",
            response.to_dict(),
            self.config.result_ttl_seconds,
            CacheScope.SCRIPT,
        )
        return result_id

    def search_results_for(self, result_id: str) -> SearchResponse | None:
        """Return a stored result set by id, or None once it has expired."""
        if self._cache is None or not result_id:
            return None
        data = self._cache.get(f"search_results:{result_id}", CacheScope.SCRIPT)
        return SearchResponse.from_dict(data) if data else None

    @staticmethod
    def _cache_key(
        query: str, options: SearchOptions, limit: int, semantic_weight: float, keyword_weight: float
    ) -> str:
        normalized = " ".join(query.lower().split())
        payload = json.dumps(
            [
                normalized,
                options.category,
                options.language,
                limit,
                options.expand_query,
                round(semantic_weight, 4),
                round(keyword_weight, 4),
            ],
            ensure_ascii=False,
        )
        return "search:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


def _or_default(value: float | None, default: float) -> float:
    return default if value is None else value


def _result_or_empty(future: Future, channel: str) -> list[ScoredChunk]:
    try:
        return future.result()
    except Exception as exc:
        logger.warning("%s retrieval failed: %s", channel.capitalize(), exc)
        return []


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
