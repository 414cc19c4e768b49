"""Response context: the structured evidence a template is rendered against.

Built from the top search results (at most 5):
  topics              categories + metadata topics + frequent content words
  key_concepts        metadata concepts + matched keywords (50-char window, relevance 0.7)
  categorized_documents  {category: [document_id, ...]}
  procedures          numbered / bulleted list blocks with >= 2 items
  action_items        sentences with imperative cue phrases
  relevant_snippets   top 3 snippets
  related_queries     3 query suggestions (shuffled)
"""

from __future__ import annotations

import logging
import random
import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Sequence

from sift.rag.retriever import SearchResult
from sift.text.expander import QueryExpander
from sift.text.normalizer import EN_STOPWORDS, preprocess, tokenize

logger = logging.getLogger(__name__)

MAX_CONTEXT_RESULTS = 5
CONCEPT_RADIUS = 50
MATCHED_KEYWORD_RELEVANCE = 0.7

_NUMBERED_RE = re.compile(r"^\s*(?:\d+|[０-９]+)\s*[.)．、）]\s*(?P<text>\S.*)$")
_BULLET_RE = re.compile(r"^\s*[-*•・●]\s*(?P<text>\S.*)$")

_ACTION_CUES: dict[str, re.Pattern[str]] = {
    "en": re.compile(
        r"\b(please|must|should|need to|make sure|be sure to|click|select|go to|enter|contact|"
        r"open|navigate|choose)\b",
        re.IGNORECASE,
    ),
    "ja": re.compile(
        r"(してください|ください|必要があります|必ず|クリック|選択|確認して|お問い合わせ|入力|設定して)"
    ),
}
_SENTENCE_SPLIT: dict[str, re.Pattern[str]] = {
    "en": re.compile(r"(?<=[.!?])\s+|\n+"),
    "ja": re.compile(r"(?<=[。！？!?])|\n+"),
}

_QUERY_VARIANTS: dict[str, tuple[str, ...]] = {
    "ja": ("{q}の方法", "{q}の設定", "{q}とは", "{q}できない場合"),
    "en": ("how to {q}", "{q} settings", "what is {q}", "{q} troubleshooting"),
}


@dataclass
class ResponseContext:
    topics: list[str] = field(default_factory=list)
    key_concepts: list[dict[str, Any]] = field(default_factory=list)
    categorized_documents: dict[str, list[str]] = field(default_factory=dict)
    procedures: list[dict[str, Any]] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)
    relevant_snippets: list[dict[str, Any]] = field(default_factory=list)
    related_queries: list[str] = field(default_factory=list)

    @property
    def primary_category(self) -> str | None:
        return next(iter(self.categorized_documents), None)

    @property
    def step_count(self) -> int:
        return sum(len(p["steps"]) for p in self.procedures)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["primary_category"] = self.primary_category
        data["step_count"] = self.step_count
        return data


def _dedupe(items: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(i for i in items if i))


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


def _frequent_words(contents: Sequence[str], language: str, n: int = 5) -> list[str]:
    counter: Counter[str] = Counter()
    for content in contents:
        for token in tokenize(preprocess(content, language), language):
            word = token.lower()
            if len(word) > 3 and word not in EN_STOPWORDS and not word.isdigit():
                counter[word] += 1
    return [w for w, _ in counter.most_common(n)]


def _metadata_list(metadata: dict[str, Any], *keys: str) -> list[Any]:
    values: list[Any] = []
    for key in keys:
        value = metadata.get(key)
        if isinstance(value, list):
            values.extend(value)
        elif isinstance(value, str) and value:
            values.extend(v.strip() for v in value.split(","))
    return values


def extract_procedures(content: str, source: str = "", title: str = "") -> list[dict[str, Any]]:
    """Return list blocks (numbered or bulleted) with at least two items.

    A block's title is the non-empty line just above it, else *title*.
    """
    procedures: list[dict[str, Any]] = []
    lines = content.splitlines()
    block: list[str] = []
    block_kind: str | None = None
    heading = ""
    previous = ""

    def flush() -> None:
        if len(block) >= 2:
            procedures.append(
                {
                    "title": heading or title,
                    "steps": list(block),
                    "step_count": len(block),
                    "document_id": source,
                }
            )

    for line in lines:
        numbered = _NUMBERED_RE.match(line)
        bullet = None if numbered else _BULLET_RE.match(line)
        kind = "numbered" if numbered else "bullet" if bullet else None
        if kind is not None and kind == block_kind:
            block.append((numbered or bullet).group("text").strip())  # type: ignore[union-attr]
            continue
        flush()
        block = []
        block_kind = kind
        if kind is not None:
            heading = previous.strip().rstrip(":：")
            block.append((numbered or bullet).group("text").strip())  # type: ignore[union-attr]
        if line.strip():
            previous = line
    flush()
    return procedures


def extract_action_items(content: str, language: str) -> list[str]:
    cue = _ACTION_CUES.get(language, _ACTION_CUES["en"])
    splitter = _SENTENCE_SPLIT.get(language, _SENTENCE_SPLIT["en"])
    items = []
    for sentence in splitter.split(content):
        sentence = sentence.strip()
        if sentence and cue.search(sentence):
            items.append(sentence)
    return items


def _concept_window(content: str, keyword: str) -> str:
    idx = content.lower().find(keyword.lower())
    if idx == -1:
        return ""
    start = max(0, idx - CONCEPT_RADIUS)
    end = min(len(content), idx + len(keyword) + CONCEPT_RADIUS)
    return content[start:end].strip()


def suggest_queries(
    query: str,
    language: str,
    expander: QueryExpander,
    rng: random.Random | None = None,
    count: int = 3,
) -> list[str]:
    """Return up to *count* reformulations of *query*.

    Prefix/suffix variants plus one synonym substitution per keyword, shuffled.
    """
    q = " ".join(query.split())
    if not q:
        return []
    candidates = [v.format(q=q) for v in _QUERY_VARIANTS.get(language, _QUERY_VARIANTS["en"])]
    for keyword in tokenize(preprocess(q, language), language):
        if len(keyword) < 2:
            continue
        synonyms = expander.expand(keyword, language)
        if synonyms:
            pattern = re.compile(re.escape(keyword), re.IGNORECASE)
            candidates.append(pattern.sub(synonyms[0], q, count=1))
    candidates = [c for c in _dedupe(candidates) if c != q]
    (rng or random).shuffle(candidates)
    return candidates[:count]


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def build_response_context(
    results: Sequence[SearchResult],
    query: str,
    language: str,
    expander: QueryExpander,
    rng: random.Random | None = None,
) -> ResponseContext:
    """Build the render context from the top search results."""
    top = list(results[:MAX_CONTEXT_RESULTS])
    ctx = ResponseContext()

    topics: list[str] = []
    concepts: dict[str, dict[str, Any]] = {}
    actions: list[str] = []

    for result in top:
        meta = result.metadata or {}
        topics.append(result.category)
        topics.extend(str(t) for t in _metadata_list(meta, "topics", "tags"))

        for concept in _metadata_list(meta, "key_concepts", "concepts"):
            if isinstance(concept, dict) and concept.get("name"):
                concepts.setdefault(str(concept["name"]), dict(concept))
            elif isinstance(concept, str) and concept:
                concepts.setdefault(concept, {"name": concept, "description": "", "relevance": 1.0})

        for keyword in result.matched_keywords:
            concepts.setdefault(
                keyword,
                {
                    "name": keyword,
                    "description": _concept_window(result.content, keyword),
                    "relevance": MATCHED_KEYWORD_RELEVANCE,
                },
            )

        docs = ctx.categorized_documents.setdefault(result.category or "general", [])
        if result.document_id not in docs:
            docs.append(result.document_id)

        ctx.procedures.extend(extract_procedures(result.content, result.document_id, result.title))
        actions.extend(extract_action_items(result.content, language))

    topics.extend(_frequent_words([r.content for r in top], language))
    ctx.topics = _dedupe(topics)
    ctx.key_concepts = list(concepts.values())
    ctx.action_items = _dedupe(actions)
    ctx.relevant_snippets = [
        {
            "title": r.title,
            "snippet": r.snippet or r.content[:200],
            "document_id": r.document_id,
            "category": r.category,
            "score": round(r.relevance_score or r.score, 4),
        }
        for r in top[:3]
    ]
    ctx.related_queries = suggest_queries(query, language, expander, rng)
    logger.debug(
        "Context: %d topic(s), %d concept(s), %d procedure(s)",
        len(ctx.topics),
        len(ctx.key_concepts),
        len(ctx.procedures),
    )
    return ctx
