"""Template catalog, built-in default templates and template selection.

Selection order:
  1. explicit template id
  2. catalog filtered by response type (falls back to "standard")
  3. narrowed by language, then by category overlap (each step only if it
     leaves at least one candidate)
  4. per-type tie-break heuristics (email / prep / detailed)
  5. built-in default when the catalog has nothing usable
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Sequence

from sift.cache import CacheLayer, CacheScope
from sift.db.models import Template
from sift.db.repository import DocumentRepository

logger = logging.getLogger(__name__)


class ResponseType(str, Enum):
    STANDARD = "standard"
    EMAIL = "email"
    PREP = "prep"
    DETAILED = "detailed"
    NO_RESULTS = "no_results"

    @classmethod
    def parse(cls, value: str | ResponseType | None) -> ResponseType:
        """Lenient conversion; unknown values become STANDARD."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "standard").strip().lower())
        except ValueError:
            logger.warning("Unknown response type %r, using standard", value)
            return cls.STANDARD


# ---------------------------------------------------------------------------
# Built-in templates
# ---------------------------------------------------------------------------

_BUILTIN_SOURCES: dict[ResponseType, dict[str, str]] = {
    ResponseType.STANDARD: {
        "en": (
            "Here is what we found for \"{query}\".\n\n"
            "{for s in context.relevant_snippets}{index}. {s.title}\n{s.snippet}\n\n{endfor}"
            "{if exists context.procedures}Steps:\n"
            "{for p in context.procedures}{p.title}\n{format:list(p.steps)}\n{endfor}\n{endif}"
            "{if exists context.related_queries}Related searches:\n{format:list(context.related_queries)}{endif}"
        ),
        "ja": (
            "「{query}」についての情報です。\n\n"
            "{for s in context.relevant_snippets}{index}. {s.title}\n{s.snippet}\n\n{endfor}"
            "{if exists context.procedures}手順:\n"
            "{for p in context.procedures}{p.title}\n{format:list(p.steps)}\n{endfor}\n{endif}"
            "{if exists context.related_queries}関連する検索:\n{format:list(context.related_queries)}{endif}"
        ),
    },
    ResponseType.EMAIL: {
        "en": (
            "{if exists param.recipient}Dear {param.recipient},{else}Hello,{endif}\n\n"
            "Thank you for your question about \"{query}\".\n\n"
            "{for s in context.relevant_snippets}{s.snippet}\n\n{endfor}"
            "{if exists context.procedures}Please follow these steps:\n"
            "{for p in context.procedures}{format:list(p.steps)}\n{endfor}\n{endif}"
            "If you have any further questions, please let us know.\n\n"
            "{if exists param.signature}{param.signature}{else}Best regards{endif}"
        ),
        "ja": (
            "{if exists param.recipient}{param.recipient} 様{else}お問い合わせいただいたお客様{endif}\n\n"
            "「{query}」についてお問い合わせいただきありがとうございます。\n\n"
            "{for s in context.relevant_snippets}{s.snippet}\n\n{endfor}"
            "{if exists context.procedures}以下の手順をご確認ください。\n"
            "{for p in context.procedures}{format:list(p.steps)}\n{endfor}\n{endif}"
            "ご不明な点がございましたら、お気軽にお問い合わせください。\n\n"
            "{if exists param.signature}{param.signature}{else}よろしくお願いいたします。{endif}"
        ),
    },
    ResponseType.PREP: {
        "en": (
            "Point: {if exists context.relevant_snippets}{context.relevant_snippets[0].snippet}{endif}\n\n"
            "Reason: {if exists context.key_concepts}"
            "{for c in context.key_concepts}{c.name}{if exists c.description}: {c.description}{endif}\n{endfor}{endif}\n"
            "Example: {if exists context.procedures}{context.procedures[0].title}\n"
            "{format:list(context.procedures[0].steps)}{else}"
            "{if exists context.relevant_snippets[1]}{context.relevant_snippets[1].snippet}{endif}{endif}\n\n"
            "Point: {if exists context.action_items}{context.action_items[0]}{else}See the documents above for \"{query}\".{endif}"
        ),
        "ja": (
            "結論: {if exists context.relevant_snippets}{context.relevant_snippets[0].snippet}{endif}\n\n"
            "理由: {if exists context.key_concepts}"
            "{for c in context.key_concepts}{c.name}{if exists c.description}: {c.description}{endif}\n{endfor}{endif}\n"
            "具体例: {if exists context.procedures}{context.procedures[0].title}\n"
            "{format:list(context.procedures[0].steps)}{else}"
            "{if exists context.relevant_snippets[1]}{context.relevant_snippets[1].snippet}{endif}{endif}\n\n"
            "まとめ: {if exists context.action_items}{context.action_items[0]}{else}「{query}」については上記の資料をご確認ください。{endif}"
        ),
    },
    ResponseType.DETAILED: {
        "en": (
            "# {query}\n\n"
            "{if exists context.topics}Topics: {for t in context.topics}{if index > 1}, {endif}{t}{endfor}\n\n{endif}"
            "{for s in context.relevant_snippets}## {s.title} ({s.category})\n{s.snippet}\n\n{endfor}"
            "{if exists context.key_concepts}## Key concepts\n"
            "{for c in context.key_concepts}- {c.name}{if exists c.description}: {c.description}{endif}\n{endfor}\n{endif}"
            "{if exists context.procedures}## Procedures\n"
            "{for p in context.procedures}### {p.title}\n{format:list(p.steps)}\n\n{endfor}{endif}"
            "{if exists context.action_items}## Action items\n{format:list(context.action_items)}\n\n{endif}"
            "Generated {timestamp}"
        ),
        "ja": (
            "# {query}\n\n"
            "{if exists context.topics}トピック: {for t in context.topics}{if index > 1}、{endif}{t}{endfor}\n\n{endif}"
            "{for s in context.relevant_snippets}## {s.title}（{s.category}）\n{s.snippet}\n\n{endfor}"
            "{if exists context.key_concepts}## 重要な概念\n"
            "{for c in context.key_concepts}- {c.name}{if exists c.description}: {c.description}{endif}\n{endfor}\n{endif}"
            "{if exists context.procedures}## 手順\n"
            "{for p in context.procedures}### {p.title}\n{format:list(p.steps)}\n\n{endfor}{endif}"
            "{if exists context.action_items}## 対応事項\n{format:list(context.action_items)}\n\n{endif}"
            "作成日時 {timestamp}"
        ),
    },
    ResponseType.NO_RESULTS: {
        "en": (
            "No results were found for \"{query}\".\n\n"
            "{if exists suggestions}Try one of these searches:\n{format:list(suggestions)}\n{endif}"
            "{if exists categories}\nAvailable categories: "
            "{for c in categories}{if index > 1}, {endif}{c}{endfor}\n{endif}"
        ),
        "ja": (
            "「{query}」に一致する情報が見つかりませんでした。\n\n"
            "{if exists suggestions}次の検索語をお試しください:\n{format:list(suggestions)}\n{endif}"
            "{if exists categories}\nカテゴリ一覧: "
            "{for c in categories}{if index > 1}、{endif}{c}{endfor}\n{endif}"
        ),
    },
}


def builtin_template(response_type: ResponseType, language: str) -> Template:
    """Return the hardcoded default template for *response_type* in *language*."""
    sources = _BUILTIN_SOURCES[response_type]
    lang = language if language in sources else "en"
    return Template(
        id=f"builtin_{response_type.value}_{lang}",
        name=f"Built-in {response_type.value} ({lang})",
        type=response_type.value,
        content=sources[lang],
        language=lang,
        metadata={"builtin": True},
    )


# ---------------------------------------------------------------------------
# Query classification
# ---------------------------------------------------------------------------

_URGENT_RE = re.compile(
    r"urgent|asap|immediately|right away|emergency|critical|至急|緊急|すぐに|今すぐ|早急",
    re.IGNORECASE,
)
_TROUBLESHOOTING_RE = re.compile(
    r"error|not working|fail|issue|problem|broken|can't|cannot|unable|"
    r"エラー|できない|表示されない|不具合|失敗|問題",
    re.IGNORECASE,
)
_EXPLANATION_RE = re.compile(
    r"what is|why|how does|explain|difference|meaning|とは|なぜ|仕組み|違い|意味", re.IGNORECASE
)
_POLICY_RE = re.compile(
    r"policy|rule|guideline|allowed|prohibited|terms|ポリシー|規約|ガイドライン|禁止|審査", re.IGNORECASE
)
_HIGH_DETAIL_RE = re.compile(
    r"detail|in depth|comprehensive|step by step|all|詳しく|詳細|すべて|全て|手順", re.IGNORECASE
)


def classify_urgency(query: str) -> str:
    return "urgent" if _URGENT_RE.search(query) else "normal"


def classify_complexity(step_count: int) -> str:
    if step_count > 10:
        return "complex"
    if step_count > 5:
        return "moderate"
    return "simple"


def classify_prep_kind(query: str) -> str:
    if _TROUBLESHOOTING_RE.search(query):
        return "troubleshooting"
    if _EXPLANATION_RE.search(query):
        return "explanation"
    if _POLICY_RE.search(query):
        return "policy"
    return "general"


def classify_detail_level(query: str) -> str:
    return "high" if _HIGH_DETAIL_RE.search(query) else "standard"


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def _narrow(candidates: list[Template], keep) -> list[Template]:
    narrowed = [t for t in candidates if keep(t)]
    return narrowed or candidates


def _pick_email(candidates: list[Template], query: str, step_count: int) -> Template:
    urgency = classify_urgency(query)
    complexity = classify_complexity(step_count)
    for t in candidates:
        if t.metadata.get("urgency") == urgency and t.metadata.get("complexity") == complexity:
            return t
    for t in candidates:
        if t.metadata.get("urgency") == urgency or t.metadata.get("complexity") == complexity:
            return t
    return candidates[0]


def _pick_prep(candidates: list[Template], query: str) -> Template:
    kind = classify_prep_kind(query)
    for t in candidates:
        if t.metadata.get("prep_type") == kind:
            return t
    return candidates[0]


def _pick_detailed(candidates: list[Template], query: str, primary_category: str | None) -> Template:
    if primary_category:
        for t in candidates:
            if primary_category in t.categories:
                return t
    level = classify_detail_level(query)
    for t in candidates:
        if t.metadata.get("detail_level") == level:
            return t
    return candidates[0]


def select_template(
    templates: Sequence[Template],
    response_type: ResponseType,
    language: str,
    *,
    query: str = "",
    categories: Sequence[str] = (),
    step_count: int = 0,
    template_id: str | None = None,
) -> Template:
    """Choose the template to render.

    Args:
        templates: Catalog contents.
        response_type: Requested response type.
        language: Language of the response.
        query: User query (drives the per-type heuristics).
        categories: Categories of the evidence documents, primary first.
        step_count: Total procedure steps found in the evidence.
        template_id: Explicit template id; wins when it exists.
    """
    if template_id:
        for t in templates:
            if t.id == template_id:
                return t
        if template_id.startswith("builtin_"):
            for rt in ResponseType:
                for lang in _BUILTIN_SOURCES[rt]:
                    if template_id == f"builtin_{rt.value}_{lang}":
                        return builtin_template(rt, lang)
        logger.warning("Template %s not found, selecting by type", template_id)

    candidates = [t for t in templates if t.type == response_type.value]
    if not candidates and response_type is not ResponseType.NO_RESULTS:
        candidates = [t for t in templates if t.type == ResponseType.STANDARD.value]
    if not candidates:
        return builtin_template(response_type, language)

    candidates = _narrow(candidates, lambda t: t.language == language)
    if categories:
        wanted = set(categories)
        candidates = _narrow(candidates, lambda t: bool(wanted & set(t.categories)))

    if response_type is ResponseType.EMAIL:
        return _pick_email(candidates, query, step_count)
    if response_type is ResponseType.PREP:
        return _pick_prep(candidates, query)
    if response_type is ResponseType.DETAILED:
        return _pick_detailed(candidates, query, categories[0] if categories else None)
    return candidates[0]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

_CATALOG_KEY = "templates:all"


class TemplateCatalog:
    """TTL-cached view over the templates table.

    Args:
        repository: Source of stored templates.
        cache: Cache for the catalog listing (SCRIPT scope); None reads through.
        ttl_seconds: Lifetime of the cached listing.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        cache: CacheLayer | None = None,
        ttl_seconds: int = 3600,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self.ttl_seconds = ttl_seconds

    def all(self) -> list[Template]:
        if self._cache is None:
            return self._repo.list_templates()
        rows = self._cache.get_or_compute(
            _CATALOG_KEY,
            lambda: [_template_to_dict(t) for t in self._repo.list_templates()],
            self.ttl_seconds,
            CacheScope.SCRIPT,
        )
        return [Template(**row) for row in rows or []]

    def get(self, template_id: str) -> Template | None:
        return next((t for t in self.all() if t.id == template_id), None)

    def list_templates(self, response_type: str | None = None, language: str | None = None) -> list[Template]:
        """Stored templates, plus the built-in default of every type with no stored template."""
        stored = self.all()
        present = {t.type for t in stored}
        builtins = [
            builtin_template(rt, language or "ja")
            for rt in ResponseType
            if rt.value not in present
        ]
        items = stored + builtins
        if response_type:
            items = [t for t in items if t.type == response_type]
        if language:
            items = [t for t in items if t.language == language]
        return items

    def save(self, template: Template) -> None:
        ResponseType(template.type)  # reject unknown types
        self._repo.save_template(template)
        self.invalidate()

    def invalidate(self) -> None:
        if self._cache is not None:
            self._cache.remove(_CATALOG_KEY, CacheScope.SCRIPT)


def _template_to_dict(t: Template) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "type": t.type,
        "content": t.content,
        "language": t.language,
        "category": t.category,
        "metadata": t.metadata,
    }
