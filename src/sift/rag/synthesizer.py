"""Response synthesizer: search results + query → rendered, optionally polished answer.

Steps:
  1. Validate the search response (the only hard failure)
  2. No results → guidance message (suggested queries, category list)
  3. Build the response context from the top 5 results
  4. Select a template (catalog or built-in default) and render it
  5. Optional enhancement by the generative model (drafts ≤ max_enhance_chars)
  6. Optional translation when the requested language differs from the query's
Anything failing after step 1 degrades to a best-effort answer with success=True.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable

from sift.config import GenerationCfg
from sift.generate.selection import ResponseType, TemplateCatalog, select_template
from sift.generate.templates import render_template
from sift.rag.context import build_response_context, suggest_queries
from sift.rag.llm_client import LANGUAGE_NAMES, ModelClient
from sift.rag.retriever import SearchResponse, SearchResult
from sift.text.expander import QueryExpander
from sift.text.normalizer import TextNormalizer

logger = logging.getLogger(__name__)

_FALLBACK_TEXT = {
    "ja": "「{query}」に関する回答を作成できませんでした。検索結果を直接ご確認ください。",
    "en": "We could not build an answer for \"{query}\". Please review the search results directly.",
}

_ENHANCE_SYSTEM = (
    "You improve draft answers for a help center. Rewrite the draft so it is clear, "
    "complete and well structured, using ONLY facts found in the draft or the reference "
    "documents. Do not invent features, numbers, URLs or steps. Keep any list structure. "
    "Write in {language}. Reply with the improved answer only."
)


@dataclass
class GenerateOptions:
    response_type: ResponseType | str = ResponseType.STANDARD
    language: str | None = None  # output language; None = query language
    template_id: str | None = None
    custom_params: dict[str, Any] = field(default_factory=dict)
    enhance: bool | None = None  # None = generation.enhance


@dataclass
class GeneratedResponse:
    success: bool
    content: str
    template_id: str = ""
    template_name: str = ""
    response_type: str = ResponseType.STANDARD.value
    language: str = ""
    generation_time_ms: int = 0
    enhanced: bool = False
    translated: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["error"] is None:
            del data["error"]
        return data


class ResponseSynthesizer:
    """Turns a SearchResponse into a templated answer.

    Args:
        catalog: Template catalog.
        normalizer: Language detection for the query.
        expander: Synonyms for related-query suggestions.
        model: Generative model client; None disables enhancement and translation.
        config: Generation settings.
        list_categories: Returns the known categories for the no-results message.
        rng: Random source for suggestion shuffling.
    """

    def __init__(
        self,
        catalog: TemplateCatalog,
        normalizer: TextNormalizer,
        expander: QueryExpander,
        model: ModelClient | None = None,
        config: GenerationCfg | None = None,
        list_categories: Callable[[], list[str]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._catalog = catalog
        self._normalizer = normalizer
        self._expander = expander
        self._model = model
        self.config = config or GenerationCfg()
        self._list_categories = list_categories
        self._rng = rng or random.Random()

    def generate_response(
        self,
        search_response: SearchResponse | None,
        query: str,
        options: GenerateOptions | None = None,
    ) -> GeneratedResponse:
        started = time.perf_counter()
        options = options or GenerateOptions()
        response_type = ResponseType.parse(options.response_type)

        if search_response is None or not search_response.success:
            return GeneratedResponse(
                success=False,
                content="",
                response_type=response_type.value,
                error="Search results are missing or unsuccessful.",
            )

        query = query or search_response.query
        query_language = search_response.language or self._normalizer.detect_language(query).language
        target_language = options.language or query_language

        try:
            if not search_response.results:
                result = self._no_results(query, query_language, options)
            else:
                result = self._render(search_response, query, query_language, response_type, options)

            if self._should_enhance(options, result.content, search_response.results):
                result = self._enhance(result, search_response.results, query_language)

            if target_language != query_language:
                result = self._translate(result, target_language)
            else:
                result.language = query_language
        except Exception as exc:
            logger.error("Response generation failed for %r: %s", query, exc, exc_info=True)
            lang = target_language if target_language in _FALLBACK_TEXT else "en"
            result = GeneratedResponse(
                success=True,
                content=_FALLBACK_TEXT[lang].format(query=query),
                template_id="fallback",
                template_name="Fallback",
                response_type=response_type.value,
                language=lang,
            )

        result.generation_time_ms = int((time.perf_counter() - started) * 1000)
        return result

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _base_variables(self, query: str, processed_query: str, language: str, params: dict) -> dict[str, Any]:
        now = datetime.now()
        return {
            "query": query,
            "processed_query": processed_query,
            "language": language,
            "timestamp": now.strftime("%Y-%m-%d %H:%M:%S"),
            "date": now.strftime("%Y-%m-%d"),
            "time": now.strftime("%H:%M"),
            "param": dict(params or {}),
        }

    def _render(
        self,
        search_response: SearchResponse,
        query: str,
        language: str,
        response_type: ResponseType,
        options: GenerateOptions,
    ) -> GeneratedResponse:
        results = search_response.results[: min(5, len(search_response.results))]
        context = build_response_context(results, query, language, self._expander, self._rng)

        template = select_template(
            self._catalog.all(),
            response_type,
            language,
            query=query,
            categories=list(context.categorized_documents),
            step_count=context.step_count,
            template_id=options.template_id,
        )

        variables = self._base_variables(
            query, search_response.processed_query or query, language, options.custom_params
        )
        variables["context"] = context.to_dict()
        variables["results"] = [_result_for_template(r) for r in results]
        variables["result_count"] = len(search_response.results)

        content = render_template(template.content, variables).strip()
        logger.debug("Rendered template %s (%d chars)", template.id, len(content))
        return GeneratedResponse(
            success=True,
            content=content,
            template_id=template.id,
            template_name=template.name,
            response_type=response_type.value,
            language=language,
        )

    def _no_results(self, query: str, language: str, options: GenerateOptions) -> GeneratedResponse:
        categories: list[str] = []
        if self._list_categories is not None:
            try:
                categories = list(self._list_categories())
            except Exception as exc:
                logger.warning("Category list unavailable for no-results message: %s", exc)

        suggestions = suggest_queries(query, language, self._expander, self._rng)
        template = select_template(
            self._catalog.all(),
            ResponseType.NO_RESULTS,
            language,
            query=query,
            template_id=options.template_id,
        )
        variables = self._base_variables(query, query, language, options.custom_params)
        variables["suggestions"] = suggestions
        variables["categories"] = categories
        variables["context"] = {"related_queries": suggestions}

        return GeneratedResponse(
            success=True,
            content=render_template(template.content, variables).strip(),
            template_id=template.id,
            template_name=template.name,
            response_type=ResponseType.NO_RESULTS.value,
            language=language,
        )

    # ------------------------------------------------------------------
    # Model steps
    # ------------------------------------------------------------------

    def _should_enhance(self, options: GenerateOptions, content: str, results: list[SearchResult]) -> bool:
        enabled = self.config.enhance if options.enhance is None else options.enhance
        return (
            bool(enabled)
            and self._model is not None
            and bool(results)
            and 0 < len(content) <= self.config.max_enhance_chars
        )

    def _enhance(self, result: GeneratedResponse, results: list[SearchResult], language: str) -> GeneratedResponse:
        references = "\n\n".join(
            f"[{i}] {r.title}\n{r.content}" for i, r in enumerate(results[:5], start=1)
        )
        try:
            improved = self._model.complete(  # type: ignore[union-attr]
                [
                    {
                        "role": "system",
                        "content": _ENHANCE_SYSTEM.format(language=LANGUAGE_NAMES.get(language, language)),
                    },
                    {
                        "role": "user",
                        "content": f"Draft:\n{result.content}\n\nReference documents:\n{references}",
                    },
                ],
                max_tokens=1024,
                temperature=0.2,
            ).strip()
        except Exception as exc:
            logger.warning("Enhancement failed, keeping draft: %s", exc)
            return result
        if improved:
            result.content = improved
            result.enhanced = True
        return result

    def _translate(self, result: GeneratedResponse, target_language: str) -> GeneratedResponse:
        if self._model is None:
            logger.info("No model client; response left in %s", result.language)
            return result
        try:
            translated = self._model.translate(result.content, target_language)
        except Exception as exc:
            logger.warning("Translation to %s failed, keeping original: %s", target_language, exc)
            return result
        if translated:
            result.content = translated
            result.language = target_language
            result.translated = True
        return result


def _result_for_template(result: SearchResult) -> dict[str, Any]:
    return {
        "title": result.title,
        "content": result.content,
        "snippet": result.snippet,
        "category": result.category,
        "document_id": result.document_id,
        "score": round(result.relevance_score, 4),
        "matched_keywords": list(result.matched_keywords),
    }
