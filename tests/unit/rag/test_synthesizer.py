"""Tests for the response synthesizer."""

from __future__ import annotations

import random
from unittest.mock import MagicMock

import pytest

from sift.config import GenerationCfg
from sift.db.models import Template
from sift.db.repository import DocumentRepository
from sift.generate.selection import TemplateCatalog
from sift.rag.retriever import SearchResponse, SearchResult
from sift.rag.synthesizer import GenerateOptions, ResponseSynthesizer
from sift.text.expander import QueryExpander
from sift.text.normalizer import TextNormalizer


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _response(results=None, query="予算 変更", language="ja") -> SearchResponse:
    return SearchResponse(
        success=True, query=query, processed_query=query, language=language, results=list(results or [])
    )


def _result(content="予算を変更するには:\n1. 管理画面を開く\n2. 予算を入力する", title="予算の変更"):
    return SearchResult(
        chunk_id="budget_chunk_0",
        document_id="budget",
        category="billing",
        content=content,
        title=title,
        snippet=content,
        score=0.9,
        relevance_score=0.9,
        matched_keywords=["予算"],
    )


@pytest.fixture
def catalog(tmp_db):
    return TemplateCatalog(DocumentRepository(tmp_db))


def _synth(catalog, model=None, enhance=False, categories=None) -> ResponseSynthesizer:
    return ResponseSynthesizer(
        catalog,
        TextNormalizer("ja"),
        QueryExpander(),
        model=model,
        config=GenerationCfg(enhance=enhance),
        list_categories=(lambda: categories) if categories is not None else None,
        rng=random.Random(3),
    )


# ------------------------------------------------------------------
# Failure and no-results paths
# ------------------------------------------------------------------


def test_missing_search_response_fails(catalog):
    result = _synth(catalog).generate_response(None, "q")
    assert not result.success
    assert result.error


def test_unsuccessful_search_response_fails(catalog):
    result = _synth(catalog).generate_response(SearchResponse(success=False, query="q"), "q")
    assert not result.success


def test_no_results_message_ja(catalog):
    result = _synth(catalog, categories=["billing", "ads"]).generate_response(_response(), "予算 変更")

    assert result.success
    assert result.response_type == "no_results"
    assert "予算 変更" in result.content
    assert "次の検索語をお試しください" in result.content
    assert "• " in result.content
    assert "billing、ads" in result.content
    assert result.template_id == "builtin_no_results_ja"


def test_no_results_message_en(catalog):
    result = _synth(catalog).generate_response(_response(query="change budget", language="en"), "change budget")
    assert result.success
    assert 'No results were found for "change budget"' in result.content
    assert "Try one of these searches:" in result.content


def test_category_list_failure_is_tolerated(catalog):
    synth = ResponseSynthesizer(
        catalog, TextNormalizer("ja"), QueryExpander(), list_categories=MagicMock(side_effect=RuntimeError)
    )
    assert synth.generate_response(_response(), "予算").success


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------


def test_standard_builtin_render(catalog):
    result = _synth(catalog).generate_response(_response([_result()]), "予算 変更")

    assert result.success
    assert result.template_id == "builtin_standard_ja"
    assert result.content.startswith("「予算 変更」についての情報です。")
    assert "1. 予算の変更" in result.content
    assert "手順:" in result.content
    assert "• 管理画面を開く" in result.content
    assert result.language == "ja"
    assert not result.enhanced


def test_stored_template_preferred(tmp_db):
    repo = DocumentRepository(tmp_db)
    repo.save_template(
        Template(id="t1", name="Short", type="standard", language="ja",
                 content="{query}: {result_count}件 {param.suffix}")
    )
    synth = _synth(TemplateCatalog(repo))
    result = synth.generate_response(
        _response([_result()]), "予算", GenerateOptions(custom_params={"suffix": "以上"})
    )
    assert result.content == "予算: 1件 以上"
    assert result.template_id == "t1"


def test_explicit_template_id(catalog):
    result = _synth(catalog).generate_response(
        _response([_result()]), "予算", GenerateOptions(template_id="builtin_detailed_ja")
    )
    assert result.content.startswith("# 予算")
    assert result.template_id == "builtin_detailed_ja"


def test_email_with_recipient(catalog):
    result = _synth(catalog).generate_response(
        _response([_result()]),
        "予算",
        GenerateOptions(response_type="email", custom_params={"recipient": "山田"}),
    )
    assert result.content.startswith("山田 様")
    assert result.response_type == "email"


def test_render_failure_falls_back(catalog, monkeypatch):
    monkeypatch.setattr(
        "sift.rag.synthesizer.render_template", MagicMock(side_effect=RuntimeError("boom"))
    )
    result = _synth(catalog).generate_response(_response([_result()]), "予算")
    assert result.success
    assert result.template_id == "fallback"
    assert "予算" in result.content


# ------------------------------------------------------------------
# Model steps
# ------------------------------------------------------------------


def test_enhancement_replaces_draft(catalog):
    model = MagicMock()
    model.complete.return_value = "改善された回答"
    result = _synth(catalog, model=model, enhance=True).generate_response(_response([_result()]), "予算")
    assert result.content == "改善された回答"
    assert result.enhanced
    model.complete.assert_called_once()


def test_enhancement_option_overrides_config(catalog):
    model = MagicMock()
    result = _synth(catalog, model=model, enhance=True).generate_response(
        _response([_result()]), "予算", GenerateOptions(enhance=False)
    )
    assert not result.enhanced
    model.complete.assert_not_called()


def test_enhancement_failure_keeps_draft(catalog):
    model = MagicMock()
    model.complete.side_effect = RuntimeError("quota")
    result = _synth(catalog, model=model, enhance=True).generate_response(_response([_result()]), "予算")
    assert result.success
    assert not result.enhanced
    assert "予算の変更" in result.content


def test_translation_to_requested_language(catalog):
    model = MagicMock()
    model.translate.return_value = "How to change the budget"
    result = _synth(catalog, model=model).generate_response(
        _response([_result()]), "予算", GenerateOptions(language="en")
    )
    assert result.translated
    assert result.language == "en"
    assert result.content == "How to change the budget"
    model.translate.assert_called_once()
    assert model.translate.call_args.args[1] == "en"


def test_translation_without_model_keeps_original(catalog):
    result = _synth(catalog).generate_response(_response([_result()]), "予算", GenerateOptions(language="en"))
    assert not result.translated
    assert result.language == "ja"
