"""Tests for the request dispatcher and its response envelopes."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from sift.api.dispatcher import handle_request, parse_bool
from sift.config import ADMIN_KEY_ENV
from sift.errors import StorageError, ValidationError
from sift.ingest.pipeline import IngestReport


def _ok(envelope):
    assert envelope["success"] is True, envelope
    assert envelope["status"] == 200
    assert envelope["timestamp"]
    return envelope["data"]


def _error(envelope, code, status):
    assert envelope["success"] is False, envelope
    assert envelope["error"]["code"] == code
    assert envelope["status"] == status
    return envelope["error"]["message"]


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected",
    [("true", True), ("1", True), ("Yes", True), ("false", False), ("0", False), ("", False), (True, True), (0, False)],
)
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected


def test_parse_bool_default_and_invalid():
    assert parse_bool(None, True) is True
    with pytest.raises(ValidationError):
        parse_bool("maybe")


def test_unknown_request_type(service):
    _error(handle_request({"type": "delete_everything"}, service), "unknown_request_type", 400)
    _error(handle_request({}, service), "unknown_request_type", 400)


# ------------------------------------------------------------------
# search
# ------------------------------------------------------------------


def test_search(service, budget_doc):
    data = _ok(handle_request({"type": "search", "query": "予算 変更", "language": "ja", "limit": "5"}, service))
    assert data["results"]
    assert data["results"][0]["document_id"] == budget_doc.document_id
    assert data["result_id"]
    assert data["meta"]["total_count"] == len(data["results"])


def test_search_requires_query(service):
    message = _error(handle_request({"type": "search"}, service), "invalid_request", 400)
    assert "query" in message


@pytest.mark.parametrize("params", [{"limit": "0"}, {"limit": "ten"}, {"use_cache": "maybe"}])
def test_search_rejects_bad_params(service, params):
    _error(handle_request({"type": "search", "query": "予算", **params}, service), "invalid_request", 400)


def test_search_content_truncated_for_transport(service, budget_doc):
    service.config.search.transport_content_chars = 5
    data = _ok(handle_request({"type": "search", "query": "予算", "use_cache": "false"}, service))
    item = data["results"][0]
    assert len(item["content"]) == 5
    assert item["truncated"] is True


def test_search_failure_envelope(service, monkeypatch):
    monkeypatch.setattr(service.retriever, "search", MagicMock(return_value=MagicMock(success=False, error="down")))
    _error(handle_request({"type": "search", "query": "予算"}, service), "search_failed", 500)


# ------------------------------------------------------------------
# generate_response
# ------------------------------------------------------------------


def test_generate_from_result_id(service, budget_doc):
    search = _ok(handle_request({"type": "search", "query": "予算 変更", "language": "ja"}, service))
    data = _ok(
        handle_request(
            {
                "type": "generate_response",
                "search_results_id": search["result_id"],
                "response_type": "email",
                "custom_params": json.dumps({"recipient": "山田"}),
                "enhance_with_gemini": "false",
            },
            service,
        )
    )
    assert data["success"] is True
    assert data["content"].startswith("山田 様")
    assert data["response_type"] == "email"
    assert data["enhanced"] is False


def test_generate_from_inline_results(service):
    results = {"success": True, "query": "予算", "language": "ja", "results": []}
    data = _ok(handle_request({"type": "generate_response", "search_results": results}, service))
    assert data["response_type"] == "no_results"
    assert "予算" in data["content"]


def test_generate_unknown_result_id(service):
    _error(
        handle_request({"type": "generate_response", "search_results_id": "expired"}, service), "not_found", 404
    )


def test_generate_requires_results(service):
    _error(handle_request({"type": "generate_response"}, service), "invalid_request", 400)


def test_generate_bad_json(service):
    _error(
        handle_request({"type": "generate_response", "search_results": "{not json"}, service), "invalid_request", 400
    )


def test_generate_from_failed_search(service):
    envelope = handle_request(
        {"type": "generate_response", "search_results": {"success": False, "query": "q"}}, service
    )
    _error(envelope, "generation_failed", 400)


# ------------------------------------------------------------------
# Lookups
# ------------------------------------------------------------------


def test_get_document_with_chunks(service, budget_doc):
    data = _ok(
        handle_request({"type": "get_document", "document_id": budget_doc.document_id, "include_chunks": "true"}, service)
    )
    assert data["title"] == "予算の変更"
    assert data["counterpart_id"] is None
    assert len(data["chunks"]) == 2


def test_get_document_missing(service):
    _error(handle_request({"type": "get_document", "document_id": "nope"}, service), "not_found", 404)


def test_get_templates(service):
    data = _ok(handle_request({"type": "get_templates", "language": "en"}, service))
    assert {t["type"] for t in data} == {"standard", "email", "prep", "detailed", "no_results"}
    assert all(t["builtin"] for t in data)


def test_get_categories(service, budget_doc):
    assert _ok(handle_request({"type": "get_categories"}, service)) == ["billing"]


# ------------------------------------------------------------------
# Admin operations
# ------------------------------------------------------------------


def _write_notes(service):
    (service.root / "notes.txt").write_text("Budget notes.", encoding="utf-8")


def test_process_document_requires_admin(service):
    _error(handle_request({"type": "process_document", "file_id": "notes.txt"}, service), "forbidden", 403)


def test_process_document_with_admin_key(service, monkeypatch):
    monkeypatch.setenv(ADMIN_KEY_ENV, "k3y")
    _write_notes(service)
    data = _ok(
        handle_request(
            {"type": "process_document", "file_id": "notes.txt", "api_key": "k3y", "generate_embeddings": "false"},
            service,
        )
    )
    assert data["document_id"] == "notes_txt"
    assert data["embedding_status"] == "skipped"


def test_process_document_wrong_key(service, monkeypatch):
    monkeypatch.setenv(ADMIN_KEY_ENV, "k3y")
    _error(
        handle_request({"type": "process_document", "file_id": "notes.txt", "api_key": "guess"}, service),
        "forbidden",
        403,
    )


def test_process_document_allowlisted_caller(service):
    service.config.admin.allowlist = ["ops@example.com"]
    _write_notes(service)
    envelope = handle_request(
        {"type": "process_document", "file_id": "notes.txt", "generate_embeddings": "0"},
        service,
        caller="ops@example.com",
    )
    _ok(envelope)


def test_process_document_missing_file(service):
    service.config.admin.allowlist = ["ops"]
    _error(handle_request({"type": "process_document", "file_id": "nope.txt"}, service, caller="ops"), "not_found", 404)


def test_process_document_recovers_from_temporary_failure(service, monkeypatch):
    service.config.admin.allowlist = ["ops"]
    report = IngestReport(document_id="notes_txt", title="notes", category="general", language="en")
    process = MagicMock(side_effect=[TimeoutError("timed out"), report])
    monkeypatch.setattr(service.pipeline, "process_document", process)

    data = _ok(handle_request({"type": "process_document", "file_id": "notes.txt"}, service, caller="ops"))

    assert data["document_id"] == "notes_txt"
    assert process.call_count == 2


def test_process_document_restores_after_storage_error(service, monkeypatch):
    service.config.admin.allowlist = ["ops"]
    _write_notes(service)
    report = IngestReport(document_id="notes_txt", title="notes", category="general", language="en")
    process = MagicMock(side_effect=[StorageError("Corrupt embedding payload"), report])
    monkeypatch.setattr(service.pipeline, "process_document", process)

    data = _ok(handle_request({"type": "process_document", "file_id": "notes.txt"}, service, caller="ops"))

    assert data["document_id"] == "notes_txt"
    assert process.call_count == 2


def test_process_document_unrecovered_storage_error(service, monkeypatch):
    service.config.admin.allowlist = ["ops"]
    _write_notes(service)
    process = MagicMock(side_effect=StorageError("Corrupt embedding payload"))
    monkeypatch.setattr(service.pipeline, "process_document", process)

    _error(
        handle_request({"type": "process_document", "file_id": "notes.txt"}, service, caller="ops"),
        "storage_error",
        500,
    )
    assert process.call_count == 2


def test_unexpected_error_becomes_localized_500(service, monkeypatch):
    service.config.admin.allowlist = ["ops"]
    monkeypatch.setattr(service.pipeline, "process_document", MagicMock(side_effect=RuntimeError("secret detail")))

    message = _error(
        handle_request({"type": "process_document", "file_id": "notes.txt"}, service, caller="ops"),
        "internal_error",
        500,
    )
    assert message == "予期しないエラーが発生しました。"
    assert "secret" not in message


def test_health_check(service):
    data = _ok(handle_request({"type": "health_check"}, service))
    assert data["status"] == "ok"


def test_detailed_health_requires_admin(service, monkeypatch):
    _error(handle_request({"type": "health_check", "detailed": "true"}, service), "forbidden", 403)
    monkeypatch.setenv(ADMIN_KEY_ENV, "k3y")
    data = _ok(handle_request({"type": "health_check", "detailed": "true", "api_key": "k3y"}, service))
    assert "counts" in data
