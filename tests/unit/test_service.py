"""Tests for SiftService wiring and health reporting."""

from __future__ import annotations

import logging
import sqlite3
from unittest.mock import MagicMock

from sift.config import SiftConfig
from sift.rag.retriever import SearchOptions
from sift.service import DB_FILENAME, SiftService


def test_database_created_in_project(service):
    assert service.db_path == service.root / DB_FILENAME
    assert service.db_path.exists()


def test_components_share_one_cache(service):
    assert service.retriever._cache is service.cache
    assert service.chunk_store._cache is service.cache


def test_search_after_ingest(service, budget_doc):
    response = service.retriever.search("予算 変更", SearchOptions(language="ja"))
    assert response.success
    assert {r.document_id for r in response.results} == {budget_doc.document_id}


def test_background_embedding_uses_own_connection(service):
    path = service.root / "notes.txt"
    path.write_text("Budget notes for the team.", encoding="utf-8")

    report = service.pipeline.process_document("notes.txt")
    report.thread.join(timeout=10)

    assert report.embedding_status == "completed"
    vectors = service.chunk_store.get_embeddings("chunks_general_1", [f"{report.document_id}_chunk_0"])
    assert len(vectors) == 1


def test_retry_handler_reenters_pipeline(service, monkeypatch):
    process = MagicMock(return_value="report")
    monkeypatch.setattr(service.pipeline, "process_document", process)
    assert service._retry_process_document({"file_id": "a.md", "options": {"language": "en"}}) == "report"
    process.assert_called_once_with("a.md", language="en")


def test_restore_handler_rebuilds_document(service, budget_doc):
    ids = [c.id for c in service.chunk_store.get_chunks_by_document(budget_doc.document_id)]
    assert service.chunk_store.get_embeddings("chunks_billing_1", ids)

    report = service._restore_process_document(
        {"file_id": "billing/budget.md", "options": {"generate_embeddings": False}}
    )

    assert report.document_id == budget_doc.document_id
    assert len(service.chunk_store.get_chunks_by_document(budget_doc.document_id)) == 2
    assert service.chunk_store.get_embeddings("chunks_billing_1", ids) == {}


def test_health_basic(service):
    health = service.health()
    assert health["status"] == "ok"
    assert health["components"] == {
        "database": True,
        "cache": True,
        "templates": True,
        "model_configured": True,
    }
    assert "counts" not in health


def test_health_detailed(service, budget_doc):
    health = service.health(detailed=True)
    assert health["counts"]["documents"] == 1
    assert health["counts"]["chunks_by_shard"]["chunks_billing_1"] == 2
    assert health["resources"]["db_size_mb"] > 0
    assert health["resources"]["pid"] > 0
    assert "hot_entries" in health["cache"]


def test_health_degraded_when_cache_fails(service, monkeypatch):
    monkeypatch.setattr(service, "_cache_roundtrip", MagicMock(side_effect=RuntimeError("locked")))
    health = service.health()
    assert health["status"] == "degraded"
    assert health["components"]["cache"] is False


def test_database_failure_raises_critical_alert(service, monkeypatch, caplog):
    monkeypatch.setattr(
        service, "_database_ok", MagicMock(side_effect=sqlite3.OperationalError("unable to open database file"))
    )
    with caplog.at_level(logging.CRITICAL, logger="sift.alerts"):
        health = service.health()

    assert health["status"] == "degraded"
    assert health["components"]["database"] is False
    alerts = [r for r in caplog.records if r.name == "sift.alerts"]
    assert len(alerts) == 1
    assert alerts[0].operation == "health_check"
    assert "unable to open database file" in alerts[0].getMessage()


def test_cache_failure_does_not_alert(service, monkeypatch, caplog):
    monkeypatch.setattr(service, "_cache_roundtrip", MagicMock(side_effect=RuntimeError("locked")))
    with caplog.at_level(logging.INFO):
        service.health()
    assert not [r for r in caplog.records if r.name == "sift.alerts"]


def test_persisted_logs(tmp_path, fake_model):
    root = tmp_path / "p"
    root.mkdir()
    with SiftService(root, SiftConfig(), model=fake_model, persist_logs=True) as svc:
        logging.getLogger("sift.test").warning("stored warning")
        assert svc.repository.count_logs() == 1
        assert svc.repository.recent_logs(1)[0]["message"] == "stored warning"
    assert all(type(h).__name__ != "SqliteLogHandler" for h in logging.getLogger("sift").handlers)
