"""Tests for DocumentRepository."""

from __future__ import annotations

import pytest

from sift.db.models import Document, Template
from sift.db.repository import DocumentRepository


@pytest.fixture
def repo(tmp_db):
    return DocumentRepository(tmp_db)


def _doc(id="d1", title="Budget guide", category="billing", language="en", metadata=None):
    return Document(
        id=id,
        title=title,
        content="How to change the budget.",
        category=category,
        language=language,
        metadata=metadata or {},
    )


# ------------------------------------------------------------------
# Documents
# ------------------------------------------------------------------


def test_save_and_get_document(repo):
    repo.save_document(_doc(metadata={"source": "docs/billing/budget.md"}))
    doc = repo.get_document("d1")
    assert doc is not None
    assert doc.title == "Budget guide"
    assert doc.metadata == {"source": "docs/billing/budget.md"}
    assert doc.created_at is not None


def test_get_document_not_found(repo):
    assert repo.get_document("missing") is None


def test_save_document_upserts(repo):
    repo.save_document(_doc())
    repo.save_document(_doc(title="Budget guide v2"))
    assert repo.count_documents() == 1
    assert repo.get_document("d1").title == "Budget guide v2"


def test_get_documents_batch(repo):
    repo.save_document(_doc(id="a"))
    repo.save_document(_doc(id="b"))
    docs = repo.get_documents(["a", "b", "a", "missing"])
    assert set(docs) == {"a", "b"}
    assert repo.get_documents([]) == {}


def test_list_documents_and_categories(repo):
    repo.save_document(_doc(id="a", category="billing"))
    repo.save_document(_doc(id="b", category="ads"))
    assert [d.id for d in repo.list_documents("ads")] == ["b"]
    assert len(repo.list_documents()) == 2
    assert repo.list_categories() == ["ads", "billing"]


def test_delete_document(repo):
    repo.save_document(_doc())
    repo.delete_document("d1")
    assert repo.get_document("d1") is None


# ------------------------------------------------------------------
# Templates
# ------------------------------------------------------------------


def _template(id="t1", type="standard", language="en", category="billing,ads"):
    return Template(
        id=id, name=f"Template {id}", type=type, content="{query}", language=language, category=category
    )


def test_save_and_get_template(repo):
    repo.save_template(_template())
    t = repo.get_template("t1")
    assert t.type == "standard"
    assert t.categories == ["billing", "ads"]


def test_list_templates_filters(repo):
    repo.save_template(_template(id="a", type="email", language="ja"))
    repo.save_template(_template(id="b", type="email", language="en"))
    repo.save_template(_template(id="c", type="standard", language="en"))
    assert [t.id for t in repo.list_templates(type="email")] == ["a", "b"]
    assert [t.id for t in repo.list_templates(type="email", language="en")] == ["b"]
    assert len(repo.list_templates()) == 3


def test_delete_template(repo):
    repo.save_template(_template())
    repo.delete_template("t1")
    assert repo.get_template("t1") is None


# ------------------------------------------------------------------
# Help pairs / logs
# ------------------------------------------------------------------


def test_help_pair_counterparts(repo):
    repo.add_help_pair("ja_doc", "en_doc")
    repo.add_help_pair("ja_doc", "en_doc")
    assert repo.get_counterpart_id("ja_doc") == "en_doc"
    assert repo.get_counterpart_id("en_doc") == "ja_doc"
    assert repo.get_counterpart_id("other") is None
    assert len(repo.list_help_pairs()) == 1


def test_recent_logs_newest_first(repo, tmp_db):
    for i in range(3):
        tmp_db.execute(
            "INSERT INTO logs (level, severity, logger, message) VALUES ('WARNING', 'MEDIUM', 'sift', ?)",
            (f"m{i}",),
        )
    tmp_db.commit()
    assert [r["message"] for r in repo.recent_logs(2)] == ["m2", "m1"]
    assert repo.count_logs() == 3
