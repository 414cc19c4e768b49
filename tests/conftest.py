"""Shared pytest fixtures."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from sift.config import ErrorsCfg, GenerationCfg, SiftConfig
from sift.db.connection import Database
from sift.db.schema import initialize
from sift.service import SiftService


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".sift.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


class FakeClock:
    """Manually advanced time source for cache TTL tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_model():
    """Model client double: every text embeds to [1, 0]; translation is identity."""
    model = MagicMock()
    model.embed_query.side_effect = lambda text: [1.0, 0.0]
    model.embed_texts.side_effect = lambda texts: [[1.0, 0.0] for _ in texts]
    model.complete.return_value = ""
    model.translate.side_effect = lambda text, language: text
    return model


@pytest.fixture
def service(tmp_path, fake_model):
    """SiftService over an empty project directory with enhancement off and instant retries."""
    root = tmp_path / "project"
    root.mkdir()
    config = SiftConfig(
        generation=GenerationCfg(enhance=False),
        errors=ErrorsCfg(max_retries=2, backoff_base=0.0),
    )
    svc = SiftService(root, config, model=fake_model)
    yield svc
    svc.close()


@pytest.fixture
def budget_doc(service):
    """A Japanese billing document ingested with embeddings."""
    path = service.root / "billing" / "budget.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "# 予算の変更\n今すぐ予算を変更する方法です。\n\n## 手順\n1. 管理画面を開く\n2. 予算を入力する",
        encoding="utf-8",
    )
    return service.pipeline.process_document("billing/budget.md", wait=True)
