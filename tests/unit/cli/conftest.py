"""CLI fixtures: isolated global config, a fake model client and a scaffolded project."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

from sift.cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_model):
    """Keep ~/.sift, provider keys and the root logger out of CLI tests."""
    monkeypatch.setattr("sift.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    monkeypatch.setattr("sift.service.ModelClient", lambda *args, **kwargs: fake_model)
    for name in ("SIFT_GENERATION_MODEL", "SIFT_EMBEDDING_MODEL", "SIFT_DEFAULT_LANGUAGE", "SIFT_ADMIN_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    root_logger = logging.getLogger()
    handlers, level = root_logger.handlers[:], root_logger.level
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """An initialized project directory."""
    root = tmp_path / "project"
    result = runner.invoke(app, ["init", str(root), "--global-config", str(tmp_path / "home" / "config.yaml")])
    assert result.exit_code == 0, result.output
    return root


@pytest.fixture
def ingested(project: Path) -> Path:
    """Project with one Japanese billing document ingested."""
    doc = project / "docs" / "billing" / "budget.md"
    doc.parent.mkdir(parents=True)
    doc.write_text(
        "# 予算の変更\n今すぐ予算を変更する方法です。\n\n## 手順\n1. 管理画面を開く\n2. 予算を入力する",
        encoding="utf-8",
    )
    result = runner.invoke(app, ["ingest", "docs", "--project", str(project)])
    assert result.exit_code == 0, result.output
    return project
