"""Tests for sift init."""

from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from sift.cli.main import app
from sift.config import load_config
from sift.db.connection import Database

runner = CliRunner()


def _init(tmp_path: Path, *args: str):
    root = tmp_path / "project"
    result = runner.invoke(
        app, ["init", str(root), "--global-config", str(tmp_path / "home" / "config.yaml"), *args]
    )
    return root, result


def test_init_creates_database(tmp_path: Path) -> None:
    root, result = _init(tmp_path)
    assert result.exit_code == 0, result.output
    assert (root / ".sift.db").exists()
    with Database(root / ".sift.db") as conn:
        tables = {r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"documents", "templates", "index_mapping", "cache_entries", "logs"} <= tables


def test_init_creates_project_yaml(tmp_path: Path) -> None:
    root, _ = _init(tmp_path)
    data = yaml.safe_load((root / "sift.yaml").read_text(encoding="utf-8"))
    assert data["language"]["default"] == "ja"
    assert data["search"]["semantic_weight"] == 0.7
    assert data["synonyms"]["ja"]["予算"] == ["費用", "コスト"]


def test_init_language_option(tmp_path: Path) -> None:
    root, _ = _init(tmp_path, "--language", "en")
    cfg = load_config(root, global_config_path=tmp_path / "home" / "config.yaml")
    assert cfg.language.default == "en"


def test_init_creates_docs_and_global_config(tmp_path: Path) -> None:
    root, _ = _init(tmp_path)
    assert (root / "docs").is_dir()
    assert (tmp_path / "home" / "config.yaml").exists()


def test_init_is_idempotent(tmp_path: Path) -> None:
    root, _ = _init(tmp_path)
    (root / "sift.yaml").write_text("language:\n  default: en\n", encoding="utf-8")

    _, result = _init(tmp_path)

    assert result.exit_code == 0
    assert "already exists" in result.output
    assert "default: en" in (root / "sift.yaml").read_text(encoding="utf-8")
