"""Tests for sift status and sift version."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import MagicMock

from typer.testing import CliRunner

from sift.cli.main import app
from sift.config import SiftConfig
from sift.service import SiftService

runner = CliRunner()


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "sift" in result.output


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("sift ")


def test_status_no_db(tmp_path: Path) -> None:
    result = runner.invoke(app, ["status", "--project", str(tmp_path)])
    assert result.exit_code == 1
    assert "No database found" in result.output


def test_status_overview(ingested: Path) -> None:
    result = runner.invoke(app, ["status", "--project", str(ingested)])
    assert result.exit_code == 0, result.output
    assert "Status:" in result.output
    assert "ok" in result.output
    assert "chunks_billing_1" in result.output
    assert "Categories: billing" in result.output


def test_status_json(ingested: Path) -> None:
    result = runner.invoke(app, ["status", "--project", str(ingested), "--json"])
    assert result.exit_code == 0, result.output
    report = json.loads(result.stdout)
    assert report["status"] == "ok"
    assert report["components"]["database"] is True
    assert report["counts"]["documents"] == 1
    assert report["counts"]["chunks_by_shard"]["chunks_billing_1"] == 2


def test_status_shows_persisted_logs(project: Path, fake_model: MagicMock) -> None:
    with SiftService(project, SiftConfig(), model=fake_model, persist_logs=True):
        logging.getLogger("sift.test").warning("disk nearly full")

    result = runner.invoke(app, ["status", "--project", str(project), "--logs", "5"])

    assert result.exit_code == 0, result.output
    assert "disk nearly full" in result.output
