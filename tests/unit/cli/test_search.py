"""Tests for sift search and sift answer."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from sift.cli.main import app

runner = CliRunner()


def test_search_prints_ranked_results(ingested: Path) -> None:
    result = runner.invoke(app, ["search", "予算 変更", "--project", str(ingested)])
    assert result.exit_code == 0, result.output
    assert "result(s) for" in result.output
    assert "billing" in result.output


def test_search_empty_knowledge_base(project: Path) -> None:
    result = runner.invoke(app, ["search", "budget", "--project", str(project), "--no-cache"])
    assert result.exit_code == 0, result.output
    assert "0 result(s)" in result.output
    assert "No matching chunks." in result.output


def test_search_rejects_zero_limit(ingested: Path) -> None:
    result = runner.invoke(app, ["search", "予算", "--project", str(ingested), "--limit", "0"])
    assert result.exit_code != 0


def test_search_no_db(tmp_path: Path) -> None:
    result = runner.invoke(app, ["search", "予算", "--project", str(tmp_path)])
    assert result.exit_code == 1
    assert "sift init" in result.output


def test_answer_renders_standard_template(ingested: Path) -> None:
    result = runner.invoke(app, ["answer", "予算", "--project", str(ingested), "--no-enhance"])
    assert result.exit_code == 0, result.output
    assert "についての情報です" in result.output
    assert "Answer" in result.output


def test_answer_email_type(ingested: Path) -> None:
    result = runner.invoke(
        app, ["answer", "予算", "--project", str(ingested), "--type", "email", "--no-enhance"]
    )
    assert result.exit_code == 0, result.output
    assert "お問い合わせいただいたお客様" in result.output


def test_answer_without_results_suggests_queries(project: Path) -> None:
    result = runner.invoke(app, ["answer", "予算", "--project", str(project), "--no-enhance"])
    assert result.exit_code == 0, result.output
    assert "予算" in result.output
