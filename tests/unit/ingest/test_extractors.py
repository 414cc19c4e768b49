"""Tests for file text extraction."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from sift.errors import NotFoundError, ValidationError
from sift.ingest.extractors import SUPPORTED_EXTENSIONS, extract


def test_plain_text(tmp_path):
    path = tmp_path / "budget.txt"
    path.write_text("予算の変更方法", encoding="utf-8")
    result = extract(path)
    assert (result.title, result.content, result.format) == ("budget", "予算の変更方法", "text")


def test_undecodable_bytes_replaced(tmp_path):
    path = tmp_path / "broken.txt"
    path.write_bytes(b"ok \xff\xfe end")
    assert extract(path).content.startswith("ok ")


def test_markdown_title_from_heading(tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("Intro\n# Changing budgets\nBody", encoding="utf-8")
    result = extract(path)
    assert result.title == "Changing budgets"
    assert result.format == "markdown"
    assert result.content.startswith("Intro")


def test_markdown_without_heading_uses_stem(tmp_path):
    path = tmp_path / "notes.markdown"
    path.write_text("no heading", encoding="utf-8")
    assert extract(path).title == "notes"


def test_html_cleanup(tmp_path):
    path = tmp_path / "page.html"
    path.write_text(
        "<html><head><title>Billing help</title><style>p{color:red}</style></head>"
        "<body><nav>Menu</nav><h2>Invoices</h2><p>Invoices are <b>monthly</b>.</p>"
        "<script>alert(1)</script><footer>Copyright</footer></body></html>",
        encoding="utf-8",
    )
    result = extract(path)
    assert result.title == "Billing help"
    assert result.format == "html"
    assert "## Invoices" in result.content
    assert "monthly" in result.content
    for dropped in ("Menu", "alert", "Copyright", "color:red"):
        assert dropped not in result.content


def test_html_title_falls_back_to_h1(tmp_path):
    path = tmp_path / "page.htm"
    path.write_text("<body><h1>Ads policy</h1><p>text</p></body>", encoding="utf-8")
    assert extract(path).title == "Ads policy"


def test_pdf_pages_joined(tmp_path):
    path = tmp_path / "manual.pdf"
    path.write_bytes(b"%PDF-1.4")
    pages = [MagicMock(), MagicMock(), MagicMock()]
    pages[0].extract_text.return_value = "Page one"
    pages[1].extract_text.return_value = "  "
    pages[2].extract_text.return_value = "Page three"
    reader = MagicMock(pages=pages)
    reader.metadata.title = "Manual"

    with patch("sift.ingest.extractors.pypdf.PdfReader", return_value=reader):
        result = extract(path)

    assert result.content == "Page one\n\nPage three"
    assert result.title == "Manual"
    assert result.format == "pdf"


def test_missing_file(tmp_path):
    with pytest.raises(NotFoundError):
        extract(tmp_path / "nope.txt")


def test_unsupported_extension(tmp_path):
    path = tmp_path / "data.csv"
    path.write_text("a,b", encoding="utf-8")
    with pytest.raises(ValidationError, match="Unsupported file type"):
        extract(path)


def test_supported_extensions():
    assert {".txt", ".md", ".html", ".pdf"} <= SUPPORTED_EXTENSIONS
