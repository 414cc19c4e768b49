"""Text extraction from local files, dispatched on file extension.

  .txt .text         plain text (UTF-8, undecodable bytes replaced)
  .md .markdown      Markdown, kept as-is
  .html .htm         BeautifulSoup cleanup, then html2text → Markdown
  .pdf               pypdf, page by page
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import html2text
import pypdf
from bs4 import BeautifulSoup

from sift.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_MD_TITLE_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


@dataclass
class ExtractedText:
    title: str
    content: str
    format: str  # text | markdown | html | pdf


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def _extract_plain(path: Path) -> ExtractedText:
    return ExtractedText(title=path.stem, content=_read_text(path), format="text")


def _extract_markdown(path: Path) -> ExtractedText:
    content = _read_text(path)
    match = _MD_TITLE_RE.search(content)
    title = match.group(1).strip() if match else path.stem
    return ExtractedText(title=title, content=content, format="markdown")


def _extract_html(path: Path) -> ExtractedText:
    soup = BeautifulSoup(_read_text(path), "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(strip=True) if h1 else path.stem
    for tag in soup.find_all(["script", "style", "nav", "footer", "head"]):
        tag.decompose()
    return ExtractedText(title=title, content=_h2t.handle(str(soup)).strip(), format="html")


def _extract_pdf(path: Path) -> ExtractedText:
    reader = pypdf.PdfReader(str(path))
    parts: list[str] = []
    for page in reader.pages:
        page_text = (page.extract_text() or "").strip()
        if page_text:
            parts.append(page_text)
    title = ""
    if reader.metadata is not None and reader.metadata.title:
        title = str(reader.metadata.title).strip()
    return ExtractedText(title=title or path.stem, content="\n\n".join(parts), format="pdf")


EXTRACTORS: dict[str, Callable[[Path], ExtractedText]] = {
    ".txt": _extract_plain,
    ".text": _extract_plain,
    ".md": _extract_markdown,
    ".markdown": _extract_markdown,
    ".html": _extract_html,
    ".htm": _extract_html,
    ".pdf": _extract_pdf,
}

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(EXTRACTORS)


def extract(path: Path) -> ExtractedText:
    """Extract title and text from the file at *path*.

    Raises:
        NotFoundError: If *path* does not exist.
        ValidationError: If the extension is not supported.
    """
    if not path.is_file():
        raise NotFoundError(f"File not found: {path}")
    extractor = EXTRACTORS.get(path.suffix.lower())
    if extractor is None:
        raise ValidationError(
            f"Unsupported file type '{path.suffix}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )
    result = extractor(path)
    logger.debug("Extracted %d chars from %s (%s)", len(result.content), path, result.format)
    return result
