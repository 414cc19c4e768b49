"""sift init: scaffold a project.

Creates:
  .sift.db               knowledge base with schema
  sift.yaml              project config (search weights, language, synonyms)
  docs/                  default document root for ``sift ingest``
  ~/.sift/config.yaml    global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from sift.config import ensure_global_config
from sift.db.connection import Database
from sift.db.schema import initialize
from sift.service import DB_FILENAME

console = Console()

_PROJECT_YAML = """\
# Sift project configuration. API keys belong in environment variables.

language:
  default: {language}
  supported: [ja, en]

search:
  default_limit: 10
  semantic_weight: 0.7
  keyword_weight: 0.3

chunking:
  chunk_size: 512
  overlap: 0.10

# Query expansion synonyms per language
synonyms:
  ja:
    予算: [費用, コスト]
  en:
    budget: [spend, cost]
"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    language: Annotated[
        str,
        typer.Option("--language", "-l", help="Default document/query language."),
    ] = "ja",
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override ~/.sift/config.yaml (for testing)."),
    ] = None,
) -> None:
    """Initialize a Sift project in PROJECT_DIR."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / DB_FILENAME
    existed = db_path.exists()
    with Database(db_path) as conn:
        initialize(conn)
    if existed:
        console.print(f"  [green]✓[/] {DB_FILENAME} (schema up to date, data preserved)")
    else:
        console.print(f"  [green]✓[/] {DB_FILENAME}")

    yaml_path = project_dir / "sift.yaml"
    if yaml_path.exists():
        console.print("  [dim]↷ sift.yaml already exists[/]")
    else:
        yaml_path.write_text(_PROJECT_YAML.format(language=language), encoding="utf-8")
        console.print("  [green]✓[/] sift.yaml")

    (project_dir / "docs").mkdir(exist_ok=True)
    console.print("  [green]✓[/] docs/")

    global_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {global_path}")

    console.print(
        "\n[bold]Next steps:[/]\n"
        "  1. export OPENAI_API_KEY=sk-...\n"
        "  2. Put documents under docs/<category>/\n"
        "  3. sift ingest docs\n"
        "  4. sift search \"your question\""
    )
