"""Open the project's SiftService for a CLI command."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from sift.cli.errors import err_config, err_no_db
from sift.config import ConfigError, load_config
from sift.service import DB_FILENAME, SiftService

console = Console()


def open_service(project_dir: Path, *, create: bool = False) -> SiftService:
    """Build the service for *project_dir*; exits with an actionable message on failure."""
    project_dir = project_dir.resolve()
    db_path = project_dir / DB_FILENAME
    if not create and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    return SiftService(project_dir, cfg, db_path=db_path, persist_logs=True)
