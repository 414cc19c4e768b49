"""sift ingest: add files to the knowledge base.

Each file is extracted, chunked into its category's shard tables and embedded.
The category defaults to the file's parent directory name. Re-ingesting a
file replaces its previous chunks.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from sift.cli.errors import err_ingest_failed, err_no_api_key, err_unsupported_file
from sift.cli.project import open_service
from sift.errors import SiftError
from sift.ingest.extractors import SUPPORTED_EXTENSIONS
from sift.ingest.pipeline import IngestReport
from sift.rag.llm_client import provider_env, validate_api_key

console = Console()


def ingest_cmd(
    paths: Annotated[
        list[Path],
        typer.Argument(help="Files or directories (relative to the project)."),
    ],
    project: Annotated[
        Path,
        typer.Option("--project", "-p", help="Project directory."),
    ] = Path("."),
    category: Annotated[
        str | None,
        typer.Option("--category", "-c", help="Category for every file (default: parent directory)."),
    ] = None,
    language: Annotated[
        str | None,
        typer.Option("--language", "-l", help="Document language (default: detected)."),
    ] = None,
    pair_with: Annotated[
        str | None,
        typer.Option("--pair-with", help="Document id of the other-language version."),
    ] = None,
    no_embed: Annotated[
        bool,
        typer.Option("--no-embed", help="Store chunks without generating embeddings."),
    ] = False,
) -> None:
    """Ingest files into the Sift knowledge base."""
    service = open_service(project)
    try:
        if not no_embed:
            model = service.config.embedding.model
            try:
                validate_api_key(model)
            except EnvironmentError:
                provider, env_var = provider_env(model)
                console.print(err_no_api_key(provider, env_var or "API_KEY"))
                raise typer.Exit(1)

        files = _expand(paths, service.root)
        if not files:
            console.print("[yellow]No supported files found.[/]")
            raise typer.Exit(0)

        reports: list[IngestReport] = []
        failures = 0
        for path in files:
            if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
                console.print(err_unsupported_file(str(path), sorted(SUPPORTED_EXTENSIONS)))
                failures += 1
                continue
            file_id = str(path)
            try:
                file_id = path.resolve().relative_to(service.root).as_posix()
                console.print(f"[bold]→ {file_id}[/]")
                report = service.pipeline.process_document(
                    file_id,
                    language=language,
                    category=category,
                    generate_embeddings=not no_embed,
                    wait=True,
                    pair_with=pair_with,
                )
            except (SiftError, OSError, ValueError) as exc:
                console.print(err_ingest_failed(file_id, str(exc)))
                failures += 1
                continue
            reports.append(report)

        _print_summary(reports)
        if failures:
            raise typer.Exit(1)
    finally:
        service.close()


def _expand(paths: list[Path], root: Path) -> list[Path]:
    files: list[Path] = []
    for path in paths:
        target = path if path.is_absolute() else root / path
        if target.is_dir():
            files.extend(
                sorted(p for p in target.rglob("*") if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS)
            )
        else:
            files.append(target)
    return files


def _print_summary(reports: list[IngestReport]) -> None:
    if not reports:
        return
    table = Table(title="Ingested")
    table.add_column("Document")
    table.add_column("Category")
    table.add_column("Lang")
    table.add_column("Chunks", justify="right")
    table.add_column("Embeddings")
    for r in reports:
        chunks = f"{r.saved_chunks}/{r.chunk_count}" if r.partial else str(r.saved_chunks)
        table.add_row(r.document_id, r.category, r.language, chunks, r.embedding_status)
    console.print(table)
