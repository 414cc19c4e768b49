"""Sift CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from sift.cli.ingest import ingest_cmd
from sift.cli.init import init_cmd
from sift.cli.request import request_cmd
from sift.cli.search import answer_cmd, search_cmd
from sift.cli.status import status_cmd
from sift.cli.templates import templates_app
from sift.observability import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("sift")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sift {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="sift",
    help=(
        "Sift: hybrid search and answer synthesis over your documents.\n\n"
        "  sift ingest docs     Chunk and embed documents.\n"
        "  sift search QUERY    Ranked semantic + keyword results.\n"
        "  sift answer QUERY    Templated answer built from the top results."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log at DEBUG level."),
    ] = False,
) -> None:
    """Sift: hybrid search and answer synthesis over your documents."""
    configure_logging(logging.DEBUG if verbose else logging.WARNING)


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("answer")(answer_cmd)
app.command("request")(request_cmd)
app.command("status")(status_cmd)
app.add_typer(templates_app, name="templates")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Sift version."""
    typer.echo(f"sift {_installed_version()}")


if __name__ == "__main__":
    app()
