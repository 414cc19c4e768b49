"""sift search / sift answer: query the knowledge base from the terminal."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sift.cli.errors import err_search_failed
from sift.cli.project import open_service
from sift.rag.retriever import SearchOptions, SearchResponse
from sift.rag.synthesizer import GenerateOptions

console = Console()

_Project = Annotated[Path, typer.Option("--project", "-p", help="Project directory.")]
_Category = Annotated[str | None, typer.Option("--category", "-c", help="Restrict to one category.")]
_Language = Annotated[str | None, typer.Option("--language", "-l", help="Query language (default: detected).")]
_Limit = Annotated[int | None, typer.Option("--limit", "-n", min=1, help="Maximum number of results.")]


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search query.")],
    project: _Project = Path("."),
    category: _Category = None,
    language: _Language = None,
    limit: _Limit = None,
    no_expand: Annotated[bool, typer.Option("--no-expand", help="Skip preprocessing and synonyms.")] = False,
    no_cache: Annotated[bool, typer.Option("--no-cache", help="Bypass the result cache.")] = False,
) -> None:
    """Run a hybrid search and print the ranked results."""
    with open_service(project) as service:
        response = service.retriever.search(
            query,
            SearchOptions(
                category=category,
                language=language,
                limit=limit,
                expand_query=not no_expand,
                use_cache=not no_cache,
            ),
        )
    if not response.success:
        console.print(err_search_failed(response.error or "Search failed."))
        raise typer.Exit(1)
    _print_results(response)


def answer_cmd(
    query: Annotated[str, typer.Argument(help="Question to answer.")],
    project: _Project = Path("."),
    category: _Category = None,
    language: _Language = None,
    limit: _Limit = None,
    response_type: Annotated[
        str,
        typer.Option("--type", "-t", help="standard | email | prep | detailed"),
    ] = "standard",
    output_language: Annotated[
        str | None,
        typer.Option("--output-language", "-o", help="Answer language (default: query language)."),
    ] = None,
    template_id: Annotated[str | None, typer.Option("--template", help="Template id to render.")] = None,
    no_enhance: Annotated[bool, typer.Option("--no-enhance", help="Skip model enhancement.")] = False,
) -> None:
    """Search, then synthesize an answer from the top results."""
    with open_service(project) as service:
        response = service.retriever.search(
            query, SearchOptions(category=category, language=language, limit=limit)
        )
        if not response.success:
            console.print(err_search_failed(response.error or "Search failed."))
            raise typer.Exit(1)
        generated = service.synthesizer.generate_response(
            response,
            query,
            GenerateOptions(
                response_type=response_type,
                language=output_language,
                template_id=template_id,
                enhance=False if no_enhance else None,
            ),
        )
    if not generated.success:
        console.print(err_search_failed(generated.error or "Answer generation failed."))
        raise typer.Exit(1)

    flags = []
    if generated.enhanced:
        flags.append("enhanced")
    if generated.translated:
        flags.append("translated")
    subtitle = f"{generated.template_name} · {generated.language}"
    if flags:
        subtitle += " · " + ", ".join(flags)
    console.print(Panel(generated.content, title="[bold]Answer[/]", subtitle=subtitle))


def _print_results(response: SearchResponse) -> None:
    hit = " [dim](cached)[/]" if response.cache_hit else ""
    console.print(
        f"[bold]{response.total_count}[/] result(s) for [bold]{response.query}[/] "
        f"({response.language}, {response.total_ms} ms){hit}"
    )
    if response.expanded_terms:
        console.print(f"  [dim]Expanded: {', '.join(response.expanded_terms)}[/]")
    if not response.results:
        console.print("[yellow]No matching chunks.[/]")
        return

    table = Table(show_lines=True)
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Document")
    table.add_column("Category")
    table.add_column("Snippet")
    for i, r in enumerate(response.results, start=1):
        table.add_row(
            str(i),
            f"{r.relevance_score:.3f}",
            r.title or r.document_id,
            r.category,
            r.snippet or r.content[:200],
        )
    console.print(table)
