"""sift templates CLI commands.

Commands:
  sift templates list          show stored and built-in templates
  sift templates add <file>    validate a YAML template file and store it
  sift templates show <id>     print a template's source
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from sift.cli.errors import err_template_file, err_template_syntax
from sift.cli.project import open_service
from sift.db.models import Template
from sift.generate.selection import ResponseType
from sift.generate.templates import TemplateSyntaxError, parse_template

console = Console()

templates_app = typer.Typer(
    name="templates",
    help="Manage response templates (list, add, show).",
    add_completion=False,
)

_Project = Annotated[Path, typer.Option("--project", "-p", help="Project directory.")]


@templates_app.command("list")
def templates_list_cmd(
    project: _Project = Path("."),
    response_type: Annotated[str | None, typer.Option("--type", "-t", help="Filter by response type.")] = None,
    language: Annotated[str | None, typer.Option("--language", "-l", help="Filter by language.")] = None,
) -> None:
    """List templates, including built-in defaults for types with none stored."""
    with open_service(project) as service:
        templates = service.catalog.list_templates(response_type, language)

    table = Table(title="Templates", show_header=True, header_style="bold")
    table.add_column("Id", style="bold")
    table.add_column("Type")
    table.add_column("Lang")
    table.add_column("Categories")
    table.add_column("Source")
    for t in templates:
        source = "[dim]built-in[/]" if t.metadata.get("builtin") else "stored"
        table.add_row(t.id, t.type, t.language, ", ".join(t.categories), source)
    console.print(table)


@templates_app.command("add")
def templates_add_cmd(
    file: Annotated[Path, typer.Argument(help="YAML file with id, name, type, language, content.")],
    project: _Project = Path("."),
) -> None:
    """Validate a template file and store it (replacing a template with the same id)."""
    try:
        data = yaml.safe_load(file.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        console.print(err_template_file(str(file), str(exc)))
        raise typer.Exit(1) from exc

    missing = [k for k in ("id", "name", "type", "content") if not data.get(k)]
    if missing:
        console.print(err_template_file(str(file), f"missing field(s): {', '.join(missing)}"))
        raise typer.Exit(1)
    try:
        ResponseType(str(data["type"]))
    except ValueError:
        allowed = ", ".join(rt.value for rt in ResponseType)
        console.print(err_template_file(str(file), f"type must be one of: {allowed}"))
        raise typer.Exit(1)
    try:
        parse_template(str(data["content"]), strict=True)
    except TemplateSyntaxError as exc:
        console.print(err_template_syntax(str(data["id"]), str(exc)))
        raise typer.Exit(1) from exc

    categories = data.get("categories") or data.get("category") or ""
    if isinstance(categories, list):
        categories = ",".join(str(c) for c in categories)
    template = Template(
        id=str(data["id"]),
        name=str(data["name"]),
        type=str(data["type"]),
        content=str(data["content"]),
        language=str(data.get("language") or "ja"),
        category=str(categories),
        metadata=dict(data.get("metadata") or {}),
    )
    with open_service(project) as service:
        service.catalog.save(template)
    console.print(f"[green]✓[/] Template '{template.id}' saved ({template.type}, {template.language})")


@templates_app.command("show")
def templates_show_cmd(
    template_id: Annotated[str, typer.Argument(help="Template id.")],
    project: _Project = Path("."),
) -> None:
    """Print a template's source."""
    with open_service(project) as service:
        template = next((t for t in service.catalog.list_templates() if t.id == template_id), None)
    if template is None:
        console.print(
            f"[red]Error:[/] Template '{template_id}' not found.\n"
            "  Run:  sift templates list"
        )
        raise typer.Exit(1)
    console.print(f"[bold]{template.name}[/] ({template.type}, {template.language})")
    console.print(Syntax(template.content, "text", word_wrap=True))
