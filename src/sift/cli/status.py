"""sift status: health check and knowledge-base overview."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sift.cli.project import open_service

console = Console()


def status_cmd(
    project: Annotated[Path, typer.Option("--project", "-p", help="Project directory.")] = Path("."),
    as_json: Annotated[bool, typer.Option("--json", help="Print the health report as JSON.")] = False,
    logs: Annotated[int, typer.Option("--logs", help="Show the N most recent persisted log records.")] = 0,
) -> None:
    """Show component health, shard row counts and cache statistics."""
    with open_service(project) as service:
        report = service.health(detailed=True)
        categories = service.repository.list_categories()
        recent = service.repository.recent_logs(logs) if logs else []
        db_path = service.db_path

    if as_json:
        typer.echo(json.dumps(report, ensure_ascii=False, indent=2))
        return

    status = "[green]ok[/]" if report["status"] == "ok" else "[yellow]degraded[/]"
    lines = [f"Status:    {status}", f"Database:  {db_path} ({report['resources']['db_size_mb']} MB)"]
    for name, healthy in report["components"].items():
        mark = "[green]✓[/]" if healthy else "[red]✗[/]"
        lines.append(f"  {mark} {name}")
    console.print(Panel("\n".join(lines), title="[bold]Sift[/]", expand=False))

    counts = report["counts"]
    table = Table(title="Knowledge Base", show_header=True, header_style="bold")
    table.add_column("Shard")
    table.add_column("Rows", justify="right")
    for shard, rows in sorted(counts["chunks_by_shard"].items()):
        table.add_row(shard, f"{rows:,}")
    console.print(table)
    console.print(
        f"  Documents: [bold]{counts['documents']}[/]  |  "
        f"Categories: {', '.join(categories) or '(none)'}"
    )

    cache = report["cache"]
    if cache:
        console.print(
            f"  Cache: hot {cache.get('hot_entries', 0)} · shared {cache.get('shared_entries', 0)} · "
            f"durable {cache.get('durable_entries', 0)} entries"
        )

    for record in recent:
        console.print(f"  [dim]{record['created_at']}[/] {record['level']:<8} {record['message']}")
