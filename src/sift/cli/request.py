"""sift request: send one raw request through the dispatcher and print the envelope."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from sift.api.dispatcher import handle_request
from sift.cli.errors import err_bad_json
from sift.cli.project import open_service

console = Console()


def request_cmd(
    body: Annotated[str, typer.Argument(help="JSON request body, or '-' to read stdin.")],
    project: Annotated[Path, typer.Option("--project", "-p", help="Project directory.")] = Path("."),
    caller: Annotated[str | None, typer.Option("--caller", help="Caller identity (admin allowlist).")] = None,
    param: Annotated[
        list[str] | None,
        typer.Option("--param", help="Extra key=value parameter (repeatable, like a query string)."),
    ] = None,
) -> None:
    """Dispatch a request (search, generate_response, health_check, ...)."""
    text = typer.get_text_stream("stdin").read() if body == "-" else body
    try:
        params = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError as exc:
        console.print(err_bad_json(str(exc)))
        raise typer.Exit(1) from exc
    if not isinstance(params, dict):
        console.print(err_bad_json("top-level value must be an object"))
        raise typer.Exit(1)

    for item in param or []:
        key, _, value = item.partition("=")
        params.setdefault(key.strip(), value)

    with open_service(project) as service:
        envelope = handle_request(params, service, caller=caller)
    typer.echo(json.dumps(envelope, ensure_ascii=False, indent=2, default=str))
    if not envelope["success"]:
        raise typer.Exit(1)
