"""Sift rich error messages: what went wrong, then what to do.

Usage:
    from sift.cli.errors import err_no_db
    console.print(err_no_db(".sift.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str, env_var: str) -> str:
    """No API key for *provider*."""
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".sift.db") -> str:
    """No database in the project directory."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  sift init"
    )


def err_config(message: str) -> str:
    """Config file rejected by load_config()."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix sift.yaml (or ~/.sift/config.yaml) and retry."
    )


def err_unsupported_file(path: str, supported: list[str]) -> str:
    return (
        f"[red]Error:[/] Unsupported file type: '{path}'\n"
        f"  Supported extensions: {', '.join(supported)}"
    )


def err_ingest_failed(path: str, message: str) -> str:
    return (
        f"[red]✗ {path}:[/] {message}\n"
        "  Check the file and run:  sift ingest <path>  again."
    )


def err_search_failed(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Run:  sift status  to check the knowledge base."
    )


def err_bad_json(message: str) -> str:
    return (
        f"[red]Error:[/] Request body is not valid JSON: {message}\n"
        "  Example:  sift request '{\"type\": \"search\", \"query\": \"budget\"}'"
    )


def err_template_file(path: str, message: str) -> str:
    return (
        f"[red]Error:[/] Cannot load template '{path}': {message}\n"
        "  Templates are YAML files with id, name, type, language and content."
    )


def err_template_syntax(template_id: str, message: str) -> str:
    return (
        f"[red]Error:[/] Template '{template_id}' has unbalanced tags: {message}\n"
        "  Close every {if ...} with {endif} and every {for ...} with {endfor}."
    )
