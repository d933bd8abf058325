"""Rich error messages for the CLI: every message names the cause and the fix.

Usage:
    from lectern.cli.errors import err_no_db
    console.print(err_no_db(db_path))
    raise typer.Exit(1)
"""

from __future__ import annotations

_PROVIDER_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "azure": "AZURE_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


def err_no_api_key(model: str) -> str:
    """No API key for the provider of *model*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str) -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  lectern init"
    )


def err_schema(message: str) -> str:
    """Database schema does not match this release."""
    return f"[red]Error:[/] {message}"


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix lectern.yaml (or ~/.lectern/config.yaml) and retry."
    )


def err_unsupported_source(source: str, supported: list[str]) -> str:
    return (
        f"[red]✗ Unsupported source:[/] '{source}'\n"
        f"  Supported: http(s) URLs and files ending in {', '.join(supported)}"
    )


def err_source_not_found(source: str) -> str:
    return (
        f"[red]✗ File not found:[/] '{source}'\n"
        "  Check the path and retry."
    )


def err_nothing_to_ingest(collection: str | None) -> str:
    scope = f" in collection '{collection}'" if collection else ""
    return (
        f"[yellow]No pending documents{scope}.[/]\n"
        "  Add sources with:  lectern add <file-or-url> --collection <id>\n"
        "  Retry failed ones with:  lectern ingest --retry-errors"
    )


def warn_stale_processing(count: int) -> str:
    """Documents left 'processing' by an interrupted run were reset."""
    return (
        f"[yellow]⚠[/] {count} document(s) were left 'processing' by an interrupted run "
        "and have been marked 'error'.\n"
        "  Retry them with:  lectern ingest --retry-errors"
    )
