"""
Graph API commands.

Check credentials and configuration, and traverse paged edges through
the rate limiter, retry executor and pagination engine.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from adgovernor.core.client import GraphApiClient
from adgovernor.core.config import AppConfig, ConfigError, load_app_config
from adgovernor.core.backends import BackendError
from adgovernor.core.fetch.errors import GraphApiError, RetryExhaustedError
from adgovernor.core.fetch.pagination import PaginationParams
from adgovernor.core.fetch.throttling import RateLimiter
from adgovernor.core.logging import setup_logging

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Call the Graph API through the governor",
    no_args_is_help=True,
)

MIN_TOKEN_LENGTH = 10


def _load_config(path: Path | None) -> AppConfig:
    """Load configuration and set up logging, exiting on error."""
    try:
        config = load_app_config(path)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        if e.details:
            err_console.print(f"[dim]{e.details}[/dim]")
        raise typer.Exit(1) from e

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
        rich_console=config.logging.rich_console,
    )
    return config


def create_client(config: AppConfig) -> GraphApiClient:
    """Build a client with a limiter for the configured tier."""
    return GraphApiClient(
        config.api,
        RateLimiter(config.rate_limit.tier),
        pagination=config.pagination,
    )


# =============================================================================
# Health Command
# =============================================================================


@app.command("health")
def health(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to app.yaml (default: configs/app.yaml)",
    ),
    live: bool = typer.Option(
        False,
        "--live",
        help="Also validate the token against the API",
    ),
) -> None:
    """Check configuration and credentials."""
    config = _load_config(config_path)
    checks: list[tuple[str, bool, str]] = [("Configuration", True, "loaded")]

    token = config.api.access_token.get_secret_value() if config.api.access_token else ""
    if not token:
        checks.append(("Access token", False, "META_ACCESS_TOKEN not configured"))
    elif len(token) < MIN_TOKEN_LENGTH:
        checks.append(("Access token", False, "invalid token format"))
    else:
        checks.append(("Access token", True, "configured"))

    checks.append(("Rate limit tier", True, config.rate_limit.tier.value))
    checks.append(("API endpoint", True, config.api.versioned_url))

    if live and checks[1][1]:
        async def validate() -> bool:
            async with create_client(config) as client:
                return await client.validate_token()

        valid = asyncio.run(validate())
        checks.append(("Token validation", valid, "accepted" if valid else "rejected by API"))

    table = Table(title="Health Check", show_header=True, header_style="bold magenta")
    table.add_column("Check", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Detail")

    for name, ok, detail in checks:
        status = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
        table.add_row(name, status, detail)

    console.print(table)

    if not all(ok for _, ok, _ in checks):
        raise typer.Exit(1)


# =============================================================================
# Pages Command
# =============================================================================


@app.command("pages")
def pages(
    endpoint: str = typer.Argument(..., help="Edge to traverse, e.g. act_123/campaigns"),
    account: Optional[str] = typer.Option(
        None,
        "--account",
        "-a",
        help="Account to charge against the rate limiter",
    ),
    fields: Optional[str] = typer.Option(
        None,
        "--fields",
        help="Comma-separated fields to request",
    ),
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        min=1,
        help="Page size",
    ),
    max_pages: Optional[int] = typer.Option(
        None,
        "--max-pages",
        min=1,
        help="Most pages to fetch (default from config)",
    ),
    max_items: Optional[int] = typer.Option(
        None,
        "--max-items",
        min=1,
        help="Most items to return (default from config)",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, json)",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to app.yaml (default: configs/app.yaml)",
    ),
) -> None:
    """Collect every item of a paged edge."""
    config = _load_config(config_path)
    params = PaginationParams(limit=limit, extra={"fields": fields} if fields else {})

    async def collect() -> list[dict[str, Any]]:
        async with create_client(config) as client:
            return await client.collect(
                endpoint,
                params,
                account_id=account,
                max_pages=max_pages,
                max_items=max_items,
            )

    try:
        items = asyncio.run(collect())
    except GraphApiError as e:
        err_console.print(f"[red]{e.kind.value} error:[/red] {e.message}")
        if e.retry_after_ms:
            err_console.print(f"[yellow]Retry after {e.retry_after_ms / 1000:.0f}s[/yellow]")
        raise typer.Exit(1) from e
    except (RetryExhaustedError, BackendError) as e:
        err_console.print(f"[red]Request failed:[/red] {e}")
        raise typer.Exit(1) from e

    if format == "json":
        console.print_json(json.dumps(items, default=str))
        return

    if not items:
        console.print("[dim]No items returned.[/dim]")
        return

    columns: list[str] = []
    for item in items:
        for key in item:
            if key not in columns:
                columns.append(key)

    table = Table(title=f"{endpoint} ({len(items)} items)", show_header=True, header_style="bold magenta")
    for column in columns:
        table.add_column(column, style="cyan" if column == "id" else None)
    for item in items:
        table.add_row(*(_cell(item.get(column)) for column in columns))

    console.print(table)


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]-[/dim]"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)
